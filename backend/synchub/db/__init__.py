# 导出入口，给脚本/临时建表用

from .session import engine, SessionLocal, session_scope, dispose_engine
from synchub.db.model import *  # 确保把所有模型加载进 Base.metadata
from .base import Base


"""
    开发期/测试在空库快速建表：
        python -c "from synchub.db import create_all; create_all()"
    生产环境请使用 `alembic upgrade head`
"""
def create_all(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
