# Engine/Session 工厂 + session_scope

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from synchub.core.config import settings


def build_engine(url: str) -> Engine:
    """SQLite（本地/测试）不支持连接池参数，其它方言用常驻池。"""
    kwargs: Dict[str, Any] = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_size=10,            # 常驻连接
            max_overflow=20,         # 高峰期额外连接
            pool_pre_ping=True,      # 连接失效探测
            pool_recycle=1800,       # 半小时回收一次，防止长连接被中间设备断开
        )
    return create_engine(url, **kwargs)


engine = build_engine(settings.DATABASE_URL)


# autocommit=False, autoflush=False：事务由 repository 显式 commit/rollback
SessionLocal: sessionmaker[Session] = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,  # 提交后对象仍可用（减少再次查询）
    class_=Session,
    future=True,
)


# ---- Celery 任务 / 脚本里的上下文管理器 ----
@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    db: Session = (factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def dispose_engine() -> None:
    """释放连接池中的所有连接；在 FastAPI 的 shutdown 钩子中调用。"""
    engine.dispose()
