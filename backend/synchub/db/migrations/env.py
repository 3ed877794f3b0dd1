# Alembic 驱动脚本：sync_schedules / schedule_executions / inventory_* / webhook_subscriptions / provider_*

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from synchub.core.config import settings
from synchub.db.base import Base
import synchub.db.model  # noqa: F401  导入所有模型，autogenerate 才看得到


config = context.config

# 宿主机上跑 alembic 时用 DATABASE_URL_LOCAL（容器内的 db 主机名解析不到）
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL_LOCAL or settings.DATABASE_URL)

# alembic.ini 自带 logging 段
if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """只生成 SQL，不连库。"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        # SQLite 改表只能走 batch；JSONB / 时区列类型变化也要比对
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
