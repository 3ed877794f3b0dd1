# 健康检查（含 DB / Redis 探活）

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text

from synchub.db.session import session_scope
from synchub.services.container import ServiceContainer, get_container

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
def health(container: ServiceContainer = Depends(get_container)):
    checks = {"db": "ok", "redis": "ok"}
    try:
        with session_scope(container.session_factory) as db:
            db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check: database unavailable: %s", e)
        checks["db"] = "down"
    try:
        container.redis.ping()
    except Exception as e:
        logger.warning("Health check: redis unavailable: %s", e)
        checks["redis"] = "down"

    return {
        "status": "ok" if all(v == "ok" for v in checks.values()) else "degraded",
        "checks": checks,
        "providers": container.providers.names(),
    }
