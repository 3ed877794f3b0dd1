from fastapi import APIRouter, Depends

from synchub.api.v1.deps import rate_limit


# 非受保护路由
from .routes_health import router as health_router


# 需要 actor + 限流的受保护路由
from .schedules import router as schedules_router
from .inventory_sync import router as inventory_sync_router
from .inventory import router as inventory_router
from .webhooks import router as webhooks_router
from .integrations import router as integrations_router


api_v1 = APIRouter()
api_v1.include_router(health_router)      # /health 不需要登录

protected = APIRouter(dependencies=[Depends(rate_limit)])

# /inventory/{provider} 会吞掉同前缀的固定路径，放在最后
protected.include_router(schedules_router)
protected.include_router(inventory_sync_router)
protected.include_router(webhooks_router)
protected.include_router(integrations_router)
protected.include_router(inventory_router)

api_v1.include_router(protected)
