# 受保护路由的公共依赖：actor + 按套餐的固定窗口限流

from fastapi import Depends, HTTPException, Response, status

from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container


'''
限流
    - key: api:{actor.id}，额度取 token 里 plan 对应的 RATE_LIMIT_PLANS，未知 plan 用默认套餐
    - 每个响应带 X-RateLimit-Limit / Remaining / Reset（毫秒时间戳）
    - 超限 429；Redis 不可用时 limiter 自己放行
'''
def rate_limit(
    response: Response,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Actor:
    cfg = container.settings
    plans = cfg.RATE_LIMIT_PLANS
    limit = plans.get(actor.plan) or plans.get(cfg.RATE_LIMIT_DEFAULT_PLAN) or 1000

    result = container.limiter.check_rate_limit(f"api:{actor.id}", limit, cfg.RATE_LIMIT_WINDOW_SEC)
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_epoch_ms),
    }
    if not result.allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded",
                            headers=headers)
    response.headers.update(headers)
    return actor


def ok(data=None, **extra) -> dict:
    return {"success": True, "data": data, **extra}
