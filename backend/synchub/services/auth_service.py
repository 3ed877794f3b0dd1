from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from synchub.core.config import settings
from synchub.core.security import decode_token


COOKIE_NAME = settings.COOKIE_NAME


@dataclass(frozen=True, slots=True)
class Actor:
    id: str
    plan: str


'''
取当前操作人
    - 先看 Authorization: Bearer <jwt>，没有再看 Cookie（浏览器场景）
    - sub → actor.id（审计字段 / 限流 key），plan → 限流套餐，缺省用 RATE_LIMIT_DEFAULT_PLAN
    - 不回表：用户/租户由外部身份服务管理
'''
def get_current_actor(request: Request) -> Actor:
    raw = _extract_token(request)
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(raw)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Actor(id=str(payload["sub"]), plan=str(payload.get("plan") or settings.RATE_LIMIT_DEFAULT_PLAN))


def _extract_token(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return request.cookies.get(COOKIE_NAME)
