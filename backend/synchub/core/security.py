from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, JWTError
from synchub.core.config import settings


ALGORITHM = "HS256"
SYSTEM_ACTOR = "system"


'''
签发 actor JWT
  - sub = 操作人 id（写进审计字段 created_by / updated_by）
  - plan = 限流套餐（free / basic / pro / vip），可选
  - 登录由外部身份服务完成，这里只负责签发/校验，scripts/issue_token.py 用它给运维发 token
'''
def create_access_token(
    actor_id: str,
    plan: str | None = None,
    expires_minutes: int | None = None,
    secret_key: str | None = None,
) -> str:
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode: dict[str, Any] = {"exp": expire, "sub": actor_id}
    if plan:
        to_encode["plan"] = plan
    return jwt.encode(to_encode, secret_key or settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, secret_key: str | None = None) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, secret_key or settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
