# 租户 webhook 订阅（只能看到 / 删除自己的）
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from synchub.api.v1.deps import ok
from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container
from synchub.utils.clock import isoformat

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class SubscriptionCreate(BaseModel):
    url: str = Field(min_length=1, max_length=1024)
    events: List[str] = Field(min_length=1)
    secret: Optional[str] = Field(default=None, min_length=8, max_length=128)


def _to_item(row, include_secret: bool = False) -> Dict[str, Any]:
    item = {
        "id": row.id,
        "url": row.url,
        "events": list(row.events or []),
        "isActive": row.is_active,
        "retryCount": row.retry_count,
        "lastTriggered": isoformat(row.last_triggered),
        "lastError": row.last_error,
        "createdAt": isoformat(row.created_at),
    }
    if include_secret:
        # 只在创建时返回一次
        item["secret"] = row.secret
    return item


@router.post("", status_code=201)
def register_webhook(
    body: SubscriptionCreate,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    row = container.dispatcher.register(actor.id, body.events, body.url, body.secret)
    return ok(_to_item(row, include_secret=True), message="Webhook registered")


@router.get("")
def list_webhooks(
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    return ok([_to_item(r) for r in container.dispatcher.list_subscriptions(actor.id)])


@router.delete("/{subscription_id}")
def delete_webhook(
    subscription_id: int,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    if not container.dispatcher.unregister(actor.id, subscription_id):
        raise HTTPException(status_code=404, detail="Webhook subscription not found")
    return ok(message="Webhook deleted")
