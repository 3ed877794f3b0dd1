# 库存读取（cache-aside）+ 手工调整
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from synchub.api.v1.deps import ok
from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container

router = APIRouter(prefix="/inventory", tags=["inventory"])


class AdjustRequest(BaseModel):
    sku: str = Field(min_length=1, max_length=128)
    quantity: int = Field(ge=0)
    type: Literal["increase", "decrease", "set"]
    reason: Optional[str] = Field(default=None, max_length=500)


@router.post("/adjust")
def adjust_inventory(
    body: AdjustRequest,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    item = container.inventory_sync.adjust_inventory(body.sku, body.quantity, body.type, body.reason, actor=actor.id)
    return ok(item, message="Inventory adjusted")


@router.get("/{provider}")
def get_inventory(
    provider: str,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    result = container.inventory_sync.get_inventory(provider, actor=actor.id)
    return ok(result["data"], cached=result["cached"], timestamp=result["timestamp"])
