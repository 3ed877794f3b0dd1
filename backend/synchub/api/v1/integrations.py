# 通过租户连接在 provider 侧建商品
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from synchub.api.v1.deps import ok
from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container

router = APIRouter(prefix="/integrations", tags=["integrations"])


class ProductCreate(BaseModel):
    # 其它字段原样透传给 provider
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    sku: Optional[str] = None


@router.post("/{connection_id}/products", status_code=201)
def create_product(
    connection_id: int,
    body: ProductCreate,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    created = container.integrations.create_product(
        connection_id, body.model_dump(exclude_none=True), user_id=actor.id, actor=actor.id,
    )
    return ok(created, message="Product created")
