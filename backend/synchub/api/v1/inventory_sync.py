# 手动触发库存同步 + 进度查询 / 取消
import logging, uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from synchub.api.v1.deps import ok
from synchub.orchestration.scheduler_tick import dispatch_task, run_inventory_sync
from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container
from synchub.services.errors import SyncNotFound

router = APIRouter(prefix="/inventory/sync", tags=["inventory-sync"])
logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    providers: List[str] = Field(min_length=1)


'''
每个 provider 一条进度记录（queued），再投递 run_inventory_sync
    - 未注册的 provider 整个请求 400，不会只跑一半
'''
@router.post("", status_code=202)
def start_sync(
    body: SyncRequest,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    for provider in body.providers:
        container.providers.require(provider)

    started = []
    for provider in dict.fromkeys(body.providers):
        sync_id = uuid.uuid4().hex
        container.tracker.initialize_sync(sync_id, provider, uuid.uuid4().hex,
                                          metadata={"trigger": "manual"}, actor=actor.id)
        dispatch_task(container, run_inventory_sync, provider, sync_id, actor.id)
        started.append({"provider": provider, "syncId": sync_id})
        logger.info("Manual sync queued provider=%s sync_id=%s by=%s", provider, sync_id, actor.id)
    return ok(started, message="Sync started")


@router.get("/progress")
def get_progress(
    sync_id: Optional[str] = Query(default=None, alias="syncId"),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    if sync_id:
        progress = container.tracker.get_progress(sync_id)
        if progress is None:
            raise SyncNotFound(f"Sync {sync_id} not found")
        return ok(progress.to_dict())
    return ok([p.to_dict() for p in container.tracker.list_active_syncs()])


@router.post("/{sync_id}/cancel")
def cancel_sync(
    sync_id: str,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    progress = container.tracker.cancel_sync(sync_id, actor=actor.id)
    return ok(progress.to_dict(), message="Sync cancelled")
