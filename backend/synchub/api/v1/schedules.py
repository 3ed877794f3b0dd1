# 库存同步计划 CRUD + 执行记录查询
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from synchub.api.v1.deps import ok
from synchub.repository.schedule_repo import ScheduleCreateDTO
from synchub.services.auth_service import Actor, get_current_actor
from synchub.services.container import ServiceContainer, get_container
from synchub.services.schedule_manager import serialize_execution, serialize_schedule

router = APIRouter(prefix="/inventory", tags=["schedules"])


class Frequency(BaseModel):
    type: Literal["interval", "cron"]
    value: str = Field(min_length=1)


class ScheduleSettings(BaseModel):
    retryOnFailure: bool = False
    maxRetries: Optional[int] = Field(default=None, ge=0)
    notifyOnCompletion: bool = False
    notifyOnFailure: bool = False
    skipWeekends: bool = False
    skipHolidays: bool = False


class ScheduleFilters(BaseModel):
    warehouses: Optional[List[str]] = None
    productTypes: Optional[List[str]] = None
    categories: Optional[List[str]] = None


class ScheduleNotifications(BaseModel):
    email: Optional[List[str]] = None
    slack: Optional[Any] = None          # webhook url 或 {webhook, channel}
    webhook: Optional[Any] = None        # url 或 {url, headers}


class ScheduleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    provider: str = Field(min_length=1, max_length=64)
    enabled: bool = True
    frequency: Frequency
    timezone: Optional[str] = None
    settings: ScheduleSettings = Field(default_factory=ScheduleSettings)
    filters: Optional[ScheduleFilters] = None
    notifications: Optional[ScheduleNotifications] = None


class StatusUpdate(BaseModel):
    status: Literal["enabled", "disabled"]


@router.post("/schedules", status_code=201)
def create_schedule(
    body: ScheduleCreate,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    dto = ScheduleCreateDTO(
        name=body.name,
        provider=body.provider,
        frequency_type=body.frequency.type,
        frequency_value=body.frequency.value,
        timezone=body.timezone or container.settings.SCHEDULE_DEFAULT_TIMEZONE,
        enabled=body.enabled,
        settings={k: v for k, v in body.settings.model_dump().items() if v is not None},
        filters=body.filters.model_dump(exclude_none=True) if body.filters else None,
        notifications=body.notifications.model_dump(exclude_none=True) if body.notifications else None,
    )
    row = container.schedules.create_schedule(dto, actor=actor.id)
    return ok(serialize_schedule(row), message="Schedule created")


@router.get("/schedules")
def list_schedules(
    provider: Optional[str] = None,
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    return ok([serialize_schedule(r) for r in container.schedules.list_schedules(provider)])


@router.get("/schedules/{schedule_id}")
def get_schedule(schedule_id: str, container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    row = container.schedules.get_schedule(schedule_id)
    data = serialize_schedule(row)
    data["executions"] = [serialize_execution(e) for e in container.schedules.list_executions(schedule_id)]
    return ok(data)


@router.patch("/schedules/{schedule_id}/status")
def update_schedule_status(
    schedule_id: str,
    body: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    row = container.schedules.update_schedule_status(schedule_id, body.status, actor=actor.id)
    return ok(serialize_schedule(row), message=f"Schedule {body.status}")


@router.delete("/schedules/{schedule_id}")
def delete_schedule(
    schedule_id: str,
    actor: Actor = Depends(get_current_actor),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    container.schedules.delete_schedule(schedule_id, actor=actor.id)
    return ok(message="Schedule deleted")


@router.get("/executions/{execution_id}")
def get_execution(execution_id: str, container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    row = container.schedules.get_execution_status(execution_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return ok(serialize_execution(row))
