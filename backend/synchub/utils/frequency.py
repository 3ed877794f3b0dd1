"""
Schedule frequency → next run time.

  - interval: ISO-8601 duration（PT1H / P1D / P1DT12H），next = now + duration
  - cron:     5 段 crontab，按 IANA 时区解释，取严格晚于 now 的下一次触发
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Literal

import pytz
from apscheduler.triggers.cron import CronTrigger
from pydantic import TypeAdapter, ValidationError


FrequencyType = Literal["interval", "cron"]

_DURATION = TypeAdapter(timedelta)
_WEEKEND_SKIP_LIMIT = 64   # 最多向后跳多少次，防止 "0 0 * * SAT" 这类表达式死循环


class InvalidFrequencyError(ValueError):
    """Unparseable ISO-8601 duration, cron expression or time zone."""


def parse_iso_duration(value: str) -> timedelta:
    if not isinstance(value, str) or not value.strip().upper().startswith("P"):
        raise InvalidFrequencyError(f"interval must be an ISO-8601 duration such as PT1H, got {value!r}")
    try:
        duration = _DURATION.validate_python(value.strip().upper())
    except ValidationError as exc:
        raise InvalidFrequencyError(f"invalid ISO-8601 duration {value!r}") from exc
    if duration <= timedelta(0):
        raise InvalidFrequencyError(f"interval must be positive, got {value!r}")
    return duration


def resolve_timezone(name: str | None):
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidFrequencyError(f"unknown timezone {name!r}") from exc


def build_cron_trigger(expression: str, tz_name: str | None) -> CronTrigger:
    tz = resolve_timezone(tz_name)
    try:
        return CronTrigger.from_crontab(expression, timezone=tz)
    except (ValueError, TypeError) as exc:
        raise InvalidFrequencyError(f"invalid cron expression {expression!r}: {exc}") from exc


def compute_next_run(
    frequency_type: str,
    value: str,
    tz_name: str | None,
    now: datetime,
    skip_weekends: bool = False,
) -> datetime:
    """返回 UTC aware datetime；非法 frequency 抛 InvalidFrequencyError（不重试）。"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    if frequency_type == "interval":
        duration = parse_iso_duration(value)
        tz = resolve_timezone(tz_name)
        candidate = now + duration
        for _ in range(_WEEKEND_SKIP_LIMIT):
            if not skip_weekends or candidate.astimezone(tz).weekday() < 5:
                return candidate.astimezone(timezone.utc)
            candidate = candidate + duration
        raise InvalidFrequencyError(f"interval {value!r} never lands on a weekday")

    if frequency_type == "cron":
        trigger = build_cron_trigger(value, tz_name)
        reference = now
        for _ in range(_WEEKEND_SKIP_LIMIT):
            # previous_fire_time=reference → 严格晚于 reference
            fire = trigger.get_next_fire_time(reference, reference)
            if fire is None:
                raise InvalidFrequencyError(f"cron expression {value!r} has no future fire time")
            if not skip_weekends or fire.weekday() < 5:
                return fire.astimezone(timezone.utc)
            reference = fire
        raise InvalidFrequencyError(f"cron expression {value!r} never fires on a weekday")

    raise InvalidFrequencyError(f"unsupported frequency type {frequency_type!r}")
