from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from synchub.utils.backoff import exponential_delay
from synchub.utils.clock import ensure_utc, isoformat
from synchub.utils.frequency import InvalidFrequencyError, compute_next_run, parse_iso_duration


UTC = timezone.utc
FRIDAY_NOON = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


# ---------- interval ----------
@pytest.mark.parametrize(
    "value, expected",
    [
        ("PT1H", timedelta(hours=1)),
        ("PT15M", timedelta(minutes=15)),
        ("P1D", timedelta(days=1)),
        ("P1DT12H", timedelta(days=1, hours=12)),
        ("pt30s", timedelta(seconds=30)),
    ],
)
def test_parse_iso_duration(value: str, expected: timedelta) -> None:
    assert parse_iso_duration(value) == expected


@pytest.mark.parametrize("value", ["1h", "", "PT0S", "P", "every hour"])
def test_parse_iso_duration_rejects_garbage(value: str) -> None:
    with pytest.raises(InvalidFrequencyError):
        parse_iso_duration(value)


def test_interval_adds_duration_to_now() -> None:
    now = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
    assert compute_next_run("interval", "PT1H", "UTC", now) == datetime(2026, 10, 19, 10, 0, tzinfo=UTC)


def test_interval_accepts_naive_now_as_utc() -> None:
    now = datetime(2026, 10, 19, 9, 0)
    assert compute_next_run("interval", "PT1H", None, now) == datetime(2026, 10, 19, 10, 0, tzinfo=UTC)


def test_interval_skips_weekend() -> None:
    # 周五 + 1 天 = 周六 → 周日 → 周一
    assert compute_next_run("interval", "P1D", "UTC", FRIDAY_NOON, skip_weekends=True) == \
        datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


# ---------- cron ----------
def test_cron_fires_strictly_after_now() -> None:
    on_the_hour = datetime(2026, 10, 19, 10, 0, tzinfo=UTC)
    assert compute_next_run("cron", "0 * * * *", "UTC", on_the_hour) == datetime(2026, 10, 19, 11, 0, tzinfo=UTC)

    half_past = datetime(2026, 10, 19, 10, 30, tzinfo=UTC)
    assert compute_next_run("cron", "0 * * * *", "UTC", half_past) == datetime(2026, 10, 19, 11, 0, tzinfo=UTC)


def test_cron_is_evaluated_in_schedule_timezone() -> None:
    # 2026-01-15 10:00 AEDT (UTC+11) → 下一个 09:00 是 16 日，即 UTC 15 日 22:00
    now = datetime(2026, 1, 14, 23, 0, tzinfo=UTC)
    result = compute_next_run("cron", "0 9 * * *", "Australia/Melbourne", now)
    assert result == datetime(2026, 1, 15, 22, 0, tzinfo=UTC)
    assert result.tzinfo is not None and result.utcoffset() == timedelta(0)


def test_cron_skips_weekend() -> None:
    friday_afternoon = datetime(2026, 10, 16, 13, 0, tzinfo=UTC)
    assert compute_next_run("cron", "0 12 * * *", "UTC", friday_afternoon, skip_weekends=True) == \
        datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "kind, value, tz",
    [
        ("cron", "not a cron", "UTC"),
        ("cron", "61 * * * *", "UTC"),
        ("cron", "0 9 * * *", "Mars/Olympus_Mons"),
        ("interval", "PT1H", "Nowhere/Land"),
        ("weekly", "MON", "UTC"),
    ],
)
def test_invalid_frequency_raises(kind: str, value: str, tz: str) -> None:
    with pytest.raises(InvalidFrequencyError):
        compute_next_run(kind, value, tz, FRIDAY_NOON)


def test_invalid_frequency_is_a_value_error() -> None:
    assert issubclass(InvalidFrequencyError, ValueError)


# ---------- 小工具 ----------
def test_exponential_delay() -> None:
    assert [exponential_delay(60, n) for n in range(4)] == [60, 120, 240, 480]
    assert exponential_delay(1, 10, max_delay=30) == 30
    assert exponential_delay(1, -3) == 1


def test_ensure_utc_and_isoformat() -> None:
    naive = datetime(2026, 10, 19, 9, 0)
    assert ensure_utc(naive) == datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
    assert ensure_utc(None) is None
    assert isoformat(naive) == "2026-10-19T09:00:00Z"
    assert isoformat(None) is None
