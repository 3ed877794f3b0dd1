from __future__ import annotations

from datetime import timedelta

from conftest import SHIPBOB_INVENTORY_URL, FakeHttp, FakeResponse, add_item, shipbob_rows
import pytest

from synchub.db.session import session_scope
from synchub.orchestration import scheduler_tick
from synchub.repository import execution_repo, schedule_repo
from synchub.repository.schedule_repo import ScheduleCreateDTO
from synchub.services.container import ServiceContainer
from synchub.utils.clock import ensure_utc, now_utc


@pytest.fixture
def tick(container: ServiceContainer, monkeypatch):
    """任务内部用模块级 get_container()，这里换成测试容器。"""
    monkeypatch.setattr(scheduler_tick, "get_container", lambda: container)
    return scheduler_tick


def _schedule(container: ServiceContainer, **overrides):
    fields = dict(name="hourly", provider="shipbob", frequency_type="interval", frequency_value="PT1H")
    fields.update(overrides)
    return container.schedules.create_schedule(ScheduleCreateDTO(**fields), actor="alice")


def _make_due(container: ServiceContainer, schedule_id: str) -> None:
    with session_scope(container.session_factory) as db:
        schedule_repo.update_partial(db, schedule_id, "test", next_run=now_utc() - timedelta(minutes=1))


# ========= 到期查询 =========
def test_find_due_schedules_only_returns_enabled_and_due(container: ServiceContainer) -> None:
    due = _schedule(container, name="due")
    later = _schedule(container, name="later")
    off = _schedule(container, name="off", enabled=False)
    _make_due(container, due.id)
    _make_due(container, off.id)

    assert scheduler_tick.find_due_schedules(container) == [due.id]
    assert set(scheduler_tick.find_due_schedules(container, now=now_utc() + timedelta(hours=2))) == {due.id, later.id}


# ========= 单次执行 =========
def test_execute_schedule_is_locked_while_lease_is_held(container: ServiceContainer, fake_http: FakeHttp) -> None:
    row = _schedule(container)
    token = container.lease.acquire(f"schedule:{row.id}")

    assert scheduler_tick.execute_schedule(container, row.id) == {"status": "locked"}
    assert fake_http.calls == []
    assert container.schedules.list_executions(row.id) == []

    container.lease.release(f"schedule:{row.id}", token)


def test_execute_schedule_runs_sync_and_releases_lease(container: ServiceContainer, fake_http: FakeHttp,
                                                       fake_redis, session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, shipbob_rows(("A1", 4))))
    row = _schedule(container)
    _make_due(container, row.id)

    out = scheduler_tick.execute_schedule(container, row.id)

    assert out["status"] == "completed"
    assert fake_redis.get(f"lease:schedule:{row.id}") is None
    progress = container.tracker.get_progress(out["syncId"])
    assert progress.status == "completed"
    assert progress.metadata["initiatedBy"] == "system"
    assert container.schedules.get_execution_status(out["executionId"]).status == "completed"


# ========= poller 任务 =========
def test_poll_due_schedules_dispatches_inline(tick, container: ServiceContainer, fake_http: FakeHttp,
                                              session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, shipbob_rows(("A1", 7))))
    row = _schedule(container)
    assert tick.poll_due_schedules() == {"status": "idle"}

    _make_due(container, row.id)
    assert tick.poll_due_schedules() == {"status": "dispatched", "count": 1}

    [execution] = container.schedules.list_executions(row.id)
    assert execution.status == "completed"
    # 执行后 next_run 已经推到未来，下一轮 poll 不会重复触发
    assert ensure_utc(container.schedules.get_schedule(row.id).next_run) > now_utc()
    assert tick.poll_due_schedules() == {"status": "idle"}


def test_poll_due_retries_reruns_failed_execution(tick, container: ServiceContainer, fake_http: FakeHttp,
                                                  session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(400, {"message": "bad request"}))
    row = _schedule(container, settings={"retryOnFailure": True, "maxRetries": 2})
    _make_due(container, row.id)

    first = scheduler_tick.execute_schedule(container, row.id)
    assert first["status"] == "failed"
    assert tick.poll_due_retries() == {"status": "idle"}        # next_retry 还没到

    with session_scope(container.session_factory) as db:
        execution_repo.update_partial(db, first["executionId"], "test",
                                      next_retry=now_utc() - timedelta(seconds=1))
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, shipbob_rows(("A1", 3))))

    assert tick.poll_due_retries() == {"status": "dispatched", "count": 1}

    execution = container.schedules.get_execution_status(first["executionId"])
    assert (execution.status, execution.retry_count) == ("completed", 1)
    assert tick.poll_due_retries() == {"status": "idle"}


def test_same_due_slot_queued_twice_runs_once(container: ServiceContainer, fake_http: FakeHttp,
                                             session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, shipbob_rows(("A1", 4))))
    row = _schedule(container)
    _make_due(container, row.id)

    # 两轮 poll 都看到同一个到期点（队列积压时第一轮任务还没执行）
    assert scheduler_tick.find_due_schedules(container) == [row.id]
    assert scheduler_tick.find_due_schedules(container) == [row.id]

    first = scheduler_tick.execute_schedule(container, row.id)
    second = scheduler_tick.execute_schedule(container, row.id)

    assert first["status"] == "completed"
    assert second == {"status": "skipped"}
    assert len(container.schedules.list_executions(row.id)) == 1
    assert len(fake_http.calls_to(SHIPBOB_INVENTORY_URL)) == 1


def test_execute_schedule_skips_when_not_due(container: ServiceContainer, fake_http: FakeHttp) -> None:
    row = _schedule(container)

    assert scheduler_tick.execute_schedule(container, row.id) == {"status": "skipped"}
    assert container.schedules.list_executions(row.id) == []
    assert fake_http.calls == []


def test_duplicate_retry_task_waits_for_backoff(container: ServiceContainer, fake_http: FakeHttp,
                                               session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(400, {"message": "bad request"}))
    row = _schedule(container, settings={"retryOnFailure": True, "maxRetries": 3})
    _make_due(container, row.id)

    first = scheduler_tick.execute_schedule(container, row.id)
    with session_scope(container.session_factory) as db:
        execution_repo.update_partial(db, first["executionId"], "test",
                                      next_retry=now_utc() - timedelta(seconds=1))

    # 两轮 poll 各投递了一次同一个重试
    assert scheduler_tick.find_due_retries(container) == [first["executionId"]]
    assert scheduler_tick.find_due_retries(container) == [first["executionId"]]

    again = scheduler_tick.execute_retry(container, first["executionId"])
    assert again["status"] == "failed"
    after_first = container.schedules.get_execution_status(first["executionId"])
    assert after_first.retry_count == 2
    assert ensure_utc(after_first.next_retry) > now_utc()

    duplicate = scheduler_tick.execute_retry(container, first["executionId"])
    assert duplicate == {"status": "skipped", "executionId": first["executionId"]}

    execution = container.schedules.get_execution_status(first["executionId"])
    assert (execution.status, execution.retry_count) == ("failed", 2)
    assert ensure_utc(execution.next_retry) == ensure_utc(after_first.next_retry)
    assert len(fake_http.calls_to(SHIPBOB_INVENTORY_URL)) == 2


def test_execute_retry_for_unknown_execution(container: ServiceContainer) -> None:
    assert scheduler_tick.execute_retry(container, "missing") == {"status": "skipped"}


# ========= 手动同步任务 =========
def test_execute_inventory_sync_completes_progress(container: ServiceContainer, fake_http: FakeHttp,
                                                   session_factory) -> None:
    add_item(session_factory, "A1", 10)
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, shipbob_rows(("A1", 8))))
    container.tracker.initialize_sync("manual-1", "shipbob", "req-1", actor="alice")

    out = scheduler_tick.execute_inventory_sync(container, "shipbob", "manual-1", "alice")

    assert out["status"] == "completed"
    assert out["summary"]["updated"] == 1
    assert container.tracker.get_progress("manual-1").status == "completed"


def test_execute_inventory_sync_unknown_provider_marks_progress_failed(container: ServiceContainer) -> None:
    container.tracker.initialize_sync("manual-2", "amazon", "req-2", actor="alice")

    out = scheduler_tick.execute_inventory_sync(container, "amazon", "manual-2", "alice")

    assert out["status"] == "failed"
    progress = container.tracker.get_progress("manual-2")
    assert progress.status == "failed"
    assert progress.errors[0]["code"] == "PROVIDER_NOT_CONFIGURED"


def test_dispatch_task_queues_when_not_inline(container: ServiceContainer) -> None:
    queued = []

    class _Task:
        def delay(self, *args):
            queued.append(args)

        def __call__(self, *args):
            raise AssertionError("should not run inline")

    container.settings = container.settings.model_copy(update={"SYNC_TASKS_INLINE": False})
    scheduler_tick.dispatch_task(container, _Task(), "abc")

    assert queued == [("abc",)]
