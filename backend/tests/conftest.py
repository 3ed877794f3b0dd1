"""
公共 fixtures：内存 SQLite + Redis 替身 + 假 HTTP session

settings / engine 在 import 时就构造，环境变量必须在导入 synchub 之前设置。
"""

from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SYNC_TASKS_INLINE"] = "true"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import fnmatch
import hashlib
import json
import math
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pytest
import redis
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import synchub.core.celery_app  # noqa: F401  shared_task 绑定到 app
import synchub.db.model  # noqa: F401
from synchub.core.config import settings
from synchub.db.base import Base
from synchub.infrastructure.cache import CacheService
from synchub.integrations.providers import ProviderRegistry
from synchub.integrations.providers.shipbob import ShipBobAdapter
from synchub.repository import inventory_repo
from synchub.services.container import ServiceContainer, build_container


SHIPBOB_URL = "https://api.shipbob.test"
SHIPBOB_INVENTORY_URL = SHIPBOB_URL + "/1.0/inventory"
FROZEN_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)   # 周一



# ========= Redis 替身（decode_responses=True 语义） =========
class FakeRedis:
    """只实现服务层用到的命令；所有操作加锁，线程池 / single-flight 测试可以并发调用。"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: Dict[str, str] = {}
        self._expiry: Dict[str, float] = {}
        self._scripts: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self.published: List[Tuple[str, str]] = []

    def _purge(self, key: str) -> None:
        expires_at = self._expiry.get(key)
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    # ---------- strings ----------
    def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._purge(key)
            return self._data.get(key)

    def set(self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False):
        with self._lock:
            self._purge(key)
            if nx and key in self._data:
                return None
            self._data[key] = str(value)
            if ex:
                self._expiry[key] = self._clock() + int(ex)
            else:
                self._expiry.pop(key, None)
            return True

    def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                self._purge(key)
                if key in self._data:
                    del self._data[key]
                    self._expiry.pop(key, None)
                    removed += 1
            return removed

    def incrby(self, key: str, amount: int = 1) -> int:
        with self._lock:
            self._purge(key)
            value = int(self._data.get(key, 0)) + int(amount)
            self._data[key] = str(value)
            return value

    def incr(self, key: str, amount: int = 1) -> int:
        return self.incrby(key, amount)

    def decrby(self, key: str, amount: int = 1) -> int:
        return self.incrby(key, -int(amount))

    def incrbyfloat(self, key: str, amount: float = 1.0) -> float:
        with self._lock:
            self._purge(key)
            value = float(self._data.get(key, 0)) + float(amount)
            self._data[key] = repr(value)
            return value

    # ---------- keys ----------
    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            self._purge(key)
            if key not in self._data:
                return False
            self._expiry[key] = self._clock() + int(seconds)
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            self._purge(key)
            if key not in self._data:
                return -2
            if key not in self._expiry:
                return -1
            return int(math.ceil(self._expiry[key] - self._clock()))

    def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None) -> Iterator[str]:
        with self._lock:
            for key in list(self._data):
                self._purge(key)
            keys = sorted(k for k in self._data if match is None or fnmatch.fnmatchcase(k, match))
        return iter(keys)

    def keys(self) -> List[str]:
        return list(self.scan_iter())

    # ---------- pub/sub / scripts ----------
    def publish(self, channel: str, message: str) -> int:
        with self._lock:
            self.published.append((channel, message))
        return 0

    def script_load(self, script: str) -> str:
        sha = hashlib.sha1(script.encode("utf-8")).hexdigest()
        with self._lock:
            self._scripts[sha] = script
        return sha

    def script_flush(self) -> None:
        with self._lock:
            self._scripts.clear()

    def evalsha(self, sha: str, numkeys: int, *args):
        """
        只认两个脚本：
            - 限流窗口：INCR，第一次才 EXPIRE
            - 租约释放：GET == token 才 DEL
        """
        with self._lock:
            if sha not in self._scripts:
                raise redis.exceptions.NoScriptError("NOSCRIPT No matching script. Please use EVAL.")
            keys, argv = args[:numkeys], args[numkeys:]
            if "INCR" in self._scripts[sha]:
                count = FakeRedis.incrby(self, keys[0], 1)
                if count == 1:
                    FakeRedis.expire(self, keys[0], int(argv[0]))
                return count
            if self.get(keys[0]) == argv[0]:
                return self.delete(keys[0])
            return 0

    def ping(self) -> bool:
        return True


class BrokenRedis:
    """任何命令都抛 ConnectionError，用来验证 fail-open / 向上抛的分支。"""

    def __getattr__(self, name: str):
        def _fail(*args, **kwargs):
            raise redis.exceptions.ConnectionError(f"redis unavailable ({name})")
        return _fail



# ========= HTTP 替身 =========
class FakeResponse:

    def __init__(self, status_code: int = 200, json_data: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = text.encode("utf-8")

    def json(self) -> Any:
        return json.loads(self.text)

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttp:
    """
    requests.Session 的最小替身：按 (method, url) 注册响应队列。
      - 队列里可以放 FakeResponse / 异常实例 / callable(kwargs)
      - 队列只剩一个时重复返回最后一个
      - 没注册的地址抛 ConnectionError
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self._lock = threading.Lock()

    def on(self, method: str, url: str, *responses: Any) -> "FakeHttp":
        self._routes[(method.upper(), url)] = list(responses)
        return self

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        return self._respond(method.upper(), url, kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._respond("POST", url, kwargs)

    def calls_to(self, url: str, method: Optional[str] = None) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["url"] == url and (method is None or c["method"] == method.upper())]

    def _respond(self, method: str, url: str, kwargs: Dict[str, Any]) -> FakeResponse:
        with self._lock:
            self.calls.append({"method": method, "url": url, **kwargs})
            queue = self._routes.get((method, url))
            if not queue:
                raise requests.ConnectionError(f"no fake route for {method} {url}")
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(kwargs)
        return item



# ========= 记录型替身 =========
class RecordingNotifier:

    def __init__(self):
        self.emails: List[Tuple[List[str], str, Any]] = []
        self.slack: List[Tuple[Dict[str, Any], Any]] = []
        self.webhooks: List[Tuple[Dict[str, Any], Any]] = []

    def send_email(self, recipients, subject, data) -> bool:
        self.emails.append((list(recipients), subject, data))
        return True

    def send_slack_message(self, config, data) -> bool:
        self.slack.append((config, data))
        return True

    def send_webhook(self, config, data) -> bool:
        self.webhooks.append((config, data))
        return True


class RecordingBroadcaster:

    def __init__(self):
        self.events: List[Tuple[str, str, Any]] = []

    def trigger(self, channel: str, event: str, payload: Any) -> int:
        self.events.append((channel, event, payload))
        return 1


class RecordingDispatcher:

    def __init__(self):
        self.dispatched: List[Tuple[str, str, Any]] = []

    def dispatch(self, user_id: str, event: str, payload: Any) -> list:
        self.dispatched.append((user_id, event, payload))
        return []

    def events(self, name: str) -> List[Any]:
        return [payload for _, event, payload in self.dispatched if event == name]


class RecordingMetrics:

    def __init__(self):
        self.metrics: List[Tuple[str, float, Dict[str, Any]]] = []
        self.errors: List[Tuple[Any, Dict[str, Any]]] = []

    def record_metric(self, name, value=1, tags=None) -> None:
        self.metrics.append((name, value, tags or {}))

    def record_error(self, error, context=None) -> None:
        self.errors.append((error, context or {}))

    def names(self) -> List[str]:
        return [name for name, _, _ in self.metrics]


class FrozenClock:
    """now_utc 替身；advance() 手动拨表。"""

    def __init__(self, start: datetime = FROZEN_NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current



# ========= fixtures =========
@pytest.fixture
def engine():
    """单连接内存库（StaticPool），所有 session 看到同一份数据。"""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> CacheService:
    return CacheService(fake_redis)


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def shipbob(fake_http) -> ShipBobAdapter:
    return ShipBobAdapter.create("sb-token", SHIPBOB_URL, session=fake_http, sleep=lambda _s: None)


@pytest.fixture
def container(session_factory, fake_redis, fake_http, shipbob) -> ServiceContainer:
    """完整组合根，只把外部依赖换成替身；任务一律 inline 执行。"""
    cfg = settings.model_copy(update={"SYNC_TASKS_INLINE": True})
    return build_container(
        cfg,
        redis_client=fake_redis,
        session_factory=session_factory,
        http=fake_http,
        providers=ProviderRegistry([shipbob]),
    )


# ---------- helpers ----------
def add_item(session_factory, sku: str, quantity: int, **fields):
    with session_factory() as session:
        return inventory_repo.create_item(session, sku, quantity, **fields)


def shipbob_rows(*rows: Tuple[str, int]) -> List[Dict[str, Any]]:
    return [
        {
            "id": idx,
            "sku": sku,
            "total_fulfillable_quantity": qty,
            "fulfillable_quantity_by_fulfillment_center": [{"id": 7, "name": "Cicero (IL)", "fulfillable_quantity": qty}],
        }
        for idx, (sku, qty) in enumerate(rows, start=1)
    ]
