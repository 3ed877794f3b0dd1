# 轻量指标：日志 + Redis 小时桶计数，全部 best-effort
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)

METRIC_BUCKET_TTL_SEC = 7 * 24 * 3600


class MetricsRecorder:

    def __init__(self, client=None, clock: Callable[[], datetime] = now_utc):
        self.r = client
        self._clock = clock

    def record_metric(self, name: str, value: float = 1, tags: Optional[Dict[str, Any]] = None) -> None:
        logger.info("metric %s=%s tags=%s", name, value, tags or {})
        if self.r is None:
            return
        key = f"metrics:{name}:{self._clock().strftime('%Y%m%d%H')}"
        try:
            self.r.incrbyfloat(key, float(value))
            self.r.expire(key, METRIC_BUCKET_TTL_SEC)
        except Exception as e:
            logger.warning("Metric %s not recorded: %s", name, e)

    def record_error(self, error: Any, context: Optional[Dict[str, Any]] = None) -> None:
        logger.error("error recorded: %s context=%s", error, context or {})
