# 进程级 Redis 客户端：由组合根（services/container.py）创建一次后注入各组件

from __future__ import annotations
import logging

import redis

logger = logging.getLogger(__name__)


def build_redis(url: str, socket_timeout: float = 5.0) -> "redis.Redis":
    """decode_responses=True：缓存里统一存 JSON 字符串。"""
    client = redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
        health_check_interval=30,
    )
    logger.info("Redis client configured for %s", url.rsplit("@", 1)[-1])
    return client
