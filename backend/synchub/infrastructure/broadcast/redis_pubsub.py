# 实时推送通道：Redis pub/sub，前端网关订阅 sync-{syncId} 频道转发给浏览器

from __future__ import annotations
import logging
from typing import Any

from synchub.utils.serialization import dumps

logger = logging.getLogger(__name__)


class RedisBroadcaster:

    def __init__(self, client, channel_prefix: str = ""):
        self.r = client
        self.channel_prefix = channel_prefix

    def trigger(self, channel: str, event: str, payload: Any) -> int:
        """发布 {event, data}；返回收到消息的订阅者数量。异常交给调用方决定是否吞掉。"""
        message = dumps({"event": event, "data": payload})
        receivers = int(self.r.publish(self.channel_prefix + channel, message) or 0)
        logger.debug("Broadcast %s on %s to %d subscribers", event, channel, receivers)
        return receivers
