from __future__ import annotations
from typing import Optional


def exponential_delay(base: float, retry_count: int, max_delay: Optional[float] = None) -> float:
    """
    指数退避：第 retry_count 次重试前等待 base * 2^retry_count。
    retry_count 从 0 开始（第一次重试等 base）。
    """
    retry_count = max(0, int(retry_count))
    delay = float(base) * (2 ** retry_count)
    if max_delay is not None:
        return min(float(max_delay), delay)
    return delay
