"""
声明式响应字段映射：{outputKey: "dotted.path.in.raw"}
  - 路径段遇到 list 时按下标取值（"items.0.id"）
  - 路径不存在 → None
  - mapping 为空 → 原样返回
"""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

_MISSING = object()


def lookup_path(data: Any, path: str, default: Any = None) -> Any:
    current = data
    for part in (path or "").split("."):
        if part == "":
            continue
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                current = _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


class ResponseMapper:

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        self.mapping: Dict[str, str] = dict(mapping or {})

    def __bool__(self) -> bool:
        return bool(self.mapping)

    def apply(self, data: Any) -> Any:
        if not self.mapping:
            return data
        return {key: lookup_path(data, path) for key, path in self.mapping.items()}
