from __future__ import annotations

import threading
from typing import Protocol


class KeyValueStore(Protocol):
    """
    配置持久化接口：Preferences 只通过字符串键值读写（值为 JSON 文本），
    不关心具体存储介质。
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryKeyValueStore:
    """进程内实现：不落盘，用于 --once 模式与测试。"""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
