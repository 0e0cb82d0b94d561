from __future__ import annotations

import logging
from typing import Callable

from .config import ConfigChange, Preferences
from .worker import SerialWorker


logger = logging.getLogger(__name__)

REPROCESS_CHANGES = frozenset({ConfigChange.KEYWORDS, ConfigChange.NEGATIVE_KEYWORDS, ConfigChange.FEEDS})


class ReprocessingTrigger:
    """
    订阅全局正向词、全局负向词、feed 列表三类配置变化，
    每次变化向串行 worker 提交一次 reprocess，保证不会与 ingest 并发执行。
    """

    def __init__(self, preferences: Preferences, worker: SerialWorker, reprocess: Callable[[], None]) -> None:
        self._preferences = preferences
        self._worker = worker
        self._reprocess = reprocess
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._preferences.subscribe(self.on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_change(self, change: ConfigChange) -> None:
        if change not in REPROCESS_CHANGES:
            return
        logger.info("config changed, scheduling reprocess: change=%s", change.value)
        self._worker.submit(self._reprocess, label=f"reprocess:{change.value}")
