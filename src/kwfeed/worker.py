from __future__ import annotations

import logging
import queue
import threading
from typing import Callable


logger = logging.getLogger(__name__)

Job = Callable[[], None]

_STOP = object()


class SerialWorker:
    """
    单线程串行执行队列。

    管道内所有对文章集合的修改（ingest / reprocess）都提交到这里，
    保证同一时刻最多只有一个修改在执行。submit 不阻塞调用方；
    单个任务抛出的异常只记录日志，不会让 worker 退出。
    """

    def __init__(self, name: str = "kwfeed-worker") -> None:
        self._name = name
        self._queue: queue.Queue[tuple[str, Job] | object] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def submit(self, job: Job, *, label: str = "job") -> bool:
        """未启动或已 stop 时丢弃任务并返回 False（例如 stop 之后才完成的抓取）。"""
        if not self.running:
            logger.debug("worker not running, dropping job: worker=%s job=%s", self._name, label)
            return False
        self._queue.put((label, job))
        return True

    def join(self) -> None:
        """等待已提交的任务全部执行完（仅用于 --once 模式与测试）。"""
        self._queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        self._queue.put(_STOP)
        thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                label, job = item  # type: ignore[misc]
                try:
                    job()
                except Exception:  # noqa: BLE001
                    logger.exception("worker job failed: worker=%s job=%s", self._name, label)
            finally:
                self._queue.task_done()


class RepeatingTimer:
    """
    固定间隔重复触发的定时器（首次触发在一个间隔之后）。

    cancel 后不可复用；需要修改间隔时取消旧的并新建一个。
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], None], *, name: str = "kwfeed-timer") -> None:
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval_seconds):
            try:
                self._callback()
            except Exception:  # noqa: BLE001
                logger.exception("timer callback failed: interval_seconds=%s", self.interval_seconds)
