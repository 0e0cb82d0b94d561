from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from .config import AppConfig, ConfigChange, Preferences
from .errors import FetchFailure
from .http_utils import HttpClient
from .models import FeedConfig
from .rules.resolver import find_feed_by_id
from .sources.base import Fetcher
from .sources.fetcher import FeedFetcher
from .sources.parser import FeedParser
from .state.article_store import ArticleStore
from .state.sqlite_store import SqliteKeyValueStore
from .state.store import KeyValueStore, MemoryKeyValueStore
from .trigger import ReprocessingTrigger
from .worker import RepeatingTimer, SerialWorker


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class FeedRunReport:
    feed_id: str
    feed_name: str
    url: str
    bytes_received: int = 0
    articles_parsed: int = 0
    articles_inserted: int = 0
    articles_matched: int = 0
    skipped_duplicate: int = 0
    rejected_negative: int = 0
    parse_error: str | None = None
    dropped: bool = False
    error: str | None = None
    duration_ms: int = 0


@dataclass(slots=True)
class RunOnceReport:
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    feeds: tuple[FeedRunReport, ...]
    feeds_fetched: int
    feed_errors: int
    articles_parsed: int
    articles_inserted: int
    all_articles: int
    matched_articles: int


class Pipeline:
    """
    核心执行器：负责抓取 -> 解析 -> 关键词匹配 -> 合入集合的完整数据流，
    以及配置变化后的重新处理。

    并发模型：
    - 每个启用的 feed 一个抓取线程，不限并发、不取消（fire-and-forget）
    - 解析、匹配与集合修改全部提交到同一个 SerialWorker 串行执行
    - 每个 Pipeline 只有一个 RepeatingTimer，刷新间隔变化时取消并重建
    """

    def __init__(
        self,
        *,
        preferences: Preferences,
        fetcher: Fetcher,
        parser: FeedParser,
        store: ArticleStore,
        worker: SerialWorker | None = None,
    ) -> None:
        self.preferences = preferences
        self.fetcher = fetcher
        self.parser = parser
        self.store = store
        self.worker = worker or SerialWorker()
        self.trigger = ReprocessingTrigger(preferences, self.worker, self._reprocess_now)
        self._timer: RepeatingTimer | None = None
        self._timer_lock = threading.Lock()
        self._unsubscribe_config: Callable[[], None] | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """
        启动抓取/刷新循环：立即抓取一轮，然后按刷新间隔重复。不阻塞调用方。
        """
        if self._started:
            return
        self._started = True
        self.worker.start()
        self.trigger.attach()
        self._unsubscribe_config = self.preferences.subscribe(self._on_config_change)
        self.fetch_all()
        self._restart_timer()

    def stop(self) -> None:
        # 已发出的抓取请求不取消，完成后提交的任务会随 worker 停止被丢弃。
        self._started = False
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.trigger.detach()
        if self._unsubscribe_config is not None:
            self._unsubscribe_config()
            self._unsubscribe_config = None
        self.worker.stop()

    def fetch_all(self) -> list[threading.Thread]:
        feeds = self.preferences.snapshot().enabled_feeds()
        logger.info("fetching feeds: enabled=%d", len(feeds))
        return [self._spawn_fetch(feed, None) for feed in feeds]

    def reprocess(self) -> None:
        self.worker.submit(self._reprocess_now, label="reprocess")

    def run_once(self) -> RunOnceReport:
        """
        同步执行一个完整周期：并发抓取所有启用的 feed，等待抓取线程与 worker 全部完成。
        """
        started_at = _utc_now()
        start_t = time.monotonic()
        self.worker.start()

        feeds = self.preferences.snapshot().enabled_feeds()
        reports = [FeedRunReport(feed_id=f.id, feed_name=f.name, url=f.url) for f in feeds]
        threads = [self._spawn_fetch(feed, report) for feed, report in zip(feeds, reports)]
        for t in threads:
            t.join()
        self.worker.join()

        snapshot = self.store.snapshot()
        return RunOnceReport(
            started_at=started_at,
            finished_at=_utc_now(),
            duration_ms=int((time.monotonic() - start_t) * 1000),
            feeds=tuple(reports),
            feeds_fetched=sum(1 for r in reports if r.error is None),
            feed_errors=sum(1 for r in reports if r.error is not None),
            articles_parsed=sum(r.articles_parsed for r in reports),
            articles_inserted=sum(r.articles_inserted for r in reports),
            all_articles=len(snapshot.all_articles),
            matched_articles=len(snapshot.matched_articles),
        )

    def _spawn_fetch(self, feed: FeedConfig, report: FeedRunReport | None) -> threading.Thread:
        t = threading.Thread(
            target=self._fetch_feed,
            args=(feed, report),
            name=f"kwfeed-fetch-{feed.name}",
            daemon=True,
        )
        t.start()
        return t

    def _fetch_feed(self, feed: FeedConfig, report: FeedRunReport | None) -> None:
        start_t = time.monotonic()
        try:
            body = self.fetcher.fetch(feed)
        except FetchFailure as e:
            logger.warning(
                "feed fetch failed: feed=%s url=%s error=%s reason=%s",
                feed.name,
                feed.url,
                type(e).__name__,
                e.reason,
            )
            if report is not None:
                report.error = f"{type(e).__name__}: {e.reason}"
                report.duration_ms = int((time.monotonic() - start_t) * 1000)
            return
        except Exception as e:  # noqa: BLE001
            logger.exception("feed fetch crashed: feed=%s url=%s", feed.name, feed.url)
            if report is not None:
                report.error = f"{type(e).__name__}: {e}"
                report.duration_ms = int((time.monotonic() - start_t) * 1000)
            return

        if report is not None:
            report.bytes_received = len(body)
            report.duration_ms = int((time.monotonic() - start_t) * 1000)
        self.worker.submit(functools.partial(self._ingest_payload, feed, body, report), label=f"ingest:{feed.name}")

    def _ingest_payload(self, feed: FeedConfig, body: bytes, report: FeedRunReport | None) -> None:
        # 抓取期间配置可能已变化：按 id 取当前的 feed 配置，被删除或停用的 feed 丢弃本批结果。
        prefs = self.preferences.snapshot()
        current = find_feed_by_id(prefs.feeds, feed.id)
        if current is None or not current.enabled:
            logger.info("feed removed or disabled during fetch, dropping batch: feed=%s url=%s", feed.name, feed.url)
            if report is not None:
                report.dropped = True
            return

        result = self.parser.parse(body, source=current.name)
        ingest = self.store.ingest(result.articles, current, prefs.global_keywords)
        snapshot = self.store.snapshot()
        logger.info(
            "feed ingested: feed=%s mode=%s parsed=%d inserted=%d matched=%d duplicates=%d negative=%d all=%d matched_total=%d",
            current.name,
            current.keyword_mode.value,
            len(result.articles),
            ingest.inserted,
            ingest.inserted_matched,
            ingest.skipped_duplicate,
            ingest.rejected_negative,
            len(snapshot.all_articles),
            len(snapshot.matched_articles),
        )
        if report is not None:
            report.articles_parsed = len(result.articles)
            report.articles_inserted = ingest.inserted
            report.articles_matched = ingest.inserted_matched
            report.skipped_duplicate = ingest.skipped_duplicate
            report.rejected_negative = ingest.rejected_negative
            report.parse_error = result.error.reason if result.error is not None else None

    def _reprocess_now(self) -> None:
        prefs = self.preferences.snapshot()
        r = self.store.reprocess(prefs.feeds, prefs.global_keywords)
        logger.info(
            "reprocessed articles: before=%d removed_negative=%d matched=%d",
            r.before,
            r.removed_negative,
            r.matched,
        )

    def _on_config_change(self, change: ConfigChange) -> None:
        if not self._started:
            return
        if change is ConfigChange.REFRESH_INTERVAL:
            self._restart_timer()
        elif change is ConfigChange.FEEDS:
            # 新增或重新启用的 feed 立即抓取；已有文章的重新处理由 trigger 负责。
            self.fetch_all()

    def _restart_timer(self) -> None:
        interval = self.preferences.refresh_interval_seconds
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = RepeatingTimer(interval, self.fetch_all)
            self._timer.start()
        logger.info("refresh timer started: interval_seconds=%s", interval)


def build_pipeline(config: AppConfig, store: KeyValueStore | None = None) -> Pipeline:
    """
    根据配置构建可运行的 Pipeline。

    统一在这里做“配置 -> 实例”的装配，Pipeline 内只关注流程编排。
    """
    if store is None:
        if config.sqlite_path == ":memory:":
            store = MemoryKeyValueStore()
        else:
            sqlite_store = SqliteKeyValueStore(config.sqlite_path)
            sqlite_store.ensure_schema()
            store = sqlite_store

    http = HttpClient(
        timeout_seconds=config.http.timeout_seconds,
        user_agent=config.http.user_agent,
        verify_ssl=config.http.verify_ssl,
    )
    preferences = Preferences.load(store, config)

    return Pipeline(
        preferences=preferences,
        fetcher=FeedFetcher(http=http),
        parser=FeedParser(),
        store=ArticleStore(),
    )
