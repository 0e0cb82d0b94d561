from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from ..models import Article, ArticleSnapshot, FeedConfig, GlobalKeywordSet
from ..rules.matcher import KeywordMatcher
from ..rules.resolver import resolve_for_source, resolve_keywords


logger = logging.getLogger(__name__)

ALL_ARTICLES_CAPACITY = 100
MATCHED_ARTICLES_CAPACITY = 50

SnapshotListener = Callable[[ArticleSnapshot], None]


@dataclass(slots=True)
class IngestReport:
    received: int = 0
    rejected_negative: int = 0
    skipped_duplicate: int = 0
    inserted: int = 0
    inserted_matched: int = 0
    evicted: int = 0


@dataclass(slots=True)
class ReprocessReport:
    before: int = 0
    removed_negative: int = 0
    matched: int = 0


def rank_matched(articles: Iterable[Article], capacity: int) -> tuple[Article, ...]:
    """
    取出有命中关键词的文章，按 priority 降序做稳定排序后截断。
    同 priority 的文章保持输入列表中的相对顺序，不引入其他排序键。
    """
    matched = [a for a in articles if a.matched_keywords]
    matched.sort(key=lambda a: a.priority, reverse=True)
    return tuple(matched[:capacity])


class ArticleStore:
    """
    两个对外集合的唯一持有者：
    - all_articles：按插入顺序，超过容量时从最早插入的一端淘汰（FIFO）
    - matched_articles：all_articles 中有命中关键词的子集，priority 降序，容量更小

    所有修改都应由同一个串行 worker 调用；发布只是一次快照引用赋值，
    读者拿到的永远是一致的一对集合。
    """

    def __init__(
        self,
        *,
        all_capacity: int = ALL_ARTICLES_CAPACITY,
        matched_capacity: int = MATCHED_ARTICLES_CAPACITY,
    ) -> None:
        self._all_capacity = all_capacity
        self._matched_capacity = matched_capacity
        self._snapshot = ArticleSnapshot()
        self._listeners: list[SnapshotListener] = []
        self._listeners_lock = threading.Lock()

    def snapshot(self) -> ArticleSnapshot:
        return self._snapshot

    @property
    def all_articles(self) -> tuple[Article, ...]:
        return self._snapshot.all_articles

    @property
    def matched_articles(self) -> tuple[Article, ...]:
        return self._snapshot.matched_articles

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def ingest(
        self,
        batch: Iterable[Article],
        feed: FeedConfig,
        global_keywords: GlobalKeywordSet,
    ) -> IngestReport:
        """
        合入一个 feed 的一批新文章。

        顺序：匹配 -> 丢弃命中负向词的 -> 按 URL 去重追加 -> 重排 matched -> FIFO 淘汰 -> 发布。
        """
        report = IngestReport()
        positive, negative = resolve_keywords(feed, global_keywords)
        matcher = KeywordMatcher.compile(positive, negative)

        current = self._snapshot
        all_articles = list(current.all_articles)
        known_urls = {a.url for a in all_articles if a.url is not None}

        for article in batch:
            report.received += 1
            article = matcher.match(article)
            if article.matches_negative_keyword:
                report.rejected_negative += 1
                continue
            if article.url is not None and article.url in known_urls:
                report.skipped_duplicate += 1
                continue
            if article.url is not None:
                known_urls.add(article.url)
            all_articles.append(article)
            report.inserted += 1
            if article.matched_keywords:
                report.inserted_matched += 1

        overflow = len(all_articles) - self._all_capacity
        if overflow > 0:
            del all_articles[:overflow]
            report.evicted = overflow

        self._publish(
            ArticleSnapshot(
                all_articles=tuple(all_articles),
                matched_articles=rank_matched(all_articles, self._matched_capacity),
            )
        )
        logger.debug(
            "ingested batch: feed=%s received=%d inserted=%d matched=%d duplicates=%d negative=%d evicted=%d",
            feed.name,
            report.received,
            report.inserted,
            report.inserted_matched,
            report.skipped_duplicate,
            report.rejected_negative,
            report.evicted,
        )
        return report

    def reprocess(self, feeds: Iterable[FeedConfig], global_keywords: GlobalKeywordSet) -> ReprocessReport:
        """
        配置变化后，用当前关键词重新匹配已有文章并重建两个集合。

        文章只记录 feed 显示名，这里按名称回查 feed 配置；找不到时使用全局关键词。
        """
        feeds = tuple(feeds)
        current = self._snapshot
        report = ReprocessReport(before=len(current.all_articles))
        matchers: dict[str, KeywordMatcher] = {}

        kept: list[Article] = []
        for article in current.all_articles:
            matcher = matchers.get(article.source)
            if matcher is None:
                positive, negative = resolve_for_source(article.source, feeds, global_keywords)
                matcher = KeywordMatcher.compile(positive, negative)
                matchers[article.source] = matcher
            article = matcher.match(article)
            if article.matches_negative_keyword:
                report.removed_negative += 1
                continue
            kept.append(article)

        matched = rank_matched(kept, self._matched_capacity)
        report.matched = len(matched)
        self._publish(ArticleSnapshot(all_articles=tuple(kept), matched_articles=matched))
        return report

    def _publish(self, snapshot: ArticleSnapshot) -> None:
        self._snapshot = snapshot
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("snapshot listener failed: listener=%r", listener)
