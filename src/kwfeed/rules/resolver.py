from __future__ import annotations

from typing import Iterable

from ..models import FeedConfig, GlobalKeywordSet, KeywordMode


ResolvedKeywords = tuple[tuple[str, ...], tuple[str, ...]]


def dedup_union(*groups: Iterable[str]) -> tuple[str, ...]:
    # 集合语义；保留首次出现顺序只是为了结果可复现。
    seen: set[str] = set()
    out: list[str] = []
    for group in groups:
        for kw in group:
            if kw in seen:
                continue
            seen.add(kw)
            out.append(kw)
    return tuple(out)


def resolve_keywords(feed: FeedConfig, global_keywords: GlobalKeywordSet) -> ResolvedKeywords:
    """
    根据 feed 的 keyword_mode 计算生效的 (positive, negative) 关键词。
    """
    if feed.keyword_mode is KeywordMode.FEED_ONLY:
        return tuple(feed.keywords), tuple(feed.negative_keywords)
    if feed.keyword_mode is KeywordMode.COMBINED:
        return (
            dedup_union(global_keywords.positive, feed.keywords),
            dedup_union(global_keywords.negative, feed.negative_keywords),
        )
    return tuple(global_keywords.positive), tuple(global_keywords.negative)


def find_feed_by_name(feeds: Iterable[FeedConfig], name: str) -> FeedConfig | None:
    for feed in feeds:
        if feed.name == name:
            return feed
    return None


def find_feed_by_id(feeds: Iterable[FeedConfig], feed_id: str) -> FeedConfig | None:
    for feed in feeds:
        if feed.id == feed_id:
            return feed
    return None


def resolve_for_source(
    source: str,
    feeds: Iterable[FeedConfig],
    global_keywords: GlobalKeywordSet,
) -> ResolvedKeywords:
    """
    重新处理时使用：文章只携带 feed 显示名，按名称回查当前 feed 配置；
    找不到（例如 feed 被改名或删除）时退回全局关键词。
    """
    feed = find_feed_by_name(feeds, source)
    if feed is None:
        return tuple(global_keywords.positive), tuple(global_keywords.negative)
    return resolve_keywords(feed, global_keywords)
