from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Iterable

from ..models import Article, HighlightSegment


logger = logging.getLogger(__name__)


def wildcard_to_pattern(keyword: str) -> str:
    """
    通配符翻译：`*` -> 任意序列，`?` -> 任意单个字符。

    其余字符原样保留（不做转义），因此类似 "(beta" 的关键词可能编译失败，
    此时由 compile_keyword 退化为普通子串匹配。
    """
    return keyword.replace("*", ".*").replace("?", ".")


@dataclass(frozen=True, slots=True)
class PatternKeyword:
    keyword: str
    regex: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


@dataclass(frozen=True, slots=True)
class LiteralKeyword:
    keyword: str
    needle: str
    compile_error: str | None = None

    def matches(self, text: str) -> bool:
        return self.needle in text


CompiledKeyword = PatternKeyword | LiteralKeyword


def compile_keyword(keyword: str) -> CompiledKeyword:
    """
    每个关键词只在这里选择一次匹配方式，后续对所有文章复用。
    """
    needle = keyword.lower()
    try:
        regex = re.compile(wildcard_to_pattern(needle), re.IGNORECASE)
    except re.error as e:
        logger.debug("keyword pattern compile failed, using substring match: keyword=%r error=%s", keyword, e)
        return LiteralKeyword(keyword=keyword, needle=needle, compile_error=str(e))
    return PatternKeyword(keyword=keyword, regex=regex)


def _compile_all(keywords: Iterable[str]) -> tuple[CompiledKeyword, ...]:
    compiled: list[CompiledKeyword] = []
    seen: set[str] = set()
    for kw in keywords:
        if not (kw or "").strip() or kw in seen:
            continue
        seen.add(kw)
        compiled.append(compile_keyword(kw))
    return tuple(compiled)


def searchable_text(article: Article) -> str:
    return f"{article.title} {article.content}".lower()


@dataclass(frozen=True, slots=True)
class KeywordMatcher:
    """
    关键词匹配（大小写不敏感，支持 * / ? 通配符）。

    - 正向关键词：命中的按出现顺序记入 matched_keywords（保留原始大小写）
    - 负向关键词：按顺序检查，第一个命中即标记并停止
    - 空白关键词跳过；完全相同的关键词只计一次
    """

    positive: tuple[CompiledKeyword, ...]
    negative: tuple[CompiledKeyword, ...]

    @classmethod
    def compile(cls, positive: Iterable[str], negative: Iterable[str]) -> KeywordMatcher:
        return cls(positive=_compile_all(positive), negative=_compile_all(negative))

    def match(self, article: Article) -> Article:
        text = searchable_text(article)
        matched = tuple(k.keyword for k in self.positive if k.matches(text))

        matches_negative = False
        for k in self.negative:
            if k.matches(text):
                matches_negative = True
                break

        return dataclasses.replace(
            article,
            matched_keywords=matched,
            matches_negative_keyword=matches_negative,
        )


def highlight(text: str, keywords: Iterable[str]) -> list[HighlightSegment]:
    """
    将 text 切分为“普通片段 / 关键词片段”，用于展示层高亮。

    每一步在剩余文本中找起始位置最靠前的关键词出现（字面匹配、大小写不敏感，
    同位置时取列表中靠前的关键词），所有片段拼接后严格等于原 text。
    """
    patterns = [re.compile(re.escape(kw), re.IGNORECASE) for kw in keywords if kw]
    segments: list[HighlightSegment] = []
    pos = 0
    while pos < len(text):
        earliest: re.Match[str] | None = None
        for p in patterns:
            m = p.search(text, pos)
            if m is not None and (earliest is None or m.start() < earliest.start()):
                earliest = m

        if earliest is None:
            segments.append(HighlightSegment(text=text[pos:], is_keyword=False))
            break

        if earliest.start() > pos:
            segments.append(HighlightSegment(text=text[pos : earliest.start()], is_keyword=False))
        segments.append(HighlightSegment(text=earliest.group(0), is_keyword=True))
        pos = earliest.end()

    return segments
