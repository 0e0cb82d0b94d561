from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping

from bs4 import BeautifulSoup


SNIPPET_MAX_LENGTH = 150


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return uuid.uuid4().hex


def strip_html(value: str) -> str:
    if not value:
        return ""
    return BeautifulSoup(value, "html.parser").get_text()


def create_snippet(content: str, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    """
    由描述生成摘要：去掉 HTML 标签并 trim。

    超长时先截取 max_length 个字符，再回退到该前缀内最后一个空格处并追加 "..."；
    前缀内没有空格则直接硬截断并追加 "..."。
    """
    cleaned = strip_html(content).strip()
    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[:max_length]
    last_space = truncated.rfind(" ")
    if last_space != -1:
        return truncated[:last_space] + "..."
    return truncated + "..."


class KeywordMode(enum.Enum):
    GLOBAL_ONLY = "GlobalOnly"
    FEED_ONLY = "FeedOnly"
    COMBINED = "Combined"

    @classmethod
    def parse(cls, value: Any) -> KeywordMode:
        """
        接受 "GlobalOnly" / "FeedOnly" / "Combined"，
        也兼容旧版本写入的 "Global Only" / "Feed Only"（忽略空格与大小写）。
        """
        if isinstance(value, KeywordMode):
            return value
        normalized = str(value or "").replace(" ", "").replace("_", "").lower()
        for mode in cls:
            if mode.value.lower() == normalized:
                return mode
        raise ValueError(f"Unknown keyword mode: {value!r}")


@dataclass(frozen=True, slots=True)
class FeedConfig:
    """
    单个 RSS 源配置。

    keyword_mode 决定使用哪套关键词：
    - GlobalOnly：只用全局关键词
    - FeedOnly：只用本 feed 的关键词
    - Combined：两者并集（去重）
    """

    id: str
    url: str
    name: str
    enabled: bool = True
    keyword_mode: KeywordMode = KeywordMode.GLOBAL_ONLY
    keywords: tuple[str, ...] = ()
    negative_keywords: tuple[str, ...] = ()

    @classmethod
    def from_json_dict(cls, d: Mapping[str, Any]) -> FeedConfig:
        keywords = d.get("keywords") or []
        negative_keywords = d.get("negativeKeywords") or d.get("negative_keywords") or []
        if not isinstance(keywords, list) or not isinstance(negative_keywords, list):
            raise ValueError(f"Feed keywords must be lists: {d.get('name')!r}")
        return cls(
            id=str(d.get("id") or new_id()),
            url=str(d.get("url") or ""),
            name=str(d.get("name") or ""),
            enabled=bool(d.get("enabled", True)),
            keyword_mode=KeywordMode.parse(d.get("keywordMode") or d.get("keyword_mode") or KeywordMode.GLOBAL_ONLY),
            keywords=tuple(str(x) for x in keywords),
            negative_keywords=tuple(str(x) for x in negative_keywords),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "enabled": self.enabled,
            "keywordMode": self.keyword_mode.value,
            "keywords": list(self.keywords),
            "negativeKeywords": list(self.negative_keywords),
        }


@dataclass(frozen=True, slots=True)
class GlobalKeywordSet:
    positive: tuple[str, ...] = ()
    negative: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RawArticle:
    """解析器状态机输出的原始记录（尚未做摘要、日期等后处理）。"""

    title: str
    description: str
    link: str
    pub_date: str
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class Article:
    """
    文章模型。

    - url 是去重键（可能为空）
    - source 只保存 feed 显示名，重新处理时按名称回查 feed 配置
    - 关键词匹配不会原地修改，而是返回带新匹配结果的副本
    """

    title: str
    content: str
    snippet: str
    source: str
    url: str | None = None
    image_url: str | None = None
    published_at: datetime = field(default_factory=utc_now)
    matched_keywords: tuple[str, ...] = ()
    matches_negative_keyword: bool = False
    id: str = field(default_factory=new_id)

    @property
    def priority(self) -> int:
        return len(self.matched_keywords)


@dataclass(frozen=True, slots=True)
class ArticleSnapshot:
    """
    对外发布的一致性快照：两个集合总是作为一个整体被替换，
    读者不会看到“all 已更新而 matched 仍是旧值”的中间状态。
    """

    all_articles: tuple[Article, ...] = ()
    matched_articles: tuple[Article, ...] = ()


@dataclass(frozen=True, slots=True)
class HighlightSegment:
    text: str
    is_keyword: bool
