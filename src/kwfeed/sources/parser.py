from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from xml.etree import ElementTree as ET

from ..errors import ParseFailure
from ..models import Article, RawArticle, create_snippet, utc_now


logger = logging.getLogger(__name__)

CONTENT_NS = "http://purl.org/rss/1.0/modules/content/"
MEDIA_NS = "http://search.yahoo.com/mrss/"
RSS1_NS = "http://purl.org/rss/1.0/"

CHUNK_SIZE = 64 * 1024

ISO8601_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# EEE, dd MMM yyyy HH:mm:ss Z
RFC822_SHAPE = re.compile(r"[A-Za-z]{3}, \d{1,2} [A-Za-z]{3} \d{4} \d{2}:\d{2}:\d{2} \S+")


class ParserState(enum.Enum):
    IDLE = "idle"
    IN_ITEM = "in_item"
    IN_TITLE = "in_title"
    IN_DESCRIPTION = "in_description"
    IN_LINK = "in_link"
    IN_PUB_DATE = "in_pub_date"


_FIELD_STATES: dict[str, ParserState] = {
    "title": ParserState.IN_TITLE,
    "description": ParserState.IN_DESCRIPTION,
    f"{{{CONTENT_NS}}}encoded": ParserState.IN_DESCRIPTION,
    "link": ParserState.IN_LINK,
    "pubDate": ParserState.IN_PUB_DATE,
}

_IMAGE_TAGS = frozenset({"enclosure", f"{{{MEDIA_NS}}}content", f"{{{MEDIA_NS}}}thumbnail"})


def _tag(elem: ET.Element) -> str:
    # RSS 1.0 (RDF) 把 item/title/link 等放在默认命名空间下，按无命名空间处理。
    tag = elem.tag
    if tag.startswith(f"{{{RSS1_NS}}}"):
        return tag[len(RSS1_NS) + 2 :]
    return tag


def parse_pub_date(value: str) -> datetime | None:
    """
    依次尝试 RSS 常用的 RFC-822 格式（与 locale 无关）与 ISO-8601（yyyy-MM-ddTHH:mm:ssZ）。
    都失败返回 None，由调用方替换为当前时间。

    RFC-822 只接受完整写法：星期、四位年份和秒缺一不可。
    """
    value = (value or "").strip()
    if not value:
        return None
    dt: datetime | None = None
    if RFC822_SHAPE.fullmatch(value):
        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            dt = None
    if dt is None:
        try:
            dt = datetime.strptime(value, ISO8601_FORMAT)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def to_article(raw: RawArticle, *, source: str) -> Article:
    link = raw.link.strip()
    return Article(
        title=raw.title,
        content=raw.description,
        snippet=create_snippet(raw.description),
        source=source,
        url=link or None,
        image_url=raw.image_url,
        published_at=parse_pub_date(raw.pub_date) or utc_now(),
    )


@dataclass(slots=True)
class ParseResult:
    articles: list[Article]
    error: ParseFailure | None = None


@dataclass(slots=True)
class _ItemAccumulator:
    title: list[str] = field(default_factory=list)
    description: list[str] = field(default_factory=list)
    link: list[str] = field(default_factory=list)
    pub_date: list[str] = field(default_factory=list)
    image_url: str | None = None

    def append(self, state: ParserState, chunk: str) -> None:
        chunk = chunk.strip()
        if not chunk:
            return
        if state is ParserState.IN_TITLE:
            self.title.append(chunk)
        elif state is ParserState.IN_DESCRIPTION:
            self.description.append(chunk)
        elif state is ParserState.IN_LINK:
            self.link.append(chunk)
        elif state is ParserState.IN_PUB_DATE:
            self.pub_date.append(chunk)

    def to_raw(self) -> RawArticle:
        return RawArticle(
            title="".join(self.title),
            description="".join(self.description),
            link="".join(self.link),
            pub_date="".join(self.pub_date),
            image_url=self.image_url,
        )


class _ItemStateMachine:
    """
    基于 start/end 事件的状态机：

    Idle --<item>--> InItem --<title|description|content:encoded|link|pubDate>--> In* --</...>--> InItem
    InItem --</item>--> 输出一条 RawArticle，回到 Idle

    其他元素一律忽略。
    """

    def __init__(self) -> None:
        self.state = ParserState.IDLE
        self.items: list[RawArticle] = []
        self._acc = _ItemAccumulator()

    def on_start(self, elem: ET.Element) -> None:
        tag = _tag(elem)
        if tag == "item":
            self._acc = _ItemAccumulator()
            self.state = ParserState.IN_ITEM
            return
        if self.state is not ParserState.IN_ITEM:
            return
        field_state = _FIELD_STATES.get(tag)
        if field_state is not None:
            self.state = field_state
        elif tag in _IMAGE_TAGS:
            self._record_image(elem)

    def on_end(self, elem: ET.Element) -> None:
        tag = _tag(elem)
        if tag == "item":
            if self.state is not ParserState.IDLE:
                self.items.append(self._acc.to_raw())
            self.state = ParserState.IDLE
            elem.clear()
            return
        if self.state in (ParserState.IDLE, ParserState.IN_ITEM):
            return
        if _FIELD_STATES.get(tag) is self.state:
            for chunk in elem.itertext():
                self._acc.append(self.state, chunk)
            self.state = ParserState.IN_ITEM

    def _record_image(self, elem: ET.Element) -> None:
        if self._acc.image_url:
            return
        url = (elem.get("url") or "").strip()
        media_type = (elem.get("type") or "").strip().lower()
        if url and (not media_type or media_type.startswith("image/")):
            self._acc.image_url = url


class FeedParser:
    """
    流式 RSS 解析：分块喂给 XMLPullParser，由状态机产出原始记录，再做摘要 / 日期等后处理。

    文档结构损坏不会抛异常：损坏点之前已完整解析的 item 照常返回，错误放在 ParseResult.error。
    """

    def __init__(self, *, chunk_size: int = CHUNK_SIZE) -> None:
        self._chunk_size = chunk_size

    def parse_raw(self, data: bytes, *, source: str = "") -> tuple[list[RawArticle], ParseFailure | None]:
        machine = _ItemStateMachine()
        pull = ET.XMLPullParser(events=("start", "end"))
        error: ParseFailure | None = None
        try:
            for offset in range(0, len(data), self._chunk_size):
                pull.feed(data[offset : offset + self._chunk_size])
                self._drain(pull, machine)
            pull.close()
            self._drain(pull, machine)
        except ET.ParseError as e:
            error = ParseFailure(source, str(e), len(machine.items))
        return machine.items, error

    def parse(self, data: bytes, *, source: str) -> ParseResult:
        raw_items, error = self.parse_raw(data, source=source)
        if error is not None:
            logger.warning(
                "feed parse failed, keeping partial results: source=%s items=%d error=%s",
                source,
                len(raw_items),
                error.reason,
            )
        return ParseResult(articles=[to_article(raw, source=source) for raw in raw_items], error=error)

    @staticmethod
    def _drain(pull: ET.XMLPullParser, machine: _ItemStateMachine) -> None:
        for event, elem in pull.read_events():
            if event == "start":
                machine.on_start(elem)
            else:
                machine.on_end(elem)
