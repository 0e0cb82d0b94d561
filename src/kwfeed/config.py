from __future__ import annotations

import enum
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .http_utils import DEFAULT_USER_AGENT
from .models import FeedConfig, GlobalKeywordSet
from .state.store import KeyValueStore


logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 1800
DEFAULT_SQLITE_PATH = "./kwfeed_state.sqlite3"

KEY_FEEDS = "rssFeeds"
KEY_KEYWORDS = "keywords"
KEY_NEGATIVE_KEYWORDS = "negativeKeywords"
KEY_REFRESH_INTERVAL = "refreshInterval"


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    return bool(v)


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except Exception:
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return float(v)
    except Exception:
        return default


def _get_str_list(d: Mapping[str, Any], key: str, default: list[str]) -> list[str]:
    v = d.get(key, default)
    if v is None:
        return list(default)
    if isinstance(v, list):
        return [str(x) for x in v]
    return list(default)


def parse_feeds(raw: Any, *, where: str) -> tuple[FeedConfig, ...]:
    if not isinstance(raw, list):
        raise ValueError(f"Expected list at {where}, got {type(raw)}")
    feeds: list[FeedConfig] = []
    for i, item in enumerate(raw):
        feeds.append(FeedConfig.from_json_dict(_require_dict(item, where=f"{where}[{i}]")))
    return tuple(feeds)


@dataclass(frozen=True, slots=True)
class HttpConfig:
    timeout_seconds: float = 20.0
    user_agent: str = DEFAULT_USER_AGENT
    verify_ssl: bool = True


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置（从 JSON 文件加载）。

    refresh_interval_seconds / feeds / keywords / negative_keywords：
      - 仅作为初始值；运行期以 Preferences（持久化存储）中的值为准
    sqlite_path：
      - 配置持久化用的 SQLite 路径；为 ":memory:" 时使用进程内存储
    """

    refresh_interval_seconds: int
    feeds: tuple[FeedConfig, ...]
    keywords: tuple[str, ...]
    negative_keywords: tuple[str, ...]
    sqlite_path: str
    http: HttpConfig


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式，避免引入第三方 YAML 解析依赖。

    JSON 顶层结构（示意）：
    {
      "refresh_interval_seconds": 1800,
      "keywords": ["python", "rust*"],
      "negative_keywords": ["sponsored"],
      "feeds": [
        {"name": "HN", "url": "https://hnrss.org/frontpage", "keywordMode": "Combined", "keywords": ["llm"]}
      ],
      "state": { "sqlite_path": "./kwfeed_state.sqlite3" },
      "http": { "timeout_seconds": 20, "verify_ssl": true }
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")

    state = _require_dict(root.get("state", {"sqlite_path": DEFAULT_SQLITE_PATH}), where="$.state")
    sqlite_path = str(state.get("sqlite_path") or DEFAULT_SQLITE_PATH)

    http = _require_dict(root.get("http", {}), where="$.http")
    http_cfg = HttpConfig(
        timeout_seconds=_get_float(http, "timeout_seconds", 20.0),
        user_agent=str(http.get("user_agent") or DEFAULT_USER_AGENT),
        verify_ssl=_get_bool(http, "verify_ssl", True),
    )

    refresh_interval = _get_int(root, "refresh_interval_seconds", DEFAULT_REFRESH_INTERVAL_SECONDS)
    if refresh_interval <= 0:
        logger.warning("refresh_interval_seconds must be positive, using default: value=%s", refresh_interval)
        refresh_interval = DEFAULT_REFRESH_INTERVAL_SECONDS

    return AppConfig(
        refresh_interval_seconds=refresh_interval,
        feeds=parse_feeds(root.get("feeds", []), where="$.feeds"),
        keywords=tuple(_get_str_list(root, "keywords", [])),
        negative_keywords=tuple(_get_str_list(root, "negative_keywords", [])),
        sqlite_path=sqlite_path,
        http=http_cfg,
    )


class ConfigChange(enum.Enum):
    KEYWORDS = "keywords"
    NEGATIVE_KEYWORDS = "negative_keywords"
    FEEDS = "feeds"
    REFRESH_INTERVAL = "refresh_interval"


ChangeListener = Callable[[ConfigChange], None]


@dataclass(frozen=True, slots=True)
class PreferencesSnapshot:
    feeds: tuple[FeedConfig, ...]
    global_keywords: GlobalKeywordSet
    refresh_interval_seconds: float

    def enabled_feeds(self) -> tuple[FeedConfig, ...]:
        return tuple(f for f in self.feeds if f.enabled)


class Preferences:
    """
    运行期配置：由调用方创建并注入（不是进程级单例）。

    - 读取：snapshot() 返回不可变快照，可在任意线程使用
    - 修改：set_* 写入 KeyValueStore 并向订阅者发出 ConfigChange 事件
      （值未变化时不发事件）
    - 订阅者在修改者的线程上被同步调用，应只做入队之类的轻量操作
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        feeds: Iterable[FeedConfig] = (),
        keywords: Iterable[str] = (),
        negative_keywords: Iterable[str] = (),
        refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._listeners: list[ChangeListener] = []
        self._snapshot = PreferencesSnapshot(
            feeds=tuple(feeds),
            global_keywords=GlobalKeywordSet(positive=tuple(keywords), negative=tuple(negative_keywords)),
            refresh_interval_seconds=float(refresh_interval_seconds),
        )

    @classmethod
    def load(cls, store: KeyValueStore, defaults: AppConfig | None = None) -> Preferences:
        """
        优先使用存储中已持久化的值，缺失或损坏时退回配置文件中的初始值。
        """
        feeds: tuple[FeedConfig, ...] = defaults.feeds if defaults else ()
        keywords: tuple[str, ...] = defaults.keywords if defaults else ()
        negative_keywords: tuple[str, ...] = defaults.negative_keywords if defaults else ()
        refresh_interval: float = (
            defaults.refresh_interval_seconds if defaults else DEFAULT_REFRESH_INTERVAL_SECONDS
        )

        stored_feeds = _load_json(store, KEY_FEEDS)
        if stored_feeds is not None:
            try:
                feeds = parse_feeds(stored_feeds, where=KEY_FEEDS)
            except ValueError:
                logger.exception("stored feeds are invalid; using config defaults")

        stored_keywords = _load_json(store, KEY_KEYWORDS)
        if isinstance(stored_keywords, list):
            keywords = tuple(str(x) for x in stored_keywords)

        stored_negative = _load_json(store, KEY_NEGATIVE_KEYWORDS)
        if isinstance(stored_negative, list):
            negative_keywords = tuple(str(x) for x in stored_negative)

        stored_interval = _load_json(store, KEY_REFRESH_INTERVAL)
        if isinstance(stored_interval, (int, float)) and not isinstance(stored_interval, bool) and stored_interval > 0:
            refresh_interval = float(stored_interval)

        return cls(
            store,
            feeds=feeds,
            keywords=keywords,
            negative_keywords=negative_keywords,
            refresh_interval_seconds=refresh_interval,
        )

    def snapshot(self) -> PreferencesSnapshot:
        return self._snapshot

    @property
    def feeds(self) -> tuple[FeedConfig, ...]:
        return self._snapshot.feeds

    @property
    def global_keywords(self) -> GlobalKeywordSet:
        return self._snapshot.global_keywords

    @property
    def refresh_interval_seconds(self) -> float:
        return self._snapshot.refresh_interval_seconds

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_keywords(self, keywords: Iterable[str]) -> None:
        value = tuple(keywords)
        with self._lock:
            current = self._snapshot
            if current.global_keywords.positive == value:
                return
            self._snapshot = PreferencesSnapshot(
                feeds=current.feeds,
                global_keywords=GlobalKeywordSet(positive=value, negative=current.global_keywords.negative),
                refresh_interval_seconds=current.refresh_interval_seconds,
            )
            self._store.set(KEY_KEYWORDS, json.dumps(list(value), ensure_ascii=False))
        self._emit(ConfigChange.KEYWORDS)

    def set_negative_keywords(self, negative_keywords: Iterable[str]) -> None:
        value = tuple(negative_keywords)
        with self._lock:
            current = self._snapshot
            if current.global_keywords.negative == value:
                return
            self._snapshot = PreferencesSnapshot(
                feeds=current.feeds,
                global_keywords=GlobalKeywordSet(positive=current.global_keywords.positive, negative=value),
                refresh_interval_seconds=current.refresh_interval_seconds,
            )
            self._store.set(KEY_NEGATIVE_KEYWORDS, json.dumps(list(value), ensure_ascii=False))
        self._emit(ConfigChange.NEGATIVE_KEYWORDS)

    def set_feeds(self, feeds: Iterable[FeedConfig]) -> None:
        value = tuple(feeds)
        with self._lock:
            current = self._snapshot
            if current.feeds == value:
                return
            self._snapshot = PreferencesSnapshot(
                feeds=value,
                global_keywords=current.global_keywords,
                refresh_interval_seconds=current.refresh_interval_seconds,
            )
            self._store.set(KEY_FEEDS, json.dumps([f.to_json_dict() for f in value], ensure_ascii=False))
        self._emit(ConfigChange.FEEDS)

    def set_refresh_interval(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError(f"refresh interval must be positive, got {seconds}")
        value = float(seconds)
        with self._lock:
            current = self._snapshot
            if current.refresh_interval_seconds == value:
                return
            self._snapshot = PreferencesSnapshot(
                feeds=current.feeds,
                global_keywords=current.global_keywords,
                refresh_interval_seconds=value,
            )
            self._store.set(KEY_REFRESH_INTERVAL, json.dumps(value))
        self._emit(ConfigChange.REFRESH_INTERVAL)

    def _emit(self, change: ConfigChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        logger.debug("config changed: change=%s listeners=%d", change.value, len(listeners))
        for listener in listeners:
            try:
                listener(change)
            except Exception:  # noqa: BLE001
                logger.exception("config change listener failed: change=%s", change.value)


def _load_json(store: KeyValueStore, key: str) -> Any:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("stored preference is not valid JSON, ignoring: key=%s", key)
        return None
