import json
import os
import sys
import tempfile
import unittest


sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))


from kwfeed.config import (  # noqa: E402
    KEY_KEYWORDS,
    KEY_REFRESH_INTERVAL,
    ConfigChange,
    Preferences,
    load_config,
)
from kwfeed.models import FeedConfig, KeywordMode  # noqa: E402
from kwfeed.runner import build_pipeline  # noqa: E402
from kwfeed.state.sqlite_store import SqliteKeyValueStore  # noqa: E402
from kwfeed.state.store import MemoryKeyValueStore  # noqa: E402


def _write_config(td: str, cfg: dict) -> str:
    path = os.path.join(td, "config.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(cfg, f, ensure_ascii=False)
    return path


class TestConfigAndBuild(unittest.TestCase):
    def test_load_config_parses_feeds_and_keywords(self) -> None:
        cfg = {
            "refresh_interval_seconds": 600,
            "keywords": ["python", "rust*"],
            "negative_keywords": ["sponsored"],
            "feeds": [
                {"id": "hn", "name": "HN", "url": "https://hnrss.org/frontpage", "keywordMode": "Feed Only", "keywords": ["llm"]},
                {"name": "Blog", "url": "https://example.com/rss", "enabled": False},
            ],
            "state": {"sqlite_path": ":memory:"},
            "http": {"timeout_seconds": 5, "user_agent": "test-agent"},
        }
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, cfg))

        self.assertEqual(config.refresh_interval_seconds, 600)
        self.assertEqual(config.keywords, ("python", "rust*"))
        self.assertEqual(config.negative_keywords, ("sponsored",))
        self.assertEqual(config.sqlite_path, ":memory:")
        self.assertEqual(config.http.timeout_seconds, 5.0)
        self.assertEqual(config.http.user_agent, "test-agent")

        self.assertEqual(len(config.feeds), 2)
        hn, blog = config.feeds
        self.assertEqual(hn.id, "hn")
        self.assertEqual(hn.keyword_mode, KeywordMode.FEED_ONLY)
        self.assertEqual(hn.keywords, ("llm",))
        self.assertFalse(blog.enabled)
        self.assertEqual(blog.keyword_mode, KeywordMode.GLOBAL_ONLY)

    def test_load_config_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, {}))
        self.assertEqual(config.refresh_interval_seconds, 1800)
        self.assertEqual(config.feeds, ())
        self.assertEqual(config.sqlite_path, "./kwfeed_state.sqlite3")
        self.assertTrue(config.http.verify_ssl)

    def test_non_positive_refresh_interval_falls_back_to_default(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, {"refresh_interval_seconds": 0, "http": {"verify_ssl": False}}))
        self.assertEqual(config.refresh_interval_seconds, 1800)
        self.assertFalse(config.http.verify_ssl)

    def test_load_config_rejects_non_list_feeds(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = _write_config(td, {"feeds": {"name": "x"}})
            with self.assertRaises(ValueError):
                load_config(path)

    def test_build_pipeline_wires_preferences(self) -> None:
        cfg = {
            "refresh_interval_seconds": 120,
            "keywords": ["deepseek"],
            "feeds": [{"name": "HN", "url": "https://hnrss.org/frontpage"}],
            "state": {"sqlite_path": ":memory:"},
        }
        with tempfile.TemporaryDirectory() as td:
            config = load_config(_write_config(td, cfg))
        pipeline = build_pipeline(config)

        prefs = pipeline.preferences.snapshot()
        self.assertEqual(prefs.refresh_interval_seconds, 120.0)
        self.assertEqual(prefs.global_keywords.positive, ("deepseek",))
        self.assertEqual([f.name for f in prefs.enabled_feeds()], ["HN"])
        self.assertEqual(pipeline.store.all_articles, ())
        self.assertFalse(pipeline.started)

    def test_build_pipeline_prefers_persisted_preferences(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            config = load_config(
                _write_config(td, {"keywords": ["seed"], "state": {"sqlite_path": db}, "refresh_interval_seconds": 60})
            )

            first = build_pipeline(config)
            first.preferences.set_keywords(["persisted"])
            first.preferences.set_refresh_interval(90)

            second = build_pipeline(config)
            self.assertEqual(second.preferences.global_keywords.positive, ("persisted",))
            self.assertEqual(second.preferences.refresh_interval_seconds, 90.0)


class TestPreferences(unittest.TestCase):
    def test_change_events_only_when_value_changes(self) -> None:
        prefs = Preferences(MemoryKeyValueStore(), keywords=("a",))
        changes: list[ConfigChange] = []
        prefs.subscribe(changes.append)

        prefs.set_keywords(["a"])
        prefs.set_keywords(["a", "b"])
        prefs.set_negative_keywords(["spam"])
        prefs.set_negative_keywords(["spam"])
        prefs.set_feeds([FeedConfig(id="f", url="https://example.com/rss", name="Ex")])
        prefs.set_refresh_interval(1800)
        prefs.set_refresh_interval(300)

        self.assertEqual(
            changes,
            [ConfigChange.KEYWORDS, ConfigChange.NEGATIVE_KEYWORDS, ConfigChange.FEEDS, ConfigChange.REFRESH_INTERVAL],
        )

    def test_setters_persist_json(self) -> None:
        store = MemoryKeyValueStore()
        prefs = Preferences(store)
        prefs.set_keywords(["数据", "ai"])
        prefs.set_refresh_interval(45)
        self.assertEqual(json.loads(store.get(KEY_KEYWORDS) or "null"), ["数据", "ai"])
        self.assertEqual(json.loads(store.get(KEY_REFRESH_INTERVAL) or "null"), 45.0)

        reloaded = Preferences.load(store)
        self.assertEqual(reloaded.global_keywords.positive, ("数据", "ai"))
        self.assertEqual(reloaded.refresh_interval_seconds, 45.0)

    def test_refresh_interval_must_be_positive(self) -> None:
        prefs = Preferences(MemoryKeyValueStore())
        for bad in (0, -5):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    prefs.set_refresh_interval(bad)
        self.assertEqual(prefs.refresh_interval_seconds, 1800.0)

    def test_feeds_roundtrip_through_store(self) -> None:
        store = MemoryKeyValueStore()
        feed = FeedConfig(
            id="f1",
            url="https://example.com/rss",
            name="Example",
            keyword_mode=KeywordMode.COMBINED,
            keywords=("go",),
            negative_keywords=("ads",),
        )
        Preferences(store).set_feeds([feed])
        self.assertEqual(Preferences.load(store).feeds, (feed,))

    def test_invalid_stored_value_falls_back_to_defaults(self) -> None:
        store = MemoryKeyValueStore({KEY_KEYWORDS: "not json"})
        prefs = Preferences.load(store)
        self.assertEqual(prefs.global_keywords.positive, ())

    def test_failing_listener_does_not_stop_others(self) -> None:
        prefs = Preferences(MemoryKeyValueStore())
        seen: list[ConfigChange] = []

        def boom(_change: ConfigChange) -> None:
            raise RuntimeError("listener boom")

        prefs.subscribe(boom)
        prefs.subscribe(seen.append)
        with self.assertLogs("kwfeed.config", level="ERROR"):
            prefs.set_keywords(["x"])
        self.assertEqual(seen, [ConfigChange.KEYWORDS])


class TestSqliteBackedPreferences(unittest.TestCase):
    def test_sqlite_store_survives_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db = os.path.join(td, "state.sqlite3")
            store = SqliteKeyValueStore(db)
            store.ensure_schema()
            Preferences(store).set_negative_keywords(["spam"])

            reopened = SqliteKeyValueStore(db)
            reopened.ensure_schema()
            self.assertEqual(Preferences.load(reopened).global_keywords.negative, ("spam",))
