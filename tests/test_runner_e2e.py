import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from dataclasses import field

from kwfeed.config import Preferences
from kwfeed.http_utils import HttpResponse
from kwfeed.models import FeedConfig, KeywordMode
from kwfeed.runner import Pipeline
from kwfeed.sources.fetcher import FeedFetcher
from kwfeed.sources.parser import FeedParser
from kwfeed.state.article_store import ArticleStore
from kwfeed.state.store import MemoryKeyValueStore

from conftest import build_rss


@dataclass
class FakeHttp:
    """
    纯内存 HTTP：按 URL 返回预设的 RSS 文档，记录每次请求的 URL。
    """

    bodies: dict[str, bytes]
    urls: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, url: str, *, headers=None) -> HttpResponse:  # noqa: ANN001
        with self._lock:
            self.urls.append(url)
        if url not in self.bodies:
            raise ConnectionRefusedError(f"no route to {url}")
        return HttpResponse(status=200, url=url, headers={}, body=self.bodies[url])

    def calls(self) -> int:
        with self._lock:
            return len(self.urls)


TECH = FeedConfig(id="tech", url="https://tech.example.com/rss", name="Tech")
NEWS = FeedConfig(
    id="news",
    url="https://news.example.com/rss",
    name="News",
    keyword_mode=KeywordMode.COMBINED,
    keywords=("election",),
)


def _bodies() -> dict[str, bytes]:
    return {
        TECH.url: build_rss(
            [
                {"title": "Python 3.14 released", "description": "<p>New python features</p>", "link": "https://tech.example.com/1"},
                {"title": "Spam offer", "description": "buy now, python", "link": "https://tech.example.com/2"},
                {"title": "Rust and Python", "description": "interop", "link": "https://tech.example.com/3"},
            ]
        ),
        NEWS.url: build_rss(
            [
                {"title": "Election results", "description": "counting continues", "link": "https://news.example.com/1"},
                {"title": "Weather", "description": "sunny", "link": "https://news.example.com/2"},
            ]
        ),
    }


def _pipeline(http: FakeHttp, feeds=(TECH, NEWS), **prefs) -> Pipeline:  # noqa: ANN001, ANN003
    preferences = Preferences(MemoryKeyValueStore(), feeds=feeds, **prefs)
    return Pipeline(
        preferences=preferences,
        fetcher=FeedFetcher(http=http),
        parser=FeedParser(),
        store=ArticleStore(),
    )


def test_run_once_fetches_parses_and_matches() -> None:
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, keywords=("python", "rust"))
    try:
        report = pipeline.run_once()
    finally:
        pipeline.stop()

    assert sorted(http.urls) == sorted([TECH.url, NEWS.url])
    assert report.feeds_fetched == 2
    assert report.feed_errors == 0
    assert report.articles_parsed == 5
    assert report.articles_inserted == 5
    assert report.all_articles == 5

    matched = pipeline.store.matched_articles
    assert [a.title for a in matched][:1] == ["Rust and Python"]
    assert {a.title for a in matched} == {"Rust and Python", "Python 3.14 released", "Spam offer", "Election results"}
    election = next(a for a in matched if a.source == "News")
    assert election.matched_keywords == ("election",)
    assert next(a for a in matched if a.title == "Python 3.14 released").snippet == "New python features"


def test_run_once_twice_does_not_duplicate() -> None:
    bodies = _bodies()
    http = FakeHttp(bodies=bodies)
    pipeline = _pipeline(http, feeds=(TECH,))
    try:
        first = pipeline.run_once()
        bodies[TECH.url] = build_rss(
            [
                {"title": "Python 3.14 released", "link": "https://tech.example.com/1"},
                {"title": "Brand new", "link": "https://tech.example.com/4"},
            ]
        )
        second = pipeline.run_once()
    finally:
        pipeline.stop()

    assert first.all_articles == 3
    assert second.articles_inserted == 1
    assert second.feeds[0].skipped_duplicate == 1
    assert second.all_articles == 4


def test_failed_feed_is_reported_and_others_continue(caplog) -> None:  # noqa: ANN001
    broken = FeedConfig(id="broken", url="https://down.example.com/rss", name="Down")
    invalid = FeedConfig(id="invalid", url="ftp://example.com/rss", name="Ftp")
    disabled = FeedConfig(id="off", url="https://tech.example.com/off", name="Off", enabled=False)
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, feeds=(TECH, broken, invalid, disabled))

    caplog.set_level(logging.WARNING)
    try:
        report = pipeline.run_once()
    finally:
        pipeline.stop()

    assert len(report.feeds) == 3
    assert report.feeds_fetched == 1
    assert report.feed_errors == 2
    assert report.all_articles == 3
    errors = {r.feed_name: r.error for r in report.feeds}
    assert errors["Tech"] is None
    assert errors["Down"].startswith("TransportFailure")
    assert errors["Ftp"].startswith("InvalidURL")
    assert "https://tech.example.com/off" not in http.urls
    assert "ftp://example.com/rss" not in http.urls
    assert "feed fetch failed" in caplog.text


def test_malformed_feed_keeps_partial_items(caplog) -> None:  # noqa: ANN001
    http = FakeHttp(
        bodies={
            TECH.url: b"<rss><channel><item><title>Kept</title><link>https://tech.example.com/k</link></item><item><title>Lost",
        }
    )
    pipeline = _pipeline(http, feeds=(TECH,))
    try:
        report = pipeline.run_once()
    finally:
        pipeline.stop()

    assert [a.title for a in pipeline.store.all_articles] == ["Kept"]
    assert report.feeds[0].parse_error is not None
    assert "feed parse failed" in caplog.text


def test_negative_keyword_change_reprocesses_existing_articles() -> None:
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, keywords=("python",))
    pipeline.trigger.attach()
    try:
        pipeline.run_once()
        assert any(a.title == "Spam offer" for a in pipeline.store.all_articles)

        pipeline.preferences.set_negative_keywords(["spam"])
        pipeline.worker.join()

        titles = [a.title for a in pipeline.store.all_articles]
        assert "Spam offer" not in titles
        assert len(titles) == 4
        assert all(not a.matches_negative_keyword for a in pipeline.store.matched_articles)
    finally:
        pipeline.stop()


def test_feed_mode_change_reprocesses_by_source_name() -> None:
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, keywords=("python",))
    pipeline.trigger.attach()
    try:
        pipeline.run_once()
        news_only = dataclasses.replace(NEWS, keyword_mode=KeywordMode.FEED_ONLY, keywords=("weather",))
        pipeline.preferences.set_feeds([TECH, news_only])
        pipeline.worker.join()

        news = {a.title: a.matched_keywords for a in pipeline.store.all_articles if a.source == "News"}
        assert news == {"Election results": (), "Weather": ("weather",)}
    finally:
        pipeline.stop()
    # 未 start() 时修改 feed 列表只重新处理，不会抓取
    assert len(http.urls) == 2


def test_start_fetches_immediately_and_timer_follows_interval_changes() -> None:
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, feeds=(TECH,), refresh_interval_seconds=3600)
    try:
        pipeline.start()
        assert pipeline.started

        deadline = time.monotonic() + 2.0
        while http.calls() < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert http.calls() == 1

        pipeline.preferences.set_refresh_interval(0.05)
        deadline = time.monotonic() + 2.0
        while http.calls() < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert http.calls() >= 3
    finally:
        pipeline.stop()

    assert not pipeline.started
    time.sleep(0.1)
    settled = http.calls()
    time.sleep(0.2)
    assert http.calls() == settled


@dataclass
class BlockingHttp(FakeHttp):
    """
    get() 在 release 之前一直阻塞，用来构造“抓取进行中配置被修改”的时序。
    """

    entered: threading.Event = field(default_factory=threading.Event)
    release: threading.Event = field(default_factory=threading.Event)

    def get(self, url: str, *, headers=None) -> HttpResponse:  # noqa: ANN001
        self.entered.set()
        assert self.release.wait(5.0)
        return super().get(url, headers=headers)


def _fetch_with_config_change(change) -> Pipeline:  # noqa: ANN001
    http = BlockingHttp(bodies=_bodies())
    feed = dataclasses.replace(TECH, keyword_mode=KeywordMode.COMBINED)
    pipeline = _pipeline(http, feeds=(feed,), keywords=("python",))
    pipeline.worker.start()
    pipeline.trigger.attach()

    threads = pipeline.fetch_all()
    assert http.entered.wait(2.0)
    change(pipeline.preferences, feed)
    pipeline.worker.join()

    http.release.set()
    for t in threads:
        t.join(2.0)
    pipeline.worker.join()
    return pipeline


def test_batch_fetched_before_negative_keyword_change_uses_new_keywords() -> None:
    pipeline = _fetch_with_config_change(
        lambda prefs, feed: prefs.set_feeds([dataclasses.replace(feed, negative_keywords=("spam",))])
    )
    try:
        titles = [a.title for a in pipeline.store.all_articles]
        assert titles == ["Python 3.14 released", "Rust and Python"]
        assert "Spam offer" not in [a.title for a in pipeline.store.matched_articles]
    finally:
        pipeline.stop()


def test_batch_for_feed_disabled_during_fetch_is_dropped() -> None:
    pipeline = _fetch_with_config_change(lambda prefs, feed: prefs.set_feeds([dataclasses.replace(feed, enabled=False)]))
    try:
        assert pipeline.store.all_articles == ()
    finally:
        pipeline.stop()


def test_batch_for_feed_removed_during_fetch_is_dropped() -> None:
    pipeline = _fetch_with_config_change(lambda prefs, feed: prefs.set_feeds([]))
    try:
        assert pipeline.store.all_articles == ()
    finally:
        pipeline.stop()


def test_adding_feed_while_started_fetches_it_immediately() -> None:
    http = FakeHttp(bodies=_bodies())
    pipeline = _pipeline(http, feeds=(), refresh_interval_seconds=3600)
    try:
        pipeline.start()
        pipeline.preferences.set_feeds([TECH])

        deadline = time.monotonic() + 2.0
        while len(pipeline.store.all_articles) < 3 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert http.urls == [TECH.url]
        assert len(pipeline.store.all_articles) == 3
    finally:
        pipeline.stop()


def test_fetch_finishing_after_stop_is_not_queued() -> None:
    http = BlockingHttp(bodies=_bodies())
    pipeline = _pipeline(http, feeds=(TECH,))
    pipeline.worker.start()
    threads = pipeline.fetch_all()
    assert http.entered.wait(2.0)

    pipeline.stop()
    http.release.set()
    for t in threads:
        t.join(2.0)

    assert not pipeline.worker.running
    assert pipeline.store.all_articles == ()
    assert pipeline.worker.submit(lambda: None) is False
