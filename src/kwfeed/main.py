from __future__ import annotations

import argparse
import logging
import os
import time

from .config import load_config
from .formatter import format_snapshot_text
from .runner import build_pipeline


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="kwfeed", description="Keyword feed monitor (RSS ingestion and matching)")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env KWFEED_LOG_LEVEL or INFO",
    )
    p.add_argument(
        "--status-interval",
        type=int,
        default=None,
        help="Daemon heartbeat interval seconds. Defaults to env KWFEED_STATUS_INTERVAL_SECONDS or 10. Set 0 to disable.",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one fetch cycle, print matched articles and exit")
    mode.add_argument("--daemon", action="store_true", help="Run forever with the configured refresh interval")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _feeds_summary(pipeline) -> str:  # noqa: ANN001
    parts: list[str] = []
    for feed in pipeline.preferences.feeds:
        state = "on" if feed.enabled else "off"
        parts.append(f"{feed.name}({state}, {feed.keyword_mode.value}, {feed.url})")
    return "; ".join(parts) if parts else "<none>"


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("KWFEED_LOG_LEVEL")
    log_level = _resolve_log_level(args.log_level or env_log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("kwfeed")

    config = load_config(args.config)
    pipeline = build_pipeline(config)
    prefs = pipeline.preferences.snapshot()

    status_interval = args.status_interval
    if status_interval is None:
        try:
            status_interval = int(os.environ.get("KWFEED_STATUS_INTERVAL_SECONDS") or 10)
        except Exception:
            status_interval = 10
    status_interval = max(0, int(status_interval))

    mode = "daemon" if args.daemon and not args.once else "once"
    logger.info("kwfeed start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: refresh_interval_seconds=%s sqlite_path=%s keywords=%s negative_keywords=%s",
        prefs.refresh_interval_seconds,
        config.sqlite_path,
        ",".join(prefs.global_keywords.positive) or "<none>",
        ",".join(prefs.global_keywords.negative) or "<none>",
    )
    logger.info("feeds: %s", _feeds_summary(pipeline))
    if not prefs.enabled_feeds():
        logger.warning("no enabled feeds configured; nothing will be fetched")

    if args.once or not args.daemon:
        report = pipeline.run_once()
        logger.info(
            "once done: duration_ms=%d feeds=%d fetched=%d feed_errors=%d parsed=%d inserted=%d all=%d matched=%d",
            report.duration_ms,
            len(report.feeds),
            report.feeds_fetched,
            report.feed_errors,
            report.articles_parsed,
            report.articles_inserted,
            report.all_articles,
            report.matched_articles,
        )
        print(format_snapshot_text(pipeline.store.snapshot()))
        pipeline.stop()
        return 0

    pipeline.start()
    try:
        while True:
            if status_interval <= 0:
                time.sleep(1.0)
                continue
            time.sleep(status_interval)
            snapshot = pipeline.store.snapshot()
            logger.info(
                "daemon alive: all=%d matched=%d refresh_interval_seconds=%s",
                len(snapshot.all_articles),
                len(snapshot.matched_articles),
                pipeline.preferences.refresh_interval_seconds,
            )
    except KeyboardInterrupt:
        logger.info("interrupted, stopping")
    finally:
        pipeline.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
