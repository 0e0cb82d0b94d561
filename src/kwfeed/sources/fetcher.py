from __future__ import annotations

import http.client
import logging
import urllib.error
import urllib.parse
from dataclasses import dataclass
from typing import Mapping

from ..errors import EmptyResponse, InvalidURL, TransportFailure
from ..models import FeedConfig
from .base import HttpGetter


logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("http", "https")


def validate_feed_url(config: FeedConfig) -> str:
    """
    只接受带主机名的绝对 http/https URL（scheme 大小写不敏感），否则抛 InvalidURL。
    """
    url = (config.url or "").strip()
    try:
        parsed = urllib.parse.urlsplit(url)
        # 非数字或越界的端口在访问 .port 时才抛 ValueError
        _ = parsed.port
    except ValueError as e:
        raise InvalidURL(config.name, config.url, f"unparsable url: {e}") from e
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InvalidURL(config.name, config.url, f"unsupported scheme: {parsed.scheme!r}")
    if not parsed.netloc:
        raise InvalidURL(config.name, config.url, "url has no host")
    return url


@dataclass(slots=True)
class FeedFetcher:
    """
    单个 feed 的一次性拉取。

    不做重试：失败直接抛出，由调度方记录日志后等待下一个刷新周期。
    """

    http: HttpGetter

    def _headers(self) -> Mapping[str, str]:
        return {"Accept": "application/rss+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"}

    def fetch(self, config: FeedConfig) -> bytes:
        if not config.enabled:
            raise ValueError(f"Feed is disabled: {config.name!r}")

        url = validate_feed_url(config)

        try:
            resp = self.http.get(url, headers=self._headers())
        except urllib.error.HTTPError as e:
            raise TransportFailure(config.name, url, f"http status {e.code}") from e
        except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
            raise TransportFailure(config.name, url, f"{type(e).__name__}: {e}") from e

        if not 200 <= resp.status < 300:
            raise TransportFailure(config.name, url, f"http status {resp.status}")
        if not resp.body:
            raise EmptyResponse(config.name, url, "empty response body")

        logger.debug("feed fetched: feed=%s url=%s bytes=%d", config.name, url, len(resp.body))
        return resp.body
