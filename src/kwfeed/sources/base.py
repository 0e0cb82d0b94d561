from __future__ import annotations

from typing import Mapping, Protocol

from ..http_utils import HttpResponse
from ..models import FeedConfig


class HttpGetter(Protocol):
    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse: ...


class Fetcher(Protocol):
    """
    拉取接口：对单个已启用的 feed 发起一次请求，成功返回非空字节串，
    失败抛出 FetchFailure 的子类。
    """

    def fetch(self, config: FeedConfig) -> bytes: ...
