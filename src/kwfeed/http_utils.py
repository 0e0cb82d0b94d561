from __future__ import annotations

import ssl
import urllib.request
from dataclasses import dataclass
from typing import Mapping


DEFAULT_USER_AGENT = "kwfeed/0 (RSS reader)"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），用于拉取 feed。

    策略：
    - 单次请求，不做重试；失败后等下一个刷新周期
    - 统一超时、User-Agent
    - urllib 的 HTTPError / URLError / TimeoutError 原样抛出，由调用方归类
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = DEFAULT_USER_AGENT,
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))

        req = urllib.request.Request(url=url, headers=request_headers, method="GET")
        with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
            resp_headers = {k: v for k, v in resp.headers.items()}
            return HttpResponse(
                status=getattr(resp, "status", 200),
                url=resp.geturl(),
                headers=resp_headers,
                body=resp.read(),
            )
