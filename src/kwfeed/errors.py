from __future__ import annotations


class FeedError(Exception):
    """
    kwfeed 管道内所有“单个 feed 级别”错误的基类。

    约定：这些错误对整个管道都不是致命的，
    失败的 feed 在本轮只贡献 0 篇文章，下一轮定时刷新时自然恢复。
    """


class FetchFailure(FeedError):
    """
    拉取失败：携带 feed 名称与 URL，便于日志排查。
    """

    def __init__(self, feed_name: str, url: str, reason: str) -> None:
        super().__init__(f"{reason} (feed={feed_name!r} url={url!r})")
        self.feed_name = feed_name
        self.url = url
        self.reason = reason


class InvalidURL(FetchFailure):
    """URL 无法解析，或 scheme 不是 http/https。不会发起任何网络请求。"""


class EmptyResponse(FetchFailure):
    """请求成功但响应体为空。"""


class TransportFailure(FetchFailure):
    """DNS / TLS / 超时 / 传输层错误，或非 2xx 状态码。"""


class ParseFailure(FeedError):
    """
    XML 结构损坏。解析器不会抛出该异常，而是放在 ParseResult.error 中，
    损坏点之前已完整解析的 item 仍然保留。
    """

    def __init__(self, source: str, reason: str, items_before_failure: int) -> None:
        super().__init__(f"{reason} (source={source!r} items_before_failure={items_before_failure})")
        self.source = source
        self.reason = reason
        self.items_before_failure = items_before_failure
