from .base import Fetcher, HttpGetter
from .fetcher import FeedFetcher
from .parser import FeedParser, ParseResult

__all__ = [
    "FeedFetcher",
    "FeedParser",
    "Fetcher",
    "HttpGetter",
    "ParseResult",
]
