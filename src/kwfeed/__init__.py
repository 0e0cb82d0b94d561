"""
kwfeed

通过定时抓取多个 RSS 源，解析出文章后按用户配置的关键词（支持 * / ? 通配符、
正向/负向词、按 feed 选择关键词模式）进行匹配，并维护两个有界、去重、
持续更新的集合（全部文章 / 命中文章）供展示层读取。
"""

from .models import Article, ArticleSnapshot, FeedConfig, GlobalKeywordSet, KeywordMode

__all__ = [
    "Article",
    "ArticleSnapshot",
    "FeedConfig",
    "GlobalKeywordSet",
    "KeywordMode",
]
