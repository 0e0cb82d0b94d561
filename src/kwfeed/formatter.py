from __future__ import annotations

from .models import Article, ArticleSnapshot
from .rules.matcher import highlight


def highlight_text(text: str, keywords: tuple[str, ...]) -> str:
    """把命中的关键词用方括号标出，例如 "new [Python] release"。"""
    return "".join(f"[{s.text}]" if s.is_keyword else s.text for s in highlight(text, keywords))


def format_article_text(article: Article) -> str:
    """
    统一的纯文本格式，供 --once 模式输出。
    """
    keywords = ", ".join(article.matched_keywords) or "-"
    lines = [
        highlight_text(article.title, article.matched_keywords),
        f"source: {article.source}",
        f"url: {article.url or '-'}",
        f"published_at: {article.published_at.isoformat()}",
        f"priority: {article.priority}",
        f"matched_keywords: {keywords}",
    ]
    if article.snippet:
        lines.append("")
        lines.append(highlight_text(article.snippet, article.matched_keywords))
    return "\n".join(lines)


def format_snapshot_text(snapshot: ArticleSnapshot) -> str:
    header = f"kwfeed: all_articles={len(snapshot.all_articles)} matched_articles={len(snapshot.matched_articles)}"
    blocks = [header]
    for i, article in enumerate(snapshot.matched_articles, start=1):
        blocks.append(f"#{i} {format_article_text(article)}")
    return "\n\n".join(blocks)
