import os
import sys

import pytest


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def build_rss(items: list[dict[str, str]]) -> bytes:
    """
    用 (title, description, link, pubDate) 字典列表拼一个最小 RSS 2.0 文档。
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">',
        "<channel><title>Channel title</title><link>https://example.com/</link>",
    ]
    for it in items:
        parts.append("<item>")
        for tag in ("title", "description", "link", "pubDate"):
            if tag in it:
                parts.append(f"<{tag}><![CDATA[{it[tag]}]]></{tag}>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "\n".join(parts).encode("utf-8")


@pytest.fixture
def rss_builder():
    return build_rss
