# =============================================
# File: storefront/client/tags.py
# Purpose: Derive the tag list sent with a tracked product or blog interaction
# =============================================
"""
Usage:

    tracker.track_view(post["id"], "blog", tags=blog_tags(post))
    tracker.track_click(product["id"], "product", tags=product_tags(product))
"""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping

TITLE_KEYWORDS = 3
MIN_KEYWORD_LEN = 4


def _field(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _unique(tags: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates, first occurrence wins."""
    return list(dict.fromkeys(t.strip() for t in tags if isinstance(t, str) and t.strip()))


def product_tags(product: Any) -> List[str]:
    raw = _field(product, "tags")
    if not isinstance(raw, list):
        return []
    return _unique(raw)


def title_keywords(title: str, count: int = TITLE_KEYWORDS) -> List[str]:
    """First `count` lowercased title words longer than three characters."""
    words = [w for w in re.split(r"\s+", (title or "").lower()) if len(w) >= MIN_KEYWORD_LEN]
    return words[:count]


def blog_tags(post: Any) -> List[str]:
    """
    Tags of a blog post, in order:

    - its tag relationship (plain strings or records with a `name`)
    - its category name
    - the first three significant words of its title
    """
    tags: List[str] = []
    raw = _field(post, "tags")
    if isinstance(raw, list):
        for t in raw:
            tags.append(t if isinstance(t, str) else _field(t, "name") or "")

    category = _field(post, "category")
    if category is not None:
        name = _field(category, "name")
        if name:
            tags.append(name)

    title = _field(post, "title")
    if isinstance(title, str):
        tags.extend(title_keywords(title))
    return _unique(tags)
