"""
Keyword matching over post text.

Matching is substring containment on normalized text, so "hire" also hits "hired".
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from signal_monitor.services.normalizer import Post

SNIPPET_MAX_LENGTH = 250
ELLIPSIS = "..."

_NON_ALNUM_RE = re.compile(r"[\W_]+")

SIGNAL_TEMPLATES: dict[str, list[str]] = {
    "funding": [
        "raised", "seed round", "series a", "series b", "series c",
        "funding", "backed by", "venture", "investors", "investment", "closing our",
    ],
    "hiring_sales": [
        "hiring sdr", "hiring ae", "building sales team", "first sales hire",
        "account executive", "sales development", "sales manager", "head of sales",
    ],
    "hiring": [
        "hiring", "we are hiring", "join our team", "open roles", "job opening",
        "now hiring", "looking to hire",
    ],
    "new_role": [
        "excited to announce", "thrilled to share", "starting my new", "joined",
        "joining", "new role", "new position", "new chapter", "accepted a position",
        "stepping into",
    ],
    "launch": [
        "launching", "just launched", "now live", "beta", "new product",
        "introducing", "available now", "officially live", "proud to announce",
    ],
    "expansion": [
        "expanding to", "entering market", "scaling operations", "new office",
        "international expansion", "opening office", "global expansion", "new market",
    ],
    "track_all": [
        "raised", "seed round", "series a", "funding", "hiring", "we are hiring",
        "launching", "just launched", "new role", "excited to announce", "expanding to",
    ],
}


@dataclass
class DetectedSignal:
    profile_id: int
    keyword: str
    post_url: str
    post_date: datetime | None
    snippet: str
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        return {
            "keyword": self.keyword,
            "post_url": self.post_url,
            "post_date": self.post_date.isoformat() if self.post_date else None,
            "snippet": self.snippet,
        }


def keywords_for_signal_types(signal_types: Iterable[str]) -> list[str]:
    """Ordered union of template keywords; unknown types are ignored."""
    keywords: list[str] = []
    seen: set[str] = set()
    for signal_type in signal_types:
        for keyword in SIGNAL_TEMPLATES.get(signal_type, []):
            if keyword not in seen:
                seen.add(keyword)
                keywords.append(keyword)
    return keywords


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(_NON_ALNUM_RE.sub(" ", text.lower()).split())


def find_matches(text: str | None, keywords: Iterable[str]) -> list[str]:
    """Keywords (original case, caller order) whose normalized form occurs in the text."""
    haystack = normalize_text(text)
    if not haystack:
        return []
    matches: list[str] = []
    for keyword in keywords:
        needle = normalize_text(keyword)
        if needle and needle in haystack:
            matches.append(keyword)
    return matches


def extract_snippet(text: str | None, max_length: int = SNIPPET_MAX_LENGTH) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space] + ELLIPSIS
    return truncated + ELLIPSIS


def process_post(
    post: Post,
    keywords: Iterable[str],
    profile_id: int,
    *,
    max_snippet_length: int = SNIPPET_MAX_LENGTH,
    now: datetime | None = None,
) -> list[DetectedSignal]:
    matched = find_matches(post.text, keywords)
    if not matched:
        return []
    snippet = extract_snippet(post.text, max_snippet_length)
    detected_at = now or datetime.now(timezone.utc)
    return [
        DetectedSignal(
            profile_id=profile_id,
            keyword=keyword,
            post_url=post.url,
            post_date=post.posted_at,
            snippet=snippet,
            detected_at=detected_at,
        )
        for keyword in matched
    ]
