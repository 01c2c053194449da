"""
Result normalizer: maps provider-shaped Apify records into canonical shapes.

Field extraction is table driven. Each provider id declares, per canonical field,
an ordered list of named extractors; the first one that yields a non-empty value
wins. Adding a provider means adding a table entry, not another ``or`` chain.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Iterable
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

PROVIDER_PROFILE_POSTS = "linkedin-profile-posts"
PROVIDER_POST_REACTIONS = "post-reactions"
PROVIDER_POST_COMMENTS = "post-comments"

MAX_POSTS_PER_PROFILE = 3

REACTION_LABELS = {
    "LIKE": "Like",
    "PRAISE": "Love",
    "EMPATHY": "Insightful",
    "APPRECIATION": "Celebrate",
    "INTEREST": "Curious",
    "SUPPORT": "Support",
    "FUNNY": "Funny",
}
DEFAULT_REACTION_LABEL = "Like"
COMMENT_LABEL = "Comment"

_SCHEME_RE = re.compile(r"^https?://(www\.)?")


# ── Canonical shapes ─────────────────────────────────────────

@dataclass
class Post:
    text: str
    url: str
    posted_at: datetime | None = None


@dataclass
class ProfilePosts:
    linkedin_url: str
    posts: list[Post] = field(default_factory=list)


@dataclass
class Reaction:
    profile_url: str
    reaction_type: str


@dataclass
class Comment:
    profile_url: str
    comment_text: str


@dataclass
class ProfileInfo:
    linkedin_url: str
    full_name: str = "Unknown"
    job_title: str = ""
    location: str = ""
    connections_count: int = 0
    follower_count: int = 0
    company_name: str = ""
    company_linkedin_url: str = ""
    company_id: str | None = None
    needs_company_enrichment: bool = False

    @classmethod
    def fallback(cls, linkedin_url: str) -> "ProfileInfo":
        return cls(linkedin_url=linkedin_url)


@dataclass
class CompanyInfo:
    name: str = ""
    industry: str = ""
    employee_size: str = ""
    location: str = ""
    linkedin_url: str = ""


# ── Extractor tables ─────────────────────────────────────────

Extractor = tuple[str, Callable[[dict], Any]]


def _path(*keys: str) -> Callable[[dict], Any]:
    def get(item: dict) -> Any:
        value: Any = item
        for key in keys:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return get


def _without_query(getter: Callable[[dict], Any]) -> Callable[[dict], Any]:
    def get(item: dict) -> Any:
        value = getter(item)
        if isinstance(value, str):
            return value.split("?", 1)[0]
        return value

    return get


def _named(*keys: str) -> Extractor:
    return ".".join(keys), _path(*keys)


PROVIDER_EXTRACTORS: dict[str, dict[str, list[Extractor]]] = {
    PROVIDER_PROFILE_POSTS: {
        "profile_url": [
            ("query.targetUrl", _path("query", "targetUrl")),
            ("author.linkedinUrl", _without_query(_path("author", "linkedinUrl"))),
            _named("profileUrl"),
            _named("linkedin_url"),
        ],
        "text": [_named("content"), _named("text"), _named("description"), _named("body")],
        "post_url": [
            _named("linkedinUrl"),
            _named("url"),
            _named("postUrl"),
            _named("link"),
            _named("shareUrl"),
        ],
        "post_date": [
            _named("postedAt", "date"),
            _named("postedAt", "timestamp"),
            _named("date"),
            _named("postedDate"),
            _named("timestamp"),
            _named("createdAt"),
        ],
    },
    PROVIDER_POST_REACTIONS: {
        "profile_url": [_named("reactor", "profile_url"), _named("reactor_profile_url")],
        "reaction_type": [_named("reaction_type"), _named("reactionType")],
    },
    PROVIDER_POST_COMMENTS: {
        "profile_url": [_named("actor", "linkedinUrl"), _named("author", "linkedinUrl"), _named("profileUrl")],
        "comment_text": [_named("commentary"), _named("text"), _named("comment")],
    },
}


def extractors_for(provider: str, field_name: str) -> list[Extractor]:
    try:
        return PROVIDER_EXTRACTORS[provider][field_name]
    except KeyError:
        raise ValueError(f"No extractors for {provider}.{field_name}") from None


def extract_field(item: dict, provider: str, field_name: str) -> Any:
    """Return the first non-empty value produced by the provider's extractors."""
    for _name, getter in extractors_for(provider, field_name):
        value = getter(item)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


# ── URLs ─────────────────────────────────────────────────────

def normalize_profile_url(url: str | None) -> str:
    """Comparison form of a profile URL: no scheme, www, query, or trailing slash."""
    if not url:
        return ""
    value = url.strip().lower()
    value = value.split("#", 1)[0].split("?", 1)[0]
    value = _SCHEME_RE.sub("", value)
    return value.rstrip("/")


def match_to_request(raw_item: dict, requested_urls: Iterable[str], provider: str = PROVIDER_PROFILE_POSTS) -> str | None:
    """Return the originally requested URL this raw item belongs to, if any."""
    item_url = extract_field(raw_item, provider, "profile_url")
    if not isinstance(item_url, str):
        return None
    return match_url(item_url, requested_urls)


def match_url(url: str, requested_urls: Iterable[str]) -> str | None:
    target = normalize_profile_url(url)
    if not target:
        return None
    for requested in requested_urls:
        if normalize_profile_url(requested) == target:
            return requested
    return None


def company_needs_enrichment(company_url: str | None) -> bool:
    """True when the company URL carries a slug; bare numeric ids are skipped."""
    if not company_url:
        return False
    path = urlsplit(company_url.strip()).path
    segments = [s for s in path.split("/") if s]
    try:
        idx = [s.lower() for s in segments].index("company")
    except ValueError:
        return False
    if idx + 1 >= len(segments):
        return False
    return not segments[idx + 1].isdigit()


# ── Dates ────────────────────────────────────────────────────

def parse_date(raw: Any) -> datetime | None:
    """Parse a provider timestamp into an aware UTC datetime; None when unparsable."""
    if raw is None or raw == "":
        return None
    try:
        if isinstance(raw, datetime):
            value = raw
        elif isinstance(raw, bool):
            return None
        elif isinstance(raw, (int, float)):
            value = _from_epoch(raw)
        else:
            text = str(raw).strip()
            if not text:
                return None
            if re.fullmatch(r"\d+(\.\d+)?", text):
                value = _from_epoch(float(text))
            else:
                try:
                    value = datetime.fromisoformat(text.replace("Z", "+00:00"))
                except ValueError:
                    value = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError, OverflowError, OSError):
        logger.warning("Failed to parse date: %r", raw)
        return None
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch(value: float) -> datetime:
    # millisecond timestamps are 13 digits for any date after 2001
    if value > 1e11:
        value = value / 1000
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ── Posts ────────────────────────────────────────────────────

def extract_posts(raw_posts: Any, max_posts: int = MAX_POSTS_PER_PROFILE, provider: str = PROVIDER_PROFILE_POSTS) -> list[Post]:
    """Canonical posts from a group of raw records; entries without text or URL are dropped."""
    if isinstance(raw_posts, dict):
        raw_posts = raw_posts.get("posts") if isinstance(raw_posts.get("posts"), list) else [raw_posts]
    posts: list[Post] = []
    for raw in list(raw_posts or [])[:max_posts]:
        if not isinstance(raw, dict):
            continue
        text = extract_field(raw, provider, "text")
        url = extract_field(raw, provider, "post_url")
        if not isinstance(text, str) or not isinstance(url, str):
            continue
        posts.append(Post(text=text, url=url, posted_at=parse_date(extract_field(raw, provider, "post_date"))))
    return posts


def group_posts_by_profile(
    raw_items: Iterable[dict],
    requested_urls: list[str],
    *,
    provider: str = PROVIDER_PROFILE_POSTS,
    max_posts: int = MAX_POSTS_PER_PROFILE,
) -> list[ProfilePosts]:
    """Group flat post records (or profile containers) by profile and match each group to a request."""
    groups: dict[str, list[dict]] = {}
    first_item: dict[str, dict] = {}
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        profile_url = extract_field(item, provider, "profile_url")
        if not isinstance(profile_url, str):
            logger.warning("Dropping record without a profile URL: keys=%s", sorted(item.keys())[:10])
            continue
        key = normalize_profile_url(profile_url)
        first_item.setdefault(key, item)
        if isinstance(item.get("posts"), list):
            groups.setdefault(key, []).extend(p for p in item["posts"] if isinstance(p, dict))
        else:
            groups.setdefault(key, []).append(item)

    results: list[ProfilePosts] = []
    for key, posts in groups.items():
        matched = match_to_request(first_item[key], requested_urls, provider)
        if not matched:
            logger.warning("Could not match profile URL to a requested URL: %s", key)
            continue
        results.append(ProfilePosts(linkedin_url=matched, posts=extract_posts(posts, max_posts, provider)))
    return results


# ── Engagement records ───────────────────────────────────────

def map_reaction_type(raw: Any) -> str:
    if not raw:
        return DEFAULT_REACTION_LABEL
    return REACTION_LABELS.get(str(raw).upper(), str(raw))


def map_reactions(raw_items: Iterable[dict]) -> list[Reaction]:
    reactions: list[Reaction] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        url = extract_field(item, PROVIDER_POST_REACTIONS, "profile_url")
        if not isinstance(url, str):
            continue
        reactions.append(
            Reaction(profile_url=url, reaction_type=map_reaction_type(extract_field(item, PROVIDER_POST_REACTIONS, "reaction_type")))
        )
    return reactions


def map_comments(raw_items: Iterable[dict]) -> list[Comment]:
    comments: list[Comment] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        url = extract_field(item, PROVIDER_POST_COMMENTS, "profile_url")
        if not isinstance(url, str):
            continue
        text = extract_field(item, PROVIDER_POST_COMMENTS, "comment_text")
        comments.append(Comment(profile_url=url, comment_text=text if isinstance(text, str) else ""))
    return comments


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def map_profile(raw: dict, requested_url: str) -> ProfileInfo:
    headline = raw.get("headline") or ""
    job_title = headline
    company_name = ""
    company_url = ""
    company_id = None

    experience = raw.get("experience") or []
    current_position = raw.get("currentPosition") or []
    # experience entries carry slug company URLs; currentPosition often only numeric ids
    if experience and isinstance(experience[0], dict):
        role = experience[0]
        job_title = role.get("position") or headline
        company_name = role.get("companyName") or ""
        company_url = role.get("companyLinkedinUrl") or ""
        company_id = role.get("companyId")
    elif current_position and isinstance(current_position[0], dict):
        role = current_position[0]
        company_name = role.get("companyName") or ""
        company_url = role.get("companyLinkedinUrl") or ""
        company_id = role.get("companyId")
        logger.debug("Using currentPosition fallback for %s", requested_url)

    location = ""
    loc = raw.get("location")
    if isinstance(loc, dict):
        location = (loc.get("parsed") or {}).get("text") or loc.get("linkedinText") or ""
    elif isinstance(loc, str):
        location = loc

    full_name = f"{raw.get('firstName') or ''} {raw.get('lastName') or ''}".strip()
    return ProfileInfo(
        linkedin_url=raw.get("linkedinUrl") or requested_url,
        full_name=full_name or "Unknown",
        job_title=job_title,
        location=location,
        connections_count=_to_int(raw.get("connectionsCount")),
        follower_count=_to_int(raw.get("followerCount")),
        company_name=company_name,
        company_linkedin_url=company_url,
        company_id=str(company_id) if company_id is not None else None,
        needs_company_enrichment=company_needs_enrichment(company_url),
    )


def format_employee_count(count: Any) -> str:
    if not count:
        return ""
    try:
        num = int(count)
    except (TypeError, ValueError):
        return str(count)
    for upper, label in (
        (10, "1-10"),
        (50, "11-50"),
        (200, "51-200"),
        (500, "201-500"),
        (1000, "501-1000"),
        (5000, "1001-5000"),
        (10000, "5001-10000"),
    ):
        if num <= upper:
            return f"{label} employees"
    return "10000+ employees"


def map_company(raw: dict, requested_url: str) -> CompanyInfo:
    if raw.get("staffCount"):
        employee_size = str(raw["staffCount"])
    elif raw.get("employeeCount"):
        employee_size = format_employee_count(raw["employeeCount"])
    else:
        employee_size = str(raw.get("companySize") or "")

    location = ""
    hq = raw.get("headquarters")
    if isinstance(hq, dict) and hq:
        city, state, country = hq.get("city"), hq.get("state"), hq.get("country")
        if city and state:
            location = f"{city}, {state}"
        elif city and country:
            location = f"{city}, {country}"
        elif city:
            location = city
    elif isinstance(raw.get("location"), str):
        location = raw["location"]

    industries = raw.get("industries") or []
    return CompanyInfo(
        name=raw.get("name") or "",
        industry=raw.get("industry") or (industries[0] if industries and isinstance(industries[0], str) else ""),
        employee_size=employee_size,
        location=location,
        linkedin_url=raw.get("linkedinUrl") or requested_url,
    )
