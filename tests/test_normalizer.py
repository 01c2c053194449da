from __future__ import annotations

from datetime import datetime, timezone

import pytest

from signal_monitor.services import normalizer
from signal_monitor.services.normalizer import (
    company_needs_enrichment,
    extract_posts,
    format_employee_count,
    group_posts_by_profile,
    map_comments,
    map_company,
    map_profile,
    map_reactions,
    match_to_request,
    normalize_profile_url,
    parse_date,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.linkedin.com/in/Jane-Doe/",
        "http://linkedin.com/in/jane-doe",
        "https://www.linkedin.com/in/jane-doe?trk=feed",
        "linkedin.com/in/jane-doe/",
    ],
)
def test_normalize_profile_url_variants(url):
    assert normalize_profile_url(url) == "linkedin.com/in/jane-doe"


def test_match_to_request_returns_original_requested_url():
    requested = ["https://www.linkedin.com/in/someone-else", "https://www.linkedin.com/in/Jane-Doe/"]
    item = {"author": {"linkedinUrl": "https://linkedin.com/in/jane-doe?miniProfileUrn=x"}}

    assert match_to_request(item, requested) == "https://www.linkedin.com/in/Jane-Doe/"


def test_match_to_request_prefers_query_target_over_author():
    requested = ["https://www.linkedin.com/in/target", "https://www.linkedin.com/in/author"]
    item = {
        "query": {"targetUrl": "https://www.linkedin.com/in/target"},
        "author": {"linkedinUrl": "https://www.linkedin.com/in/author"},
    }

    assert match_to_request(item, requested) == "https://www.linkedin.com/in/target"


def test_match_to_request_without_match_returns_none():
    assert match_to_request({"profileUrl": "https://linkedin.com/in/nobody"}, ["https://linkedin.com/in/jane"]) is None
    assert match_to_request({}, ["https://linkedin.com/in/jane"]) is None


def test_every_provider_declares_named_extractors():
    for provider, fields in normalizer.PROVIDER_EXTRACTORS.items():
        assert fields, provider
        for field_name, extractors in fields.items():
            names = [name for name, _ in extractors]
            assert len(names) == len(set(names)), (provider, field_name)


def test_extractors_for_unknown_provider_raises():
    with pytest.raises(ValueError):
        normalizer.extractors_for("unknown-provider", "text")


def test_extract_posts_caps_and_drops_incomplete():
    raw = [
        {"content": "one", "linkedinUrl": "https://linkedin.com/posts/1"},
        {"content": "", "linkedinUrl": "https://linkedin.com/posts/2"},
        {"text": "three", "url": "https://linkedin.com/posts/3", "date": "2026-10-01T10:00:00Z"},
        {"content": "four", "linkedinUrl": "https://linkedin.com/posts/4"},
    ]

    posts = extract_posts(raw)

    assert [p.url for p in posts] == ["https://linkedin.com/posts/1", "https://linkedin.com/posts/3"]
    assert posts[0].posted_at is None
    assert posts[1].posted_at == datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)


def test_group_posts_by_profile_groups_flat_posts():
    requested = ["https://www.linkedin.com/in/jane/", "https://www.linkedin.com/in/bob"]
    raw = [
        {"query": {"targetUrl": "https://www.linkedin.com/in/jane/"}, "content": "a", "linkedinUrl": "p1"},
        {"author": {"linkedinUrl": "https://linkedin.com/in/bob?x=1"}, "content": "b", "linkedinUrl": "p2"},
        {"query": {"targetUrl": "https://www.linkedin.com/in/jane"}, "content": "c", "linkedinUrl": "p3"},
        {"author": {"linkedinUrl": "https://linkedin.com/in/stranger"}, "content": "d", "linkedinUrl": "p4"},
        {"content": "no profile", "linkedinUrl": "p5"},
    ]

    groups = group_posts_by_profile(raw, requested)

    by_url = {g.linkedin_url: [p.url for p in g.posts] for g in groups}
    assert by_url == {
        "https://www.linkedin.com/in/jane/": ["p1", "p3"],
        "https://www.linkedin.com/in/bob": ["p2"],
    }


def test_group_posts_by_profile_accepts_profile_containers():
    requested = ["https://www.linkedin.com/in/jane"]
    raw = [
        {
            "profileUrl": "https://linkedin.com/in/jane/",
            "posts": [{"text": "x", "postUrl": "p1"}, {"text": "y", "postUrl": "p2"}],
        }
    ]

    groups = group_posts_by_profile(raw, requested)

    assert len(groups) == 1
    assert groups[0].linkedin_url == "https://www.linkedin.com/in/jane"
    assert [p.text for p in groups[0].posts] == ["x", "y"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2026-10-01T10:00:00Z", datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)),
        ("2026-10-01T12:00:00+02:00", datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)),
        (1790000000, datetime.fromtimestamp(1790000000, tz=timezone.utc)),
        (1790000000000, datetime.fromtimestamp(1790000000, tz=timezone.utc)),
        ("1790000000000", datetime.fromtimestamp(1790000000, tz=timezone.utc)),
        ("Thu, 01 Oct 2026 10:00:00 GMT", datetime(2026, 10, 1, 10, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_date_accepts_common_formats(raw, expected):
    assert parse_date(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "not a date", "2026-13-45", True, {"a": 1}])
def test_parse_date_never_raises(raw):
    assert parse_date(raw) is None


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.linkedin.com/company/12345/", False),
        ("https://www.linkedin.com/company/12345", False),
        ("https://www.linkedin.com/company/acme-inc/", True),
        ("https://www.linkedin.com/company/acme-inc/about/", True),
        ("https://www.linkedin.com/in/jane/", False),
        ("", False),
        (None, False),
    ],
)
def test_company_needs_enrichment(url, expected):
    assert company_needs_enrichment(url) is expected


def test_map_reactions_labels_and_filters():
    raw = [
        {"reactor": {"profile_url": "https://linkedin.com/in/a"}, "reaction_type": "PRAISE"},
        {"reactor_profile_url": "https://linkedin.com/in/b", "reaction_type": None},
        {"reactor": {"profile_url": "https://linkedin.com/in/c"}, "reaction_type": "wow"},
        {"reactor": {}, "reaction_type": "LIKE"},
    ]

    reactions = map_reactions(raw)

    assert [(r.profile_url, r.reaction_type) for r in reactions] == [
        ("https://linkedin.com/in/a", "Love"),
        ("https://linkedin.com/in/b", "Like"),
        ("https://linkedin.com/in/c", "wow"),
    ]


def test_map_comments_uses_actor_url_and_commentary():
    comments = map_comments(
        [
            {"actor": {"linkedinUrl": "https://linkedin.com/in/a"}, "commentary": "Great post"},
            {"actor": {}, "commentary": "orphan"},
        ]
    )

    assert len(comments) == 1
    assert comments[0].comment_text == "Great post"


def test_map_profile_prefers_experience():
    raw = {
        "firstName": "Jane",
        "lastName": "Doe",
        "headline": "Founder at Acme",
        "experience": [
            {
                "position": "CEO",
                "companyName": "Acme",
                "companyLinkedinUrl": "https://www.linkedin.com/company/acme-inc/",
                "companyId": 42,
            }
        ],
        "currentPosition": [{"companyName": "Other", "companyLinkedinUrl": "https://www.linkedin.com/company/1/"}],
        "location": {"parsed": {"text": "Berlin, Germany"}},
        "connectionsCount": 500,
    }

    profile = map_profile(raw, "https://linkedin.com/in/jane")

    assert profile.full_name == "Jane Doe"
    assert profile.job_title == "CEO"
    assert profile.company_name == "Acme"
    assert profile.company_id == "42"
    assert profile.location == "Berlin, Germany"
    assert profile.connections_count == 500
    assert profile.follower_count == 0
    assert profile.linkedin_url == "https://linkedin.com/in/jane"
    assert profile.needs_company_enrichment is True


def test_map_profile_current_position_fallback_uses_headline():
    raw = {
        "firstName": "",
        "headline": "Sales at Beta",
        "currentPosition": [{"companyName": "Beta", "companyLinkedinUrl": "https://www.linkedin.com/company/987/"}],
        "location": {"linkedinText": "Paris"},
    }

    profile = map_profile(raw, "https://linkedin.com/in/x")

    assert profile.full_name == "Unknown"
    assert profile.job_title == "Sales at Beta"
    assert profile.company_name == "Beta"
    assert profile.location == "Paris"
    assert profile.needs_company_enrichment is False


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, ""),
        (7, "1-10 employees"),
        (50, "11-50 employees"),
        (180, "51-200 employees"),
        (4000, "1001-5000 employees"),
        (25000, "10000+ employees"),
    ],
)
def test_format_employee_count(count, expected):
    assert format_employee_count(count) == expected


def test_map_company_field_fallbacks():
    company = map_company(
        {
            "name": "Acme",
            "industries": ["Software Development"],
            "employeeCount": 120,
            "headquarters": {"city": "Austin", "country": "US"},
        },
        "https://www.linkedin.com/company/acme-inc/",
    )

    assert company.industry == "Software Development"
    assert company.employee_size == "51-200 employees"
    assert company.location == "Austin, US"
    assert company.linkedin_url == "https://www.linkedin.com/company/acme-inc/"


def test_map_company_prefers_staff_count_and_city_state():
    company = map_company(
        {"industry": "Fintech", "staffCount": 33, "headquarters": {"city": "Austin", "state": "TX"}},
        "u",
    )

    assert company.industry == "Fintech"
    assert company.employee_size == "33"
    assert company.location == "Austin, TX"
