"""
LinkedIn scraping jobs built on the Apify gateway.

Bulk jobs (profile posts, reactions, comments) retry once through ``with_retry``.
Single-record enrichment does not retry; a failed lookup degrades to fallback values.
"""
from __future__ import annotations

import asyncio
import logging

from signal_monitor.integrations.apify_client import ApifyGateway, JobSpec, with_retry
from signal_monitor.services import normalizer
from signal_monitor.services.normalizer import (
    Comment,
    CompanyInfo,
    ProfileInfo,
    ProfilePosts,
    Reaction,
)
from signal_monitor.settings import get_settings

logger = logging.getLogger(__name__)


class LinkedInScraper:
    def __init__(self, gateway: ApifyGateway | None = None):
        self.gateway = gateway or ApifyGateway()
        self.settings = get_settings()

    async def scan_profiles(
        self,
        profile_urls: list[str],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ProfilePosts]:
        """One bulk posts job for all URLs; results are matched back to the requested URLs."""
        if not profile_urls:
            return []
        logger.info("Starting Apify scan for %d profiles", len(profile_urls))
        max_posts = self.settings.max_posts_per_profile
        spec = JobSpec(
            actor_id=self.settings.profile_posts_actor,
            input={
                "targetUrls": list(profile_urls),
                "maxPosts": max_posts,
                "maxComments": 0,
                "maxReactions": 0,
                "includeQuotePosts": True,
                "includeReposts": False,
                "scrapeComments": False,
                "scrapeReactions": False,
            },
            label="profile_posts",
        )

        async def attempt() -> list[ProfilePosts]:
            items = await self.gateway.run_job(spec, cancel_event=cancel_event)
            return normalizer.group_posts_by_profile(
                items,
                profile_urls,
                provider=normalizer.PROVIDER_PROFILE_POSTS,
                max_posts=max_posts,
            )

        results = await with_retry(attempt, label="[profile_posts] scan")
        logger.info("Apify scan matched %d of %d profiles", len(results), len(profile_urls))
        return results

    async def scrape_reactions(self, post_url: str, limit: int) -> list[Reaction]:
        spec = JobSpec(
            actor_id=self.settings.post_reactions_actor,
            input={"max_reactions": limit, "post_urls": [post_url], "reaction_type": "ALL"},
            label="post_reactions",
        )
        items = await with_retry(lambda: self.gateway.run_job(spec), label="[post_reactions] scrape")
        reactions = normalizer.map_reactions(items)
        logger.info("Post reactions scraped: %d of %d records usable (%s)", len(reactions), len(items), post_url)
        return reactions

    async def scrape_comments(self, post_url: str, limit: int) -> list[Comment]:
        spec = JobSpec(
            actor_id=self.settings.post_comments_actor,
            input={
                "maxItems": limit,
                "postedLimit": "3months",
                "posts": [post_url],
                "profileScraperMode": "short",
                "scrapeReplies": False,
            },
            label="post_comments",
        )
        items = await with_retry(lambda: self.gateway.run_job(spec), label="[post_comments] scrape")
        comments = normalizer.map_comments(items)
        logger.info("Post comments scraped: %d of %d records usable (%s)", len(comments), len(items), post_url)
        return comments

    async def enrich_profile(self, profile_url: str) -> ProfileInfo:
        spec = JobSpec(
            actor_id=self.settings.profile_details_actor,
            input={"profileScraperMode": "Profile details no email ($4 per 1k)", "queries": [profile_url]},
            label="profile_details",
        )
        try:
            items = await self.gateway.run_job(spec)
            if not items:
                raise ValueError("No profile data returned")
            profile = normalizer.map_profile(items[0], profile_url)
        except Exception as exc:
            logger.error("Error enriching profile %s: %s", profile_url, exc)
            return ProfileInfo.fallback(profile_url)
        logger.debug(
            "Profile enriched: %s company=%s enrich_company=%s",
            profile_url,
            profile.company_name,
            profile.needs_company_enrichment,
        )
        return profile

    async def enrich_company(self, company_url: str) -> CompanyInfo:
        spec = JobSpec(
            actor_id=self.settings.company_details_actor,
            input={"companiesUrls": [company_url]},
            label="company_details",
        )
        try:
            items = await self.gateway.run_job(spec)
        except Exception as exc:
            logger.error("Error enriching company %s: %s", company_url, exc)
            return CompanyInfo()
        if not items:
            logger.warning("No company data returned for %s", company_url)
            return CompanyInfo()
        return normalizer.map_company(items[0], company_url)
