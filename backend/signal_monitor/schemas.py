from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .services.engagement_pipeline import ENGAGEMENT_TYPES

LINKEDIN_POST_MARKER = "linkedin.com/posts/"


class EngagementScanCreate(BaseModel):
    post_url: str
    engagement_types: list[str] = Field(min_length=1)
    limit_per_type: int = Field(default=10, ge=1, le=500)

    @field_validator("post_url")
    @classmethod
    def validate_post_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Post URL is required")
        if LINKEDIN_POST_MARKER not in value.lower():
            raise ValueError("Must be a valid LinkedIn post URL")
        return value

    @field_validator("engagement_types")
    @classmethod
    def validate_types(cls, value: list[str]) -> list[str]:
        types: list[str] = []
        for item in value:
            item = item.strip().lower()
            if item not in ENGAGEMENT_TYPES:
                raise ValueError(f"Unknown engagement type: {item}")
            if item not in types:
                types.append(item)
        return types


class EngagementScanStarted(BaseModel):
    scan_id: str
    status: str
    message: str = "Scan started"


class ScanProgress(BaseModel):
    total: int = 0
    unique_profiles: int = 0
    profiles_enriched: int = 0
    companies_enriched: int = 0


class EngagementScanStatus(BaseModel):
    scan_id: str
    status: str
    progress: ScanProgress
    error: str | None = None


class EngagerRead(BaseModel):
    name: str
    job_title: str | None = None
    location: str | None = None
    industry: str | None = None
    linkedin_url: str
    total_connections: int = 0
    follower_count: int = 0
    company_name: str | None = None
    employee_size: str | None = None
    company_location: str | None = None
    company_profile_url: str | None = None
    reaction_type: str | None = None
    comment_text: str | None = None

    class Config:
        from_attributes = True


class EngagementScanSummary(BaseModel):
    scan_id: str
    post_url: str
    status: str
    total_engagers: int = 0
    unique_profiles: int = 0
    profiles_enriched: int = 0
    companies_enriched: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None


class EngagementScanResults(EngagementScanSummary):
    engagers: list[EngagerRead] = []


class EngagementScanList(BaseModel):
    total: int
    scans: list[EngagementScanSummary]
