from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class Plan(str, Enum):
    free = "free"
    basic = "basic"
    business = "business"


class ScanStatus(str, Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False, unique=True)
    plan: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=Plan.free.value)
    webhook_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    profiles: Mapped[list["MonitoredProfile"]] = relationship(
        back_populates="account", cascade="all, delete-orphan", passive_deletes=True
    )


class MonitoredProfile(Base):
    __tablename__ = "monitored_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    linkedin_url: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    keywords: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    last_post_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    next_scan_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    account: Mapped["Account"] = relationship(back_populates="profiles")
    events: Mapped[list["SignalEvent"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )


class SignalEvent(Base):
    __tablename__ = "signal_events"
    __table_args__ = (
        sa.UniqueConstraint("profile_id", "post_url", "keyword", name="uq_signal_events_profile_url_keyword"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        sa.ForeignKey("monitored_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    keyword: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    post_url: Mapped[str] = mapped_column(sa.String(1024), nullable=False, index=True)
    post_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    snippet: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    detected_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True
    )

    profile: Mapped["MonitoredProfile"] = relationship(back_populates="events")


class EngagementScan(Base):
    __tablename__ = "engagement_scans"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    account_id: Mapped[int | None] = mapped_column(sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    post_url: Mapped[str] = mapped_column(sa.String(1024), nullable=False)
    engagement_types: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    limit_per_type: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="10")
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default=ScanStatus.processing.value)
    total_engagers: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    unique_profiles: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    profiles_enriched: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    companies_enriched: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    error_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    engagers: Mapped[list["EngagerRecord"]] = relationship(
        back_populates="scan", cascade="all, delete-orphan", passive_deletes=True
    )


class EngagerRecord(Base):
    __tablename__ = "engagers"
    __table_args__ = (sa.UniqueConstraint("scan_id", "linkedin_url", name="uq_engagers_scan_url"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    scan_id: Mapped[str] = mapped_column(
        sa.ForeignKey("engagement_scans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, server_default="Unknown")
    job_title: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    location: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    linkedin_url: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    total_connections: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    follower_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    company_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    employee_size: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    company_location: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    company_profile_url: Mapped[str | None] = mapped_column(sa.String(512), nullable=True)
    reaction_type: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    comment_text: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    scan: Mapped["EngagementScan"] = relationship(back_populates="engagers")
