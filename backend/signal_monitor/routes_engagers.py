"""
Engagement scan API Routes

Start a scan of a post's engagers, poll its progress, read or download the results.
"""
from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import Response

from .db import AsyncSessionLocal
from .models import EngagementScan, ScanStatus
from .schemas import (
    EngagementScanCreate,
    EngagementScanList,
    EngagementScanResults,
    EngagementScanStarted,
    EngagementScanStatus,
    EngagementScanSummary,
    EngagerRead,
    ScanProgress,
)
from .services.engagement_pipeline import EngagementPipeline, render_csv, run_engagement_scan
from .services.linkedin_scraper import LinkedInScraper
from .services.signal_store import EngagementScanStore
from .settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/engagers", tags=["engagers"])


def get_scan_store() -> EngagementScanStore:
    return EngagementScanStore(AsyncSessionLocal)


def get_pipeline() -> EngagementPipeline:
    return EngagementPipeline(LinkedInScraper())


def _summary(scan: EngagementScan) -> EngagementScanSummary:
    return EngagementScanSummary(
        scan_id=scan.id,
        post_url=scan.post_url,
        status=scan.status,
        total_engagers=scan.total_engagers or 0,
        unique_profiles=scan.unique_profiles or 0,
        profiles_enriched=scan.profiles_enriched or 0,
        companies_enriched=scan.companies_enriched or 0,
        created_at=scan.created_at,
        completed_at=scan.completed_at,
    )


async def _get_scan_or_404(store: EngagementScanStore, scan_id: str) -> EngagementScan:
    scan = await store.get(scan_id)
    if not scan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    return scan


@router.post("/scan", response_model=EngagementScanStarted, status_code=status.HTTP_202_ACCEPTED)
async def start_scan(
    payload: EngagementScanCreate,
    background_tasks: BackgroundTasks,
    store: EngagementScanStore = Depends(get_scan_store),
    pipeline: EngagementPipeline = Depends(get_pipeline),
):
    """Create a Processing scan and run the pipeline after the response is sent."""
    if not get_settings().apify_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="APIFY_TOKEN missing")

    scan_id = str(uuid.uuid4())
    await store.create(scan_id, payload.post_url, payload.engagement_types, payload.limit_per_type)
    logger.info(
        "Starting engager scan %s: %s types=%s limit=%d",
        scan_id,
        payload.post_url,
        payload.engagement_types,
        payload.limit_per_type,
    )

    background_tasks.add_task(
        run_engagement_scan,
        scan_id,
        payload.post_url,
        payload.engagement_types,
        payload.limit_per_type,
        store=store,
        pipeline=pipeline,
    )
    return EngagementScanStarted(scan_id=scan_id, status=ScanStatus.processing.value)


@router.get("/scan/{scan_id}/status", response_model=EngagementScanStatus)
async def get_scan_status(scan_id: str, store: EngagementScanStore = Depends(get_scan_store)):
    scan = await _get_scan_or_404(store, scan_id)
    return EngagementScanStatus(
        scan_id=scan.id,
        status=scan.status,
        progress=ScanProgress(
            total=scan.total_engagers or 0,
            unique_profiles=scan.unique_profiles or 0,
            profiles_enriched=scan.profiles_enriched or 0,
            companies_enriched=scan.companies_enriched or 0,
        ),
        error=scan.error_message if scan.status == ScanStatus.failed.value else None,
    )


@router.get("/scan/{scan_id}/results", response_model=EngagementScanResults)
async def get_scan_results(scan_id: str, store: EngagementScanStore = Depends(get_scan_store)):
    scan = await _get_scan_or_404(store, scan_id)
    rows = await store.engagers(scan_id)
    summary = _summary(scan)
    return EngagementScanResults(
        **summary.model_dump(),
        engagers=[EngagerRead.model_validate(row) for row in rows],
    )


@router.get("/scan/{scan_id}/download")
async def download_scan_csv(scan_id: str, store: EngagementScanStore = Depends(get_scan_store)):
    scan = await _get_scan_or_404(store, scan_id)
    if scan.status != ScanStatus.completed.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Scan is {scan.status}. CSV not available yet.",
        )
    rows = await store.engagers(scan_id)
    csv_text = render_csv(EngagerRead.model_validate(row).model_dump() for row in rows)
    logger.info("CSV downloaded for scan %s (%d rows)", scan_id, len(rows))
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="linkedin-engagers-{scan_id}.csv"'},
    )


@router.get("/scans", response_model=EngagementScanList)
async def list_scans(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    store: EngagementScanStore = Depends(get_scan_store),
):
    scans, total = await store.list_scans(limit=limit, offset=offset)
    return EngagementScanList(total=total, scans=[_summary(scan) for scan in scans])
