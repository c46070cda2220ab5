from __future__ import annotations
import dataclasses
import hmac
from typing import List
from urllib.parse import quote, urlparse

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from menuadmin.auth import AuthContext, require_privileged
from menuadmin.config import settings
from menuadmin.database import get_db
from menuadmin.exceptions import AuthenticationError, ConfigurationError, ValidationFailed
from menuadmin.repositories.imports import ImportRepository
from menuadmin.schemas import (
    ImportJobOut, ReplayRequest, StartScrapeRequest,
    StartScrapeResponse, WebhookPayload,
)
from menuadmin.services.ingestion import IngestionOrchestrator, Notification
from menuadmin.services.scraper import ScraperClient, get_scraper
from menuadmin.storage import BlobStores, get_blob_stores

log = structlog.get_logger(__name__)

router = APIRouter(tags=["ingestion"])

WEBHOOK_PATH = "/api/integrations/apify/webhook"

EVENT_TYPES = {
    "ACTOR.RUN.SUCCEEDED": "succeeded",
    "ACTOR.RUN.FAILED": "failed",
    "ACTOR.RUN.ABORTED": "aborted",
    "ACTOR.RUN.TIMED_OUT": "timedOut",
}


def _allowed_store_url(url: str) -> bool:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme not in {"http", "https"} or not host:
        return False
    return any(host == h or host.endswith("." + h) for h in settings.SCRAPE_ALLOWED_HOSTS)


def _webhook_url(request: Request) -> str | None:
    if not settings.APIFY_WEBHOOK_SECRET:
        return None
    origin = settings.PUBLIC_API_URL or str(request.base_url)
    return f"{origin.rstrip('/')}{WEBHOOK_PATH}?secret={quote(settings.APIFY_WEBHOOK_SECRET)}"


async def verify_webhook_secret(secret: str | None = Query(None)) -> None:
    expected = settings.APIFY_WEBHOOK_SECRET
    if not expected or not secret or not hmac.compare_digest(secret, expected):
        log.warning("webhook.rejected")
        raise AuthenticationError("Invalid or missing webhook secret")


@router.post("/api/admin/scrape/dd", response_model=StartScrapeResponse, status_code=202)
async def start_scrape(
    body: StartScrapeRequest,
    request: Request,
    ctx: AuthContext = Depends(require_privileged),
    scraper: ScraperClient = Depends(get_scraper),
):
    if not scraper.configured or not scraper.actor_id:
        raise ConfigurationError("Scraping integration not configured")
    if not body.storeUrls:
        raise ValidationFailed("storeUrls array is required and must not be empty")

    invalid = [u for u in body.storeUrls if not _allowed_store_url(u)]
    if invalid:
        raise ValidationFailed("Invalid store URLs provided", {"invalidUrls": invalid})

    webhook_url = _webhook_url(request)
    handle = await scraper.start_job(body.storeUrls, webhook_url)
    if body.eventId:
        log.info("scrape.correlated", event_id=body.eventId, job_id=handle.job_id)

    return StartScrapeResponse(
        jobId=handle.job_id,
        datasetId=handle.dataset_id,
        status=handle.status,
        itemCount=len(body.storeUrls),
        notificationConfigured=webhook_url is not None,
    )


@router.post(WEBHOOK_PATH, dependencies=[Depends(verify_webhook_secret)])
async def apify_webhook(
    payload: WebhookPayload,
    db: AsyncSession = Depends(get_db),
    scraper: ScraperClient = Depends(get_scraper),
    stores: BlobStores = Depends(get_blob_stores),
):
    resource = payload.resource
    job_id = (resource.id if resource else None) or (
        payload.eventData.actorRunId if payload.eventData else None
    )
    if not job_id:
        raise ValidationFailed("Notification carries no run id")

    note = Notification(
        event_type=EVENT_TYPES.get(payload.eventType, payload.eventType),
        job_id=job_id,
        dataset_id=(resource.defaultDatasetId if resource else None) or "",
        status_message=resource.statusMessage if resource else None,
    )
    log.info("webhook.received", event_type=payload.eventType, job_id=job_id, dataset_id=note.dataset_id)

    outcome = await IngestionOrchestrator(db, scraper, stores.scrapes).handle_notification(note)
    return {"received": True, **outcome}


@router.post("/api/admin/imports/replay")
async def replay_import(
    body: ReplayRequest,
    ctx: AuthContext = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    scraper: ScraperClient = Depends(get_scraper),
    stores: BlobStores = Depends(get_blob_stores),
):
    log.info("ingest.replay", job_id=body.jobId, dataset_id=body.datasetId, actor=ctx.key_id)
    result = await IngestionOrchestrator(db, scraper, stores.scrapes).run(body.jobId, body.datasetId)
    return dataclasses.asdict(result)


@router.get("/api/admin/imports", response_model=List[ImportJobOut])
async def list_imports(
    limit: int = Query(50, ge=1, le=500),
    ctx: AuthContext = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    rows = await ImportRepository(db).recent(limit)
    return [ImportJobOut.model_validate(r) for r in rows]
