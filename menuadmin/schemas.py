from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


# ── Menus & versions ──────────────────────────────────────────────────────────

class MenuDocument(BaseModel):
    """A full menu. Only ``items`` is required; everything else is kept as sent."""
    items: List[Dict[str, Any]]
    meta: Optional[Dict[str, Any]] = None
    model_config = {"extra": "allow"}


class SaveMenuResponse(BaseModel):
    success: bool = True
    versionId: str
    liveUrl: str


class VersionEntry(BaseModel):
    id: str
    type: str
    timestamp: Optional[str] = None
    keyId: Optional[str] = None
    itemCount: int = 0


class ManifestOut(BaseModel):
    current: Optional[str] = None
    versions: List[VersionEntry] = []


# ── Scraping & ingestion ──────────────────────────────────────────────────────

class StartScrapeRequest(BaseModel):
    storeUrls: List[str] = Field(default_factory=list)
    eventId: Optional[str] = None


class StartScrapeResponse(BaseModel):
    jobId: str
    datasetId: str
    status: str
    itemCount: int
    notificationConfigured: bool


class WebhookEventData(BaseModel):
    actorId: Optional[str] = None
    actorTaskId: Optional[str] = None
    actorRunId: Optional[str] = None


class WebhookResource(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    statusMessage: Optional[str] = None
    defaultDatasetId: Optional[str] = None


class WebhookPayload(BaseModel):
    eventType: str
    eventData: Optional[WebhookEventData] = None
    resource: Optional[WebhookResource] = None
    model_config = {"extra": "ignore"}


class ReplayRequest(BaseModel):
    jobId: str
    datasetId: str


class ImportJobOut(BaseModel):
    id: UUID
    source: str
    job_id: str
    dataset_id: str
    payload_hash: str
    archive_key: str
    status: str
    error_summary: Optional[str]
    item_count: Optional[int]
    created_at: Optional[datetime]
    model_config = {"from_attributes": True}


# ── Admin ─────────────────────────────────────────────────────────────────────

class CreateKeyRequest(BaseModel):
    tenant: str = Field(pattern=r"^[a-z0-9][a-z0-9_-]*$")
    label: Optional[str] = None


class CreateKeyResponse(BaseModel):
    keyId: str
    tenant: str
    apiKey: str     # shown once


class HealthResponse(BaseModel):
    status: str
    database: str
    redis: str
    storage: str
    version: str


# ── Brands ────────────────────────────────────────────────────────────────────

class ImageUploadResponse(BaseModel):
    success: bool = True
    filename: str
    url: str
    size: int


class DeployBrandResponse(BaseModel):
    success: bool = True
    brandUrl: str
    filesCreated: List[str]
    keyId: str
    apiKey: str     # shown once
    message: str
