from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import structlog
from storage3.exceptions import StorageApiError
from supabase import AsyncClient, acreate_client

from menuadmin.config import settings
from menuadmin.exceptions import ConfigurationError, StorageError

log = structlog.get_logger(__name__)

_client: Optional[AsyncClient] = None


class BlobStore(Protocol):
    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None: ...

    async def get(self, key: str) -> Optional[bytes]: ...

    def public_url(self, key: str) -> str: ...


def _is_missing(exc: StorageApiError) -> bool:
    code = str(getattr(exc, "code", "") or "").lower()
    status = str(getattr(exc, "status", "") or "")
    return code in {"not_found", "nosuchkey"} or status == "404"


class SupabaseBlobStore:
    """One Supabase Storage bucket behind the BlobStore interface."""

    def __init__(self, client: AsyncClient, bucket: str, public_base_url: str = ""):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    async def put(self, key, data, content_type, metadata=None) -> None:
        options = {"content-type": content_type, "upsert": "true"}
        if metadata:
            options["metadata"] = metadata
        try:
            await self.client.storage.from_(self.bucket).upload(key, data, options)
        except StorageApiError as exc:
            log.error("storage.put.failed", bucket=self.bucket, key=key, error=str(exc))
            raise StorageError(f"Failed to write {self.bucket}/{key}", {"key": key}) from exc

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self.client.storage.from_(self.bucket).download(key)
        except StorageApiError as exc:
            if _is_missing(exc):
                return None
            log.error("storage.get.failed", bucket=self.bucket, key=key, error=str(exc))
            raise StorageError(f"Failed to read {self.bucket}/{key}", {"key": key}) from exc

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"{settings.SUPABASE_URL.rstrip('/')}/storage/v1/object/public/{self.bucket}/{key}"


@dataclass
class BlobStores:
    menus: BlobStore      # public live documents
    internal: BlobStore   # snapshots, manifests, audit logs
    scrapes: BlobStore    # raw ingestion archives


# ── Client lifecycle ──────────────────────────────────────────────────────────

async def init_storage() -> None:
    global _client
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
        log.warning("storage.not_configured")
        return
    _client = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    log.info("storage.initialized", buckets=[settings.MENU_BUCKET, settings.INTERNAL_BUCKET, settings.SCRAPE_BUCKET])


async def close_storage() -> None:
    global _client
    _client = None
    log.info("storage.closed")


def get_blob_stores() -> BlobStores:
    if _client is None:
        raise ConfigurationError("Blob storage is not configured")
    return BlobStores(
        menus=SupabaseBlobStore(_client, settings.MENU_BUCKET, settings.PUBLIC_BASE_URL),
        internal=SupabaseBlobStore(_client, settings.INTERNAL_BUCKET),
        scrapes=SupabaseBlobStore(_client, settings.SCRAPE_BUCKET),
    )


def storage_ready() -> bool:
    return _client is not None
