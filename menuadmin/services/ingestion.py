from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from menuadmin.config import settings
from menuadmin.exceptions import ConfigurationError, FetchError, NormalizationError, StorageError
from menuadmin.repositories.claims import ClaimRepository
from menuadmin.repositories.drafts import DraftRepository
from menuadmin.repositories.imports import ImportRepository
from menuadmin.repositories.restaurants import RestaurantRepository
from menuadmin.services.claims import ClaimIssuer
from menuadmin.services.hashing import gzip_text, serialize_payload, sha256_hex
from menuadmin.services.identity import IdentityResolver, canonical_source_url
from menuadmin.services.normalizer import extract_venue, normalize_store, strip_reviews
from menuadmin.services.scraper import ScraperClient
from menuadmin.storage import BlobStore

log = structlog.get_logger(__name__)

FAILURE_EVENTS = {"failed", "aborted", "timedOut"}


@dataclass
class Notification:
    event_type: str           # succeeded | failed | aborted | timedOut | other
    job_id: str
    dataset_id: str = ""
    status_message: Optional[str] = None


@dataclass
class IngestionResult:
    job_id: str
    archive_key: str
    item_count: int
    status: str
    duplicate: bool = False
    restaurants_created: int = 0
    drafts_created: int = 0
    claim_codes_generated: int = 0
    errors: List[str] = field(default_factory=list)


def archive_key_for(source: str, job_id: str) -> str:
    return f"raw/{source}/{job_id}.json.gz"


def store_identifier(store: Any, index: int) -> str:
    if isinstance(store, dict):
        try:
            return canonical_source_url(store)
        except NormalizationError:
            pass
        for key in ("storeId", "storeName"):
            if store.get(key):
                return str(store[key])
    return f"item[{index}]"


class IngestionOrchestrator:
    """
    One upstream job, end to end:
    fetch → hash-check → (duplicate | archive → normalize → persist) → status.

    Idempotency rests on the payload hash: a batch that already produced a
    ``success`` import is a no-op. Two concurrent deliveries of the same job
    can both pass the check; that duplicate run is tolerated.
    """

    def __init__(
        self,
        db: AsyncSession,
        scraper: ScraperClient,
        scrapes: BlobStore,
        source: str | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.scraper = scraper
        self.scrapes = scrapes
        self.source = source or settings.INGEST_SOURCE
        self.clock = clock
        self.imports = ImportRepository(db)
        self.drafts = DraftRepository(db)
        self.resolver = IdentityResolver(RestaurantRepository(db), self.source)
        self.claims = ClaimIssuer(ClaimRepository(db), settings.CLAIM_TTL_DAYS, clock=clock)

    # ── Entry points ──────────────────────────────────────────────────────────

    async def handle_notification(self, note: Notification) -> Dict[str, Any]:
        if note.event_type in FAILURE_EVENTS:
            await self.record_failed(note.job_id, note.dataset_id, note.event_type, note.status_message)
            return {"status": "failed", "jobId": note.job_id}

        if note.event_type != "succeeded":
            log.info("ingest.ignored", job_id=note.job_id, event_type=note.event_type)
            return {"status": "ignored", "eventType": note.event_type}

        result = await self.run(note.job_id, note.dataset_id)
        return {
            "status": "success",
            "jobId": note.job_id,
            "archiveKey": result.archive_key,
            "itemCount": result.item_count,
            "duplicate": result.duplicate,
            "restaurantsCreated": result.restaurants_created,
            "claimCodesGenerated": result.claim_codes_generated,
            "importStatus": result.status,
        }

    async def record_failed(
        self,
        job_id: str,
        dataset_id: str,
        event_type: str,
        status_message: Optional[str],
    ) -> uuid.UUID:
        summary = f"{event_type}: {status_message or 'No message'}"
        import_id = await self.imports.create(
            source=self.source,
            job_id=job_id,
            dataset_id=dataset_id or "",
            status="failed",
            error_summary=summary[: settings.ERROR_SUMMARY_LIMIT],
        )
        log.warning("ingest.job_failed", job_id=job_id, event_type=event_type, message=status_message)
        return import_id

    async def run(self, job_id: str, dataset_id: str) -> IngestionResult:
        if not self.scraper.configured:
            await self.record_failed(job_id, dataset_id, "configuration", "scraping service token missing")
            raise ConfigurationError("Scraping service is not configured")

        try:
            items = await self.scraper.fetch_batch(dataset_id)
        except FetchError as exc:
            await self.record_failed(job_id, dataset_id, "fetch", exc.detail)
            raise

        raw = serialize_payload(items)
        payload_hash = sha256_hex(raw)

        prior = await self.imports.find_successful(payload_hash)
        if prior is not None:
            log.info("ingest.duplicate", job_id=job_id, payload_hash=payload_hash, prior_job=prior.job_id)
            return IngestionResult(
                job_id=job_id,
                archive_key=prior.archive_key,
                item_count=len(items),
                status="success",
                duplicate=True,
            )

        archive_key = archive_key_for(self.source, job_id)
        try:
            await self.scrapes.put(
                archive_key,
                gzip_text(raw),
                "application/gzip",
                metadata={
                    "jobId": job_id,
                    "datasetId": dataset_id,
                    "payloadHash": payload_hash,
                    "itemCount": str(len(items)),
                },
            )
        except StorageError as exc:
            await self.record_failed(job_id, dataset_id, "archive", exc.detail)
            raise
        log.info("ingest.archived", job_id=job_id, key=archive_key, items=len(items))

        import_id = await self.imports.create(
            source=self.source,
            job_id=job_id,
            dataset_id=dataset_id,
            payload_hash=payload_hash,
            archive_key=archive_key,
            status="processing",
            item_count=len(items),
        )

        result = IngestionResult(
            job_id=job_id,
            archive_key=archive_key,
            item_count=len(items),
            status="processing",
        )

        for index, store in enumerate(items):
            try:
                created, claimed = await self._ingest_store(store, import_id)
            except Exception as exc:
                # entity-scoped: undo this record's pending rows, keep going
                await self.db.rollback()
                ident = store_identifier(store, index)
                log.error("ingest.entity_failed", job_id=job_id, source_id=ident, error=str(exc))
                result.errors.append(f"{ident}: {exc}")
                continue

            result.drafts_created += 1
            result.restaurants_created += int(created)
            result.claim_codes_generated += int(claimed)

        result.status = "success" if not result.errors else "partial"
        summary = "; ".join(result.errors)[: settings.ERROR_SUMMARY_LIMIT] if result.errors else None
        await self.imports.finish(import_id, result.status, summary)

        log.info(
            "ingest.complete",
            job_id=job_id,
            status=result.status,
            restaurants=result.restaurants_created,
            drafts=result.drafts_created,
            claims=result.claim_codes_generated,
            errors=len(result.errors),
        )
        return result

    # ── Per-entity ────────────────────────────────────────────────────────────

    async def _ingest_store(self, store: Dict[str, Any], import_id: uuid.UUID) -> tuple[bool, bool]:
        """Returns (restaurant_created, claim_issued)."""
        if not isinstance(store, dict):
            raise TypeError(f"store record is {type(store).__name__}, expected object")

        record = strip_reviews(store)
        source_url = canonical_source_url(record)
        venue = extract_venue(record)
        # normalize before any write so a malformed record leaves nothing behind
        categories = normalize_store(record)

        resolution = await self.resolver.resolve(source_url, venue, self.clock())
        await self.drafts.create_draft(
            resolution.restaurant_id,
            self.source,
            source_url,
            categories,
            import_id=import_id,
        )
        await self.db.commit()

        claimed = False
        if resolution.created:
            claimed = await self.claims.issue(resolution.restaurant_id)
        return resolution.created, claimed
