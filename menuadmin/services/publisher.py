"""
Versioned menu writes.

Every save produces, in order:

  1. an immutable snapshot   {tenant}/{store}__{menu}/{versionId}.json   (internal)
  2. a manifest update       {tenant}/{store}__{menu}/manifest.json      (internal)
  3. an audit line           {tenant}/{store}__{menu}/{YYYY-MM-DD}.jsonl (internal)
  4. the live document       {tenant}/{store}__{menu}.json               (public)

The live copy is written last so it is never ahead of its own history.
Steps 1-3 run under an optional per-key lock; without one, two concurrent
saves to the same key can lose one manifest entry (never a snapshot).
"""
from __future__ import annotations

import json
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncContextManager, Callable, Dict, Literal, Optional

import structlog

from menuadmin.exceptions import PublishError
from menuadmin.storage import BlobStore

log = structlog.get_logger(__name__)

VersionType = Literal["edit", "upload"]

VERSION_ID_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
JSON_TYPE = "application/json"
NDJSON_TYPE = "application/x-ndjson"


# ── Keys ──────────────────────────────────────────────────────────────────────

def menu_base(tenant: str, store: str, menu: str) -> str:
    return f"{tenant}/{store}__{menu}"


def snapshot_key(tenant: str, store: str, menu: str, version_id: str) -> str:
    return f"{menu_base(tenant, store, menu)}/{version_id}.json"


def manifest_key(tenant: str, store: str, menu: str) -> str:
    return f"{menu_base(tenant, store, menu)}/manifest.json"


def audit_key(tenant: str, store: str, menu: str, day: str) -> str:
    return f"{menu_base(tenant, store, menu)}/{day}.jsonl"


def live_key(tenant: str, store: str, menu: str) -> str:
    return f"{menu_base(tenant, store, menu)}.json"


# ── Version ids ───────────────────────────────────────────────────────────────

def version_id_for(instant: datetime) -> str:
    """Fixed-width UTC timestamp; lexical order == chronological order."""
    return instant.astimezone(timezone.utc).strftime(VERSION_ID_FORMAT)


def parse_version_id(version_id: str) -> datetime:
    return datetime.strptime(version_id, VERSION_ID_FORMAT).replace(tzinfo=timezone.utc)


def next_version_id(now: datetime, current: Optional[str]) -> str:
    candidate = version_id_for(now)
    if current and candidate <= current:
        try:
            bumped = parse_version_id(current) + timedelta(microseconds=1)
        except ValueError:
            log.warning("manifest.bad_current", current=current)
            return candidate
        candidate = version_id_for(bumped)
    return candidate


def item_count(document: Dict[str, Any]) -> int:
    items = document.get("items")
    return len(items) if isinstance(items, list) else 0


def empty_manifest() -> Dict[str, Any]:
    return {"current": None, "versions": []}


def _well_formed_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    if not isinstance(entry.get("id"), str) or not isinstance(entry.get("type"), str):
        return False
    if not all(isinstance(entry.get(f), (str, type(None))) for f in ("timestamp", "keyId")):
        return False
    count = entry.get("itemCount", 0)
    return isinstance(count, int) and not isinstance(count, bool)


def _well_formed(manifest: Any) -> bool:
    if not isinstance(manifest, dict):
        return False
    current = manifest.get("current")
    versions = manifest.get("versions")
    if current is not None and not isinstance(current, str):
        return False
    return isinstance(versions, list) and all(_well_formed_entry(v) for v in versions)


@dataclass
class PublishResult:
    version_id: str
    live_key: str
    live_url: str


class VersionedPublisher:
    def __init__(
        self,
        internal: BlobStore,
        public: BlobStore,
        max_versions: int = 100,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        lock: Optional[Callable[[str], AsyncContextManager[None]]] = None,
    ):
        self.internal = internal
        self.public = public
        self.max_versions = max_versions
        self.clock = clock
        self.lock = lock

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def load_manifest(self, tenant: str, store: str, menu: str) -> Dict[str, Any]:
        """Absent → empty. Unreadable → empty, logged; the next write heals it."""
        key = manifest_key(tenant, store, menu)
        raw = await self.internal.get(key)
        if raw is None:
            return empty_manifest()
        try:
            manifest = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            manifest = None
        if not _well_formed(manifest):
            log.warning("manifest.corrupt", key=key)
            return empty_manifest()
        return manifest

    async def get_version(self, tenant: str, store: str, menu: str, version_id: str) -> Optional[Any]:
        raw = await self.internal.get(snapshot_key(tenant, store, menu, version_id))
        return json.loads(raw) if raw is not None else None

    async def get_live(self, tenant: str, store: str, menu: str) -> Optional[Any]:
        raw = await self.public.get(live_key(tenant, store, menu))
        return json.loads(raw) if raw is not None else None

    # ── Write ─────────────────────────────────────────────────────────────────

    async def publish(
        self,
        tenant: str,
        store: str,
        menu: str,
        document: Dict[str, Any],
        version_type: VersionType,
        actor: str,
    ) -> PublishResult:
        base = menu_base(tenant, store, menu)
        guard = self.lock(base) if self.lock else nullcontext()

        async with guard:
            manifest = await self.load_manifest(tenant, store, menu)
            now = self.clock()
            version_id = next_version_id(now, manifest.get("current"))
            count = item_count(document)

            await self.internal.put(
                snapshot_key(tenant, store, menu, version_id),
                json.dumps(document, indent=2).encode(),
                JSON_TYPE,
            )

            try:
                await self._write_manifest(tenant, store, menu, manifest, version_id, version_type, actor, count, now)
                await self._append_audit(tenant, store, menu, version_id, version_type, actor, count, now)
                key = live_key(tenant, store, menu)
                await self.public.put(key, json.dumps(document, indent=2).encode(), JSON_TYPE)
            except Exception as exc:
                log.error("publish.failed", key=base, version_id=version_id, error=str(exc))
                raise PublishError(
                    "Failed to save menu",
                    {"key": base, "version_id": version_id},
                ) from exc

        log.info("publish.saved", key=base, version_id=version_id, type=version_type, actor=actor, items=count)
        return PublishResult(version_id=version_id, live_key=key, live_url=self.public.public_url(key))

    async def _write_manifest(self, tenant, store, menu, manifest, version_id, version_type, actor, count, now) -> None:
        entry = {
            "id": version_id,
            "type": version_type,
            "timestamp": now.astimezone(timezone.utc).isoformat(),
            "keyId": actor,
            "itemCount": count,
        }
        manifest["current"] = version_id
        manifest["versions"] = ([entry] + manifest["versions"])[: self.max_versions]
        await self.internal.put(
            manifest_key(tenant, store, menu),
            json.dumps(manifest, indent=2).encode(),
            JSON_TYPE,
        )

    async def _append_audit(self, tenant, store, menu, version_id, version_type, actor, count, now) -> None:
        # read-append-write of the whole day's file
        stamp = now.astimezone(timezone.utc)
        key = audit_key(tenant, store, menu, stamp.date().isoformat())
        existing = await self.internal.get(key) or b""
        line = json.dumps({
            "type": version_type,
            "versionId": version_id,
            "keyId": actor,
            "itemCount": count,
            "timestamp": stamp.isoformat(),
        })
        await self.internal.put(key, existing + line.encode() + b"\n", NDJSON_TYPE)
