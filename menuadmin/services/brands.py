"""
Brand catalog in the public bucket.

  brands.json                          list of brands
  {brand}/registry.json                brand registry (stores, asset paths)
  {brand}/{store}.json                 store config (menus offered)
  {brand}/images/{filename}            uploaded images
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from menuadmin.exceptions import ConflictError, StorageError, ValidationFailed
from menuadmin.services.publisher import VersionedPublisher
from menuadmin.storage import BlobStore

log = structlog.get_logger(__name__)

BRANDS_KEY = "brands.json"
JSON_TYPE = "application/json"
DEPLOY_SLUG = re.compile(r"^[a-z0-9]+$")
DEFAULT_MENU = "dinner"


def registry_key(brand: str) -> str:
    return f"{brand}/registry.json"


def store_config_key(brand: str, store: str) -> str:
    return f"{brand}/{store}.json"


def image_key(brand: str, filename: str) -> str:
    return f"{brand}/images/{filename}"


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r"[^a-z0-9._-]", "_", filename.lower())
    cleaned = re.sub(r"_{2,}", "_", cleaned).strip("_")
    if not cleaned.strip("."):
        raise ValidationFailed("Filename has no usable characters", {"filename": filename})
    return cleaned


@dataclass
class ImageUpload:
    filename: str
    url: str
    size: int


@dataclass
class Deployment:
    brand_url: str
    files_created: List[str] = field(default_factory=list)


class BrandCatalog:
    def __init__(
        self,
        public: BlobStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.public = public
        self.clock = clock

    async def _read_json(self, key: str) -> Optional[Any]:
        raw = await self.public.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            log.error("brands.unreadable", key=key)
            raise StorageError(f"Stored object {key} is not valid JSON", {"key": key}) from exc

    async def _write_json(self, key: str, document: Any) -> None:
        await self.public.put(key, json.dumps(document, indent=2).encode(), JSON_TYPE)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def brands(self) -> Optional[Any]:
        return await self._read_json(BRANDS_KEY)

    async def registry(self, brand: str) -> Optional[Any]:
        return await self._read_json(registry_key(brand))

    async def store_config(self, brand: str, store: str) -> Optional[Any]:
        return await self._read_json(store_config_key(brand, store))

    # ── Images ────────────────────────────────────────────────────────────────

    async def save_image(
        self,
        brand: str,
        data: bytes,
        content_type: str,
        filename: Optional[str],
        allowed_types: List[str],
        max_bytes: int,
    ) -> ImageUpload:
        """Stores the bytes as sent; no resizing or re-encoding."""
        if content_type not in allowed_types:
            raise ValidationFailed(
                f"Invalid file type: {content_type}. Allowed: {', '.join(allowed_types)}",
                {"contentType": content_type},
            )
        if len(data) > max_bytes:
            raise ValidationFailed(f"File too large. Max size: {max_bytes // (1024 * 1024)}MB")

        if not filename:
            ext = content_type.split("/")[1] or "jpg"
            filename = f"{int(self.clock().timestamp() * 1000)}.{ext}"
        filename = sanitize_filename(filename)

        key = image_key(brand, filename)
        await self.public.put(key, data, content_type)
        log.info("brands.image.saved", brand=brand, key=key, size=len(data))
        return ImageUpload(filename=filename, url=self.public.public_url(key), size=len(data))

    # ── Bootstrap ─────────────────────────────────────────────────────────────

    async def deploy(
        self,
        publisher: VersionedPublisher,
        actor: str,
        brand_slug: str,
        brand_name: str,
        location_slug: str,
        location_name: str,
        logo: Optional[tuple[bytes, str, str]] = None,
    ) -> Deployment:
        """
        Create a brand with its first location: registry, store config, a
        starter dinner menu (published as its first version), optional logo,
        and an entry in brands.json. ``logo`` is (data, content_type, filename).
        """
        if not DEPLOY_SLUG.match(brand_slug) or not DEPLOY_SLUG.match(location_slug):
            raise ValidationFailed("Slugs must be lowercase alphanumeric only")
        if await self.public.get(registry_key(brand_slug)) is not None:
            raise ConflictError(f'Brand "{brand_slug}" already exists', {"brand": brand_slug})

        result = Deployment(brand_url=f"/{brand_slug}/{location_slug}")

        registry = {
            "brand": {"slug": brand_slug, "name": brand_name},
            "defaultStore": location_slug,
            "stores": [{"slug": location_slug, "name": location_name, "file": f"{location_slug}.json"}],
            "paths": {
                "images": f"{brand_slug}/images",
                "placeholder": f"{brand_slug}/images/placeholder.jpg",
            },
        }
        await self._write_json(registry_key(brand_slug), registry)
        result.files_created.append(registry_key(brand_slug))

        store_config = {
            "slug": location_slug,
            "name": f"{brand_name} {location_name}",
            "menus": [{
                "id": DEFAULT_MENU,
                "label": "Dinner",
                "file": f"{brand_slug}/{location_slug}__{DEFAULT_MENU}.json",
            }],
        }
        await self._write_json(store_config_key(brand_slug, location_slug), store_config)
        result.files_created.append(store_config_key(brand_slug, location_slug))

        starter_menu = {
            "meta": {
                "brand": brand_slug,
                "store": location_slug,
                "menuType": DEFAULT_MENU,
                "title": "Dinner Menu",
                "categoryOrder": ["Appetizers", "Entrees", "Desserts"],
            },
            "items": [{
                "id": "sample-item-1",
                "name": "Sample Item",
                "category": "Appetizers",
                "price": "$9.99",
                "description": "This is a sample menu item. Edit or replace this item.",
                "image": "",
            }],
        }
        published = await publisher.publish(brand_slug, location_slug, DEFAULT_MENU, starter_menu, "upload", actor)
        result.files_created.append(published.live_key)

        if logo is not None and logo[0]:
            data, content_type, name = logo
            ext = name.rsplit(".", 1)[-1].lower() if "." in name else "jpg"
            key = image_key(brand_slug, sanitize_filename(f"logo.{ext}"))
            await self.public.put(key, data, content_type or "application/octet-stream")
            result.files_created.append(key)

        catalog = await self._read_json(BRANDS_KEY) or {"brands": [], "defaultBrand": brand_slug}
        if not any(b.get("slug") == brand_slug for b in catalog.get("brands", [])):
            catalog.setdefault("brands", []).append({
                "slug": brand_slug,
                "name": brand_name,
                "logo": f"{brand_slug}/images/logo.jpg",
            })
            await self._write_json(BRANDS_KEY, catalog)
            result.files_created.append(BRANDS_KEY)

        log.info("brands.deployed", brand=brand_slug, store=location_slug, files=len(result.files_created))
        return result
