from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

import structlog

from menuadmin.exceptions import NormalizationError
from menuadmin.repositories.restaurants import RestaurantRepository
from menuadmin.services.normalizer import VenueInfo

log = structlog.get_logger(__name__)

STORE_URL_TEMPLATE = "https://www.doordash.com/store/{slug}-{external_id}/"


def _slugify(name: str) -> str:
    # untrimmed: existing source URLs were built this way
    return re.sub(r"[^a-z0-9]+", "-", name.lower())


def canonical_source_url(store: Dict[str, Any]) -> str:
    """
    The store's own ``url`` when present, otherwise one synthesized from the
    nested restaurant name + id. Raises when neither exists.
    """
    url = store.get("url")
    if isinstance(url, str) and url.strip():
        return url.strip()

    info = store.get("restaurant") if isinstance(store.get("restaurant"), dict) else {}
    external_id = info.get("id")
    if external_id:
        return STORE_URL_TEMPLATE.format(
            slug=_slugify(str(info.get("name") or "store")),
            external_id=external_id,
        )
    raise NormalizationError("Store has no URL and no restaurant ID")


@dataclass
class Resolution:
    restaurant_id: uuid.UUID
    created: bool


class IdentityResolver:
    """sourceUrl is the only identity key. Existing rows are never renamed."""

    def __init__(self, repo: RestaurantRepository, source: str):
        self.repo = repo
        self.source = source

    async def resolve(self, source_url: str, venue: VenueInfo, seen_at: datetime) -> Resolution:
        existing = await self.repo.find_by_source_url(source_url)
        if existing is not None:
            await self.repo.touch_source(source_url, seen_at)
            log.info("identity.matched", restaurant_id=str(existing.restaurant_id), url=source_url)
            return Resolution(restaurant_id=existing.restaurant_id, created=False)

        restaurant_id = await self.repo.create_with_source(venue, self.source, source_url, seen_at)
        log.info("identity.created", restaurant_id=str(restaurant_id), name=venue.name, url=source_url)
        return Resolution(restaurant_id=restaurant_id, created=True)
