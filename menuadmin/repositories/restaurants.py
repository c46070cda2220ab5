from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from menuadmin.models import Restaurant, RestaurantSource
from menuadmin.services.normalizer import VenueInfo


class RestaurantRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_source_url(self, source_url: str) -> Optional[RestaurantSource]:
        rows = await self.db.execute(
            select(RestaurantSource).where(RestaurantSource.source_url == source_url)
        )
        return rows.scalars().first()

    async def touch_source(self, source_url: str, seen_at: datetime) -> None:
        await self.db.execute(
            update(RestaurantSource)
            .where(RestaurantSource.source_url == source_url)
            .values(last_seen_at=seen_at)
        )

    async def create_with_source(
        self,
        venue: VenueInfo,
        source: str,
        source_url: str,
        seen_at: datetime,
    ) -> uuid.UUID:
        """Insert a restaurant and its first source row. Flushes, does not commit."""
        restaurant = Restaurant(
            name=venue.name,
            address1=venue.address1,
            city=venue.city,
            state=venue.state,
            zip=venue.zip,
            phone=venue.phone,
            website=source_url,
        )
        self.db.add(restaurant)
        await self.db.flush()

        self.db.add(
            RestaurantSource(
                restaurant_id=restaurant.id,
                source=source,
                source_url=source_url,
                external_id=venue.external_id,
                last_seen_at=seen_at,
            )
        )
        await self.db.flush()
        return restaurant.id

    async def get(self, restaurant_id: uuid.UUID) -> Optional[Restaurant]:
        return await self.db.get(Restaurant, restaurant_id)

    async def counts(self) -> Tuple[int, int]:
        restaurants = (await self.db.execute(select(func.count(Restaurant.id)))).scalar_one()
        sources = (await self.db.execute(select(func.count(RestaurantSource.id)))).scalar_one()
        return restaurants, sources
