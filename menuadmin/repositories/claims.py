from __future__ import annotations
import uuid
from datetime import datetime
from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from menuadmin.models import ClaimCode


class ClaimRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists_for(self, restaurant_id: uuid.UUID) -> bool:
        """True if any claim row exists, whatever its expiry or claim state."""
        rows = await self.db.execute(
            select(ClaimCode.id).where(ClaimCode.restaurant_id == restaurant_id).limit(1)
        )
        return rows.first() is not None

    async def create(self, restaurant_id: uuid.UUID, code_hash: str, expires_at: datetime) -> None:
        self.db.add(
            ClaimCode(
                restaurant_id=restaurant_id,
                code_hash=code_hash,
                expires_at=expires_at,
            )
        )
        await self.db.commit()

    async def for_restaurant(self, restaurant_id: uuid.UUID) -> List[ClaimCode]:
        rows = await self.db.execute(
            select(ClaimCode).where(ClaimCode.restaurant_id == restaurant_id)
        )
        return list(rows.scalars().all())
