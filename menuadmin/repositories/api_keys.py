from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from menuadmin.models import ApiKey


class ApiKeyRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_active(self, key_hash: str) -> Optional[ApiKey]:
        rows = await self.db.execute(
            select(ApiKey).where(ApiKey.key_hash == key_hash, ApiKey.revoked_at.is_(None))
        )
        return rows.scalars().first()

    async def create(self, tenant: str, key_id: str, key_hash: str, label: str | None) -> ApiKey:
        row = ApiKey(tenant=tenant, key_id=key_id, key_hash=key_hash, label=label)
        self.db.add(row)
        await self.db.commit()
        return row

    async def revoke(self, key_id: str) -> bool:
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.key_id == key_id, ApiKey.revoked_at.is_(None))
            .values(revoked_at=datetime.now(timezone.utc))
        )
        await self.db.commit()
        return result.rowcount > 0
