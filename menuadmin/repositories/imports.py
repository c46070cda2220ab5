from __future__ import annotations
import uuid
from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from menuadmin.models import ImportJob


class ImportRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_successful(self, payload_hash: str) -> Optional[ImportJob]:
        rows = await self.db.execute(
            select(ImportJob)
            .where(ImportJob.payload_hash == payload_hash, ImportJob.status == "success")
            .order_by(ImportJob.created_at.desc())
            .limit(1)
        )
        return rows.scalars().first()

    async def create(
        self,
        source: str,
        job_id: str,
        dataset_id: str,
        status: str,
        payload_hash: str = "",
        archive_key: str = "",
        item_count: int | None = None,
        error_summary: str | None = None,
    ) -> uuid.UUID:
        job = ImportJob(
            source=source,
            job_id=job_id,
            dataset_id=dataset_id,
            payload_hash=payload_hash,
            archive_key=archive_key,
            status=status,
            item_count=item_count,
            error_summary=error_summary,
        )
        self.db.add(job)
        await self.db.commit()
        return job.id

    async def finish(self, import_id: uuid.UUID, status: str, error_summary: str | None) -> None:
        # never touch a row that already reached success
        await self.db.execute(
            update(ImportJob)
            .where(ImportJob.id == import_id, ImportJob.status != "success")
            .values(status=status, error_summary=error_summary)
        )
        await self.db.commit()

    async def recent(self, limit: int = 50) -> List[ImportJob]:
        rows = await self.db.execute(
            select(ImportJob)
            .order_by(ImportJob.created_at.desc())
            .limit(limit)
        )
        return list(rows.scalars().all())
