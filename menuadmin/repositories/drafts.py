from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from menuadmin.models import DraftItem, DraftMenu, DraftSection
from menuadmin.services.normalizer import CategoryGroup


class DraftRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_draft(
        self,
        restaurant_id: uuid.UUID,
        source: str,
        source_url: str,
        categories: List[CategoryGroup],
        import_id: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        """
        Write a fresh unclaimed draft with its sections and items.
        Positions follow list order. Flushes, does not commit.
        """
        menu = DraftMenu(
            restaurant_id=restaurant_id,
            import_id=import_id,
            source=source,
            source_url=source_url,
            status="unclaimed",
        )
        self.db.add(menu)
        await self.db.flush()

        for section_pos, category in enumerate(categories):
            section = DraftSection(
                draft_menu_id=menu.id,
                position=section_pos,
                name=category.name,
            )
            self.db.add(section)
            await self.db.flush()

            self.db.add_all(
                DraftItem(
                    draft_section_id=section.id,
                    position=item_pos,
                    name=item.name,
                    description=item.description,
                    price_cents=item.price_cents,
                    image_url=item.image_url,
                    raw=item.raw,
                )
                for item_pos, item in enumerate(category.items)
            )

        await self.db.flush()
        return menu.id

    async def for_restaurant(self, restaurant_id: uuid.UUID) -> List[DraftMenu]:
        rows = await self.db.execute(
            select(DraftMenu)
            .where(DraftMenu.restaurant_id == restaurant_id)
            .order_by(DraftMenu.created_at)
        )
        return list(rows.scalars().all())

    async def sections(self, draft_menu_id: uuid.UUID) -> List[DraftSection]:
        rows = await self.db.execute(
            select(DraftSection)
            .where(DraftSection.draft_menu_id == draft_menu_id)
            .order_by(DraftSection.position)
        )
        return list(rows.scalars().all())

    async def items(self, section_id: uuid.UUID) -> List[DraftItem]:
        rows = await self.db.execute(
            select(DraftItem)
            .where(DraftItem.draft_section_id == section_id)
            .order_by(DraftItem.position)
        )
        return list(rows.scalars().all())
