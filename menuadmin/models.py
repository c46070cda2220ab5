import uuid

from sqlalchemy import (
    Column, Integer, String, JSON, Uuid,
    DateTime, ForeignKey, Index, func, Text,
)
from menuadmin.database import Base


class ImportJob(Base):
    __tablename__ = "imports"

    id            = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source        = Column(String(50), nullable=False)
    job_id        = Column(String(100), nullable=False)     # upstream run id
    dataset_id    = Column(String(100), nullable=False, default="")
    payload_hash  = Column(String(64), nullable=False, default="")   # SHA-256 of raw batch
    archive_key   = Column(String(500), nullable=False, default="")
    status        = Column(String(20), nullable=False, default="pending")
    error_summary = Column(Text, nullable=True)
    item_count    = Column(Integer, nullable=True)
    created_at    = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_imports_job", "job_id"),
        Index("ix_imports_hash", "payload_hash"),
        Index("ix_imports_status", "status"),
    )


class Restaurant(Base):
    __tablename__ = "restaurants"

    id         = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name       = Column(Text, nullable=False)
    address1   = Column(Text, nullable=True)
    city       = Column(Text, nullable=True)
    state      = Column(Text, nullable=True)
    zip        = Column(Text, nullable=True)
    phone      = Column(Text, nullable=True)
    website    = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_restaurants_name", "name"),
    )


class RestaurantSource(Base):
    __tablename__ = "restaurant_sources"

    id            = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    source        = Column(String(50), nullable=False)
    source_url    = Column(String(1000), nullable=False, unique=True)   # dedup key
    external_id   = Column(String(100), nullable=True)
    last_seen_at  = Column(DateTime(timezone=True), nullable=False)
    created_at    = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_sources_restaurant", "restaurant_id"),
    )


class DraftMenu(Base):
    __tablename__ = "draft_menus"

    id            = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    import_id     = Column(Uuid, ForeignKey("imports.id", ondelete="SET NULL"), nullable=True)
    source        = Column(String(50), nullable=False)
    source_url    = Column(String(1000), nullable=False)
    status        = Column(String(20), nullable=False, default="unclaimed")  # unclaimed | claimed | published
    created_at    = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_draft_menus_restaurant", "restaurant_id"),
        Index("ix_draft_menus_status", "status"),
    )


class DraftSection(Base):
    __tablename__ = "draft_sections"

    id            = Column(Uuid, primary_key=True, default=uuid.uuid4)
    draft_menu_id = Column(Uuid, ForeignKey("draft_menus.id", ondelete="CASCADE"), nullable=False)
    position      = Column(Integer, nullable=False, default=0)
    name          = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_draft_sections_menu", "draft_menu_id"),
    )


class DraftItem(Base):
    __tablename__ = "draft_items"

    id               = Column(Uuid, primary_key=True, default=uuid.uuid4)
    draft_section_id = Column(Uuid, ForeignKey("draft_sections.id", ondelete="CASCADE"), nullable=False)
    position         = Column(Integer, nullable=False, default=0)
    name             = Column(Text, nullable=False)
    description      = Column(Text, nullable=True)
    price_cents      = Column(Integer, nullable=True)   # NULL when absent or unparseable
    image_url        = Column(Text, nullable=True)
    raw              = Column(JSON, nullable=True)      # original price + options/variants

    __table_args__ = (
        Index("ix_draft_items_section", "draft_section_id"),
    )


class ClaimCode(Base):
    __tablename__ = "claims"

    id            = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    code_hash     = Column(String(64), nullable=False)
    expires_at    = Column(DateTime(timezone=True), nullable=False)
    claimed_at    = Column(DateTime(timezone=True), nullable=True)
    created_at    = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_claims_restaurant", "restaurant_id"),
        Index("ix_claims_hash", "code_hash"),
    )


class ApiKey(Base):
    __tablename__ = "api_keys"

    id         = Column(Integer, primary_key=True)
    key_id     = Column(String(40), nullable=False, unique=True)
    tenant     = Column(String(100), nullable=False)
    key_hash   = Column(String(64), nullable=False, unique=True)
    label      = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_api_keys_tenant", "tenant"),
    )
