from __future__ import annotations
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, Path, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from menuadmin.auth import AuthContext, authorize_tenant, generate_api_key, require_auth, require_privileged
from menuadmin.config import settings
from menuadmin.database import get_db
from menuadmin.exceptions import NotFoundError, ValidationFailed
from menuadmin.repositories.api_keys import ApiKeyRepository
from menuadmin.routers.menus import SLUG, get_publisher
from menuadmin.schemas import DeployBrandResponse, ImageUploadResponse
from menuadmin.services.brands import BrandCatalog
from menuadmin.services.publisher import VersionedPublisher
from menuadmin.storage import BlobStores, get_blob_stores

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["brands"])


def get_catalog(stores: BlobStores = Depends(get_blob_stores)) -> BrandCatalog:
    return BrandCatalog(stores.menus)


@router.get("/brands")
async def list_brands(catalog: BrandCatalog = Depends(get_catalog)) -> Any:
    data = await catalog.brands()
    if data is None:
        raise NotFoundError("brands.json not found")
    return data


@router.get("/brands/{brand}")
async def brand_registry(
    brand: str = Path(pattern=SLUG),
    catalog: BrandCatalog = Depends(get_catalog),
) -> Any:
    data = await catalog.registry(brand)
    if data is None:
        raise NotFoundError(f"Registry not found for brand: {brand}")
    return data


@router.get("/stores/{brand}/{store}")
async def store_config(
    brand: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    catalog: BrandCatalog = Depends(get_catalog),
) -> Any:
    data = await catalog.store_config(brand, store)
    if data is None:
        raise NotFoundError(f"Store config not found: {brand}/{store}")
    return data


@router.post("/images/{brand}", response_model=ImageUploadResponse)
async def upload_image(
    brand: str = Path(pattern=SLUG),
    file: UploadFile = File(...),
    filename: Optional[str] = Form(None),
    ctx: AuthContext = Depends(require_auth),
    catalog: BrandCatalog = Depends(get_catalog),
):
    authorize_tenant(ctx, brand)
    data = await file.read()
    saved = await catalog.save_image(
        brand,
        data,
        file.content_type or "",
        filename,
        settings.IMAGE_TYPES,
        settings.IMAGE_MAX_BYTES,
    )
    return ImageUploadResponse(filename=saved.filename, url=saved.url, size=saved.size)


@router.post("/deploy/brand", response_model=DeployBrandResponse)
async def deploy_brand(
    brandSlug: str = Form(""),
    brandName: str = Form(""),
    locationSlug: str = Form(""),
    locationName: str = Form(""),
    logo: Optional[UploadFile] = File(None),
    ctx: AuthContext = Depends(require_privileged),
    catalog: BrandCatalog = Depends(get_catalog),
    publisher: VersionedPublisher = Depends(get_publisher),
    db: AsyncSession = Depends(get_db),
):
    brand_slug = brandSlug.strip().lower()
    location_slug = locationSlug.strip().lower()
    brand_name = brandName.strip()
    location_name = locationName.strip()
    if not (brand_slug and brand_name and location_slug and location_name):
        raise ValidationFailed("Missing required fields")

    logo_part = None
    if logo is not None:
        logo_part = (await logo.read(), logo.content_type or "", logo.filename or "")

    deployment = await catalog.deploy(
        publisher, ctx.key_id,
        brand_slug, brand_name, location_slug, location_name,
        logo=logo_part,
    )

    raw, key_hash, key_id = generate_api_key()
    await ApiKeyRepository(db).create(brand_slug, key_id, key_hash, "Initial key")
    log.info("brands.key_issued", brand=brand_slug, key_id=key_id)

    return DeployBrandResponse(
        brandUrl=deployment.brand_url,
        filesCreated=deployment.files_created,
        keyId=key_id,
        apiKey=raw,
        message=f'Brand "{brand_name}" deployed successfully. Save the API key - it won\'t be shown again.',
    )

