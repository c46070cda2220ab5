from __future__ import annotations
from typing import Any

from fastapi import APIRouter, Depends, Path

from menuadmin.auth import AuthContext, authorize_tenant, require_auth
from menuadmin.cache import cache_delete, cache_get, cache_set, key_lock, menu_cache_key
from menuadmin.config import settings
from menuadmin.exceptions import NotFoundError
from menuadmin.schemas import ManifestOut, MenuDocument, SaveMenuResponse
from menuadmin.services.publisher import VersionType, VersionedPublisher
from menuadmin.storage import BlobStores, get_blob_stores

router = APIRouter(prefix="/api", tags=["menus"])

SLUG = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"
VERSION_ID = r"^[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9-]+Z$"


def get_publisher(stores: BlobStores = Depends(get_blob_stores)) -> VersionedPublisher:
    return VersionedPublisher(
        internal=stores.internal,
        public=stores.menus,
        max_versions=settings.MANIFEST_MAX_VERSIONS,
        lock=key_lock if settings.MANIFEST_LOCK_ENABLED else None,
    )


@router.get("/menus/{tenant}/{store}/{menu}")
async def get_menu(
    tenant: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    menu: str = Path(pattern=SLUG),
    publisher: VersionedPublisher = Depends(get_publisher),
) -> Any:
    cache_key = menu_cache_key(tenant, store, menu)
    cached = await cache_get(cache_key)
    if cached is not None:
        return cached

    document = await publisher.get_live(tenant, store, menu)
    if document is None:
        raise NotFoundError(f"Menu not found: {tenant}/{store}/{menu}")
    await cache_set(cache_key, document, settings.CACHE_TTL_MENU)
    return document


async def _save(
    tenant: str,
    store: str,
    menu: str,
    document: MenuDocument,
    version_type: VersionType,
    ctx: AuthContext,
    publisher: VersionedPublisher,
) -> SaveMenuResponse:
    authorize_tenant(ctx, tenant)
    result = await publisher.publish(
        tenant, store, menu,
        document.model_dump(mode="json", exclude_unset=True),
        version_type,
        ctx.key_id,
    )
    await cache_delete(menu_cache_key(tenant, store, menu))
    return SaveMenuResponse(versionId=result.version_id, liveUrl=result.live_url)


@router.put("/menus/{tenant}/{store}/{menu}", response_model=SaveMenuResponse)
async def save_menu(
    document: MenuDocument,
    tenant: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    menu: str = Path(pattern=SLUG),
    ctx: AuthContext = Depends(require_auth),
    publisher: VersionedPublisher = Depends(get_publisher),
):
    return await _save(tenant, store, menu, document, "edit", ctx, publisher)


@router.post("/menus/{tenant}/{store}/{menu}/upload", response_model=SaveMenuResponse)
async def upload_menu(
    document: MenuDocument,
    tenant: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    menu: str = Path(pattern=SLUG),
    ctx: AuthContext = Depends(require_auth),
    publisher: VersionedPublisher = Depends(get_publisher),
):
    return await _save(tenant, store, menu, document, "upload", ctx, publisher)


@router.get("/versions/{tenant}/{store}/{menu}", response_model=ManifestOut)
async def list_versions(
    tenant: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    menu: str = Path(pattern=SLUG),
    publisher: VersionedPublisher = Depends(get_publisher),
):
    return await publisher.load_manifest(tenant, store, menu)


@router.get("/versions/{tenant}/{store}/{menu}/{version_id}")
async def get_version(
    tenant: str = Path(pattern=SLUG),
    store: str = Path(pattern=SLUG),
    menu: str = Path(pattern=SLUG),
    version_id: str = Path(pattern=VERSION_ID),
    ctx: AuthContext = Depends(require_auth),
    publisher: VersionedPublisher = Depends(get_publisher),
) -> Any:
    authorize_tenant(ctx, tenant)
    snapshot = await publisher.get_version(tenant, store, menu, version_id)
    if snapshot is None:
        raise NotFoundError(f"Version {version_id} not found")
    return snapshot
