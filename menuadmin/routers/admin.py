from __future__ import annotations
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession
import sqlalchemy
import structlog

from menuadmin.auth import AuthContext, generate_api_key, require_privileged
from menuadmin.cache import ping_redis
from menuadmin.config import settings
from menuadmin.database import engine, get_db
from menuadmin.exceptions import NotFoundError
from menuadmin.repositories.api_keys import ApiKeyRepository
from menuadmin.schemas import CreateKeyRequest, CreateKeyResponse, HealthResponse
from menuadmin.storage import storage_ready

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health():
    """Health check is intentionally unauthenticated for load balancer probes."""
    redis_ok = await ping_redis()
    try:
        async with engine.connect() as conn:
            await conn.execute(sqlalchemy.text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "error"

    storage_ok = storage_ready()

    return HealthResponse(
        status="ok" if (redis_ok and db_status == "ok" and storage_ok) else "degraded",
        database=db_status,
        redis="ok" if redis_ok else "error",
        storage="ok" if storage_ok else "not_configured",
        version=settings.APP_VERSION,
    )


@router.post("/keys", response_model=CreateKeyResponse, status_code=201)
async def create_key(
    body: CreateKeyRequest,
    ctx: AuthContext = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    raw, key_hash, key_id = generate_api_key()
    await ApiKeyRepository(db).create(body.tenant, key_id, key_hash, body.label)
    log.info("api_key.created", tenant=body.tenant, key_id=key_id)
    return CreateKeyResponse(keyId=key_id, tenant=body.tenant, apiKey=raw)


@router.delete("/keys/{key_id}", status_code=204)
async def revoke_key(
    key_id: str = Path(pattern=r"^key_[0-9a-f]+$"),
    ctx: AuthContext = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
):
    if not await ApiKeyRepository(db).revoke(key_id):
        raise NotFoundError(f"Key {key_id} not found or already revoked")
    log.info("api_key.revoked", key_id=key_id)
