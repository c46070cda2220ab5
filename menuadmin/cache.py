from __future__ import annotations

import json
import hashlib
from typing import Any, AsyncIterator, Optional
from contextlib import asynccontextmanager

from redis.asyncio import Redis, ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import LockError, RedisError

import structlog
from menuadmin.config import settings
from menuadmin.exceptions import StorageError

log = structlog.get_logger(__name__)

_pool: Optional[ConnectionPool] = None


# ── Pool lifecycle ────────────────────────────────────────────────────────────

async def init_redis_pool() -> None:
    global _pool
    _pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_POOL_SIZE,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
        decode_responses=True,
        retry=Retry(ExponentialBackoff(), retries=3),
        retry_on_error=[RedisError],
    )
    log.info("redis.pool.initialized", pool_size=settings.REDIS_POOL_SIZE)


async def close_redis_pool() -> None:
    global _pool
    if _pool:
        await _pool.aclose()
        _pool = None
        log.info("redis.pool.closed")


def get_redis() -> Redis:
    if _pool is None:
        raise StorageError("Redis pool not initialized")
    return Redis(connection_pool=_pool)


async def ping_redis() -> bool:
    try:
        r = get_redis()
        return await r.ping()
    except Exception:
        return False


# ── Key builder ───────────────────────────────────────────────────────────────

def build_key(*parts: Any) -> str:
    raw = ":".join(str(p) for p in parts)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:12]
    slug = raw[:60].replace(" ", "_")
    return f"menus:v1:{digest}:{slug}"


def menu_cache_key(tenant: str, store: str, menu: str) -> str:
    return build_key("live", tenant, store, menu)


# ── Best-effort read cache ────────────────────────────────────────────────────
# Redis trouble degrades to a miss; the blob store stays the source of truth.

async def cache_get(key: str) -> Optional[Any]:
    try:
        value_raw = await get_redis().get(key)
        return json.loads(value_raw) if value_raw is not None else None
    except (RedisError, StorageError) as e:
        log.warning("cache.get.error", key=key, error=str(e))
        return None


async def cache_set(key: str, value: Any, ttl: int) -> None:
    try:
        await get_redis().setex(key, ttl, json.dumps(value, default=str))
    except (RedisError, StorageError) as e:
        log.warning("cache.set.error", key=key, error=str(e))


async def cache_delete(key: str) -> None:
    try:
        await get_redis().delete(key)
    except (RedisError, StorageError) as e:
        log.warning("cache.delete.error", key=key, error=str(e))


# ── Per-key write serialization ───────────────────────────────────────────────

@asynccontextmanager
async def key_lock(name: str) -> AsyncIterator[None]:
    """
    Hold a Redis lock named after a (tenant, store, menu) key while the
    manifest and audit log are read, modified and written back.
    """
    lock = get_redis().lock(
        f"lock:{name}",
        timeout=settings.MANIFEST_LOCK_TIMEOUT,
        blocking_timeout=settings.MANIFEST_LOCK_WAIT,
    )
    try:
        acquired = await lock.acquire()
    except RedisError as e:
        raise StorageError("Write lock unavailable", {"key": name}) from e
    if not acquired:
        raise StorageError("Another save for this menu is in progress", {"key": name})

    try:
        yield
    finally:
        try:
            await lock.release()
        except (LockError, RedisError) as e:
            log.warning("lock.release.failed", key=name, error=str(e))
