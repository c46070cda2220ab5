from __future__ import annotations
from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────────────────────────
    APP_NAME: str = "Menu Admin API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # ── Authentication ───────────────────────────────────────────────────────
    ADMIN_TOKEN: str  # required, no default
    API_KEY_MIN_LENGTH: int = 32

    # ── CORS ─────────────────────────────────────────────────────────────────
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]

    # ── Trusted proxies ──────────────────────────────────────────────────────
    TRUSTED_PROXY_HEADERS: List[str] = []   # e.g. ["X-Forwarded-For"] behind a known proxy

    # ── Database ─────────────────────────────────────────────────────────────
    DB_USER: str  # required — no default
    DB_PASSWORD: str  # required — no default
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "menuadmin"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # ── Redis ────────────────────────────────────────────────────────────────
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_POOL_SIZE: int = 20
    REDIS_SOCKET_TIMEOUT: float = 2.0
    REDIS_CONNECT_TIMEOUT: float = 2.0

    @property
    def REDIS_URL(self) -> str:
        from urllib.parse import quote_plus
        if self.REDIS_PASSWORD:
            return f"redis://:{quote_plus(self.REDIS_PASSWORD)}@{self.REDIS_HOST}:{self.REDIS_PORT}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    CACHE_TTL_MENU: int = 60         # live menu reads
    MANIFEST_LOCK_ENABLED: bool = True
    MANIFEST_LOCK_TIMEOUT: float = 30.0      # lock auto-expiry
    MANIFEST_LOCK_WAIT: float = 10.0         # how long a writer waits for the lock

    # ── Blob storage (Supabase Storage) ──────────────────────────────────────
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    MENU_BUCKET: str = "menus"               # public, serves live documents
    INTERNAL_BUCKET: str = "menus-internal"  # snapshots, manifests, audit logs
    SCRAPE_BUCKET: str = "scrapes"           # raw ingestion archives
    PUBLIC_BASE_URL: str = ""                # public URL of MENU_BUCKET
    IMAGE_MAX_BYTES: int = 10 * 1024 * 1024
    IMAGE_TYPES: List[str] = ["image/jpeg", "image/png", "image/gif", "image/webp"]

    # ── Scraping service (Apify) ─────────────────────────────────────────────
    APIFY_TOKEN: str = ""
    APIFY_ACTOR_ID: str = ""
    APIFY_BASE_URL: str = "https://api.apify.com/v2"
    APIFY_WEBHOOK_SECRET: str = ""
    PUBLIC_API_URL: str = ""                 # origin used to build the webhook callback
    SCRAPE_ALLOWED_HOSTS: List[str] = ["doordash.com"]
    HTTP_TIMEOUT: float = 30.0
    CONNECT_RETRIES: int = 3

    # ── Ingestion ────────────────────────────────────────────────────────────
    INGEST_SOURCE: str = "doordash"
    CLAIM_TTL_DAYS: int = 14
    ERROR_SUMMARY_LIMIT: int = 1000

    # ── Versioning ───────────────────────────────────────────────────────────
    MANIFEST_MAX_VERSIONS: int = 100

    @property
    def DATABASE_URL(self) -> str:
        from urllib.parse import quote_plus
        return (
            f"postgresql+asyncpg://{quote_plus(self.DB_USER)}:{quote_plus(self.DB_PASSWORD)}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    model_config = {"env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
