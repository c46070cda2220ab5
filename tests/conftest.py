import os

# Set required env vars BEFORE any app imports trigger Settings()
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token-0123456789abcdef0123")
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("APIFY_TOKEN", "apify-test-token")
os.environ.setdefault("APIFY_ACTOR_ID", "acme~doordash-scraper")
os.environ.setdefault("APIFY_WEBHOOK_SECRET", "hook-secret")
os.environ.setdefault("PUBLIC_API_URL", "https://api.menus.test")
os.environ.setdefault("MANIFEST_LOCK_ENABLED", "false")

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from menuadmin.main import app
from menuadmin.database import Base, get_db
from menuadmin.exceptions import StorageError
from menuadmin.services.scraper import JobHandle, get_scraper
from menuadmin.storage import BlobStores, get_blob_stores

TEST_DB = "sqlite+aiosqlite:///:memory:"
ADMIN_TOKEN = os.environ["ADMIN_TOKEN"]


# ── Fakes ─────────────────────────────────────────────────────────────────────

class MemoryBlobStore:
    def __init__(self, base_url: str = "https://cdn.menus.test"):
        self.base_url = base_url
        self.objects: Dict[str, bytes] = {}
        self.meta: Dict[str, dict] = {}
        self.puts: List[str] = []
        self.fail_on: List[str] = []      # key suffixes that raise on put

    async def put(self, key, data, content_type, metadata=None):
        if any(key.endswith(s) for s in self.fail_on):
            raise StorageError(f"simulated failure writing {key}")
        self.objects[key] = bytes(data)
        self.meta[key] = {"content_type": content_type, **(metadata or {})}
        self.puts.append(key)

    async def get(self, key) -> Optional[bytes]:
        return self.objects.get(key)

    def public_url(self, key):
        return f"{self.base_url}/{key}"


class FakeScraper:
    def __init__(self):
        self.configured = True
        self.actor_id = "acme~doordash-scraper"
        self.batches: Dict[str, object] = {}
        self.fetched: List[str] = []
        self.started: List[tuple] = []

    async def fetch_batch(self, dataset_id):
        self.fetched.append(dataset_id)
        batch = self.batches[dataset_id]
        if isinstance(batch, Exception):
            raise batch
        return copy.deepcopy(batch)

    async def start_job(self, source_urls, webhook_url=None):
        self.started.append((list(source_urls), webhook_url))
        return JobHandle(job_id="run-001", dataset_id="ds-001", status="READY")


class Ticker:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_DB, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    Session = async_sessionmaker(db_engine, expire_on_commit=False)
    async with Session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def blobs():
    return BlobStores(
        menus=MemoryBlobStore(),
        internal=MemoryBlobStore(),
        scrapes=MemoryBlobStore(),
    )


@pytest.fixture
def scraper():
    return FakeScraper()


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def make_store():
    """Build an upstream store record in one of the provider's layouts."""

    def _make(n: int, shape: str = "item_lists", name: str | None = None, with_url: bool = True) -> dict:
        venue = name or f"Venue {n}"
        store = {
            "restaurant": {
                "id": str(1000 + n),
                "name": venue,
                "location": {"address": {"street": f"{n} Main St", "city": "Austin", "state": "TX"}},
            },
            "phoneNumber": "+15125550100",
            "reviews": [{"author": "someone", "text": "great"}],
        }
        if with_url:
            store["url"] = f"https://www.doordash.com/store/venue-{n}/"
        if shape == "item_lists":
            store["item_list_mains"] = {
                "name": "main_dishes",
                "sort_order": 2,
                "items": [
                    {"name": "Burger", "price": {"amount": 12.99, "display": "$12.99"},
                     "images": [{"url": "https://img.test/burger.jpg"}]},
                    {"name": "!Chef Special", "price": "$18.50", "options": [{"name": "Size"}]},
                ],
            }
            store["item_list_popular"] = {
                "name": "most_popular",
                "sort_order": 1,
                "items": [{"name": "Fries", "price": 4.5, "description": "Crispy"}],
            }
        elif shape == "flat":
            store["menu"] = [
                {"name": "Soup", "price": "$6.00", "category": "starters"},
                {"name": "Water", "price": None},
                {"name": "Salad", "price": "7", "category": "starters"},
                {"name": "Steak", "price": "$29.99", "menuCategory": "grill"},
            ]
        return store

    return _make


@pytest.fixture
def mock_redis():
    mock_r = AsyncMock()
    mock_r.ping = AsyncMock(return_value=True)
    mock_r.get = AsyncMock(return_value=None)
    mock_r.setex = AsyncMock(return_value=True)
    mock_r.delete = AsyncMock(return_value=1)
    # lock() is a sync call returning a lock object
    mock_lock = MagicMock()
    mock_lock.acquire = AsyncMock(return_value=True)
    mock_lock.release = AsyncMock(return_value=None)
    mock_r.lock = MagicMock(return_value=mock_lock)
    with patch("menuadmin.cache.get_redis", return_value=mock_r):
        yield mock_r


@pytest_asyncio.fixture
async def client(db, blobs, scraper, mock_redis):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_stores] = lambda: blobs
    app.dependency_overrides[get_scraper] = lambda: scraper

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
