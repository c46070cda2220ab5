import json

import pytest
from unittest.mock import AsyncMock, patch
from contextlib import asynccontextmanager

from menuadmin.config import settings
from menuadmin.exceptions import FetchError

MENU_URL = "/api/menus/acme/downtown/dinner"
WEBHOOK = "/api/integrations/apify/webhook"
MENU = {"title": "Dinner", "items": [{"name": "Soup", "price": 600}, {"name": "Bread"}]}


async def _tenant_key(client, admin_headers, tenant="acme"):
    r = await client.post("/admin/keys", json={"tenant": tenant, "label": "pos"}, headers=admin_headers)
    assert r.status_code == 201
    body = r.json()
    return body["keyId"], {"Authorization": f"Bearer {body['apiKey']}"}


# ── Admin ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health(client):
    # Mock the DB engine.connect() used by the health endpoint
    mock_conn = AsyncMock()
    mock_conn.execute = AsyncMock()

    @asynccontextmanager
    async def mock_connect():
        yield mock_conn

    with patch("menuadmin.routers.admin.engine") as mock_engine, \
         patch("menuadmin.routers.admin.ping_redis", new_callable=AsyncMock, return_value=True):
        mock_engine.connect = mock_connect
        r = await client.get("/admin/health")
    assert r.status_code == 200
    body = r.json()
    assert body["database"] == "ok"
    assert body["redis"] == "ok"
    assert body["version"] is not None


@pytest.mark.asyncio
async def test_key_lifecycle(client, admin_headers):
    key_id, headers = await _tenant_key(client, admin_headers)
    assert key_id.startswith("key_")

    r = await client.put(MENU_URL, json=MENU, headers=headers)
    assert r.status_code == 200

    r = await client.delete(f"/admin/keys/{key_id}", headers=admin_headers)
    assert r.status_code == 204

    r = await client.put(MENU_URL, json=MENU, headers=headers)
    assert r.status_code == 401

    r = await client.delete(f"/admin/keys/{key_id}", headers=admin_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_tenant_key_cannot_use_admin_routes(client, admin_headers):
    _, headers = await _tenant_key(client, admin_headers)
    r = await client.post("/admin/keys", json={"tenant": "other"}, headers=headers)
    assert r.status_code == 403
    assert r.json()["error"] == "FORBIDDEN"


# ── Menus ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_save_requires_auth(client):
    r = await client.put(MENU_URL, json=MENU)
    assert r.status_code == 401
    assert r.json()["error"] == "UNAUTHORIZED"

    r = await client.put(MENU_URL, json=MENU, headers={"Authorization": "Bearer short"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_save_then_read_live(client, admin_headers, mock_redis):
    r = await client.put(MENU_URL, json=MENU, headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["liveUrl"] == "https://cdn.menus.test/acme/downtown__dinner.json"
    mock_redis.delete.assert_awaited()

    r = await client.get(MENU_URL)
    assert r.status_code == 200
    assert r.json()["items"] == MENU["items"]
    assert r.json()["title"] == "Dinner"
    mock_redis.setex.assert_awaited()


@pytest.mark.asyncio
async def test_read_served_from_cache(client, blobs, mock_redis):
    mock_redis.get = AsyncMock(return_value=json.dumps({"items": [{"name": "Cached"}]}))
    r = await client.get(MENU_URL)
    assert r.status_code == 200
    assert r.json() == {"items": [{"name": "Cached"}]}
    assert blobs.menus.puts == []


@pytest.mark.asyncio
async def test_missing_menu_is_404(client):
    r = await client.get("/api/menus/acme/downtown/brunch")
    assert r.status_code == 404
    assert r.json()["error"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_invalid_menu_body_rejected(client, admin_headers, blobs):
    r = await client.put(MENU_URL, json={"title": "no items"}, headers=admin_headers)
    assert r.status_code == 422
    assert blobs.internal.puts == []


@pytest.mark.asyncio
async def test_cross_tenant_write_forbidden(client, admin_headers, blobs):
    _, headers = await _tenant_key(client, admin_headers, tenant="acme")
    r = await client.put("/api/menus/globex/downtown/dinner", json=MENU, headers=headers)
    assert r.status_code == 403
    assert blobs.internal.puts == []
    assert blobs.menus.puts == []


@pytest.mark.asyncio
async def test_versions_listed_newest_first(client, admin_headers):
    key_id, headers = await _tenant_key(client, admin_headers)
    await client.put(MENU_URL, json=MENU, headers=admin_headers)
    await client.post(f"{MENU_URL}/upload", json={"items": []}, headers=headers)

    r = await client.get("/api/versions/acme/downtown/dinner")
    assert r.status_code == 200
    manifest = r.json()
    assert [v["type"] for v in manifest["versions"]] == ["upload", "edit"]
    assert [v["keyId"] for v in manifest["versions"]] == [key_id, "super_admin"]
    assert [v["itemCount"] for v in manifest["versions"]] == [0, 2]
    assert manifest["current"] == manifest["versions"][0]["id"]


@pytest.mark.asyncio
async def test_snapshot_fetch(client, admin_headers):
    r = await client.put(MENU_URL, json=MENU, headers=admin_headers)
    version_id = r.json()["versionId"]
    await client.put(MENU_URL, json={"items": []}, headers=admin_headers)

    r = await client.get(f"/api/versions/acme/downtown/dinner/{version_id}")
    assert r.status_code == 401

    r = await client.get(f"/api/versions/acme/downtown/dinner/{version_id}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["items"] == MENU["items"]

    r = await client.get("/api/versions/acme/downtown/dinner/2020-01-01T00-00-00-000000Z", headers=admin_headers)
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_save_takes_manifest_lock_when_enabled(client, admin_headers, mock_redis, monkeypatch):
    monkeypatch.setattr(settings, "MANIFEST_LOCK_ENABLED", True)
    r = await client.put(MENU_URL, json=MENU, headers=admin_headers)
    assert r.status_code == 200
    assert mock_redis.lock.call_args.args[0] == "lock:acme/downtown__dinner"


# ── Scraping & webhook ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_scrape(client, admin_headers, scraper):
    urls = ["https://www.doordash.com/store/venue-1/", "https://doordash.com/store/venue-2/"]
    r = await client.post("/api/admin/scrape/dd", json={"storeUrls": urls}, headers=admin_headers)
    assert r.status_code == 202
    body = r.json()
    assert body["jobId"] == "run-001"
    assert body["itemCount"] == 2
    assert body["notificationConfigured"] is True

    (started_urls, webhook_url), = scraper.started
    assert started_urls == urls
    assert webhook_url == f"https://api.menus.test{WEBHOOK}?secret=hook-secret"


@pytest.mark.asyncio
async def test_start_scrape_rejects_foreign_urls(client, admin_headers, scraper):
    bad = ["https://evil.test/store/1", "ftp://doordash.com/x", "https://notdoordash.com/store/2"]
    r = await client.post(
        "/api/admin/scrape/dd",
        json={"storeUrls": ["https://www.doordash.com/store/ok/"] + bad},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json()["context"]["invalidUrls"] == bad
    assert scraper.started == []


@pytest.mark.asyncio
async def test_start_scrape_requires_urls_and_privilege(client, admin_headers):
    r = await client.post("/api/admin/scrape/dd", json={"storeUrls": []}, headers=admin_headers)
    assert r.status_code == 400

    r = await client.post("/api/admin/scrape/dd", json={"storeUrls": ["https://doordash.com/store/a/"]})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_webhook_requires_secret(client):
    payload = {"eventType": "ACTOR.RUN.SUCCEEDED", "resource": {"id": "run-1", "defaultDatasetId": "ds-1"}}
    r = await client.post(WEBHOOK, json=payload)
    assert r.status_code == 401
    r = await client.post(f"{WEBHOOK}?secret=wrong", json=payload)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_webhook_success_ingests(client, scraper, make_store):
    scraper.batches["ds-1"] = [make_store(1), make_store(2, shape="flat")]
    payload = {"eventType": "ACTOR.RUN.SUCCEEDED", "resource": {"id": "run-1", "defaultDatasetId": "ds-1"}}

    r = await client.post(f"{WEBHOOK}?secret=hook-secret", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["received"] is True
    assert body["status"] == "success"
    assert body["restaurantsCreated"] == 2
    assert body["archiveKey"] == "raw/doordash/run-1.json.gz"

    r = await client.post(f"{WEBHOOK}?secret=hook-secret", json=payload)
    assert r.json()["duplicate"] is True


@pytest.mark.asyncio
async def test_webhook_failure_event_recorded(client, admin_headers):
    payload = {
        "eventType": "ACTOR.RUN.TIMED_OUT",
        "resource": {"id": "run-2", "defaultDatasetId": "ds-2", "statusMessage": "Took too long"},
    }
    r = await client.post(f"{WEBHOOK}?secret=hook-secret", json=payload)
    assert r.status_code == 200
    assert r.json()["status"] == "failed"

    r = await client.get("/api/admin/imports", headers=admin_headers)
    (row,) = r.json()
    assert row["job_id"] == "run-2"
    assert row["status"] == "failed"
    assert row["error_summary"] == "timedOut: Took too long"


@pytest.mark.asyncio
async def test_webhook_other_event_ignored(client):
    payload = {"eventType": "ACTOR.RUN.CREATED", "eventData": {"actorRunId": "run-3"}}
    r = await client.post(f"{WEBHOOK}?secret=hook-secret", json=payload)
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"


@pytest.mark.asyncio
async def test_webhook_without_run_id(client):
    r = await client.post(f"{WEBHOOK}?secret=hook-secret", json={"eventType": "ACTOR.RUN.SUCCEEDED"})
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_replay_and_list_imports(client, admin_headers, scraper, make_store):
    scraper.batches["ds-5"] = [make_store(1)]
    r = await client.post(
        "/api/admin/imports/replay",
        json={"jobId": "run-5", "datasetId": "ds-5"},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "success"
    assert r.json()["drafts_created"] == 1

    r = await client.get("/api/admin/imports", headers=admin_headers)
    assert r.status_code == 200
    (row,) = r.json()
    assert row["job_id"] == "run-5"
    assert row["archive_key"] == "raw/doordash/run-5.json.gz"
    assert row["item_count"] == 1


@pytest.mark.asyncio
async def test_replay_fetch_failure_surfaces_as_502(client, admin_headers, scraper):
    scraper.batches["ds-6"] = FetchError("Scraping service error: 503 - busy")
    r = await client.post(
        "/api/admin/imports/replay",
        json={"jobId": "run-6", "datasetId": "ds-6"},
        headers=admin_headers,
    )
    assert r.status_code == 502
    assert r.json()["error"] == "UPSTREAM_FETCH_FAILED"


@pytest.mark.asyncio
async def test_malformed_manifest_lists_as_empty(client, blobs):
    blobs.internal.objects["acme/downtown__dinner/manifest.json"] = json.dumps(
        {"current": "v1", "versions": [{"id": 7}]}
    ).encode()
    r = await client.get("/api/versions/acme/downtown/dinner")
    assert r.status_code == 200
    assert r.json() == {"current": None, "versions": []}


# ── Middleware ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_forwarded_for_ignored_unless_trusted(client, monkeypatch):
    from structlog.testing import capture_logs

    forwarded = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}
    with capture_logs() as logs:
        await client.get("/api/brands", headers=forwarded)
    request_logs = [e for e in logs if e["event"] == "http.request"]
    assert request_logs and request_logs[0]["client"] != "203.0.113.9"

    monkeypatch.setattr(settings, "TRUSTED_PROXY_HEADERS", ["X-Forwarded-For"])
    with capture_logs() as logs:
        await client.get("/api/brands", headers=forwarded)
    request_logs = [e for e in logs if e["event"] == "http.request"]
    assert request_logs[0]["client"] == "203.0.113.9"
