import base64
import json

import httpx
import pytest

from menuadmin.exceptions import ConfigurationError, FetchError
from menuadmin.services.scraper import WEBHOOK_EVENT_TYPES, ScraperClient

BASE = "https://api.apify.test/v2"


def _client(handler, token="tok-123", actor_id="acme~dd-scraper"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ScraperClient(token=token, actor_id=actor_id, base_url=BASE, http=http)


@pytest.mark.asyncio
async def test_fetch_batch_requests_clean_json_items():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"url": "a"}, {"url": "b"}])

    items = await _client(handler).fetch_batch("ds-42")

    assert items == [{"url": "a"}, {"url": "b"}]
    (req,) = seen
    assert req.method == "GET"
    assert req.url.path == "/v2/datasets/ds-42/items"
    assert req.url.params["clean"] == "true"
    assert req.url.params["format"] == "json"
    assert req.url.params["token"] == "tok-123"


@pytest.mark.asyncio
async def test_error_status_raises_fetch_error():
    def handler(request):
        return httpx.Response(500, text="upstream exploded")

    with pytest.raises(FetchError) as exc_info:
        await _client(handler).fetch_batch("ds-1")
    assert "500" in exc_info.value.detail
    assert exc_info.value.context["status"] == 500


@pytest.mark.asyncio
async def test_non_list_dataset_raises_fetch_error():
    def handler(request):
        return httpx.Response(200, json={"error": "nope"})

    with pytest.raises(FetchError):
        await _client(handler).fetch_batch("ds-1")


@pytest.mark.asyncio
async def test_timeout_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FetchError):
        await _client(handler).fetch_batch("ds-1")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_connect_error_retried_once_then_succeeds():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json=[])

    assert await _client(handler).fetch_batch("ds-1") == []
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_start_job_posts_urls_and_encoded_webhook():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"data": {"id": "run-7", "defaultDatasetId": "ds-7", "status": "RUNNING"}})

    handle = await _client(handler).start_job(
        ["https://www.doordash.com/store/a/"],
        webhook_url="https://api.menus.test/hook?secret=s",
    )

    assert (handle.job_id, handle.dataset_id, handle.status) == ("run-7", "ds-7", "RUNNING")
    (req,) = seen
    assert req.method == "POST"
    assert req.url.path == "/v2/acts/acme~dd-scraper/runs"
    assert json.loads(req.content) == {"startUrls": [{"url": "https://www.doordash.com/store/a/"}]}

    hooks = json.loads(base64.b64decode(req.url.params["webhooks"]))
    assert hooks == [{"eventTypes": WEBHOOK_EVENT_TYPES, "requestUrl": "https://api.menus.test/hook?secret=s"}]


@pytest.mark.asyncio
async def test_start_job_without_webhook_omits_param():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"data": {"id": "run-1", "defaultDatasetId": "ds-1"}})

    handle = await _client(handler).start_job(["https://www.doordash.com/store/a/"])

    assert handle.status == "READY"
    assert "webhooks" not in seen[0].url.params


@pytest.mark.asyncio
async def test_missing_token_fails_before_network():
    def handler(request):
        raise AssertionError("no request expected")

    client = _client(handler, token="")
    assert client.configured is False
    with pytest.raises(ConfigurationError):
        await client.fetch_batch("ds-1")


@pytest.mark.asyncio
async def test_get_run_returns_data_envelope():
    def handler(request):
        assert request.url.path == "/v2/actor-runs/run-3"
        return httpx.Response(200, json={"data": {"id": "run-3", "status": "SUCCEEDED"}})

    run = await _client(handler).get_run("run-3")
    assert run["status"] == "SUCCEEDED"
