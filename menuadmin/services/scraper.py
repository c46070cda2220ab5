from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog

from tenacity import (
    retry, stop_after_attempt, wait_exponential,
    retry_if_exception_type,
)
from menuadmin.config import settings
from menuadmin.exceptions import ConfigurationError, FetchError

log = structlog.get_logger(__name__)

WEBHOOK_EVENT_TYPES = [
    "ACTOR.RUN.SUCCEEDED",
    "ACTOR.RUN.FAILED",
    "ACTOR.RUN.ABORTED",
    "ACTOR.RUN.TIMED_OUT",
]


@dataclass
class JobHandle:
    job_id: str
    dataset_id: str
    status: str


# ── Transport ─────────────────────────────────────────────────────────────────
# Only connection-establishment failures are retried: the request never left,
# so a second attempt cannot start a duplicate run. Timeouts and HTTP errors
# surface immediately.

@retry(
    retry=retry_if_exception_type(httpx.ConnectError),
    stop=stop_after_attempt(settings.CONNECT_RETRIES),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)
async def _send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    return await client.request(method, url, timeout=settings.HTTP_TIMEOUT, **kwargs)


class ScraperClient:
    """Apify v2 REST client: start a store scrape, read back its dataset."""

    def __init__(
        self,
        token: str | None = None,
        actor_id: str | None = None,
        base_url: str | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.token = settings.APIFY_TOKEN if token is None else token
        self.actor_id = settings.APIFY_ACTOR_ID if actor_id is None else actor_id
        self.base_url = (base_url or settings.APIFY_BASE_URL).rstrip("/")
        self._http = http

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        if not self.configured:
            raise ConfigurationError("Scraping service token is not configured")

        params = dict(kwargs.pop("params", {}) or {})
        params["token"] = self.token
        url = f"{self.base_url}{path}"

        try:
            if self._http is not None:
                resp = await _send(self._http, method, url, params=params, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await _send(client, method, url, params=params, **kwargs)
        except httpx.HTTPError as exc:
            log.error("scraper.request.failed", path=path, error=str(exc))
            raise FetchError(f"Scraping service unreachable: {exc}", {"path": path}) from exc

        if resp.is_error:
            log.error("scraper.request.rejected", path=path, status=resp.status_code)
            raise FetchError(
                f"Scraping service error: {resp.status_code} - {resp.text[:500]}",
                {"path": path, "status": resp.status_code},
            )
        return resp.json()

    async def start_job(self, source_urls: List[str], webhook_url: Optional[str] = None) -> JobHandle:
        if not self.actor_id:
            raise ConfigurationError("Scraping actor id is not configured")

        params: Dict[str, str] = {}
        if webhook_url:
            hooks = [{"eventTypes": WEBHOOK_EVENT_TYPES, "requestUrl": webhook_url}]
            params["webhooks"] = base64.b64encode(json.dumps(hooks).encode()).decode()

        body = await self._request(
            "POST",
            f"/acts/{self.actor_id}/runs",
            params=params,
            json={"startUrls": [{"url": u} for u in source_urls]},
        )
        data = body["data"]
        handle = JobHandle(
            job_id=data["id"],
            dataset_id=data["defaultDatasetId"],
            status=data.get("status", "READY"),
        )
        log.info("scraper.job.started", job_id=handle.job_id, dataset_id=handle.dataset_id, urls=len(source_urls))
        return handle

    async def fetch_batch(self, dataset_id: str) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET",
            f"/datasets/{dataset_id}/items",
            params={"clean": "true", "format": "json"},
        )
        if not isinstance(data, list):
            raise FetchError("Dataset items response is not a list", {"dataset_id": dataset_id})
        log.info("scraper.batch.fetched", dataset_id=dataset_id, items=len(data))
        return data

    async def get_run(self, job_id: str) -> Dict[str, Any]:
        body = await self._request("GET", f"/actor-runs/{job_id}")
        return body["data"]


def get_scraper() -> ScraperClient:
    return ScraperClient()
