"""
Apify gateway: start an actor run, poll it until a terminal state, read its dataset.

Every call is bounded: the poll loop has an absolute deadline independent of the
poll interval and can be interrupted through an ``asyncio.Event``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from signal_monitor.settings import get_settings

logger = logging.getLogger(__name__)

APIFY_ACTOR_RUN_URL = "{base}/acts/{actor_id}/runs"
APIFY_RUN_STATUS_URL = "{base}/actor-runs/{run_id}"
APIFY_DATASET_ITEMS_URL = "{base}/datasets/{dataset_id}/items"

STATUS_SUCCEEDED = "SUCCEEDED"
FAILED_STATUSES = {"FAILED", "ABORTED", "TIMED_OUT", "TIMED-OUT"}
DATASET_PAGE_SIZE = 1000

T = TypeVar("T")


class ApifyError(Exception):
    """Base class for gateway failures."""


class ApifyRequestError(ApifyError):
    def __init__(self, message: str, *, status: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status = status
        self.body = body


class RunFailedError(ApifyError):
    def __init__(self, run_id: str, status: str, error_message: str | None = None):
        super().__init__(f"Apify run {run_id} ended with status {status}")
        self.run_id = run_id
        self.status = status
        self.error_message = error_message


class GatewayTimeoutError(ApifyError, TimeoutError):
    def __init__(self, run_id: str, elapsed_s: float):
        super().__init__(f"Apify run {run_id} not finished after {elapsed_s:.0f}s")
        self.run_id = run_id
        self.elapsed_s = elapsed_s


class RunCancelledError(ApifyError):
    def __init__(self, run_id: str):
        super().__init__(f"Waiting for Apify run {run_id} was cancelled")
        self.run_id = run_id


@dataclass
class JobSpec:
    actor_id: str
    input: dict[str, Any] = field(default_factory=dict)
    label: str = ""

    @property
    def name(self) -> str:
        return self.label or self.actor_id


@dataclass
class RunResult:
    run_id: str
    status: str
    dataset_id: str | None = None


def _normalize_actor_id(actor_id: str) -> str:
    """Apify wants username~actor-name in URLs."""
    if "~" in actor_id:
        return actor_id
    if "/" in actor_id:
        return actor_id.replace("/", "~", 1)
    return actor_id


class ApifyGateway:
    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        poll_interval_s: float | None = None,
        max_wait_s: float | None = None,
        request_timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.token = token if token is not None else settings.apify_token
        self.base_url = (base_url or settings.apify_base_url).rstrip("/")
        self.poll_interval_s = settings.apify_poll_interval_sec if poll_interval_s is None else poll_interval_s
        self.max_wait_s = settings.apify_max_wait_sec if max_wait_s is None else max_wait_s
        self.request_timeout_s = request_timeout_s or settings.apify_request_timeout_sec
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.request_timeout_s, transport=self._transport)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
        params = dict(kwargs.pop("params", None) or {})
        params["token"] = self.token
        try:
            resp = await client.request(method, url, params=params, **kwargs)
        except httpx.HTTPError as exc:
            raise ApifyRequestError(f"{method} {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ApifyRequestError(
                f"{method} {url} returned {resp.status_code}",
                status=resp.status_code,
                body=resp.text[:400],
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ApifyRequestError(f"{method} {url} returned invalid JSON", body=resp.text[:400]) from exc

    async def start_run(self, spec: JobSpec) -> str:
        if not self.token:
            raise ApifyError("APIFY_TOKEN missing")
        url = APIFY_ACTOR_RUN_URL.format(base=self.base_url, actor_id=_normalize_actor_id(spec.actor_id))
        async with self._client() as client:
            payload = await self._request(client, "POST", url, json=spec.input)
        run_id = ((payload or {}).get("data") or {}).get("id")
        if not run_id:
            raise ApifyRequestError(f"Apify run id missing for {spec.name}", body=str(payload)[:400])
        logger.info("Apify run started: actor=%s run=%s", spec.name, run_id)
        return run_id

    async def poll_until_terminal(
        self,
        run_id: str,
        *,
        max_wait_s: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Poll run status until SUCCEEDED; raise on failure, deadline, or cancellation."""
        budget = self.max_wait_s if max_wait_s is None else max_wait_s
        loop = asyncio.get_running_loop()
        started = loop.time()
        url = APIFY_RUN_STATUS_URL.format(base=self.base_url, run_id=run_id)

        async with self._client() as client:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelledError(run_id)

                payload = await self._request(client, "GET", url)
                data = (payload or {}).get("data") or {}
                status = str(data.get("status") or "").upper()
                logger.debug("Polling run %s: %s", run_id, status)

                if status == STATUS_SUCCEEDED:
                    logger.info("Apify run %s succeeded", run_id)
                    return RunResult(run_id=run_id, status=status, dataset_id=data.get("defaultDatasetId"))
                if status in FAILED_STATUSES:
                    raise RunFailedError(run_id, status, data.get("errorMessage"))

                elapsed = loop.time() - started
                if elapsed >= budget:
                    raise GatewayTimeoutError(run_id, elapsed)

                await self._wait(min(self.poll_interval_s, budget - elapsed), run_id, cancel_event)

    async def _wait(self, delay: float, run_id: str, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise RunCancelledError(run_id)

    async def fetch_result_set(self, dataset_id: str) -> list[dict]:
        url = APIFY_DATASET_ITEMS_URL.format(base=self.base_url, dataset_id=dataset_id)
        items: list[dict] = []
        offset = 0
        async with self._client() as client:
            while True:
                page = await self._request(
                    client,
                    "GET",
                    url,
                    params={"clean": "true", "limit": DATASET_PAGE_SIZE, "offset": offset},
                    headers={"Accept": "application/json"},
                )
                if not isinstance(page, list):
                    raise ApifyRequestError(f"Invalid dataset response for {dataset_id}", body=str(page)[:400])
                items.extend(item for item in page if isinstance(item, dict))
                if len(page) < DATASET_PAGE_SIZE:
                    break
                offset += DATASET_PAGE_SIZE
        return items

    async def run_job(self, spec: JobSpec, *, cancel_event: asyncio.Event | None = None) -> list[dict]:
        run_id = await self.start_run(spec)
        result = await self.poll_until_terminal(run_id, cancel_event=cancel_event)
        if not result.dataset_id:
            raise ApifyRequestError(f"Apify dataset missing for run {run_id}")
        items = await self.fetch_result_set(result.dataset_id)
        logger.info("Apify job %s returned %d items", spec.name, len(items))
        return items


async def with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int | None = None,
    backoff_s: float | None = None,
    label: str = "apify job",
) -> T:
    """Run ``call`` and retry it after a fixed backoff on any gateway/network error."""
    settings = get_settings()
    retries = settings.apify_max_retries if retries is None else retries
    backoff_s = settings.apify_retry_backoff_sec if backoff_s is None else backoff_s

    attempt = 0
    while True:
        try:
            return await call()
        except RunCancelledError:
            raise
        except Exception as exc:
            if attempt >= retries:
                logger.error("%s failed after %d attempt(s): %s", label, attempt + 1, exc)
                raise
            attempt += 1
            logger.warning("%s attempt %d failed (%s), retrying in %.0fs", label, attempt, exc, backoff_s)
            await asyncio.sleep(backoff_s)
