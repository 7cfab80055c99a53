"""Remote call-log queries and the rate-limited fallback fetcher.

Two layers:

- ``HttpCallLogClient`` talks to the platform call-log endpoint over httpx.
- ``RemoteCallFetcher`` fans a contact's phone identities out into one query
  each and runs them through ``concurrent_execute`` so the remote rate limits
  are respected.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from recentcalls.config import DEFAULT_INTER_BATCH_DELAY_MS, DEFAULT_MAX_CONCURRENT, RemoteConfig
from recentcalls.core.concurrency import AsyncTask, concurrent_execute
from recentcalls.core.metrics import ResolutionMetrics
from recentcalls.core.telemetry import resolution_span
from recentcalls.errors import CallLogRateLimitedError, CallLogRequestError, RemoteFetchError
from recentcalls.models import (
    VOICE_CALL_TYPE,
    CallLogPage,
    CallRecord,
    Contact,
    PhoneIdentity,
    PhoneKind,
)

logger = logging.getLogger(__name__)

CALL_LOG_PATH = "/restapi/v1.0/account/~/extension/~/call-log"


class CallLogQuery(BaseModel):
    """Filter for one remote call-log query."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    phone_number: str | None = None
    extension_number: str | None = None
    date_from: str = Field(min_length=1)
    per_page: int = Field(ge=1)
    type: str = VOICE_CALL_TYPE

    @model_validator(mode="after")
    def _one_party_filter(self) -> CallLogQuery:
        if self.phone_number is None and self.extension_number is None:
            raise ValueError("phone_number or extension_number is required")
        return self

    def to_params(self) -> dict[str, Any]:
        """Wire query parameters for the call-log endpoint."""
        params: dict[str, Any] = {
            "dateFrom": self.date_from,
            "perPage": self.per_page,
            "type": self.type,
        }
        if self.phone_number is not None:
            params["phoneNumber"] = self.phone_number
        if self.extension_number is not None:
            params["extensionNumber"] = self.extension_number
        return params


class CallLogQueryClient(Protocol):
    """Remote call-log query contract."""

    async def query(self, query: CallLogQuery) -> CallLogPage:
        """Fetch one page of call-log records matching *query*."""
        ...


class HttpCallLogClient:
    """Call-log client for the platform REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        timeout_s: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + CALL_LOG_PATH
        self._access_token = access_token
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=10.0))
        )

    @classmethod
    def from_config(
        cls,
        config: RemoteConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> HttpCallLogClient:
        return cls(
            base_url=config.base_url,
            access_token=config.access_token,
            timeout_s=config.timeout_s,
            http_client=http_client,
        )

    async def query(self, query: CallLogQuery) -> CallLogPage:
        try:
            response = await self._http_client.get(
                self._url,
                params=query.to_params(),
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise CallLogRequestError(
                status_code=0, message=str(exc) or type(exc).__name__
            ) from exc

        if response.status_code == 429:
            raise CallLogRateLimitedError(
                message=_safe_error_message(response),
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        if response.status_code < 200 or response.status_code >= 300:
            raise CallLogRequestError(
                status_code=response.status_code,
                message=_safe_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CallLogRequestError(
                status_code=response.status_code,
                message="Invalid JSON payload from call-log API",
            ) from exc

        if not isinstance(payload, dict):
            raise CallLogRequestError(
                status_code=response.status_code,
                message="Call-log API payload must be a JSON object",
            )
        return _parse_page(payload)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


def _parse_page(payload: dict[str, Any]) -> CallLogPage:
    records: list[CallRecord] = []
    raw_records = payload.get("records")
    if isinstance(raw_records, list):
        for item in raw_records:
            if not isinstance(item, dict):
                continue
            try:
                records.append(CallRecord.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed call-log record id=%s: %s",
                    item.get("id"),
                    exc.error_count(),
                )

    paging = payload.get("paging")
    navigation = payload.get("navigation")
    return CallLogPage(
        records=records,
        paging=paging if isinstance(paging, dict) else None,
        navigation=navigation if isinstance(navigation, dict) else None,
    )


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error_description")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def build_query(identity: PhoneIdentity, *, date_from: str, per_page: int) -> CallLogQuery | None:
    """Build the remote query for one identity, or None when it is not queryable."""
    if identity.kind is PhoneKind.DIRECT_PHONE:
        # The call-log API rejects a leading plus sign.
        return CallLogQuery(
            phone_number=identity.value.removeprefix("+"),
            date_from=date_from,
            per_page=per_page,
        )
    if identity.kind is PhoneKind.EXTENSION:
        return CallLogQuery(
            extension_number=identity.value,
            date_from=date_from,
            per_page=per_page,
        )
    return None


class RemoteCallFetcher:
    """Fetches a contact's calls from the remote call log, one query per identity."""

    def __init__(
        self,
        client: CallLogQueryClient,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS,
        metrics: ResolutionMetrics | None = None,
    ) -> None:
        self._client = client
        self._max_concurrent = max_concurrent
        self._inter_batch_delay_ms = inter_batch_delay_ms
        self._metrics = metrics or ResolutionMetrics()

    async def fetch(self, contact: Contact, date_from: str, max_count: int) -> list[CallRecord]:
        """Return every call the remote log holds for *contact* since *date_from*.

        Records are flattened in identity order; no sorting or dedup happens here.
        """
        tasks: list[AsyncTask[CallLogPage]] = []
        for identity in contact.phone_identities:
            query = build_query(identity, date_from=date_from, per_page=max_count)
            if query is not None:
                tasks.append(self._query_task(identity.kind, query))

        if not tasks:
            logger.debug("Contact %s has no queryable phone identities", contact.id)
            return []

        logger.info(
            "Fetching remote calls for contact %s: %d query(ies) since %s",
            contact.id,
            len(tasks),
            date_from,
        )
        pages = await concurrent_execute(tasks, self._max_concurrent, self._inter_batch_delay_ms)
        return [record for page in pages for record in page.records]

    def _query_task(self, kind: PhoneKind, query: CallLogQuery) -> AsyncTask[CallLogPage]:
        async def _run() -> CallLogPage:
            with resolution_span("remote_query", identity_kind=kind.value):
                try:
                    page = await self._client.query(query)
                except CallLogRateLimitedError:
                    self._metrics.record_remote_query(kind.value, "rate_limited")
                    raise
                except RemoteFetchError:
                    self._metrics.record_remote_query(kind.value, "error")
                    raise
                except Exception as exc:
                    self._metrics.record_remote_query(kind.value, "error")
                    raise RemoteFetchError(f"Call log query failed: {exc}") from exc
            self._metrics.record_remote_query(kind.value, "success")
            return page

        return _run
