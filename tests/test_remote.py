"""Tests for the remote call-log client and the fallback fetcher."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from _test_helpers import make_call, make_contact
from prometheus_client import REGISTRY
from pydantic import ValidationError

from recentcalls.config import RemoteConfig
from recentcalls.errors import CallLogRateLimitedError, CallLogRequestError, RemoteFetchError
from recentcalls.models import CallLogPage, Contact, PhoneIdentity, PhoneKind
from recentcalls.remote import (
    CALL_LOG_PATH,
    CallLogQuery,
    HttpCallLogClient,
    RemoteCallFetcher,
    build_query,
)

pytestmark = pytest.mark.unit

BASE_URL = "https://platform.example.test"


class _ClientDouble:
    def __init__(self, pages: dict[str, CallLogPage] | None = None) -> None:
        self.pages = pages or {}
        self.queries: list[CallLogQuery] = []
        self.fail_on: dict[str, Exception] = {}
        self.in_flight = 0
        self.peak = 0

    async def query(self, query: CallLogQuery) -> CallLogPage:
        self.queries.append(query)
        key = query.phone_number or query.extension_number or ""
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0)
            if key in self.fail_on:
                raise self.fail_on[key]
            return self.pages.get(key, CallLogPage())
        finally:
            self.in_flight -= 1


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestBuildQuery:
    def test_direct_phone_strips_leading_plus(self):
        identity = PhoneIdentity(kind=PhoneKind.DIRECT_PHONE, value="+14155550100")

        query = build_query(identity, date_from="2026-08-20T00:00:00+00:00", per_page=5)

        assert query is not None
        assert query.phone_number == "14155550100"
        assert query.extension_number is None
        assert query.to_params() == {
            "phoneNumber": "14155550100",
            "dateFrom": "2026-08-20T00:00:00+00:00",
            "perPage": 5,
            "type": "Voice",
        }

    def test_extension_uses_extension_filter(self):
        identity = PhoneIdentity(kind=PhoneKind.EXTENSION, value="101")

        query = build_query(identity, date_from="d", per_page=3)

        assert query is not None
        assert query.to_params() == {
            "extensionNumber": "101",
            "dateFrom": "d",
            "perPage": 3,
            "type": "Voice",
        }

    def test_other_identity_builds_no_query(self):
        identity = PhoneIdentity(kind=PhoneKind.OTHER, value="+15550000")

        assert build_query(identity, date_from="d", per_page=3) is None

    def test_query_requires_a_party_filter(self):
        with pytest.raises(ValidationError):
            CallLogQuery(date_from="d", per_page=5)


class TestRemoteCallFetcher:
    async def test_one_query_per_identity_flattened_in_order(self):
        client = _ClientDouble(
            pages={
                "14155550100": CallLogPage(records=[make_call("a"), make_call("b")]),
                "101": CallLogPage(records=[make_call("c")]),
            }
        )
        fetcher = RemoteCallFetcher(client, max_concurrent=5, inter_batch_delay_ms=0)
        contact = make_contact(phones=("+14155550100",), extensions=("101",))

        records = await fetcher.fetch(contact, "2026-08-20T00:00:00+00:00", 5)

        assert [r.id for r in records] == ["a", "b", "c"]
        assert [q.phone_number for q in client.queries] == ["14155550100", None]
        assert [q.extension_number for q in client.queries] == [None, "101"]
        assert all(q.per_page == 5 and q.type == "Voice" for q in client.queries)
        assert all(q.date_from == "2026-08-20T00:00:00+00:00" for q in client.queries)

    async def test_contact_without_identities_issues_no_queries(self, monkeypatch):
        import recentcalls.remote as remote_module

        async def _fail(*args: Any, **kwargs: Any) -> list[Any]:
            raise AssertionError("runner must not be invoked")

        monkeypatch.setattr(remote_module, "concurrent_execute", _fail)
        client = _ClientDouble()
        fetcher = RemoteCallFetcher(client)
        other_only = Contact(
            id="c",
            phone_identities=(PhoneIdentity(kind=PhoneKind.OTHER, value="+15550000"),),
        )

        assert await fetcher.fetch(Contact(id="none"), "d", 5) == []
        assert await fetcher.fetch(other_only, "d", 5) == []
        assert client.queries == []

    async def test_respects_concurrency_ceiling(self):
        client = _ClientDouble()
        fetcher = RemoteCallFetcher(client, max_concurrent=2, inter_batch_delay_ms=0)
        contact = make_contact(phones=("1", "2", "3"), extensions=("4", "5"))

        await fetcher.fetch(contact, "d", 5)

        assert len(client.queries) == 5
        assert client.peak <= 2

    async def test_failure_propagates_as_remote_fetch_error(self):
        client = _ClientDouble()
        client.fail_on["101"] = RuntimeError("socket closed")
        fetcher = RemoteCallFetcher(client, inter_batch_delay_ms=0)
        before = _sample(
            "recent_calls_remote_queries_total",
            {"identity_kind": "extension", "status": "error"},
        )

        with pytest.raises(RemoteFetchError, match="socket closed"):
            await fetcher.fetch(make_contact(extensions=("101",)), "d", 5)

        after = _sample(
            "recent_calls_remote_queries_total",
            {"identity_kind": "extension", "status": "error"},
        )
        assert after == before + 1

    async def test_rate_limited_error_is_kept_as_is(self):
        client = _ClientDouble()
        client.fail_on["14155550100"] = CallLogRateLimitedError(message="slow down", retry_after=2)
        fetcher = RemoteCallFetcher(client, inter_batch_delay_ms=0)

        with pytest.raises(CallLogRateLimitedError) as exc_info:
            await fetcher.fetch(make_contact(phones=("+14155550100",)), "d", 5)

        assert exc_info.value.retry_after == 2


class TestHttpCallLogClient:
    def _make_client(
        self,
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> HttpCallLogClient:
        transport = httpx.MockTransport(handler)
        return HttpCallLogClient(
            base_url=BASE_URL + "/",
            access_token="tok-1",
            http_client=httpx.AsyncClient(transport=transport),
        )

    async def test_query_sends_filter_and_parses_records(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "records": [
                        {
                            "id": "call-1",
                            "startTime": "2026-10-19T10:00:00.000Z",
                            "type": "Voice",
                            "direction": "Inbound",
                            "result": "Accepted",
                            "duration": 42,
                            "from": {"phoneNumber": "+14155550100", "name": "Alice"},
                            "to": {"extensionNumber": "101"},
                            "uri": "https://platform.example.test/call-log/call-1",
                        },
                        {"id": "broken"},
                        "not-a-record",
                    ],
                    "paging": {"page": 1, "perPage": 5},
                    "navigation": {"firstPage": {"uri": "x"}},
                },
            )

        client = self._make_client(handler)
        try:
            page = await client.query(
                CallLogQuery(phone_number="14155550100", date_from="2026-08-20", per_page=5)
            )
        finally:
            await client.shutdown()

        request = requests[0]
        assert request.url.path == CALL_LOG_PATH
        assert request.url.params["phoneNumber"] == "14155550100"
        assert request.url.params["perPage"] == "5"
        assert request.url.params["type"] == "Voice"
        assert request.url.params["dateFrom"] == "2026-08-20"
        assert request.headers["Authorization"] == "Bearer tok-1"

        assert [record.id for record in page.records] == ["call-1"]
        record = page.records[0]
        assert record.from_ is not None and record.from_.phone_number == "+14155550100"
        assert record.to is not None and record.to.extension_number == "101"
        assert record.start_time.tzinfo is not None
        assert record.duration == 42
        assert page.paging == {"page": 1, "perPage": 5}

    async def test_error_status_raises_request_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"message": "Insufficient permissions"})

        client = self._make_client(handler)
        try:
            with pytest.raises(CallLogRequestError) as exc_info:
                await client.query(CallLogQuery(extension_number="101", date_from="d", per_page=1))
        finally:
            await client.shutdown()

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Insufficient permissions"

    async def test_429_raises_rate_limited_with_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                429,
                headers={"Retry-After": "30"},
                json={"errors": [{"message": "Request rate exceeded"}]},
            )

        client = self._make_client(handler)
        try:
            with pytest.raises(CallLogRateLimitedError) as exc_info:
                await client.query(CallLogQuery(extension_number="101", date_from="d", per_page=1))
        finally:
            await client.shutdown()

        assert exc_info.value.retry_after == 30.0
        assert exc_info.value.message == "Request rate exceeded"
        assert isinstance(exc_info.value, RemoteFetchError)

    async def test_transport_error_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = self._make_client(handler)
        try:
            with pytest.raises(CallLogRequestError) as exc_info:
                await client.query(CallLogQuery(extension_number="101", date_from="d", per_page=1))
        finally:
            await client.shutdown()

        assert exc_info.value.status_code == 0

    async def test_invalid_json_raises_request_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        client = self._make_client(handler)
        try:
            with pytest.raises(CallLogRequestError, match="Invalid JSON"):
                await client.query(CallLogQuery(extension_number="101", date_from="d", per_page=1))
        finally:
            await client.shutdown()

    def test_from_config_uses_remote_settings(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        http_client = httpx.AsyncClient(transport=transport)

        client = HttpCallLogClient.from_config(
            RemoteConfig(base_url=BASE_URL, access_token="abc", timeout_s=5.0),
            http_client=http_client,
        )

        assert client._url == BASE_URL + CALL_LOG_PATH
        assert client._access_token == "abc"
        assert client._owns_http_client is False
