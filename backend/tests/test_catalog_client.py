from __future__ import annotations

import httpx
import pytest

from app.errors import RateLimitedError, UpstreamRejectedError, UpstreamUnavailableError
from ingestion.client import CatalogClient


def _client(handler, sleep, *, max_retries: int = 3, api_key: str | None = "secret") -> CatalogClient:
    return CatalogClient(
        api_url="https://catalog.test/api/domains",
        api_key=api_key,
        max_retries=max_retries,
        sleep=sleep,
        transport=httpx.MockTransport(handler),
    )


def test_fetch_page_sends_key_and_paging(sample_catalog_payload, recording_sleep):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=sample_catalog_payload)

    with _client(handler, recording_sleep) as client:
        page = client.fetch_page(2, 25)

    assert requests[0].headers["X-API-Key"] == "secret"
    assert requests[0].url.params["page"] == "2"
    assert requests[0].url.params["per_page"] == "25"
    assert [record.domain for record in page.records] == [
        "example.com",
        "tienda-online.es",
        "blog.startup.net",
    ]
    assert page.source_count == 3
    assert page.total == 3
    assert page.has_more is False
    assert "dominio" in page.fields
    assert recording_sleep.calls == []


def test_fetch_page_skips_rows_without_domain(recording_sleep):
    payload = {"data": [{"domain": "good.com"}, {"name": "nothing"}, "bare.es"]}

    with _client(lambda request: httpx.Response(200, json=payload), recording_sleep) as client:
        page = client.fetch_page(1, 3)

    assert [record.domain for record in page.records] == ["good.com", "bare.es"]
    assert page.source_count == 3
    assert page.has_more is True


def test_rate_limit_honours_retry_after(recording_sleep):
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(200, json={"data": [{"domain": "ok.com"}]}),
        ]
    )

    with _client(lambda request: next(responses), recording_sleep) as client:
        page = client.fetch_page(1, 100)

    assert recording_sleep.calls == [5.0]
    assert [record.domain for record in page.records] == ["ok.com"]


def test_retry_after_is_clamped(recording_sleep):
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(429, headers={"Retry-After": "900"}),
            httpx.Response(200, json=[]),
        ]
    )

    with _client(lambda request: next(responses), recording_sleep) as client:
        client.fetch_raw(1, 10)

    assert recording_sleep.calls == [1.0, 120.0]


def test_rate_limit_exhaustion_raises_rate_limited(recording_sleep):
    with _client(lambda request: httpx.Response(429), recording_sleep, max_retries=3) as client:
        with pytest.raises(RateLimitedError) as excinfo:
            client.fetch_raw(1, 10)

    assert excinfo.value.status_code == 429
    assert recording_sleep.calls == [2.0, 4.0, 8.0]


def test_server_errors_back_off_then_fail(recording_sleep):
    with _client(lambda request: httpx.Response(503), recording_sleep, max_retries=2) as client:
        with pytest.raises(UpstreamUnavailableError):
            client.fetch_raw(1, 10)

    assert recording_sleep.calls == [1.0, 2.0]


def test_transport_errors_are_retried(recording_sleep):
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"data": []})

    with _client(handler, recording_sleep) as client:
        assert client.fetch_raw(1, 10) == {"data": []}

    assert recording_sleep.calls == [1.0]


def test_client_errors_are_not_retried(recording_sleep):
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(401, json={"error": "bad key"})

    with _client(handler, recording_sleep) as client:
        with pytest.raises(UpstreamRejectedError) as excinfo:
            client.fetch_raw(1, 10)

    assert excinfo.value.status_code == 401
    assert calls["count"] == 1
    assert recording_sleep.calls == []


def test_missing_api_key_is_rejected(recording_sleep):
    with _client(lambda request: httpx.Response(200, json=[]), recording_sleep, api_key="") as client:
        with pytest.raises(UpstreamRejectedError):
            client.fetch_raw(1, 10)


def test_non_json_body_is_rejected(recording_sleep):
    handler = lambda request: httpx.Response(200, text="<html>maintenance</html>")  # noqa: E731

    with _client(handler, recording_sleep) as client:
        with pytest.raises(UpstreamRejectedError):
            client.fetch_raw(1, 10)


def test_client_defaults_come_from_settings(test_settings):
    client = CatalogClient()
    try:
        assert client.api_url == "https://catalog.test/api/domains"
        assert client.api_key == "test-key"
        assert client.max_retries == test_settings.fetch_max_retries
        assert client.timeout == test_settings.catalog_request_timeout_seconds
    finally:
        client.close()
