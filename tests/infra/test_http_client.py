"""Testes do HttpClient com httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from voice_ordering.config.settings import Settings
from voice_ordering.infra.http import (
    HttpClient,
    HttpClientConfig,
    HttpError,
    _sanitize_url,
    create_http_client,
)
from voice_ordering.infra.retry import BackoffPolicy

NO_DELAY = BackoffPolicy(max_retries=2, delays=(0.0,))


def _client(handler, policy: BackoffPolicy = NO_DELAY) -> HttpClient:
    config = HttpClientConfig(base_url="https://agents.test", policy=policy)
    return HttpClient(config, transport=httpx.MockTransport(handler))


class TestRequests:
    """Sucesso, erros retentáveis e não retentáveis."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/orders"
            return httpx.Response(200, json={"ok": True})

        async with _client(handler) as client:
            response = await client.post("/orders", json={"a": 1})
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            response = await client.get("/health")
        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"error_code": "NOT_FOUND", "message": "nope"})

        async with _client(handler) as client:
            with pytest.raises(HttpError) as exc_info:
                await client.post("/products/search", json={})
        assert len(calls) == 1
        assert exc_info.value.status_code == 404
        assert not exc_info.value.is_retryable
        assert exc_info.value.body == {"error_code": "NOT_FOUND", "message": "nope"}

    @pytest.mark.asyncio
    async def test_retries_exhausted(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(429, text="slow down")

        async with _client(handler) as client:
            with pytest.raises(HttpError) as exc_info:
                await client.get("/x")
        assert len(calls) == 3
        assert exc_info.value.status_code == 429
        assert exc_info.value.body == {}

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(HttpError) as exc_info:
                await client.get("/x")
        assert exc_info.value.status_code is None
        assert exc_info.value.is_retryable


class TestFactory:
    """create_http_client a partir de Settings."""

    @pytest.mark.asyncio
    async def test_headers_and_base_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        settings = Settings(
            environment="test",
            business_api_base_url="https://agents.test/v1",
            business_api_token="secret-token",
        )
        client = create_http_client(settings, transport=httpx.MockTransport(handler))
        await client.get("/ping")
        await client.close()

        request = seen[0]
        assert str(request.url) == "https://agents.test/v1/ping"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["User-Agent"] == "voice_ordering/0.1.0"

    def test_sanitize_url(self) -> None:
        assert _sanitize_url("/x?token=abc&key=def&q=1") == "/x?token=***&key=***&q=1"
