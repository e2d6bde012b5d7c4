"""Cliente HTTP assíncrono para os agentes de negócio externos.

- Timeout obrigatório em toda chamada
- Retry com a política de backoff compartilhada (infra.retry)
- Logging estruturado sem payloads (podem conter telefone/endereço)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from voice_ordering.infra.retry import BackoffPolicy, retry_async
from voice_ordering.observability.logging import get_logger

if TYPE_CHECKING:
    from voice_ordering.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"(token|key)=[^&]+")


def _sanitize_url(url: str) -> str:
    """Remove credenciais da query string antes de logar."""
    return _TOKEN_PATTERN.sub(r"\1=***", url)


@dataclass
class HttpClientConfig:
    base_url: str = ""
    timeout_seconds: float = 10.0
    policy: BackoffPolicy = field(default_factory=BackoffPolicy)
    default_headers: dict[str, str] = field(default_factory=dict)
    verify_ssl: bool = True


class HttpError(Exception):
    """Erro de requisição HTTP sem expor informações sensíveis."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
        body: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable
        self.body = body or {}


def _is_retryable_status(status_code: int) -> bool:
    """429 ou 5xx permitem retry."""
    return status_code == 429 or 500 <= status_code < 600


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Corpo JSON de erro (vazio se ausente ou inválido)."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class HttpClient:
    """Cliente HTTP com retry e logging.

    Uso típico:
        async with HttpClient(config) as client:
            response = await client.post("/orders", json=payload)
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpClientConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Cria o httpx.AsyncClient sob demanda."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=self._config.default_headers,
                verify=self._config.verify_ssl,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Executa a requisição com retry para erros transitórios.

        Raises:
            HttpError: status não retentável ou retries esgotados.
        """
        client = await self._get_client()

        async def attempt() -> httpx.Response:
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TimeoutException as exc:
                raise HttpError("Timeout", is_retryable=True) from exc
            except httpx.TransportError as exc:
                raise HttpError("Erro de conexão", is_retryable=True) from exc
            return self._process_response(response, method, url)

        return await retry_async(
            attempt,
            self._config.policy,
            is_retryable=lambda exc: isinstance(exc, HttpError) and exc.is_retryable,
            component="http_client",
        )

    def _process_response(
        self, response: httpx.Response, method: str, url: str
    ) -> httpx.Response:
        if response.is_success:
            logger.debug(
                "http_request_succeeded",
                extra={
                    "method": method,
                    "url": _sanitize_url(url),
                    "status_code": response.status_code,
                },
            )
            return response

        retryable = _is_retryable_status(response.status_code)
        logger.warning(
            "http_request_failed",
            extra={
                "method": method,
                "url": _sanitize_url(url),
                "status_code": response.status_code,
                "retryable": retryable,
            },
        )
        raise HttpError(
            f"HTTP {response.status_code}",
            status_code=response.status_code,
            is_retryable=retryable,
            body=_json_body(response),
        )

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._request("GET", url, **kwargs)

    async def post(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        return await self._request("POST", url, json=json, **kwargs)


def create_http_client(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpClient:
    """Factory do cliente dos agentes de negócio a partir das settings."""
    if settings is None:
        from voice_ordering.config.settings import get_settings

        settings = get_settings()

    headers = {"User-Agent": f"{settings.service_name}/{settings.version}"}
    if settings.business_api_token:
        headers["Authorization"] = f"Bearer {settings.business_api_token}"

    config = HttpClientConfig(
        base_url=settings.business_api_base_url or "",
        timeout_seconds=settings.business_api_timeout_seconds,
        policy=BackoffPolicy.from_settings(settings),
        default_headers=headers,
        verify_ssl=True,
    )
    logger.info(
        "http_client_created",
        extra={
            "timeout_seconds": config.timeout_seconds,
            "max_retries": config.policy.max_retries,
        },
    )
    return HttpClient(config, transport=transport)
