"""Agentes de negócio via HTTP (serviço externo de catálogo/carrinho/pedido).

Contrato esperado do serviço (JSON):
- POST /products/search   {query, category, limit}            -> {products: [...]}
- POST /carts/{sid}/items {product_id, quantity, options}     -> {item: {...}}
- POST /carts/{sid}/coupon {code, cart_total}                 -> {code, discount}
- POST /orders            {session_id, ...}                   -> {order: {...}}

Erros 4xx com corpo {error_code, message} viram AgentResult(success=False).
Falhas de transporte viram NetworkUnavailable/ExternalApiError.
"""

from __future__ import annotations

import logging
from typing import Any

from voice_ordering.domain.errors import ErrorKind, ExternalApiError, NetworkUnavailable
from voice_ordering.domain.protocols.agents import AgentResult
from voice_ordering.infra.http import HttpClient, HttpError
from voice_ordering.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class HttpBusinessAgents:
    """BusinessAgents sobre HttpClient (timeout + retry compartilhado)."""

    def __init__(self, client: HttpClient) -> None:
        self._client = client

    async def close(self) -> None:
        await self._client.close()

    async def search_products(
        self, query: str, category: str | None = None, limit: int = 5
    ) -> AgentResult:
        return await self._post(
            "/products/search", {"query": query, "category": category, "limit": limit}
        )

    async def add_to_cart(
        self,
        session_id: str,
        product_id: str,
        quantity: int,
        options: dict[str, Any] | None = None,
    ) -> AgentResult:
        return await self._post(
            f"/carts/{session_id}/items",
            {"product_id": product_id, "quantity": quantity, "options": options or {}},
        )

    async def apply_coupon(self, session_id: str, code: str, cart_total: float) -> AgentResult:
        return await self._post(
            f"/carts/{session_id}/coupon", {"code": code, "cart_total": cart_total}
        )

    async def create_order(self, session_id: str, order: dict[str, Any]) -> AgentResult:
        return await self._post("/orders", {"session_id": session_id, **order})

    async def _post(self, path: str, payload: dict[str, Any]) -> AgentResult:
        try:
            response = await self._client.post(path, json=payload)
        except HttpError as exc:
            status = exc.status_code
            if status is not None and 400 <= status < 500 and status != 429:
                return self._rejected(exc)
            if exc.status_code is None:
                raise NetworkUnavailable(str(exc)) from exc
            kind = ErrorKind.RATE_LIMIT if exc.status_code == 429 else ErrorKind.API_ERROR
            raise ExternalApiError(str(exc), kind) from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalApiError(f"Invalid JSON from {path}") from exc
        return AgentResult(success=True, data=data if isinstance(data, dict) else {})

    @staticmethod
    def _rejected(exc: HttpError) -> AgentResult:
        body = exc.body
        logger.info(
            "business_agent_rejected",
            extra={"status_code": exc.status_code, "error_code": body.get("error_code")},
        )
        return AgentResult(
            success=False,
            error_code=body.get("error_code") or f"HTTP_{exc.status_code}",
            message=body.get("message") or str(exc),
        )
