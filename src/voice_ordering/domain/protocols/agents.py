"""Contrato dos agentes de negócio (catálogo, carrinho, cupom, pedido).

A lógica dos agentes é externa; o motor só chama e interpreta o resultado.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class AgentResult:
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    message: str | None = None


class BusinessAgents(Protocol):
    async def search_products(
        self, query: str, category: str | None = None, limit: int = 5
    ) -> AgentResult:
        """data: {"products": [{"id", "name", "price", "category"}]}"""
        ...

    async def add_to_cart(
        self,
        session_id: str,
        product_id: str,
        quantity: int,
        options: dict[str, Any] | None = None,
    ) -> AgentResult:
        """data: {"item": {"product_id", "name", "unit_price", "quantity", "options"}}"""
        ...

    async def apply_coupon(self, session_id: str, code: str, cart_total: float) -> AgentResult:
        """data: {"code", "discount"}"""
        ...

    async def create_order(self, session_id: str, order: dict[str, Any]) -> AgentResult:
        """data: {"order": {"id", "status", "order_type", "total", ...}}"""
        ...
