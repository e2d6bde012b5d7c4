"""Agentes de negócio em memória (dev/testes).

Catálogo fixo com os produtos reconhecidos pelo extrator ko-KR, dois
cupons de exemplo e pedidos guardados em dict. Não usar em produção:
Settings.validate_business_agents_config bloqueia este backend fora de dev.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from voice_ordering.domain.protocols.agents import AgentResult
from voice_ordering.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)

LARGE_SIZE_SURCHARGE = 500.0
_MENU_WORDS = ("메뉴", "menu", "전체", "all")


@dataclass(frozen=True, slots=True)
class Product:
    id: str
    name: str
    price: float
    category: str
    inventory: int = 100


@dataclass(frozen=True, slots=True)
class Coupon:
    code: str
    name: str
    discount_type: str  # percentage | fixed_amount
    discount_value: float
    minimum_order_amount: float = 0.0
    maximum_discount_amount: float | None = None

    def discount_for(self, cart_total: float) -> float:
        if self.discount_type == "percentage":
            discount = cart_total * self.discount_value / 100
        else:
            discount = self.discount_value
        if self.maximum_discount_amount is not None:
            discount = min(discount, self.maximum_discount_amount)
        return min(discount, cart_total)


DEFAULT_CATALOG: tuple[Product, ...] = (
    Product("prod_americano", "아메리카노", 4500, "커피"),
    Product("prod_latte", "라떼", 5500, "커피"),
    Product("prod_cappuccino", "카푸치노", 5500, "커피"),
    Product("prod_espresso", "에스프레소", 4000, "커피"),
    Product("prod_macchiato", "마키아토", 5800, "커피"),
    Product("prod_mocha", "모카", 6000, "커피"),
    Product("prod_pizza", "피자", 18000, "음식", inventory=50),
    Product("prod_burger", "버거", 9500, "음식", inventory=50),
    Product("prod_salad", "샐러드", 8500, "음식", inventory=30),
    Product("prod_pasta", "파스타", 13000, "음식", inventory=30),
    Product("prod_sandwich", "샌드위치", 7500, "음식", inventory=30),
    Product("prod_risotto", "리조또", 14000, "음식", inventory=20),
    Product("prod_cake", "케이크", 6500, "디저트", inventory=20),
    Product("prod_cookie", "쿠키", 2500, "디저트"),
    Product("prod_muffin", "머핀", 3500, "디저트"),
    Product("prod_donut", "도넛", 2800, "디저트"),
    Product("prod_croissant", "크로와상", 3800, "디저트"),
)

DEFAULT_COUPONS: tuple[Coupon, ...] = (
    Coupon("WELCOME10", "신규 고객 10% 할인", "percentage", 10, 10000, 5000),
    Coupon("DELIVERY5000", "배달비 5000원 할인", "fixed_amount", 5000, 20000),
)


def _product_dict(product: Product) -> dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "price": product.price,
        "category": product.category,
    }


class InMemoryBusinessAgents:
    """Implementação de BusinessAgents sem rede."""

    def __init__(
        self,
        catalog: tuple[Product, ...] = DEFAULT_CATALOG,
        coupons: tuple[Coupon, ...] = DEFAULT_COUPONS,
    ) -> None:
        self._products = {product.id: product for product in catalog}
        self._coupons = {coupon.code: coupon for coupon in coupons}
        self._reserved: dict[str, int] = {}
        self.orders: dict[str, dict[str, Any]] = {}

    async def search_products(
        self, query: str, category: str | None = None, limit: int = 5
    ) -> AgentResult:
        text = query.strip().lower()
        candidates = [
            p for p in self._products.values() if category is None or p.category == category
        ]
        matches = [p for p in candidates if text and (p.name in text or text in p.name)]
        if not matches:
            matches = [p for p in candidates if p.category in text]
        if not matches and (not text or any(word in text for word in _MENU_WORDS)):
            matches = candidates
        return AgentResult(
            success=True,
            data={"products": [_product_dict(p) for p in matches[:limit]]},
        )

    async def add_to_cart(
        self,
        session_id: str,
        product_id: str,
        quantity: int,
        options: dict[str, Any] | None = None,
    ) -> AgentResult:
        product = self._products.get(product_id)
        if product is None:
            return AgentResult(
                success=False,
                error_code="PRODUCT_NOT_FOUND",
                message=f"Product not found: {product_id}",
            )
        reserved = self._reserved.get(product_id, 0)
        if quantity < 1 or reserved + quantity > product.inventory:
            return AgentResult(
                success=False,
                error_code="INSUFFICIENT_INVENTORY",
                message=f"Insufficient inventory for {product.name}",
            )

        options = dict(options or {})
        unit_price = product.price
        if options.get("size") == "large":
            unit_price += LARGE_SIZE_SURCHARGE
        self._reserved[product_id] = reserved + quantity

        logger.info(
            "cart_item_reserved",
            extra={"session_id": short_id(session_id), "product_id": product_id, "quantity": quantity},
        )
        return AgentResult(
            success=True,
            data={
                "item": {
                    "product_id": product.id,
                    "name": product.name,
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "options": options,
                }
            },
        )

    async def apply_coupon(self, session_id: str, code: str, cart_total: float) -> AgentResult:
        coupon = self._coupons.get(code.upper())
        if coupon is None:
            return AgentResult(
                success=False, error_code="INVALID_COUPON", message="Invalid coupon code."
            )
        if cart_total < coupon.minimum_order_amount:
            return AgentResult(
                success=False,
                error_code="INVALID_COUPON",
                message=f"Coupon requires a minimum order of {coupon.minimum_order_amount:g}",
            )
        discount = coupon.discount_for(cart_total)
        return AgentResult(
            success=True,
            data={"code": coupon.code, "name": coupon.name, "discount": discount},
        )

    async def create_order(self, session_id: str, order: dict[str, Any]) -> AgentResult:
        if not order.get("items"):
            return AgentResult(
                success=False, error_code="EMPTY_CART", message="Cannot create an empty order"
            )
        order_id = f"ORD-{uuid.uuid4().hex[:8].upper()}"
        record = {
            **order,
            "id": order_id,
            "status": "created",
            "session_id": session_id,
            "created_at": datetime.now(tz=UTC).isoformat(),
        }
        self.orders[order_id] = record
        logger.info(
            "order_created",
            extra={"session_id": short_id(session_id), "order_id": order_id},
        )
        return AgentResult(success=True, data={"order": record})
