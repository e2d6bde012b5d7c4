"""Testes dos agentes de negócio (memória e HTTP)."""

from __future__ import annotations

import json

import httpx
import pytest

from voice_ordering.domain.errors import ErrorKind, ExternalApiError, NetworkUnavailable
from voice_ordering.infra.business_agents_http import HttpBusinessAgents
from voice_ordering.infra.business_agents_memory import (
    Coupon,
    InMemoryBusinessAgents,
    Product,
)
from voice_ordering.infra.http import HttpClient, HttpClientConfig
from voice_ordering.infra.retry import BackoffPolicy


class TestInMemoryCatalog:
    """Busca no catálogo fixo."""

    @pytest.mark.asyncio
    async def test_search_by_name(self) -> None:
        result = await InMemoryBusinessAgents().search_products("아메리카노")
        assert result.success
        assert [p["id"] for p in result.data["products"]] == ["prod_americano"]

    @pytest.mark.asyncio
    async def test_search_by_category(self) -> None:
        result = await InMemoryBusinessAgents().search_products("디저트 추천", limit=10)
        names = {p["name"] for p in result.data["products"]}
        assert names == {"케이크", "쿠키", "머핀", "도넛", "크로와상"}

    @pytest.mark.asyncio
    async def test_menu_lists_everything_up_to_limit(self) -> None:
        result = await InMemoryBusinessAgents().search_products("메뉴", limit=3)
        assert len(result.data["products"]) == 3

    @pytest.mark.asyncio
    async def test_no_match(self) -> None:
        result = await InMemoryBusinessAgents().search_products("김치찌개")
        assert result.success
        assert result.data["products"] == []


class TestInMemoryCart:
    """Reserva de estoque e preço por tamanho."""

    @pytest.mark.asyncio
    async def test_add_to_cart(self) -> None:
        result = await InMemoryBusinessAgents().add_to_cart("s1", "prod_latte", 2)
        assert result.data["item"] == {
            "product_id": "prod_latte",
            "name": "라떼",
            "quantity": 2,
            "unit_price": 5500,
            "options": {},
        }

    @pytest.mark.asyncio
    async def test_large_size_surcharge(self) -> None:
        result = await InMemoryBusinessAgents().add_to_cart(
            "s1", "prod_latte", 1, {"size": "large"}
        )
        assert result.data["item"]["unit_price"] == 6000

    @pytest.mark.asyncio
    async def test_unknown_product(self) -> None:
        result = await InMemoryBusinessAgents().add_to_cart("s1", "prod_nope", 1)
        assert not result.success
        assert result.error_code == "PRODUCT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_inventory_is_reserved(self) -> None:
        agents = InMemoryBusinessAgents(catalog=(Product("p1", "케이크", 6500, "디저트", 3),))
        assert (await agents.add_to_cart("s1", "p1", 2)).success
        rejected = await agents.add_to_cart("s2", "p1", 2)
        assert rejected.error_code == "INSUFFICIENT_INVENTORY"


class TestInMemoryCouponsAndOrders:
    """Cupons e criação de pedidos."""

    @pytest.mark.asyncio
    async def test_percentage_coupon_capped(self) -> None:
        agents = InMemoryBusinessAgents()
        assert (await agents.apply_coupon("s1", "welcome10", 13500)).data["discount"] == 1350
        assert (await agents.apply_coupon("s1", "WELCOME10", 80000)).data["discount"] == 5000

    @pytest.mark.asyncio
    async def test_coupon_minimum_order(self) -> None:
        result = await InMemoryBusinessAgents().apply_coupon("s1", "WELCOME10", 9000)
        assert not result.success
        assert result.error_code == "INVALID_COUPON"

    @pytest.mark.asyncio
    async def test_unknown_coupon(self) -> None:
        result = await InMemoryBusinessAgents().apply_coupon("s1", "NOPE", 50000)
        assert result.error_code == "INVALID_COUPON"

    def test_fixed_coupon_never_exceeds_total(self) -> None:
        coupon = Coupon("FIXED", "fixo", "fixed_amount", 5000)
        assert coupon.discount_for(3000) == 3000

    @pytest.mark.asyncio
    async def test_create_order(self) -> None:
        agents = InMemoryBusinessAgents()
        result = await agents.create_order("s1", {"items": [{"product_id": "p1"}], "total": 10})
        order = result.data["order"]
        assert order["status"] == "created"
        assert order["session_id"] == "s1"
        assert agents.orders[order["id"]]["total"] == 10

    @pytest.mark.asyncio
    async def test_empty_order_rejected(self) -> None:
        result = await InMemoryBusinessAgents().create_order("s1", {"items": []})
        assert result.error_code == "EMPTY_CART"


def _http_agents(handler) -> HttpBusinessAgents:
    config = HttpClientConfig(
        base_url="https://agents.test", policy=BackoffPolicy(max_retries=1, delays=(0.0,))
    )
    return HttpBusinessAgents(HttpClient(config, transport=httpx.MockTransport(handler)))


class TestHttpBusinessAgents:
    """Contrato JSON do serviço externo."""

    @pytest.mark.asyncio
    async def test_add_to_cart_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"item": {"product_id": "p1", "quantity": 2}})

        agents = _http_agents(handler)
        result = await agents.add_to_cart("s1", "p1", 2, {"size": "large"})
        await agents.close()

        assert result.success
        assert result.data["item"]["quantity"] == 2
        assert seen[0].url.path == "/carts/s1/items"
        assert json.loads(seen[0].content) == {
            "product_id": "p1",
            "quantity": 2,
            "options": {"size": "large"},
        }

    @pytest.mark.asyncio
    async def test_client_error_becomes_rejected_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422, json={"error_code": "INVALID_COUPON", "message": "expired"}
            )

        result = await _http_agents(handler).apply_coupon("s1", "OLD", 10000)
        assert not result.success
        assert result.error_code == "INVALID_COUPON"
        assert result.message == "expired"

    @pytest.mark.asyncio
    async def test_client_error_without_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        result = await _http_agents(handler).search_products("x")
        assert result.error_code == "HTTP_404"

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(ExternalApiError) as exc_info:
            await _http_agents(handler).create_order("s1", {"items": []})
        assert exc_info.value.kind == ErrorKind.API_ERROR

    @pytest.mark.asyncio
    async def test_rate_limit_raises_typed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        with pytest.raises(ExternalApiError) as exc_info:
            await _http_agents(handler).search_products("x")
        assert exc_info.value.kind == ErrorKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_transport_error_is_network(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkUnavailable):
            await _http_agents(handler).search_products("x")

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        with pytest.raises(ExternalApiError):
            await _http_agents(handler).search_products("x")
