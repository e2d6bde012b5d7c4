"""Testes do AgentRouter: fluxo completo de pedido por turns."""

from __future__ import annotations

import pytest

from tests.helpers.fakes import ScriptedAgents
from voice_ordering.application.agent_router import (
    CART_REVIEW_PROMPT,
    CHECKOUT_PROMPT,
    INVALID_PAYMENT_EVENT,
    PAYMENT_CANCELLED_MESSAGE,
    PAYMENT_COMPLETED_MESSAGE,
    PAYMENT_RETRY_READY_MESSAGE,
    AgentRouter,
    RouterResponse,
)
from voice_ordering.application.intent_classifier import CHAT_REPLY, KeywordIntentClassifier
from voice_ordering.application.recovery import PAYMENT_RETRY_MESSAGE, RecoveryEngine
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings
from voice_ordering.domain.enums import (
    InputType,
    IntentCategory,
    PaymentStatus,
    TurnRole,
    UIEventType,
)
from voice_ordering.domain.errors import ErrorKind, ExternalApiError
from voice_ordering.domain.models import Intent, UserInput
from voice_ordering.domain.protocols.agents import AgentResult
from voice_ordering.domain.session import SessionState
from voice_ordering.infra.business_agents_memory import InMemoryBusinessAgents

S = SessionState
SID = "session-router-1"


def _text(content: str) -> UserInput:
    return UserInput(type=InputType.TEXT, content=content)


def _views(result: RouterResponse) -> list[tuple[str, str]]:
    return [
        (event.data["panel"], event.data["view"])
        for event in result.ui_events
        if event.type == UIEventType.UI_UPDATE
    ]


def _events_of(result: RouterResponse, event_type: UIEventType) -> list[dict]:
    return [event.data for event in result.ui_events if event.type == event_type]


class _RateLimitedResolver:
    async def classify(self, text: str, context: str = "") -> Intent:
        raise ExternalApiError("429 Too Many Requests", ErrorKind.RATE_LIMIT)

    async def reply(self, text: str, context: str = "") -> str:
        raise ExternalApiError("429 Too Many Requests", ErrorKind.RATE_LIMIT)


class _ReplyingResolver:
    """Resolver com function calling: a resposta já vem nos slots."""

    def __init__(self) -> None:
        self.reply_calls = 0

    async def classify(self, text: str, context: str = "") -> Intent:
        return Intent(
            category=IntentCategory.GENERAL,
            action="chat",
            confidence=0.8,
            slots={"reply": "무엇을 도와드릴까요?"},
        )

    async def reply(self, text: str, context: str = "") -> str:
        self.reply_calls += 1
        return "unused"


def _router(
    state_machine: SessionStateMachine,
    recovery: RecoveryEngine,
    settings: Settings,
    agents: object | None = None,
    resolver: object | None = None,
) -> AgentRouter:
    return AgentRouter(
        state_machine,
        recovery,
        agents or InMemoryBusinessAgents(),
        resolver or KeywordIntentClassifier(),
        settings,
    )


class TestOrderingFlow:
    """Carrinho -> checkout -> pedido."""

    @pytest.mark.asyncio
    async def test_complete_intent_adds_to_cart(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        result = await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert result.success
        assert result.next_state == S.CART_REVIEW
        assert ("cart", "updated") in _views(result)
        change = _events_of(result, UIEventType.STATE_CHANGE)
        assert change == [
            {"previousState": "idle", "newState": "cart_review", "context": {"intent": "product.add"}}
        ]
        cart = state_machine.get(SID).cart
        assert cart.subtotal == 9000
        assert cart.items[0].product_id == "prod_americano"
        assert cart.items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_confirm_then_pickup_creates_order(
        self,
        agent_router: AgentRouter,
        agents: InMemoryBusinessAgents,
        state_machine: SessionStateMachine,
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))

        confirm = await agent_router.handle(SID, _text("확인"))
        assert confirm.next_state == S.CHECKOUT_INFO
        assert confirm.message == CHECKOUT_PROMPT
        assert ("checkout", "order_type_selection") in _views(confirm)
        assert _events_of(confirm, UIEventType.NAVIGATION) == [{"path": "/checkout"}]

        order = await agent_router.handle(SID, _text("픽업으로 할게요, 010-1234-5678"))
        assert order.success
        assert order.next_state == S.PAYMENT_SESSION_CREATED
        created = order.response["order"]
        assert created["id"].startswith("ORD-")
        assert created["order_type"] == "pickup"
        assert created["phone"] == "01012345678"
        assert created["total"] == 9000
        assert ("order_status", "created") in _views(order)
        assert _events_of(order, UIEventType.NAVIGATION)[0]["path"] == "/order"
        assert _events_of(order, UIEventType.TOAST)[0]["kind"] == "success"

        session = state_machine.get(SID)
        assert session.order["id"] == created["id"]
        assert session.context.current_intent.action == "pickup"
        assert created["id"] in agents.orders

    @pytest.mark.asyncio
    async def test_delivery_asks_for_missing_address(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))
        await agent_router.handle(SID, _text("확인"))

        result = await agent_router.handle(SID, _text("배달로 해주세요"))

        assert result.next_state == S.CHECKOUT_INFO
        assert result.response["missingSlots"] == ["phone", "address"]
        assert result.message == "연락처를 알려주세요."
        assert ("checkout", "info_collection") in _views(result)
        assert state_machine.get(SID).context.current_intent.action == "delivery"

    @pytest.mark.asyncio
    async def test_cart_review_without_request_repeats_prompt(
        self, agent_router: AgentRouter
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))

        result = await agent_router.handle(SID, _text("음..."))

        assert result.message == CART_REVIEW_PROMPT
        assert result.next_state == S.CART_REVIEW
        review = [e for e in result.ui_events if e.type == UIEventType.UI_UPDATE][0]
        assert review.data["view"] == "review"
        assert review.data["data"]["needsConfirmation"] is True

    @pytest.mark.asyncio
    async def test_coupon_applied_in_cart_review(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 세 잔 주세요"))
        assert state_machine.get(SID).cart.subtotal == 13500

        result = await agent_router.handle(SID, _text("쿠폰 WELCOME10 적용해 주세요"))

        assert result.success
        assert result.next_state == S.CART_REVIEW
        assert result.response["coupon"] == {"code": "WELCOME10", "discount": 1350.0}
        assert ("cart", "coupon_applied") in _views(result)
        cart = state_machine.get(SID).cart
        assert cart.discounts == 1350
        assert cart.total == 12150
        assert cart.coupon_code == "WELCOME10"

    @pytest.mark.asyncio
    async def test_second_add_merges_quantity(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))
        await agent_router.handle(SID, _text("아메리카노 한 잔 추가해 주세요"))

        cart = state_machine.get(SID).cart
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3
        assert cart.subtotal == 13500


class TestSlotFillingFlow:
    """Perguntas de esclarecimento e estagnação."""

    @pytest.mark.asyncio
    async def test_missing_quantity_is_asked(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        first = await agent_router.handle(SID, _text("아메리카노 주세요"))
        assert first.next_state == S.SLOT_FILLING
        assert first.message == "몇 개를 주문하시겠어요?"
        assert first.response["missingSlots"] == ["quantity"]
        assert state_machine.get(SID).context.missing_slots == ["quantity"]

        second = await agent_router.handle(SID, _text("두 잔"))
        assert second.next_state == S.CART_REVIEW
        assert state_machine.get(SID).cart.subtotal == 9000

    @pytest.mark.asyncio
    async def test_stalled_slot_filling_falls_back_to_idle(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 주세요"))

        first = await agent_router.handle(SID, _text("글쎄요"))
        second = await agent_router.handle(SID, _text("글쎄요"))
        assert first.success and second.success
        assert state_machine.get(SID).context.retry_count == 2

        third = await agent_router.handle(SID, _text("글쎄요"))
        assert not third.success
        assert third.message == "다른 방법으로 도움을 드리겠습니다."
        assert third.next_state == S.IDLE
        assert third.response["error"]["kind"] == "slot_filling_stalled"
        assert state_machine.get(SID).context.current_intent is None

    @pytest.mark.asyncio
    async def test_progress_resets_stall_counter(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 주세요"))
        await agent_router.handle(SID, _text("글쎄요"))
        assert state_machine.get(SID).context.retry_count == 1

        await agent_router.handle(SID, _text("라떼요"))
        assert state_machine.get(SID).context.retry_count == 0


class TestFailures:
    """Falhas viram resposta de recuperação, nunca exceção."""

    @pytest.mark.asyncio
    async def test_product_not_found(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        router = _router(
            state_machine, recovery, settings, agents=InMemoryBusinessAgents(catalog=())
        )
        result = await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert not result.success
        assert result.next_state == S.INTENT_DETECTED
        assert result.response["error"]["kind"] == "not_found"
        assert result.response["error"]["source"] == "business"
        assert _events_of(result, UIEventType.TOAST)[0]["kind"] == "error"

    @pytest.mark.asyncio
    async def test_coupon_below_minimum(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))

        result = await agent_router.handle(SID, _text("쿠폰 WELCOME10 적용해 주세요"))

        assert not result.success
        assert result.response["error"]["kind"] == "invalid_coupon"
        assert result.next_state == S.CART_REVIEW
        assert state_machine.get(SID).cart.total == 9000

    @pytest.mark.asyncio
    async def test_language_model_rate_limit(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        router = _router(state_machine, recovery, settings, resolver=_RateLimitedResolver())
        result = await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert not result.success
        assert result.response["error"]["source"] == "llm"
        assert result.response["error"]["kind"] == "rate_limit"
        assert result.response["error"]["actions"][0]["type"] == "fallback"
        assert result.next_state == S.IDLE

    @pytest.mark.asyncio
    async def test_agent_exception_is_business_failure(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        agents = ScriptedAgents(search_products=ConnectionError("catalog unreachable"))
        router = _router(state_machine, recovery, settings, agents=agents)

        result = await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert not result.success
        assert result.response["error"]["kind"] == "network"
        assert result.response["error"]["source"] == "business"
        assert agents.calls[0][0] == "search_products"

    @pytest.mark.asyncio
    async def test_rejected_agent_result_uses_error_code(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        agents = ScriptedAgents(
            search_products=AgentResult(
                success=True, data={"products": [{"id": "p1", "name": "아메리카노"}]}
            ),
            add_to_cart=AgentResult(
                success=False, error_code="OUT_OF_STOCK", message="sold out"
            ),
        )
        router = _router(state_machine, recovery, settings, agents=agents)

        result = await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert result.response["error"]["kind"] == "inventory"
        assert result.next_state == S.CART_REVIEW


class TestGeneralAndHistory:
    """Conversa geral, estados de pagamento e histórico."""

    @pytest.mark.asyncio
    async def test_chat_reply_stays_idle(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        result = await agent_router.handle(SID, _text("글쎄요"))

        assert result.success
        assert result.message == CHAT_REPLY
        assert result.next_state == S.IDLE
        assert ("search", "chat") in _views(result)
        history = state_machine.get(SID).history
        assert [turn.role for turn in history] == [TurnRole.USER, TurnRole.ASSISTANT]
        assert history[0].metadata == {"input_type": "text"}

    @pytest.mark.asyncio
    async def test_reply_from_classifier_slots(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        resolver = _ReplyingResolver()
        router = _router(state_machine, recovery, settings, resolver=resolver)

        result = await router.handle(SID, _text("hello"))

        assert result.message == "무엇을 도와드릴까요?"
        assert resolver.reply_calls == 0

    @pytest.mark.asyncio
    async def test_payment_state_gets_general_reply(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        state_machine.get_or_create(SID).state = S.PAYMENT_PENDING

        result = await agent_router.handle(SID, _text("결제 어떻게 되고 있나요?"))

        assert result.success
        assert result.message
        assert result.next_state == S.PAYMENT_PENDING

    @pytest.mark.asyncio
    async def test_voice_input_from_listening(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        state_machine.transition(SID, S.LISTENING)

        result = await agent_router.handle(
            SID, UserInput(type=InputType.VOICE, content="아메리카노 두 잔 주세요")
        )

        assert result.next_state == S.CART_REVIEW
        assert state_machine.get(SID).history[0].metadata["input_type"] == "voice"


async def _place_order(router: AgentRouter, session_id: str = SID) -> dict:
    await router.handle(session_id, _text("아메리카노 두 잔 주세요"))
    await router.handle(session_id, _text("확인"))
    result = await router.handle(session_id, _text("픽업으로 할게요, 010-1234-5678"))
    assert result.next_state == S.PAYMENT_SESSION_CREATED
    return result.response["order"]


class TestPaymentLifecycle:
    """Eventos de pagamento levam o pedido até order_confirmed ou payment_failed."""

    @pytest.mark.asyncio
    async def test_pending_then_completed_confirms_order(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        order = await _place_order(agent_router)

        pending = await agent_router.handle_payment_event(SID, PaymentStatus.PENDING)
        assert pending.success
        assert pending.next_state == S.PAYMENT_PENDING
        assert _events_of(pending, UIEventType.LOADER)[0]["isLoading"] is True

        completed = await agent_router.handle_payment_event(SID, PaymentStatus.COMPLETED)

        assert completed.success
        assert completed.message == PAYMENT_COMPLETED_MESSAGE
        assert completed.next_state == S.ORDER_CONFIRMED
        assert completed.ui_events[0].type == UIEventType.LOADER
        assert completed.ui_events[0].data == {"isLoading": False}
        assert ("order_status", "confirmed") in _views(completed)
        assert _events_of(completed, UIEventType.STATE_CHANGE)[0]["previousState"] == (
            "payment_pending"
        )
        session = state_machine.get(SID)
        assert session.order["id"] == order["id"]
        assert session.order["status"] == "confirmed"
        assert session.order["payment_status"] == "completed"
        assert session.cart.items == []
        assert session.history[-1].role == TurnRole.ASSISTANT

    @pytest.mark.asyncio
    async def test_new_turn_after_confirmation_starts_new_flow(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await _place_order(agent_router)
        await agent_router.handle_payment_event(SID, PaymentStatus.COMPLETED)
        assert state_machine.get(SID).state == S.ORDER_CONFIRMED

        result = await agent_router.handle(SID, _text("라떼 한 잔 주세요"))

        assert result.next_state == S.CART_REVIEW
        cart = state_machine.get(SID).cart
        assert [item.name for item in cart.items] == ["라떼"]

    @pytest.mark.asyncio
    async def test_failed_payment_goes_through_payment_recovery(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await _place_order(agent_router)
        await agent_router.handle_payment_event(SID, PaymentStatus.PENDING)

        result = await agent_router.handle_payment_event(
            SID, PaymentStatus.FAILED, reason="card declined"
        )

        assert not result.success
        assert result.message == PAYMENT_RETRY_MESSAGE
        assert result.next_state == S.PAYMENT_FAILED
        assert result.response["error"]["source"] == "payment"
        assert result.response["error"]["kind"] == "payment_declined"
        assert result.response["error"]["actions"][0]["type"] == "retry"
        session = state_machine.get(SID)
        assert session.order["payment_status"] == "failed"
        assert session.context.last_error_message == "card declined"

    @pytest.mark.asyncio
    async def test_timeout_is_a_payment_failure(self, agent_router: AgentRouter) -> None:
        await _place_order(agent_router)

        result = await agent_router.handle_payment_event(SID, PaymentStatus.TIMEOUT)

        assert result.next_state == S.PAYMENT_FAILED
        assert result.response["error"]["kind"] == "timeout"

    @pytest.mark.asyncio
    async def test_retry_by_voice_reopens_payment_session(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await _place_order(agent_router)
        await agent_router.handle_payment_event(SID, PaymentStatus.FAILED)

        retry = await agent_router.handle(SID, _text("다시 결제할게요"))

        assert retry.success
        assert retry.message == PAYMENT_RETRY_READY_MESSAGE
        assert retry.next_state == S.PAYMENT_SESSION_CREATED

        completed = await agent_router.handle_payment_event(SID, PaymentStatus.COMPLETED)
        assert completed.next_state == S.ORDER_CONFIRMED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("utterance", ["취소", "처음부터 할게요"])
    async def test_cancel_by_text_returns_to_idle(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine, utterance: str
    ) -> None:
        await _place_order(agent_router)

        result = await agent_router.handle(SID, _text(utterance))

        assert result.success
        assert result.message == PAYMENT_CANCELLED_MESSAGE
        assert result.next_state == S.IDLE
        assert state_machine.get(SID).order["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_event_while_pending(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await _place_order(agent_router)
        await agent_router.handle_payment_event(SID, PaymentStatus.PENDING)

        result = await agent_router.handle_payment_event(SID, PaymentStatus.CANCELLED)

        assert result.next_state == S.IDLE
        assert state_machine.get(SID).order["payment_status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_event_incompatible_with_state_is_rejected(
        self, agent_router: AgentRouter, state_machine: SessionStateMachine
    ) -> None:
        await agent_router.handle(SID, _text("아메리카노 두 잔 주세요"))

        result = await agent_router.handle_payment_event(SID, PaymentStatus.COMPLETED)

        assert not result.success
        assert result.response["error"]["code"] == INVALID_PAYMENT_EVENT
        assert result.next_state == S.CART_REVIEW
        assert result.ui_events == []
        assert state_machine.get(SID).state == S.CART_REVIEW


class TestLoaderEvents:
    """loader(True/False) envolve as chamadas aos agentes."""

    @pytest.mark.asyncio
    async def test_agent_calls_are_wrapped_by_loader(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        pushed: list[tuple[str, dict]] = []
        router = _router(state_machine, recovery, settings)
        router.set_event_sink(
            lambda session_id, events: pushed.extend((session_id, e.data) for e in events)
        )

        await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        # search_products + add_to_cart
        assert [data["isLoading"] for _, data in pushed] == [True, False, True, False]
        assert {session_id for session_id, _ in pushed} == {SID}

    @pytest.mark.asyncio
    async def test_loader_is_closed_when_agent_fails(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        settings: Settings,
    ) -> None:
        pushed: list[dict] = []
        agents = ScriptedAgents(search_products=ConnectionError("catalog unreachable"))
        router = _router(state_machine, recovery, settings, agents=agents)
        router.set_event_sink(lambda session_id, events: pushed.extend(e.data for e in events))

        result = await router.handle(SID, _text("아메리카노 두 잔 주세요"))

        assert not result.success
        assert [data["isLoading"] for data in pushed] == [True, False]
