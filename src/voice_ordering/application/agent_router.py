"""AgentRouter: coordenador de um turn do usuário.

Fluxo de um turn (sempre sob o lock da sessão):
1. Anexa o turn do usuário ao histórico
2. Despacha pelo estado CORRENTE da sessão (não pelo conteúdo):
   - idle/listening/processing_voice/intent_detected/error -> entrada nova
   - slot_filling -> continuação do preenchimento
   - cart_review -> confirmação do carrinho
   - checkout_info -> coleta de dados do pedido
   - order_confirmed -> volta a idle e trata como entrada nova
   - estados de pagamento -> "취소" cancela, "다시" re-tenta após falha,
     demais entradas recebem resposta geral
3. Chama os agentes de negócio quando a intenção está completa
4. Anexa a resposta do assistente e devolve eventos de UI

Qualquer exceção é capturada aqui e convertida pelo RecoveryEngine em
toast de erro (+ state_change quando o estado mudou). O roteador nunca
derruba a sessão.

Eventos do provedor de pagamento (handle_payment_event) seguem o mesmo
caminho: pending -> completed -> order_confirmed, ou falha -> PaymentError
-> recuperação de pagamento (payment_failed).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from voice_ordering.application.recovery import ErrorContext, RecoveryEngine
from voice_ordering.application.slot_filling import (
    extract_slots,
    generate_clarification_question,
    missing_slots,
    process_slot_filling,
)
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.application.ui_events import (
    UIEvent,
    loader,
    navigation,
    recovery_toast,
    state_change,
    toast,
    ui_update,
)
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.domain.enums import IntentCategory, PaymentStatus, ToastKind, TurnRole
from voice_ordering.domain.errors import (
    BusinessRuleError,
    ErrorKind,
    ErrorSource,
    ExternalApiError,
    PaymentError,
    SlotFillingStalled,
)
from voice_ordering.domain.models import Cart, CartItem, Intent, Turn, UserInput
from voice_ordering.domain.protocols.agents import AgentResult, BusinessAgents
from voice_ordering.domain.protocols.language_model import IntentResolver
from voice_ordering.domain.protocols.slot_extractor import SlotExtractor
from voice_ordering.domain.session import (
    NEW_INPUT_STATES,
    PAYMENT_STATES,
    SessionState,
    find_route,
)
from voice_ordering.observability.logging import get_logger, short_id
from voice_ordering.observability.middleware import bind_session
from voice_ordering.observability.timing import timed

GENERIC_ERROR_MESSAGE = "죄송합니다. 요청을 처리하는 중 오류가 발생했습니다. 다시 시도해 주세요."
CHECKOUT_PROMPT = "주문 방식을 선택해 주세요. 픽업 또는 배달 중 어떤 것을 원하시나요?"
CART_REVIEW_PROMPT = (
    '장바구니 내용이 맞으시면 "확인"이라고 말씀해 주시고, '
    '수정이 필요하시면 "수정"이라고 말씀해 주세요.'
)
ITEM_ADDED_MESSAGE = "상품이 장바구니에 추가되었습니다."
COUPON_APPLIED_MESSAGE = "쿠폰이 적용되었습니다."
ORDER_CREATED_MESSAGE = "주문이 생성되었습니다."
PAYMENT_WAIT_MESSAGE = "결제를 진행하고 있습니다. 잠시만 기다려 주세요."
PAYMENT_PROCESSING_MESSAGE = "결제 처리가 시작되었습니다."
PAYMENT_COMPLETED_MESSAGE = "결제가 성공적으로 완료되었습니다."
PAYMENT_RETRY_READY_MESSAGE = "결제 재시도가 준비되었습니다."
PAYMENT_CANCELLED_MESSAGE = "결제와 주문이 취소되었습니다. 새로운 주문을 도와드릴까요?"
INVALID_PAYMENT_EVENT_MESSAGE = "현재 상태에서는 처리할 수 없는 결제 이벤트입니다."
INVALID_PAYMENT_EVENT = "INVALID_PAYMENT_EVENT"
LOADING_MESSAGE = "처리 중입니다..."

CONFIRM_WORDS = ("확인", "맞", "yes", "ok")
MODIFY_WORDS = ("수정", "변경", "modify")
CANCEL_WORDS = ("취소", "처음부터", "cancel")
RETRY_WORDS = ("다시", "재시도", "retry")

# Entrega imediata de eventos (ex.: loader) enquanto o turn ainda roda
EventSink = Callable[[str, list[UIEvent]], object]

_ORDER_TYPE_ACTIONS = frozenset({"create", "delivery", "pickup"})

# Estados em que cada evento de pagamento é aceito
_PAYMENT_EVENT_STATES: dict[PaymentStatus, frozenset[SessionState]] = {
    PaymentStatus.PENDING: frozenset({SessionState.PAYMENT_SESSION_CREATED}),
    PaymentStatus.COMPLETED: frozenset(
        {SessionState.PAYMENT_SESSION_CREATED, SessionState.PAYMENT_PENDING}
    ),
    PaymentStatus.FAILED: frozenset(
        {SessionState.PAYMENT_SESSION_CREATED, SessionState.PAYMENT_PENDING}
    ),
    PaymentStatus.TIMEOUT: frozenset(
        {SessionState.PAYMENT_SESSION_CREATED, SessionState.PAYMENT_PENDING}
    ),
    PaymentStatus.RETRY: frozenset({SessionState.PAYMENT_FAILED}),
    PaymentStatus.CANCELLED: frozenset(
        {
            SessionState.PAYMENT_SESSION_CREATED,
            SessionState.PAYMENT_PENDING,
            SessionState.PAYMENT_FAILED,
        }
    ),
}

# error_code do agente -> kind tipado
_AGENT_ERROR_KINDS: dict[str, ErrorKind] = {
    "NOT_FOUND": ErrorKind.NOT_FOUND,
    "PRODUCT_NOT_FOUND": ErrorKind.NOT_FOUND,
    "INVALID_COUPON": ErrorKind.INVALID_COUPON,
    "COUPON_EXPIRED": ErrorKind.INVALID_COUPON,
    "INSUFFICIENT_INVENTORY": ErrorKind.INVENTORY,
    "OUT_OF_STOCK": ErrorKind.INVENTORY,
}


@dataclass(slots=True)
class RouterResponse:
    """Resultado de um turn."""

    success: bool
    response: dict[str, Any] = field(default_factory=dict)
    next_state: SessionState | None = None
    ui_events: list[UIEvent] = field(default_factory=list)

    @property
    def message(self) -> str:
        return str(self.response.get("message") or "")


class _StageFailure(Exception):
    """Marca a origem (voice/llm/business/...) de uma falha durante o turn."""

    def __init__(self, source: ErrorSource, error: Exception) -> None:
        super().__init__(str(error))
        self.source = source
        self.error = error


class AgentRouter:
    """Roteia um turn do usuário pelo fluxo de pedido."""

    def __init__(
        self,
        state_machine: SessionStateMachine,
        recovery: RecoveryEngine,
        agents: BusinessAgents,
        intent_resolver: IntentResolver,
        settings: Settings | None = None,
        extractor: SlotExtractor | None = None,
        logger: logging.Logger | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self._sm = state_machine
        self._recovery = recovery
        self._agents = agents
        self._resolver = intent_resolver
        self._settings = settings or get_settings()
        self._extractor = extractor
        self._logger = logger or get_logger(__name__)
        self._event_sink = event_sink

    def set_event_sink(self, sink: EventSink | None) -> None:
        """Canal para eventos que não esperam o fim do turn (loader)."""
        self._event_sink = sink

    async def handle(self, session_id: str, user_input: UserInput) -> RouterResponse:
        """Processa um turn completo. Nunca lança exceção."""
        bind_session(session_id)
        async with self._sm.session_lock(session_id):
            with timed("agent_router", session_id):
                return await self._handle_locked(session_id, user_input)

    async def _handle_locked(self, session_id: str, user_input: UserInput) -> RouterResponse:
        previous = self._sm.get_or_create(session_id).state
        self._sm.append_turn(
            session_id,
            Turn.text(TurnRole.USER, user_input.content, input_type=user_input.type.value),
        )

        try:
            result = await self._dispatch(session_id, user_input)
        except _StageFailure as failure:
            result = self._recover(session_id, failure.source, failure.error)
        except SlotFillingStalled as exc:
            result = self._recover(session_id, ErrorSource.SYSTEM, exc)
        except PaymentError as exc:
            result = self._recover(session_id, ErrorSource.PAYMENT, exc)
        except Exception as exc:
            result = self._recover(session_id, ErrorSource.SYSTEM, exc)

        self._conclude(session_id, previous, result)
        self._logger.info(
            "turn_processed",
            extra={
                "session_id": short_id(session_id),
                "input_type": user_input.type.value,
                "from_state": previous.value,
                "to_state": result.next_state.value if result.next_state else None,
                "success": result.success,
                "ui_events": len(result.ui_events),
            },
        )
        return result

    async def handle_payment_event(
        self, session_id: str, status: PaymentStatus, reason: str | None = None
    ) -> RouterResponse:
        """Aplica um evento do provedor de pagamento. Nunca lança exceção.

        - pending: payment_session_created -> payment_pending
        - completed: -> payment_completed -> order_confirmed
        - failed/timeout: PaymentError pela recuperação (-> payment_failed)
        - retry: payment_failed -> checkout_info -> payment_session_created
        - cancelled: volta a idle e cancela o pedido

        Evento incompatível com o estado corrente devolve success=False com
        INVALID_PAYMENT_EVENT e não altera a sessão.
        """
        bind_session(session_id)
        async with self._sm.session_lock(session_id):
            previous = self._sm.get_or_create(session_id).state
            if previous not in _PAYMENT_EVENT_STATES[status]:
                self._logger.warning(
                    "payment_event_rejected",
                    extra={
                        "session_id": short_id(session_id),
                        "payment_status": status.value,
                        "state": previous.value,
                    },
                )
                return RouterResponse(
                    success=False,
                    response={
                        "message": INVALID_PAYMENT_EVENT_MESSAGE,
                        "error": {
                            "code": INVALID_PAYMENT_EVENT,
                            "status": status.value,
                            "state": previous.value,
                        },
                    },
                    next_state=previous,
                )

            try:
                result = self._apply_payment_event(session_id, status, reason)
            except PaymentError as exc:
                result = self._recover(session_id, ErrorSource.PAYMENT, exc)
            except Exception as exc:
                result = self._recover(session_id, ErrorSource.SYSTEM, exc)

            if status != PaymentStatus.PENDING:
                result.ui_events.insert(0, loader(False))
            self._conclude(session_id, previous, result)
            self._logger.info(
                "payment_event_processed",
                extra={
                    "session_id": short_id(session_id),
                    "payment_status": status.value,
                    "from_state": previous.value,
                    "to_state": result.next_state.value if result.next_state else None,
                    "success": result.success,
                },
            )
            return result

    def _conclude(
        self, session_id: str, previous: SessionState, result: RouterResponse
    ) -> None:
        """Registra a resposta no histórico e anexa state_change se o estado mudou."""
        if result.message:
            self._sm.append_turn(session_id, Turn.text(TurnRole.ASSISTANT, result.message))

        session = self._sm.get_or_create(session_id)
        current = session.state
        result.next_state = current
        if current != previous:
            intent = session.context.current_intent
            result.ui_events.append(
                state_change(
                    previous.value,
                    current.value,
                    {"intent": intent.key if intent else None},
                )
            )

    # ------------------------------------------------------------------
    # Despacho por estado
    # ------------------------------------------------------------------

    async def _dispatch(self, session_id: str, user_input: UserInput) -> RouterResponse:
        state = self._sm.get_or_create(session_id).state
        self._sm.update_context(session_id, {"last_user_input": user_input.content})

        if state == SessionState.LISTENING:
            self._sm.transition(session_id, SessionState.PROCESSING_VOICE)
            return await self._process_new_input(session_id, user_input)
        if state in NEW_INPUT_STATES:
            return await self._process_new_input(session_id, user_input)
        if state == SessionState.SLOT_FILLING:
            return await self._process_slot_filling(session_id, user_input)
        if state == SessionState.CART_REVIEW:
            return await self._process_cart_review(session_id, user_input)
        if state == SessionState.CHECKOUT_INFO:
            return await self._process_checkout_info(session_id, user_input)
        if state == SessionState.ORDER_CONFIRMED:
            self._sm.transition(session_id, SessionState.IDLE)
            return await self._process_new_input(session_id, user_input)
        if state in PAYMENT_STATES:
            return await self._process_payment_input(session_id, user_input)
        raise AssertionError(f"Estado sem tratamento: {state}")

    async def _process_new_input(
        self, session_id: str, user_input: UserInput, intent: Intent | None = None
    ) -> RouterResponse:
        if intent is None:
            intent = await self._classify(session_id, user_input.content)

        if intent.category == IntentCategory.GENERAL:
            return await self._reply_general(session_id, user_input, intent)

        if intent.category == IntentCategory.ORDER and intent.action in _ORDER_TYPE_ACTIONS:
            self._advance_to(
                session_id,
                SessionState.INTENT_DETECTED,
                {"current_intent": intent, "missing_slots": [], "retry_count": 0},
            )
            return await self._checkout_step(session_id, intent, user_input.content, fresh=True)

        missing = missing_slots(intent)
        self._advance_to(
            session_id,
            SessionState.INTENT_DETECTED,
            {"current_intent": intent, "missing_slots": missing, "retry_count": 0},
        )
        if missing:
            question = generate_clarification_question(intent, missing, self._extractor)
            self._advance_to(
                session_id,
                SessionState.SLOT_FILLING,
                {"current_intent": intent, "missing_slots": missing},
            )
            return self._clarify(question, intent, missing)

        return await self._route_to_agent(session_id, intent)

    async def _process_slot_filling(
        self, session_id: str, user_input: UserInput
    ) -> RouterResponse:
        ctx = self._sm.get_or_create(session_id).context
        if ctx.current_intent is None:
            return await self._process_new_input(session_id, user_input)

        result = process_slot_filling(
            ctx.current_intent, user_input.content, SessionState.SLOT_FILLING, self._extractor
        )
        if result.is_complete:
            self._sm.update_context(
                session_id,
                {"current_intent": result.updated_intent, "missing_slots": [], "retry_count": 0},
            )
            return await self._route_to_agent(session_id, result.updated_intent)

        retry_count = self._track_progress(session_id, result.made_progress)
        self._sm.update_context(
            session_id,
            {
                "current_intent": result.updated_intent,
                "missing_slots": result.missing_slots,
                "retry_count": retry_count,
            },
        )
        return self._clarify(
            result.clarification_question or "",
            result.updated_intent,
            result.missing_slots,
        )

    async def _process_cart_review(
        self, session_id: str, user_input: UserInput
    ) -> RouterResponse:
        text = user_input.content.lower()
        cart = self._sm.get_or_create(session_id).cart

        if any(word in text for word in CONFIRM_WORDS):
            intent = Intent(category=IntentCategory.ORDER, action="create", confidence=0.9)
            self._sm.transition(
                session_id,
                SessionState.CHECKOUT_INFO,
                {"current_intent": intent, "missing_slots": ["orderType"], "retry_count": 0},
            )
            return RouterResponse(
                success=True,
                response={"message": CHECKOUT_PROMPT},
                ui_events=[
                    ui_update("checkout", "order_type_selection", {"cart": _dump_cart(cart)}),
                    navigation("/checkout"),
                ],
            )

        # Pedidos concretos (mais itens, cupom, checkout) seguem o fluxo normal
        intent = await self._classify(session_id, user_input.content)
        if intent.category != IntentCategory.GENERAL or any(
            word in text for word in MODIFY_WORDS
        ):
            return await self._process_new_input(session_id, user_input, intent)

        return RouterResponse(
            success=True,
            response={"message": CART_REVIEW_PROMPT},
            ui_events=[
                ui_update(
                    "cart", "review", {"cart": _dump_cart(cart), "needsConfirmation": True}
                )
            ],
        )

    async def _process_checkout_info(
        self, session_id: str, user_input: UserInput
    ) -> RouterResponse:
        ctx = self._sm.get_or_create(session_id).context
        intent = ctx.current_intent
        if intent is None or intent.category != IntentCategory.ORDER:
            intent = Intent(category=IntentCategory.ORDER, action="create", confidence=0.9)
        return await self._checkout_step(session_id, intent, user_input.content)

    async def _process_payment_input(
        self, session_id: str, user_input: UserInput
    ) -> RouterResponse:
        state = self._sm.get_or_create(session_id).state
        text = user_input.content.lower()
        if state in _PAYMENT_EVENT_STATES[PaymentStatus.CANCELLED] and any(
            word in text for word in CANCEL_WORDS
        ):
            return self._cancel_payment(session_id)
        if state == SessionState.PAYMENT_FAILED and any(word in text for word in RETRY_WORDS):
            return self._retry_payment(session_id)
        return await self._process_general_input(session_id, user_input)

    async def _process_general_input(
        self, session_id: str, user_input: UserInput
    ) -> RouterResponse:
        context = self._sm.get_conversation_context(session_id)
        try:
            reply = await self._resolver.reply(user_input.content, context)
        except Exception as exc:
            raise _StageFailure(ErrorSource.LLM, exc) from exc
        message = reply or PAYMENT_WAIT_MESSAGE
        return RouterResponse(
            success=True,
            response={"message": message},
            ui_events=[ui_update("search", "chat", {"message": message, "role": "assistant"})],
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def _checkout_step(
        self, session_id: str, intent: Intent, text: str, *, fresh: bool = False
    ) -> RouterResponse:
        result = process_slot_filling(intent, text, SessionState.CHECKOUT_INFO, self._extractor)
        updated = result.updated_intent
        order_type = updated.slots.get("orderType")
        if updated.action == "create" and order_type:
            updated = updated.model_copy(update={"action": str(order_type)})

        missing = missing_slots(updated)
        if not missing:
            return await self._create_order(session_id, updated)

        retry_count = 0 if fresh else self._track_progress(session_id, result.made_progress)
        self._advance_to(
            session_id,
            SessionState.CHECKOUT_INFO,
            {"current_intent": updated, "missing_slots": missing, "retry_count": retry_count},
        )
        question = generate_clarification_question(updated, missing, self._extractor)
        return RouterResponse(
            success=True,
            response={"message": question, "missingSlots": missing},
            ui_events=[
                ui_update(
                    "checkout",
                    "info_collection",
                    {"intent": updated.model_dump(mode="json"), "missingSlots": missing},
                )
            ],
        )

    async def _create_order(self, session_id: str, intent: Intent) -> RouterResponse:
        session = self._sm.get_or_create(session_id)
        cart = session.cart
        slots = intent.slots
        payload = {
            "order_type": slots.get("orderType", intent.action),
            "customer_name": slots.get("customerName"),
            "phone": slots.get("phone"),
            "address": slots.get("address"),
            "pickup_location": slots.get("pickupLocation"),
            "preferred_time": slots.get("preferredTime"),
            "items": [item.model_dump(mode="json") for item in cart.items],
            "subtotal": cart.subtotal,
            "discounts": cart.discounts,
            "total": cart.total,
            "currency": cart.currency,
            "coupon_code": cart.coupon_code,
        }
        result = await self._call_agent(
            session_id, self._agents.create_order(session_id, payload)
        )
        order = dict(result.data.get("order") or {})

        self._sm.set_order(session_id, order)
        self._advance_to(
            session_id,
            SessionState.PAYMENT_SESSION_CREATED,
            {"current_intent": intent, "missing_slots": [], "retry_count": 0},
        )
        events = [
            ui_update("order_status", "created", {"order": order}),
            navigation("/order", {"orderId": order.get("id")}),
            toast(ToastKind.SUCCESS, ORDER_CREATED_MESSAGE),
        ]
        return RouterResponse(
            success=True,
            response={"message": ORDER_CREATED_MESSAGE, "order": order},
            ui_events=events,
        )

    # ------------------------------------------------------------------
    # Pagamento
    # ------------------------------------------------------------------

    def _apply_payment_event(
        self, session_id: str, status: PaymentStatus, reason: str | None
    ) -> RouterResponse:
        if status == PaymentStatus.PENDING:
            self._sm.transition(session_id, SessionState.PAYMENT_PENDING)
            order = self._update_order(session_id, payment_status=status.value)
            return RouterResponse(
                success=True,
                response={"message": PAYMENT_PROCESSING_MESSAGE, "order": order},
                ui_events=[
                    ui_update("order_status", "payment_pending", {"order": order}),
                    loader(True, PAYMENT_WAIT_MESSAGE),
                ],
            )
        if status == PaymentStatus.COMPLETED:
            return self._confirm_order(session_id)
        if status == PaymentStatus.RETRY:
            return self._retry_payment(session_id)
        if status == PaymentStatus.CANCELLED:
            return self._cancel_payment(session_id)

        # failed / timeout: a recuperação leva a sessão para payment_failed
        self._advance_to(session_id, SessionState.PAYMENT_PENDING, {})
        self._update_order(session_id, payment_status=status.value)
        kind = ErrorKind.TIMEOUT if status == PaymentStatus.TIMEOUT else None
        raise PaymentError(reason or f"Payment {status.value}", kind)

    def _confirm_order(self, session_id: str) -> RouterResponse:
        self._advance_to(session_id, SessionState.PAYMENT_COMPLETED, {"retry_count": 0})
        order = self._update_order(
            session_id, status="confirmed", payment_status=PaymentStatus.COMPLETED.value
        )
        self._sm.transition(
            session_id,
            SessionState.ORDER_CONFIRMED,
            {"current_intent": None, "missing_slots": [], "last_error_message": None},
        )
        # O pedido passa a ser dono dos itens; o próximo fluxo começa vazio
        self._sm.mutate_cart(session_id, {"items": [], "coupon_code": None, "discounts": 0.0})
        return RouterResponse(
            success=True,
            response={"message": PAYMENT_COMPLETED_MESSAGE, "order": order},
            ui_events=[
                ui_update("order_status", "confirmed", {"order": order}),
                navigation("/order", {"orderId": order.get("id")}),
                toast(ToastKind.SUCCESS, PAYMENT_COMPLETED_MESSAGE),
            ],
        )

    def _retry_payment(self, session_id: str) -> RouterResponse:
        # retry_count é mantido: falhas repetidas acabam em fallback
        self._advance_to(
            session_id, SessionState.PAYMENT_SESSION_CREATED, {"last_error_message": None}
        )
        order = self._update_order(session_id, payment_status=PaymentStatus.RETRY.value)
        return RouterResponse(
            success=True,
            response={"message": PAYMENT_RETRY_READY_MESSAGE, "order": order},
            ui_events=[
                ui_update("order_status", "payment_retry", {"order": order}),
                toast(ToastKind.INFO, PAYMENT_RETRY_READY_MESSAGE),
            ],
        )

    def _cancel_payment(self, session_id: str) -> RouterResponse:
        self._advance_to(
            session_id,
            SessionState.IDLE,
            {"current_intent": None, "missing_slots": [], "retry_count": 0},
        )
        order = self._update_order(
            session_id, status="cancelled", payment_status=PaymentStatus.CANCELLED.value
        )
        return RouterResponse(
            success=True,
            response={"message": PAYMENT_CANCELLED_MESSAGE, "order": order},
            ui_events=[
                ui_update("order_status", "cancelled", {"order": order}),
                toast(ToastKind.INFO, PAYMENT_CANCELLED_MESSAGE),
            ],
        )

    def _update_order(self, session_id: str, **fields: Any) -> dict[str, Any]:
        order = dict(self._sm.get_or_create(session_id).order or {})
        order.update(fields)
        self._sm.set_order(session_id, order)
        return order

    # ------------------------------------------------------------------
    # Agentes de negócio
    # ------------------------------------------------------------------

    async def _route_to_agent(self, session_id: str, intent: Intent) -> RouterResponse:
        if intent.category == IntentCategory.PRODUCT:
            if intent.action == "add":
                return await self._add_to_cart(session_id, intent)
            return await self._search(session_id, intent)
        if intent.category == IntentCategory.COUPON:
            return await self._apply_coupon(session_id, intent)
        return await self._reply_general(
            session_id, UserInput(content=str(intent.slots.get("query") or "")), intent
        )

    async def _search(self, session_id: str, intent: Intent) -> RouterResponse:
        query = str(intent.slots.get("productName") or intent.slots.get("query") or "")
        result = await self._call_agent(session_id, self._agents.search_products(query))
        products = list(result.data.get("products") or [])
        self._advance_to(
            session_id,
            SessionState.INTENT_DETECTED,
            {"current_intent": intent, "missing_slots": []},
        )
        message = f"{len(products)}개의 상품을 찾았습니다."
        return RouterResponse(
            success=True,
            response={"message": message, "products": products},
            ui_events=[ui_update("search", "results", {"products": products, "query": query})],
        )

    async def _add_to_cart(self, session_id: str, intent: Intent) -> RouterResponse:
        name = str(intent.slots["productName"])
        found = await self._call_agent(
            session_id, self._agents.search_products(name, limit=1)
        )
        products = found.data.get("products") or []
        if not products:
            raise _StageFailure(
                ErrorSource.BUSINESS,
                BusinessRuleError(f"Product not found: {name}", ErrorKind.NOT_FOUND),
            )

        options = {"size": intent.slots["size"]} if intent.slots.get("size") else {}
        added = await self._call_agent(
            session_id,
            self._agents.add_to_cart(
                session_id, str(products[0]["id"]), int(intent.slots["quantity"]), options
            )
        )
        item = CartItem.model_validate(added.data["item"])

        cart = self._sm.mutate_cart(
            session_id, {"items": _merge_item(self._sm.get_or_create(session_id).cart, item)}
        )
        self._advance_to(
            session_id,
            SessionState.CART_REVIEW,
            {"current_intent": intent, "missing_slots": [], "retry_count": 0},
        )
        return RouterResponse(
            success=True,
            response={"message": ITEM_ADDED_MESSAGE, "addedItem": item.model_dump(mode="json")},
            ui_events=[
                ui_update(
                    "cart",
                    "updated",
                    {"cart": _dump_cart(cart), "addedItem": item.model_dump(mode="json")},
                ),
                toast(ToastKind.SUCCESS, ITEM_ADDED_MESSAGE),
            ],
        )

    async def _apply_coupon(self, session_id: str, intent: Intent) -> RouterResponse:
        code = str(intent.slots["couponCode"])
        cart = self._sm.get_or_create(session_id).cart
        result = await self._call_agent(
            session_id, self._agents.apply_coupon(session_id, code, cart.subtotal)
        )
        discount = float(result.data.get("discount") or 0.0)

        cart = self._sm.mutate_cart(session_id, {"coupon_code": code, "discounts": discount})
        self._advance_to(
            session_id,
            SessionState.CART_REVIEW,
            {"current_intent": intent, "missing_slots": [], "retry_count": 0},
        )
        coupon = {"code": code, "discount": discount}
        return RouterResponse(
            success=True,
            response={"message": COUPON_APPLIED_MESSAGE, "coupon": coupon},
            ui_events=[
                ui_update("cart", "coupon_applied", {"cart": _dump_cart(cart), "coupon": coupon}),
                toast(ToastKind.SUCCESS, COUPON_APPLIED_MESSAGE),
            ],
        )

    async def _reply_general(
        self, session_id: str, user_input: UserInput, intent: Intent
    ) -> RouterResponse:
        # Resolvers com function calling já trazem a resposta junto da intenção
        message = str(intent.slots.get("reply") or "")
        if not message:
            context = self._sm.get_conversation_context(session_id)
            try:
                message = await self._resolver.reply(user_input.content, context)
            except Exception as exc:
                raise _StageFailure(ErrorSource.LLM, exc) from exc

        self._advance_to(
            session_id,
            SessionState.IDLE,
            {"current_intent": None, "missing_slots": [], "retry_count": 0},
        )
        return RouterResponse(
            success=True,
            response={"message": message, "intent": intent.model_dump(mode="json")},
            ui_events=[ui_update("search", "chat", {"message": message, "role": "assistant"})],
        )

    # ------------------------------------------------------------------
    # Auxiliares
    # ------------------------------------------------------------------

    async def _classify(self, session_id: str, text: str) -> Intent:
        context = self._sm.get_conversation_context(session_id)
        try:
            intent = await self._resolver.classify(text, context)
        except Exception as exc:
            raise _StageFailure(ErrorSource.LLM, exc) from exc

        # Slots que o classificador não trouxe vêm do extrator local
        local = extract_slots(text, intent.category, self._extractor)
        slots = {**local, **{k: v for k, v in intent.slots.items() if v not in (None, "")}}
        slots.setdefault("query", text)
        update: dict[str, Any] = {"slots": slots}
        if intent.category == IntentCategory.COUPON:
            update["action"] = "apply"
        return intent.model_copy(update=update)

    async def _call_agent(self, session_id: str, call: Any) -> AgentResult:
        """Aguarda uma chamada de agente e converte falhas em erro de negócio.

        Com event sink configurado, loader(True)/loader(False) envolvem a chamada.
        """
        self._emit(session_id, loader(True, LOADING_MESSAGE))
        try:
            result: AgentResult = await call
        except Exception as exc:
            raise _StageFailure(ErrorSource.BUSINESS, exc) from exc
        finally:
            self._emit(session_id, loader(False))
        if not result.success:
            code = (result.error_code or "").upper()
            message = result.message or code or "business agent failure"
            kind = _AGENT_ERROR_KINDS.get(code)
            error: Exception = (
                BusinessRuleError(message, kind) if kind else ExternalApiError(message)
            )
            raise _StageFailure(ErrorSource.BUSINESS, error)
        return result

    def _emit(self, session_id: str, event: UIEvent) -> None:
        if self._event_sink is not None:
            self._event_sink(session_id, [event])

    def _track_progress(self, session_id: str, made_progress: bool) -> int:
        """Atualiza o contador de turns sem progresso.

        Raises:
            SlotFillingStalled: ao atingir o limite de retries.
        """
        if made_progress:
            return 0
        retry_count = self._sm.get_or_create(session_id).context.retry_count + 1
        if not self._recovery.policy.allows(retry_count):
            self._sm.update_context(session_id, {"retry_count": retry_count})
            raise SlotFillingStalled(f"No new slot values after {retry_count} turns")
        return retry_count

    def _advance_to(
        self, session_id: str, target: SessionState, patch: dict[str, Any]
    ) -> None:
        """Caminha por transições legais até `target` (sem passar por error).

        Mesmo estado só atualiza o contexto. Sem caminho legal, a própria
        transição direta levanta IllegalTransition.
        """
        current = self._sm.get_or_create(session_id).state
        if current == target:
            self._sm.update_context(session_id, patch)
            return
        route = find_route(current, target)
        if route is None:
            self._sm.transition(session_id, target, patch)
            return
        for step in route[:-1]:
            self._sm.transition(session_id, step)
        self._sm.transition(session_id, route[-1], patch)

    def _clarify(self, question: str, intent: Intent, missing: list[str]) -> RouterResponse:
        return RouterResponse(
            success=True,
            response={
                "message": question,
                "intent": intent.model_dump(mode="json"),
                "missingSlots": missing,
            },
            ui_events=[
                ui_update(
                    "search",
                    "chat",
                    {
                        "message": question,
                        "role": "assistant",
                        "intent": intent.model_dump(mode="json"),
                    },
                )
            ],
        )

    def _recover(
        self, session_id: str, source: ErrorSource, error: Exception
    ) -> RouterResponse:
        retry_count = self._sm.get_or_create(session_id).context.retry_count
        try:
            recovery = self._recovery.handle(
                ErrorContext(
                    session_id=session_id,
                    source=source,
                    error=error,
                    retry_count=retry_count,
                )
            )
        except Exception:
            self._logger.exception(
                "recovery_failed",
                extra={"session_id": short_id(session_id), "error_source": source.value},
            )
            return RouterResponse(
                success=False,
                response={"message": GENERIC_ERROR_MESSAGE},
                ui_events=[toast(ToastKind.ERROR, GENERIC_ERROR_MESSAGE)],
            )

        return RouterResponse(
            success=False,
            response={
                "message": recovery.user_message,
                "error": {
                    "code": recovery.error_code,
                    "kind": recovery.kind.value,
                    "source": source.value,
                    "recovered": recovery.success,
                    "actions": [action.to_dict() for action in recovery.actions],
                },
            },
            ui_events=[recovery_toast(recovery)],
        )


def _merge_item(cart: Cart, item: CartItem) -> list[dict[str, Any]]:
    """Soma quantidade se o mesmo produto/opções já estiver no carrinho."""
    items = [existing.model_dump() for existing in cart.items]
    for existing in items:
        if existing["product_id"] == item.product_id and existing["options"] == item.options:
            existing["quantity"] += item.quantity
            return items
    items.append(item.model_dump())
    return items


def _dump_cart(cart: Cart) -> dict[str, Any]:
    return cart.model_dump(mode="json")
