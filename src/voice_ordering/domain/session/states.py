"""Estados canônicos de uma sessão de pedido.

A posição no fluxo de conversa é sempre um destes 13 valores; toda
mudança passa pela tabela de transições (`transitions.py`).
"""

from __future__ import annotations

from enum import StrEnum


class SessionState(StrEnum):
    """13 estados canônicos de uma sessão."""

    # === Entrada ===
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING_VOICE = "processing_voice"

    # === Conversa ===
    INTENT_DETECTED = "intent_detected"
    SLOT_FILLING = "slot_filling"
    CART_REVIEW = "cart_review"
    CHECKOUT_INFO = "checkout_info"

    # === Pagamento ===
    PAYMENT_SESSION_CREATED = "payment_session_created"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"

    # === Encerramento / exceção ===
    ORDER_CONFIRMED = "order_confirmed"
    """Só volta para IDLE (sem caminho de retry)."""

    ERROR = "error"
    """Escape universal; alcançável de todo estado exceto ORDER_CONFIRMED."""


PAYMENT_STATES = frozenset({
    SessionState.PAYMENT_SESSION_CREATED,
    SessionState.PAYMENT_PENDING,
    SessionState.PAYMENT_COMPLETED,
    SessionState.PAYMENT_FAILED,
})
"""Estados em que o fluxo aguarda o pagamento externo."""

NEW_INPUT_STATES = frozenset({
    SessionState.IDLE,
    SessionState.LISTENING,
    SessionState.PROCESSING_VOICE,
    SessionState.INTENT_DETECTED,
    SessionState.ERROR,
})
"""Estados em que um turn é tratado como entrada nova (classificação)."""
