"""Enums de domínio: intenções, turns, entrada do usuário e eventos de UI."""

from __future__ import annotations

from enum import StrEnum


class IntentCategory(StrEnum):
    """Categorias de intenção reconhecidas pelo motor."""

    PRODUCT = "product"
    COUPON = "coupon"
    ORDER = "order"
    GENERAL = "general"


class TurnRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ContentType(StrEnum):
    """Tipos de parte de conteúdo de um turn."""

    TEXT = "text"
    AUDIO = "audio"
    FUNCTION_CALL = "function_call"
    FUNCTION_RESPONSE = "function_response"
    UI_UPDATE = "ui_update"


class InputType(StrEnum):
    VOICE = "voice"
    TEXT = "text"


class OrderType(StrEnum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class UIEventType(StrEnum):
    """Vocabulário de eventos enviados à UI."""

    UI_UPDATE = "ui_update"
    TOAST = "toast"
    NAVIGATION = "navigation"
    LOADER = "loader"
    STATE_CHANGE = "state_change"


class ToastKind(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class PaymentStatus(StrEnum):
    """Eventos do provedor de pagamento para um pedido já criado."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    RETRY = "retry"
    CANCELLED = "cancelled"
