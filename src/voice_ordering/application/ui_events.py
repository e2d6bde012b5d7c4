"""Construtores dos eventos de UI emitidos pelo roteador.

O transporte embrulha cada evento no envelope {type, sessionId, data, timestamp}.
Painéis/visões usados: search/results, search/chat, cart/updated,
cart/coupon_applied, cart/review, checkout/order_type_selection,
checkout/info_collection, order_status/created, order_status/payment_pending,
order_status/confirmed, order_status/payment_retry, order_status/cancelled.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field

from voice_ordering.application.recovery import RecoveryResult
from voice_ordering.domain.enums import ToastKind, UIEventType

DEFAULT_TOAST_MS = 3000
ERROR_TOAST_MS = 5000


def _now_ms() -> int:
    return int(time.time() * 1000)


class UIEvent(BaseModel):
    type: UIEventType
    data: dict[str, Any] = Field(default_factory=dict)


def ui_update(panel: str, view: str, data: dict[str, Any] | None = None) -> UIEvent:
    return UIEvent(
        type=UIEventType.UI_UPDATE,
        data={"panel": panel, "view": view, "data": data or {}, "timestamp": _now_ms()},
    )


def toast(kind: ToastKind, message: str, duration: int | None = None) -> UIEvent:
    if duration is None:
        duration = ERROR_TOAST_MS if kind == ToastKind.ERROR else DEFAULT_TOAST_MS
    return UIEvent(
        type=UIEventType.TOAST,
        data={"kind": kind.value, "message": message, "duration": duration},
    )


def navigation(path: str, params: dict[str, Any] | None = None) -> UIEvent:
    data: dict[str, Any] = {"path": path}
    if params:
        data["params"] = params
    return UIEvent(type=UIEventType.NAVIGATION, data=data)


def loader(is_loading: bool, message: str | None = None) -> UIEvent:
    data: dict[str, Any] = {"isLoading": is_loading}
    if message:
        data["message"] = message
    return UIEvent(type=UIEventType.LOADER, data=data)


def state_change(
    previous_state: str, new_state: str, context: dict[str, Any] | None = None
) -> UIEvent:
    return UIEvent(
        type=UIEventType.STATE_CHANGE,
        data={"previousState": previous_state, "newState": new_state, "context": context or {}},
    )


def recovery_toast(result: RecoveryResult) -> UIEvent:
    """Toast de erro com o código e as ações de recuperação (ex.: mode=text_input)."""
    event = toast(ToastKind.ERROR, result.user_message)
    event.data["errorCode"] = result.error_code
    event.data["actions"] = [action.to_dict() for action in result.actions]
    return event


def recovery_events(result: RecoveryResult) -> list[UIEvent]:
    """Eventos de uma decisão de recuperação fora de um turn do roteador."""
    events = [recovery_toast(result)]
    if result.state_changed and result.previous_state and result.new_state:
        events.append(
            state_change(
                result.previous_state.value,
                result.new_state.value,
                {
                    "errorCode": result.error_code,
                    "strategy": result.strategy.value if result.strategy else None,
                },
            )
        )
    return events
