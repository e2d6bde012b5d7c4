"""Extração e preenchimento de slots.

Funções puras (sem rede):
- extract_slots: texto livre -> slots da categoria
- missing_slots: slots exigidos por `category.action` ainda ausentes
- generate_clarification_question: pergunta para o slot prioritário
- process_slot_filling: mescla slots novos, recalcula completude e próximo estado
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from voice_ordering.application.locale_ko import KoreanSlotExtractor
from voice_ordering.domain.enums import IntentCategory
from voice_ordering.domain.models import Intent
from voice_ordering.domain.protocols.slot_extractor import SlotExtractor
from voice_ordering.domain.session import SessionState

REQUIRED_SLOTS: dict[str, tuple[str, ...]] = {
    "product.search": (),
    "product.add": ("productName", "quantity"),
    "coupon.apply": ("couponCode",),
    "order.create": ("orderType",),
    "order.delivery": ("phone", "address"),
    "order.pickup": ("phone",),
}

SLOT_PRIORITIES: dict[IntentCategory, tuple[str, ...]] = {
    IntentCategory.PRODUCT: ("productName", "quantity", "size", "options"),
    IntentCategory.COUPON: ("couponCode", "cartTotal"),
    IntentCategory.ORDER: (
        "orderType",
        "customerName",
        "phone",
        "address",
        "pickupLocation",
        "preferredTime",
    ),
}

_ORDER_CHECKOUT_ACTIONS = frozenset({"create", "delivery", "pickup"})

DEFAULT_EXTRACTOR: SlotExtractor = KoreanSlotExtractor()


@dataclass(slots=True)
class SlotFillingResult:
    is_complete: bool
    missing_slots: list[str]
    updated_intent: Intent
    next_state: SessionState
    new_slots: dict[str, Any] = field(default_factory=dict)
    clarification_question: str | None = None

    @property
    def made_progress(self) -> bool:
        """False quando o turn não trouxe nenhum valor de slot novo."""
        return bool(self.new_slots)


def extract_slots(
    text: str,
    category: IntentCategory,
    extractor: SlotExtractor | None = None,
) -> dict[str, Any]:
    """Extrai os slots reconhecíveis de `text` para a categoria."""
    return (extractor or DEFAULT_EXTRACTOR).extract(text, category)


def _is_filled(value: Any) -> bool:
    return value is not None and value != "" and value != 0


def missing_slots(intent: Intent) -> list[str]:
    required = REQUIRED_SLOTS.get(intent.key, ())
    return [slot for slot in required if not _is_filled(intent.slots.get(slot))]


def prioritize_slots(category: IntentCategory, slots: list[str]) -> list[str]:
    """Ordena pela prioridade da categoria; desconhecidos vão para o fim (ordem estável)."""
    priorities = SLOT_PRIORITIES.get(category, ())

    def rank(slot: str) -> int:
        return priorities.index(slot) if slot in priorities else len(priorities)

    return sorted(slots, key=rank)


def generate_clarification_question(
    intent: Intent,
    missing: list[str],
    extractor: SlotExtractor | None = None,
) -> str:
    extractor = extractor or DEFAULT_EXTRACTOR
    ordered = prioritize_slots(intent.category, missing)
    if not ordered:
        return extractor.generic_question("")
    primary = ordered[0]
    return extractor.question(primary, intent) or extractor.generic_question(primary)


def post_completion_state(intent: Intent) -> SessionState:
    """Estado seguinte quando a intenção fica completa."""
    if intent.category == IntentCategory.PRODUCT and intent.action == "add":
        return SessionState.CART_REVIEW
    if intent.category == IntentCategory.COUPON:
        return SessionState.CART_REVIEW
    if intent.category == IntentCategory.ORDER and intent.action in _ORDER_CHECKOUT_ACTIONS:
        return SessionState.CHECKOUT_INFO
    return SessionState.INTENT_DETECTED


def process_slot_filling(
    current_intent: Intent,
    new_text: str,
    session_state: SessionState,
    extractor: SlotExtractor | None = None,
) -> SlotFillingResult:
    """Mescla os slots do novo texto na intenção corrente.

    Valores novos sobrescrevem apenas o slot de mesmo nome. Se incompleta,
    o próximo estado é `slot_filling`, exceto durante a coleta de checkout,
    que continua em `checkout_info`.
    """
    extractor = extractor or DEFAULT_EXTRACTOR

    extracted: dict[str, Any] = {}
    for slot in missing_slots(current_intent):
        value = extractor.extract_slot(slot, new_text)
        if value is not None:
            extracted[slot] = value
    extracted.update(extractor.extract(new_text, current_intent.category))

    new_slots = {
        name: value
        for name, value in extracted.items()
        if current_intent.slots.get(name) != value
    }
    updated = current_intent.model_copy(
        update={"slots": {**current_intent.slots, **extracted}}
    )

    missing = missing_slots(updated)
    if not missing:
        return SlotFillingResult(
            is_complete=True,
            missing_slots=[],
            updated_intent=updated,
            next_state=post_completion_state(updated),
            new_slots=new_slots,
        )

    next_state = (
        SessionState.CHECKOUT_INFO
        if session_state == SessionState.CHECKOUT_INFO
        else SessionState.SLOT_FILLING
    )
    return SlotFillingResult(
        is_complete=False,
        missing_slots=missing,
        updated_intent=updated,
        next_state=next_state,
        new_slots=new_slots,
        clarification_question=generate_clarification_question(updated, missing, extractor),
    )
