"""Testes do preenchimento de slots."""

from __future__ import annotations

from voice_ordering.application.slot_filling import (
    generate_clarification_question,
    missing_slots,
    post_completion_state,
    prioritize_slots,
    process_slot_filling,
)
from voice_ordering.domain.enums import IntentCategory
from voice_ordering.domain.models import Intent
from voice_ordering.domain.session import SessionState


def _product_add(**slots: object) -> Intent:
    return Intent(category=IntentCategory.PRODUCT, action="add", confidence=0.9, slots=slots)


class TestMissingSlots:
    """Slots exigidos por category.action."""

    def test_product_add_requires_name_and_quantity(self) -> None:
        assert missing_slots(_product_add()) == ["productName", "quantity"]
        assert missing_slots(_product_add(productName="라떼")) == ["quantity"]

    def test_zero_and_empty_count_as_missing(self) -> None:
        assert missing_slots(_product_add(productName="", quantity=0)) == [
            "productName",
            "quantity",
        ]

    def test_search_has_no_required_slots(self) -> None:
        intent = Intent(category=IntentCategory.PRODUCT, action="search")
        assert missing_slots(intent) == []

    def test_unknown_action_has_no_required_slots(self) -> None:
        intent = Intent(category=IntentCategory.GENERAL, action="chat")
        assert missing_slots(intent) == []


class TestPriorities:
    """Ordem das perguntas de esclarecimento."""

    def test_order_priority(self) -> None:
        ordered = prioritize_slots(
            IntentCategory.ORDER, ["address", "mystery", "phone", "orderType"]
        )
        assert ordered == ["orderType", "phone", "address", "mystery"]

    def test_question_targets_highest_priority(self) -> None:
        question = generate_clarification_question(_product_add(), ["quantity", "productName"])
        assert question == "어떤 상품을 주문하시겠어요?"

    def test_product_name_question_depends_on_query(self) -> None:
        intent = _product_add(query="커피 주세요")
        question = generate_clarification_question(intent, ["productName"])
        assert question.startswith("어떤 커피를")

    def test_generic_question_when_no_template(self) -> None:
        intent = Intent(category=IntentCategory.GENERAL, action="chat")
        assert generate_clarification_question(intent, ["quantity"]) == "수량을 말씀해 주세요."
        assert generate_clarification_question(intent, []) == "추가 정보를 알려주세요."


class TestPostCompletionState:
    """Estado seguinte de uma intenção completa."""

    def test_product_add_goes_to_cart_review(self) -> None:
        assert post_completion_state(_product_add()) == SessionState.CART_REVIEW

    def test_coupon_goes_to_cart_review(self) -> None:
        intent = Intent(category=IntentCategory.COUPON, action="apply")
        assert post_completion_state(intent) == SessionState.CART_REVIEW

    def test_order_goes_to_checkout(self) -> None:
        intent = Intent(category=IntentCategory.ORDER, action="pickup")
        assert post_completion_state(intent) == SessionState.CHECKOUT_INFO

    def test_search_stays_intent_detected(self) -> None:
        intent = Intent(category=IntentCategory.PRODUCT, action="search")
        assert post_completion_state(intent) == SessionState.INTENT_DETECTED


class TestProcessSlotFilling:
    """Mescla de slots novos na intenção corrente."""

    def test_quantity_question_then_completion(self) -> None:
        intent = _product_add(productName="아메리카노")
        first = process_slot_filling(intent, "음...", SessionState.INTENT_DETECTED)
        assert not first.is_complete
        assert first.next_state == SessionState.SLOT_FILLING
        assert first.missing_slots == ["quantity"]
        assert first.clarification_question == "몇 개를 주문하시겠어요?"
        assert not first.made_progress

        second = process_slot_filling(first.updated_intent, "두 잔", SessionState.SLOT_FILLING)
        assert second.is_complete
        assert second.updated_intent.slots == {"productName": "아메리카노", "quantity": 2}
        assert second.next_state == SessionState.CART_REVIEW
        assert second.new_slots == {"quantity": 2}
        assert second.clarification_question is None

    def test_new_value_overwrites_only_same_slot(self) -> None:
        intent = _product_add(productName="아메리카노", size="small")
        result = process_slot_filling(intent, "라떼로 바꿔주세요", SessionState.SLOT_FILLING)
        assert result.updated_intent.slots["productName"] == "라떼"
        assert result.updated_intent.slots["size"] == "small"
        assert "quantity" in result.missing_slots

    def test_repeated_value_is_not_progress(self) -> None:
        intent = _product_add(productName="아메리카노")
        result = process_slot_filling(intent, "아메리카노요", SessionState.SLOT_FILLING)
        assert not result.made_progress

    def test_checkout_collection_stays_in_checkout(self) -> None:
        intent = Intent(
            category=IntentCategory.ORDER, action="delivery", slots={"orderType": "delivery"}
        )
        result = process_slot_filling(intent, "010-1234-5678", SessionState.CHECKOUT_INFO)
        assert not result.is_complete
        assert result.updated_intent.slots["phone"] == "01012345678"
        assert result.missing_slots == ["address"]
        assert result.next_state == SessionState.CHECKOUT_INFO
        assert result.clarification_question == "배달 주소를 자세히 알려주세요."
