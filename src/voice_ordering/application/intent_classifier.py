"""Classificador de intenção determinístico por palavras-chave.

Usado quando o modelo de linguagem está desligado (OPENAI_ENABLED=false).
Falhas do modelo não caem aqui: viram ExternalApiError e seguem para o
RecoveryEngine (retry ou menu simples). Implementa o protocolo IntentResolver.
"""

from __future__ import annotations

import re

from voice_ordering.application.locale_ko import extract_product_name, extract_quantity
from voice_ordering.application.slot_filling import extract_slots
from voice_ordering.domain.enums import IntentCategory
from voice_ordering.domain.models import Intent

MIN_CATEGORY_SCORE = 0.3
MIN_INPUT_LENGTH = 2

CATEGORY_KEYWORDS: dict[IntentCategory, tuple[str, ...]] = {
    IntentCategory.PRODUCT: (
        "주문", "찾", "검색", "메뉴", "아메리카노", "라떼", "카푸치노", "에스프레소",
        "피자", "버거", "샐러드", "음료", "커피", "디저트",
        "order", "search", "find", "menu", "americano", "latte", "cappuccino",
        "espresso", "pizza", "burger", "salad", "drink", "coffee", "tea", "dessert",
    ),
    IntentCategory.COUPON: (
        "쿠폰", "할인", "적용", "코드", "프로모션", "이벤트",
        "coupon", "discount", "apply", "code", "promotion",
    ),
    IntentCategory.ORDER: (
        "결제", "주문완료", "픽업", "배달", "주소", "전화번호", "완료",
        "payment", "checkout", "pickup", "delivery", "address", "phone",
    ),
}

_GREETINGS_KO = ("안녕", "반갑", "처음", "도움")
_GREETINGS_EN = re.compile(r"\b(hello|hi|hey|help|welcome)\b")

_ACTION_RULES: dict[IntentCategory, tuple[tuple[tuple[str, ...], str], ...]] = {
    IntentCategory.PRODUCT: (
        (("추가", "담", "add"), "add"),
        (("찾", "검색", "search", "메뉴", "menu"), "search"),
        (("추천", "recommend"), "recommend"),
    ),
    IntentCategory.COUPON: (
        (("적용", "apply"), "apply"),
        (("확인", "validate"), "validate"),
        (("목록", "list"), "list"),
    ),
    IntentCategory.ORDER: (
        (("생성", "만들", "create"), "create"),
        (("배달비", "fee"), "quote"),
        (("픽업", "pickup"), "pickup"),
        (("예약", "schedule"), "schedule"),
    ),
}
_DEFAULT_ACTIONS = {
    IntentCategory.PRODUCT: "search",
    IntentCategory.COUPON: "apply",
    IntentCategory.ORDER: "create",
}
_ORDERING_VERBS = ("주세요", "줘", "주문", "할게", "please", "order")

GREETING_REPLY = "안녕하세요! 무엇을 주문하시겠어요? 메뉴 이름과 수량을 말씀해 주세요."
CHAT_REPLY = "말씀하신 내용을 잘 이해하지 못했어요. 주문하실 메뉴를 말씀해 주세요."
UNCLEAR_REPLY = "다시 한 번 말씀해 주세요."


def category_score(text: str, keywords: tuple[str, ...]) -> float:
    """Pontuação por palavras-chave: chaves longas pesam mais; múltiplos acertos somam bônus."""
    matched = [keyword for keyword in keywords if keyword in text]
    if not matched:
        return 0.0
    score = sum(len(keyword) / 5 for keyword in matched) + (len(matched) - 1) * 0.1
    return min(score, 1.0)


def _is_greeting(text: str) -> bool:
    return any(word in text for word in _GREETINGS_KO) or bool(_GREETINGS_EN.search(text))


def _determine_action(category: IntentCategory, text: str) -> str:
    for keywords, action in _ACTION_RULES.get(category, ()):
        if any(keyword in text for keyword in keywords):
            return action
    if category == IntentCategory.PRODUCT and extract_product_name(text):
        if extract_quantity(text) is not None or any(v in text for v in _ORDERING_VERBS):
            return "add"
    return _DEFAULT_ACTIONS.get(category, "chat")


class KeywordIntentClassifier:
    """IntentResolver local, sem rede."""

    def classify_text(self, content: str) -> Intent:
        text = content.lower().strip()
        if len(text) < MIN_INPUT_LENGTH:
            return Intent(
                category=IntentCategory.GENERAL,
                action="unclear",
                confidence=0.3,
                slots={"query": content},
            )
        if _is_greeting(text):
            return Intent(
                category=IntentCategory.GENERAL,
                action="greeting",
                confidence=0.9,
                slots={"query": content},
            )

        best_category = IntentCategory.GENERAL
        best_score = 0.0
        for category, keywords in CATEGORY_KEYWORDS.items():
            score = category_score(text, keywords)
            # Empate favorece a categoria mais adiante no fluxo
            if score > 0 and score >= best_score:
                best_category, best_score = category, score

        if best_score < MIN_CATEGORY_SCORE:
            return Intent(
                category=IntentCategory.GENERAL,
                action="chat",
                confidence=0.5,
                slots={"query": content},
            )

        slots = {"query": content, **extract_slots(content, best_category)}
        return Intent(
            category=best_category,
            action=_determine_action(best_category, text),
            confidence=round(best_score, 2),
            slots=slots,
        )

    async def classify(self, text: str, context: str = "") -> Intent:
        return self.classify_text(text)

    async def reply(self, text: str, context: str = "") -> str:
        intent = self.classify_text(text)
        if intent.action == "greeting":
            return GREETING_REPLY
        if intent.action == "unclear":
            return UNCLEAR_REPLY
        return CHAT_REPLY
