"""Extrator de slots para coreano (ko-KR).

Regras de casamento por padrões simples:
- Quantidade por dígitos + contador (개, 잔, 개입, ea, pieces) ou
  vocabulário fixo de números nativos (한/하나 ... 열) + 개/잔
- Telefone por agrupamento de dígitos (separadores removidos)
- Endereço, tipo de pedido, cupom, nome, loja e horário por heurísticas

As heurísticas são estreitas de propósito e podem errar para mais ou para
menos; outro locale entra implementando o protocolo SlotExtractor.
"""

from __future__ import annotations

import re
from typing import Any

from voice_ordering.domain.enums import IntentCategory, OrderType
from voice_ordering.domain.models import Intent

PRODUCT_NAMES: tuple[str, ...] = (
    "아메리카노", "라떼", "카푸치노", "에스프레소", "마키아토", "모카",
    "피자", "버거", "샐러드", "파스타", "샌드위치", "리조또",
    "케이크", "쿠키", "머핀", "도넛", "크로와상",
)

_DIGIT_QUANTITY = re.compile(r"(\d+)\s*(개입|개|잔|ea|pieces?)")

# Ordem preservada: a primeira palavra que casar vence
SPOKEN_NUMBERS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("하나", "한", "one"), 1),
    (("둘", "두", "two"), 2),
    (("셋", "세", "three"), 3),
    (("넷", "네", "four"), 4),
    (("다섯", "five"), 5),
    (("여섯",), 6),
    (("일곱",), 7),
    (("여덟",), 8),
    (("아홉",), 9),
    (("열",), 10),
)
_SPOKEN_QUANTITY = [
    (re.compile(rf"({'|'.join(words)})\s*(개|잔)"), value) for words, value in SPOKEN_NUMBERS
]

_SIZES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("라지", "large", "큰"), "large"),
    (("미디움", "medium", "보통"), "medium"),
    (("스몰", "small", "작은"), "small"),
)

_NAME_PATTERNS = (
    re.compile(r"(?:이름은?|성함은?)\s*([가-힣]{2,4})"),
    re.compile(r"([가-힣]{2,4})\s*(?:입니다|이에요|예요)"),
    re.compile(r"^([가-힣]{2,4})$"),
)
# Palavras curtas que não são nomes (respostas típicas de checkout)
_NAME_STOPWORDS = frozenset({"픽업", "배달", "배송", "주문", "결제", "확인", "네", "아니요", "수정"})

_PHONE_PATTERNS = (
    re.compile(r"(\d{3}[-\s]?\d{3,4}[-\s]?\d{4})"),
    re.compile(r"(010[-\s]?\d{3,4}[-\s]?\d{4})"),
    re.compile(r"(\d{11})"),
)

_REGIONS = "서울|부산|대구|인천|광주|대전|울산|세종|경기|강원|충북|충남|전북|전남|경북|경남|제주"
_ADDRESS_PATTERNS = (
    re.compile(rf"(?:{_REGIONS}).+"),
    re.compile(r".+시\s.+구\s.+"),
    re.compile(r".+동\s.+"),
)
_ADDRESS_MIN_FREE_TEXT = 10

_PICKUP_KEYWORDS = ("픽업", "pickup", "가져가")
_DELIVERY_KEYWORDS = ("배달", "delivery", "배송")

_COUPON_PATTERN = re.compile(r"([A-Z0-9]{4,})", re.IGNORECASE)

_STORES = "강남|홍대|명동|신촌|이태원|압구정|청담|잠실|건대|신림|노원|분당|일산|수원|인천"
_PICKUP_LOCATION_PATTERNS = (
    re.compile(rf"({_STORES})\s*(점|매장|지점)?"),
    re.compile(r"([A-Za-z0-9_]+)\s*(점|매장|지점)"),
)

_TIME_PATTERNS = (
    re.compile(r"(오전|오후|am|pm)\s*(\d{1,2})\s*(시|:)\s*(\d{1,2})?\s*(분)?"),
    re.compile(r"(\d{1,2})\s*(시|:)\s*(\d{1,2})?\s*(분)?"),
    re.compile(r"(지금|바로|즉시|now)"),
    re.compile(r"(\d+)\s*(분|시간)\s*(후|뒤)"),
)

# Perguntas por categoria (a de productName depende do contexto)
_CATEGORY_QUESTIONS: dict[IntentCategory, dict[str, str]] = {
    IntentCategory.PRODUCT: {
        "quantity": "몇 개를 주문하시겠어요?",
        "size": "사이즈를 선택해 주세요. (스몰, 미디움, 라지)",
        "options": "추가 옵션이 있으시면 말씀해 주세요.",
    },
    IntentCategory.COUPON: {
        "couponCode": "쿠폰 코드를 말씀해 주세요.",
        "cartTotal": "현재 주문 금액을 확인 중입니다...",
    },
    IntentCategory.ORDER: {
        "orderType": "픽업 또는 배달 중 어떤 방식을 원하시나요?",
        "customerName": "성함을 알려주세요.",
        "phone": "연락처를 알려주세요.",
        "address": "배달 주소를 자세히 알려주세요.",
        "pickupLocation": "어느 매장에서 픽업하시겠어요?",
        "preferredTime": "언제 픽업하시겠어요?",
    },
}

_GENERIC_QUESTIONS: dict[str, str] = {
    "productName": "상품명을 말씀해 주세요.",
    "quantity": "수량을 말씀해 주세요.",
    "customerName": "성함을 알려주세요.",
    "phone": "연락처를 알려주세요.",
    "address": "주소를 알려주세요.",
    "orderType": "픽업 또는 배달을 선택해 주세요.",
    "couponCode": "쿠폰 코드를 말씀해 주세요.",
}
FALLBACK_QUESTION = "추가 정보를 알려주세요."


def extract_product_name(text: str) -> str | None:
    for product in PRODUCT_NAMES:
        if product in text:
            return product
    return None


def extract_quantity(text: str) -> int | None:
    match = _DIGIT_QUANTITY.search(text)
    if match:
        return int(match.group(1))
    for pattern, value in _SPOKEN_QUANTITY:
        if pattern.search(text):
            return value
    return None


def extract_size(text: str) -> str | None:
    for words, size in _SIZES:
        if any(word in text for word in words):
            return size
    return None


def extract_customer_name(text: str) -> str | None:
    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1) not in _NAME_STOPWORDS:
            return match.group(1)
    return None


def extract_phone(text: str) -> str | None:
    for pattern in _PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"[-\s]", "", match.group(1))
    return None


def extract_address(text: str) -> str | None:
    for pattern in _ADDRESS_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    if len(text) > _ADDRESS_MIN_FREE_TEXT and any(mark in text for mark in ("시", "구", "동")):
        return text
    return None


def extract_order_type(text: str) -> str | None:
    if any(word in text for word in _PICKUP_KEYWORDS):
        return OrderType.PICKUP.value
    if any(word in text for word in _DELIVERY_KEYWORDS):
        return OrderType.DELIVERY.value
    return None


def extract_coupon_code(text: str) -> str | None:
    match = _COUPON_PATTERN.search(text)
    return match.group(1).upper() if match else None


def extract_pickup_location(text: str) -> str | None:
    for pattern in _PICKUP_LOCATION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1) + (match.group(2) or "점")
    return None


def extract_preferred_time(text: str) -> str | None:
    for pattern in _TIME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0).strip()
    return None


_SLOT_EXTRACTORS = {
    "productName": extract_product_name,
    "quantity": extract_quantity,
    "size": extract_size,
    "customerName": extract_customer_name,
    "phone": extract_phone,
    "address": extract_address,
    "orderType": extract_order_type,
    "couponCode": extract_coupon_code,
    "pickupLocation": extract_pickup_location,
    "preferredTime": extract_preferred_time,
}

# Slots procurados em todo turn, por categoria
_CATEGORY_SLOTS: dict[IntentCategory, tuple[str, ...]] = {
    IntentCategory.PRODUCT: ("productName", "quantity", "size"),
    IntentCategory.ORDER: ("orderType", "phone", "customerName", "address"),
    IntentCategory.COUPON: ("couponCode",),
}


class KoreanSlotExtractor:
    """SlotExtractor para ko-KR."""

    locale = "ko-KR"

    @staticmethod
    def normalize(text: str) -> str:
        return text.lower().strip()

    def extract(self, text: str, category: IntentCategory) -> dict[str, Any]:
        normalized = self.normalize(text)
        slots: dict[str, Any] = {}
        for name in _CATEGORY_SLOTS.get(category, ()):
            value = _SLOT_EXTRACTORS[name](normalized)
            if value is not None:
                slots[name] = value
        return slots

    def extract_slot(self, slot: str, text: str) -> Any | None:
        """Extrai um slot específico (usado para slots faltantes)."""
        extractor = _SLOT_EXTRACTORS.get(slot)
        return extractor(self.normalize(text)) if extractor else None

    def question(self, slot: str, intent: Intent) -> str | None:
        if intent.category == IntentCategory.PRODUCT and slot == "productName":
            return self._product_name_question(intent)
        return _CATEGORY_QUESTIONS.get(intent.category, {}).get(slot)

    def generic_question(self, slot: str) -> str:
        return _GENERIC_QUESTIONS.get(slot, FALLBACK_QUESTION)

    @staticmethod
    def _product_name_question(intent: Intent) -> str:
        query = str(intent.slots.get("query") or "")
        if "커피" in query:
            return "어떤 커피를 주문하시겠어요? (아메리카노, 라떼, 카푸치노 등)"
        if "음식" in query:
            return "어떤 음식을 주문하시겠어요? (피자, 버거, 샐러드 등)"
        return "어떤 상품을 주문하시겠어요?"
