"""Modelos de domínio (intenção, turn, carrinho, entrada do usuário)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from voice_ordering.domain.enums import ContentType, InputType, IntentCategory, TurnRole
from voice_ordering.utils.ids import new_turn_id


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Intent(BaseModel):
    """Representação estruturada do que o usuário quer.

    `slots` é parcial até que todos os nomes exigidos por
    `category.action` estejam presentes.
    """

    category: IntentCategory
    action: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    slots: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Chave `category.action` usada nas tabelas de slots."""
        return f"{self.category.value}.{self.action}"


class ContentPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ContentType = ContentType.TEXT
    data: Any = None


class Turn(BaseModel):
    """Uma mensagem do histórico. Imutável depois de anexada."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_turn_id)
    role: TurnRole
    content: tuple[ContentPart, ...] = ()
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def text(cls, role: TurnRole, text: str, **metadata: Any) -> Turn:
        """Atalho para turn com uma única parte de texto."""
        return cls(
            role=role,
            content=(ContentPart(type=ContentType.TEXT, data=text),),
            metadata=metadata,
        )

    @property
    def text_content(self) -> str:
        return " ".join(
            str(part.data) for part in self.content if part.type == ContentType.TEXT and part.data
        )


class CartItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: float = 0.0
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    """Snapshot do carrinho; pertence exclusivamente a uma sessão."""

    items: list[CartItem] = Field(default_factory=list)
    currency: str = "KRW"
    subtotal: float = 0.0
    discounts: float = 0.0
    taxes: float = 0.0
    total: float = 0.0
    coupon_code: str | None = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def recalculate(self) -> None:
        """Recalcula subtotal/total a partir dos itens."""
        self.subtotal = sum(item.line_total for item in self.items)
        self.total = max(self.subtotal - self.discounts + self.taxes, 0.0)


class Preferences(BaseModel):
    language: str = "ko-KR"
    currency: str = "KRW"


class UserInput(BaseModel):
    """Uma entrada do usuário (voz já transcrita ou texto)."""

    type: InputType = InputType.TEXT
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
