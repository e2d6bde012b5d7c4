"""Contrato do extrator de slots por locale."""

from __future__ import annotations

from typing import Any, Protocol

from voice_ordering.domain.enums import IntentCategory
from voice_ordering.domain.models import Intent


class SlotExtractor(Protocol):
    """Extração de slots e perguntas de esclarecimento para um locale."""

    def extract(self, text: str, category: IntentCategory) -> dict[str, Any]: ...

    def extract_slot(self, slot: str, text: str) -> Any | None: ...

    def question(self, slot: str, intent: Intent) -> str | None:
        """Pergunta específica da categoria (None se não houver template)."""
        ...

    def generic_question(self, slot: str) -> str:
        """Pergunta genérica por slot, com último recurso fixo."""
        ...
