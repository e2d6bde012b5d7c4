"""Contrato do serviço de linguagem (classificador/respondedor opaco)."""

from __future__ import annotations

from typing import Protocol

from voice_ordering.domain.models import Intent


class IntentResolver(Protocol):
    async def classify(self, text: str, context: str = "") -> Intent: ...

    async def reply(self, text: str, context: str = "") -> str: ...
