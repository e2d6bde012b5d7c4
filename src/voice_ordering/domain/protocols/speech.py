"""Contrato mínimo do serviço externo de STT em streaming.

O motor conhece apenas este contrato; fornecedores concretos ficam em
`voice_ordering.adapters.speech`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class RecognizeRequest:
    """Pedido de reconhecimento em streaming."""

    session_id: str
    language_code: str
    sample_rate_hz: int = 16000
    channels: int = 1
    encoding: str = "PCM_16"
    alternative_language_codes: list[str] = field(default_factory=list)
    interim_results: bool = True
    enable_word_confidence: bool = True
    enable_automatic_punctuation: bool = True
    model: str = "latest_long"


@dataclass(slots=True)
class SpeechEvent:
    """Resultado parcial/final (ou evento de erro) vindo do provedor."""

    text: str = ""
    confidence: float = 0.0
    is_final: bool = False
    alternatives: list[str] = field(default_factory=list)
    word_confidences: list[float] = field(default_factory=list)
    language_code: str | None = None
    error: Exception | None = None


class SpeechStream(Protocol):
    """Um stream aberto no provedor."""

    async def write(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...

    def results(self) -> AsyncIterator[SpeechEvent]: ...


class SpeechProvider(Protocol):
    """Abre streams de reconhecimento."""

    async def open_stream(self, request: RecognizeRequest) -> SpeechStream: ...
