"""Modelos do streaming de voz: configuração de áudio, conexão e resultados.

AudioConfig e TranscriptionResult trafegam no websocket (chaves camelCase).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from voice_ordering.application.recovery import RecoveryResult
from voice_ordering.domain.protocols.speech import SpeechStream


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AudioConfig(_WireModel):
    """Parâmetros do áudio enviado pelo cliente."""

    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "PCM_16"
    language_code: str = "ko-KR"
    alternative_language_codes: list[str] = Field(default_factory=list)
    enable_partial_results: bool = True
    enable_voice_activity_detection: bool = True


class TranscriptionResult(_WireModel):
    session_id: str
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_final: bool = False
    alternatives: list[str] = Field(default_factory=list)
    word_confidences: list[float] = Field(default_factory=list)
    language_code: str | None = None
    error: str | None = None

    @classmethod
    def terminal(cls, session_id: str, error: str | None = None) -> TranscriptionResult:
        """Resultado final vazio de confiança zero (encerra o 'processando' da UI)."""
        return cls(session_id=session_id, text="", confidence=0.0, is_final=True, error=error)


ResultCallback = Callable[[TranscriptionResult], Awaitable[None] | None]
# Recebe a decisão do RecoveryEngine para cada falha do stream
RecoveryCallback = Callable[[RecoveryResult], Awaitable[None] | None]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(eq=False)
class StreamConnection:
    """Conexão viva com o STT externo para uma sessão.

    Campos públicos espelham o contrato; os privados pertencem ao conector.
    """

    session_id: str
    audio_config: AudioConfig
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    retry_count: int = 0
    frames_received: int = 0
    voiced_frames: int = 0
    last_frame_energy: float = 0.0

    _on_result: ResultCallback | None = field(default=None, repr=False)
    _on_recovery: RecoveryCallback | None = field(default=None, repr=False)
    _stream: SpeechStream | None = field(default=None, repr=False)
    _queue: asyncio.Queue[bytes | None] | None = field(default=None, repr=False)
    _tasks: list[asyncio.Task] = field(default_factory=list, repr=False)
    _last_activity_mono: float = field(default=0.0, repr=False)
