"""Provedor de STT desligado (STT_BACKEND=disabled).

Toda tentativa de abrir stream falha com erro tipado; o transporte
responde STREAM_START_ERROR e a sessão segue por texto.
"""

from __future__ import annotations

from voice_ordering.domain.errors import ExternalApiError
from voice_ordering.domain.protocols.speech import RecognizeRequest, SpeechStream


class DisabledSpeechProvider:
    async def open_stream(self, request: RecognizeRequest) -> SpeechStream:
        raise ExternalApiError("Speech recognition is disabled (STT_BACKEND=disabled)")
