"""Adapter do Google Cloud Speech-to-Text (streaming).

Traduz RecognizeRequest para StreamingRecognitionConfig e as respostas do
Google para SpeechEvent. O cliente é importado e criado sob demanda, como
nos demais clientes Google Cloud do projeto.

Erros do google.api_core viram erros tipados (kind atribuído aqui) e são
entregues como SpeechEvent(error=...), nunca re-tentados neste nível.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from voice_ordering.domain.errors import (
    ErrorKind,
    ExternalApiError,
    InvalidAudioConfig,
    LanguageDetectionError,
    NetworkUnavailable,
    PermissionDenied,
    StreamTimeout,
    VoiceOrderingError,
)
from voice_ordering.domain.protocols.speech import RecognizeRequest, SpeechEvent
from voice_ordering.observability.logging import get_logger, short_id

logger: logging.Logger = get_logger(__name__)

_END_OF_AUDIO = None


def map_google_error(exc: Exception) -> VoiceOrderingError:
    """Converte exceções do google.api_core em erros tipados."""
    from google.api_core import exceptions as gcp_exceptions

    message = str(exc)
    if isinstance(exc, gcp_exceptions.PermissionDenied | gcp_exceptions.Unauthenticated):
        return PermissionDenied(message)
    if isinstance(exc, gcp_exceptions.InvalidArgument):
        # language_code/alternative_language_codes recusados pelo Google
        if "language" in message.lower():
            return LanguageDetectionError(message)
        return InvalidAudioConfig(message)
    if isinstance(exc, gcp_exceptions.DeadlineExceeded):
        return StreamTimeout(message)
    if isinstance(exc, gcp_exceptions.ServiceUnavailable):
        return NetworkUnavailable(message)
    if isinstance(exc, gcp_exceptions.ResourceExhausted):
        return ExternalApiError(message, ErrorKind.QUOTA)
    return ExternalApiError(message)


def build_streaming_config(request: RecognizeRequest) -> Any:
    """RecognizeRequest -> speech.StreamingRecognitionConfig."""
    from google.cloud import speech

    config = speech.RecognitionConfig(
        encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
        sample_rate_hertz=request.sample_rate_hz,
        audio_channel_count=request.channels,
        language_code=request.language_code,
        alternative_language_codes=list(request.alternative_language_codes),
        enable_automatic_punctuation=request.enable_automatic_punctuation,
        enable_word_confidence=request.enable_word_confidence,
        max_alternatives=3,
        model=request.model,
    )
    return speech.StreamingRecognitionConfig(
        config=config,
        interim_results=request.interim_results,
    )


def to_speech_events(response: Any) -> list[SpeechEvent]:
    """StreamingRecognizeResponse -> SpeechEvents (um por resultado com alternativa)."""
    events: list[SpeechEvent] = []
    for result in response.results:
        if not result.alternatives:
            continue
        best = result.alternatives[0]
        events.append(
            SpeechEvent(
                text=best.transcript,
                confidence=float(best.confidence or 0.0),
                is_final=bool(result.is_final),
                alternatives=[alt.transcript for alt in result.alternatives[1:]],
                word_confidences=[float(word.confidence) for word in best.words],
                language_code=result.language_code or None,
            )
        )
    return events


class GoogleSpeechStream:
    """Um streaming_recognize aberto."""

    def __init__(self, client: Any, request: RecognizeRequest) -> None:
        self._client = client
        self._request = request
        self._audio: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    async def write(self, chunk: bytes) -> None:
        if not self._closed:
            await self._audio.put(chunk)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._audio.put(_END_OF_AUDIO)

    async def _requests(self) -> AsyncIterator[Any]:
        from google.cloud import speech

        yield speech.StreamingRecognizeRequest(
            streaming_config=build_streaming_config(self._request)
        )
        while True:
            chunk = await self._audio.get()
            if chunk is _END_OF_AUDIO:
                return
            yield speech.StreamingRecognizeRequest(audio_content=chunk)

    async def results(self) -> AsyncIterator[SpeechEvent]:
        from google.api_core import exceptions as gcp_exceptions

        try:
            responses = await self._client.streaming_recognize(requests=self._requests())
            async for response in responses:
                for event in to_speech_events(response):
                    yield event
        except gcp_exceptions.GoogleAPICallError as exc:
            logger.warning(
                "google_stt_stream_error",
                extra={
                    "session_id": short_id(self._request.session_id),
                    "error_type": type(exc).__name__,
                },
            )
            yield SpeechEvent(is_final=True, error=map_google_error(exc))


class GoogleSpeechProvider:
    """SpeechProvider sobre google.cloud.speech.SpeechAsyncClient."""

    def __init__(self, client: Any | None = None) -> None:
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from google.cloud import speech

            self._client = speech.SpeechAsyncClient()
        return self._client

    async def open_stream(self, request: RecognizeRequest) -> GoogleSpeechStream:
        logger.debug(
            "google_stt_stream_opening",
            extra={
                "session_id": short_id(request.session_id),
                "language_code": request.language_code,
                "model": request.model,
            },
        )
        return GoogleSpeechStream(self._get_client(), request)
