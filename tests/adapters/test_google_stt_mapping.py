"""Testes do adapter Google STT (sem rede)."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.cloud import speech

from voice_ordering.adapters.speech.disabled import DisabledSpeechProvider
from voice_ordering.adapters.speech.google_stt import (
    GoogleSpeechProvider,
    GoogleSpeechStream,
    build_streaming_config,
    map_google_error,
    to_speech_events,
)
from voice_ordering.domain.errors import (
    ErrorKind,
    ExternalApiError,
    InvalidAudioConfig,
    LanguageDetectionError,
    NetworkUnavailable,
    PermissionDenied,
    StreamTimeout,
)
from voice_ordering.domain.protocols.speech import RecognizeRequest


def _alternative(text: str, confidence: float, words: tuple[float, ...] = ()) -> SimpleNamespace:
    return SimpleNamespace(
        transcript=text,
        confidence=confidence,
        words=[SimpleNamespace(confidence=c) for c in words],
    )


def _response(*results: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(results=list(results))


class _FakeSpeechClient:
    def __init__(self, responses: list[SimpleNamespace], error: Exception | None = None) -> None:
        self._responses = responses
        self._error = error

    async def streaming_recognize(self, requests):
        if self._error is not None:
            raise self._error

        async def iterate():
            for response in self._responses:
                yield response

        return iterate()


class TestErrorMapping:
    """google.api_core -> erros tipados."""

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (gcp_exceptions.PermissionDenied("no"), PermissionDenied),
            (gcp_exceptions.Unauthenticated("no"), PermissionDenied),
            (gcp_exceptions.InvalidArgument("bad rate"), InvalidAudioConfig),
            (
                gcp_exceptions.InvalidArgument("Invalid recognition config: bad language code."),
                LanguageDetectionError,
            ),
            (gcp_exceptions.DeadlineExceeded("slow"), StreamTimeout),
            (gcp_exceptions.ServiceUnavailable("down"), NetworkUnavailable),
            (gcp_exceptions.InternalServerError("boom"), ExternalApiError),
        ],
    )
    def test_mapping(self, exc: Exception, expected: type) -> None:
        assert isinstance(map_google_error(exc), expected)

    def test_resource_exhausted_is_quota(self) -> None:
        error = map_google_error(gcp_exceptions.ResourceExhausted("quota"))
        assert error.kind == ErrorKind.QUOTA

    def test_unsupported_language_triggers_language_fallback(self) -> None:
        error = map_google_error(
            gcp_exceptions.InvalidArgument("Invalid recognition 'config': bad language code.")
        )
        assert error.kind == ErrorKind.LANGUAGE_DETECTION


class TestStreamingConfig:
    """RecognizeRequest -> StreamingRecognitionConfig."""

    def test_fields(self) -> None:
        request = RecognizeRequest(
            session_id="s1",
            language_code="ko-KR",
            alternative_language_codes=["en-US"],
        )
        streaming = build_streaming_config(request)
        config = streaming.config
        assert streaming.interim_results
        assert config.encoding == speech.RecognitionConfig.AudioEncoding.LINEAR16
        assert config.sample_rate_hertz == 16000
        assert config.audio_channel_count == 1
        assert config.language_code == "ko-KR"
        assert list(config.alternative_language_codes) == ["en-US"]
        assert config.enable_word_confidence
        assert config.model == "latest_long"


class TestResponseMapping:
    """StreamingRecognizeResponse -> SpeechEvent."""

    def test_best_alternative_and_words(self) -> None:
        result = SimpleNamespace(
            alternatives=[
                _alternative("아메리카노 두 잔", 0.91, (0.9, 0.8)),
                _alternative("아메리카노 두 장", 0.4),
            ],
            is_final=True,
            language_code="ko-kr",
        )
        events = to_speech_events(_response(result))
        assert len(events) == 1
        event = events[0]
        assert event.text == "아메리카노 두 잔"
        assert event.confidence == pytest.approx(0.91)
        assert event.is_final
        assert event.alternatives == ["아메리카노 두 장"]
        assert event.word_confidences == [0.9, 0.8]
        assert event.language_code == "ko-kr"

    def test_results_without_alternatives_skipped(self) -> None:
        empty = SimpleNamespace(alternatives=[], is_final=False, language_code="")
        assert to_speech_events(_response(empty)) == []


class TestGoogleSpeechStream:
    """Stream com cliente falso."""

    @pytest.mark.asyncio
    async def test_requests_start_with_config(self) -> None:
        stream = GoogleSpeechStream(_FakeSpeechClient([]), RecognizeRequest("s1", "ko-KR"))
        await stream.write(b"\x00\x01")
        await stream.close()
        await stream.write(b"ignored")

        requests = [request async for request in stream._requests()]
        assert len(requests) == 2
        assert requests[0].streaming_config.config.language_code == "ko-KR"
        assert requests[1].audio_content == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_results_are_mapped(self) -> None:
        result = SimpleNamespace(
            alternatives=[_alternative("라떼", 0.8)], is_final=False, language_code=""
        )
        client = _FakeSpeechClient([_response(result)])
        provider = GoogleSpeechProvider(client=client)
        stream = await provider.open_stream(RecognizeRequest("s1", "ko-KR"))

        events = [event async for event in stream.results()]
        assert [event.text for event in events] == ["라떼"]
        assert events[0].language_code is None

    @pytest.mark.asyncio
    async def test_api_error_becomes_error_event(self) -> None:
        client = _FakeSpeechClient([], error=gcp_exceptions.ServiceUnavailable("down"))
        stream = GoogleSpeechStream(client, RecognizeRequest("s1", "ko-KR"))

        events = [event async for event in stream.results()]
        assert len(events) == 1
        assert events[0].is_final
        assert isinstance(events[0].error, NetworkUnavailable)


class TestDisabledProvider:
    """STT_BACKEND=disabled."""

    @pytest.mark.asyncio
    async def test_open_stream_fails(self) -> None:
        with pytest.raises(ExternalApiError):
            await DisabledSpeechProvider().open_stream(RecognizeRequest("s1", "ko-KR"))
