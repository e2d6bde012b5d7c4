"""Testes do VAD e do filtro de qualidade de transcrição."""

from __future__ import annotations

import numpy as np
import pytest

from voice_ordering.voice.models import TranscriptionResult
from voice_ordering.voice.quality import analyze_frame, should_forward, transcript_quality_score


def _tone(freq: float = 440.0, amplitude: float = 0.5, samples: int = 1600) -> bytes:
    t = np.arange(samples) / 16000
    wave = np.sin(2 * np.pi * freq * t) * amplitude * 32767
    return wave.astype("<i2").tobytes()


class TestAnalyzeFrame:
    """Energia e cruzamento por zero de frames PCM16."""

    def test_silence_has_no_voice(self) -> None:
        analysis = analyze_frame(bytes(3200))
        assert analysis.energy == 0.0
        assert not analysis.has_voice

    def test_tone_has_voice(self) -> None:
        analysis = analyze_frame(_tone())
        assert analysis.energy == pytest.approx(0.5 / np.sqrt(2), rel=0.05)
        assert analysis.zero_crossing_rate > 0.01
        assert analysis.has_voice
        assert 0.5 < analysis.confidence <= 1.0

    def test_quiet_tone_below_threshold(self) -> None:
        analysis = analyze_frame(_tone(amplitude=0.005))
        assert not analysis.has_voice

    def test_empty_or_single_byte_frame(self) -> None:
        assert analyze_frame(b"").energy == 0.0
        assert not analyze_frame(b"\x01").has_voice


class TestTranscriptQuality:
    """Pontuação determinística dos candidatos."""

    def test_weighted_score_with_punctuation_bonus(self) -> None:
        score = transcript_quality_score("안녕하세요.", 0.9, [0.8, 0.8])
        assert score == pytest.approx(0.54 + 0.24 + 0.1)

    def test_short_text_halved(self) -> None:
        assert transcript_quality_score("네", 0.8) == pytest.approx(0.24)

    def test_maximum_score(self) -> None:
        score = transcript_quality_score("좋아요!", 1.0, [1.0])
        assert score == pytest.approx(1.0)
        assert score <= 1.0

    def test_finals_always_forwarded(self) -> None:
        result = TranscriptionResult(session_id="s", text="", confidence=0.0, is_final=True)
        assert should_forward(result)

    def test_low_quality_partial_filtered(self) -> None:
        weak = TranscriptionResult(session_id="s", text="음", confidence=0.2)
        strong = TranscriptionResult(
            session_id="s", text="아메리카노", confidence=0.9, word_confidences=[0.9]
        )
        assert not should_forward(weak)
        assert should_forward(strong)
