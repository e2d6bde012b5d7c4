"""Filtro de qualidade e VAD.

Sem dependências de outros componentes:
- analyze_frame: energia (RMS) e taxa de cruzamento por zero de um frame PCM16
- transcript_quality_score: pontuação determinística de um candidato de transcrição
- should_forward: regra de entrega (finais sempre passam)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from voice_ordering.voice.models import TranscriptionResult

DEFAULT_MIN_QUALITY = 0.3
DEFAULT_SILENCE_THRESHOLD = 0.01
MIN_ZERO_CROSSING_RATE = 0.01
SHORT_TRANSCRIPT_CHARS = 3
TERMINAL_PUNCTUATION = (".", "?", "!", "。", "？", "！")


@dataclass(frozen=True, slots=True)
class FrameAnalysis:
    energy: float
    zero_crossing_rate: float
    has_voice: bool
    confidence: float


def analyze_frame(
    frame: bytes, silence_threshold: float = DEFAULT_SILENCE_THRESHOLD
) -> FrameAnalysis:
    """Analisa um frame PCM 16-bit little-endian mono."""
    usable = len(frame) - (len(frame) % 2)
    if usable == 0:
        return FrameAnalysis(0.0, 0.0, False, 0.0)

    samples = np.frombuffer(frame[:usable], dtype="<i2").astype(np.float64) / 32768.0
    energy = float(np.sqrt(np.mean(samples * samples)))

    signs = samples >= 0
    crossings = int(np.count_nonzero(signs[1:] != signs[:-1]))
    zcr = crossings / samples.size

    has_voice = energy > silence_threshold and zcr > MIN_ZERO_CROSSING_RATE
    energy_conf = min(energy / (silence_threshold * 10), 1.0) if silence_threshold > 0 else 1.0
    zcr_conf = min(zcr / 0.1, 1.0)
    return FrameAnalysis(
        energy=energy,
        zero_crossing_rate=zcr,
        has_voice=has_voice,
        confidence=(energy_conf + zcr_conf) / 2,
    )


def transcript_quality_score(
    text: str,
    confidence: float,
    word_confidences: Sequence[float] = (),
) -> float:
    """score = 0.6*confiança + 0.3*média(confiança por palavra).

    Metade se o texto tiver menos de 3 caracteres, +0.1 se terminar em
    pontuação final; limitado a 1.0. Função pura.
    """
    mean_word = sum(word_confidences) / len(word_confidences) if word_confidences else 0.0
    score = 0.6 * confidence + 0.3 * mean_word

    stripped = text.strip()
    if len(stripped) < SHORT_TRANSCRIPT_CHARS:
        score *= 0.5
    if stripped.endswith(TERMINAL_PUNCTUATION):
        score += 0.1
    return min(score, 1.0)


def should_forward(
    result: TranscriptionResult, min_quality: float = DEFAULT_MIN_QUALITY
) -> bool:
    """Finais sempre passam; parciais só acima de `min_quality`."""
    if result.is_final:
        return True
    return transcript_quality_score(
        result.text, result.confidence, result.word_confidences
    ) > min_quality
