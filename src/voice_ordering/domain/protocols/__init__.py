"""Re-exports dos Protocolos de domínio para uso por Application."""

from __future__ import annotations

from voice_ordering.domain.protocols.agents import AgentResult, BusinessAgents
from voice_ordering.domain.protocols.language_model import IntentResolver
from voice_ordering.domain.protocols.session_store import SessionStoreProtocol
from voice_ordering.domain.protocols.slot_extractor import SlotExtractor
from voice_ordering.domain.protocols.speech import (
    RecognizeRequest,
    SpeechEvent,
    SpeechProvider,
    SpeechStream,
)

__all__ = [
    "AgentResult",
    "BusinessAgents",
    "IntentResolver",
    "RecognizeRequest",
    "SessionStoreProtocol",
    "SlotExtractor",
    "SpeechEvent",
    "SpeechProvider",
    "SpeechStream",
]
