from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from tests.helpers.fakes import FakeSpeechProvider
from voice_ordering.api.app import create_app
from voice_ordering.application.agent_router import AgentRouter
from voice_ordering.application.intent_classifier import KeywordIntentClassifier
from voice_ordering.application.recovery import RecoveryEngine
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.infra.business_agents_memory import InMemoryBusinessAgents
from voice_ordering.infra.session_store_memory import InMemorySessionStore
from voice_ordering.voice.stream_connector import SpeechStreamConnector


@pytest.fixture()
def settings() -> Settings:
    """Settings de teste: sem atrasos de retry e logs em texto."""
    return Settings(
        environment="test",
        log_format="text",
        recovery_delay_schedule=[0.0, 0.0, 0.0],
        heartbeat_interval_seconds=3600.0,
        session_sweep_interval_seconds=3600.0,
    )


@pytest.fixture()
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def state_machine(store: InMemorySessionStore, settings: Settings) -> SessionStateMachine:
    return SessionStateMachine(store, settings, logger=logging.getLogger("test.sm"))


@pytest.fixture()
def recovery(state_machine: SessionStateMachine, settings: Settings) -> RecoveryEngine:
    return RecoveryEngine(state_machine, settings=settings)


@pytest.fixture()
def speech_provider() -> FakeSpeechProvider:
    return FakeSpeechProvider()


@pytest.fixture()
def connector(
    speech_provider: FakeSpeechProvider,
    recovery: RecoveryEngine,
    state_machine: SessionStateMachine,
    settings: Settings,
) -> SpeechStreamConnector:
    return SpeechStreamConnector(speech_provider, recovery, state_machine, settings)


@pytest.fixture()
def agents() -> InMemoryBusinessAgents:
    return InMemoryBusinessAgents()


@pytest.fixture()
def agent_router(
    state_machine: SessionStateMachine,
    recovery: RecoveryEngine,
    agents: InMemoryBusinessAgents,
    settings: Settings,
) -> AgentRouter:
    return AgentRouter(state_machine, recovery, agents, KeywordIntentClassifier(), settings)


@pytest.fixture()
def client(settings: Settings, speech_provider: FakeSpeechProvider):
    get_settings.cache_clear()
    app = create_app(settings, speech_provider=speech_provider)
    with TestClient(app) as test_client:
        yield test_client
