"""Fábrica da aplicação FastAPI."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from voice_ordering.ai.openai_client import create_intent_resolver
from voice_ordering.api.routes import router
from voice_ordering.api.transport import SessionTransportHandler
from voice_ordering.application.agent_router import AgentRouter
from voice_ordering.application.recovery import RecoveryEngine
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.domain.protocols.agents import BusinessAgents
from voice_ordering.domain.protocols.language_model import IntentResolver
from voice_ordering.domain.protocols.speech import SpeechProvider
from voice_ordering.infra.business_agents_http import HttpBusinessAgents
from voice_ordering.infra.business_agents_memory import InMemoryBusinessAgents
from voice_ordering.infra.http import create_http_client
from voice_ordering.infra.session_store_memory import InMemorySessionStore
from voice_ordering.observability.logging import configure_logging, get_logger
from voice_ordering.observability.middleware import CorrelationIdMiddleware
from voice_ordering.voice.stream_connector import SpeechStreamConnector

logger = get_logger(__name__)


def _create_speech_provider(settings: Settings) -> SpeechProvider:
    """Seleciona o provedor de STT (google | disabled)."""
    if settings.stt_backend.lower() == "disabled":
        from voice_ordering.adapters.speech.disabled import DisabledSpeechProvider

        return DisabledSpeechProvider()

    from voice_ordering.adapters.speech.google_stt import GoogleSpeechProvider

    return GoogleSpeechProvider()


def _create_business_agents(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> BusinessAgents:
    """Cria os agentes de negócio conforme backend."""
    if settings.business_agents_backend.lower() == "http":
        return HttpBusinessAgents(create_http_client(settings, transport=transport))
    return InMemoryBusinessAgents()


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Sobe sweep de sessões e heartbeat; derruba streams no shutdown."""
    settings: Settings = app.state.settings
    tasks = [
        asyncio.create_task(
            app.state.state_machine.run_sweeper(settings.session_sweep_interval_seconds)
        ),
        asyncio.create_task(app.state.transport.run_heartbeat(settings.heartbeat_interval_seconds)),
    ]
    logger.info("background_tasks_started", extra={"count": len(tasks)})
    try:
        yield
    finally:
        for task in tasks:
            await _cancel(task)
        await app.state.transport.shutdown()
        await app.state.stream_connector.shutdown()
        close = getattr(app.state.business_agents, "close", None)
        if close is not None:
            await close()
        logger.info("background_tasks_stopped")


def create_app(
    settings: Settings | None = None,
    *,
    speech_provider: SpeechProvider | None = None,
    agents: BusinessAgents | None = None,
    intent_resolver: IntentResolver | None = None,
) -> FastAPI:
    """Cria a aplicação FastAPI."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.service_name, settings.log_format)

    validation_errors = settings.validation_errors()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=lifespan)
    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(router)

    state_machine = SessionStateMachine(InMemorySessionStore(), settings)
    recovery = RecoveryEngine(state_machine, settings=settings)
    connector = SpeechStreamConnector(
        speech_provider or _create_speech_provider(settings),
        recovery,
        state_machine,
        settings,
    )
    business_agents = agents or _create_business_agents(settings)
    agent_router = AgentRouter(
        state_machine,
        recovery,
        business_agents,
        intent_resolver or create_intent_resolver(settings),
        settings,
    )

    app.state.settings = settings
    app.state.state_machine = state_machine
    app.state.recovery = recovery
    app.state.stream_connector = connector
    app.state.business_agents = business_agents
    app.state.agent_router = agent_router
    app.state.transport = SessionTransportHandler(connector, agent_router, state_machine, settings)
    # loader(True/False) chega ao websocket enquanto o agente responde
    agent_router.set_event_sink(app.state.transport.push_events)
    return app
