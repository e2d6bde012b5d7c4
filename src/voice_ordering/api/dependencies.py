"""Dependências injetadas nas rotas."""

from __future__ import annotations

from fastapi import Request

from voice_ordering.api.transport import SessionTransportHandler
from voice_ordering.application.agent_router import AgentRouter
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings
from voice_ordering.voice.stream_connector import SpeechStreamConnector


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_state_machine(request: Request) -> SessionStateMachine:
    """Retorna a máquina de estados das sessões."""

    return request.app.state.state_machine


def get_agent_router(request: Request) -> AgentRouter:
    return request.app.state.agent_router


def get_stream_connector(request: Request) -> SpeechStreamConnector:
    return request.app.state.stream_connector


def get_transport(request: Request) -> SessionTransportHandler:
    """Retorna o handler de websockets (para push de eventos de UI)."""
    return request.app.state.transport
