"""Rotas HTTP e websocket do motor de pedidos."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from voice_ordering.api.dependencies import (
    get_agent_router,
    get_settings,
    get_state_machine,
    get_stream_connector,
    get_transport,
)
from voice_ordering.api.transport import SessionTransportHandler
from voice_ordering.application.agent_router import INVALID_PAYMENT_EVENT, AgentRouter
from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings
from voice_ordering.domain.enums import InputType, PaymentStatus
from voice_ordering.domain.models import UserInput
from voice_ordering.observability.logging import get_logger, short_id
from voice_ordering.observability.middleware import bind_session, get_correlation_id
from voice_ordering.utils.ids import new_session_id
from voice_ordering.voice.stream_connector import SpeechStreamConnector

logger = get_logger(__name__)

router = APIRouter()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrchestratorInput(_CamelModel):
    type: InputType = InputType.TEXT
    content: str = Field(min_length=1)


class OrchestratorRequest(_CamelModel):
    session_id: str | None = None
    input: OrchestratorInput


class PaymentEventRequest(_CamelModel):
    status: PaymentStatus
    reason: str | None = None


@router.get("/health")
def health(
    settings: Settings = Depends(get_settings),
    connector: SpeechStreamConnector = Depends(get_stream_connector),
) -> dict[str, Any]:
    """Healthcheck simples."""
    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.version,
        "active_streams": connector.active_count,
    }


@router.post("/api/orchestrator")
async def orchestrate(
    payload: OrchestratorRequest,
    agent_router: AgentRouter = Depends(get_agent_router),
    transport: SessionTransportHandler = Depends(get_transport),
) -> dict[str, Any]:
    """Processa um turn (texto ou voz já transcrita) e empurra os eventos de UI."""
    session_id = payload.session_id or new_session_id()
    bind_session(session_id, get_correlation_id() or None)

    result = await agent_router.handle(
        session_id,
        UserInput(type=payload.input.type, content=payload.input.content),
    )
    pushed = transport.push_events(session_id, result.ui_events)
    logger.info(
        "orchestrator_turn_completed",
        extra={
            "session_id": short_id(session_id),
            "success": result.success,
            "ui_events_pushed": pushed,
        },
    )
    return {
        "success": result.success,
        "sessionId": session_id,
        "response": result.response,
        "nextState": result.next_state.value if result.next_state else None,
        "uiEvents": [event.model_dump(mode="json") for event in result.ui_events],
    }


@router.post("/api/payments/{session_id}")
async def payment_event(
    session_id: str,
    payload: PaymentEventRequest,
    agent_router: AgentRouter = Depends(get_agent_router),
    state_machine: SessionStateMachine = Depends(get_state_machine),
    transport: SessionTransportHandler = Depends(get_transport),
) -> dict[str, Any]:
    """Evento do provedor de pagamento (pending, completed, failed, ...)."""
    if state_machine.get(session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session_not_found")
    bind_session(session_id, get_correlation_id() or None)

    result = await agent_router.handle_payment_event(session_id, payload.status, payload.reason)
    error = result.response.get("error") or {}
    if error.get("code") == INVALID_PAYMENT_EVENT:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error)

    pushed = transport.push_events(session_id, result.ui_events)
    logger.info(
        "payment_event_completed",
        extra={
            "session_id": short_id(session_id),
            "payment_status": payload.status.value,
            "success": result.success,
            "ui_events_pushed": pushed,
        },
    )
    return {
        "success": result.success,
        "sessionId": session_id,
        "response": result.response,
        "nextState": result.next_state.value if result.next_state else None,
        "uiEvents": [event.model_dump(mode="json") for event in result.ui_events],
    }


@router.get("/api/sessions/{session_id}")
def session_snapshot(
    session_id: str,
    state_machine: SessionStateMachine = Depends(get_state_machine),
) -> dict[str, Any]:
    """Snapshot do estado da sessão (sem histórico completo)."""
    session = state_machine.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session_not_found")

    return {
        "sessionId": session.session_id,
        "state": session.state.value,
        "context": session.context.model_dump(mode="json"),
        "cart": session.cart.model_dump(mode="json"),
        "order": session.order,
        "preferences": session.preferences.model_dump(mode="json"),
        "historyLength": len(session.history),
        "lastActivity": session.last_activity.isoformat(),
        "expiresAt": session.expires_at.isoformat(),
    }


@router.websocket("/api/voice/stream")
async def voice_stream(websocket: WebSocket) -> None:
    """Streaming de voz; `sessionId` obrigatório na query string."""
    transport: SessionTransportHandler = websocket.app.state.transport
    await transport.serve(websocket)
