"""Middlewares e contexto de observabilidade."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
_session_id: ContextVar[str] = ContextVar("session_id", default="")


def get_correlation_id() -> str:
    """Retorna o correlation_id corrente (ou vazio)."""

    return _correlation_id.get()


def get_session_id() -> str:
    """Retorna o session_id ligado à task corrente (ou vazio)."""

    return _session_id.get()


def bind_session(session_id: str, correlation_id: str | None = None) -> None:
    """Liga session_id/correlation_id à task asyncio corrente.

    Usado por tasks de websocket, que não passam pelo middleware HTTP.
    Cada task copia o contexto na criação, então o bind fica isolado.
    """
    _session_id.set(session_id)
    _correlation_id.set(correlation_id or str(uuid.uuid4()))


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Gera ou propaga correlation_id em cada request."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        incoming = request.headers.get("x-correlation-id")
        correlation_id = incoming or str(uuid.uuid4())
        token = _correlation_id.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            _correlation_id.reset(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
