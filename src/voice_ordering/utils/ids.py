"""Geradores de identificadores."""

from __future__ import annotations

import uuid


def new_session_id() -> str:
    """Gera um session_id único."""

    return str(uuid.uuid4())


def new_turn_id() -> str:
    """Gera id de turn (curto, ordenável apenas por timestamp do turn)."""

    return f"turn_{uuid.uuid4().hex[:12]}"


def new_error_code(source: str, timestamp_ms: int) -> str:
    """Código de erro no formato {SOURCE}_{timestamp_ms}."""

    return f"{source.upper()}_{timestamp_ms}"
