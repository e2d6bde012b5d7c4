"""Implementação de SessionStore em memória (cópia canônica do processo)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from voice_ordering.infra.session_contract import SessionStore
from voice_ordering.observability.logging import get_logger, short_id

if TYPE_CHECKING:
    from voice_ordering.application.session import Session

logger: logging.Logger = get_logger(__name__)


class InMemorySessionStore(SessionStore):
    """Dicionário session_id -> Session; expiração apenas via purge_expired."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def save(self, session: Session) -> None:
        self._sessions[session.session_id] = session
        logger.debug("session_saved", extra={"session_id": short_id(session.session_id)})

    def load(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            return False
        logger.debug("session_deleted", extra={"session_id": short_id(session_id)})
        return True

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    def purge_expired(self, now: datetime) -> list[str]:
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.info("sessions_expired", extra={"count": len(expired)})
        return expired

    def __len__(self) -> int:
        return len(self._sessions)
