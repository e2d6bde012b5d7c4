"""Contrato de armazenamento de sessão (SessionStore).

Separado para manter SRP e permitir outras implementações além da memória.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

from voice_ordering.domain.protocols.session_store import SessionStoreProtocol

if TYPE_CHECKING:
    from voice_ordering.application.session import Session


class SessionStoreError(Exception):
    """Erro ao armazenar ou recuperar sessão."""


class SessionStore(SessionStoreProtocol):
    """Contrato abstrato para armazenamento de Session."""

    @abstractmethod
    def save(self, session: Session) -> None:
        """Armazena (ou substitui) a sessão."""
        ...

    @abstractmethod
    def load(self, session_id: str) -> Session | None:
        """Carrega sessão por ID. Não verifica expiração (feito pelo sweep)."""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove sessão; False se não existia."""
        ...

    @abstractmethod
    def exists(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def purge_expired(self, now: datetime) -> list[str]:
        """Remove sessões com expires_at <= now e retorna os ids removidos."""
        ...
