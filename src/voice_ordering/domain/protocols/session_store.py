"""Protocolo de domínio para armazenamento de sessões."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voice_ordering.application.session import Session


class SessionStoreProtocol(ABC):
    """Contrato mínimo para o armazenamento canônico (em memória) de Session."""

    @abstractmethod
    def save(self, session: Session) -> None: ...

    @abstractmethod
    def load(self, session_id: str) -> Session | None: ...

    @abstractmethod
    def delete(self, session_id: str) -> bool: ...

    @abstractmethod
    def exists(self, session_id: str) -> bool: ...

    @abstractmethod
    def purge_expired(self, now: datetime) -> list[str]: ...
