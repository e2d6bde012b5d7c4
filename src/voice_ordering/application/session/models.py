"""Models de sessão: Session e StateContext.

Session é a cópia canônica em memória de uma conversa.
- Uma sessão = um session_id
- A sessão é dona exclusiva do carrinho e do histórico de turns
- Expiração é soft: o sweep remove sessões inativas
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from voice_ordering.domain.models import Cart, Intent, Preferences, Turn
from voice_ordering.domain.session import SessionState


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class StateContext(BaseModel):
    """Contexto carregado pelo estado corrente."""

    current_intent: Intent | None = None
    missing_slots: list[str] = Field(default_factory=list)
    retry_count: int = 0
    # Falhas tratadas pela recuperação desde a última escalada
    error_count: int = 0
    last_error_message: str | None = None
    last_user_input: str | None = None
    pending_actions: list[str] = Field(default_factory=list)


class Session(BaseModel):
    """Estado completo de uma sessão de pedido."""

    session_id: str
    user_id: str | None = None
    state: SessionState = SessionState.IDLE
    context: StateContext = Field(default_factory=StateContext)
    history: list[Turn] = Field(default_factory=list)
    cart: Cart = Field(default_factory=Cart)
    order: dict[str, Any] | None = None
    preferences: Preferences = Field(default_factory=Preferences)
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)
    expires_at: datetime = Field(default_factory=lambda: _utcnow() + timedelta(minutes=30))

    def touch(self, now: datetime, timeout: timedelta) -> None:
        """Atualiza last_activity e estende expires_at."""
        self.last_activity = now
        self.expires_at = now + timeout

    def prune_history(self, max_turns: int) -> int:
        """Mantém apenas os `max_turns` turns mais recentes.

        Retorna quantos turns foram removidos.
        """
        overflow = len(self.history) - max_turns
        if overflow <= 0:
            return 0
        del self.history[:overflow]
        return overflow
