"""SessionStateMachine: dono do estado canônico de cada sessão.

Responsabilidades:
- get_or_create / transition / append_turn / mutate_cart
- Rejeitar transições fora da tabela (IllegalTransition), sem alterar estado
- Atualizar last_activity e estender expires_at em toda mutação
- Sweep periódico de sessões expiradas
- Lock por sessão para serializar turns (sem lock global)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from voice_ordering.application.session import Session, StateContext
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.domain.errors import IllegalTransition
from voice_ordering.domain.models import Cart, Preferences, Turn
from voice_ordering.domain.session import (
    SessionState,
    is_transition_allowed,
    validate_transition,
)
from voice_ordering.infra.session_contract import SessionStore
from voice_ordering.observability.logging import get_logger, short_id

RECENT_TURNS_IN_CONTEXT = 5


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class SessionStateMachine:
    """Máquina de estados da sessão sobre um SessionStore injetado."""

    def __init__(
        self,
        session_store: SessionStore,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = session_store
        self._settings = settings or get_settings()
        self._logger = logger or get_logger(__name__)
        self._clock = clock or _utcnow
        self._timeout = timedelta(minutes=self._settings.session_timeout_minutes)
        self._max_history = self._settings.session_history_max_turns
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def get_or_create(self, session_id: str, user_id: str | None = None) -> Session:
        """Retorna a sessão existente ou cria uma nova em `idle`."""
        session = self._store.load(session_id)
        if session is not None:
            if user_id and not session.user_id:
                session.user_id = user_id
            return session

        now = self._clock()
        session = Session(
            session_id=session_id,
            user_id=user_id,
            preferences=Preferences(language=self._settings.default_language_code),
            created_at=now,
            last_activity=now,
            expires_at=now + self._timeout,
        )
        self._store.save(session)
        self._logger.info("session_created", extra={"session_id": short_id(session_id)})
        return session

    def get(self, session_id: str) -> Session | None:
        return self._store.load(session_id)

    def sweep_expired(self) -> int:
        """Remove sessões cuja inatividade passou do timeout configurado."""
        expired = self._store.purge_expired(self._clock())
        for session_id in expired:
            lock = self._locks.get(session_id)
            if lock is not None and not lock.locked():
                del self._locks[session_id]
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Loop periódico de expiração (cancelado no shutdown)."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_expired()
            except Exception as exc:  # pragma: no cover - nunca derrubar o loop
                self._logger.error("session_sweep_failed", extra={"error_type": type(exc).__name__})

    def session_lock(self, session_id: str) -> asyncio.Lock:
        """Lock exclusivo da sessão; turns da mesma sessão são serializados."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Transições
    # ------------------------------------------------------------------

    def can_transition(self, session_id: str, target: SessionState) -> bool:
        return is_transition_allowed(self.get_or_create(session_id).state, target)

    def transition(
        self,
        session_id: str,
        target_state: SessionState,
        context_patch: dict[str, Any] | None = None,
    ) -> None:
        """Move a sessão para `target_state`.

        Raises:
            IllegalTransition: destino fora da tabela; estado e contexto intactos.
        """
        session = self.get_or_create(session_id)
        current = session.state
        allowed, reason = validate_transition(current, target_state)
        if not allowed:
            self._logger.warning(
                "illegal_transition_rejected",
                extra={
                    "session_id": short_id(session_id),
                    "from_state": current.value,
                    "to_state": str(target_state),
                    "reason": reason,
                },
            )
            raise IllegalTransition(current.value, str(target_state))

        new_context = self._patched_context(session.context, context_patch)
        session.state = target_state
        session.context = new_context
        self._commit(session)
        self._logger.info(
            "state_transition",
            extra={
                "session_id": short_id(session_id),
                "from_state": current.value,
                "to_state": target_state.value,
            },
        )

    def update_context(self, session_id: str, patch: dict[str, Any]) -> None:
        """Atualiza o contexto sem mudar de estado."""
        session = self.get_or_create(session_id)
        session.context = self._patched_context(session.context, patch)
        self._commit(session)

    # ------------------------------------------------------------------
    # Histórico, carrinho, pedido, preferências
    # ------------------------------------------------------------------

    def append_turn(self, session_id: str, turn: Turn) -> None:
        session = self.get_or_create(session_id)
        session.history.append(turn)
        pruned = session.prune_history(self._max_history)
        if pruned:
            self._logger.debug(
                "session_history_pruned",
                extra={"session_id": short_id(session_id), "pruned": pruned},
            )
        self._commit(session)

    def mutate_cart(self, session_id: str, patch: dict[str, Any]) -> Cart:
        """Aplica `patch` (campos de Cart) e recalcula os totais."""
        session = self.get_or_create(session_id)
        data = session.cart.model_dump()
        data.update(patch)
        cart = Cart.model_validate(data)
        cart.recalculate()
        session.cart = cart
        self._commit(session)
        return cart

    def set_order(self, session_id: str, order: dict[str, Any] | None) -> None:
        session = self.get_or_create(session_id)
        session.order = order
        self._commit(session)

    def update_preferences(self, session_id: str, patch: dict[str, Any]) -> Preferences:
        session = self.get_or_create(session_id)
        session.preferences = session.preferences.model_copy(update=patch)
        self._commit(session)
        return session.preferences

    def get_conversation_context(self, session_id: str) -> str:
        """Resumo textual da sessão para o modelo de linguagem."""
        session = self.get(session_id)
        if session is None:
            return "New conversation session started."

        lines = [
            f"Session State: {session.state.value}",
            f"Cart Items: {len(session.cart.items)}",
            f"Cart Total: {session.cart.total:g} {session.cart.currency}",
            f"Language: {session.preferences.language}",
        ]
        ctx = session.context
        if ctx.current_intent is not None:
            lines.append(f"Current Intent: {ctx.current_intent.key}")
        if ctx.missing_slots:
            lines.append(f"Missing Slots: {', '.join(ctx.missing_slots)}")
        if session.order:
            lines.append(
                f"Current Order: {session.order.get('id')} ({session.order.get('status')})"
            )

        recent = [t for t in session.history[-RECENT_TURNS_IN_CONTEXT:] if t.text_content]
        if recent:
            lines.append("Recent conversation:")
            lines.extend(f"{turn.role.value}: {turn.text_content}" for turn in recent)
        return "\n".join(lines)

    # ------------------------------------------------------------------

    @staticmethod
    def _patched_context(context: StateContext, patch: dict[str, Any] | None) -> StateContext:
        if not patch:
            return context
        unknown = set(patch) - set(StateContext.model_fields)
        if unknown:
            raise ValueError(f"Campos de contexto desconhecidos: {sorted(unknown)}")
        return context.model_copy(update=patch)

    def _commit(self, session: Session) -> None:
        session.touch(self._clock(), self._timeout)
        self._store.save(session)
