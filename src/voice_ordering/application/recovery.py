"""Motor de classificação de erros e recuperação.

Para cada falha (voz, LLM, negócio, pagamento, sistema):
1. Classifica o erro em um ErrorKind fechado
2. Escolhe a estratégia: retry, fallback, restart ou escalate
3. Aplica a mudança de estado via SessionStateMachine.transition
4. Devolve mensagem ao usuário + ações de recuperação

Ordem de decisão:
- error_count (erros acumulados na sessão) >= escalation_threshold -> escalate
- pagamento com erro de permissão -> escalate
- retry_count >= max_retries -> fallback
- voice: retry enquanto retry_count < 2, depois fallback
- llm: rate_limit/quota -> fallback, demais -> retry
- business -> fallback
- payment -> retry
- system / não classificado -> restart
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from voice_ordering.application.state_machine import SessionStateMachine
from voice_ordering.config.settings import Settings, get_settings
from voice_ordering.domain.errors import ErrorKind, ErrorSource, classify_error
from voice_ordering.domain.session import (
    ALLOWED_TRANSITIONS,
    SessionState,
    find_route,
    is_transition_allowed,
)
from voice_ordering.infra.retry import BackoffPolicy
from voice_ordering.observability.logging import get_logger, log_fallback, short_id
from voice_ordering.utils.ids import new_error_code

VOICE_RETRY_LIMIT = 2

ESCALATE_MESSAGE = "시스템에 문제가 발생했습니다. 고객 지원팀에 문의해 주세요."
RESTART_MESSAGE = "대화를 처음부터 다시 시작합니다. 무엇을 도와드릴까요?"
PAYMENT_RETRY_MESSAGE = "결제 처리 중 오류가 발생했습니다. 다른 결제 방법을 시도하거나 다시 시도해 주세요."


class RecoveryActionType(StrEnum):
    RETRY = "retry"
    FALLBACK = "fallback"
    RESTART = "restart"
    ESCALATE = "escalate"


@dataclass(slots=True)
class RecoveryAction:
    type: RecoveryActionType
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(slots=True)
class ErrorContext:
    """Falha a ser tratada para uma sessão."""

    session_id: str
    source: ErrorSource
    error: BaseException
    retry_count: int = 0


@dataclass(slots=True)
class RecoveryResult:
    success: bool
    user_message: str
    actions: list[RecoveryAction] = field(default_factory=list)
    new_state: SessionState | None = None
    previous_state: SessionState | None = None
    kind: ErrorKind = ErrorKind.UNCLASSIFIED
    error_code: str = ""

    @property
    def strategy(self) -> RecoveryActionType | None:
        return self.actions[0].type if self.actions else None

    def action(self, action_type: RecoveryActionType) -> RecoveryAction | None:
        for candidate in self.actions:
            if candidate.type == action_type:
                return candidate
        return None

    @property
    def state_changed(self) -> bool:
        return self.new_state is not None and self.new_state != self.previous_state


@dataclass(frozen=True, slots=True)
class _Fallback:
    state: SessionState
    message: str
    description: str
    mode: str


# Mensagens de retry por kind (o sufixo de tentativa é acrescentado)
_RETRY_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "네트워크 연결에 문제가 있습니다. 연결을 확인하고 다시 시도해 주세요.",
    ErrorKind.AUDIO_QUALITY: "오디오 처리 중 오류가 발생했습니다. 마이크를 확인하고 다시 시도해 주세요.",
    ErrorKind.CONTEXT_LENGTH: "대화 내용이 너무 길어 일부 기록을 정리했습니다. 계속 진행해 주세요.",
    ErrorKind.FUNCTION_CALL: "요청을 처리하는 중 오류가 발생했습니다. 다시 말씀해 주세요.",
}

_VOICE_FALLBACK = _Fallback(
    SessionState.IDLE,
    "음성 인식이 어려워 텍스트 입력으로 전환합니다. 메시지를 입력해 주세요.",
    "텍스트 입력 모드로 전환",
    "text_input",
)
_PERMISSION_FALLBACK = _Fallback(
    SessionState.IDLE,
    "마이크 권한이 필요합니다. 브라우저 설정에서 마이크 권한을 허용해 주세요.",
    "텍스트 입력으로 전환",
    "text_input",
)
_LLM_FALLBACK = _Fallback(
    SessionState.IDLE,
    "자동 처리가 어려워 간단한 메뉴로 안내합니다.",
    "메뉴 기반 인터페이스로 전환",
    "simple_menu",
)
_RATE_LIMIT_FALLBACK = _Fallback(
    SessionState.IDLE,
    "요청이 많아 잠시 대기가 필요합니다. 잠시 후 다시 시도해 주세요.",
    "메뉴 기반 인터페이스로 전환",
    "simple_menu",
)
_BUSINESS_FALLBACKS: dict[ErrorKind, _Fallback] = {
    ErrorKind.NOT_FOUND: _Fallback(
        SessionState.INTENT_DETECTED,
        "찾으시는 상품이 없습니다. 다른 상품명으로 검색해 보시거나 전체 메뉴를 확인해 주세요.",
        "전체 메뉴 보기",
        "show_menu",
    ),
    ErrorKind.INVALID_COUPON: _Fallback(
        SessionState.CART_REVIEW,
        "유효하지 않은 쿠폰입니다. 쿠폰 코드를 확인하시거나 사용 가능한 쿠폰을 확인해 주세요.",
        "사용 가능한 쿠폰 보기",
        "show_coupons",
    ),
    ErrorKind.INVENTORY: _Fallback(
        SessionState.CART_REVIEW,
        "선택하신 상품의 재고가 부족합니다. 수량을 조정하시거나 다른 상품을 선택해 주세요.",
        "수량 조정",
        "adjust_quantity",
    ),
}
_BUSINESS_FALLBACK = _Fallback(
    SessionState.INTENT_DETECTED,
    "요청하신 작업을 완료할 수 없습니다. 다른 옵션을 선택해 주세요.",
    "대안 옵션 제공",
    "show_alternatives",
)
_DEFAULT_FALLBACK = _Fallback(
    SessionState.IDLE,
    "다른 방법으로 도움을 드리겠습니다.",
    "단순 메뉴로 전환",
    "simple_menu",
)


def _utc_ms() -> int:
    return int(time.time() * 1000)


class RecoveryEngine:
    """Decide e aplica a recuperação de uma falha.

    Nunca altera o estado da sessão diretamente: toda mudança passa por
    `SessionStateMachine.transition` (ou `update_context` quando o estado
    não muda). O chamador deve segurar o lock da sessão.
    """

    def __init__(
        self,
        state_machine: SessionStateMachine,
        policy: BackoffPolicy | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sm = state_machine
        self._settings = settings or get_settings()
        self._policy = policy or BackoffPolicy.from_settings(self._settings)
        self._escalation_threshold = self._settings.escalation_threshold
        self._logger = logger or get_logger(__name__)

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def select_strategy(
        self,
        source: ErrorSource,
        kind: ErrorKind,
        retry_count: int,
        error_count: int = 0,
    ) -> RecoveryActionType:
        """Estratégia pura a partir de (source, kind, retry_count, error_count).

        `retry_count` conta as tentativas da operação corrente; `error_count`
        conta todas as falhas tratadas na sessão, incluindo a atual.
        """
        if error_count >= self._escalation_threshold:
            return RecoveryActionType.ESCALATE
        if source == ErrorSource.PAYMENT and kind == ErrorKind.PERMISSION:
            return RecoveryActionType.ESCALATE
        if not self._policy.allows(retry_count):
            return RecoveryActionType.FALLBACK

        if source == ErrorSource.VOICE:
            if retry_count < VOICE_RETRY_LIMIT:
                return RecoveryActionType.RETRY
            return RecoveryActionType.FALLBACK
        if source == ErrorSource.LLM:
            if kind in (ErrorKind.RATE_LIMIT, ErrorKind.QUOTA):
                return RecoveryActionType.FALLBACK
            return RecoveryActionType.RETRY
        if source == ErrorSource.BUSINESS:
            return RecoveryActionType.FALLBACK
        if source == ErrorSource.PAYMENT:
            return RecoveryActionType.RETRY
        if kind == ErrorKind.SLOT_FILLING_STALLED:
            return RecoveryActionType.FALLBACK
        return RecoveryActionType.RESTART

    def handle(self, ctx: ErrorContext) -> RecoveryResult:
        """Classifica, decide e aplica a recuperação."""
        kind = classify_error(ctx.error)
        session = self._sm.get_or_create(ctx.session_id)
        previous = session.state
        error_count = session.context.error_count + 1
        strategy = self.select_strategy(ctx.source, kind, ctx.retry_count, error_count)
        error_code = new_error_code(ctx.source.value, _utc_ms())

        self._logger.warning(
            "recovery_started",
            extra={
                "session_id": short_id(ctx.session_id),
                "error_source": ctx.source.value,
                "error_kind": kind.value,
                "error_type": type(ctx.error).__name__,
                "error_code": error_code,
                "retry_count": ctx.retry_count,
                "error_count": error_count,
                "strategy": strategy.value,
            },
        )

        if strategy == RecoveryActionType.RETRY:
            result = self._retry(ctx, kind)
        elif strategy == RecoveryActionType.FALLBACK:
            result = self._fallback(ctx, kind)
        elif strategy == RecoveryActionType.RESTART:
            result = self._restart(ctx)
        else:
            result = self._escalate(ctx)

        # Escalada zera o contador; o atendimento humano assume a sessão
        self._sm.update_context(
            ctx.session_id,
            {"error_count": 0 if strategy == RecoveryActionType.ESCALATE else error_count},
        )
        result.kind = kind
        result.error_code = error_code
        result.previous_state = previous
        return result

    # ------------------------------------------------------------------
    # Estratégias
    # ------------------------------------------------------------------

    def _retry(self, ctx: ErrorContext, kind: ErrorKind) -> RecoveryResult:
        attempt = ctx.retry_count + 1
        delay = self._policy.delay_for(ctx.retry_count)
        if ctx.source == ErrorSource.PAYMENT:
            message = PAYMENT_RETRY_MESSAGE
        else:
            base = _RETRY_MESSAGES.get(kind)
            suffix = f"잠시 후 다시 시도합니다... ({attempt}/{self._policy.max_retries})"
            message = f"{base} {suffix}" if base else suffix

        patch: dict[str, Any] = {"retry_count": attempt, "last_error_message": str(ctx.error)}
        current = self._sm.get_or_create(ctx.session_id).state
        target = current
        if (
            ctx.source == ErrorSource.PAYMENT
            and current != SessionState.PAYMENT_FAILED
            and is_transition_allowed(current, SessionState.PAYMENT_FAILED)
        ):
            target = SessionState.PAYMENT_FAILED
        new_state = self._move_to(ctx.session_id, target, patch)

        return RecoveryResult(
            success=True,
            user_message=message,
            new_state=new_state,
            actions=[
                RecoveryAction(
                    type=RecoveryActionType.RETRY,
                    description=f"{delay:g}s 후 재시도",
                    parameters={
                        "delay_seconds": delay,
                        "attempt": attempt,
                        "max_attempts": self._policy.max_retries,
                    },
                )
            ],
        )

    def _fallback(self, ctx: ErrorContext, kind: ErrorKind) -> RecoveryResult:
        plan = self._fallback_plan(ctx.source, kind)
        patch: dict[str, Any] = {
            "retry_count": 0,
            "last_error_message": str(ctx.error),
            "missing_slots": [],
        }
        if plan.state == SessionState.IDLE:
            patch["current_intent"] = None
        new_state = self._move_to(ctx.session_id, plan.state, patch)
        log_fallback(self._logger, f"recovery_{ctx.source.value}", reason=kind.value)
        return RecoveryResult(
            success=True,
            user_message=plan.message,
            new_state=new_state,
            actions=[
                RecoveryAction(
                    type=RecoveryActionType.FALLBACK,
                    description=plan.description,
                    parameters={"mode": plan.mode},
                )
            ],
        )

    def _restart(self, ctx: ErrorContext) -> RecoveryResult:
        patch: dict[str, Any] = {
            "current_intent": None,
            "missing_slots": [],
            "retry_count": 0,
            "last_error_message": None,
            "pending_actions": [],
        }
        new_state = self._move_to(ctx.session_id, SessionState.IDLE, patch)
        return RecoveryResult(
            success=True,
            user_message=RESTART_MESSAGE,
            new_state=new_state,
            actions=[
                RecoveryAction(
                    type=RecoveryActionType.RESTART,
                    description="대화 재시작",
                    parameters={"reset_session": True},
                )
            ],
        )

    def _escalate(self, ctx: ErrorContext) -> RecoveryResult:
        patch = {"last_error_message": str(ctx.error), "retry_count": ctx.retry_count}
        new_state = self._move_to(ctx.session_id, SessionState.ERROR, patch)
        self._logger.error(
            "recovery_escalated",
            extra={
                "session_id": short_id(ctx.session_id),
                "error_source": ctx.source.value,
                "retry_count": ctx.retry_count,
            },
        )
        return RecoveryResult(
            success=False,
            user_message=ESCALATE_MESSAGE,
            new_state=new_state,
            actions=[
                RecoveryAction(
                    type=RecoveryActionType.ESCALATE,
                    description="고객 지원 연결",
                    parameters={"handoff": True},
                )
            ],
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _fallback_plan(source: ErrorSource, kind: ErrorKind) -> _Fallback:
        if source == ErrorSource.VOICE:
            return _PERMISSION_FALLBACK if kind == ErrorKind.PERMISSION else _VOICE_FALLBACK
        if source == ErrorSource.LLM:
            if kind in (ErrorKind.RATE_LIMIT, ErrorKind.QUOTA):
                return _RATE_LIMIT_FALLBACK
            return _LLM_FALLBACK
        if source == ErrorSource.BUSINESS:
            return _BUSINESS_FALLBACKS.get(kind, _BUSINESS_FALLBACK)
        return _DEFAULT_FALLBACK

    def _move_to(
        self, session_id: str, target: SessionState, patch: dict[str, Any]
    ) -> SessionState:
        """Leva a sessão a `target` por transições legais.

        Destinos alcançáveis a partir de `error` (idle, intent_detected)
        passam por `error` quando não há transição direta. Sem caminho
        legal a sessão permanece no estado atual e só o contexto é
        atualizado.
        """
        current = self._sm.get_or_create(session_id).state
        if current == target:
            self._sm.update_context(session_id, patch)
            return current

        if is_transition_allowed(current, target):
            route = [target]
        elif target in ALLOWED_TRANSITIONS[SessionState.ERROR] and is_transition_allowed(
            current, SessionState.ERROR
        ):
            route = [SessionState.ERROR, target]
        else:
            route = find_route(current, target)
        if route is None:
            self._logger.warning(
                "recovery_target_unreachable",
                extra={
                    "session_id": short_id(session_id),
                    "from_state": current.value,
                    "to_state": target.value,
                },
            )
            self._sm.update_context(session_id, patch)
            return current

        for step in route[:-1]:
            self._sm.transition(session_id, step)
        self._sm.transition(session_id, route[-1], patch)
        return route[-1]
