"""Tabela de transições da sessão.

- ALLOWED_TRANSITIONS[current] = conjunto de destinos legais
- Tabela direcionada (não necessariamente simétrica)
- Validação pura: sem side effects
"""

from __future__ import annotations

from collections import deque

from voice_ordering.domain.session.states import SessionState

S = SessionState

ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.IDLE: frozenset({S.LISTENING, S.INTENT_DETECTED, S.ERROR}),
    S.LISTENING: frozenset({S.PROCESSING_VOICE, S.IDLE, S.ERROR}),
    S.PROCESSING_VOICE: frozenset({S.INTENT_DETECTED, S.IDLE, S.ERROR}),
    S.INTENT_DETECTED: frozenset(
        {S.SLOT_FILLING, S.CART_REVIEW, S.CHECKOUT_INFO, S.IDLE, S.ERROR}
    ),
    S.SLOT_FILLING: frozenset({S.INTENT_DETECTED, S.CART_REVIEW, S.IDLE, S.ERROR}),
    S.CART_REVIEW: frozenset({S.CHECKOUT_INFO, S.INTENT_DETECTED, S.IDLE, S.ERROR}),
    S.CHECKOUT_INFO: frozenset({S.PAYMENT_SESSION_CREATED, S.CART_REVIEW, S.IDLE, S.ERROR}),
    S.PAYMENT_SESSION_CREATED: frozenset({S.PAYMENT_PENDING, S.CHECKOUT_INFO, S.ERROR}),
    S.PAYMENT_PENDING: frozenset({S.PAYMENT_COMPLETED, S.PAYMENT_FAILED, S.ERROR}),
    S.PAYMENT_COMPLETED: frozenset({S.ORDER_CONFIRMED, S.ERROR}),
    S.PAYMENT_FAILED: frozenset({S.CHECKOUT_INFO, S.IDLE, S.ERROR}),
    S.ORDER_CONFIRMED: frozenset({S.IDLE}),
    S.ERROR: frozenset({S.IDLE, S.INTENT_DETECTED}),
}


def is_transition_allowed(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(
    current: SessionState, target: SessionState
) -> tuple[bool, str]:
    """Valida se uma transição é permitida.

    Retorna:
    - (True, ""): transição válida
    - (False, motivo): transição inválida

    Nunca lança exceção; apenas valida.
    """
    if is_transition_allowed(current, target):
        return True, ""
    allowed = sorted(s.value for s in ALLOWED_TRANSITIONS.get(current, frozenset()))
    return False, f"No transition from {current} to {target} (allowed: {allowed})"


def find_route(
    current: SessionState,
    target: SessionState,
    *,
    avoid: frozenset[SessionState] = frozenset({S.ERROR}),
) -> list[SessionState] | None:
    """Menor caminho legal de `current` até `target` (excluindo `current`).

    Estados em `avoid` não são usados como passo intermediário. Retorna
    lista vazia se já estiver no destino e None se não houver caminho.
    """
    if current == target:
        return []

    previous: dict[SessionState, SessionState] = {}
    queue: deque[SessionState] = deque([current])
    seen = {current}
    while queue:
        state = queue.popleft()
        for nxt in sorted(ALLOWED_TRANSITIONS[state]):
            if nxt in seen:
                continue
            previous[nxt] = state
            if nxt == target:
                path = [nxt]
                while path[-1] in previous and previous[path[-1]] != current:
                    path.append(previous[path[-1]])
                return list(reversed(path))
            if nxt in avoid:
                continue
            seen.add(nxt)
            queue.append(nxt)
    return None
