"""Sessão: estados e transições.

Exporta:
- SessionState: 13 estados canônicos
- ALLOWED_TRANSITIONS: tabela de adjacência
- validate_transition / is_transition_allowed: validadores puros
- find_route: menor caminho legal entre dois estados
"""

from voice_ordering.domain.session.states import (
    NEW_INPUT_STATES,
    PAYMENT_STATES,
    SessionState,
)
from voice_ordering.domain.session.transitions import (
    ALLOWED_TRANSITIONS,
    find_route,
    is_transition_allowed,
    validate_transition,
)

__all__ = [
    "SessionState",
    "ALLOWED_TRANSITIONS",
    "NEW_INPUT_STATES",
    "PAYMENT_STATES",
    "find_route",
    "is_transition_allowed",
    "validate_transition",
]
