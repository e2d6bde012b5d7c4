"""Sessão de aplicação: modelo canônico em memória.

Exporta:
- Session: estado completo da conversa (estado, contexto, histórico, carrinho)
- StateContext: contexto do estado corrente
"""

from voice_ordering.application.session.models import Session, StateContext

__all__ = ["Session", "StateContext"]
