"""Retry com backoff limitado.

Utilitário único usado pelo conector de voz, pelo motor de recuperação e
pelo cliente HTTP:
- Agenda de atrasos fixa (padrão 1s, 2s, 5s; o último valor é o teto)
- Número máximo de retries (padrão 3)
- Nunca bloqueia outras sessões: cada retry roda na task de quem chamou
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from voice_ordering.observability.logging import get_logger

if TYPE_CHECKING:
    from voice_ordering.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_DELAYS: tuple[float, ...] = (1.0, 2.0, 5.0)
DEFAULT_MAX_RETRIES: int = 3


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Política de backoff: `max_retries` tentativas extras com `delays`."""

    max_retries: int = DEFAULT_MAX_RETRIES
    delays: tuple[float, ...] = DEFAULT_DELAYS

    def delay_for(self, retry_index: int) -> float:
        """Atraso antes do retry `retry_index` (0-based), limitado ao último valor."""
        if not self.delays:
            return 0.0
        return self.delays[min(max(retry_index, 0), len(self.delays) - 1)]

    def allows(self, retry_count: int) -> bool:
        """True se ainda há retry disponível após `retry_count` retries."""
        return retry_count < self.max_retries

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            max_retries=settings.recovery_max_retries,
            delays=tuple(settings.recovery_delay_schedule),
        )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy | None = None,
    *,
    is_retryable: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, float, Exception], None] | None = None,
    component: str = "retry",
) -> T:
    """Executa `operation` com retry limitado.

    Args:
        operation: Fábrica da corrotina (chamada a cada tentativa)
        policy: Política de backoff (padrão 1s/2s/5s, 3 retries)
        is_retryable: Filtro de exceções retentáveis (padrão: todas)
        on_retry: Callback (retry_index, delay, exc) antes de cada espera
        component: Nome para logs

    Raises:
        A última exceção quando os retries se esgotam ou o erro não é retentável.
    """
    policy = policy or BackoffPolicy()
    retry_index = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            retryable = is_retryable(exc) if is_retryable else True
            if not retryable or not policy.allows(retry_index):
                if retryable:
                    logger.error(
                        "retries_exhausted",
                        extra={"component": component, "total_attempts": retry_index + 1},
                    )
                raise
            delay = policy.delay_for(retry_index)
            if on_retry is not None:
                on_retry(retry_index, delay, exc)
            logger.info(
                "retry_backoff",
                extra={
                    "component": component,
                    "backoff_seconds": delay,
                    "next_attempt": retry_index + 2,
                    "error_type": type(exc).__name__,
                },
            )
            await asyncio.sleep(delay)
            retry_index += 1
