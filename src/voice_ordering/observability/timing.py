"""Medição de latência por componente (turn do roteador, abertura de stream)."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator

from voice_ordering.observability.logging import get_logger, short_id

logger = get_logger(__name__)

# Acima disso o turn aparece como warning (UI de voz percebe atraso)
SLOW_COMPONENT_MS = 1500.0


@contextlib.contextmanager
def timed(
    component: str,
    session_id: str | None = None,
    slow_ms: float = SLOW_COMPONENT_MS,
) -> Generator[None, None, None]:
    """Loga `component_latency`; acima de `slow_ms` loga `component_slow`.

    Usage:
        with timed("agent_router", session_id):
            ...
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        extra = {"component": component, "elapsed_ms": elapsed_ms}
        if session_id:
            extra["session_id"] = short_id(session_id)
        if elapsed_ms > slow_ms:
            logger.warning("component_slow", extra={**extra, "threshold_ms": slow_ms})
        else:
            logger.info("component_latency", extra=extra)
