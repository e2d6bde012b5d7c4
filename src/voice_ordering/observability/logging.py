"""Configuração de logging estruturado (JSON)."""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from voice_ordering.observability.middleware import get_correlation_id, get_session_id

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Insere correlation_id, session_id e service no record de log.

    Importante: nunca adicionar transcrições, telefones ou endereços nos logs.
    """

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        # `extra` explícito tem precedência sobre o contexto da task
        existing = getattr(record, "correlation_id", None)
        record.correlation_id = existing if existing else get_correlation_id()
        if not getattr(record, "session_id", None):
            bound = get_session_id()
            record.session_id = bound[:8] + "..." if bound else ""
        record.service = self._service_name
        return True


def configure_logging(level: str, service_name: str, log_format: str = "json") -> None:
    """Configura logging (JSON por padrão) com campos padrão do serviço."""

    if log_format.lower() == "text":
        formatter: logging.Formatter = logging.Formatter(_TEXT_FORMAT)
    else:
        formatter = JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s "
            "%(correlation_id)s %(session_id)s %(service)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter(service_name))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]


def get_logger(name: str) -> logging.Logger:
    """Retorna logger simples; o filtro injeta service/correlation_id."""

    return logging.getLogger(name)


def short_id(session_id: str | None) -> str | None:
    """Trunca identificadores para log."""

    return session_id[:8] + "..." if session_id else None


def log_fallback(
    logger: logging.Logger,
    component: str,
    reason: str | None = None,
    elapsed_ms: float | None = None,
) -> None:
    """Log observável de fallback aplicado (sem PII).

    Exemplo:
        log_fallback(logger, "intent_resolver", reason="api_timeout", elapsed_ms=5230)
    """
    extra: dict[str, object] = {"fallback_used": True, "component": component}
    if reason:
        extra["reason"] = reason
    if elapsed_ms is not None:
        extra["elapsed_ms"] = elapsed_ms

    logger.info("fallback_applied", extra=extra)
