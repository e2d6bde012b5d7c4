"""Taxonomia de erros do motor de pedidos.

Cada exceção carrega um `ErrorKind` fechado, atribuído no ponto da falha.
O motor de recuperação decide a estratégia pelo tipo, nunca pelo texto.
A classificação por palavras-chave existe apenas para exceções de terceiros
que chegam sem tipo (SDKs de fornecedores).
"""

from __future__ import annotations

from enum import StrEnum


class ErrorSource(StrEnum):
    """Componente onde a falha ocorreu."""

    VOICE = "voice"
    LLM = "llm"
    BUSINESS = "business"
    PAYMENT = "payment"
    SYSTEM = "system"


class ErrorKind(StrEnum):
    """Categorias fechadas de falha."""

    # Voz / streaming
    NETWORK = "network"
    PERMISSION = "permission"
    AUDIO_QUALITY = "audio_quality"
    LANGUAGE_DETECTION = "language_detection"
    API_ERROR = "api_error"
    TIMEOUT = "timeout"
    INVALID_AUDIO_CONFIG = "invalid_audio_config"
    NO_ACTIVE_STREAM = "no_active_stream"
    # Modelo de linguagem
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    CONTEXT_LENGTH = "context_length"
    FUNCTION_CALL = "function_call"
    # Regras de negócio
    NOT_FOUND = "not_found"
    INVENTORY = "inventory"
    INVALID_COUPON = "invalid_coupon"
    # Pagamento
    PAYMENT_DECLINED = "payment_declined"
    # Sistema
    ILLEGAL_TRANSITION = "illegal_transition"
    SLOT_FILLING_STALLED = "slot_filling_stalled"
    UNCLASSIFIED = "unclassified"


class VoiceOrderingError(Exception):
    """Base de todos os erros tipados do motor."""

    default_kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or self.default_kind


class InvalidAudioConfig(VoiceOrderingError):
    default_kind = ErrorKind.INVALID_AUDIO_CONFIG


class IllegalTransition(VoiceOrderingError):
    """Transição fora da tabela de adjacência; o estado não é alterado."""

    default_kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal transition {current} -> {target}")
        self.current = current
        self.target = target


class NoActiveStream(VoiceOrderingError):
    default_kind = ErrorKind.NO_ACTIVE_STREAM


class StreamTimeout(VoiceOrderingError):
    default_kind = ErrorKind.TIMEOUT


class NetworkUnavailable(VoiceOrderingError):
    default_kind = ErrorKind.NETWORK


class PermissionDenied(VoiceOrderingError):
    default_kind = ErrorKind.PERMISSION


class AudioQualityError(VoiceOrderingError):
    default_kind = ErrorKind.AUDIO_QUALITY


class LanguageDetectionError(VoiceOrderingError):
    default_kind = ErrorKind.LANGUAGE_DETECTION


class ExternalApiError(VoiceOrderingError):
    """Falha de serviço externo (kind: api_error, rate_limit ou quota)."""

    default_kind = ErrorKind.API_ERROR


class BusinessRuleError(VoiceOrderingError):
    """Regra de negócio violada (kind: not_found, inventory, invalid_coupon)."""

    default_kind = ErrorKind.NOT_FOUND


class PaymentError(VoiceOrderingError):
    default_kind = ErrorKind.PAYMENT_DECLINED


class SlotFillingStalled(VoiceOrderingError):
    """Turns consecutivos sem nenhum slot novo."""

    default_kind = ErrorKind.SLOT_FILLING_STALLED


# Ordem importa: o primeiro grupo com palavra presente vence
_KEYWORD_KINDS: tuple[tuple[tuple[str, ...], ErrorKind], ...] = (
    (("rate limit", "rate_limit", "too many requests", "429"), ErrorKind.RATE_LIMIT),
    (("quota",), ErrorKind.QUOTA),
    (("context length", "context_length", "token limit"), ErrorKind.CONTEXT_LENGTH),
    (("function",), ErrorKind.FUNCTION_CALL),
    (("permission", "denied", "unauthorized", "forbidden"), ErrorKind.PERMISSION),
    (("network", "connection", "connect", "unreachable"), ErrorKind.NETWORK),
    (("timeout", "timed out", "deadline"), ErrorKind.TIMEOUT),
    (("audio", "quality", "noise"), ErrorKind.AUDIO_QUALITY),
    (("language",), ErrorKind.LANGUAGE_DETECTION),
    (("not found", "not_found"), ErrorKind.NOT_FOUND),
    (("inventory", "stock", "재고"), ErrorKind.INVENTORY),
    (("coupon", "쿠폰"), ErrorKind.INVALID_COUPON),
    (("payment", "card", "declined"), ErrorKind.PAYMENT_DECLINED),
)


def classify_error(error: BaseException) -> ErrorKind:
    """Retorna o ErrorKind de uma exceção.

    Exceções tipadas usam o kind atribuído na origem. Exceções de terceiros
    caem no mapeamento por palavras-chave da mensagem.
    """
    if isinstance(error, VoiceOrderingError):
        return error.kind
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorKind.NETWORK
    if isinstance(error, PermissionError):
        return ErrorKind.PERMISSION

    message = str(error).lower()
    for keywords, kind in _KEYWORD_KINDS:
        if any(keyword in message for keyword in keywords):
            return kind
    return ErrorKind.UNCLASSIFIED
