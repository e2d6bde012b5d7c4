"""IntentResolver sobre a API OpenAI (chat completions + function calling).

- Chamada de ferramenta -> Intent (categoria/ação/slots)
- Resposta em texto -> general.chat
- Erros da API -> ExternalApiError com kind tipado (rate_limit, quota,
  context_length, timeout, function_call); a recuperação fica com o
  RecoveryEngine, não com este cliente
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from openai import APIError, APITimeoutError, AsyncOpenAI

from voice_ordering.ai import openai_prompts
from voice_ordering.domain.enums import IntentCategory
from voice_ordering.domain.errors import ErrorKind, ExternalApiError
from voice_ordering.domain.models import Intent
from voice_ordering.observability.logging import get_logger

if TYPE_CHECKING:
    from voice_ordering.config.settings import Settings
    from voice_ordering.domain.protocols.language_model import IntentResolver

logger: logging.Logger = get_logger(__name__)

TOOL_CONFIDENCE = 0.9
CHAT_CONFIDENCE = 0.6

# ferramenta -> (categoria, ação, {argumento: slot})
_TOOL_INTENTS: dict[str, tuple[IntentCategory, str, dict[str, str]]] = {
    "search_catalog": (
        IntentCategory.PRODUCT,
        "search",
        {"query": "productName", "category": "category"},
    ),
    "add_to_cart": (
        IntentCategory.PRODUCT,
        "add",
        {"productName": "productName", "quantity": "quantity", "size": "size"},
    ),
    "apply_coupon": (IntentCategory.COUPON, "apply", {"code": "couponCode"}),
    "create_order": (
        IntentCategory.ORDER,
        "create",
        {
            "orderType": "orderType",
            "customerName": "customerName",
            "phone": "phone",
            "address": "address",
            "pickupLocation": "pickupLocation",
        },
    ),
}


def map_api_error(exc: APIError) -> ExternalApiError:
    """Converte erros do SDK OpenAI em ExternalApiError tipado."""
    message = str(exc)
    lowered = message.lower()
    status = getattr(exc, "status_code", None)
    if isinstance(exc, APITimeoutError):
        kind = ErrorKind.TIMEOUT
    elif "quota" in lowered:
        kind = ErrorKind.QUOTA
    elif status == 429 or "rate limit" in lowered:
        kind = ErrorKind.RATE_LIMIT
    elif "context_length" in lowered or "context length" in lowered:
        kind = ErrorKind.CONTEXT_LENGTH
    else:
        kind = ErrorKind.API_ERROR
    return ExternalApiError(message, kind)


def tool_call_to_intent(name: str, arguments: str, text: str) -> Intent:
    """Converte uma chamada de ferramenta em Intent.

    Raises:
        ExternalApiError(function_call): ferramenta desconhecida ou argumentos inválidos.
    """
    entry = _TOOL_INTENTS.get(name)
    if entry is None:
        raise ExternalApiError(f"Unknown function call: {name}", ErrorKind.FUNCTION_CALL)
    try:
        args: dict[str, Any] = json.loads(arguments or "{}")
    except json.JSONDecodeError as exc:
        raise ExternalApiError(
            f"Invalid function call arguments for {name}", ErrorKind.FUNCTION_CALL
        ) from exc

    category, action, mapping = entry
    slots: dict[str, Any] = {"query": text}
    for arg, slot in mapping.items():
        value = args.get(arg)
        if value not in (None, ""):
            slots[slot] = value
    if "couponCode" in slots:
        slots["couponCode"] = str(slots["couponCode"]).upper()
    return Intent(category=category, action=action, confidence=TOOL_CONFIDENCE, slots=slots)


class OpenAIIntentResolver:
    """Classificador/respondedor via ChatGPT."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 10.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._timeout = timeout_seconds

    async def _complete(self, text: str, context: str, *, tools: bool) -> Any:
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = openai_prompts.TOOLS
            kwargs["tool_choice"] = "auto"
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": openai_prompts.SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": openai_prompts.format_user_message(text, context),
                    },
                ],
                temperature=0.3,
                max_tokens=300,
                timeout=self._timeout,
                **kwargs,
            )
        except APIError as e:
            logger.warning(
                "openai_request_failed",
                extra={"error_type": type(e).__name__, "status_code": getattr(e, "status_code", None)},
            )
            raise map_api_error(e) from e
        return response.choices[0].message

    async def classify(self, text: str, context: str = "") -> Intent:
        message = await self._complete(text, context, tools=True)
        tool_calls = message.tool_calls or []
        if tool_calls:
            call = tool_calls[0]
            intent = tool_call_to_intent(call.function.name, call.function.arguments, text)
            logger.info(
                "intent_classified",
                extra={"intent": intent.key, "source": "openai_tool_call"},
            )
            return intent

        reply = (message.content or "").strip()
        slots: dict[str, Any] = {"query": text}
        if reply:
            slots["reply"] = reply
        return Intent(
            category=IntentCategory.GENERAL,
            action="chat",
            confidence=CHAT_CONFIDENCE,
            slots=slots,
        )

    async def reply(self, text: str, context: str = "") -> str:
        message = await self._complete(text, context, tools=False)
        return (message.content or "").strip()


def create_intent_resolver(settings: Settings) -> IntentResolver:
    """OpenAI quando habilitado (feature flag); senão o classificador local."""
    if not settings.openai_enabled:
        from voice_ordering.application.intent_classifier import KeywordIntentClassifier

        logger.info("intent_resolver_selected", extra={"backend": "keyword"})
        return KeywordIntentClassifier()

    logger.info(
        "intent_resolver_selected",
        extra={"backend": "openai", "model": settings.openai_model},
    )
    return OpenAIIntentResolver(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )
