"""Configurações da aplicação via variáveis de ambiente.

Todos os valores vêm de env vars (ou Secret Manager em staging/produção).
Nunca hardcode chaves de API.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from voice_ordering.infra.secrets import create_secret_provider
from voice_ordering.observability.logging import get_logger

# Requisitos do protocolo de streaming STT (não negociáveis)
REQUIRED_SAMPLE_RATE_HZ: int = 16000
REQUIRED_CHANNELS: int = 1
REQUIRED_ENCODING: str = "PCM_16"


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "voice_ordering"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    # Sessão
    session_timeout_minutes: int = 30  # Janela de inatividade antes do sweep
    session_history_max_turns: int = 50  # Turns mais antigos são podados
    session_sweep_interval_seconds: float = 300.0

    # Streaming de voz
    stt_backend: str = "google"  # google | disabled
    stream_idle_timeout_seconds: float = 300.0  # Watchdog de inatividade
    stream_max_queued_chunks: int = 256
    default_language_code: str = "ko-KR"
    alternative_language_codes: list[str] = ["en-US"]
    vad_silence_threshold: float = 0.01
    transcript_min_quality: float = 0.3

    # Transporte (websocket)
    heartbeat_interval_seconds: float = 30.0
    auto_route_final_transcripts: bool = True

    # Recuperação de erros
    recovery_max_retries: int = 3
    recovery_delay_schedule: list[float] = [1.0, 2.0, 5.0]
    escalation_threshold: int = 5

    # Agentes de negócio (catálogo, carrinho, cupom, pedido)
    business_agents_backend: str = "memory"  # memory | http
    business_api_base_url: str | None = None
    business_api_token: str | None = None
    business_api_timeout_seconds: float = 10.0

    # OpenAI / IA
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 10.0
    openai_enabled: bool = False  # Feature flag (fail-safe: false)

    def validate_openai_config(self) -> list[str]:
        """Valida configuração de OpenAI.

        Retorna lista de erros (vazia = OK).
        """
        errors: list[str] = []
        if self.openai_enabled and not self.openai_api_key:
            errors.append("OPENAI_ENABLED=true requer OPENAI_API_KEY configurado")
        return errors

    def validate_business_agents_config(self) -> list[str]:
        """Valida backend dos agentes de negócio por ambiente."""
        errors: list[str] = []
        backend = self.business_agents_backend.lower()
        valid_backends = {"memory", "http"}

        if backend not in valid_backends:
            errors.append(
                f"BUSINESS_AGENTS_BACKEND '{backend}' inválido. Valores válidos: {valid_backends}"
            )

        # Catálogo em memória só serve para dev/testes
        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append("BUSINESS_AGENTS_BACKEND=memory é proibido em staging/production")

        if backend == "http" and not self.business_api_base_url:
            errors.append("BUSINESS_AGENTS_BACKEND=http requer BUSINESS_API_BASE_URL")
        return errors

    def validate_stream_config(self) -> list[str]:
        """Valida parâmetros de streaming e recuperação."""
        errors: list[str] = []
        if self.stt_backend.lower() not in {"google", "disabled"}:
            errors.append("STT_BACKEND inválido: use google | disabled")
        if self.stream_idle_timeout_seconds <= 0:
            errors.append("STREAM_IDLE_TIMEOUT_SECONDS deve ser > 0")
        if not self.recovery_delay_schedule:
            errors.append("RECOVERY_DELAY_SCHEDULE não pode ser vazio")
        if self.recovery_max_retries < 1:
            errors.append("RECOVERY_MAX_RETRIES deve ser >= 1")
        if self.escalation_threshold <= self.recovery_max_retries:
            errors.append("ESCALATION_THRESHOLD deve ser maior que RECOVERY_MAX_RETRIES")
        if not 0 <= self.transcript_min_quality <= 1:
            errors.append("TRANSCRIPT_MIN_QUALITY deve estar entre 0 e 1")
        return errors

    def validation_errors(self) -> list[str]:
        """Agrega todas as validações."""
        errors: list[str] = []
        errors.extend(self.validate_openai_config())
        errors.extend(self.validate_business_agents_config())
        errors.extend(self.validate_stream_config())
        return errors

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local", "test")

    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60.0

    def model_post_init(self, __context: Any) -> None:
        """Carrega chaves do Secret Manager em staging/production.

        Em development as chaves vêm de env vars. Fail-closed fora de dev
        quando o projeto GCP não está configurado.
        """
        logger: logging.Logger = get_logger(__name__)

        if self.is_development:
            return

        # Testes com environment=staging/prod não devem tocar o Secret Manager
        if os.getenv("PYTEST_CURRENT_TEST"):
            logger.info("secret_manager_skipped", extra={"environment": self.environment})
            return

        project_id = os.getenv("GOOGLE_CLOUD_PROJECT")
        if not project_id:
            raise RuntimeError("GOOGLE_CLOUD_PROJECT obrigatório em staging/production")

        provider = create_secret_provider(backend="secret_manager", project_id=project_id)
        secret_mappings = {
            "OPENAI_API_KEY": "openai_api_key",
            "BUSINESS_API_TOKEN": "business_api_token",
        }
        for secret_name, attr_name in secret_mappings.items():
            if getattr(self, attr_name):
                continue
            if not provider.secret_exists(secret_name):
                logger.warning(
                    "secret_not_found",
                    extra={"secret_name": secret_name, "environment": self.environment},
                )
                continue
            setattr(self, attr_name, provider.get_secret(secret_name))
            logger.info(
                "secret_loaded",
                extra={"secret_name": secret_name, "environment": self.environment},
            )


@lru_cache
def get_settings() -> Settings:
    """Retorna instância única de Settings (cacheada)."""

    return Settings()
