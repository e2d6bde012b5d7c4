"""Leitura de segredos (env vars em dev, Secret Manager em staging/produção).

Nunca logar valores de secrets.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from voice_ordering.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class SecretProvider(Protocol):
    """Porta para leitura de segredos."""

    def get_secret(self, name: str, version: str = "latest") -> str: ...

    def secret_exists(self, name: str) -> bool: ...


class EnvSecretProvider:
    """Provider local via variáveis de ambiente (dev/testes)."""

    def get_secret(self, name: str, version: str = "latest") -> str:
        value = os.getenv(name)
        if not value:
            raise RuntimeError(f"Secret {name} não encontrado no ambiente")
        return value

    def secret_exists(self, name: str) -> bool:
        return os.getenv(name) is not None


class SecretManagerProvider:
    """Provider para Google Cloud Secret Manager (cliente criado sob demanda)."""

    def __init__(self, project_id: str | None = None) -> None:
        self._project_id = project_id or os.getenv("GOOGLE_CLOUD_PROJECT")
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google.cloud import secretmanager

            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def get_secret(self, name: str, version: str = "latest") -> str:
        if not self._project_id:
            raise RuntimeError("project_id não configurado (GOOGLE_CLOUD_PROJECT)")
        path = f"projects/{self._project_id}/secrets/{name}/versions/{version}"
        try:
            response = self._get_client().access_secret_version(name=path)
        except Exception as e:
            logger.error(
                "secret_access_failed",
                extra={"secret_name": name, "error_type": type(e).__name__},
            )
            raise RuntimeError(f"Não foi possível acessar secret {name}") from e
        return response.payload.data.decode("utf-8")

    def secret_exists(self, name: str) -> bool:
        from google.api_core import exceptions as gcp_exceptions

        try:
            self._get_client().get_secret(name=f"projects/{self._project_id}/secrets/{name}")
        except gcp_exceptions.NotFound:
            return False
        return True


def create_secret_provider(
    backend: str = "env",
    project_id: str | None = None,
) -> SecretProvider:
    """Factory do provider de secrets (env | secret_manager)."""
    if backend == "env":
        return EnvSecretProvider()
    if backend == "secret_manager":
        logger.info("secret_provider_created", extra={"backend": backend})
        return SecretManagerProvider(project_id=project_id)
    raise ValueError(f"Backend de secrets não reconhecido: {backend}")
