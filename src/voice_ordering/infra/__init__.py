"""Camada de infraestrutura: adapters para serviços externos.

Este módulo exporta os componentes principais:

- Session: SessionStore, InMemorySessionStore
- Agentes de negócio: InMemoryBusinessAgents, HttpBusinessAgents
- HTTP: HttpClient, create_http_client
- Retry: BackoffPolicy, retry_async
- Secrets: EnvSecretProvider, SecretManagerProvider

Uso típico:
    from voice_ordering.infra import InMemorySessionStore, create_http_client

Infraestrutura não decide regra de negócio; logs estruturados sem PII.
"""

from voice_ordering.infra.business_agents_http import HttpBusinessAgents
from voice_ordering.infra.business_agents_memory import (
    DEFAULT_CATALOG,
    DEFAULT_COUPONS,
    InMemoryBusinessAgents,
)
from voice_ordering.infra.http import (
    HttpClient,
    HttpClientConfig,
    HttpError,
    create_http_client,
)
from voice_ordering.infra.retry import BackoffPolicy, retry_async
from voice_ordering.infra.secrets import (
    EnvSecretProvider,
    SecretManagerProvider,
    SecretProvider,
    create_secret_provider,
)
from voice_ordering.infra.session_contract import SessionStore, SessionStoreError
from voice_ordering.infra.session_store_memory import InMemorySessionStore

__all__ = [
    "BackoffPolicy",
    "DEFAULT_CATALOG",
    "DEFAULT_COUPONS",
    "EnvSecretProvider",
    "HttpBusinessAgents",
    "HttpClient",
    "HttpClientConfig",
    "HttpError",
    "InMemoryBusinessAgents",
    "InMemorySessionStore",
    "SecretManagerProvider",
    "SecretProvider",
    "SessionStore",
    "SessionStoreError",
    "create_http_client",
    "create_secret_provider",
    "retry_async",
]
