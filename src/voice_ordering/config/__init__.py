"""Configurações centralizadas do voice_ordering.

Este módulo exporta:
- Settings: classe de configuração via variáveis de ambiente
- get_settings: função cacheada para obter instância única
- Constantes do protocolo de áudio exigido pelo STT

Uso típico:
    from voice_ordering.config import get_settings
"""

from voice_ordering.config.settings import (
    REQUIRED_CHANNELS,
    REQUIRED_ENCODING,
    REQUIRED_SAMPLE_RATE_HZ,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "REQUIRED_SAMPLE_RATE_HZ",
    "REQUIRED_CHANNELS",
    "REQUIRED_ENCODING",
]
