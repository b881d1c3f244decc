"""
Configuration management for the exchange gateway.

Configuration is loaded from config/exchange.yaml and validated with Pydantic
models. The resulting AppConfig is passed explicitly to every component.

Example:
    >>> from exchange_gate.config import load_config
    >>> config = load_config()
    >>> config.exchange.subscribe_topic("XBTUSD")
    'orderBookL2:XBTUSD'

Modules:
    loader: Configuration file loading utilities
    models: Pydantic models for configuration validation
"""

from exchange_gate.config.loader import ConfigLoadError, ConfigLoader, load_config
from exchange_gate.config.models import (
    AppConfig,
    ConnectionSettings,
    Credentials,
    ExchangeConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    ReconciliationSettings,
)

__all__: list[str] = [
    # Loader
    "load_config",
    "ConfigLoader",
    "ConfigLoadError",
    # Enums
    "LogFormat",
    "LogLevel",
    # Models
    "ConnectionSettings",
    "ReconciliationSettings",
    "ExchangeConfig",
    "Credentials",
    "LoggingConfig",
    "AppConfig",
]
