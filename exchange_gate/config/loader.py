"""
Configuration loader for the YAML gateway configuration.

Loads config/exchange.yaml, applies environment overrides and validates the
result with the Pydantic models in exchange_gate.config.models.

Environment variables override:
    - BITMEX_API_KEY: API key id
    - BITMEX_API_SECRET: API secret
    - LOG_LEVEL: Application log level
    - GATE_SYMBOLS: Comma-separated symbols to stream

Example:
    >>> from exchange_gate.config.loader import load_config
    >>> config = load_config("config")
    >>> config.exchange.orderbook_table
    'orderBookL2'
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from exchange_gate.config.models import (
    AppConfig,
    ConnectionSettings,
    Credentials,
    ExchangeConfig,
    LoggingConfig,
    LogLevel,
    ReconciliationSettings,
)

CONFIG_FILENAME = "exchange.yaml"


class ConfigLoadError(Exception):
    """
    Raised when configuration loading fails.

    Attributes:
        message: Error message describing what went wrong.
        file_path: Path to the file that caused the error, if applicable.
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        file_path: Optional[Path] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.file_path = file_path
        self.cause = cause
        super().__init__(message)


class ConfigLoader:
    """
    Loads and validates gateway configuration.

    Expects the following directory structure:
        config/
        └── exchange.yaml    - Endpoints, connection, reconciliation, logging

    Example:
        >>> loader = ConfigLoader("config")
        >>> config = loader.load()
        >>> config.exchange.name
        'bitmex'
    """

    def __init__(self, config_dir: Path | str = "config"):
        """
        Initialize config loader.

        Args:
            config_dir: Path to configuration directory (default: 'config').

        Raises:
            ConfigLoadError: If config directory does not exist.
        """
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise ConfigLoadError(
                f"Configuration directory not found: {self.config_dir}",
                file_path=self.config_dir,
            )

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """
        Load a YAML file from the config directory.

        Raises:
            ConfigLoadError: If file not found, empty, or invalid YAML.
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            raise ConfigLoadError(
                f"Configuration file not found: {file_path}",
                file_path=file_path,
            )

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(
                f"Invalid YAML syntax in {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e
        except OSError as e:
            raise ConfigLoadError(
                f"Error reading {file_path}: {e}",
                file_path=file_path,
                cause=e,
            ) from e

        if data is None:
            raise ConfigLoadError(
                f"Configuration file is empty: {file_path}",
                file_path=file_path,
            )
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Configuration root must be a mapping: {file_path}",
                file_path=file_path,
            )
        return data

    def _load_exchange(self, data: Dict[str, Any]) -> ExchangeConfig:
        """Build ExchangeConfig from the 'exchange' section."""
        exchange_data = dict(data.get("exchange") or {})
        connection = ConnectionSettings(**(exchange_data.pop("connection", None) or {}))
        reconciliation = ReconciliationSettings(
            **(exchange_data.pop("reconciliation", None) or {})
        )
        return ExchangeConfig(
            connection=connection,
            reconciliation=reconciliation,
            **exchange_data,
        )

    def _load_credentials(self, data: Dict[str, Any]) -> Optional[Credentials]:
        """
        Resolve credentials, environment taking precedence over YAML.

        Returns:
            Credentials or None when no key pair is configured.
        """
        section = data.get("credentials") or {}
        api_key = os.getenv("BITMEX_API_KEY", section.get("api_key"))
        api_secret = os.getenv("BITMEX_API_SECRET", section.get("api_secret"))

        if not api_key and not api_secret:
            return None
        if not api_key or not api_secret:
            raise ConfigLoadError(
                "Both api_key and api_secret must be provided",
                file_path=self.config_dir / CONFIG_FILENAME,
            )
        return Credentials(api_key=api_key, api_secret=api_secret)

    def _load_logging(self, data: Dict[str, Any]) -> LoggingConfig:
        """Build LoggingConfig, honoring LOG_LEVEL."""
        section = dict(data.get("logging") or {})
        level_str = os.getenv("LOG_LEVEL")
        if level_str:
            try:
                section["level"] = LogLevel(level_str.upper())
            except ValueError:
                section["level"] = LogLevel.INFO
        return LoggingConfig(**section)

    def _load_symbols(self, data: Dict[str, Any]) -> list[str]:
        env_symbols = os.getenv("GATE_SYMBOLS")
        if env_symbols:
            return [s.strip() for s in env_symbols.split(",") if s.strip()]
        return list(data.get("symbols") or [])

    def load(self) -> AppConfig:
        """
        Load and validate the configuration file.

        Returns:
            AppConfig: Validated gateway configuration.

        Raises:
            ConfigLoadError: If any configuration is invalid or missing.
        """
        data = self._load_yaml(CONFIG_FILENAME)

        try:
            return AppConfig(
                exchange=self._load_exchange(data),
                credentials=self._load_credentials(data),
                symbols=self._load_symbols(data),
                logging=self._load_logging(data),
            )
        except ConfigLoadError:
            raise
        except (ValidationError, TypeError) as e:
            raise ConfigLoadError(
                f"Configuration validation failed: {e}",
                file_path=self.config_dir / CONFIG_FILENAME,
                cause=e,
            ) from e


def load_config(config_dir: Path | str = "config") -> AppConfig:
    """
    Convenience function to load gateway configuration.

    Args:
        config_dir: Path to configuration directory (default: 'config').

    Returns:
        AppConfig: Validated gateway configuration.

    Raises:
        ConfigLoadError: If configuration loading fails.
    """
    loader = ConfigLoader(config_dir)
    return loader.load()
