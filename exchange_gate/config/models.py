"""
Pydantic models for gateway configuration.

This module defines all configuration models that are validated when loading
the YAML configuration file. The models ensure type safety and provide
sensible defaults for optional settings.

Configuration file:
    - config/exchange.yaml: Endpoints, connection, reconciliation, logging

Secrets are never required in YAML; they can be supplied through the
BITMEX_API_KEY and BITMEX_API_SECRET environment variables.

Example:
    >>> from exchange_gate.config.models import AppConfig
    >>> config = AppConfig(exchange=ExchangeConfig())
    >>> config.exchange.api_url("order")
    'https://www.bitmex.com/api/v1/order'
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator


# =============================================================================
# ENUMS
# =============================================================================


class LogFormat(str, Enum):
    """Logging format options."""

    JSON = "json"
    TEXT = "text"


class LogLevel(str, Enum):
    """Logging level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# EXCHANGE CONFIGURATION
# =============================================================================


class ConnectionSettings(BaseModel):
    """Connection and throttling settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    request_timeout_seconds: int = Field(
        default=10,
        description="Total timeout for one REST request",
        ge=1,
        le=120,
    )
    quota_epsilon: float = Field(
        default=0.1,
        description="Floor applied to the remaining quota before computing the throttle sleep",
        gt=0,
        le=1,
    )
    assumed_quota: int = Field(
        default=60,
        description="Remaining quota assumed before the first response is observed",
        ge=1,
    )
    ping_interval_seconds: int = Field(
        default=5,
        description="Interval between text keep-alive pings on the socket",
        ge=1,
        le=120,
    )
    max_message_size: int = Field(
        default=2**22,
        description="Maximum inbound socket frame size in bytes",
        ge=2**16,
    )


class ReconciliationSettings(BaseModel):
    """Execution history fetch settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    lookback_seconds: int = Field(
        default=86400,
        description="History window requested when no cursor exists yet",
        ge=60,
    )
    history_count: int = Field(
        default=500,
        description="Maximum records requested per tradeHistory call",
        ge=1,
        le=500,
    )


class ExchangeConfig(BaseModel):
    """Endpoints and protocol constants for the exchange."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(
        default="bitmex",
        description="Lowercase exchange identifier used in logs",
        min_length=1,
    )
    rest_url: str = Field(
        default="https://www.bitmex.com",
        description="REST API host",
    )
    api_path: str = Field(
        default="/api/v1",
        description="Path prefix of the REST API; part of the signed path",
    )
    websocket_url: str = Field(
        default="wss://ws.bitmex.com/realtime",
        description="Realtime socket endpoint",
    )
    orderbook_table: str = Field(
        default="orderBookL2",
        description="Socket table carrying the incremental order book",
    )
    welcome_text: str = Field(
        default="Welcome to the BitMEX Realtime API.",
        description="Greeting expected in the first socket message",
    )
    maker_only_instruction: str = Field(
        default="ParticipateDoNotInitiate",
        description="execInst value that makes an order maker-only",
    )
    orderbook_depth: int = Field(
        default=0,
        description="Depth for REST order book snapshots (0 = full book)",
        ge=0,
    )
    connection: ConnectionSettings = Field(
        default_factory=ConnectionSettings,
        description="Connection and throttling settings",
    )
    reconciliation: ReconciliationSettings = Field(
        default_factory=ReconciliationSettings,
        description="Execution reconciliation settings",
    )

    @field_validator("rest_url", "websocket_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize URLs so paths can be appended."""
        return v.rstrip("/")

    @field_validator("api_path")
    @classmethod
    def normalize_api_path(cls, v: str) -> str:
        """Ensure the prefix starts with a slash and has none at the end."""
        return "/" + v.strip("/")

    def api_path_for(self, endpoint: str) -> str:
        """
        Build the signed path for an endpoint.

        Args:
            endpoint: Endpoint relative to the API prefix (e.g., "order").

        Returns:
            str: Full request path (e.g., "/api/v1/order").
        """
        return f"{self.api_path}/{endpoint.lstrip('/')}"

    def api_url(self, endpoint: str) -> str:
        """Build the absolute URL for an endpoint (without query string)."""
        return f"{self.rest_url}{self.api_path_for(endpoint)}"

    def subscribe_topic(self, symbol: str) -> str:
        """Return the order book topic for a symbol (e.g., "orderBookL2:XBTUSD")."""
        return f"{self.orderbook_table}:{symbol}"


class Credentials(BaseModel):
    """API key pair used to sign private requests."""

    model_config = {"frozen": True, "extra": "forbid"}

    api_key: str = Field(
        ...,
        description="Public API key id sent in the api-key header",
        min_length=1,
    )
    api_secret: SecretStr = Field(
        ...,
        description="Secret used as the HMAC key",
    )


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    format: LogFormat = Field(
        default=LogFormat.JSON,
        description="Log output format",
    )
    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Default log level",
    )


# =============================================================================
# ROOT CONFIGURATION
# =============================================================================


class AppConfig(BaseModel):
    """
    Root gateway configuration.

    Passed explicitly into the adapter and every component constructor; there
    is no process-wide default instance.

    Example:
        >>> config = AppConfig(symbols=["XBTUSD"])
        >>> config.exchange.subscribe_topic("XBTUSD")
        'orderBookL2:XBTUSD'
    """

    model_config = {"frozen": True, "extra": "forbid"}

    exchange: ExchangeConfig = Field(
        default_factory=ExchangeConfig,
        description="Exchange endpoints and protocol settings",
    )
    credentials: Optional[Credentials] = Field(
        default=None,
        description="API credentials; None limits the gateway to public endpoints",
    )
    symbols: List[str] = Field(
        default_factory=list,
        description="Symbols whose order books are streamed",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
