"""
Gateway event models.

Anomalies are reported as structured events instead of ad hoc warnings.
Each event carries a kind from the error taxonomy, a severity telling the
consumer whether the emitting component is still usable, and the typed
GatewayError describing the anomaly.

Models:
    Severity: FATAL or ADVISORY
    EventKind: Anomaly kind
    GatewayEvent: Single reported anomaly
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Type

from pydantic import BaseModel, Field

from exchange_gate.errors import (
    GatewayError,
    ProtocolViolation,
    ReconciliationGap,
    UnexpectedCancelStatus,
    UnexpectedOrderStatus,
)


class Severity(str, Enum):
    """
    Event severity.

    Attributes:
        FATAL: The emitting component is terminal (e.g., closed socket).
        ADVISORY: Informational; the caller may retry or ignore.
    """

    FATAL = "fatal"
    ADVISORY = "advisory"


class EventKind(str, Enum):
    """Anomaly kinds reported by the gateway."""

    PROTOCOL_VIOLATION = "protocol_violation"
    UNEXPECTED_ORDER_STATUS = "unexpected_order_status"
    UNEXPECTED_CANCEL_STATUS = "unexpected_cancel_status"
    RECONCILIATION_GAP = "reconciliation_gap"
    REQUEST_FAILED = "request_failed"

    @property
    def default_severity(self) -> Severity:
        if self is EventKind.PROTOCOL_VIOLATION:
            return Severity.FATAL
        return Severity.ADVISORY

    @property
    def error_type(self) -> Type[GatewayError]:
        """Error class built for this kind when the reporter supplies none."""
        return _ERROR_TYPES.get(self, GatewayError)


_ERROR_TYPES: Dict[EventKind, Type[GatewayError]] = {
    EventKind.PROTOCOL_VIOLATION: ProtocolViolation,
    EventKind.UNEXPECTED_ORDER_STATUS: UnexpectedOrderStatus,
    EventKind.UNEXPECTED_CANCEL_STATUS: UnexpectedCancelStatus,
    EventKind.RECONCILIATION_GAP: ReconciliationGap,
}


class GatewayEvent(BaseModel):
    """
    Single anomaly report.

    Attributes:
        kind: Anomaly kind.
        severity: FATAL or ADVISORY.
        message: Human readable description.
        error: Typed error for the anomaly; hosts may raise it.
        context: Key/value details (symbol, order id, status...).
        occurred_at: UTC time the event was raised.
    """

    model_config = {"frozen": True, "extra": "forbid", "arbitrary_types_allowed": True}

    kind: EventKind
    severity: Severity
    message: str
    error: GatewayError
    context: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL
