"""
Structured anomaly channel.

Components report anomalies through an EventChannel rather than raising or
printing warnings. Every event is logged, kept in a bounded history and
forwarded to registered subscribers.

Example:
    >>> channel = EventChannel()
    >>> channel.subscribe(lambda event: print(event.kind))
    >>> channel.report(EventKind.RECONCILIATION_GAP, "cursor not found", symbol="XBTUSD")
"""

from collections import deque
from typing import Any, Callable, Deque, List, Optional

import structlog

from exchange_gate.errors import GatewayError
from exchange_gate.models.events import EventKind, GatewayEvent, Severity

logger = structlog.get_logger(__name__)

EventHandler = Callable[[GatewayEvent], None]


class EventChannel:
    """
    Fan-out channel for gateway events.

    Attributes:
        history: Most recent events, oldest first.
    """

    def __init__(self, max_history: int = 1000):
        self._history: Deque[GatewayEvent] = deque(maxlen=max_history)
        self._handlers: List[EventHandler] = []

    @property
    def history(self) -> List[GatewayEvent]:
        return list(self._history)

    def subscribe(self, handler: EventHandler) -> None:
        """Register a callback invoked synchronously for each event."""
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def report(
        self,
        kind: EventKind,
        message: str,
        severity: Optional[Severity] = None,
        cause: Optional[GatewayError] = None,
        **context: Any,
    ) -> GatewayEvent:
        """
        Record and publish an event.

        Args:
            kind: Anomaly kind.
            message: Human readable description.
            severity: Overrides the kind's default severity.
            cause: Error to attach; one of kind.error_type is built if None.
            **context: Extra key/value details.

        Returns:
            GatewayEvent: The published event.
        """
        if cause is None:
            cause = kind.error_type(message, status=context.get("status"), context=context)
        event = GatewayEvent(
            kind=kind,
            severity=severity or kind.default_severity,
            message=message,
            error=cause,
            context=context,
        )
        self._history.append(event)

        log = logger.error if event.is_fatal else logger.warning
        log(
            "gateway_event",
            kind=event.kind.value,
            severity=event.severity.value,
            error_type=type(cause).__name__,
            message=message,
            **context,
        )

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "gateway_event_handler_error",
                    kind=event.kind.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return event

    def of_kind(self, kind: EventKind) -> List[GatewayEvent]:
        """Return retained events of one kind."""
        return [event for event in self._history if event.kind is kind]

    def clear(self) -> None:
        self._history.clear()
