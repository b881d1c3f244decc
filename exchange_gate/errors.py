"""
Error taxonomy for the exchange gateway.

The REST transport returns failures as values (see RestResponse.error) and
never raises them. The adapter's read views raise the value they receive.
ProtocolViolation is raised inside the order book synchronizer, where it is
fatal for that socket. Every reported anomaly carries one of these classes as
GatewayEvent.error.

Classes:
    GatewayError: Base class for all gateway errors.
    TransientServerError: HTTP 500/502/504 from the exchange.
    ClientRequestError: Any other non-success HTTP status (auth, validation).
    TransportError: Network failure or an unreadable response body.
    ProtocolViolation: Unexpected socket message shape, action or table.
    UnexpectedOrderStatus: Order submission ended in an unexpected state.
    UnexpectedCancelStatus: Cancel returned an unexpected state.
    ReconciliationGap: Previous execution cursor missing from a fetched batch.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """
    Base class for gateway errors.

    Attributes:
        message: Human readable description.
        status: HTTP status code, if the error came from a REST response.
        name: Exchange-provided error name, if any.
        context: Extra key/value context for logging.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status = status
        self.name = name
        self.context = context or {}
        super().__init__(message)


class TransientServerError(GatewayError):
    """Raised for 500, 502 and 504 responses. Never retried here."""

    TRANSIENT_STATUSES = frozenset({500, 502, 504})


class ClientRequestError(GatewayError):
    """Authentication or client error decoded from the response body."""

    pass


class TransportError(GatewayError):
    """Connection or body decoding failure; status is 0 if no response arrived."""

    pass


class ProtocolViolation(GatewayError):
    """Fatal for the socket that produced it; the synchronizer is terminal."""

    pass


class UnexpectedOrderStatus(GatewayError):
    """Advisory: order submission was neither accepted nor a maker-only reject."""

    pass


class UnexpectedCancelStatus(GatewayError):
    """Advisory: cancel returned a status other than canceled/filled/not found."""

    pass


class ReconciliationGap(GatewayError):
    """Advisory: the execution cursor fell outside the returned window."""

    pass
