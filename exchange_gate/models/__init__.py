"""
Shared Pydantic data models for the exchange gateway.

All financial values use Decimal for precision.

Modules:
    market: Market and asset descriptors, quantization
    orderbook: Price levels and order book snapshots
    orders: Placed orders, executions and cursors
    account: Trades, positions, balances, rate-limit state
    events: Structured anomaly events

Example:
    >>> from exchange_gate.models import Market, Offer, OrderBook, Side
"""

# Market models
from exchange_gate.models.market import Asset, Market

# Order book models
from exchange_gate.models.orderbook import Offer, OrderBook, Side

# Order models
from exchange_gate.models.orders import (
    Execution,
    ExecutionCursor,
    OrderStatus,
    PlacedOrder,
)

# Account models
from exchange_gate.models.account import Balance, Position, RateLimitState, Trade

# Event models
from exchange_gate.models.events import EventKind, GatewayEvent, Severity

__all__ = [
    # Market
    "Asset",
    "Market",
    # Order book
    "Side",
    "Offer",
    "OrderBook",
    # Orders
    "OrderStatus",
    "PlacedOrder",
    "Execution",
    "ExecutionCursor",
    # Account
    "Trade",
    "Position",
    "Balance",
    "RateLimitState",
    # Events
    "Severity",
    "EventKind",
    "GatewayEvent",
]
