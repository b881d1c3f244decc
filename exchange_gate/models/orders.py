"""
Order and execution models.

Models:
    OrderStatus: Exchange order status values
    PlacedOrder: Order accepted by the exchange
    Execution: Single fill record
    ExecutionCursor: Resume point for incremental execution fetches
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Side


class OrderStatus(str, Enum):
    """Order status as reported in ordStatus."""

    NEW = "New"
    PARTIALLY_FILLED = "PartiallyFilled"
    FILLED = "Filled"
    CANCELED = "Canceled"
    REJECTED = "Rejected"


class PlacedOrder(BaseModel):
    """
    Order acknowledged by the exchange.

    Attributes:
        order_id: Server-assigned order identifier.
        market: Market the order rests on.
        side: Bid or ask.
        price: Limit price.
        volume: Order quantity in contracts.
        status: Last known order status.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    order_id: str = Field(..., min_length=1)
    market: Market
    side: Side
    price: Decimal
    volume: Decimal = Field(..., ge=Decimal("0"))
    status: OrderStatus = OrderStatus.NEW

    @property
    def signed_price(self) -> Decimal:
        """Price signed by side: positive for bids, negative for asks."""
        return self.price if self.side is Side.BID else -self.price


class Execution(BaseModel):
    """
    Single trade execution (fill).

    Attributes:
        order_id: Order that was filled.
        trade_id: Unique execution identifier (execID).
        market: Market of the fill.
        side: Side of our order.
        price: Fill price.
        volume: Gross volume derived from execCost.
        net_volume: Volume net of commission.
        quantity: Contracts filled (lastQty).
        timestamp: Exchange timestamp of the fill.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    order_id: str
    trade_id: str = Field(..., min_length=1)
    market: Market
    side: Side
    price: Decimal
    volume: Decimal
    net_volume: Decimal
    quantity: Decimal
    timestamp: datetime


class ExecutionCursor(BaseModel):
    """
    Last processed execution, used to resume without duplicates.

    Example:
        >>> cursor = ExecutionCursor.after(execution)
        >>> new_fills = await reconciler.executions_since(market, cursor)
    """

    model_config = {"frozen": True, "extra": "ignore"}

    trade_id: str = Field(..., min_length=1)
    timestamp: datetime

    @classmethod
    def after(cls, execution: Execution) -> "ExecutionCursor":
        return cls(trade_id=execution.trade_id, timestamp=execution.timestamp)
