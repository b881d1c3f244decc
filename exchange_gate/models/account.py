"""
Account and public market data models.

Models:
    Trade: Public trade print
    Position: Open position
    Balance: Wallet balance for one asset
    RateLimitState: Server-reported request quota
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from exchange_gate.models.orderbook import Side


class Trade(BaseModel):
    """Public trade print from the trade endpoint."""

    model_config = {"frozen": True, "extra": "ignore"}

    symbol: str
    side: Side
    timestamp: datetime
    size: Decimal = Field(..., ge=Decimal("0"))
    price: Decimal


class Position(BaseModel):
    """
    Open position.

    Attributes:
        symbol: Market symbol.
        quantity: Signed contract count (negative for shorts).
        avg_entry_price: Average entry price, None when flat.
        cost: Position cost in settlement units scaled to the market precision.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    symbol: str
    quantity: Decimal
    avg_entry_price: Optional[Decimal] = None
    cost: Decimal = Decimal("0")


class Balance(BaseModel):
    """Wallet balance for one asset, in whole units."""

    model_config = {"frozen": True, "extra": "ignore"}

    asset: str
    amount: Decimal


class RateLimitState(BaseModel):
    """
    Remaining request quota reported by the exchange.

    Refreshed from the x-ratelimit-* headers of every REST response.

    Attributes:
        remaining: Requests left in the current window.
        limit: Window size, if reported.
        reset_at: Unix time at which the window resets, if reported.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    remaining: int
    limit: Optional[int] = None
    reset_at: Optional[int] = None
