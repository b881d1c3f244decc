"""
Order book data models.

Models:
    Side: Bid or ask
    Offer: Single price level on one side of a market
    OrderBook: Immutable (asks, bids) snapshot of a market
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from exchange_gate.models.market import Market


class Side(str, Enum):
    """Book side."""

    BID = "bid"
    ASK = "ask"

    @classmethod
    def from_exchange(cls, value: str) -> "Side":
        """
        Map the exchange's "Buy"/"Sell" vocabulary to a book side.

        Raises:
            ValueError: If value is neither "Buy" nor "Sell".
        """
        if value == "Buy":
            return cls.BID
        if value == "Sell":
            return cls.ASK
        raise ValueError(f"Unknown side: {value!r}")

    @property
    def exchange_value(self) -> str:
        return "Buy" if self is Side.BID else "Sell"


class Offer(BaseModel):
    """
    Single price level.

    Value object: a new Offer is created whenever price or size changes.

    Attributes:
        side: Bid or ask.
        market: Market the level belongs to.
        price: Price quantized to the market tick.
        volume: Size at this level in contracts.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    side: Side
    market: Market
    price: Decimal = Field(..., ge=Decimal("0"))
    volume: Decimal = Field(..., ge=Decimal("0"))

    def with_volume(self, volume: Decimal) -> "Offer":
        """Return a copy of this level carrying a new size."""
        return Offer(side=self.side, market=self.market, price=self.price, volume=volume)


class OrderBook(BaseModel):
    """
    Point-in-time order book view.

    Both sides are sorted by ascending price, so the best bid is the last
    bid and the best ask is the first ask.

    Attributes:
        symbol: Market symbol.
        asks: Ask levels, ascending price.
        bids: Bid levels, ascending price.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    symbol: str = Field(..., min_length=1)
    asks: List[Offer] = Field(default_factory=list)
    bids: List[Offer] = Field(default_factory=list)

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[-1].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Average of best bid and best ask, or None if a side is empty."""
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / Decimal("2")
        return None

    @property
    def is_empty(self) -> bool:
        return not self.asks and not self.bids

    @classmethod
    def from_offers(cls, symbol: str, offers: List[Offer]) -> "OrderBook":
        """Split offers by side and sort both sides by ascending price."""
        asks = sorted((o for o in offers if o.side is Side.ASK), key=lambda o: o.price)
        bids = sorted((o for o in offers if o.side is Side.BID), key=lambda o: o.price)
        return cls(symbol=symbol, asks=asks, bids=bids)
