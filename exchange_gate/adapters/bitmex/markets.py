"""
Market feed variants.

A market's order book can be read two ways, modeled as a tagged variant over
a common MarketFeed interface:

    StaticMarket     forwards every get_book() to GET orderBook/L2
    StreamingMarket  owns an OrderBookSynchronizer and reads its mirror

Example:
    >>> feed = StreamingMarket(market, config.exchange, events=channel)
    >>> await feed.start()
    >>> book = await feed.get_book()
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.orderbook import OrderBookSynchronizer
from exchange_gate.adapters.bitmex.rest import BitmexRestClient
from exchange_gate.adapters.bitmex.schemas import L2Row, parse_records
from exchange_gate.config.models import ExchangeConfig
from exchange_gate.errors import GatewayError, TransportError
from exchange_gate.events import EventChannel
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import OrderBook

logger = structlog.get_logger(__name__)


class FeedKind(str, Enum):
    """Variant tag of a MarketFeed."""

    STATIC = "static"
    STREAMING = "streaming"


class MarketFeed(ABC):
    """
    Common capability of both market variants.

    Attributes:
        market: Market descriptor.
        kind: Variant tag.
    """

    kind: FeedKind

    def __init__(self, market: Market):
        self.market = market

    @abstractmethod
    async def get_book(self) -> OrderBook:
        """
        Return the current order book.

        Both sides are sorted by ascending price.

        Raises:
            GatewayError: If the book cannot be produced (REST failure for
                the static variant, closed synchronizer for streaming).
        """
        pass

    async def close(self) -> None:
        """Release resources held by the feed. No-op by default."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(symbol={self.market.symbol}, kind={self.kind.value})"


class StaticMarket(MarketFeed):
    """Market whose book is fetched over REST on every read."""

    kind = FeedKind.STATIC

    def __init__(self, market: Market, rest: BitmexRestClient, depth: int = 0):
        super().__init__(market)
        self._rest = rest
        self._depth = depth

    async def get_book(self) -> OrderBook:
        response = await self._rest.request(
            "GET",
            "orderBook/L2",
            {"symbol": self.market.symbol, "depth": self._depth},
        )
        if response.error is not None:
            raise response.error

        try:
            rows = parse_records(L2Row, response.payload or [])
            offers = [BitmexNormalizer.normalize_offer(row, self.market) for row in rows]
        except (ValidationError, ValueError) as e:
            logger.error(
                "rest_orderbook_parse_error",
                symbol=self.market.symbol,
                error=str(e),
            )
            raise TransportError(f"Invalid order book response: {e}") from e

        logger.debug(
            "rest_orderbook_fetched",
            symbol=self.market.symbol,
            levels=len(offers),
        )
        return OrderBook.from_offers(self.market.symbol, offers)


class StreamingMarket(MarketFeed):
    """Market whose book is mirrored from the realtime socket."""

    kind = FeedKind.STREAMING

    def __init__(
        self,
        market: Market,
        config: ExchangeConfig,
        events: Optional[EventChannel] = None,
        synchronizer: Optional[OrderBookSynchronizer] = None,
    ):
        super().__init__(market)
        self.synchronizer = synchronizer or OrderBookSynchronizer(
            market, config, events=events
        )

    @property
    def is_active(self) -> bool:
        return self.synchronizer.is_active

    async def start(self) -> None:
        await self.synchronizer.start()

    async def get_book(self) -> OrderBook:
        if not self.synchronizer.is_active:
            raise GatewayError(
                f"Order book stream for {self.market.symbol} is closed",
                context={"symbol": self.market.symbol},
            )
        return await self.synchronizer.get_book()

    async def close(self) -> None:
        await self.synchronizer.close()
