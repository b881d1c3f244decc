"""
BitMEX exchange adapter.

Facade that implements the ExchangeAdapter interface on top of the
components in this package:

    - BitmexRestClient        signed, self-throttling transport
    - StaticMarket /
      StreamingMarket         order book reads (REST or realtime mirror)
    - OrderLifecycleManager   maker-only placement and idempotent cancel
    - ExecutionReconciler     cursor-based fill history
    - RateLimitMonitor        quote fill ratio samples

Books are served from a streaming feed when one has been started for the
symbol and is still active, otherwise from REST.

Example:
    >>> from exchange_gate.adapters.bitmex import BitmexAdapter
    >>> from exchange_gate.config import load_config
    >>>
    >>> config = load_config()
    >>> adapter = BitmexAdapter(config)
    >>> await adapter.load_markets()
    >>> await adapter.start_streaming("XBTUSD")
    >>> book = await adapter.get_book("XBTUSD")
    >>> print(book.best_bid, book.best_ask)
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.executions import ExecutionReconciler, format_timestamp
from exchange_gate.adapters.bitmex.markets import MarketFeed, StaticMarket, StreamingMarket
from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.orders import OrderLifecycleManager
from exchange_gate.adapters.bitmex.ratelimit import RateLimitMonitor
from exchange_gate.adapters.bitmex.rest import BitmexRestClient
from exchange_gate.adapters.bitmex.schemas import (
    InstrumentRecord,
    PositionRecord,
    TradeRecord,
    WalletRecord,
    parse_records,
)
from exchange_gate.config.models import AppConfig, Credentials
from exchange_gate.errors import ClientRequestError, GatewayError, TransportError
from exchange_gate.events import EventChannel
from exchange_gate.interfaces.exchange_adapter import ExchangeAdapter
from exchange_gate.models.account import Balance, Position, Trade
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Offer, OrderBook
from exchange_gate.models.orders import Execution, ExecutionCursor, PlacedOrder

logger = structlog.get_logger(__name__)


class BitmexAdapter(ExchangeAdapter):
    """
    BitMEX adapter implementing ExchangeAdapter.

    Attributes:
        exchange_name: Configured exchange name ("bitmex").
        events: Channel receiving every anomaly raised by the components.
        markets: Markets loaded by load_markets(), keyed by symbol.

    Example:
        >>> adapter = BitmexAdapter(config, events=EventChannel())
        >>> await adapter.load_markets()
        >>> placed = await adapter.post_offer(offer)
    """

    def __init__(
        self,
        config: AppConfig,
        rest: Optional[BitmexRestClient] = None,
        events: Optional[EventChannel] = None,
    ):
        """
        Initialize BitMEX adapter.

        Args:
            config: Application configuration; credentials may be None for
                public-only use.
            rest: Transport to use; one is built from config.exchange if None.
            events: Event channel shared by all components.
        """
        self._config = config
        self._exchange = config.exchange
        self._credentials = config.credentials
        self.events = events or EventChannel()
        self._rest = rest or BitmexRestClient(self._exchange)

        self.markets: Dict[str, Market] = {}
        self._mark_prices: Dict[str, Decimal] = {}
        self._feeds: Dict[str, StreamingMarket] = {}

        self._orders: Optional[OrderLifecycleManager] = None
        self._reconciler: Optional[ExecutionReconciler] = None
        self._monitor: Optional[RateLimitMonitor] = None
        self._closed = False

        logger.info(
            "bitmex_adapter_initialized",
            exchange=self._exchange.name,
            authenticated=self._credentials is not None,
        )

    @property
    def exchange_name(self) -> str:
        return self._exchange.name

    @property
    def rest(self) -> BitmexRestClient:
        return self._rest

    def _require_credentials(self, operation: str) -> Credentials:
        if self._credentials is None:
            raise ClientRequestError(
                f"{operation} requires API credentials",
                context={"operation": operation},
            )
        return self._credentials

    @property
    def orders(self) -> OrderLifecycleManager:
        if self._orders is None:
            self._orders = OrderLifecycleManager(
                self._rest,
                self._exchange,
                self._require_credentials("order management"),
                events=self.events,
            )
        return self._orders

    @property
    def reconciler(self) -> ExecutionReconciler:
        if self._reconciler is None:
            self._reconciler = ExecutionReconciler(
                self._rest,
                self._exchange,
                self._require_credentials("execution history"),
                events=self.events,
            )
        return self._reconciler

    @property
    def monitor(self) -> RateLimitMonitor:
        if self._monitor is None:
            self._monitor = RateLimitMonitor(
                self._rest,
                self._require_credentials("quote fill ratio"),
                events=self.events,
            )
        return self._monitor

    # =========================================================================
    # Market metadata
    # =========================================================================

    async def _active_instruments(self) -> List[InstrumentRecord]:
        response = await self._rest.request("GET", "instrument/active")
        if response.error is not None:
            raise response.error

        records: List[InstrumentRecord] = []
        for raw in response.payload or []:
            try:
                records.append(InstrumentRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "bitmex_instrument_skipped",
                    symbol=raw.get("symbol") if isinstance(raw, dict) else None,
                    error=str(e),
                )
        return records

    @staticmethod
    def _collect_mark_prices(records: List[InstrumentRecord]) -> Dict[str, Decimal]:
        return {r.symbol: r.mark_price for r in records if r.mark_price is not None}

    async def load_markets(self) -> Dict[str, Market]:
        """
        Refresh market metadata from GET instrument/active.

        Also refreshes the mark price cache from the same response.

        Raises:
            GatewayError: If the request fails.
        """
        records = await self._active_instruments()
        self.markets = {
            record.symbol: BitmexNormalizer.normalize_market(record) for record in records
        }
        self._mark_prices = self._collect_mark_prices(records)

        logger.info("bitmex_markets_loaded", count=len(self.markets))
        return dict(self.markets)

    def get_market(self, symbol: str) -> Market:
        try:
            return self.markets[symbol]
        except KeyError:
            raise KeyError(f"Unknown market {symbol!r}; call load_markets() first") from None

    async def mark_prices(self) -> Dict[str, Decimal]:
        records = await self._active_instruments()
        self._mark_prices = self._collect_mark_prices(records)
        return dict(self._mark_prices)

    # =========================================================================
    # Order books
    # =========================================================================

    async def start_streaming(self, symbol: str) -> StreamingMarket:
        """
        Start mirroring a market's book over the realtime socket.

        Returns the running feed if one is already active. A feed whose
        synchronizer has closed is replaced by a fresh one.
        """
        feed = self._feeds.get(symbol)
        if feed is not None and feed.is_active:
            return feed

        feed = StreamingMarket(self.get_market(symbol), self._exchange, events=self.events)
        await feed.start()
        self._feeds[symbol] = feed
        logger.info("bitmex_streaming_started", symbol=symbol)
        return feed

    def market_feed(self, symbol: str) -> MarketFeed:
        """Active streaming feed for the symbol, else a REST-backed one."""
        feed = self._feeds.get(symbol)
        if feed is not None and feed.is_active:
            return feed
        return StaticMarket(
            self.get_market(symbol), self._rest, depth=self._exchange.orderbook_depth
        )

    async def get_book(self, symbol: str) -> OrderBook:
        return await self.market_feed(symbol).get_book()

    # =========================================================================
    # Public trades and account views
    # =========================================================================

    async def trades_since(self, symbol: str, since: datetime) -> List[Trade]:
        """
        Public trades from GET trade starting at `since`.

        Raises:
            GatewayError: If the request fails.
        """
        response = await self._rest.request(
            "GET",
            "trade",
            {"symbol": symbol, "startTime": format_timestamp(since)},
        )
        if response.error is not None:
            raise response.error

        try:
            records = parse_records(TradeRecord, response.payload or [])
        except ValidationError as e:
            raise TransportError(f"Invalid trade response: {e}") from e
        return [BitmexNormalizer.normalize_trade(r) for r in records]

    async def account_positions(self) -> List[Position]:
        """
        Open positions from GET position.

        Costs are scaled by the market's price precision when the market is
        loaded, otherwise left raw.
        """
        response = await self._rest.request(
            "GET",
            "position",
            {"filter": {"isOpen": True}},
            credentials=self._require_credentials("account positions"),
        )
        if response.error is not None:
            raise response.error

        try:
            records = parse_records(PositionRecord, response.payload or [])
        except ValidationError as e:
            raise TransportError(f"Invalid position response: {e}") from e
        return [
            BitmexNormalizer.normalize_position(r, self.markets.get(r.symbol))
            for r in records
        ]

    async def account_balances(self) -> List[Balance]:
        """Wallet balances from GET user/wallet."""
        response = await self._rest.request(
            "GET",
            "user/wallet",
            credentials=self._require_credentials("account balances"),
        )
        if response.error is not None:
            raise response.error

        payload = response.payload
        if isinstance(payload, dict):
            payload = [payload]
        try:
            records = parse_records(WalletRecord, payload or [])
        except ValidationError as e:
            raise TransportError(f"Invalid wallet response: {e}") from e
        return [BitmexNormalizer.normalize_balance(r) for r in records]

    # =========================================================================
    # Orders, executions, fill ratio
    # =========================================================================

    async def placed_offers(self, symbol: str) -> List[PlacedOrder]:
        return await self.orders.placed_offers(self.get_market(symbol))

    async def post_offer(self, offer: Offer) -> Optional[PlacedOrder]:
        return await self.orders.post_offer(offer)

    async def cancel_offer(self, order: PlacedOrder) -> bool:
        return await self.orders.cancel_offer(order)

    async def execution_since(
        self, symbol: str, cursor: Optional[ExecutionCursor] = None
    ) -> List[Execution]:
        return await self.reconciler.executions_since(self.get_market(symbol), cursor)

    async def quote_fill_ratio(self) -> List[float]:
        """Finite quote fill ratio samples (7-day moving average)."""
        return await self.monitor.sample()

    async def gate_request(
        self,
        verb: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Any, Optional[GatewayError]]:
        response = await self._rest.request(
            verb, endpoint, params, credentials=self._credentials
        )
        return response.payload, response.error

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Close every streaming feed, then the HTTP session."""
        if self._closed:
            return
        self._closed = True

        for symbol, feed in list(self._feeds.items()):
            await feed.close()
            logger.debug("bitmex_streaming_stopped", symbol=symbol)
        self._feeds.clear()
        await self._rest.close()

        logger.info("bitmex_adapter_closed", exchange=self._exchange.name)
