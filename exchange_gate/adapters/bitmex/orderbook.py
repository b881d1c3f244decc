"""
Order book synchronizer.

Maintains a live mirror of one market's order book from the orderBookL2
socket table, which uses a snapshot+diff protocol keyed by opaque level ids
and carries no sequence numbers.

State Machine:
    AWAITING_WELCOME -> AWAITING_SUBSCRIBE_ACK -> STREAMING
    CLOSED is terminal and reachable from any state.

    - AWAITING_WELCOME: first message must carry the greeting in "info".
    - AWAITING_SUBSCRIBE_ACK: next message must be
      {"success": true, "subscribe": "<table>:<symbol>"} for our topic.
    - STREAMING: {"table", "action", "data"} messages:
        partial  bulk load, only while the mirror is empty
        insert   new id -> (price, Offer)
        update   size change; price is taken from the stored entry
        delete   remove id

Anything else closes the socket and raises ProtocolViolation. There is no
resume: a closed synchronizer must be replaced.

Consistency:
    The rows of one message are staged and committed under a single
    asyncio.Lock that get_book() also takes, so a reader never observes a
    partially applied message.

Example:
    >>> sync = OrderBookSynchronizer(market, config.exchange)
    >>> await sync.start()
    >>> book = await sync.get_book()
    >>> print(book.best_bid, book.best_ask)
"""

import asyncio
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, NoReturn, Optional, Tuple

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.schemas import (
    L2Row,
    SubscribeAck,
    TableMessage,
    WelcomeMessage,
)
from exchange_gate.adapters.bitmex.websocket import BitmexWebSocketClient
from exchange_gate.config.models import ExchangeConfig
from exchange_gate.errors import ProtocolViolation
from exchange_gate.events import EventChannel
from exchange_gate.models.events import EventKind
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Offer, OrderBook

logger = structlog.get_logger(__name__)

Entry = Tuple[Decimal, Offer]


class _RowError(Exception):
    """Row-level violation detected while staging a message."""


class SyncState(str, Enum):
    """Synchronizer lifecycle state."""

    AWAITING_WELCOME = "awaiting_welcome"
    AWAITING_SUBSCRIBE_ACK = "awaiting_subscribe_ack"
    STREAMING = "streaming"
    CLOSED = "closed"


class OrderBookSynchronizer:
    """
    Socket-driven mirror of one market's order book.

    The message handler is the only writer of the id -> (price, Offer) map.

    Attributes:
        market: Market being mirrored.
        topic: Subscribed topic (e.g., "orderBookL2:XBTUSD").
        state: Current SyncState.
    """

    def __init__(
        self,
        market: Market,
        config: ExchangeConfig,
        client: Optional[BitmexWebSocketClient] = None,
        events: Optional[EventChannel] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            market: Market to mirror.
            config: Exchange configuration (socket URL, table, greeting).
            client: Socket client; created from config if None.
            events: Channel receiving protocol violations.
        """
        self.market = market
        self.config = config
        self.topic = config.subscribe_topic(market.symbol)
        self._client = client or BitmexWebSocketClient(
            url=config.websocket_url,
            topic=self.topic,
            ping_interval=config.connection.ping_interval_seconds,
            max_size=config.connection.max_message_size,
        )
        self._events = events or EventChannel()

        self._entries: Dict[int, Entry] = {}
        self._lock = asyncio.Lock()
        self._state = SyncState.AWAITING_WELCOME
        self._task: Optional[asyncio.Task] = None
        self._message_count = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not SyncState.CLOSED

    @property
    def message_count(self) -> int:
        """Number of messages accepted since construction."""
        return self._message_count

    async def start(self) -> None:
        """
        Connect the socket and start the background reader task.

        Raises:
            ConnectionError: If the socket cannot be opened or the
                synchronizer is already closed.
        """
        if self._state is SyncState.CLOSED:
            raise ConnectionError("Synchronizer is closed; create a new one")
        if self._task is not None:
            return

        await self._client.connect()
        self._task = asyncio.create_task(self.run())
        logger.info("orderbook_sync_started", symbol=self.market.symbol, topic=self.topic)

    async def run(self) -> None:
        """
        Consume socket messages until the connection ends or fails.

        A ProtocolViolation stops the loop; the synchronizer is then closed.
        """
        try:
            async for message in self._client.stream_messages():
                try:
                    await self.handle_message(message)
                except ProtocolViolation:
                    break
                if self._state is SyncState.CLOSED:
                    break
        finally:
            if self._state is not SyncState.CLOSED:
                logger.warning(
                    "orderbook_sync_stream_ended",
                    symbol=self.market.symbol,
                    state=self._state.value,
                )
                self._state = SyncState.CLOSED
                await self._client.disconnect()

    async def close(self) -> None:
        """
        Close the socket and make the synchronizer terminal. Idempotent.
        """
        if self._state is not SyncState.CLOSED:
            self._state = SyncState.CLOSED
            await self._client.disconnect()
            logger.info("orderbook_sync_closed", symbol=self.market.symbol)

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def get_book(self) -> OrderBook:
        """
        Snapshot the mirror as (asks, bids), both sorted by ascending price.
        """
        async with self._lock:
            offers = [offer for _, offer in self._entries.values()]
        return OrderBook.from_offers(self.market.symbol, offers)

    async def entries(self) -> Dict[int, Entry]:
        """Copy of the id -> (price, Offer) map."""
        async with self._lock:
            return dict(self._entries)

    # -------------------------------------------------------------------------
    # Message handling
    # -------------------------------------------------------------------------

    async def handle_message(self, message: Any) -> None:
        """
        Advance the state machine with one inbound message.

        Raises:
            ProtocolViolation: If the message is not a JSON object or is not
                valid for the current state; the socket is closed before
                raising.
        """
        if self._state is SyncState.CLOSED:
            logger.debug("orderbook_sync_message_after_close", symbol=self.market.symbol)
            return

        if not isinstance(message, dict):
            await self._fail(
                "message is not a JSON object",
                payload_type=type(message).__name__,
                payload=str(message)[:100],
            )

        if self._state is SyncState.AWAITING_WELCOME:
            await self._on_welcome(message)
        elif self._state is SyncState.AWAITING_SUBSCRIBE_ACK:
            await self._on_subscribe_ack(message)
        else:
            await self._on_table(message)

        self._message_count += 1

    async def _on_welcome(self, message: Dict[str, Any]) -> None:
        try:
            welcome = WelcomeMessage.model_validate(message)
        except ValidationError:
            await self._fail("expected welcome message", message_keys=sorted(message))
        if self.config.welcome_text not in welcome.info:
            await self._fail("unexpected greeting", info=welcome.info)

        self._state = SyncState.AWAITING_SUBSCRIBE_ACK
        logger.debug("orderbook_sync_welcomed", symbol=self.market.symbol)

    async def _on_subscribe_ack(self, message: Dict[str, Any]) -> None:
        try:
            ack = SubscribeAck.model_validate(message)
        except ValidationError:
            await self._fail("expected subscription result", message_keys=sorted(message))
        if not ack.success or ack.subscribe != self.topic:
            await self._fail(
                "subscription failed",
                subscribe=ack.subscribe,
                error=ack.error,
            )

        self._state = SyncState.STREAMING
        logger.info("orderbook_sync_subscribed", symbol=self.market.symbol, topic=self.topic)

    async def _on_table(self, message: Dict[str, Any]) -> None:
        try:
            update = TableMessage.model_validate(message)
        except ValidationError as e:
            await self._fail("malformed table message", error=str(e))
        if update.table != self.config.orderbook_table:
            await self._fail("unexpected table", table=update.table)

        reason: Optional[str] = None
        async with self._lock:
            try:
                if update.action == "partial":
                    self._entries = self._load_partial(update.data)
                elif update.action in ("insert", "update", "delete"):
                    self._apply_diff(update.action, update.data)
                else:
                    reason = f"unknown action {update.action!r}"
            except _RowError as e:
                reason = str(e)

        if reason is not None:
            await self._fail(reason, action=update.action, rows=len(update.data))

    def _load_partial(self, rows: List[L2Row]) -> Dict[int, Entry]:
        if self._entries:
            raise _RowError("partial received with a non-empty book")

        entries: Dict[int, Entry] = {}
        for row in rows:
            if row.id in entries:
                raise _RowError(f"duplicate id {row.id} in partial")
            entries[row.id] = self._new_entry(row)
        return entries

    def _apply_diff(self, action: str, rows: List[L2Row]) -> None:
        """Stage every row, then commit; nothing is written if a row fails."""
        staged: Dict[int, Optional[Entry]] = {}

        def current(level_id: int) -> Optional[Entry]:
            if level_id in staged:
                return staged[level_id]
            return self._entries.get(level_id)

        for row in rows:
            existing = current(row.id)

            if action == "insert":
                if existing is not None:
                    raise _RowError(f"insert of existing id {row.id}")
                staged[row.id] = self._new_entry(row)

            elif action == "update":
                if existing is None:
                    raise _RowError(f"update of unknown id {row.id}")
                if row.size is None:
                    raise _RowError(f"update without size for id {row.id}")
                price, offer = existing
                try:
                    staged[row.id] = (price, offer.with_volume(row.size))
                except ValueError as e:
                    raise _RowError(f"invalid size for id {row.id}: {e}") from e

            else:
                if existing is None:
                    raise _RowError(f"delete of unknown id {row.id}")
                staged[row.id] = None

        for level_id, entry in staged.items():
            if entry is None:
                self._entries.pop(level_id, None)
            else:
                self._entries[level_id] = entry

    def _new_entry(self, row: L2Row) -> Entry:
        if row.symbol is not None and row.symbol != self.market.symbol:
            raise _RowError(f"row for foreign symbol {row.symbol}")
        try:
            offer = BitmexNormalizer.normalize_offer(row, self.market)
        except ValueError as e:
            raise _RowError(str(e)) from e
        return offer.price, offer

    async def _fail(self, reason: str, **context: Any) -> NoReturn:
        """
        Report a protocol violation, close the socket and raise.

        Raises:
            ProtocolViolation: Always.
        """
        violation = ProtocolViolation(
            reason, context={"symbol": self.market.symbol, **context}
        )
        self._events.report(
            EventKind.PROTOCOL_VIOLATION,
            reason,
            cause=violation,
            symbol=self.market.symbol,
            state=self._state.value,
            **context,
        )
        await self.close()
        raise violation

    def __repr__(self) -> str:
        return (
            f"OrderBookSynchronizer(symbol={self.market.symbol}, "
            f"state={self._state.value}, levels={len(self._entries)})"
        )
