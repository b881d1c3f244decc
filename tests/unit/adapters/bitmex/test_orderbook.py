"""Tests for the snapshot+diff order book synchronizer."""

import asyncio
from decimal import Decimal
from typing import Any, List

import pytest

from exchange_gate.adapters.bitmex.orderbook import OrderBookSynchronizer, SyncState
from exchange_gate.config.models import ExchangeConfig
from exchange_gate.errors import ProtocolViolation
from exchange_gate.events import EventChannel
from exchange_gate.models.events import EventKind, Severity
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Side
from tests.fakes import FakeSocketClient
from tests.messages import PARTIAL, SUBSCRIBED, WELCOME, row, table


@pytest.fixture
def client() -> FakeSocketClient:
    return FakeSocketClient()


@pytest.fixture
def sync(
    market: Market,
    exchange_config: ExchangeConfig,
    client: FakeSocketClient,
    events: EventChannel,
) -> OrderBookSynchronizer:
    return OrderBookSynchronizer(market, exchange_config, client=client, events=events)


async def subscribe(sync: OrderBookSynchronizer) -> None:
    await sync.handle_message(WELCOME)
    await sync.handle_message(SUBSCRIBED)


def prices(offers) -> List[Decimal]:
    return [offer.price for offer in offers]


def volumes(book) -> tuple:
    return [o.volume for o in book.asks], [o.volume for o in book.bids]


class TestHandshake:
    """AWAITING_WELCOME -> AWAITING_SUBSCRIBE_ACK -> STREAMING."""

    @pytest.mark.asyncio
    async def test_welcome_then_ack_reaches_streaming(self, sync: OrderBookSynchronizer) -> None:
        assert sync.state is SyncState.AWAITING_WELCOME

        await sync.handle_message(WELCOME)
        assert sync.state is SyncState.AWAITING_SUBSCRIBE_ACK

        await sync.handle_message(SUBSCRIBED)
        assert sync.state is SyncState.STREAMING
        assert sync.message_count == 2

    @pytest.mark.asyncio
    async def test_table_before_welcome_is_violation(
        self, sync: OrderBookSynchronizer, client: FakeSocketClient, events: EventChannel
    ) -> None:
        # When: data arrives before the greeting
        with pytest.raises(ProtocolViolation):
            await sync.handle_message(PARTIAL)

        # Then: the synchronizer is terminal, the socket closed, a fatal event reported
        assert sync.state is SyncState.CLOSED
        assert not sync.is_active
        assert client.disconnect_calls == 1
        [event] = events.history
        assert event.kind is EventKind.PROTOCOL_VIOLATION
        assert event.severity is Severity.FATAL
        assert event.context["symbol"] == "XBTUSD"
        assert isinstance(event.error, ProtocolViolation)

    @pytest.mark.asyncio
    async def test_wrong_greeting_is_violation(self, sync: OrderBookSynchronizer) -> None:
        with pytest.raises(ProtocolViolation):
            await sync.handle_message({"info": "Hello"})

        assert sync.state is SyncState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_subscription_is_violation(self, sync: OrderBookSynchronizer) -> None:
        await sync.handle_message(WELCOME)

        with pytest.raises(ProtocolViolation):
            await sync.handle_message(
                {"success": False, "error": "Unknown table: orderBookL3"}
            )

        assert sync.state is SyncState.CLOSED

    @pytest.mark.asyncio
    async def test_ack_for_another_topic_is_violation(self, sync: OrderBookSynchronizer) -> None:
        await sync.handle_message(WELCOME)

        with pytest.raises(ProtocolViolation):
            await sync.handle_message({"success": True, "subscribe": "orderBookL2:ETHUSD"})

    @pytest.mark.asyncio
    async def test_messages_after_close_are_ignored(self, sync: OrderBookSynchronizer) -> None:
        await sync.close()

        await sync.handle_message(WELCOME)

        assert sync.state is SyncState.CLOSED
        assert sync.message_count == 0


class TestSnapshotAndDiffs:
    """Applying partial, insert, update and delete messages."""

    @pytest.mark.asyncio
    async def test_partial_update_delete_sequence(self, sync: OrderBookSynchronizer) -> None:
        # Given: a streaming synchronizer loaded with a partial
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        # When: one level's size changes and another is removed
        await sync.handle_message(table("update", [row(2, "Sell", 8)]))
        await sync.handle_message(table("delete", [row(4, "Buy")]))

        # Then: both sides are ascending and reflect the diffs
        book = await sync.get_book()
        assert prices(book.asks) == [Decimal("100.5"), Decimal("101.0")]
        assert [o.volume for o in book.asks] == [Decimal("8"), Decimal("10")]
        assert prices(book.bids) == [Decimal("100.0")]
        assert book.best_bid == Decimal("100.0")
        assert book.best_ask == Decimal("100.5")

    @pytest.mark.asyncio
    async def test_partial_builds_both_sides_ascending(
        self, sync: OrderBookSynchronizer
    ) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        book = await sync.get_book()

        assert prices(book.asks) == [Decimal("100.5"), Decimal("101.0")]
        assert prices(book.bids) == [Decimal("99.5"), Decimal("100.0")]
        assert all(o.side is Side.ASK for o in book.asks)
        assert all(o.side is Side.BID for o in book.bids)

    @pytest.mark.asyncio
    async def test_insert_adds_level(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await sync.handle_message(table("insert", [row(5, "Buy", 2, 100.2)]))

        book = await sync.get_book()
        assert book.best_bid == Decimal("100.2")
        assert len(await sync.entries()) == 5

    @pytest.mark.asyncio
    async def test_update_keeps_stored_price(self, sync: OrderBookSynchronizer) -> None:
        # Given: an update row that carries no price
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await sync.handle_message(table("update", [row(3, "Buy", 11)]))

        # Then: the level keeps its original price
        price, offer = (await sync.entries())[3]
        assert price == Decimal("100.0")
        assert offer.price == Decimal("100.0")
        assert offer.volume == Decimal("11")

    @pytest.mark.asyncio
    async def test_prices_are_quantized_to_tick(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)

        await sync.handle_message(table("partial", [row(1, "Sell", 1, "100.04")]))

        book = await sync.get_book()
        assert book.asks[0].price == Decimal("100.0")

    @pytest.mark.asyncio
    async def test_empty_partial_is_accepted(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)

        await sync.handle_message(table("partial", []))

        assert (await sync.get_book()).is_empty
        assert sync.state is SyncState.STREAMING

    @pytest.mark.asyncio
    async def test_delete_of_several_levels_in_one_message(
        self, sync: OrderBookSynchronizer
    ) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await sync.handle_message(table("delete", [row(1, "Sell"), row(2, "Sell")]))

        assert (await sync.get_book()).asks == []


class TestViolations:
    """Invalid diffs terminate the synchronizer and leave the mirror untouched."""

    async def assert_violation(
        self, sync: OrderBookSynchronizer, message: Any
    ) -> None:
        before = await sync.entries()

        with pytest.raises(ProtocolViolation):
            await sync.handle_message(message)

        assert sync.state is SyncState.CLOSED
        assert await sync.entries() == before

    @pytest.mark.asyncio
    async def test_update_of_unknown_id(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("update", [row(99, "Buy", 1)]))

    @pytest.mark.asyncio
    async def test_delete_of_unknown_id(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("delete", [row(99, "Buy")]))

    @pytest.mark.asyncio
    async def test_insert_of_existing_id(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("insert", [row(1, "Sell", 1, 105.0)]))

    @pytest.mark.asyncio
    async def test_failed_row_discards_whole_message(self, sync: OrderBookSynchronizer) -> None:
        # Given: a valid update followed by an update of an unknown id
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        # Then: neither row is applied
        await self.assert_violation(
            sync, table("update", [row(1, "Sell", 999), row(99, "Sell", 1)])
        )

    @pytest.mark.asyncio
    async def test_second_partial_on_non_empty_book(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, PARTIAL)

    @pytest.mark.asyncio
    async def test_duplicate_id_in_partial(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)

        await self.assert_violation(
            sync, table("partial", [row(1, "Sell", 1, 101.0), row(1, "Sell", 2, 102.0)])
        )

    @pytest.mark.asyncio
    async def test_unknown_action(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("replace", [row(1, "Sell", 1, 101.0)]))

    @pytest.mark.asyncio
    async def test_unexpected_table(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)

        await self.assert_violation(
            sync, {"table": "trade", "action": "insert", "data": []}
        )

    @pytest.mark.asyncio
    async def test_row_for_foreign_symbol(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        foreign = dict(row(1, "Sell", 1, 101.0), symbol="ETHUSD")

        await self.assert_violation(sync, table("partial", [foreign]))

    @pytest.mark.asyncio
    async def test_insert_without_size(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("insert", [row(5, "Buy", price=99.0)]))

    @pytest.mark.asyncio
    async def test_update_with_negative_size(
        self, sync: OrderBookSynchronizer, events: EventChannel
    ) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, table("update", [row(3, "Buy", -5)]))
        assert len(events.of_kind(EventKind.PROTOCOL_VIOLATION)) == 1

    @pytest.mark.asyncio
    async def test_undecodable_text_while_streaming(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, "{truncated diff")

    @pytest.mark.asyncio
    async def test_json_array_while_streaming(self, sync: OrderBookSynchronizer) -> None:
        await subscribe(sync)
        await sync.handle_message(PARTIAL)

        await self.assert_violation(sync, [1, 2])

    @pytest.mark.asyncio
    async def test_undecodable_first_frame(self, sync: OrderBookSynchronizer) -> None:
        await self.assert_violation(sync, "Welcome to the BitMEX Realtime API.")


class TestLifecycle:
    """Background reading and closing."""

    @pytest.mark.asyncio
    async def test_run_consumes_stream_then_closes(
        self, market: Market, exchange_config: ExchangeConfig
    ) -> None:
        # Given: a socket that delivers a handshake and a partial, then ends
        client = FakeSocketClient([WELCOME, SUBSCRIBED, PARTIAL])
        sync = OrderBookSynchronizer(market, exchange_config, client=client)

        # When: the reader runs to completion
        await sync.run()

        # Then: the mirror holds the partial and the synchronizer is terminal
        assert sync.state is SyncState.CLOSED
        assert len(await sync.entries()) == 4
        assert client.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_run_stops_at_first_violation(
        self, market: Market, exchange_config: ExchangeConfig, events: EventChannel
    ) -> None:
        client = FakeSocketClient([PARTIAL, WELCOME])
        sync = OrderBookSynchronizer(market, exchange_config, client=client, events=events)

        await sync.run()

        assert sync.state is SyncState.CLOSED
        assert sync.message_count == 0
        assert len(events.of_kind(EventKind.PROTOCOL_VIOLATION)) == 1

    @pytest.mark.asyncio
    async def test_run_terminates_on_malformed_frame_after_partial(
        self, market: Market, exchange_config: ExchangeConfig, events: EventChannel
    ) -> None:
        # Given: a truncated diff arrives between the partial and a valid update
        client = FakeSocketClient(
            [
                WELCOME,
                SUBSCRIBED,
                PARTIAL,
                "{truncated diff",
                [1, 2],
                table("update", [row(3, "Buy", 9)]),
            ]
        )
        sync = OrderBookSynchronizer(market, exchange_config, client=client, events=events)

        # When
        await sync.run()

        # Then: the mirror stops at the partial instead of silently skipping ahead
        assert sync.state is SyncState.CLOSED
        assert sync.message_count == 3
        assert (await sync.entries())[3][1].volume == Decimal("7")
        [event] = events.of_kind(EventKind.PROTOCOL_VIOLATION)
        assert event.context["payload_type"] == "str"

    @pytest.mark.asyncio
    async def test_start_connects_and_closed_sync_cannot_restart(
        self, sync: OrderBookSynchronizer, client: FakeSocketClient
    ) -> None:
        await sync.start()
        assert client.connect_calls == 1

        await sync.close()
        await sync.close()

        assert client.disconnect_calls >= 1
        with pytest.raises(ConnectionError):
            await sync.start()

    def test_topic_follows_table_and_symbol(self, sync: OrderBookSynchronizer) -> None:
        assert sync.topic == "orderBookL2:XBTUSD"


class TestConsistency:
    """Readers never observe a partially applied message."""

    @pytest.mark.asyncio
    async def test_concurrent_reads_see_whole_messages(
        self, sync: OrderBookSynchronizer
    ) -> None:
        # Given: a loaded book and a message touching both sides
        await subscribe(sync)
        await sync.handle_message(PARTIAL)
        before = volumes(await sync.get_book())
        update = table("update", [row(1, "Sell", 20), row(4, "Buy", 30), row(2, "Sell", 6)])

        async def read(delay_ticks: int) -> tuple:
            for _ in range(delay_ticks):
                await asyncio.sleep(0)
            return volumes(await sync.get_book())

        # When: the message is applied while readers snapshot the book
        results = await asyncio.gather(
            read(0), read(1), sync.handle_message(update), read(0), read(2)
        )
        after = volumes(await sync.get_book())

        # Then: every snapshot is either entirely before or entirely after
        assert after == ([6, 20], [30, 7])
        snapshots = [r for i, r in enumerate(results) if i != 2]
        assert all(s in (before, after) for s in snapshots)
