"""
BitMEX exchange adapter.

This package provides BitMEX integration: signed REST transport with
self-throttling, a realtime order book mirror, maker-only order management,
execution reconciliation and quote fill ratio sampling.

Components:
    - BitmexRestClient: Signed REST transport
    - BitmexWebSocketClient: Realtime socket connection
    - OrderBookSynchronizer: Snapshot+diff order book mirror
    - StaticMarket / StreamingMarket: Order book read variants
    - OrderLifecycleManager: Order placement and cancellation
    - ExecutionReconciler: Incremental fill history
    - RateLimitMonitor: Quote fill ratio sampler
    - BitmexNormalizer: Wire record to domain model conversion
    - BitmexAdapter: Facade implementing ExchangeAdapter

Example:
    >>> from exchange_gate.adapters.bitmex import BitmexAdapter
    >>> from exchange_gate.config import load_config
    >>>
    >>> adapter = BitmexAdapter(load_config())
    >>> await adapter.load_markets()
    >>> book = await adapter.get_book("XBTUSD")
"""

from exchange_gate.adapters.bitmex.adapter import BitmexAdapter
from exchange_gate.adapters.bitmex.executions import ExecutionReconciler
from exchange_gate.adapters.bitmex.markets import (
    FeedKind,
    MarketFeed,
    StaticMarket,
    StreamingMarket,
)
from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.orderbook import OrderBookSynchronizer, SyncState
from exchange_gate.adapters.bitmex.orders import OrderLifecycleManager
from exchange_gate.adapters.bitmex.ratelimit import RateLimitMonitor
from exchange_gate.adapters.bitmex.rest import BitmexRestClient, RestResponse
from exchange_gate.adapters.bitmex.websocket import BitmexWebSocketClient

__all__ = [
    "BitmexAdapter",
    "BitmexNormalizer",
    "BitmexRestClient",
    "BitmexWebSocketClient",
    "ExecutionReconciler",
    "FeedKind",
    "MarketFeed",
    "OrderBookSynchronizer",
    "OrderLifecycleManager",
    "RateLimitMonitor",
    "RestResponse",
    "StaticMarket",
    "StreamingMarket",
    "SyncState",
]
