"""
Gateway runner entry point.

Loads configuration, starts a streaming order book for every configured
symbol and logs the top of book once per interval until interrupted.

Usage:
    python -m exchange_gate
    exchange-gate

Environment Variables:
    CONFIG_PATH: Path to config directory (default: config)
    LOG_LEVEL: Logging level (default: INFO)
    BITMEX_API_KEY / BITMEX_API_SECRET: Optional credentials
    GATE_SYMBOLS: Comma-separated symbols overriding the config file
"""

import asyncio
import os
import signal
import sys
from typing import List, Optional

import structlog

from exchange_gate import __version__
from exchange_gate.adapters.bitmex import BitmexAdapter
from exchange_gate.config import AppConfig, ConfigLoadError, load_config
from exchange_gate.errors import GatewayError
from exchange_gate.log import setup_logging
from exchange_gate.models.events import GatewayEvent

logger = structlog.get_logger(__name__)


class GatewayRunner:
    """
    Runs the adapter's streaming feeds until shutdown.

    Attributes:
        adapter: The exchange adapter.
        shutdown_event: Set by SIGINT/SIGTERM or stop().
    """

    def __init__(
        self,
        config: AppConfig,
        adapter: Optional[BitmexAdapter] = None,
        report_interval: float = 1.0,
    ):
        self.config = config
        self.adapter = adapter or BitmexAdapter(config)
        self.report_interval = report_interval
        self.shutdown_event = asyncio.Event()
        self.adapter.events.subscribe(self._on_event)

    def _on_event(self, event: GatewayEvent) -> None:
        if event.is_fatal:
            logger.error(
                "stream_terminated",
                kind=event.kind.value,
                error_type=type(event.error).__name__,
                symbol=event.context.get("symbol"),
            )

    def stop(self) -> None:
        self.shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                # Not supported on this platform's event loop
                pass

    async def _start_feeds(self) -> List[str]:
        started = []
        for symbol in self.config.symbols:
            try:
                await self.adapter.start_streaming(symbol)
                started.append(symbol)
            except (KeyError, ConnectionError) as e:
                logger.error("stream_start_failed", symbol=symbol, error=str(e))
        return started

    async def _report_books(self, symbols: List[str]) -> None:
        for symbol in symbols:
            try:
                book = await self.adapter.get_book(symbol)
            except GatewayError as e:
                logger.warning("book_unavailable", symbol=symbol, error=e.message)
                continue
            logger.info(
                "top_of_book",
                symbol=symbol,
                best_bid=str(book.best_bid) if book.best_bid is not None else None,
                best_ask=str(book.best_ask) if book.best_ask is not None else None,
                bid_levels=len(book.bids),
                ask_levels=len(book.asks),
            )

    async def run(self) -> None:
        """Load markets, start feeds and report until shutdown."""
        self._install_signal_handlers()
        try:
            await self.adapter.load_markets()
            symbols = await self._start_feeds()
            if not symbols:
                logger.warning("no_streams_started", configured=self.config.symbols)

            while not self.shutdown_event.is_set():
                await self._report_books(symbols)
                try:
                    await asyncio.wait_for(
                        self.shutdown_event.wait(), timeout=self.report_interval
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.adapter.close()
            logger.info("gateway_stopped")


async def run() -> None:
    config_path = os.getenv("CONFIG_PATH", "config")
    config = load_config(config_path)
    setup_logging(config.logging)

    logger.info(
        "gateway_starting",
        version=__version__,
        config_path=config_path,
        symbols=config.symbols,
    )
    await GatewayRunner(config).run()


def main() -> None:
    """Console script entry point."""
    try:
        asyncio.run(run())
    except ConfigLoadError as e:
        logger.error("config_load_failed", error=str(e))
        sys.exit(2)
    except GatewayError as e:
        logger.error("gateway_failed", error=e.message, status=e.status)
        sys.exit(1)


if __name__ == "__main__":
    main()
