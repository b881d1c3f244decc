"""
Realtime socket client.

Manages one socket connection subscribed to a single topic through the
connection URL, e.g.:

    wss://ws.bitmex.com/realtime?subscribe=orderBookL2:XBTUSD

Connection Management:
    - Text "ping" keep-alive at a fixed interval; "pong" replies are dropped
    - No automatic reconnection: once closed the client is finished and a new
      one must be created
    - No read timeout

Example:
    >>> client = BitmexWebSocketClient(
    ...     url="wss://ws.bitmex.com/realtime",
    ...     topic="orderBookL2:XBTUSD",
    ... )
    >>> await client.connect()
    >>> async for message in client.stream_messages():
    ...     print(message)
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional
from urllib.parse import urlencode

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = structlog.get_logger(__name__)


class BitmexWebSocketClient:
    """
    Async socket client for one subscription topic.

    Attributes:
        url: Socket endpoint URL including the subscribe query.
        topic: Subscribed topic (e.g., "orderBookL2:XBTUSD").
        ping_interval: Seconds between text pings.
    """

    def __init__(
        self,
        url: str,
        topic: str,
        ping_interval: int = 5,
        max_size: int = 2**22,
        connector: Callable[..., Any] = websockets.connect,
    ):
        """
        Initialize socket client.

        Args:
            url: Socket endpoint URL without query string.
            topic: Topic passed in the subscribe query parameter.
            ping_interval: Seconds between text pings.
            max_size: Maximum inbound frame size in bytes.
            connector: Coroutine factory opening the connection.
        """
        self.topic = topic
        self.url = f"{url}?{urlencode({'subscribe': topic}, safe=':')}"
        self.ping_interval = ping_interval
        self.max_size = max_size
        self._connector = connector

        self._ws: Optional[Any] = None
        self._connected = False
        self._closed = False
        self._last_message_at: Optional[datetime] = None
        self._ping_task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        """Check if the socket is connected."""
        return self._connected and self._ws is not None

    @property
    def is_closed(self) -> bool:
        """True once disconnect() ran or the server closed the connection."""
        return self._closed

    @property
    def last_message_at(self) -> Optional[datetime]:
        """Get timestamp of last received message."""
        return self._last_message_at

    async def connect(self) -> None:
        """
        Open the socket and start the ping task.

        Raises:
            ConnectionError: If the connection cannot be opened or the client
                was already closed.
        """
        if self._closed:
            raise ConnectionError("Socket client is closed; create a new one")
        if self.is_connected:
            logger.debug("websocket_already_connected", url=self.url)
            return

        try:
            self._ws = await self._connector(
                self.url,
                ping_interval=None,  # text pings are sent manually
                ping_timeout=None,
                close_timeout=10,
                max_size=self.max_size,
            )
        except (OSError, WebSocketException) as e:
            logger.error("websocket_connection_failed", url=self.url, error=str(e))
            raise ConnectionError(f"Failed to connect to socket: {e}") from e

        self._connected = True
        self._ping_task = asyncio.create_task(self._send_pings())
        logger.info("websocket_connected", url=self.url, topic=self.topic)

    async def disconnect(self) -> None:
        """
        Close the connection. Safe to call multiple times.
        """
        self._closed = True

        if self._ping_task and not self._ping_task.done():
            self._ping_task.cancel()
            try:
                await self._ping_task
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            try:
                await self._ws.close()
                logger.info("websocket_disconnected", url=self.url, topic=self.topic)
            except (OSError, WebSocketException) as e:
                logger.warning("websocket_close_error", url=self.url, error=str(e))

        self._connected = False
        self._ws = None

    async def stream_messages(self) -> AsyncIterator[Any]:
        """
        Yield decoded frames until the connection ends.

        Only the "pong" keep-alive reply is dropped. A frame that is not
        valid JSON is yielded as its raw text so the consumer can reject it.

        Yields:
            Any: Parsed JSON value (normally a dict) or the undecodable frame.

        Raises:
            ConnectionError: If called before connect().
        """
        if not self.is_connected:
            raise ConnectionError("Cannot stream: not connected")

        while self.is_connected:
            try:
                raw_message = await self._ws.recv()
            except ConnectionClosed as e:
                logger.warning(
                    "websocket_connection_closed",
                    url=self.url,
                    code=e.rcvd.code if e.rcvd is not None else None,
                )
                break
            except WebSocketException as e:
                logger.error("websocket_error", url=self.url, error=str(e))
                break

            self._last_message_at = datetime.now(timezone.utc)

            if raw_message == "pong":
                logger.debug("websocket_pong_received", url=self.url)
                continue

            try:
                message = json.loads(raw_message)
            except ValueError as e:
                logger.warning(
                    "websocket_invalid_json",
                    url=self.url,
                    error=str(e),
                    message=str(raw_message)[:100],
                )
                message = raw_message

            yield message

        self._connected = False
        self._closed = True

    async def _send_pings(self) -> None:
        """Send text pings at the configured interval."""
        try:
            while self.is_connected:
                await asyncio.sleep(self.ping_interval)
                if self._ws is None:
                    break
                try:
                    await self._ws.send("ping")
                    logger.debug("websocket_ping_sent", url=self.url)
                except (OSError, WebSocketException) as e:
                    logger.error("websocket_ping_error", url=self.url, error=str(e))
                    break
        except asyncio.CancelledError:
            logger.debug("websocket_ping_task_cancelled", url=self.url)

    def __repr__(self) -> str:
        return (
            f"BitmexWebSocketClient(url={self.url}, "
            f"connected={self.is_connected})"
        )
