"""
Execution reconciliation.

Fetches fills incrementally from GET execution/tradeHistory.

Cursoring:
    The request starts at the cursor's timestamp (inclusive), so the cursor
    record itself comes back; every record up to and including the cursor
    trade id is discarded. Without a cursor the request starts a fixed
    look-back window before now and everything is returned.

    This is gap- and duplicate-free only while the server window still
    contains the cursor and returns records in stable chronological order.
    If the cursor is missing from the batch, all records are returned and a
    RECONCILIATION_GAP advisory is reported; nothing is corrected.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.rest import BitmexRestClient
from exchange_gate.adapters.bitmex.schemas import ExecutionRecord, parse_records
from exchange_gate.config.models import Credentials, ExchangeConfig
from exchange_gate.errors import TransportError
from exchange_gate.events import EventChannel
from exchange_gate.models.events import EventKind
from exchange_gate.models.market import Market
from exchange_gate.models.orders import Execution, ExecutionCursor

logger = structlog.get_logger(__name__)


def format_timestamp(value: datetime) -> str:
    """Render a UTC timestamp the way the API expects (millisecond ISO-8601)."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def records_after(records: List[ExecutionRecord], trade_id: str) -> Optional[List[ExecutionRecord]]:
    """
    Records strictly after the one carrying trade_id.

    Returns:
        Optional[List[ExecutionRecord]]: None if trade_id is not in records.
    """
    for index, record in enumerate(records):
        if record.exec_id == trade_id:
            return records[index + 1 :]
    return None


class ExecutionReconciler:
    """
    Incremental fill fetcher with duplicate-safe cursoring.

    Example:
        >>> fills = await reconciler.executions_since(market, cursor=None)
        >>> cursor = ExecutionCursor.after(fills[-1]) if fills else None
        >>> more = await reconciler.executions_since(market, cursor)
    """

    def __init__(
        self,
        rest: BitmexRestClient,
        config: ExchangeConfig,
        credentials: Credentials,
        events: Optional[EventChannel] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._rest = rest
        self._settings = config.reconciliation
        self._credentials = credentials
        self._events = events or EventChannel()
        self._now = now

    def _start_time(self, cursor: Optional[ExecutionCursor]) -> datetime:
        if cursor is not None:
            return cursor.timestamp
        return self._now() - timedelta(seconds=self._settings.lookback_seconds)

    async def executions_since(
        self,
        market: Market,
        cursor: Optional[ExecutionCursor] = None,
    ) -> List[Execution]:
        """
        Fetch executions after a cursor.

        Args:
            market: Market to reconcile.
            cursor: Last processed execution, or None for the look-back window.

        Returns:
            List[Execution]: New executions in chronological order; empty if
                the request fails (reported as REQUEST_FAILED).
        """
        start_time = self._start_time(cursor)
        response = await self._rest.request(
            "GET",
            "execution/tradeHistory",
            {
                "symbol": market.symbol,
                "startTime": format_timestamp(start_time),
                "count": self._settings.history_count,
                "reverse": False,
            },
            credentials=self._credentials,
        )
        if response.error is not None:
            self._events.report(
                EventKind.REQUEST_FAILED,
                response.error.message,
                cause=response.error,
                endpoint="execution/tradeHistory",
                symbol=market.symbol,
                status=response.status,
            )
            return []

        try:
            records = parse_records(ExecutionRecord, response.payload or [])
        except ValidationError as e:
            self._events.report(
                EventKind.REQUEST_FAILED,
                f"Unparseable execution history: {e}",
                cause=TransportError(f"Invalid execution response: {e}"),
                endpoint="execution/tradeHistory",
                symbol=market.symbol,
            )
            return []

        if cursor is not None:
            remaining = records_after(records, cursor.trade_id)
            if remaining is None:
                self._events.report(
                    EventKind.RECONCILIATION_GAP,
                    "Cursor trade id not in returned window",
                    symbol=market.symbol,
                    cursor=cursor.trade_id,
                    received=len(records),
                )
            else:
                records = remaining

        executions: List[Execution] = []
        for record in records:
            execution = BitmexNormalizer.normalize_execution(record, market)
            if execution is None:
                logger.debug(
                    "execution_admin_row_skipped",
                    symbol=market.symbol,
                    exec_id=record.exec_id,
                )
                continue
            executions.append(execution)

        logger.debug(
            "executions_fetched",
            symbol=market.symbol,
            received=len(records),
            returned=len(executions),
            cursor=cursor.trade_id if cursor else None,
        )
        return executions
