"""
Quote fill ratio monitor.

Samples the server-computed 7-day moving average of the quote fill ratio
from GET user/quoteFillRatio. The gateway keeps no state about it; throttling
decisions based on the samples belong to the caller.
"""

import math
from typing import List, Optional

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.rest import BitmexRestClient
from exchange_gate.adapters.bitmex.schemas import QuoteFillRatioRecord, parse_records
from exchange_gate.config.models import Credentials
from exchange_gate.events import EventChannel
from exchange_gate.models.events import EventKind

logger = structlog.get_logger(__name__)


class RateLimitMonitor:
    """Stateless sampler of the quote fill ratio metric."""

    def __init__(
        self,
        rest: BitmexRestClient,
        credentials: Credentials,
        events: Optional[EventChannel] = None,
    ):
        self._rest = rest
        self._credentials = credentials
        self._events = events or EventChannel()

    async def sample(self) -> List[float]:
        """
        Fetch fill ratio samples.

        Returns:
            List[float]: Finite samples only; null, missing, NaN and infinite
                entries are dropped. Empty if the request fails.
        """
        response = await self._rest.request(
            "GET", "user/quoteFillRatio", credentials=self._credentials
        )
        if response.error is not None:
            self._events.report(
                EventKind.REQUEST_FAILED,
                response.error.message,
                cause=response.error,
                endpoint="user/quoteFillRatio",
                status=response.status,
            )
            return []

        payload = response.payload
        if isinstance(payload, dict):
            payload = [payload]

        try:
            records = parse_records(QuoteFillRatioRecord, payload or [])
        except ValidationError as e:
            logger.warning("quote_fill_ratio_parse_error", error=str(e))
            return []

        samples = [
            r.quote_fill_ratio_mavg7
            for r in records
            if r.quote_fill_ratio_mavg7 is not None and math.isfinite(r.quote_fill_ratio_mavg7)
        ]
        logger.debug("quote_fill_ratio_sampled", received=len(records), kept=len(samples))
        return samples
