"""
Order lifecycle management.

Places maker-only limit orders and cancels them by id, classifying outcomes:

post_offer:
    - accepted (New / PartiallyFilled / Filled)   -> PlacedOrder
    - canceled because it would have crossed      -> None, silently
    - anything else                               -> None, advisory event

cancel_offer:
    - Canceled, Filled, or "not found"            -> True (idempotent)
    - anything else                               -> False, advisory event
"""

from typing import List, Optional

import structlog
from pydantic import ValidationError

from exchange_gate.adapters.bitmex.normalizer import BitmexNormalizer
from exchange_gate.adapters.bitmex.rest import BitmexRestClient, RestResponse
from exchange_gate.adapters.bitmex.schemas import OrderRecord, parse_records
from exchange_gate.config.models import Credentials, ExchangeConfig
from exchange_gate.errors import ClientRequestError
from exchange_gate.events import EventChannel
from exchange_gate.models.events import EventKind
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Offer
from exchange_gate.models.orders import OrderStatus, PlacedOrder

logger = structlog.get_logger(__name__)

ACCEPTED_STATUSES = frozenset(
    {OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED}
)
CANCEL_TERMINAL_STATUSES = frozenset({OrderStatus.CANCELED, OrderStatus.FILLED})
NOT_FOUND_MARKER = "not found"
MAKER_ONLY_REJECT_PREFIX = "execInst of"


class OrderLifecycleManager:
    """
    Submits and cancels orders through the signed REST transport.

    Example:
        >>> orders = OrderLifecycleManager(rest, config.exchange, credentials, events)
        >>> placed = await orders.post_offer(offer)
        >>> if placed:
        ...     await orders.cancel_offer(placed)
    """

    def __init__(
        self,
        rest: BitmexRestClient,
        config: ExchangeConfig,
        credentials: Credentials,
        events: Optional[EventChannel] = None,
    ):
        self._rest = rest
        self._config = config
        self._credentials = credentials
        self._events = events or EventChannel()

    def _is_maker_only_reject(self, text: Optional[str]) -> bool:
        # Exchange text: "Canceled: Order had execInst of ParticipateDoNotInitiate"
        marker = f"{MAKER_ONLY_REJECT_PREFIX} {self._config.maker_only_instruction}"
        return bool(text) and marker in text

    async def post_offer(self, offer: Offer) -> Optional[PlacedOrder]:
        """
        Submit a maker-only limit order for an offer.

        Price is quantized to the market tick and volume to whole contracts.

        Args:
            offer: Desired price level; side decides Buy or Sell.

        Returns:
            Optional[PlacedOrder]: The accepted order, or None if it was
                rejected (maker-only rejects are silent, others are reported).
        """
        market = offer.market
        quantity = market.quantize_volume(offer.volume)
        if quantity <= 0:
            logger.warning(
                "order_quantity_below_minimum",
                symbol=market.symbol,
                volume=str(offer.volume),
            )
            return None

        price = market.format_price(offer.price)
        params = {
            "symbol": market.symbol,
            "side": offer.side.exchange_value,
            "orderQty": quantity,
            "price": price,
            "ordType": "Limit",
            "execInst": self._config.maker_only_instruction,
        }

        response = await self._rest.request(
            "POST", "order", params, credentials=self._credentials
        )

        if response.error is not None:
            self._events.report(
                EventKind.UNEXPECTED_ORDER_STATUS,
                response.error.message,
                symbol=market.symbol,
                price=price,
                quantity=quantity,
                status=response.status,
            )
            return None

        try:
            record = OrderRecord.model_validate(response.payload)
        except ValidationError as e:
            self._events.report(
                EventKind.UNEXPECTED_ORDER_STATUS,
                f"Unparseable order response: {e}",
                symbol=market.symbol,
            )
            return None

        status = BitmexNormalizer.normalize_status(record.ord_status)

        if status in ACCEPTED_STATUSES:
            placed = PlacedOrder(
                order_id=record.order_id,
                market=market,
                side=offer.side,
                price=market.quantize_price(offer.price),
                volume=quantity,
                status=status,
            )
            logger.info(
                "order_placed",
                symbol=market.symbol,
                order_id=placed.order_id,
                side=offer.side.value,
                price=price,
                quantity=quantity,
            )
            return placed

        if status is OrderStatus.CANCELED and self._is_maker_only_reject(record.text):
            logger.debug(
                "order_maker_only_rejected",
                symbol=market.symbol,
                order_id=record.order_id,
                price=price,
            )
            return None

        self._events.report(
            EventKind.UNEXPECTED_ORDER_STATUS,
            f"Unexpected order status {record.ord_status!r}",
            symbol=market.symbol,
            order_id=record.order_id,
            text=record.text,
        )
        return None

    async def cancel_offer(self, order: PlacedOrder) -> bool:
        """
        Cancel an order by id.

        Already-filled, already-canceled and unknown orders count as
        cancelled, so calling this twice is safe.

        Returns:
            bool: True if the order is no longer live, False on an
                unexpected outcome (reported on the event channel).
        """
        response = await self._rest.request(
            "DELETE",
            "order",
            {"orderID": order.order_id},
            credentials=self._credentials,
        )

        if response.error is not None:
            if (
                isinstance(response.error, ClientRequestError)
                and NOT_FOUND_MARKER in response.error.message.lower()
            ):
                logger.debug("order_cancel_not_found", order_id=order.order_id)
                return True
            self._report_cancel(order, response.error.message, status=response.status)
            return False

        record = self._find_record(order.order_id, response)
        if record is None:
            self._report_cancel(order, "Cancel response did not include the order")
            return False

        status = BitmexNormalizer.normalize_status(record.ord_status)
        if status in CANCEL_TERMINAL_STATUSES:
            logger.info(
                "order_cancelled",
                symbol=order.market.symbol,
                order_id=order.order_id,
                final_status=status.value,
            )
            return True
        if record.error and NOT_FOUND_MARKER in record.error.lower():
            logger.debug("order_cancel_not_found", order_id=order.order_id)
            return True

        self._report_cancel(
            order,
            record.error or f"Unexpected cancel status {record.ord_status!r}",
            ord_status=record.ord_status,
        )
        return False

    def _find_record(self, order_id: str, response: RestResponse) -> Optional[OrderRecord]:
        payload = response.payload
        if isinstance(payload, dict):
            payload = [payload]
        try:
            records = parse_records(OrderRecord, payload or [])
        except ValidationError as e:
            logger.warning("order_cancel_parse_error", order_id=order_id, error=str(e))
            return None
        return next((r for r in records if r.order_id == order_id), None)

    def _report_cancel(self, order: PlacedOrder, message: str, **context: object) -> None:
        self._events.report(
            EventKind.UNEXPECTED_CANCEL_STATUS,
            message,
            symbol=order.market.symbol,
            order_id=order.order_id,
            **context,
        )

    async def placed_offers(self, market: Market) -> List[PlacedOrder]:
        """
        Fetch open orders for a market.

        Returns:
            List[PlacedOrder]: Live orders.

        Raises:
            GatewayError: If the request fails; an empty list would be
                indistinguishable from "no open orders".
        """
        response = await self._rest.request(
            "GET",
            "order",
            {"symbol": market.symbol, "filter": {"open": True}, "count": 500},
            credentials=self._credentials,
        )
        if response.error is not None:
            raise response.error

        orders: List[PlacedOrder] = []
        for raw in response.payload or []:
            try:
                record = OrderRecord.model_validate(raw)
                orders.append(BitmexNormalizer.normalize_order(record, market))
            except (ValidationError, ValueError) as e:
                logger.warning(
                    "order_row_skipped",
                    symbol=market.symbol,
                    error=str(e),
                )
        return orders
