"""
Exchange record normalizer.

Converts validated wire records (see schemas.py) into the gateway's domain
models. All financial values stay Decimal.

Side Mapping:
    "Buy"  -> Side.BID
    "Sell" -> Side.ASK

Scaling:
    Wallet amounts are integers in the smallest unit of the currency
    (e.g., satoshis for "XBt") and are scaled by the asset precision.
    Execution and position costs are scaled by the market price precision.
"""

from decimal import Decimal
from typing import Dict, Optional

import structlog

from exchange_gate.adapters.bitmex.schemas import (
    ExecutionRecord,
    InstrumentRecord,
    L2Row,
    OrderRecord,
    PositionRecord,
    TradeRecord,
    WalletRecord,
)
from exchange_gate.models.account import Balance, Position, Trade
from exchange_gate.models.market import Asset, Market, precision_from_increment
from exchange_gate.models.orderbook import Offer, Side
from exchange_gate.models.orders import Execution, OrderStatus, PlacedOrder

logger = structlog.get_logger(__name__)


class BitmexNormalizer:
    """
    Normalizes exchange records to domain models.

    Example:
        >>> market = BitmexNormalizer.normalize_market(instrument_record)
        >>> offer = BitmexNormalizer.normalize_offer(l2_row, market)
    """

    # Smallest-unit precision of settlement currencies
    ASSET_PRECISION: Dict[str, int] = {
        "XBt": 8,
        "XBT": 8,
        "USDt": 6,
        "USDT": 6,
        "GWei": 9,
    }
    DEFAULT_ASSET_PRECISION = 8

    @staticmethod
    def normalize_asset(symbol: str) -> Asset:
        precision = BitmexNormalizer.ASSET_PRECISION.get(
            symbol, BitmexNormalizer.DEFAULT_ASSET_PRECISION
        )
        return Asset(symbol=symbol, precision=precision)

    @staticmethod
    def normalize_market(record: InstrumentRecord) -> Market:
        """
        Build a Market from an instrument/active row.

        Price precision is derived from tickSize and quantity precision from
        lotSize.
        """
        return Market(
            symbol=record.symbol,
            price_precision=precision_from_increment(record.tick_size),
            quantity_precision=precision_from_increment(record.lot_size),
            taker_fee=record.taker_fee if record.taker_fee is not None else Decimal("0"),
            is_inverse=record.is_inverse,
            primary=BitmexNormalizer.normalize_asset(record.underlying),
            counter=BitmexNormalizer.normalize_asset(record.quote_currency),
        )

    @staticmethod
    def normalize_offer(row: L2Row, market: Market) -> Offer:
        """
        Build an Offer from a row that carries price and size.

        Raises:
            ValueError: If price or size is missing, or side is unknown.
        """
        if row.price is None:
            raise ValueError(f"Row {row.id} has no price")
        if row.size is None:
            raise ValueError(f"Row {row.id} has no size")
        return Offer(
            side=Side.from_exchange(row.side),
            market=market,
            price=market.quantize_price(row.price),
            volume=row.size,
        )

    @staticmethod
    def normalize_trade(record: TradeRecord) -> Trade:
        return Trade(
            symbol=record.symbol,
            side=Side.from_exchange(record.side),
            timestamp=record.timestamp,
            size=record.size,
            price=record.price,
        )

    @staticmethod
    def normalize_position(
        record: PositionRecord,
        market: Optional[Market] = None,
    ) -> Position:
        cost = record.pos_cost if record.pos_cost is not None else Decimal("0")
        if market is not None:
            cost = market.scale(cost)
        return Position(
            symbol=record.symbol,
            quantity=record.current_qty,
            avg_entry_price=record.avg_entry_price,
            cost=cost,
        )

    @staticmethod
    def normalize_balance(record: WalletRecord) -> Balance:
        asset = BitmexNormalizer.normalize_asset(record.currency)
        return Balance(asset=asset.symbol, amount=record.amount.scaleb(-asset.precision))

    @staticmethod
    def normalize_execution(
        record: ExecutionRecord,
        market: Market,
    ) -> Optional[Execution]:
        """
        Build an Execution from a tradeHistory row.

        Returns:
            Optional[Execution]: None for administrative rows (empty side),
                such as funding entries.
        """
        if not record.side:
            return None

        cost = abs(record.exec_cost) if record.exec_cost is not None else Decimal("0")
        commission = record.exec_comm if record.exec_comm is not None else Decimal("0")

        return Execution(
            order_id=record.order_id,
            trade_id=record.exec_id,
            market=market,
            side=Side.from_exchange(record.side),
            price=record.price if record.price is not None else Decimal("0"),
            volume=market.scale(cost),
            net_volume=market.scale(cost - commission),
            quantity=record.last_qty if record.last_qty is not None else Decimal("0"),
            timestamp=record.timestamp,
        )

    @staticmethod
    def normalize_status(value: Optional[str]) -> Optional[OrderStatus]:
        """Map ordStatus to OrderStatus, None for unknown values."""
        if value is None:
            return None
        try:
            return OrderStatus(value)
        except ValueError:
            logger.debug("bitmex_unknown_order_status", status=value)
            return None

    @staticmethod
    def normalize_order(record: OrderRecord, market: Market) -> PlacedOrder:
        """
        Build a PlacedOrder from an order row.

        Raises:
            ValueError: If side, price or quantity is missing.
        """
        if record.side is None or record.price is None or record.order_qty is None:
            raise ValueError(f"Order {record.order_id} is missing side, price or quantity")
        return PlacedOrder(
            order_id=record.order_id,
            market=market,
            side=Side.from_exchange(record.side),
            price=market.quantize_price(record.price),
            volume=record.order_qty,
            status=BitmexNormalizer.normalize_status(record.ord_status) or OrderStatus.NEW,
        )
