"""
Wire schemas for the exchange's REST and socket payloads.

One record per endpoint, validated at parse time. Field names are snake_case
with aliases matching the exchange's camelCase keys; required and optional
fields follow what each endpoint actually returns.

REST:
    GET instrument/active        -> InstrumentRecord
    GET orderBook/L2             -> L2Row
    GET trade                    -> TradeRecord
    GET order / POST / DELETE    -> OrderRecord
    GET position                 -> PositionRecord
    GET user/wallet              -> WalletRecord
    GET execution/tradeHistory   -> ExecutionRecord
    GET user/quoteFillRatio      -> QuoteFillRatioRecord
    (any error)                  -> ErrorResponse

Socket:
    {"info": ...}                          -> WelcomeMessage
    {"success": ..., "subscribe": ...}     -> SubscribeAck
    {"table": ..., "action": ..., "data"}  -> TableMessage
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, TypeAdapter

T = TypeVar("T", bound=BaseModel)

_RECORD_CONFIG = {"extra": "ignore", "populate_by_name": True, "frozen": True}


# =============================================================================
# REST RECORDS
# =============================================================================


class InstrumentRecord(BaseModel):
    """Row of GET instrument/active."""

    model_config = _RECORD_CONFIG

    symbol: str
    underlying: str
    quote_currency: str = Field(..., alias="quoteCurrency")
    settl_currency: Optional[str] = Field(default=None, alias="settlCurrency")
    tick_size: Decimal = Field(..., alias="tickSize")
    lot_size: Decimal = Field(default=Decimal("1"), alias="lotSize")
    taker_fee: Optional[Decimal] = Field(default=None, alias="takerFee")
    is_inverse: bool = Field(default=False, alias="isInverse")
    mark_price: Optional[Decimal] = Field(default=None, alias="markPrice")


class L2Row(BaseModel):
    """
    Order book row, shared by GET orderBook/L2 and the orderBookL2 table.

    price is only present on rows introducing a level; size is absent on
    socket delete rows.
    """

    model_config = _RECORD_CONFIG

    id: int
    side: str
    size: Optional[Decimal] = None
    price: Optional[Decimal] = None
    symbol: Optional[str] = None


class TradeRecord(BaseModel):
    """Row of GET trade."""

    model_config = _RECORD_CONFIG

    symbol: str
    side: str
    timestamp: datetime
    size: Decimal
    price: Decimal


class OrderRecord(BaseModel):
    """Row of GET order, and the body of POST/DELETE order responses."""

    model_config = _RECORD_CONFIG

    order_id: str = Field(..., alias="orderID")
    symbol: Optional[str] = None
    side: Optional[str] = None
    price: Optional[Decimal] = None
    order_qty: Optional[Decimal] = Field(default=None, alias="orderQty")
    ord_status: Optional[str] = Field(default=None, alias="ordStatus")
    text: Optional[str] = None
    error: Optional[str] = None


class PositionRecord(BaseModel):
    """Row of GET position."""

    model_config = _RECORD_CONFIG

    symbol: str
    current_qty: Decimal = Field(..., alias="currentQty")
    avg_entry_price: Optional[Decimal] = Field(default=None, alias="avgEntryPrice")
    pos_cost: Optional[Decimal] = Field(default=None, alias="posCost")


class WalletRecord(BaseModel):
    """Body of GET user/wallet."""

    model_config = _RECORD_CONFIG

    currency: str = "XBt"
    amount: Decimal


class ExecutionRecord(BaseModel):
    """Row of GET execution/tradeHistory."""

    model_config = _RECORD_CONFIG

    order_id: str = Field(..., alias="orderID")
    exec_id: str = Field(..., alias="execID")
    symbol: str
    side: Optional[str] = None
    last_qty: Optional[Decimal] = Field(default=None, alias="lastQty")
    price: Optional[Decimal] = None
    timestamp: datetime
    exec_cost: Optional[Decimal] = Field(default=None, alias="execCost")
    exec_comm: Optional[Decimal] = Field(default=None, alias="execComm")


class QuoteFillRatioRecord(BaseModel):
    """Row of GET user/quoteFillRatio."""

    model_config = _RECORD_CONFIG

    quote_fill_ratio_mavg7: Optional[float] = Field(
        default=None, alias="quoteFillRatioMavg7"
    )


class ErrorDetail(BaseModel):
    model_config = {"extra": "ignore"}

    message: str = "Unknown error"
    name: Optional[str] = None


class ErrorResponse(BaseModel):
    """Body of any non-success response: {"error": {"message", "name"}}."""

    model_config = {"extra": "ignore"}

    error: ErrorDetail = Field(default_factory=ErrorDetail)


# =============================================================================
# SOCKET MESSAGES
# =============================================================================


class WelcomeMessage(BaseModel):
    """First message on a new connection."""

    model_config = {"extra": "ignore"}

    info: str
    version: Optional[str] = None


class SubscribeAck(BaseModel):
    """Subscription result."""

    model_config = {"extra": "ignore"}

    success: bool
    subscribe: Optional[str] = None
    error: Optional[str] = None


class TableMessage(BaseModel):
    """Streaming table update."""

    model_config = {"extra": "ignore"}

    table: str
    action: str
    data: List[L2Row] = Field(default_factory=list)


# =============================================================================
# PARSING HELPERS
# =============================================================================


def parse_records(model: Type[T], payload: Any) -> List[T]:
    """
    Validate a JSON array against a record schema.

    Raises:
        pydantic.ValidationError: If payload is not a list or any row is invalid.
    """
    return TypeAdapter(List[model]).validate_python(payload)  # type: ignore[valid-type]
