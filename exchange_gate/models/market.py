"""
Market and asset descriptors.

Markets are built once per metadata refresh from instrument/active and are
immutable until replaced wholesale. Quantization helpers live here so every
component rounds prices and volumes the same way.

Models:
    Asset: Currency descriptor (symbol and decimal precision)
    Market: Tradable contract with precision, fee and contract type
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from pydantic import BaseModel, Field

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a raw numeric value to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def precision_from_increment(increment: Number) -> int:
    """
    Number of decimal places implied by a tick or lot size.

    Example:
        >>> precision_from_increment("0.5")
        1
        >>> precision_from_increment(100)
        0
    """
    exponent = to_decimal(increment).normalize().as_tuple().exponent
    return max(0, -int(exponent))


class Asset(BaseModel):
    """
    Currency descriptor.

    Attributes:
        symbol: Exchange currency code (e.g., "XBt", "USD").
        precision: Decimal places of the smallest wallet unit.
    """

    model_config = {"frozen": True, "extra": "ignore"}

    symbol: str = Field(..., min_length=1)
    precision: int = Field(default=8, ge=0, le=18)


class Market(BaseModel):
    """
    Tradable derivatives contract.

    Attributes:
        symbol: Exchange symbol (e.g., "XBTUSD").
        price_precision: Decimal places of the price tick.
        quantity_precision: Decimal places of the lot size.
        taker_fee: Taker fee rate as a fraction.
        is_inverse: True for inverse (coin-margined) contracts.
        primary: Underlying asset descriptor.
        counter: Quote asset descriptor.

    Example:
        >>> market = Market(symbol="XBTUSD", price_precision=1, quantity_precision=0,
        ...                 primary=Asset(symbol="XBT"), counter=Asset(symbol="USD"))
        >>> market.format_price("100.04")
        '100.0'
    """

    model_config = {"frozen": True, "extra": "ignore"}

    symbol: str = Field(..., min_length=1, max_length=50)
    price_precision: int = Field(..., ge=0, le=18)
    quantity_precision: int = Field(default=0, ge=0, le=18)
    taker_fee: Decimal = Field(default=Decimal("0"))
    is_inverse: bool = Field(default=False)
    primary: Asset
    counter: Asset

    @property
    def tick(self) -> Decimal:
        """Smallest price increment."""
        return Decimal(1).scaleb(-self.price_precision)

    def quantize_price(self, raw: Number) -> Decimal:
        """Round a raw price to the market tick."""
        return to_decimal(raw).quantize(self.tick, rounding=ROUND_HALF_UP)

    def format_price(self, raw: Number) -> str:
        """
        Quantize and render a price for the wire.

        Always renders max(price_precision, 1) digits after the decimal point.
        """
        digits = max(self.price_precision, 1)
        return f"{self.quantize_price(raw):.{digits}f}"

    def quantize_volume(self, raw: Number) -> int:
        """Round a raw volume to an integer contract count."""
        return int(to_decimal(raw).quantize(Decimal(1), rounding=ROUND_HALF_UP))

    def scale(self, raw: Number) -> Decimal:
        """Scale an integer amount reported in price-precision units."""
        return to_decimal(raw).scaleb(-self.price_precision)
