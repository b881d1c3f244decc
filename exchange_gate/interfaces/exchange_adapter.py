"""
Abstract base class for exchange adapters.

Defines the boundary between this gateway and the host framework that
consumes it: market metadata, order books, account views, order lifecycle and
execution reconciliation, plus a raw gate-request primitive.

Example:
    >>> class MyAdapter(ExchangeAdapter):
    ...     @property
    ...     def exchange_name(self) -> str:
    ...         return "bitmex"
    ...     # ... implement other abstract methods
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from exchange_gate.errors import GatewayError
from exchange_gate.models.account import Balance, Position, Trade
from exchange_gate.models.market import Market
from exchange_gate.models.orderbook import Offer, OrderBook
from exchange_gate.models.orders import Execution, ExecutionCursor, PlacedOrder


class ExchangeAdapter(ABC):
    """
    Contract every exchange adapter implements.

    Note:
        All financial values in returned models use Decimal for precision.
    """

    @property
    @abstractmethod
    def exchange_name(self) -> str:
        """Return the lowercase exchange identifier (e.g., "bitmex")."""
        pass

    @abstractmethod
    async def load_markets(self) -> Dict[str, Market]:
        """
        Refresh market metadata.

        Returns:
            Dict[str, Market]: Markets keyed by symbol; replaces any previous set.
        """
        pass

    @abstractmethod
    def get_market(self, symbol: str) -> Market:
        """
        Look up a market descriptor loaded by load_markets().

        Raises:
            KeyError: If the symbol is unknown.
        """
        pass

    @abstractmethod
    async def get_book(self, symbol: str) -> OrderBook:
        """Current order book, both sides ascending by price."""
        pass

    @abstractmethod
    async def trades_since(self, symbol: str, since: datetime) -> List[Trade]:
        """Public trades from `since` onward."""
        pass

    @abstractmethod
    async def placed_offers(self, symbol: str) -> List[PlacedOrder]:
        """Open orders for a market."""
        pass

    @abstractmethod
    async def account_positions(self) -> List[Position]:
        """Open positions across markets."""
        pass

    @abstractmethod
    async def account_balances(self) -> List[Balance]:
        """Wallet balances."""
        pass

    @abstractmethod
    async def post_offer(self, offer: Offer) -> Optional[PlacedOrder]:
        """Submit a maker-only order; None if rejected."""
        pass

    @abstractmethod
    async def cancel_offer(self, order: PlacedOrder) -> bool:
        """Cancel an order; True once it is no longer live."""
        pass

    @abstractmethod
    async def execution_since(
        self, symbol: str, cursor: Optional[ExecutionCursor] = None
    ) -> List[Execution]:
        """Fills after the cursor, or within the look-back window."""
        pass

    @abstractmethod
    async def mark_prices(self) -> Dict[str, Decimal]:
        """Mark price per symbol."""
        pass

    @abstractmethod
    async def gate_request(
        self,
        verb: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Any, Optional[GatewayError]]:
        """
        Raw request primitive for the host framework.

        Returns:
            Tuple[Any, Optional[GatewayError]]: (payload, error).
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release sockets and HTTP sessions. Idempotent."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(exchange={self.exchange_name})"
