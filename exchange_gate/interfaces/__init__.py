"""
Abstract interfaces for the exchange gateway.

Modules:
    exchange_adapter: ExchangeAdapter ABC describing the host boundary
"""

from exchange_gate.interfaces.exchange_adapter import ExchangeAdapter

__all__: list[str] = [
    "ExchangeAdapter",
]
