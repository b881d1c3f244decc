"""
Exchange adapters for the gateway.

Each adapter implements the ExchangeAdapter interface on top of a signed REST
transport and a realtime order book mirror.

Supported Exchanges:
    - BitMEX (inverse and linear perpetuals)
"""

__all__: list[str] = []
