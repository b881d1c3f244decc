"""
Exchange Gate.

Connectivity layer for a BitMEX-style cryptocurrency derivatives exchange.
Turns the exchange's REST and realtime socket APIs into a consistent view of
markets, order books, open orders, positions and executions.

This package provides:
- A signed, self-throttling REST transport
- A snapshot+diff order book synchronizer over the realtime socket
- Order lifecycle management with maker-only submission
- Incremental execution reconciliation
- Configuration, structured logging and an anomaly event channel
"""

__version__ = "0.1.0"
__author__ = "Om Mengshetti"
