"""Realtime socket messages used across order book tests."""

from typing import Any, Dict, List

WELCOME = {
    "info": "Welcome to the BitMEX Realtime API.",
    "version": "2.0.0",
    "timestamp": "2024-01-01T00:00:00.000Z",
}
SUBSCRIBED = {
    "success": True,
    "subscribe": "orderBookL2:XBTUSD",
    "request": {"op": "subscribe", "args": "orderBookL2:XBTUSD"},
}


def row(level_id: int, side: str, size: Any = None, price: Any = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"symbol": "XBTUSD", "id": level_id, "side": side}
    if size is not None:
        data["size"] = size
    if price is not None:
        data["price"] = price
    return data


def table(action: str, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"table": "orderBookL2", "action": action, "data": rows}


PARTIAL = table(
    "partial",
    [
        row(1, "Sell", 10, 101.0),
        row(2, "Sell", 5, 100.5),
        row(3, "Buy", 7, 100.0),
        row(4, "Buy", 3, 99.5),
    ],
)
