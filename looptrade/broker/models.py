"""Broker data models — typed representations of exchange responses."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OrderAck:
    """Exchange acknowledgement of a placed LIMIT order."""

    order_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    status: str


@dataclass(frozen=True)
class CancelAck:
    """Exchange acknowledgement of a cancelled order."""

    order_id: str
    symbol: str
    status: str
