"""Exchange connector protocol.

Defines the interface the engine consumes in live mode.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from looptrade.broker.models import CancelAck, OrderAck
from looptrade.models import Side


@runtime_checkable
class ExchangeConnector(Protocol):
    """Interface that all exchange connectors must satisfy.

    Implementations raise ``ExchangeConnectorError`` on failure.
    """

    async def place_order(self, side: Side, quantity: float, price: float) -> OrderAck:
        """Place a resting LIMIT order and return the exchange ack."""
        ...

    async def cancel_order(self, order_id: str) -> CancelAck:
        """Cancel a previously acknowledged order."""
        ...
