"""Single-pair, two-slot order book.

Holds at most one open BUY and one open SELL.  Matching returns orders
SELL first so profit is realised before new capital is committed.
"""

from typing import Optional

from looptrade.errors import SlotOccupiedError
from looptrade.models import Order, Side

# Evaluation order when several slots match one tick
_MATCH_PRIORITY = (Side.SELL, Side.BUY)


class OrderBook:
    """Slot storage for resting orders."""

    def __init__(self) -> None:
        self._slots: dict[Side, Optional[Order]] = {Side.BUY: None, Side.SELL: None}

    def get(self, side: Side) -> Optional[Order]:
        """Return the order resting on *side*, if any."""
        return self._slots[side]

    @property
    def open_orders(self) -> list[Order]:
        """Open orders in match-priority order."""
        return [o for o in (self._slots[s] for s in _MATCH_PRIORITY) if o is not None]

    def place(self, order: Order) -> None:
        """Rest *order* in its side's slot.

        Raises:
            SlotOccupiedError: If that side already holds an order.
        """
        current = self._slots[order.side]
        if current is not None:
            raise SlotOccupiedError(
                f"{order.side.value} slot already holds order {current.id}"
            )
        self._slots[order.side] = order

    def remove(self, order_id: int) -> Optional[Order]:
        """Remove and return the order with *order_id*, or ``None``."""
        for side, order in self._slots.items():
            if order is not None and order.id == order_id:
                self._slots[side] = None
                return order
        return None

    def match(self, price: float) -> list[Order]:
        """Orders whose trigger is crossed by *price*, SELL before BUY."""
        return [o for o in self.open_orders if o.matches(price)]

    def clear(self) -> list[Order]:
        """Empty both slots and return the orders that were open."""
        cleared = self.open_orders
        self._slots = {Side.BUY: None, Side.SELL: None}
        return cleared
