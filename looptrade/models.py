"""Core data models — orders, trades, balances, log entries, stats.

All records are frozen dataclasses; components replace them, never mutate.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class Mode(str, Enum):
    SIMULATION = "simulation"
    LIVE = "live"


class EngineStatus(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    EMERGENCY_STOPPED = "EMERGENCY_STOPPED"


class LogCategory(str, Enum):
    SYSTEM = "system"
    ORDER = "order"
    TRADE = "trade"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class Balance:
    """Quote and base asset holdings."""

    quote: float
    base: float

    def value_at(self, price: float) -> float:
        """Total value in quote currency at *price*."""
        return self.quote + self.base * price


@dataclass(frozen=True)
class BalanceDelta:
    """Signed change applied to a ``Balance`` by one fill."""

    quote: float
    base: float

    @classmethod
    def for_fill(cls, side: Side, price: float, quantity: float) -> "BalanceDelta":
        """Delta for filling *quantity* units at *price*.

        A BUY spends quote and receives base; a SELL does the reverse.
        """
        notional = price * quantity
        if side is Side.BUY:
            return cls(quote=-notional, base=quantity)
        return cls(quote=notional, base=-quantity)


@dataclass(frozen=True)
class Order:
    """A resting order occupying one side's slot.

    ``entry_price`` is set only on SELL orders and records the BUY fill
    that opened the position being closed.
    """

    id: int
    side: Side
    trigger_price: float
    quantity: float
    placed_at: datetime
    entry_price: Optional[float] = None

    def matches(self, price: float) -> bool:
        """``True`` when a tick at *price* crosses this order's trigger."""
        if self.side is Side.SELL:
            return price >= self.trigger_price
        return price <= self.trigger_price


@dataclass(frozen=True)
class Trade:
    """An executed fill."""

    id: int
    side: Side
    fill_price: float
    quantity: float
    realized_profit: float
    cycle_number: int
    timestamp: datetime


@dataclass(frozen=True)
class LogEntry:
    """One line of the engine's audit log."""

    timestamp: datetime
    category: LogCategory
    message: str


@dataclass(frozen=True)
class Notification:
    """External-facing signal emitted alongside log entries.

    ``level`` is one of ``"success"``, ``"info"``, ``"warning"``, ``"error"``.
    """

    level: str
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class CycleStats:
    """Performance summary derived from the trade history."""

    total_cycles: int = 0
    win_rate: float = 0.0
    avg_profit_per_cycle: float = 0.0
    daily_profit: float = 0.0
    total_profit: float = 0.0
    roi_pct: float = 0.0
    daily_loss_limit_reached: bool = False
