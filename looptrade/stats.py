"""Cycle statistics — pure functions over the trade history."""

from datetime import datetime, timezone
from typing import Iterable, Optional

from looptrade.models import CycleStats, Side, Trade


def calculate_stats(
    trades: Iterable[Trade],
    total_cycles: int,
    initial_capital: float,
    total_profit: Optional[float] = None,
    winning_cycles: Optional[int] = None,
    daily_loss_limit_pct: float = 0.0,
    now: Optional[datetime] = None,
) -> CycleStats:
    """Compute a ``CycleStats`` snapshot.

    Args:
        trades: Trade history (any order; only SELL fills carry profit).
        total_cycles: Completed BUY→SELL round trips.
        initial_capital: Starting quote capital, for ROI and the loss limit.
        total_profit: Realised profit over the whole run.  The history is
            bounded, so the engine passes its running total; when omitted the
            sum over *trades* is used.
        winning_cycles: Profitable cycles over the whole run, paired with
            *total_cycles* for the win rate.  When omitted the win rate is
            taken over the SELL fills in *trades*.
        daily_loss_limit_pct: Loss limit as a percentage of initial capital.
            ``0`` disables the flag.
        now: Reference time for the daily window.  Defaults to UTC now.

    Returns:
        ``CycleStats`` with ``win_rate`` as a fraction in ``[0, 1]``.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    sells = [t for t in trades if t.side is Side.SELL]
    if total_profit is None:
        total_profit = sum(t.realized_profit for t in sells)

    win_rate = 0.0
    if winning_cycles is not None:
        if total_cycles > 0:
            win_rate = winning_cycles / total_cycles
    elif sells:
        win_rate = sum(1 for t in sells if t.realized_profit > 0) / len(sells)

    avg_profit = total_profit / total_cycles if total_cycles > 0 else 0.0
    daily = _daily_profit(sells, now)
    roi_pct = (total_profit / initial_capital) * 100.0 if initial_capital > 0 else 0.0

    limit_reached = False
    if daily_loss_limit_pct > 0 and initial_capital > 0:
        limit_reached = daily <= -(initial_capital * daily_loss_limit_pct / 100.0)

    return CycleStats(
        total_cycles=total_cycles,
        win_rate=win_rate,
        avg_profit_per_cycle=avg_profit,
        daily_profit=daily,
        total_profit=total_profit,
        roi_pct=roi_pct,
        daily_loss_limit_reached=limit_reached,
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _utc_day(ts: datetime):
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).date()


def _daily_profit(trades: list[Trade], now: datetime) -> float:
    """Realised profit of *trades* falling on *now*'s UTC calendar day."""
    today = _utc_day(now)
    return sum(t.realized_profit for t in trades if _utc_day(t.timestamp) == today)
