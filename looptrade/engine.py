"""LoopTrade — Cycle engine (orchestration loop).

Turns price ticks into fills, fills into balance mutations and re-armed
orders, and keeps the trade history, statistics, and event log current.
The engine is the only mutator of the ledger, order book, and event log.
"""

import asyncio
import itertools
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

from looptrade.broker.base import ExchangeConnector
from looptrade.config import Config
from looptrade.errors import (
    AlreadyRunningError,
    ConfigurationError,
    EmergencyModeError,
    InsufficientBalanceError,
    SlotOccupiedError,
)
from looptrade.event_log import EventLog
from looptrade.feed import PriceFeed
from looptrade.ledger import BalanceLedger
from looptrade.models import (
    Balance,
    BalanceDelta,
    CycleStats,
    EngineStatus,
    LogCategory,
    LogEntry,
    Mode,
    Notification,
    Order,
    Side,
    Trade,
)
from looptrade.order_book import OrderBook
from looptrade.risk.position_sizer import (
    buy_trigger,
    opening_buy_quantity,
    rebuy_quantity,
    sell_trigger,
)
from looptrade.stats import calculate_stats

logger = logging.getLogger("looptrade")

TRADE_HISTORY_SIZE = 50

NotificationListener = Callable[[Notification], None]


class CycleEngine:
    """Buy-dip / sell-rally state machine for one trading pair.

    Args:
        config: Finalized run configuration.
        connector: Exchange connector used in live mode (or a duck-typed
            mock).  Not needed for simulation.
        clock: UTC time source.  Defaults to ``datetime.now(UTC)``.
        trade_history_size: Number of trades kept in the history.
        log_capacity: Number of entries kept in the event log.
    """

    def __init__(
        self,
        config: Config,
        connector: Optional[ExchangeConnector] = None,
        clock: Optional[Callable[[], datetime]] = None,
        trade_history_size: int = TRADE_HISTORY_SIZE,
        log_capacity: int = 100,
    ) -> None:
        self._config = config
        self._connector = connector
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._ledger = BalanceLedger(
            quote=config.initial_capital,
            base=0.0,
            quote_asset=config.quote_asset,
            base_asset=config.base_asset,
        )
        self._book = OrderBook()
        self._log = EventLog(capacity=log_capacity)
        self._trades: deque[Trade] = deque(maxlen=trade_history_size)

        self._status = EngineStatus.STOPPED
        self._mode = Mode.SIMULATION
        self._current_price: float = 0.0
        self._emergency_mode = False
        self._halt_requested = False
        self._total_cycles = 0
        self._total_profit = 0.0
        self._winning_cycles = 0
        self._stats = CycleStats()
        self._loss_limit_day = None

        self._lock = asyncio.Lock()
        self._order_ids = itertools.count(1)
        self._trade_ids = itertools.count(1)
        self._listeners: list[NotificationListener] = []

        # Live mode bookkeeping: local order id → exchange order id
        self._remote_ids: dict[int, str] = {}
        self._pending: set[asyncio.Task] = set()

    # ── Read-only views ──────────────────────────────────────────────────

    @property
    def config(self) -> Config:
        return self._config

    @property
    def state(self) -> EngineStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._status is EngineStatus.RUNNING

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def emergency_mode(self) -> bool:
        return self._emergency_mode

    @property
    def current_price(self) -> float:
        return self._current_price

    @property
    def balance(self) -> Balance:
        return self._ledger.balance

    @property
    def total_value(self) -> float:
        """Quote plus base valued at the current price."""
        return self._ledger.balance.value_at(self._current_price)

    @property
    def open_orders(self) -> list[Order]:
        return self._book.open_orders

    @property
    def trades(self) -> list[Trade]:
        """Trade history, newest first."""
        return list(self._trades)

    @property
    def stats(self) -> CycleStats:
        return self._stats

    def logs(
        self,
        limit: Optional[int] = None,
        category: Optional[LogCategory] = None,
    ) -> list[LogEntry]:
        """Event log entries, newest first."""
        return self._log.entries(limit=limit, category=category)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Register *listener* for notifications; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> dict:
        """JSON-ready view of the engine for external rendering."""
        balance = self._ledger.balance
        stats = self._stats
        return {
            "status": self._status.value,
            "running": self.running,
            "mode": self._mode.value,
            "pair": self._config.trade_pair,
            "emergency_mode": self._emergency_mode,
            "current_price": self._current_price,
            "balance": {
                self._config.quote_asset: balance.quote,
                self._config.base_asset: balance.base,
            },
            "total_value": self.total_value,
            "open_orders": [order_to_dict(o) for o in self._book.open_orders],
            "stats": {
                "total_cycles": stats.total_cycles,
                "win_rate": stats.win_rate,
                "avg_profit_per_cycle": stats.avg_profit_per_cycle,
                "daily_profit": stats.daily_profit,
                "total_profit": stats.total_profit,
                "roi_pct": stats.roi_pct,
                "daily_loss_limit_reached": stats.daily_loss_limit_reached,
            },
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self, mode: Mode | str = Mode.SIMULATION) -> None:
        """Begin trading in *mode* and arm the order the cycle is waiting on.

        With no trade yet this is the opening BUY; otherwise the side that
        continues from the newest trade, when its slot is empty.

        Raises:
            ConfigurationError: Unknown mode, or live mode without API
                credentials or a connector.  Checked before any mutation.
            EmergencyModeError: The emergency flag has not been reset.
            AlreadyRunningError: The engine is already running.
        """
        try:
            mode = Mode(mode)
        except ValueError:
            raise ConfigurationError(f"Unknown trading mode: {mode!r}") from None
        if mode is Mode.LIVE:
            if not self._config.has_credentials:
                raise ConfigurationError(
                    "Live mode requires BINANCE_API_KEY and BINANCE_API_SECRET"
                )
            if self._connector is None:
                raise ConfigurationError("Live mode requires an exchange connector")

        async with self._lock:
            if self._emergency_mode:
                raise EmergencyModeError(
                    "Emergency mode is active; reset it before starting"
                )
            if self._status is EngineStatus.RUNNING:
                raise AlreadyRunningError(
                    f"Engine already running in {self._mode.value} mode"
                )

            now = self._clock()
            self._status = EngineStatus.RUNNING
            self._mode = mode
            self._halt_requested = False
            if self._current_price <= 0:
                self._current_price = self._config.opening_price

            self._record(LogCategory.SYSTEM, f"Bot started in {mode.value} mode", now)
            self._notify("success", f"Bot started in {mode.value} mode", now)

            self._restore_missing_order(now, announce_skip=True)

    async def stop(self) -> None:
        """Stop gracefully; orders and balances are kept for a later start."""
        async with self._lock:
            if self._status is not EngineStatus.RUNNING:
                return
            now = self._clock()
            self._status = EngineStatus.STOPPED
            self._record(LogCategory.SYSTEM, "Bot stopped", now)
            self._notify("info", "Bot stopped gracefully", now)

    async def emergency_stop(self) -> list[Order]:
        """Halt trading from any state and drop every open order.

        A fill sequence already in progress completes first; ticks arriving
        afterwards are ignored.  In live mode, acknowledged orders get a
        fire-and-forget cancel request.

        Returns:
            The orders that were open.
        """
        self._halt_requested = True
        async with self._lock:
            now = self._clock()
            cleared = self._book.clear()
            self._status = EngineStatus.EMERGENCY_STOPPED
            self._emergency_mode = True

            self._record(
                LogCategory.EMERGENCY, "EMERGENCY STOP ACTIVATED", now,
                level=logging.ERROR,
            )
            if self._mode is Mode.LIVE and self._connector is not None:
                for order in cleared:
                    remote_id = self._remote_ids.pop(order.id, None)
                    if remote_id is not None:
                        self._spawn(self._cancel_remote(order, remote_id))
            self._remote_ids.clear()
            self._notify("error", "EMERGENCY STOP - All orders cancelled", now)
            return cleared

    async def reset_emergency(self) -> None:
        """Clear the emergency flag and return to ``STOPPED``."""
        async with self._lock:
            if self._status is not EngineStatus.EMERGENCY_STOPPED:
                return
            now = self._clock()
            self._status = EngineStatus.STOPPED
            self._emergency_mode = False
            self._halt_requested = False
            self._record(LogCategory.SYSTEM, "Emergency mode cleared", now)
            self._notify("info", "Emergency mode cleared", now)

    async def drain(self) -> None:
        """Wait for every in-flight exchange call to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(self, feed: PriceFeed, max_ticks: int = 0) -> list[dict]:
        """Feed ticks from *feed* into the engine until it stops.

        Args:
            feed: Any object with an async ``prices()`` generator.
            max_ticks: Stop after this many ticks (0 = unlimited).

        Returns:
            List of per-tick result dicts.
        """
        results: list[dict] = []
        tick = 0

        async for price in feed.prices():
            if self._status is not EngineStatus.RUNNING:
                break
            tick += 1
            try:
                result = await self.on_tick(price)
            except Exception as exc:
                logger.error("Tick %d error: %s", tick, exc)
                result = {"action": "error", "reason": str(exc)}
            results.append(result)
            if result.get("action") == "filled":
                logger.info("Tick %d: %d fill(s) at %.4f", tick, len(result["fills"]), price)

            if max_ticks > 0 and tick >= max_ticks:
                break

        return results

    # ── Single tick ──────────────────────────────────────────────────────

    async def on_tick(self, price: float, utc_now: Optional[datetime] = None) -> dict:
        """Process one price sample.

        Returns a dict describing what happened:

        - ``{"action": "ignored", "reason": "stopped"}``
        - ``{"action": "no_match", "price": ...}``
        - ``{"action": "filled", "price": ..., "fills": [...]}``

        Args:
            price: Tick price; must be positive.
            utc_now: Tick time.  Defaults to the engine clock.  Accepting it
                as a parameter keeps day-windowed stats testable.
        """
        if price <= 0:
            raise ValueError(f"Tick price must be positive, got {price}")

        async with self._lock:
            if self._halt_requested:
                return {"action": "ignored", "reason": "halted"}
            if self._status is not EngineStatus.RUNNING:
                return {"action": "ignored", "reason": self._status.value.lower()}

            now = utc_now or self._clock()
            self._current_price = price

            # Re-arm a slot emptied by a failed exchange placement
            self._restore_missing_order(now)

            matched = self._book.match(price)
            if not matched:
                return {"action": "no_match", "price": price}

            fills: list[dict] = []
            for order in matched:
                if self._halt_requested:
                    break
                fills.append(self._execute(order, price, now))
            return {"action": "filled", "price": price, "fills": fills}

    # ── Fill and re-arm ──────────────────────────────────────────────────

    def _execute(self, order: Order, price: float, now: datetime) -> dict:
        """Fill *order* at *price* and re-arm the opposite side.

        Contains no await points, so it is never interleaved with another
        tick or a control call.
        """
        profit = 0.0
        if order.side is Side.SELL and order.entry_price is not None:
            profit = (price - order.entry_price) * order.quantity

        delta = BalanceDelta.for_fill(order.side, price, order.quantity)
        try:
            self._ledger.apply_fill(delta)
        except InsufficientBalanceError as exc:
            message = f"{order.side.value} fill at ${price:.2f} abandoned: {exc}"
            self._record(LogCategory.TRADE, message, now, level=logging.WARNING)
            self._notify("error", message, now)
            return {
                "order_id": order.id,
                "side": order.side.value,
                "status": "rejected",
                "reason": str(exc),
            }

        self._book.remove(order.id)
        self._remote_ids.pop(order.id, None)

        trade = Trade(
            id=next(self._trade_ids),
            side=order.side,
            fill_price=price,
            quantity=order.quantity,
            realized_profit=profit,
            cycle_number=self._total_cycles + 1,
            timestamp=now,
        )
        self._trades.appendleft(trade)
        if order.side is Side.SELL:
            self._total_cycles += 1
            self._total_profit += profit
            if profit > 0:
                self._winning_cycles += 1
        self._refresh_stats(now)

        self._record(
            LogCategory.TRADE,
            f"{order.side.value} executed at ${price:.2f} | Profit: ${profit:.2f}",
            now,
        )
        self._notify("success", f"Order executed: {order.side.value} at ${price:.2f}", now)

        next_order = self._rearm(trade, now)
        return {
            "order_id": order.id,
            "side": order.side.value,
            "status": "filled",
            "trade_id": trade.id,
            "fill_price": price,
            "quantity": order.quantity,
            "profit": profit,
            "next_order_id": next_order.id if next_order else None,
        }

    def _rearm(
        self, trade: Trade, now: datetime, announce_skip: bool = True,
    ) -> Optional[Order]:
        """Place the order that continues the cycle after *trade*."""
        cfg = self._config
        if trade.side is Side.SELL:
            price = buy_trigger(trade.fill_price, cfg.buy_back_dip_pct)
            quantity = rebuy_quantity(
                self._ledger.balance.quote,
                price,
                cfg.buy_allocation_pct,
                cfg.max_trade_size,
            )
            if quantity <= 0:
                if announce_skip:
                    message = f"BUY re-arm skipped: no {cfg.quote_asset} available"
                    self._record(LogCategory.ORDER, message, now, level=logging.WARNING)
                    self._notify("warning", message, now)
                return None
            return self._place_order(Side.BUY, price, quantity, now)

        price = sell_trigger(trade.fill_price, cfg.profit_target_pct)
        return self._place_order(
            Side.SELL, price, trade.quantity, now, entry_price=trade.fill_price,
        )

    def _restore_missing_order(
        self, now: datetime, announce_skip: bool = False,
    ) -> Optional[Order]:
        """Arm the side the cycle is waiting on if its slot is empty.

        Before the first trade that is the opening BUY (only with an empty
        book); afterwards it is the side that continues from the newest
        trade.  Skips are silent unless *announce_skip* is set, so a tick
        with nothing to re-arm leaves no trace.
        """
        if not self._trades:
            if self._book.open_orders:
                return None
            return self._place_opening_buy(now, announce_skip)

        last = self._trades[0]
        if self._book.get(last.side.opposite) is not None:
            return None
        return self._rearm(last, now, announce_skip)

    def _place_opening_buy(
        self, now: datetime, announce_skip: bool = True,
    ) -> Optional[Order]:
        cfg = self._config
        seed = self._current_price
        capital = min(cfg.initial_capital, self._ledger.balance.quote)
        quantity = opening_buy_quantity(capital, seed, cfg.max_trade_size)
        if quantity <= 0:
            if announce_skip:
                message = f"Opening BUY skipped: no {cfg.quote_asset} available"
                self._record(LogCategory.ORDER, message, now, level=logging.WARNING)
                self._notify("warning", message, now)
            return None
        price = buy_trigger(seed, cfg.opening_discount_pct)
        return self._place_order(Side.BUY, price, quantity, now)

    def _place_order(
        self,
        side: Side,
        price: float,
        quantity: float,
        now: datetime,
        entry_price: Optional[float] = None,
    ) -> Optional[Order]:
        """Rest a new order locally and, in live mode, mirror it remotely."""
        order = Order(
            id=next(self._order_ids),
            side=side,
            trigger_price=price,
            quantity=quantity,
            placed_at=now,
            entry_price=entry_price,
        )
        try:
            self._book.place(order)
        except SlotOccupiedError as exc:
            self._record(
                LogCategory.ORDER, f"{side.value} order not placed: {exc}", now,
                level=logging.WARNING,
            )
            return None

        self._record(
            LogCategory.ORDER,
            f"{side.value} order placed at ${price:.2f} for "
            f"{quantity:.4f} {self._config.base_asset}",
            now,
        )
        if self._mode is Mode.LIVE and self._connector is not None:
            self._spawn(self._place_remote(order))
        return order

    # ── Live mode: exchange calls ────────────────────────────────────────

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _place_remote(self, order: Order) -> None:
        """Mirror *order* on the exchange and reconcile the outcome."""
        try:
            ack = await self._connector.place_order(
                order.side, order.quantity, order.trigger_price,
            )
        except Exception as exc:
            self._reconcile_failed_placement(order, exc)
            return

        # No await between the check and the mutation below.
        if self._book.get(order.side) == order:
            self._remote_ids[order.id] = ack.order_id
            logger.info(
                "Exchange acknowledged %s order %d as %s",
                order.side.value, order.id, ack.order_id,
            )
        elif self._emergency_mode:
            # Acknowledged after an emergency stop already dropped it locally
            self._spawn(self._cancel_remote(order, ack.order_id))

    def _reconcile_failed_placement(self, order: Order, exc: Exception) -> None:
        now = self._clock()
        if self._book.get(order.side) == order:
            self._book.remove(order.id)
            message = (
                f"{order.side.value} order placement failed: {exc}; slot cleared"
            )
        else:
            message = f"{order.side.value} order placement failed: {exc}"
        self._record(LogCategory.ORDER, message, now, level=logging.WARNING)
        self._notify("warning", message, now)

    async def _cancel_remote(self, order: Order, remote_id: str) -> None:
        try:
            await self._connector.cancel_order(remote_id)
        except Exception as exc:
            now = self._clock()
            message = f"Cancel of {order.side.value} order {remote_id} failed: {exc}"
            self._record(LogCategory.EMERGENCY, message, now, level=logging.WARNING)
            self._notify("warning", message, now)
            return
        logger.info("Cancelled exchange order %s", remote_id)

    # ── Bookkeeping ──────────────────────────────────────────────────────

    def _refresh_stats(self, now: datetime) -> None:
        self._stats = calculate_stats(
            self._trades,
            self._total_cycles,
            self._config.initial_capital,
            total_profit=self._total_profit,
            winning_cycles=self._winning_cycles,
            daily_loss_limit_pct=self._config.daily_loss_limit_pct,
            now=now,
        )
        if self._stats.daily_loss_limit_reached and self._loss_limit_day != now.date():
            self._loss_limit_day = now.date()
            message = (
                f"Daily loss limit of {self._config.daily_loss_limit_pct:.1f}% reached "
                f"(daily profit ${self._stats.daily_profit:.2f})"
            )
            self._record(LogCategory.SYSTEM, message, now, level=logging.WARNING)
            self._notify("warning", message, now)

    def _record(
        self,
        category: LogCategory,
        message: str,
        now: datetime,
        level: int = logging.INFO,
    ) -> None:
        self._log.append(category, message, timestamp=now, level=level)

    def _notify(self, level: str, message: str, now: datetime) -> None:
        notification = Notification(level=level, message=message, timestamp=now)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")


# ── Serialisation helpers ────────────────────────────────────────────────


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "side": order.side.value,
        "trigger_price": order.trigger_price,
        "quantity": order.quantity,
        "entry_price": order.entry_price,
        "placed_at": order.placed_at.isoformat(),
    }


def trade_to_dict(trade: Trade) -> dict:
    return {
        "id": trade.id,
        "side": trade.side.value,
        "fill_price": trade.fill_price,
        "quantity": trade.quantity,
        "realized_profit": trade.realized_profit,
        "cycle_number": trade.cycle_number,
        "timestamp": trade.timestamp.isoformat(),
    }


def log_entry_to_dict(entry: LogEntry) -> dict:
    return {
        "timestamp": entry.timestamp.isoformat(),
        "category": entry.category.value,
        "message": entry.message,
    }
