"""Internal API routers — /status, /orders, /trades, /logs, /stats endpoints.

Read-only: no endpoint sends commands back into the engine.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from looptrade.engine import CycleEngine, log_entry_to_dict, order_to_dict, trade_to_dict
from looptrade.models import LogCategory

logger = logging.getLogger("looptrade")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_engine: Optional[CycleEngine] = None  # Set via configure_routers()


def configure_routers(engine: Optional[CycleEngine]) -> None:
    """Inject the engine whose state the endpoints expose."""
    global _engine  # noqa: PLW0603
    _engine = engine


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Engine status, balances, open orders, and stats in one payload."""
    if _engine is None:
        return {"status": "idle", "running": False}
    return _engine.snapshot()


@router.get("/orders")
async def get_orders():
    """Currently open orders (at most one per side)."""
    if _engine is None:
        return {"orders": []}
    return {"orders": [order_to_dict(o) for o in _engine.open_orders]}


@router.get("/trades")
async def get_trades(limit: int = Query(default=20, ge=1, le=50)):
    """Most recent trades, newest first."""
    if _engine is None:
        return {"trades": [], "total": 0}
    trades = _engine.trades
    return {
        "trades": [trade_to_dict(t) for t in trades[:limit]],
        "total": len(trades),
    }


@router.get("/logs")
async def get_logs(
    limit: int = Query(default=50, ge=1, le=100),
    category: Optional[LogCategory] = Query(default=None),
):
    """Event log entries, newest first, optionally filtered by category."""
    if _engine is None:
        return {"logs": []}
    entries = _engine.logs(limit=limit, category=category)
    return {"logs": [log_entry_to_dict(e) for e in entries]}


@router.get("/stats")
async def get_stats():
    """Cycle statistics snapshot."""
    if _engine is None:
        return {"stats": None}
    return {"stats": _engine.snapshot()["stats"]}
