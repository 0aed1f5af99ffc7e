"""LoopTrade — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
simulation and live modes.
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI

from looptrade.api.routers import router

app = FastAPI(title="LoopTrade Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("looptrade")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "LoopTrade",
    }


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


# Shutdown tasks stay referenced until they finish
_shutdown_tasks: set = set()


def request_shutdown(engine, server=None):
    """Schedule a graceful engine stop and ask *server* to exit.

    Must be called from inside the running event loop.  Returns the stop task.
    """
    import asyncio

    logger.info("Shutdown signal received, stopping gracefully.")
    task = asyncio.ensure_future(engine.stop())
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)
    if server is not None:
        server.should_exit = True
    return task


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and run the engine."""
    import argparse
    import asyncio
    import time

    from looptrade.api.routers import configure_routers
    from looptrade.config import load_config
    from looptrade.engine import CycleEngine
    from looptrade.feed import RandomWalkFeed

    parser = argparse.ArgumentParser(description="LoopTrade buy-dip / sell-rally bot")
    parser.add_argument(
        "--mode",
        choices=["simulation", "live"],
        default="simulation",
        help="Trading mode (default: simulation)",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=0,
        help="Stop after this many ticks (default: unlimited)",
    )
    parser.add_argument("--seed", type=int, help="Random walk seed")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the engine without the API server",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if warn_if_live(args.mode):
        time.sleep(5)

    connector = None
    if args.mode == "live":
        from looptrade.broker.binance_client import BinanceClient

        connector = BinanceClient(config)

    engine = CycleEngine(config, connector=connector)
    configure_routers(engine)

    feed = RandomWalkFeed(
        start_price=config.opening_price,
        interval_seconds=config.tick_interval_seconds,
        seed=args.seed,
        max_ticks=args.max_ticks,
    )

    asyncio.run(
        _run_engine(engine, feed, args.mode, config.api_port, serve_api=not args.engine_only)
    )


async def _run_engine(engine, feed, mode: str, port: int, serve_api: bool = True) -> None:
    """Start the engine and, optionally, the API server concurrently."""
    import asyncio
    import signal

    import uvicorn

    from looptrade.cli.dashboard import print_status

    await engine.start(mode)
    logger.info("Starting LoopTrade in %s mode on %s.", mode, engine.config.trade_pair)

    server = None
    if serve_api:
        uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
        server = uvicorn.Server(uvi_config)

    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGINT, request_shutdown, engine, server)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        pass

    async def _run_feed():
        await engine.run(feed)
        if server is not None:
            server.should_exit = True

    async def _run_server():
        await server.serve()
        # uvicorn handles SIGINT itself while serving
        await engine.stop()

    if server is not None:
        logger.info("Status API available at http://localhost:%d/status", port)
        results = await asyncio.gather(_run_server(), _run_feed(), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("LoopTrade task failed: %s", result)
    else:
        await _run_feed()

    await engine.stop()
    await engine.drain()
    print_status(engine.snapshot())


if __name__ == "__main__":
    _run_cli()
