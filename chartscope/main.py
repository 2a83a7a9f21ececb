"""ChartScope — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serve, analyze, charts and stats modes.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chartscope.api.routers import router
from chartscope.positions.store import PersistenceError

app = FastAPI(title="ChartScope Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("chartscope")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import json

    from chartscope.config import load_config

    parser = argparse.ArgumentParser(description="ChartScope pattern scoring and position tracker")
    parser.add_argument(
        "--mode",
        choices=["serve", "analyze", "charts", "stats"],
        default="serve",
        help="Run mode (default: serve)",
    )
    parser.add_argument("--coin", default="bitcoin", help="Coin id for charts mode")
    parser.add_argument("--user", default="local", help="User context for positions")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "analyze":
        from chartscope.patterns.scorer import analyze_patterns, convergence_label, example_selection

        selection, momentum = example_selection()
        result = analyze_patterns(selection, momentum)
        logger.info("Example analysis: %s", convergence_label(result))
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return

    from chartscope.market.coingecko_client import CoinGeckoClient

    client = CoinGeckoClient(config)

    if args.mode == "charts":
        from chartscope.series.pipeline import generate_chart_series

        series = asyncio.run(generate_chart_series(client, args.coin))
        for tf, points in series.by_timeframe().items():
            print(f"{tf:>4}: {len(points)} candles")
        if series.is_placeholder:
            logger.warning("Placeholder data used for %s: %s", args.coin, series.sources)
        return

    from chartscope.positions.store import PositionStore
    from chartscope.repos.db import init_db
    from chartscope.repos.position_repo import PositionRepo

    init_db(config.db_path)
    store = PositionStore(repo=PositionRepo(config.db_path), user_id=args.user)

    if args.mode == "stats":
        from chartscope.cli.summary import print_stats

        print_stats(store.get_stats())
        return

    import uvicorn

    from chartscope.api.routers import configure_routers

    configure_routers(store=store, market_client=client)
    logger.info("Dashboard API available at http://localhost:%d", config.health_port)
    uvicorn.run(app, host="0.0.0.0", port=config.health_port, log_level="info")


if __name__ == "__main__":
    _run_cli()
