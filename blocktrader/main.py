"""BlockTrader — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
the ``serve`` and ``replay`` modes.
"""

import logging

from fastapi import FastAPI

from blocktrader.api.routers import router

app = FastAPI(title="BlockTrader Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("blocktrader")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv=None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse

    from blocktrader.config import load_config

    parser = argparse.ArgumentParser(description="BlockTrader paper-trading service")
    parser.add_argument(
        "--mode",
        choices=["serve", "replay"],
        default="serve",
        help="Run the API server or replay candles through a strategy (default: serve)",
    )
    parser.add_argument("--env", help="Path to a .env file")
    parser.add_argument("--strategy-id", help="Strategy to replay")
    parser.add_argument("--candles", help="Replay candles JSON ({SYMBOL: [candle, ...]})")
    parser.add_argument("--capital", type=float, help="Replay starting capital")
    args = parser.parse_args(argv)

    config = load_config(args.env)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "replay":
        if not args.strategy_id or not args.candles:
            parser.error("--mode replay requires --strategy-id and --candles")
        _run_replay(config, args.strategy_id, args.candles, args.capital)
    else:
        _run_server(config)


def _run_server(config) -> None:
    """Wire the session manager into the routers and start uvicorn."""
    import uvicorn

    from blocktrader.api.routers import configure_routers
    from blocktrader.repos.strategy_repo import JsonStrategyRepository
    from blocktrader.session_manager import SessionManager

    manager = SessionManager(JsonStrategyRepository(config.strategies_path), config=config)
    configure_routers(manager)

    logger.info("Starting BlockTrader API on port %d.", config.api_port)
    uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")


def _run_replay(config, strategy_id: str, candles_path: str, capital=None) -> dict:
    """Replay a candle file through a stored strategy and log the stats."""
    import json
    import pathlib

    from blocktrader.backtest.engine import ReplayEngine
    from blocktrader.models.session_options import SessionOptions
    from blocktrader.repos.strategy_repo import JsonStrategyRepository
    from blocktrader.strategy.models import CandleData

    strategy = JsonStrategyRepository(config.strategies_path).get_strategy(strategy_id)
    if strategy is None:
        raise SystemExit(f"Strategy not found: {strategy_id}")

    raw = json.loads(pathlib.Path(candles_path).read_text(encoding="utf-8"))
    if isinstance(raw, list):
        raw = {config.default_symbol: raw}
    candles = {
        symbol: [CandleData.from_dict(c) for c in series]
        for symbol, series in raw.items()
    }

    options = SessionOptions(
        initial_capital=capital or config.default_initial_capital,
        risk_per_trade=config.default_risk_per_trade,
        time_period=strategy.timeframe or config.default_time_period,
    )
    result = ReplayEngine(strategy, options).run(candles)
    stats = result["stats"]
    logger.info(
        "Replay complete: %d trades, PnL: $%.2f, Win rate: %.1f%%, "
        "final capital $%.2f, max drawdown %.2f%%",
        stats["total_trades"],
        stats["net_pnl"],
        stats["win_rate"],
        result["final_capital"],
        result["max_drawdown_pct"],
    )
    return result


if __name__ == "__main__":
    _run_cli()
