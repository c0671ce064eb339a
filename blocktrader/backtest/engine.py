"""Replay engine — feeds historical candles through a paper-trading session.

Bar by bar, the session sees a growing history window and the bar's close
as the live price, exactly as it would during live update cycles.  No
report is rendered; the result is a plain dict.
"""

import logging
from typing import Optional

from blocktrader.backtest.stats import calculate_stats
from blocktrader.models.session import Session
from blocktrader.models.session_options import SessionOptions
from blocktrader.portfolio.simulator import apply_signals, recompute_metrics
from blocktrader.repos.strategy_repo import InMemoryStrategyRepository
from blocktrader.session_manager import SessionManager
from blocktrader.strategy.models import CandleData, MarketData, Signal, Strategy, SymbolMarketData

logger = logging.getLogger("blocktrader.backtest")


class ReplayEngine:
    """Replays candle histories through a strategy.

    Args:
        strategy: Strategy to evaluate.
        options: Session options (capital, risk).  Symbols default to the
                 keys of the candle mapping passed to :meth:`run`.
        warmup: Bars supplied before the first update cycle.
    """

    def __init__(
        self,
        strategy: Strategy,
        options: Optional[SessionOptions] = None,
        warmup: int = 2,
    ) -> None:
        if warmup < 1:
            raise ValueError(f"warmup must be at least 1, got {warmup}")
        self._strategy = strategy
        self._options = options or SessionOptions()
        self._warmup = warmup

    # ── Public API ───────────────────────────────────────────────────────

    def run(
        self,
        candles: dict[str, list[CandleData]],
        close_at_end: bool = True,
    ) -> dict:
        """Execute a full replay.

        Symbols are aligned by bar index over the shortest history.

        Returns:
            Dict with ``session`` (final ``Session``), ``stats``,
            ``final_capital``, ``equity_curve`` and ``max_drawdown_pct``.
        """
        if not candles:
            raise ValueError("No candle data to replay")

        manager = SessionManager(InMemoryStrategyRepository([self._strategy]))
        options = self._options
        if options.symbols is None:
            options = SessionOptions(
                initial_capital=options.initial_capital,
                symbols=tuple(candles.keys()),
                time_period=options.time_period,
                risk_per_trade=options.risk_per_trade,
                auto_run=options.auto_run,
            )
        session = manager.create_session(self._strategy.owner_id, self._strategy.id, options)

        bars = min(len(series) for series in candles.values())
        equity_curve: list[float] = [session.current_capital]

        for i in range(self._warmup - 1, bars):
            snapshot = _snapshot(candles, i)
            manager.update_session(session.id, snapshot)
            equity_curve.append(session.current_capital)

        if close_at_end and bars:
            _close_positions(session, _snapshot(candles, bars - 1))
            equity_curve.append(session.current_capital)

        pnls = [
            t.profit_loss for t in session.transactions
            if t.type == "sell" and t.profit_loss is not None
        ]
        logger.info(
            "Replay of '%s' finished: %d bars, %d closed trades, capital %.2f",
            self._strategy.id, bars, len(pnls), session.current_capital,
        )
        stats = calculate_stats(pnls, equity_curve, session.settings.time_period)
        return {
            "session": session,
            "stats": stats,
            "final_capital": session.current_capital,
            "equity_curve": equity_curve,
            "max_drawdown_pct": stats["max_drawdown_pct"],
        }


# ── Helpers ──────────────────────────────────────────────────────────────


def _snapshot(candles: dict[str, list[CandleData]], index: int) -> MarketData:
    """Market data as it looked at the close of bar *index*."""
    snapshot: MarketData = {}
    for symbol, series in candles.items():
        window = series[: index + 1]
        last = window[-1]
        snapshot[symbol] = SymbolMarketData(
            price=last.close, timestamp=last.time, history=tuple(window),
        )
    return snapshot


def _close_positions(session: Session, snapshot: MarketData) -> None:
    """Sell every open position at the last close."""
    signals = [
        Signal(action="sell", symbol=p.symbol, quantity=p.quantity,
               price=snapshot[p.symbol].price)
        for p in list(session.positions)
        if p.symbol in snapshot
    ]
    apply_signals(session, signals, snapshot)
    recompute_metrics(session)
