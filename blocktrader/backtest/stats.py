"""Replay statistics — pure functions over closed trades and the equity curve.

Trade counts and profit factor come from realised P&L.  Risk figures
(Sharpe, drawdown) come from the bar-by-bar equity curve of the replayed
session, annualised for the session's time period.
"""

import math
from typing import Optional, Sequence

# Bars per year for US equity sessions (252 days × 6.5 hours)
_PERIODS_PER_YEAR = {
    "1m": 98_280,
    "5m": 19_656,
    "15m": 6_552,
    "30m": 3_276,
    "1h": 1_638,
    "1d": 252,
    "1w": 52,
    "1wk": 52,
    "1mo": 12,
}


def calculate_stats(
    pnls: list[float],
    equity_curve: Sequence[float] = (),
    time_period: str = "1d",
) -> dict:
    """Summarise a replay.

    Args:
        pnls: Realised P&L of each closed (sell) trade.
        equity_curve: Portfolio value after every bar, starting capital first.
        time_period: Bar size, used to annualise the Sharpe ratio.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate`` (percent), ``profit_factor``, ``net_pnl``,
        ``sharpe_ratio``, ``max_drawdown`` (currency) and
        ``max_drawdown_pct``.
    """
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]
    gross_loss = -sum(losers)

    profit_factor: Optional[float] = None
    if gross_loss > 0:
        profit_factor = round(sum(winners) / gross_loss, 4)

    drawdown, drawdown_pct = max_drawdowns(equity_curve)
    sharpe = annualised_sharpe(bar_returns(equity_curve), periods_per_year(time_period))

    return {
        "total_trades": len(pnls),
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "win_rate": round(len(winners) / len(pnls) * 100.0, 4) if pnls else 0.0,
        "profit_factor": profit_factor,
        "net_pnl": round(sum(pnls), 2),
        "sharpe_ratio": round(sharpe, 4),
        "max_drawdown": round(drawdown, 2),
        "max_drawdown_pct": round(drawdown_pct, 4),
    }


def periods_per_year(time_period: str) -> int:
    """Bars per year for *time_period*; unknown sizes are treated as daily."""
    return _PERIODS_PER_YEAR.get(time_period, 252)


def bar_returns(equity_curve: Sequence[float]) -> list[float]:
    """Fractional change of the equity curve from one bar to the next."""
    return [
        (cur - prev) / prev
        for prev, cur in zip(equity_curve, equity_curve[1:])
        if prev > 0
    ]


def annualised_sharpe(returns: Sequence[float], bars_per_year: int) -> float:
    """Mean over sample standard deviation, scaled by √bars_per_year.

    0.0 for fewer than two returns or a flat curve.
    """
    if len(returns) < 2:
        return 0.0
    mean = sum(returns) / len(returns)
    spread = math.sqrt(sum((r - mean) ** 2 for r in returns) / (len(returns) - 1))
    if spread == 0:
        return 0.0
    return mean / spread * math.sqrt(bars_per_year)


def max_drawdowns(equity_curve: Sequence[float]) -> tuple[float, float]:
    """Largest peak-to-trough fall as ``(currency, percent of peak)``.

    The two maxima are tracked independently and may come from different
    troughs.
    """
    peak = None
    worst = worst_pct = 0.0
    for equity in equity_curve:
        if peak is None or equity > peak:
            peak = equity
            continue
        worst = max(worst, peak - equity)
        if peak > 0:
            worst_pct = max(worst_pct, (peak - equity) / peak * 100.0)
    return worst, worst_pct
