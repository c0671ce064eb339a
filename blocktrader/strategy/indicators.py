"""Technical indicators — SMA, EMA, RSI, MACD, Bollinger Bands. Pure functions, no I/O.

Every ``calculate_*`` function takes a plain list of prices (oldest first)
and returns a *compact* series: the first element is the first value the
indicator can produce, so there is no ``nan`` padding.  Everything is
recomputed from the full history on every call.
"""

import math
from typing import Callable

from blocktrader.errors import InsufficientDataError, UnknownIndicatorError
from blocktrader.strategy.models import CandleData, IndicatorResult, MarketData


# Guard substituted for a zero average loss so RS stays finite
_RSI_ZERO_LOSS_GUARD = 0.001

_PRICE_FIELDS = ("open", "high", "low", "close", "volume")


def calculate_sma(prices: list[float], period: int) -> list[float]:
    """Simple Moving Average over a trailing window of *period* samples.

    Returns ``len(prices) - period + 1`` values; value *j* is the mean of
    ``prices[j : j + period]``.

    Raises ``InsufficientDataError`` if fewer than *period* prices.
    """
    _require(len(prices), period, f"SMA({period})")

    sma: list[float] = []
    for i in range(period - 1, len(prices)):
        window = prices[i - period + 1 : i + 1]
        sma.append(sum(window) / period)
    return sma


def calculate_ema(prices: list[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Uses ``EMA = (price - EMA_prev) × k + EMA_prev`` with
    ``k = 2 / (period + 1)``.  The first value is seeded with the SMA of
    the first *period* prices, so the series has
    ``len(prices) - period + 1`` values.

    Raises ``InsufficientDataError`` if fewer than *period* prices.
    """
    _require(len(prices), period, f"EMA({period})")

    k = 2.0 / (period + 1)
    ema: list[float] = [sum(prices[:period]) / period]
    for price in prices[period:]:
        prev = ema[-1]
        ema.append((price - prev) * k + prev)
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(prices: list[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = price[i] - price[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = mean of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RS = avg_gain / avg_loss  (avg_loss of 0 is replaced by 0.001)
        6. RSI = 100 - 100 / (1 + RS)

    Requires at least ``period + 1`` prices.  Returns
    ``len(prices) - period`` values.
    """
    _require(len(prices), period + 1, f"RSI({period})")

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi: list[float] = [_rsi_from_avgs(avg_gain, avg_loss)]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi.append(_rsi_from_avgs(avg_gain, avg_loss))

    return rsi


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    rs = avg_gain / (avg_loss if avg_loss != 0 else _RSI_ZERO_LOSS_GUARD)
    return 100.0 - 100.0 / (1.0 + rs)


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    prices: list[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> tuple[list[float], list[float], list[float]]:
    """Calculate MACD line, signal line and histogram.

    The fast and slow EMA series are combined position by position
    (``macd[i] = fast[i] - slow[i]``) over the length of the shorter one.
    The signal line is a seeded EMA of the MACD line and the histogram is
    ``macd[i] - signal[i]`` over the length of the signal line.

    Requires at least ``slow_period + signal_period`` prices.

    Returns ``(macd, signal, histogram)``.
    """
    _require(
        len(prices),
        slow_period + signal_period,
        f"MACD({fast_period},{slow_period},{signal_period})",
    )

    fast = calculate_ema(prices, fast_period)
    slow = calculate_ema(prices, slow_period)
    macd_line = [f - s for f, s in zip(fast, slow)]
    signal_line = calculate_ema(macd_line, signal_period)
    histogram = [m - s for m, s in zip(macd_line, signal_line)]
    return macd_line, signal_line, histogram


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    prices: list[float],
    period: int = 20,
    deviations: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Calculate Bollinger Bands.

    Middle = SMA(*period*)
    Upper  = middle + *deviations* × σ
    Lower  = middle − *deviations* × σ

    σ is the population standard deviation of each window around that
    window's mean.  Requires at least *period* prices.

    Returns ``(upper, middle, lower)``, each ``len(prices) - period + 1``
    long.
    """
    _require(len(prices), period, f"Bollinger({period},{deviations})")

    middle = calculate_sma(prices, period)
    upper: list[float] = []
    lower: list[float] = []

    for j, mean in enumerate(middle):
        window = prices[j : j + period]
        variance = sum((x - mean) ** 2 for x in window) / period
        sigma = math.sqrt(variance)
        upper.append(mean + deviations * sigma)
        lower.append(mean - deviations * sigma)

    return upper, middle, lower


# ── Block-level computation ──────────────────────────────────────────────


def required_periods(subtype: str, settings: dict) -> int:
    """Minimum number of candles the indicator needs with these settings."""
    if subtype == "rsi":
        return _int_setting(settings, "period", 14) + 1
    if subtype == "macd":
        return _int_setting(settings, "slowPeriod", 26) + _int_setting(
            settings, "signalPeriod", 9
        )
    if subtype == "sma":
        return _int_setting(settings, "period", 14)
    if subtype == "ema":
        return _int_setting(settings, "period", 12)
    if subtype == "bb":
        return _int_setting(settings, "period", 20)
    raise UnknownIndicatorError(f"Unknown indicator type: {subtype}")


def compute_indicator(
    subtype: str, market_data: MarketData, settings: dict,
) -> IndicatorResult:
    """Compute the indicator named by *subtype* for one symbol.

    The symbol is ``settings["symbol"]`` or, when absent, the first symbol
    in *market_data*.

    Raises:
        UnknownIndicatorError: *subtype* is not registered.
        InsufficientDataError: no history for the symbol, or too little of it.
    """
    handler = INDICATOR_REGISTRY.get(subtype)
    if handler is None:
        raise UnknownIndicatorError(
            f"Unknown indicator type '{subtype}'. "
            f"Available: {', '.join(INDICATOR_REGISTRY.keys())}"
        )

    symbol = settings.get("symbol") or next(iter(market_data), None)
    symbol_data = market_data.get(symbol) if symbol else None
    if symbol_data is None or not symbol_data.history:
        raise InsufficientDataError(f"No historical data found for {symbol}")

    prices = _price_series(symbol_data.history, settings)
    _require(len(prices), required_periods(subtype, settings), subtype.upper())
    return handler(prices, settings, symbol_data.timestamp)


def _sma_result(prices: list[float], settings: dict, timestamp) -> IndicatorResult:
    period = _int_setting(settings, "period", 14)
    sma = calculate_sma(prices, period)
    return IndicatorResult(
        value=sma[-1], history=sma, period=period,
        settings={"period": period}, timestamp=timestamp,
    )


def _ema_result(prices: list[float], settings: dict, timestamp) -> IndicatorResult:
    period = _int_setting(settings, "period", 12)
    ema = calculate_ema(prices, period)
    return IndicatorResult(
        value=ema[-1], history=ema, period=period,
        settings={"period": period}, timestamp=timestamp,
    )


def _rsi_result(prices: list[float], settings: dict, timestamp) -> IndicatorResult:
    period = _int_setting(settings, "period", 14)
    rsi = calculate_rsi(prices, period)
    return IndicatorResult(
        value=rsi[-1], history=rsi, period=period,
        settings={"period": period}, timestamp=timestamp,
        extras={
            "overbought": float(settings.get("overbought") or 70),
            "oversold": float(settings.get("oversold") or 30),
        },
    )


def _macd_result(prices: list[float], settings: dict, timestamp) -> IndicatorResult:
    fast = _int_setting(settings, "fastPeriod", 12)
    slow = _int_setting(settings, "slowPeriod", 26)
    signal = _int_setting(settings, "signalPeriod", 9)
    macd_line, signal_line, histogram = calculate_macd(prices, fast, slow, signal)
    return IndicatorResult(
        value={
            "macd": macd_line[-1],
            "signal": signal_line[-1],
            "histogram": histogram[-1],
        },
        history={
            "macd": macd_line,
            "signal": signal_line,
            "histogram": histogram,
        },
        period=slow,
        settings={"fastPeriod": fast, "slowPeriod": slow, "signalPeriod": signal},
        timestamp=timestamp,
    )


def _bollinger_result(prices: list[float], settings: dict, timestamp) -> IndicatorResult:
    period = _int_setting(settings, "period", 20)
    deviations = float(settings.get("deviations") or 2)
    upper, middle, lower = calculate_bollinger(prices, period, deviations)
    return IndicatorResult(
        value={"middle": middle[-1], "upper": upper[-1], "lower": lower[-1]},
        history={"middle": middle, "upper": upper, "lower": lower},
        period=period,
        settings={"period": period, "deviations": deviations},
        timestamp=timestamp,
    )


INDICATOR_REGISTRY: dict[str, Callable[..., IndicatorResult]] = {
    "sma": _sma_result,
    "ema": _ema_result,
    "rsi": _rsi_result,
    "macd": _macd_result,
    "bb": _bollinger_result,
}


# ── Helpers ──────────────────────────────────────────────────────────────


def _require(available: int, needed: int, label: str) -> None:
    if available < needed:
        raise InsufficientDataError(
            f"Need at least {needed} periods for {label}, got {available}"
        )


def _int_setting(settings: dict, key: str, default: int) -> int:
    """Read a positive integer setting; missing, zero or blank means *default*."""
    raw = settings.get(key)
    if raw in (None, "", 0):
        return default
    value = int(raw)
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def _price_series(history, settings: dict) -> list[float]:
    price_field = settings.get("priceField") or settings.get("field") or "close"
    if price_field not in _PRICE_FIELDS:
        raise ValueError(f"Unknown price field '{price_field}'")
    candles: list[CandleData] = list(history)
    return [getattr(c, price_field) for c in candles]
