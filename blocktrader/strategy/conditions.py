"""Condition evaluation — crossover, threshold and price-action predicates.

Conditions never raise for missing data: a value that cannot be resolved
makes the condition ``False``.  Only an unknown condition subtype is an
error.
"""

import operator
from typing import Callable, Optional

from blocktrader.errors import UnknownConditionError
from blocktrader.strategy.models import CandleData, IndicatorResult, MarketData


Indicators = dict[str, IndicatorResult]

_THRESHOLD_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    "greater_than": operator.gt,
    "<": operator.lt,
    "less_than": operator.lt,
    "==": operator.eq,
    "===": operator.eq,
    "equals": operator.eq,
    ">=": operator.ge,
    "greater_than_equals": operator.ge,
    "<=": operator.le,
    "less_than_equals": operator.le,
}

_BULLISH_DIRECTIONS = ("above", "bullish")
_BEARISH_DIRECTIONS = ("below", "bearish")

# A doji body is smaller than this fraction of the candle range
_DOJI_BODY_RATIO = 0.1


def evaluate_condition(
    subtype: str,
    market_data: MarketData,
    indicators: Indicators,
    settings: dict,
) -> bool:
    """Evaluate the condition named by *subtype*.

    Raises ``UnknownConditionError`` if *subtype* is not registered.
    """
    handler = CONDITION_REGISTRY.get(subtype)
    if handler is None:
        raise UnknownConditionError(
            f"Unknown condition type '{subtype}'. "
            f"Available: {', '.join(CONDITION_REGISTRY.keys())}"
        )
    return handler(settings, market_data, indicators)


# ── Crossover ────────────────────────────────────────────────────────────


def evaluate_crossover(
    settings: dict, market_data: MarketData, indicators: Indicators,
) -> bool:
    """True when source 1 crossed source 2 between the last two samples."""
    direction = settings.get("direction", "above")
    type1, source1 = settings.get("source1Type"), settings.get("source1")
    type2, source2 = settings.get("source2Type"), settings.get("source2")

    value1 = resolve_source(type1, source1, market_data, indicators)
    value2 = resolve_source(type2, source2, market_data, indicators)
    prev1 = resolve_source(type1, source1, market_data, indicators, previous=True)
    prev2 = resolve_source(type2, source2, market_data, indicators, previous=True)

    if None in (value1, value2, prev1, prev2):
        return False
    return crossed(prev1, prev2, value1, value2, direction)


def crossed(
    prev1: float, prev2: float, cur1: float, cur2: float, direction: str,
) -> bool:
    """Crossover test on two consecutive samples of two series."""
    bullish = prev1 <= prev2 and cur1 > cur2
    bearish = prev1 >= prev2 and cur1 < cur2
    if direction in _BULLISH_DIRECTIONS:
        return bullish
    if direction in _BEARISH_DIRECTIONS:
        return bearish
    if direction == "any":
        return bullish or bearish
    return False


# ── Threshold ────────────────────────────────────────────────────────────


def evaluate_threshold(
    settings: dict, market_data: MarketData, indicators: Indicators,
) -> bool:
    """Compare one source value against a fixed number."""
    value = resolve_source(
        settings.get("sourceType"), settings.get("source"), market_data, indicators,
    )
    if value is None:
        return False

    compare = _THRESHOLD_OPERATORS.get(settings.get("operator", ""))
    threshold = _to_float(settings.get("value"))
    if compare is None or threshold is None:
        return False
    return compare(value, threshold)


# ── Price action ─────────────────────────────────────────────────────────


def evaluate_price_action(
    settings: dict, market_data: MarketData, indicators: Indicators,
) -> bool:
    """Match a candlestick pattern on the latest one or two candles."""
    symbol_data = market_data.get(settings.get("symbol", ""))
    if symbol_data is None or len(symbol_data.history) < 2:
        return False

    history = symbol_data.history
    pattern = _PATTERNS.get(settings.get("patternType", ""))
    if pattern is None:
        return False
    lookback = int(settings.get("lookbackPeriod") or 1)
    return pattern(history, lookback)


def _bullish_candle(history, lookback) -> bool:
    current = history[-1]
    return current.close > current.open


def _bearish_candle(history, lookback) -> bool:
    current = history[-1]
    return current.close < current.open


def _doji(history, lookback) -> bool:
    current = history[-1]
    body = abs(current.close - current.open)
    total_range = current.high - current.low
    if total_range <= 0:
        # Flat bar has no range to measure the body against
        return False
    return body / total_range < _DOJI_BODY_RATIO


def _hammer(history, lookback) -> bool:
    current = history[-1]
    if current.close <= current.open:
        return False
    body = current.close - current.open
    lower_wick = current.open - current.low
    upper_wick = current.high - current.close
    return lower_wick > 2 * body and upper_wick < body


def _engulfing_bullish(history, lookback) -> bool:
    current, previous = history[-1], history[-2]
    return (
        current.close > current.open
        and previous.close < previous.open
        and current.open < previous.close
        and current.close > previous.open
    )


def _engulfing_bearish(history, lookback) -> bool:
    current, previous = history[-1], history[-2]
    return (
        current.close < current.open
        and previous.close > previous.open
        and current.open > previous.close
        and current.close < previous.open
    )


def _lookback_window(history, lookback: int) -> list[CandleData]:
    """Up to *lookback* candles before the current one."""
    start = max(0, len(history) - 1 - lookback)
    return list(history[start:-1])


def _higher_high(history, lookback) -> bool:
    current = history[-1]
    return all(current.high > c.high for c in _lookback_window(history, lookback))


def _lower_low(history, lookback) -> bool:
    current = history[-1]
    return all(current.low < c.low for c in _lookback_window(history, lookback))


def _higher_close(history, lookback) -> bool:
    return history[-1].close > history[-2].close


def _lower_close(history, lookback) -> bool:
    return history[-1].close < history[-2].close


_PATTERNS = {
    "bullish_candle": _bullish_candle,
    "bearish_candle": _bearish_candle,
    "doji": _doji,
    "hammer": _hammer,
    "engulfing_bullish": _engulfing_bullish,
    "engulfing_bearish": _engulfing_bearish,
    "higher_high": _higher_high,
    "lower_low": _lower_low,
    "higher_close": _higher_close,
    "lower_close": _lower_close,
}


CONDITION_REGISTRY: dict[str, Callable[[dict, MarketData, Indicators], bool]] = {
    "crossover": evaluate_crossover,
    "threshold": evaluate_threshold,
    "price_action": evaluate_price_action,
}


# ── Source resolution ────────────────────────────────────────────────────


def resolve_source(
    source_type: Optional[str],
    source,
    market_data: MarketData,
    indicators: Indicators,
    previous: bool = False,
) -> Optional[float]:
    """Resolve a condition operand to a number, or ``None`` if unavailable.

    Source types:
        ``indicator``  ``"<blockId>"`` or ``"<blockId>.<series>"``
        ``price``      ``"<SYMBOL>.<field>"`` on the last candle
        ``value``      a literal number

    With ``previous=True`` the value one step back is returned (the
    second-to-last indicator sample or candle).  A literal's previous
    value is itself.
    """
    if source is None:
        return None
    if source_type == "indicator":
        return _indicator_value(str(source), indicators, previous)
    if source_type == "price":
        return _price_value(str(source), market_data, previous)
    if source_type == "value":
        return _to_float(source)
    return None


def _indicator_value(
    source: str, indicators: Indicators, previous: bool,
) -> Optional[float]:
    block_id, series_name = source, None
    if source not in indicators and "." in source:
        block_id, series_name = source.rsplit(".", 1)

    result = indicators.get(block_id)
    if result is None:
        return None

    if (series_name is None) == result.is_structured:
        # Structured results need a series name; plain ones must not have one
        return None
    if not previous:
        value = result.value.get(series_name) if series_name else result.value
        return _to_float(value)

    history = result.series(series_name)
    if len(history) < 2:
        return None
    return _to_float(history[-2])


def _price_value(
    source: str, market_data: MarketData, previous: bool,
) -> Optional[float]:
    if "." not in source:
        return None
    symbol, field_name = source.rsplit(".", 1)
    symbol_data = market_data.get(symbol)
    needed = 2 if previous else 1
    if symbol_data is None or len(symbol_data.history) < needed:
        return None
    candle = symbol_data.history[-needed]
    return candle.value_of(field_name)


def _to_float(raw) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None
