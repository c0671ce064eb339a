"""Action blocks — turn a triggered condition into a trading ``Signal``.

Pure functions: nothing here touches a portfolio.  A missing price is
logged and yields ``None`` rather than an exception.
"""

import logging
from typing import Callable, Optional

from blocktrader.errors import UnknownActionError
from blocktrader.strategy.models import IndicatorResult, MarketData, Signal

logger = logging.getLogger("blocktrader.actions")

_DEFAULT_SYMBOL = "SPY"
_DEFAULT_RISK_LEVEL = 0.02


def generate_signal(
    subtype: str,
    settings: dict,
    market_data: MarketData,
    indicators: dict[str, IndicatorResult],
) -> Optional[Signal]:
    """Build the signal for one action block.

    Raises ``UnknownActionError`` if *subtype* is not registered.
    """
    handler = ACTION_REGISTRY.get(subtype)
    if handler is None:
        raise UnknownActionError(
            f"Unknown action type '{subtype}'. "
            f"Available: {', '.join(ACTION_REGISTRY.keys())}"
        )
    return handler(settings, market_data)


def buy_signal(settings: dict, market_data: MarketData) -> Optional[Signal]:
    """Market or limit buy.  Quantity may be left for the simulator to size."""
    symbol = settings.get("symbol") or _DEFAULT_SYMBOL
    order_type = settings.get("orderType") or "market"
    price = _execution_price(symbol, order_type, settings.get("price"), market_data)
    if price is None:
        return None
    return Signal(
        action="buy",
        symbol=symbol,
        order_type=order_type,
        price=price,
        quantity=_quantity(settings.get("quantity")),
        risk_level=float(settings.get("riskLevel") or _DEFAULT_RISK_LEVEL),
    )


def sell_signal(settings: dict, market_data: MarketData) -> Optional[Signal]:
    """Market or limit sell.

    ``percentage`` (0–100, default 100) is carried as a fraction; the
    simulator turns it into a share count against the open position.
    """
    symbol = settings.get("symbol") or _DEFAULT_SYMBOL
    order_type = settings.get("orderType") or "market"
    price = _execution_price(symbol, order_type, settings.get("price"), market_data)
    if price is None:
        return None
    percentage = float(settings.get("percentage") or 100) / 100.0
    return Signal(
        action="sell",
        symbol=symbol,
        order_type=order_type,
        price=price,
        quantity=_quantity(settings.get("quantity")),
        percentage=min(max(percentage, 0.0), 1.0),
    )


def stop_loss_signal(settings: dict, market_data: MarketData) -> Optional[Signal]:
    """Describe a stop loss at the current price.  Nothing monitors it later."""
    symbol = settings.get("symbol") or _DEFAULT_SYMBOL
    current = _current_price(symbol, market_data)
    if current is None:
        return None
    return Signal(
        action="stop_loss",
        symbol=symbol,
        price=current,
        protection_type=settings.get("type") or "price",
        value=_optional_float(settings.get("value")),
        trailing_type=settings.get("trailingType") or "none",
        trailing_value=float(settings.get("trailingValue") or 0),
    )


def take_profit_signal(settings: dict, market_data: MarketData) -> Optional[Signal]:
    """Describe a take-profit target at the current price."""
    symbol = settings.get("symbol") or _DEFAULT_SYMBOL
    current = _current_price(symbol, market_data)
    if current is None:
        return None
    return Signal(
        action="take_profit",
        symbol=symbol,
        price=current,
        protection_type=settings.get("type") or "price",
        value=_optional_float(settings.get("value")),
    )


ACTION_REGISTRY: dict[str, Callable[[dict, MarketData], Optional[Signal]]] = {
    "buy": buy_signal,
    "sell": sell_signal,
    "stop_loss": stop_loss_signal,
    "take_profit": take_profit_signal,
}


# ── Helpers ──────────────────────────────────────────────────────────────


def _current_price(symbol: str, market_data: MarketData) -> Optional[float]:
    symbol_data = market_data.get(symbol)
    if symbol_data is None or not symbol_data.price:
        logger.warning("No price data available for %s", symbol)
        return None
    return symbol_data.price


def _execution_price(
    symbol: str, order_type: str, price, market_data: MarketData,
) -> Optional[float]:
    """Settings price for non-market orders, otherwise the live price."""
    if price and order_type != "market":
        return float(price)
    return _current_price(symbol, market_data)


def _quantity(raw) -> Optional[int]:
    if raw in (None, "", 0):
        return None
    return int(float(raw))


def _optional_float(raw) -> Optional[float]:
    if raw in (None, ""):
        return None
    return float(raw)
