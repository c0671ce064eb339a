"""BlockTrader — application configuration.

Loads .env variables into a typed config object.
Validates numeric settings on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    default_initial_capital: float
    default_risk_per_trade: float  # fraction of cash, e.g. 0.02
    default_time_period: str
    default_symbol: str
    strategies_path: str
    log_level: str
    api_port: int


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Every variable is optional.  Raises ``ValueError`` naming the variable
    when a value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    capital = _parse(float, "DEFAULT_INITIAL_CAPITAL", "10000")
    if capital <= 0:
        raise ValueError(f"DEFAULT_INITIAL_CAPITAL must be positive, got {capital}")

    risk = _parse(float, "DEFAULT_RISK_PER_TRADE", "0.02")
    if not 0 < risk <= 1:
        raise ValueError(f"DEFAULT_RISK_PER_TRADE must be in (0, 1], got {risk}")

    return Config(
        default_initial_capital=capital,
        default_risk_per_trade=risk,
        default_time_period=os.environ.get("DEFAULT_TIME_PERIOD", "1d"),
        default_symbol=os.environ.get("DEFAULT_SYMBOL", "SPY"),
        strategies_path=os.environ.get("STRATEGIES_PATH", "data/strategies.json"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_parse(int, "API_PORT", "8080"),
    )


def _parse(cast, name: str, default: str):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
