"""Session options dataclass.

Caller-supplied settings for a new paper-trading session.  Any field left
as ``None`` falls back to the strategy or the global ``Config``.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SessionOptions:
    """Options accepted by ``SessionManager.create_session``."""

    initial_capital: Optional[float] = None
    symbols: Optional[tuple[str, ...]] = None
    time_period: Optional[str] = None
    risk_per_trade: Optional[float] = None  # fraction of cash, e.g. 0.02
    auto_run: bool = False  # client flag, stored and echoed only

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SessionOptions":
        """Build from an API body; accepts camelCase or snake_case keys.

        ``timeframe`` is accepted as an alias of ``timePeriod``.
        Raises ``ValueError`` for non-numeric or non-positive numbers.
        """
        data = data or {}

        def pick(*keys):
            for key in keys:
                if data.get(key) not in (None, ""):
                    return data[key]
            return None

        capital = pick("initialCapital", "initial_capital")
        risk = pick("riskPerTrade", "risk_per_trade")
        symbols = pick("symbols")
        if isinstance(symbols, str):
            symbols = [symbols]

        options = cls(
            initial_capital=float(capital) if capital is not None else None,
            symbols=tuple(symbols) if symbols else None,
            time_period=pick("timePeriod", "time_period", "timeframe"),
            risk_per_trade=float(risk) if risk is not None else None,
            auto_run=bool(pick("autoRun", "auto_run") or False),
        )
        if options.initial_capital is not None and options.initial_capital <= 0:
            raise ValueError(
                f"initialCapital must be positive, got {options.initial_capital}"
            )
        if options.risk_per_trade is not None and not 0 < options.risk_per_trade <= 1:
            raise ValueError(
                f"riskPerTrade must be in (0, 1], got {options.risk_per_trade}"
            )
        return options
