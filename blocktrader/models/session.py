"""Paper-trading session state.

``Session`` is the aggregate root and the only externally visible state.
Unlike the frozen strategy models these are mutated in place by the
portfolio simulator during an update cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from blocktrader.strategy.models import Strategy


ACTIVE = "active"
STOPPED = "stopped"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Position:
    """An open long position.  ``quantity`` is always positive."""

    symbol: str
    quantity: int
    average_cost: float
    current_price: float
    open_time: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "averageCost": self.average_cost,
            "currentPrice": self.current_price,
            "openTime": _iso(self.open_time),
            "lastUpdated": _iso(self.last_updated),
        }


@dataclass(frozen=True)
class Transaction:
    """Immutable trade log entry.  ``profit_loss`` is set on sells only."""

    type: str  # "buy" or "sell"
    symbol: str
    quantity: int
    price: float
    total: float
    time: datetime = field(default_factory=utcnow)
    profit_loss: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "time": _iso(self.time),
            "type": self.type,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "price": self.price,
            "total": self.total,
        }
        if self.profit_loss is not None:
            data["profitLoss"] = self.profit_loss
        return data


@dataclass(frozen=True)
class ProtectiveOrder:
    """A stop-loss or take-profit recorded when its action block fired.

    Descriptive only: nothing re-evaluates it against later prices.
    """

    kind: str  # "stop_loss" or "take_profit"
    symbol: str
    reference_price: float
    type: str
    value: Optional[float]
    trailing_type: Optional[str] = None
    trailing_value: Optional[float] = None
    time: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "symbol": self.symbol,
            "referencePrice": self.reference_price,
            "type": self.type,
            "value": self.value,
            "trailingType": self.trailing_type,
            "trailingValue": self.trailing_value,
            "time": _iso(self.time),
        }


@dataclass(frozen=True)
class SessionErrorEntry:
    """One recorded problem: a skipped signal or a failed cycle."""

    message: str
    kind: str = "Error"
    time: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"time": _iso(self.time), "kind": self.kind, "message": self.message}


@dataclass
class Metrics:
    total_pnl: float = 0.0
    percent_return: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "totalPnL": self.total_pnl,
            "percentReturn": self.percent_return,
            "totalTrades": self.total_trades,
            "winningTrades": self.winning_trades,
            "losingTrades": self.losing_trades,
            "winRate": self.win_rate,
        }


@dataclass(frozen=True)
class SessionSettings:
    """Per-session trading settings, fixed at creation.

    ``auto_run`` is stored and echoed back for clients that drive their own
    update loop; the service never schedules updates from it.
    """

    symbols: tuple[str, ...]
    time_period: str = "1d"
    risk_per_trade: float = 0.02
    auto_run: bool = False

    def to_dict(self) -> dict:
        return {
            "symbols": list(self.symbols),
            "timePeriod": self.time_period,
            "riskPerTrade": self.risk_per_trade,
            "autoRun": self.auto_run,
        }


@dataclass
class Session:
    """A running paper-trading instance of one strategy snapshot."""

    id: str
    user_id: str
    strategy: Strategy
    initial_capital: float
    settings: SessionSettings
    status: str = ACTIVE
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    current_capital: Optional[float] = None
    cash_balance: Optional[float] = None
    positions: list[Position] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    protective_orders: list[ProtectiveOrder] = field(default_factory=list)
    metrics: Metrics = field(default_factory=Metrics)
    errors: list[SessionErrorEntry] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(
                f"initial_capital must be positive, got {self.initial_capital}"
            )
        if self.current_capital is None:
            self.current_capital = self.initial_capital
        if self.cash_balance is None:
            self.cash_balance = self.initial_capital

    @property
    def strategy_id(self) -> str:
        return self.strategy.id

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def find_position(self, symbol: str) -> Optional[Position]:
        for position in self.positions:
            if position.symbol == symbol:
                return position
        return None

    def record_error(self, message: str, kind: str = "Error") -> SessionErrorEntry:
        entry = SessionErrorEntry(message=message, kind=kind)
        self.errors.append(entry)
        return entry

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "strategyId": self.strategy_id,
            "strategy": self.strategy.to_dict(),
            "status": self.status,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "initialCapital": self.initial_capital,
            "currentCapital": self.current_capital,
            "cashBalance": self.cash_balance,
            "positions": [p.to_dict() for p in self.positions],
            "transactions": [t.to_dict() for t in self.transactions],
            "protectiveOrders": [o.to_dict() for o in self.protective_orders],
            "metrics": self.metrics.to_dict(),
            "settings": self.settings.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "lastUpdated": _iso(self.last_updated),
        }
