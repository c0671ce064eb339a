"""Strategy data models — blocks, market data and evaluation outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union


BLOCK_TYPES = ("indicator", "condition", "action")


@dataclass(frozen=True)
class CandleData:
    """A single candlestick bar for strategy consumption."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "CandleData":
        return cls(
            time=str(data.get("time", "")),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume") or 0.0),
        )

    def value_of(self, name: str) -> Optional[float]:
        """Return the named OHLCV field, or ``None`` if it does not exist."""
        if name not in ("open", "high", "low", "close", "volume"):
            return None
        return getattr(self, name)

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class SymbolMarketData:
    """Latest quote plus candle history (oldest → newest) for one symbol."""

    price: Optional[float]
    timestamp: Optional[str] = None
    history: tuple[CandleData, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "SymbolMarketData":
        price = data.get("price")
        timestamp = data.get("timestamp")
        return cls(
            price=float(price) if price is not None else None,
            timestamp=str(timestamp) if timestamp is not None else None,
            history=tuple(CandleData.from_dict(c) for c in data.get("history") or []),
        )


# Snapshot keyed by symbol
MarketData = dict[str, SymbolMarketData]


def parse_market_data(raw: dict) -> MarketData:
    """Convert a ``{symbol: {price, timestamp, history}}`` mapping to models.

    Entries that are already ``SymbolMarketData`` are passed through.
    """
    result: MarketData = {}
    for symbol, data in raw.items():
        if isinstance(data, SymbolMarketData):
            result[symbol] = data
        else:
            result[symbol] = SymbolMarketData.from_dict(data)
    return result


@dataclass(frozen=True)
class Block:
    """One typed unit of a strategy.

    ``position`` is the declared order in the editor.  It is not an edge
    in any graph: conditions are not wired to particular actions.
    """

    id: str
    type: str  # "indicator", "condition" or "action"
    subtype: str
    settings: dict = field(default_factory=dict)
    position: int = 0
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "Block":
        block_type = str(data.get("type", ""))
        block_id = data.get("id") or data.get("_id") or f"{block_type}-{index}"
        return cls(
            id=str(block_id),
            type=block_type,
            subtype=str(data.get("subtype", "")),
            settings=dict(data.get("settings") or {}),
            position=int(data.get("position", index) or 0),
            name=str(data.get("name", "")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "subtype": self.subtype,
            "name": self.name,
            "settings": dict(self.settings),
            "position": self.position,
        }


@dataclass(frozen=True)
class Strategy:
    """An immutable strategy snapshot."""

    id: str
    owner_id: str
    blocks: tuple[Block, ...]
    symbols: tuple[str, ...] = ()
    timeframe: str = "1d"
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Strategy":
        """Build a strategy from a stored document.

        Blocks are ordered by ``position``; ties keep document order.
        """
        raw_blocks = data.get("blocks") or []
        blocks = [Block.from_dict(b, i) for i, b in enumerate(raw_blocks)]
        blocks.sort(key=lambda b: b.position)
        owner = data.get("ownerId") or data.get("owner_id") or data.get("user") or ""
        return cls(
            id=str(data.get("id") or data.get("_id") or ""),
            owner_id=str(owner),
            blocks=tuple(blocks),
            symbols=tuple(data.get("symbols") or ()),
            timeframe=str(data.get("timeframe") or "1d"),
            name=str(data.get("name", "")),
        )

    def blocks_of_type(self, block_type: str) -> list[Block]:
        return [b for b in self.blocks if b.type == block_type]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "blocks": [b.to_dict() for b in self.blocks],
            "symbols": list(self.symbols),
            "timeframe": self.timeframe,
        }


IndicatorValue = Union[float, dict[str, float]]


@dataclass(frozen=True)
class IndicatorResult:
    """Output of one indicator block.

    For multi-series indicators (MACD, Bollinger) ``value`` maps each
    sub-series name to its latest value and ``history`` maps each name to
    its full series.
    """

    value: Any
    history: Any
    period: Optional[int] = None
    settings: dict = field(default_factory=dict)
    timestamp: Optional[str] = None
    extras: dict = field(default_factory=dict)

    @property
    def is_structured(self) -> bool:
        return isinstance(self.value, dict)

    def series(self, name: Optional[str] = None) -> list[float]:
        """Return the history list, or a named sub-series for structured results."""
        if name is None:
            return list(self.history) if isinstance(self.history, list) else []
        if isinstance(self.history, dict):
            return list(self.history.get(name, []))
        return []

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "history": self.history,
            "period": self.period,
            "settings": dict(self.settings),
            "timestamp": self.timestamp,
            **self.extras,
        }


@dataclass(frozen=True)
class Signal:
    """An intent to trade, not yet applied to any portfolio.

    ``percentage`` is a fraction in ``[0, 1]``.  Protective signals
    (``stop_loss``, ``take_profit``) fill the ``protection_*`` and
    ``trailing_*`` fields instead of a quantity.
    """

    action: str
    symbol: str
    order_type: str = "market"
    price: Optional[float] = None
    quantity: Optional[int] = None
    risk_level: Optional[float] = None
    percentage: Optional[float] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    protection_type: Optional[str] = None
    value: Optional[float] = None
    trailing_type: Optional[str] = None
    trailing_value: Optional[float] = None

    @property
    def is_protective(self) -> bool:
        return self.action in ("stop_loss", "take_profit")

    def to_dict(self) -> dict:
        data: dict = {
            "action": self.action,
            "symbol": self.symbol,
            "orderType": self.order_type,
            "price": self.price,
            "quantity": self.quantity,
            "riskLevel": self.risk_level,
            "percentage": self.percentage,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.is_protective:
            data.update({
                "type": self.protection_type,
                "value": self.value,
                "trailingType": self.trailing_type,
                "trailingValue": self.trailing_value,
            })
        return data
