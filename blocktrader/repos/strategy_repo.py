"""Strategy repository — read access to stored strategy documents.

Strategy CRUD lives outside this service.  ``JsonStrategyRepository``
reads an exported ``strategies.json``::

    {"strategies": [{"id": "...", "ownerId": "...", "blocks": [...],
                     "symbols": ["SPY"], "timeframe": "1d"}]}
"""

import json
import logging
import pathlib
from typing import Iterable, Optional, Protocol, runtime_checkable

from blocktrader.strategy.models import Strategy

logger = logging.getLogger("blocktrader.repos")


@runtime_checkable
class StrategyRepository(Protocol):
    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        """Return the strategy, or ``None`` if it does not exist."""
        ...


class InMemoryStrategyRepository:
    """``StrategyRepository`` over a fixed set of strategies."""

    def __init__(self, strategies: Iterable[Strategy] = ()) -> None:
        self._strategies: dict[str, Strategy] = {s.id: s for s in strategies}

    def add(self, strategy: Strategy) -> None:
        self._strategies[strategy.id] = strategy

    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        return self._strategies.get(strategy_id)


class JsonStrategyRepository(InMemoryStrategyRepository):
    """Loads strategies once from a JSON file.

    A missing file yields an empty repository.  Malformed JSON raises
    ``ValueError`` naming the file.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        super().__init__(load_strategies(path))


def load_strategies(path: str | pathlib.Path) -> list[Strategy]:
    """Parse every strategy document in *path*."""
    path = pathlib.Path(path)
    if not path.exists():
        logger.warning("Strategy file %s not found; no strategies loaded.", path)
        return []

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid strategy file {path}: {exc}") from exc

    documents = data.get("strategies", []) if isinstance(data, dict) else data
    strategies = [Strategy.from_dict(doc) for doc in documents]
    logger.info("Loaded %d strategies from %s", len(strategies), path)
    return strategies
