"""Strategy interpreter — one evaluation pass of a strategy over market data.

Order of work:
    1. every indicator block, results keyed by block id
    2. every condition block, against the accumulated indicators
    3. for each condition that holds, every action block emits a signal

Action blocks are not tied to particular conditions: any true condition
fires all of them, once per true condition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from blocktrader.errors import EvaluationError
from blocktrader.strategy.actions import generate_signal
from blocktrader.strategy.conditions import evaluate_condition
from blocktrader.strategy.indicators import compute_indicator
from blocktrader.strategy.models import IndicatorResult, MarketData, Signal, Strategy

logger = logging.getLogger("blocktrader.interpreter")


@dataclass(frozen=True)
class EvaluationResult:
    """Signals and indicators from one run, or the error that stopped it.

    A failed run always has empty ``signals`` and ``indicators``.
    """

    signals: list[Signal] = field(default_factory=list)
    indicators: dict[str, IndicatorResult] = field(default_factory=dict)
    error: Optional[EvaluationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_strategy(strategy: Strategy, market_data: MarketData) -> EvaluationResult:
    """Evaluate *strategy* against *market_data*.

    Never raises: any failure degrades to an empty result whose ``error``
    names the block that failed.
    """
    indicators: dict[str, IndicatorResult] = {}
    signals: list[Signal] = []
    current_block: Optional[str] = None

    try:
        for block in strategy.blocks_of_type("indicator"):
            current_block = block.id
            indicators[block.id] = compute_indicator(
                block.subtype, market_data, block.settings,
            )

        actions = strategy.blocks_of_type("action")
        for block in strategy.blocks_of_type("condition"):
            current_block = block.id
            if not evaluate_condition(
                block.subtype, market_data, indicators, block.settings,
            ):
                continue

            for action in actions:
                current_block = action.id
                signal = generate_signal(
                    action.subtype, action.settings, market_data, indicators,
                )
                if signal is not None:
                    signals.append(signal)
    except Exception as exc:
        logger.error(
            "Strategy '%s' evaluation failed at block '%s': %s",
            strategy.id, current_block, exc,
        )
        return EvaluationResult(
            error=EvaluationError(
                f"Block '{current_block}' failed: {exc}",
                block_id=current_block,
                cause=exc,
            ),
        )

    return EvaluationResult(signals=signals, indicators=indicators)
