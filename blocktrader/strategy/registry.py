"""Block registry — maps block types and subtypes to their handlers.

Used at session creation to reject a strategy that names an unknown
block, so the failure surfaces immediately instead of mid-cycle.
"""

from blocktrader.errors import (
    StrategyError,
    UnknownActionError,
    UnknownBlockTypeError,
    UnknownConditionError,
    UnknownIndicatorError,
)
from blocktrader.strategy.actions import ACTION_REGISTRY
from blocktrader.strategy.conditions import CONDITION_REGISTRY
from blocktrader.strategy.indicators import INDICATOR_REGISTRY
from blocktrader.strategy.models import Block, Strategy


BLOCK_REGISTRY: dict[str, dict] = {
    "indicator": INDICATOR_REGISTRY,
    "condition": CONDITION_REGISTRY,
    "action": ACTION_REGISTRY,
}

_UNKNOWN_SUBTYPE_ERRORS: dict[str, type[StrategyError]] = {
    "indicator": UnknownIndicatorError,
    "condition": UnknownConditionError,
    "action": UnknownActionError,
}


def validate_block(block: Block) -> None:
    """Raise if *block* has an unregistered type or subtype."""
    handlers = BLOCK_REGISTRY.get(block.type)
    if handlers is None:
        raise UnknownBlockTypeError(
            f"Unknown block type '{block.type}' on block '{block.id}'. "
            f"Available: {', '.join(BLOCK_REGISTRY.keys())}"
        )
    if block.subtype not in handlers:
        raise _UNKNOWN_SUBTYPE_ERRORS[block.type](
            f"Unknown {block.type} type '{block.subtype}' on block '{block.id}'. "
            f"Available: {', '.join(handlers.keys())}"
        )


def validate_strategy(strategy: Strategy) -> None:
    """Validate every block of *strategy*; the first bad block raises."""
    for block in strategy.blocks:
        validate_block(block)
