"""Typed exception hierarchy for BlockTrader.

Three families with different propagation rules:

- ``StrategyError``: raised while computing indicators, conditions and
  actions.  Swallowed at the interpreter boundary and reported through
  ``EvaluationResult.error``.
- ``ExecutionError``: raised by the portfolio simulator for a single
  signal.  Recorded into ``session.errors``; the signal is skipped.
- ``SessionError``: not-found / unauthorised / wrong-state.  Propagated to
  the caller as a failure of the whole operation.
"""

from typing import Optional


class BlockTraderError(Exception):
    """Root exception for all BlockTrader errors."""


# ── Strategy evaluation ──────────────────────────────────────────────────


class StrategyError(BlockTraderError):
    """Malformed strategy or a block that could not be computed."""


class InsufficientDataError(StrategyError, ValueError):
    """Not enough price history to compute an indicator."""


class UnknownBlockTypeError(StrategyError):
    """Block ``type`` is not one of indicator / condition / action."""


class UnknownIndicatorError(StrategyError):
    """Indicator subtype is not registered."""


class UnknownConditionError(StrategyError):
    """Condition subtype is not registered."""


class UnknownActionError(StrategyError):
    """Action subtype is not registered."""


class EvaluationError(StrategyError):
    """A strategy run failed part-way through.

    Args:
        message: Human-readable description.
        block_id: Id of the block being evaluated when the failure happened.
        cause: The underlying exception.
    """

    def __init__(
        self,
        message: str,
        block_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.block_id = block_id
        self.cause = cause


# ── Signal execution ─────────────────────────────────────────────────────


class ExecutionError(BlockTraderError):
    """A single signal could not be applied to the portfolio."""


class InvalidPriceError(ExecutionError):
    """Execution price is zero, negative or missing."""


class InsufficientFundsError(ExecutionError):
    """Buy cost exceeds available cash."""


class PositionNotFoundError(ExecutionError):
    """Sell requested for a symbol with no open position."""


class InsufficientSharesError(ExecutionError):
    """Sell quantity exceeds the held quantity."""


# ── Session lifecycle ────────────────────────────────────────────────────


class SessionError(BlockTraderError):
    """Failure of a whole session-level operation."""


class SessionNotFoundError(SessionError, KeyError):
    """No session with the requested id."""

    def __str__(self) -> str:
        # KeyError.__str__ quotes the message
        return str(self.args[0]) if self.args else ""


class StrategyNotFoundError(SessionError, KeyError):
    """No strategy with the requested id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class AuthorizationError(SessionError):
    """Caller does not own the session or strategy."""


class SessionNotActiveError(SessionError):
    """Session has been stopped and accepts no further updates."""
