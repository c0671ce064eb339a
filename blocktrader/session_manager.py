"""SessionManager — lifecycle of paper-trading sessions.

Each session holds a frozen strategy snapshot plus its own cash,
positions and trade log.  An update cycle runs the strategy over a market
data snapshot and applies the resulting signals:

    run_strategy → apply_signals → mark_to_market → recompute_metrics

Update cycles never raise for data problems: anything that goes wrong is
appended to ``session.errors``.  Not-found, ownership and state errors are
raised to the caller.
"""

import logging
import time
from typing import Optional, Union

from blocktrader.config import Config
from blocktrader.errors import (
    AuthorizationError,
    SessionNotActiveError,
    SessionNotFoundError,
    StrategyNotFoundError,
)
from blocktrader.market.provider import MarketDataProvider, collect_market_data
from blocktrader.models.session import STOPPED, Session, SessionSettings, utcnow
from blocktrader.models.session_options import SessionOptions
from blocktrader.portfolio.simulator import apply_signals, mark_to_market, recompute_metrics
from blocktrader.repos.session_repo import InMemorySessionRepository, SessionRepository
from blocktrader.repos.strategy_repo import StrategyRepository
from blocktrader.strategy.interpreter import run_strategy
from blocktrader.strategy.models import MarketData, parse_market_data
from blocktrader.strategy.registry import validate_strategy

logger = logging.getLogger("blocktrader.sessions")

_DEFAULT_INITIAL_CAPITAL = 10_000.0
_DEFAULT_RISK_PER_TRADE = 0.02
_DEFAULT_TIME_PERIOD = "1d"
_DEFAULT_SYMBOL = "SPY"


class SessionManager:
    """Creates, updates, stops and deletes paper-trading sessions.

    Args:
        strategy_repo: Source of strategy documents.
        session_repo:  Session store.  Defaults to an in-memory store.
        config:        Global ``Config`` supplying session defaults.
    """

    def __init__(
        self,
        strategy_repo: StrategyRepository,
        session_repo: Optional[SessionRepository] = None,
        config: Optional[Config] = None,
    ) -> None:
        self._strategies = strategy_repo
        self._sessions = session_repo if session_repo is not None else InMemorySessionRepository()
        self._config = config

    # ── Lifecycle ────────────────────────────────────────────────────────

    def create_session(
        self,
        user_id: str,
        strategy_id: str,
        options: Union[SessionOptions, dict, None] = None,
    ) -> Session:
        """Start a session from a strategy owned by *user_id*.

        Raises:
            StrategyNotFoundError: no such strategy.
            AuthorizationError: the strategy belongs to someone else.
            StrategyError: the strategy names an unknown block.
        """
        if not isinstance(options, SessionOptions):
            options = SessionOptions.from_dict(options)

        strategy = self._strategies.get_strategy(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(f"Strategy not found: {strategy_id}")
        if strategy.owner_id != user_id:
            raise AuthorizationError("Not authorized to access this strategy")
        validate_strategy(strategy)

        symbols = options.symbols or strategy.symbols or (self._default_symbol,)
        settings = SessionSettings(
            symbols=tuple(symbols),
            time_period=options.time_period or self._default_time_period,
            risk_per_trade=options.risk_per_trade or self._default_risk,
            auto_run=options.auto_run,
        )
        session = Session(
            id=self._new_session_id(user_id, strategy_id),
            user_id=user_id,
            strategy=strategy,
            initial_capital=options.initial_capital or self._default_capital,
            settings=settings,
        )
        self._sessions.put(session)
        logger.info(
            "Created session '%s' for strategy '%s' (capital %.2f, symbols %s)",
            session.id, strategy_id, session.initial_capital, ",".join(symbols),
        )
        return session

    def update_session(
        self,
        session_id: str,
        market_data: Union[MarketData, dict],
        user_id: Optional[str] = None,
    ) -> Session:
        """Run one update cycle on an active session.

        When *user_id* is given, ownership is checked first.

        Raises:
            SessionNotFoundError / AuthorizationError / SessionNotActiveError.
        """
        session = self._require(session_id, user_id)
        with self._sessions.lock_for(session_id):
            self._ensure_current(session)
            if not session.is_active:
                raise SessionNotActiveError(
                    f"Session {session_id} is {session.status}; updates are not allowed"
                )
            self._run_cycle(session, market_data)
        return session

    async def refresh_session(
        self,
        session_id: str,
        user_id: str,
        provider: MarketDataProvider,
    ) -> Session:
        """Fetch market data for the session's symbols, then update it."""
        session = self.get_session(session_id, user_id)
        if not session.is_active:
            raise SessionNotActiveError(
                f"Session {session_id} is {session.status}; updates are not allowed"
            )
        market_data = await collect_market_data(
            provider, list(session.settings.symbols), session.settings.time_period,
        )
        return self.update_session(session_id, market_data, user_id=user_id)

    def stop_session(self, session_id: str, user_id: str) -> Session:
        """Stop trading.  Stopping an already stopped session changes nothing."""
        session = self._require(session_id, user_id)
        with self._sessions.lock_for(session_id):
            self._ensure_current(session)
            if session.status == STOPPED:
                logger.info("Session '%s' already stopped.", session_id)
                return session
            session.status = STOPPED
            session.end_time = utcnow()
            session.last_updated = session.end_time
        logger.info("Stopped session '%s'.", session_id)
        return session

    def delete_session(self, session_id: str, user_id: str) -> bool:
        """Remove a session in any state.  Returns ``False`` if it does not exist."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        self._authorize(session, user_id)
        with self._sessions.lock_for(session_id):
            if self._sessions.get(session_id) is not session:
                return False
            deleted = self._sessions.delete(session_id)
        if deleted:
            logger.info("Deleted session '%s'.", session_id)
        return deleted

    # ── Queries ──────────────────────────────────────────────────────────

    def get_session(self, session_id: str, user_id: str) -> Session:
        return self._require(session_id, user_id)

    def list_sessions(self, user_id: str) -> list[Session]:
        return self._sessions.list_by_user(user_id)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _run_cycle(self, session: Session, market_data: Union[MarketData, dict]) -> None:
        try:
            market = parse_market_data(market_data)
            result = run_strategy(session.strategy, market)
            if not result.ok:
                session.record_error(str(result.error), kind=type(result.error).__name__)

            apply_signals(session, result.signals, market)
            mark_to_market(session, market)
            recompute_metrics(session)
            session.last_updated = utcnow()
        except Exception as exc:
            logger.error("Session '%s' update failed: %s", session.id, exc)
            session.record_error(str(exc), kind=type(exc).__name__)

    def _require(self, session_id: str, user_id: Optional[str]) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Paper trading session not found: {session_id}")
        if user_id is not None:
            self._authorize(session, user_id)
        return session

    def _ensure_current(self, session: Session) -> None:
        """Raise if *session* was deleted or replaced before the lock was taken."""
        if self._sessions.get(session.id) is not session:
            raise SessionNotFoundError(f"Paper trading session not found: {session.id}")

    @staticmethod
    def _authorize(session: Session, user_id: str) -> None:
        if session.user_id != user_id:
            raise AuthorizationError("Not authorized to access this session")

    def _new_session_id(self, user_id: str, strategy_id: str) -> str:
        base = f"{user_id}-{strategy_id}-{int(time.time() * 1000)}"
        session_id, suffix = base, 1
        while self._sessions.get(session_id) is not None:
            session_id = f"{base}-{suffix}"
            suffix += 1
        return session_id

    @property
    def _default_capital(self) -> float:
        return self._config.default_initial_capital if self._config else _DEFAULT_INITIAL_CAPITAL

    @property
    def _default_risk(self) -> float:
        return self._config.default_risk_per_trade if self._config else _DEFAULT_RISK_PER_TRADE

    @property
    def _default_time_period(self) -> str:
        return self._config.default_time_period if self._config else _DEFAULT_TIME_PERIOD

    @property
    def _default_symbol(self) -> str:
        return self._config.default_symbol if self._config else _DEFAULT_SYMBOL
