"""Tests for SessionManager — session lifecycle, authorization and update cycles."""

import asyncio
import threading
from unittest.mock import AsyncMock

import pytest

from blocktrader.config import Config
from blocktrader.errors import (
    AuthorizationError,
    SessionNotActiveError,
    SessionNotFoundError,
    StrategyNotFoundError,
    UnknownActionError,
)
from blocktrader.models.session_options import SessionOptions
from blocktrader.repos.session_repo import InMemorySessionRepository
from blocktrader.repos.strategy_repo import InMemoryStrategyRepository
from blocktrader.session_manager import SessionManager
from blocktrader.strategy.models import Strategy


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_strategy(strategy_id="s1", owner="u1", blocks=None, symbols=()):
    if blocks is None:
        blocks = [
            {
                "id": "always", "type": "condition", "subtype": "threshold",
                "settings": {"sourceType": "value", "source": 1, "operator": ">", "value": 0},
            },
            {
                "id": "buy", "type": "action", "subtype": "buy",
                "settings": {"symbol": "AAPL", "quantity": 10},
            },
        ]
    return Strategy.from_dict({
        "id": strategy_id, "ownerId": owner, "blocks": blocks, "symbols": list(symbols),
    })


def _make_manager(*strategies, config=None):
    if not strategies:
        strategies = (_make_strategy(),)
    return SessionManager(InMemoryStrategyRepository(strategies), config=config)


def _market(price=100.0):
    return {"AAPL": {"price": price, "timestamp": "2025-02-01T00:00:00Z", "history": []}}


def _make_config(**overrides) -> Config:
    defaults = dict(
        default_initial_capital=50_000.0,
        default_risk_per_trade=0.05,
        default_time_period="1h",
        default_symbol="QQQ",
        strategies_path="data/strategies.json",
        log_level="INFO",
        api_port=8080,
    )
    defaults.update(overrides)
    return Config(**defaults)


# ── Create ───────────────────────────────────────────────────────────────


class TestCreateSession:
    def test_defaults(self):
        session = _make_manager().create_session("u1", "s1")
        assert session.is_active
        assert session.initial_capital == 10_000.0
        assert session.cash_balance == 10_000.0
        assert session.current_capital == 10_000.0
        assert session.settings.symbols == ("SPY",)
        assert session.settings.time_period == "1d"
        assert session.settings.risk_per_trade == 0.02
        assert session.id.startswith("u1-s1-")
        assert session.positions == []
        assert session.transactions == []

    def test_options_dict(self):
        session = _make_manager().create_session(
            "u1", "s1",
            {"initialCapital": 2500, "symbols": ["AAPL"], "timeframe": "1h", "riskPerTrade": 0.1},
        )
        assert session.initial_capital == 2_500.0
        assert session.settings.symbols == ("AAPL",)
        assert session.settings.time_period == "1h"
        assert session.settings.risk_per_trade == 0.1

    def test_auto_run_is_stored_only(self):
        session = _make_manager().create_session("u1", "s1", {"autoRun": True})
        assert session.settings.auto_run is True
        assert session.settings.to_dict()["autoRun"] is True
        assert session.transactions == []

    def test_symbols_from_strategy(self):
        manager = _make_manager(_make_strategy(symbols=("MSFT", "AAPL")))
        session = manager.create_session("u1", "s1")
        assert session.settings.symbols == ("MSFT", "AAPL")

    def test_defaults_from_config(self):
        session = _make_manager(config=_make_config()).create_session("u1", "s1")
        assert session.initial_capital == 50_000.0
        assert session.settings.symbols == ("QQQ",)
        assert session.settings.risk_per_trade == 0.05
        assert session.settings.time_period == "1h"

    def test_unknown_strategy(self):
        with pytest.raises(StrategyNotFoundError, match="Strategy not found: nope"):
            _make_manager().create_session("u1", "nope")

    def test_other_users_strategy(self):
        with pytest.raises(AuthorizationError):
            _make_manager().create_session("u2", "s1")

    def test_invalid_block_rejected(self):
        bad = _make_strategy(blocks=[{"id": "x", "type": "action", "subtype": "short"}])
        with pytest.raises(UnknownActionError):
            _make_manager(bad).create_session("u1", "s1")

    def test_invalid_capital_rejected(self):
        with pytest.raises(ValueError):
            _make_manager().create_session("u1", "s1", {"initialCapital": -5})

    def test_invalid_risk_rejected(self):
        with pytest.raises(ValueError):
            _make_manager().create_session("u1", "s1", SessionOptions.from_dict({"riskPerTrade": 2}))

    def test_ids_are_unique(self):
        manager = _make_manager()
        ids = {manager.create_session("u1", "s1").id for _ in range(5)}
        assert len(ids) == 5


# ── Update ───────────────────────────────────────────────────────────────


class TestUpdateSession:
    def test_cycle_executes_signals(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.update_session(session.id, _market(100.0), user_id="u1")

        assert session.cash_balance == pytest.approx(9_000.0)
        assert session.find_position("AAPL").quantity == 10
        assert session.current_capital == pytest.approx(10_000.0)
        assert session.errors == []

    def test_marks_to_market(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1", {"initialCapital": 1_500})
        manager.update_session(session.id, _market(100.0))
        # second cycle cannot afford another 10 shares
        manager.update_session(session.id, _market(110.0))

        assert session.find_position("AAPL").current_price == 110.0
        assert session.current_capital == pytest.approx(500.0 + 1_100.0)
        assert session.metrics.total_pnl == pytest.approx(100.0)
        assert [e.kind for e in session.errors] == ["InsufficientFundsError"]

    def test_repeated_update_without_signals_is_stable(self):
        strategy = _make_strategy(blocks=[
            {
                "id": "never", "type": "condition", "subtype": "threshold",
                "settings": {"sourceType": "value", "source": 0, "operator": ">", "value": 1},
            },
            {"id": "buy", "type": "action", "subtype": "buy", "settings": {"symbol": "AAPL"}},
        ])
        manager = _make_manager(strategy)
        session = manager.create_session("u1", "s1")

        manager.update_session(session.id, _market())
        first = (session.metrics.to_dict(), list(session.positions), len(session.transactions))
        manager.update_session(session.id, _market())
        second = (session.metrics.to_dict(), list(session.positions), len(session.transactions))

        assert first == second
        assert session.transactions == []

    def test_evaluation_error_is_recorded(self):
        strategy = _make_strategy(blocks=[
            {"id": "rsi", "type": "indicator", "subtype": "rsi", "settings": {}},
        ])
        manager = _make_manager(strategy)
        session = manager.create_session("u1", "s1")
        manager.update_session(session.id, _market())

        assert len(session.errors) == 1
        assert session.errors[0].kind == "EvaluationError"
        assert "rsi" in session.errors[0].message
        assert session.transactions == []

    def test_malformed_market_data_is_recorded(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.update_session(session.id, {"AAPL": {"price": "abc"}})
        assert session.errors[0].kind == "ValueError"
        assert session.cash_balance == 10_000.0

    def test_stopped_session_rejects_updates(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.stop_session(session.id, "u1")
        with pytest.raises(SessionNotActiveError):
            manager.update_session(session.id, _market())
        assert session.transactions == []

    def test_unknown_session(self):
        with pytest.raises(SessionNotFoundError):
            _make_manager().update_session("missing", _market())

    def test_wrong_user(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        with pytest.raises(AuthorizationError):
            manager.update_session(session.id, _market(), user_id="u2")


class TestRefreshSession:
    def test_fetches_then_updates(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1", {"symbols": ["AAPL"], "timePeriod": "1h"})
        provider = AsyncMock()
        provider.get_market_data.return_value = {"price": 100.0, "history": []}

        asyncio.run(manager.refresh_session(session.id, "u1", provider))

        provider.get_market_data.assert_awaited_once_with("AAPL", "1h")
        assert session.find_position("AAPL").quantity == 10

    def test_stopped_session_is_not_fetched(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.stop_session(session.id, "u1")
        provider = AsyncMock()
        with pytest.raises(SessionNotActiveError):
            asyncio.run(manager.refresh_session(session.id, "u1", provider))
        provider.get_market_data.assert_not_awaited()


# ── Stop / delete / queries ──────────────────────────────────────────────


class TestStopAndDelete:
    def test_stop_sets_end_time(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.stop_session(session.id, "u1")
        assert session.status == "stopped"
        assert session.end_time is not None

    def test_stop_twice_is_noop(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        manager.stop_session(session.id, "u1")
        first_end = session.end_time
        manager.stop_session(session.id, "u1")
        assert session.end_time == first_end

    def test_stop_other_user(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        with pytest.raises(AuthorizationError):
            manager.stop_session(session.id, "u2")
        assert session.is_active

    def test_delete(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        assert manager.delete_session(session.id, "u1") is True
        with pytest.raises(SessionNotFoundError):
            manager.get_session(session.id, "u1")

    def test_delete_missing_returns_false(self):
        assert _make_manager().delete_session("missing", "u1") is False

    def test_delete_other_user(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        with pytest.raises(AuthorizationError):
            manager.delete_session(session.id, "u2")
        assert manager.get_session(session.id, "u1") is session

    def test_list_only_own_sessions(self):
        manager = _make_manager(_make_strategy(), _make_strategy("s2", owner="u2"))
        manager.create_session("u1", "s1")
        manager.create_session("u1", "s1")
        manager.create_session("u2", "s2")
        assert len(manager.list_sessions("u1")) == 2
        assert len(manager.list_sessions("u2")) == 1
        assert manager.list_sessions("u3") == []


class TestSessionRepository:
    def test_put_get_delete(self):
        repo = InMemorySessionRepository()
        session = _make_manager().create_session("u1", "s1")
        repo.put(session)
        assert repo.get(session.id) is session
        assert len(repo) == 1
        assert repo.delete(session.id) is True
        assert repo.delete(session.id) is False
        assert repo.get(session.id) is None

    def test_lock_for_is_stable(self):
        repo = InMemorySessionRepository()
        manager = _make_manager()
        first = manager.create_session("u1", "s1")
        second = manager.create_session("u1", "s1")
        repo.put(first)
        repo.put(second)
        assert repo.lock_for(first.id) is repo.lock_for(first.id)
        assert repo.lock_for(first.id) is not repo.lock_for(second.id)

    def test_delete_drops_lock(self):
        repo = InMemorySessionRepository()
        session = _make_manager().create_session("u1", "s1")
        repo.put(session)
        repo.lock_for(session.id)
        repo.delete(session.id)
        assert session.id not in repo._session_locks

    def test_lock_for_unknown_id_is_not_registered(self):
        repo = InMemorySessionRepository()
        repo.lock_for("ghost")
        assert "ghost" not in repo._session_locks


# ── Concurrent delete ────────────────────────────────────────────────────


def _pause_after_lookup(manager, monkeypatch):
    """Make the next ``_require`` call block until released.

    Returns ``(looked_up, release)`` events.
    """
    looked_up = threading.Event()
    release = threading.Event()
    original = manager._require

    def _require(session_id, user_id):
        found = original(session_id, user_id)
        looked_up.set()
        release.wait(timeout=5)
        return found

    monkeypatch.setattr(manager, "_require", _require)
    return looked_up, release


def _run_in_thread(fn):
    """Start *fn* on a worker thread; returns ``(thread, errors)``."""
    errors = []

    def _target():
        try:
            fn()
        except Exception as exc:
            errors.append(exc)

    thread = threading.Thread(target=_target)
    thread.start()
    return thread, errors


class TestConcurrentDelete:
    def test_update_racing_delete_fails(self, monkeypatch):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        looked_up, release = _pause_after_lookup(manager, monkeypatch)

        worker, errors = _run_in_thread(
            lambda: manager.update_session(session.id, _market(), user_id="u1"),
        )
        assert looked_up.wait(timeout=5)
        assert manager.delete_session(session.id, "u1") is True
        release.set()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], SessionNotFoundError)
        assert session.transactions == []
        assert session.id not in manager._sessions._session_locks

    def test_stop_racing_delete_fails(self, monkeypatch):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        looked_up, release = _pause_after_lookup(manager, monkeypatch)

        worker, errors = _run_in_thread(lambda: manager.stop_session(session.id, "u1"))
        assert looked_up.wait(timeout=5)
        assert manager.delete_session(session.id, "u1") is True
        release.set()
        worker.join(timeout=5)

        assert [type(e) for e in errors] == [SessionNotFoundError]
        assert session.is_active
        assert session.id not in manager._sessions._session_locks

    def test_concurrent_updates_are_serialised(self):
        manager = _make_manager()
        session = manager.create_session("u1", "s1")
        workers = [
            threading.Thread(target=manager.update_session, args=(session.id, _market()))
            for _ in range(8)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=5)

        # eight cycles of 10 shares at 100
        assert len(session.transactions) == 8
        assert session.find_position("AAPL").quantity == 80
        assert session.cash_balance == pytest.approx(10_000.0 - 8_000.0)
