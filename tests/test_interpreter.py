"""Tests for the strategy interpreter and block registry."""

import pytest

from blocktrader.errors import (
    EvaluationError,
    InsufficientDataError,
    UnknownBlockTypeError,
    UnknownIndicatorError,
)
from blocktrader.strategy.interpreter import run_strategy
from blocktrader.strategy.models import CandleData, Strategy, SymbolMarketData
from blocktrader.strategy.registry import validate_strategy


# ── Helpers ──────────────────────────────────────────────────────────────


def _market(closes, symbol="SPY"):
    history = tuple(
        CandleData(
            time=f"2025-01-{i + 1:02d}T00:00:00Z",
            open=c, high=c + 1, low=c - 1, close=c, volume=1000,
        )
        for i, c in enumerate(closes)
    )
    return {symbol: SymbolMarketData(price=closes[-1], history=history)}


def _always_true(block_id="always"):
    return {
        "id": block_id, "type": "condition", "subtype": "threshold",
        "settings": {"sourceType": "value", "source": 1, "operator": ">", "value": 0},
    }


def _never_true(block_id="never"):
    return {
        "id": block_id, "type": "condition", "subtype": "threshold",
        "settings": {"sourceType": "value", "source": 0, "operator": ">", "value": 1},
    }


def _buy(block_id="buy", symbol="SPY"):
    return {"id": block_id, "type": "action", "subtype": "buy", "settings": {"symbol": symbol}}


def _sell(block_id="sell", symbol="SPY"):
    return {"id": block_id, "type": "action", "subtype": "sell", "settings": {"symbol": symbol}}


def _strategy(*blocks):
    return Strategy.from_dict({"id": "s1", "ownerId": "u1", "blocks": list(blocks)})


# ── Tests ────────────────────────────────────────────────────────────────


class TestRunStrategy:
    def test_no_condition_true_no_signals(self):
        result = run_strategy(_strategy(_never_true(), _buy()), _market([100.0]))
        assert result.ok
        assert result.signals == []

    def test_every_action_fires_for_a_true_condition(self):
        result = run_strategy(
            _strategy(_always_true(), _buy(), _sell()), _market([100.0]),
        )
        assert [s.action for s in result.signals] == ["buy", "sell"]

    def test_actions_fire_once_per_true_condition(self):
        strategy = _strategy(
            _always_true("c1"), _never_true("c2"), _always_true("c3"), _buy(),
        )
        result = run_strategy(strategy, _market([100.0]))
        assert [s.action for s in result.signals] == ["buy", "buy"]

    def test_indicators_keyed_by_block_id(self):
        strategy = _strategy(
            {"id": "sma3", "type": "indicator", "subtype": "sma", "settings": {"period": 3}},
            _never_true(),
        )
        result = run_strategy(strategy, _market([1.0, 2.0, 3.0, 4.0]))
        assert set(result.indicators) == {"sma3"}
        assert result.indicators["sma3"].value == pytest.approx(3.0)

    def test_conditions_read_indicators(self):
        strategy = _strategy(
            {"id": "sma3", "type": "indicator", "subtype": "sma", "settings": {"period": 3}},
            {
                "id": "above", "type": "condition", "subtype": "threshold",
                "settings": {
                    "sourceType": "indicator", "source": "sma3",
                    "operator": ">", "value": 2.5,
                },
            },
            _buy(),
        )
        result = run_strategy(strategy, _market([1.0, 2.0, 3.0, 4.0]))
        assert len(result.signals) == 1

    def test_missing_price_skips_signal(self):
        result = run_strategy(
            _strategy(_always_true(), _buy(symbol="MSFT"), _buy()), _market([100.0]),
        )
        assert [s.symbol for s in result.signals] == ["SPY"]

    def test_blocks_follow_position_order(self):
        buy = {**_buy(), "position": 2}
        sell = {**_sell(), "position": 1}
        result = run_strategy(_strategy(_always_true(), buy, sell), _market([100.0]))
        assert [s.action for s in result.signals] == ["sell", "buy"]

    def test_insufficient_data_degrades_to_error(self):
        strategy = _strategy(
            {"id": "rsi", "type": "indicator", "subtype": "rsi", "settings": {}},
            _always_true(),
            _buy(),
        )
        result = run_strategy(strategy, _market([100.0] * 5))
        assert not result.ok
        assert result.signals == []
        assert result.indicators == {}
        assert isinstance(result.error, EvaluationError)
        assert result.error.block_id == "rsi"
        assert isinstance(result.error.cause, InsufficientDataError)

    def test_unknown_subtype_names_block(self):
        strategy = _strategy(_always_true(), {"id": "bad", "type": "action", "subtype": "short"})
        result = run_strategy(strategy, _market([100.0]))
        assert result.error.block_id == "bad"
        assert "bad" in str(result.error)


class TestValidateStrategy:
    def test_valid_strategy_passes(self):
        validate_strategy(_strategy(_always_true(), _buy()))

    def test_unknown_block_type(self):
        strategy = _strategy({"id": "x", "type": "filter", "subtype": "sma"})
        with pytest.raises(UnknownBlockTypeError, match="filter"):
            validate_strategy(strategy)

    def test_unknown_indicator(self):
        strategy = _strategy({"id": "x", "type": "indicator", "subtype": "vwap"})
        with pytest.raises(UnknownIndicatorError, match="vwap"):
            validate_strategy(strategy)
