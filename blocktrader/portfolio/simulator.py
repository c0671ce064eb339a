"""Portfolio simulator — applies signals to a session's cash and positions.

Per update cycle the session manager calls, in order:

    apply_signals(session, signals, market_data)
    mark_to_market(session, market_data)
    recompute_metrics(session)

A signal that cannot be executed (bad price, not enough cash, nothing to
sell) is recorded in ``session.errors`` and skipped; the remaining
signals in the batch still execute.
"""

import logging
from typing import Optional

from blocktrader.errors import (
    ExecutionError,
    InsufficientFundsError,
    InsufficientSharesError,
    InvalidPriceError,
    PositionNotFoundError,
)
from blocktrader.models.session import (
    Metrics,
    Position,
    ProtectiveOrder,
    Session,
    Transaction,
    utcnow,
)
from blocktrader.risk.position_sizer import calculate_quantity, calculate_sell_quantity
from blocktrader.strategy.models import MarketData, Signal

logger = logging.getLogger("blocktrader.portfolio")


# ── Public API ───────────────────────────────────────────────────────────


def apply_signals(
    session: Session, signals: list[Signal], market_data: MarketData,
) -> list[Transaction]:
    """Execute *signals* in order and return the transactions created."""
    executed: list[Transaction] = []
    for signal in signals:
        try:
            transaction = execute_signal(session, signal, market_data)
        except ExecutionError as exc:
            session.record_error(str(exc), kind=type(exc).__name__)
            logger.warning(
                "Session '%s': skipped %s %s: %s",
                session.id, signal.action, signal.symbol, exc,
            )
            continue
        if transaction is not None:
            executed.append(transaction)
    return executed


def execute_signal(
    session: Session, signal: Signal, market_data: MarketData,
) -> Optional[Transaction]:
    """Apply one signal.

    Returns the resulting transaction, or ``None`` for protective signals
    which are only recorded.

    Raises:
        ExecutionError: the signal cannot be executed; the session is unchanged.
    """
    if signal.is_protective:
        _record_protective_order(session, signal)
        return None

    price = resolve_execution_price(signal, market_data)
    if price <= 0:
        raise InvalidPriceError(
            f"Cannot execute {signal.action} for {signal.symbol} "
            f"with invalid price: {price}"
        )

    if signal.action == "buy":
        return _buy(session, signal, price)
    if signal.action == "sell":
        return _sell(session, signal, price)
    raise ExecutionError(f"Unsupported signal action '{signal.action}'")


def mark_to_market(session: Session, market_data: MarketData) -> None:
    """Refresh ``current_price`` of every position that has a live price."""
    for position in session.positions:
        symbol_data = market_data.get(position.symbol)
        if symbol_data is None or not symbol_data.price or symbol_data.price <= 0:
            continue
        position.current_price = symbol_data.price
        position.last_updated = utcnow()


def recompute_metrics(session: Session) -> Metrics:
    """Recompute capital and performance metrics from cash, positions and sells.

    Only sell transactions count as completed trades.
    """
    portfolio_value = session.cash_balance + sum(
        p.market_value for p in session.positions
    )
    total_pnl = portfolio_value - session.initial_capital
    completed = [t for t in session.transactions if t.type == "sell"]
    winners = [t for t in completed if (t.profit_loss or 0.0) > 0]

    session.current_capital = portfolio_value
    session.metrics = Metrics(
        total_pnl=total_pnl,
        percent_return=(total_pnl / session.initial_capital) * 100.0,
        total_trades=len(completed),
        winning_trades=len(winners),
        losing_trades=len(completed) - len(winners),
        win_rate=(len(winners) / len(completed)) * 100.0 if completed else 0.0,
    )
    return session.metrics


def resolve_execution_price(signal: Signal, market_data: MarketData) -> float:
    """Signal price, else the live price, else 0."""
    if signal.price:
        return signal.price
    symbol_data = market_data.get(signal.symbol)
    if symbol_data is not None and symbol_data.price:
        return symbol_data.price
    return 0.0


# ── Execution ────────────────────────────────────────────────────────────


def _buy(session: Session, signal: Signal, price: float) -> Transaction:
    quantity = signal.quantity
    if not quantity:
        risk = signal.risk_level or session.settings.risk_per_trade
        quantity = calculate_quantity(session.cash_balance, risk, price)
    if quantity <= 0:
        raise InsufficientFundsError(
            f"Insufficient funds to buy a single share of {signal.symbol} "
            f"at {price} (cash {session.cash_balance:.2f})"
        )

    cost = price * quantity
    if cost > session.cash_balance:
        raise InsufficientFundsError(
            f"Insufficient funds to buy {quantity} shares of {signal.symbol} "
            f"at {price}"
        )

    now = utcnow()
    position = session.find_position(signal.symbol)
    if position is not None:
        total_quantity = position.quantity + quantity
        total_cost = position.average_cost * position.quantity + cost
        position.average_cost = total_cost / total_quantity
        position.quantity = total_quantity
        position.last_updated = now
    else:
        session.positions.append(Position(
            symbol=signal.symbol,
            quantity=quantity,
            average_cost=price,
            current_price=price,
            open_time=now,
            last_updated=now,
        ))

    session.cash_balance -= cost
    transaction = Transaction(
        type="buy", symbol=signal.symbol, quantity=quantity,
        price=price, total=cost, time=now,
    )
    session.transactions.append(transaction)
    logger.info(
        "Session '%s': bought %d %s @ %.4f", session.id, quantity, signal.symbol, price,
    )
    return transaction


def _sell(session: Session, signal: Signal, price: float) -> Transaction:
    position = session.find_position(signal.symbol)
    if position is None:
        raise PositionNotFoundError(
            f"Cannot sell {signal.symbol} - no position found"
        )

    quantity = signal.quantity
    if not quantity:
        if signal.percentage is not None:
            quantity = calculate_sell_quantity(position.quantity, signal.percentage)
        else:
            risk = signal.risk_level or session.settings.risk_per_trade
            quantity = calculate_quantity(session.cash_balance, risk, price)
    if quantity <= 0 or position.quantity < quantity:
        raise InsufficientSharesError(
            f"Cannot sell {quantity} shares of {signal.symbol} - "
            f"only have {position.quantity}"
        )

    now = utcnow()
    sale_value = price * quantity
    profit_loss = (price - position.average_cost) * quantity

    position.quantity -= quantity
    if position.quantity <= 0:
        session.positions.remove(position)
    else:
        position.last_updated = now

    session.cash_balance += sale_value
    transaction = Transaction(
        type="sell", symbol=signal.symbol, quantity=quantity,
        price=price, total=sale_value, time=now, profit_loss=profit_loss,
    )
    session.transactions.append(transaction)
    logger.info(
        "Session '%s': sold %d %s @ %.4f (P&L %.2f)",
        session.id, quantity, signal.symbol, price, profit_loss,
    )
    return transaction


def _record_protective_order(session: Session, signal: Signal) -> None:
    session.protective_orders.append(ProtectiveOrder(
        kind=signal.action,
        symbol=signal.symbol,
        reference_price=signal.price or 0.0,
        type=signal.protection_type or "price",
        value=signal.value,
        trailing_type=signal.trailing_type,
        trailing_value=signal.trailing_value,
    ))
    logger.info(
        "Session '%s': recorded %s for %s (value=%s); not monitored",
        session.id, signal.action, signal.symbol, signal.value,
    )
