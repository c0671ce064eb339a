"""Position sizing — pure math, no I/O.

Turns a cash balance and a risk fraction (or an open position and a sell
fraction) into a whole number of shares.
"""

import math


def calculate_quantity(
    cash_balance: float,
    risk_fraction: float,
    price: float,
) -> int:
    """Shares to buy when a signal does not carry a quantity.

    Formula::

        risk_amount = cash_balance × risk_fraction
        quantity    = floor(risk_amount / price)

    Args:
        cash_balance: Cash available in the session (e.g. 10_000.0).
        risk_fraction: Fraction of cash to commit (e.g. 0.02 for 2 %).
        price: Execution price per share.

    Returns:
        Whole shares, possibly 0 when the risk amount is below one share.

    Raises:
        ValueError: If *price* is non-positive or either other input is negative.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    if cash_balance < 0:
        raise ValueError(f"cash_balance must not be negative, got {cash_balance}")
    if risk_fraction < 0:
        raise ValueError(f"risk_fraction must not be negative, got {risk_fraction}")

    risk_amount = cash_balance * risk_fraction
    return math.floor(risk_amount / price)


def calculate_sell_quantity(held: int, fraction: float) -> int:
    """Shares to sell for a fractional exit of a position of *held* shares.

    ``floor(held × fraction)``; *fraction* is clamped to ``[0, 1]``.
    """
    fraction = min(max(fraction, 0.0), 1.0)
    # Epsilon absorbs float error such as 0.29 × 100 = 28.999…
    return math.floor(held * fraction + 1e-9)
