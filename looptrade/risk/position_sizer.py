"""Position sizing — pure math, no I/O.

Computes order quantities for the opening BUY and for BUYs re-armed after
a SELL fill.  SELL quantities are never sized here: a SELL always closes
exactly the quantity its BUY acquired.
"""


def opening_buy_quantity(
    initial_capital: float,
    seed_price: float,
    max_trade_size: float,
) -> float:
    """Quantity for the first BUY of a run.

    Formula::

        notional = min(initial_capital, max_trade_size)
        units    = notional / seed_price

    The quantity is sized at the seed price, not the discounted trigger,
    so the fill always costs less than the notional.

    Raises:
        ValueError: If *seed_price* is non-positive.
    """
    if seed_price <= 0:
        raise ValueError(f"seed_price must be positive, got {seed_price}")
    notional = min(initial_capital, max_trade_size)
    return max(notional, 0.0) / seed_price


def rebuy_quantity(
    quote_balance: float,
    buy_price: float,
    allocation_pct: float,
    max_trade_size: float,
) -> float:
    """Quantity for a BUY re-armed after a SELL fill.

    Formula::

        notional = min(quote_balance × allocation_pct / 100, max_trade_size)
        units    = notional / buy_price

    Returns ``0.0`` when nothing can be committed.

    Raises:
        ValueError: If *buy_price* is non-positive.
    """
    if buy_price <= 0:
        raise ValueError(f"buy_price must be positive, got {buy_price}")
    notional = min(quote_balance * (allocation_pct / 100.0), max_trade_size)
    if notional <= 0:
        return 0.0
    return notional / buy_price


def buy_trigger(reference_price: float, discount_pct: float) -> float:
    """Price *discount_pct* percent below *reference_price*."""
    return reference_price * (1 - discount_pct / 100.0)


def sell_trigger(entry_price: float, profit_target_pct: float) -> float:
    """Price *profit_target_pct* percent above *entry_price*."""
    return entry_price * (1 + profit_target_pct / 100.0)
