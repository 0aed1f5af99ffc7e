"""Balance ledger — pure validation and mutation, no I/O.

Holds the quote and base quantities and applies fill deltas atomically:
a delta that would drive either side below zero is rejected without
touching the balance.
"""

from looptrade.errors import InsufficientBalanceError
from looptrade.models import Balance, BalanceDelta

# Relative rounding slack when a fill spends a balance down to zero
_ROUNDING_TOLERANCE = 1e-9


class BalanceLedger:
    """Owner of the running ``Balance``.

    Args:
        quote: Starting quote-currency quantity.
        base: Starting base-currency quantity.
        quote_asset: Label used in error messages.
        base_asset: Label used in error messages.
    """

    def __init__(
        self,
        quote: float,
        base: float = 0.0,
        quote_asset: str = "quote",
        base_asset: str = "base",
    ) -> None:
        if quote < 0 or base < 0:
            raise ValueError(
                f"Starting balances must be non-negative, got quote={quote}, base={base}"
            )
        self._balance = Balance(quote=quote, base=base)
        self._quote_asset = quote_asset
        self._base_asset = base_asset

    @property
    def balance(self) -> Balance:
        """Current balance snapshot."""
        return self._balance

    def apply_fill(self, delta: BalanceDelta) -> Balance:
        """Apply *delta* and return the new balance.

        A result below zero only by floating-point rounding, such as a BUY
        filled exactly at the price it was sized at, settles to zero.

        Raises:
            InsufficientBalanceError: If the result would be negative on
                either side.  The balance is left unchanged.
        """
        quote = _settle(self._balance.quote, delta.quote)
        base = _settle(self._balance.base, delta.base)
        if quote < 0:
            raise InsufficientBalanceError(
                self._quote_asset, self._balance.quote, -delta.quote,
            )
        if base < 0:
            raise InsufficientBalanceError(
                self._base_asset, self._balance.base, -delta.base,
            )
        self._balance = Balance(quote=quote, base=base)
        return self._balance


def _settle(current: float, change: float) -> float:
    result = current + change
    if result < 0 and -result <= _ROUNDING_TOLERANCE * max(1.0, abs(current)):
        return 0.0
    return result
