"""Tests for the balance ledger — fill deltas and conservation."""

import pytest

from looptrade.errors import InsufficientBalanceError
from looptrade.ledger import BalanceLedger
from looptrade.models import Balance, BalanceDelta, Side


class TestBalanceDelta:
    def test_buy_spends_quote(self):
        delta = BalanceDelta.for_fill(Side.BUY, price=97.5, quantity=0.1)
        assert delta.quote == pytest.approx(-9.75)
        assert delta.base == pytest.approx(0.1)

    def test_sell_receives_quote(self):
        delta = BalanceDelta.for_fill(Side.SELL, price=103.0, quantity=0.1)
        assert delta.quote == pytest.approx(10.3)
        assert delta.base == pytest.approx(-0.1)


class TestBalanceLedger:
    def test_buy_then_sell(self):
        ledger = BalanceLedger(quote=10.0)
        ledger.apply_fill(BalanceDelta.for_fill(Side.BUY, 97.5, 0.1))
        assert ledger.balance.quote == pytest.approx(0.25)
        assert ledger.balance.base == pytest.approx(0.1)

        balance = ledger.apply_fill(BalanceDelta.for_fill(Side.SELL, 103.0, 0.1))
        assert balance.quote == pytest.approx(10.55)
        assert balance.base == 0.0

    def test_rejects_overspend_without_mutation(self):
        ledger = BalanceLedger(quote=5.0)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.apply_fill(BalanceDelta.for_fill(Side.BUY, 100.0, 0.1))
        assert exc_info.value.required == pytest.approx(10.0)
        assert ledger.balance == Balance(quote=5.0, base=0.0)

    def test_rejects_overselling_base(self):
        ledger = BalanceLedger(quote=0.0, base=0.05, base_asset="SOL")
        with pytest.raises(InsufficientBalanceError, match="SOL"):
            ledger.apply_fill(BalanceDelta.for_fill(Side.SELL, 100.0, 0.1))
        assert ledger.balance.base == 0.05

    def test_spending_entire_balance_allowed(self):
        ledger = BalanceLedger(quote=10.0)
        balance = ledger.apply_fill(BalanceDelta(quote=-10.0, base=0.1))
        assert balance.quote == 0.0

    @pytest.mark.parametrize("notional, price", [(7.3, 98.0), (12.34, 98.0)])
    def test_spending_sized_notional_at_sizing_price(self, notional, price):
        ledger = BalanceLedger(quote=notional)
        quantity = notional / price
        balance = ledger.apply_fill(BalanceDelta.for_fill(Side.BUY, price, quantity))
        assert balance.quote >= 0.0
        assert balance.quote == pytest.approx(0.0, abs=1e-12)
        assert balance.base == quantity

    def test_shortfall_beyond_rounding_still_rejected(self):
        ledger = BalanceLedger(quote=10.0)
        with pytest.raises(InsufficientBalanceError):
            ledger.apply_fill(BalanceDelta(quote=-10.000001, base=0.1))
        assert ledger.balance.quote == 10.0

    def test_negative_start_rejected(self):
        with pytest.raises(ValueError):
            BalanceLedger(quote=-1.0)

    def test_value_at_price(self):
        assert Balance(quote=0.25, base=0.1).value_at(100.0) == pytest.approx(10.25)
