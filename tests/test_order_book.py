"""Tests for the two-slot order book."""

from datetime import datetime, timezone

import pytest

from looptrade.errors import SlotOccupiedError
from looptrade.models import Order, Side
from looptrade.order_book import OrderBook

_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _order(order_id: int, side: Side, trigger: float, entry: float | None = None) -> Order:
    return Order(
        id=order_id,
        side=side,
        trigger_price=trigger,
        quantity=0.1,
        placed_at=_NOW,
        entry_price=entry,
    )


class TestMatchRule:
    def test_sell_matches_at_or_above_trigger(self):
        order = _order(1, Side.SELL, 102.375, entry=97.5)
        assert order.matches(102.375)
        assert order.matches(103.0)
        assert not order.matches(102.0)

    def test_buy_matches_at_or_below_trigger(self):
        order = _order(1, Side.BUY, 98.0)
        assert order.matches(98.0)
        assert order.matches(97.5)
        assert not order.matches(98.5)


class TestOrderBook:
    def test_place_and_get(self):
        book = OrderBook()
        buy = _order(1, Side.BUY, 98.0)
        book.place(buy)
        assert book.get(Side.BUY) == buy
        assert book.get(Side.SELL) is None
        assert book.open_orders == [buy]

    def test_second_order_on_same_side_rejected(self):
        book = OrderBook()
        book.place(_order(1, Side.BUY, 98.0))
        with pytest.raises(SlotOccupiedError):
            book.place(_order(2, Side.BUY, 95.0))
        assert book.get(Side.BUY).id == 1

    def test_match_returns_sell_before_buy(self):
        book = OrderBook()
        buy = _order(1, Side.BUY, 98.0)
        sell = _order(2, Side.SELL, 90.0, entry=85.0)
        book.place(buy)
        book.place(sell)
        assert book.match(95.0) == [sell, buy]

    def test_match_only_crossed_orders(self):
        book = OrderBook()
        book.place(_order(1, Side.BUY, 98.0))
        book.place(_order(2, Side.SELL, 105.0, entry=100.0))
        assert book.match(100.0) == []
        assert [o.id for o in book.match(106.0)] == [2]

    def test_remove(self):
        book = OrderBook()
        book.place(_order(1, Side.BUY, 98.0))
        removed = book.remove(1)
        assert removed.id == 1
        assert book.open_orders == []
        assert book.remove(1) is None

    def test_clear_returns_open_orders(self):
        book = OrderBook()
        book.place(_order(1, Side.BUY, 98.0))
        book.place(_order(2, Side.SELL, 105.0, entry=100.0))
        cleared = book.clear()
        assert {o.id for o in cleared} == {1, 2}
        assert book.open_orders == []
