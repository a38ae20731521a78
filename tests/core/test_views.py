from __future__ import annotations

from decimal import Decimal

import pytest

from lob_core import views
from lob_core.local_orderbook import LocalOrderBook
from lob_core.types import PriceLevel, Side
from tests._events import lv


def test_ladder_cumulative_and_percentages():
    book = LocalOrderBook()
    book.snapshot_with(Side.BID, lv(("100", "1"), ("99", "3"), ("98", "4"), ("97", "10")))

    rows = views.ladder(book.top_levels(Side.BID, 3))

    assert [r.price for r in rows] == [Decimal("100"), Decimal("99"), Decimal("98")]
    assert [r.cumulative_quantity for r in rows] == [Decimal("1"), Decimal("4"), Decimal("8")]
    assert [r.depth_percentage for r in rows] == [12.5, 50.0, 100.0]


def test_ladder_depth_argument_limits_rows():
    levels = [PriceLevel(Decimal(101 + i), Decimal("0.5")) for i in range(5)]
    rows = views.ladder(levels, depth=2)
    assert len(rows) == 2
    assert rows[-1].depth_percentage == 100.0


def test_ladder_cumulative_is_non_decreasing_and_ends_at_100():
    levels = [PriceLevel(Decimal(200 - i), Decimal(q)) for i, q in enumerate(["0.001", "2", "0.3", "7", "1"])]
    rows = views.ladder(levels)
    cums = [r.cumulative_quantity for r in rows]
    assert cums == sorted(cums)
    assert rows[-1].depth_percentage == 100.0


def test_ladder_empty():
    assert views.ladder([]) == []


def test_spread_half_tick():
    s = views.spread(PriceLevel(Decimal("100.0"), Decimal(1)), PriceLevel(Decimal("100.5"), Decimal(1)))
    assert s.absolute == Decimal("0.5")
    assert s.percentage_of_ask == pytest.approx(0.4975, abs=1e-4)


def test_spread_zero_when_side_missing():
    ask = PriceLevel(Decimal("100.5"), Decimal(1))
    assert views.spread(None, ask) == (Decimal(0), 0.0)
    assert views.spread(ask, None) == (Decimal(0), 0.0)


def test_views_do_not_mutate_book():
    book = LocalOrderBook()
    book.snapshot_with(Side.ASK, lv(("101", "1"), ("102", "2")))
    before = book.levels()
    first = views.ladder(book.top_levels(Side.ASK, 10))
    second = views.ladder(book.top_levels(Side.ASK, 10))
    assert first == second
    assert book.levels() == before
