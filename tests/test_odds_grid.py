"""
Tests for odds grid generation.

Tests cover:
- Base price rounding and row target prices
- Long/short sides relative to the current price
- Multiplier monotonicity in distance and time window
- Multiplier bounds
- Per-asset price increments
"""

import pytest

from hypertap.config import GRID_ROWS_PER_SIDE, MAX_MULTIPLIER, MIN_MULTIPLIER, TIME_WINDOWS
from hypertap.tap.models import Direction
from hypertap.tap.odds_grid import (
    Grid,
    calculate_multiplier,
    generate_grid,
    get_price_increment,
    round_to_increment,
)


class TestPriceIncrement:
    """Tests for per-asset increments and rounding."""

    def test_known_assets_differ(self):
        assert get_price_increment("BTC") > get_price_increment("ETH") > get_price_increment("SOL")

    def test_unknown_asset_uses_default(self):
        assert get_price_increment("NOPE") == get_price_increment("DEFAULT")

    def test_case_insensitive(self):
        assert get_price_increment("btc") == get_price_increment("BTC")

    def test_round_to_nearest(self):
        assert round_to_increment(100.6, 1) == 101
        assert round_to_increment(100.4, 1) == 100
        assert round_to_increment(100.5, 1) == 101

    def test_round_small_increment_trims_noise(self):
        assert round_to_increment(150.013, 0.02) == pytest.approx(150.02)
        assert round_to_increment(150.013, 0.02) == round(round_to_increment(150.013, 0.02), 4)


class TestGridLayout:
    """Tests for grid shape and target prices."""

    def test_dimensions(self):
        grid = generate_grid(100000.0, "BTC")

        assert len(grid.long_boxes) == GRID_ROWS_PER_SIDE
        assert len(grid.short_boxes) == GRID_ROWS_PER_SIDE
        for row in grid.long_boxes + grid.short_boxes:
            assert [box.time_window for box in row] == TIME_WINDOWS

    def test_row_targets_from_base_price(self):
        grid = generate_grid(100.0, "TEST", increment=1)

        assert [row[0].price for row in grid.long_boxes[:3]] == [101, 102, 103]
        assert [row[0].price for row in grid.short_boxes[:3]] == [99, 98, 97]

    def test_base_price_recomputes_on_price_move(self):
        before = generate_grid(100.0, "TEST", increment=1)
        after = generate_grid(100.6, "TEST", increment=1)

        assert before.long_boxes[0][0].price == 101
        # base 101 after rounding to nearest
        assert after.long_boxes[0][0].price == 102
        assert after.short_boxes[0][0].price == 100

    def test_long_above_short_below(self):
        for price in (100.0, 100.4, 100.5, 100.6, 99.99):
            grid = generate_grid(price, "TEST", increment=1)
            assert all(box.price > price for row in grid.long_boxes for box in row)
            assert all(box.price < price for row in grid.short_boxes for box in row)
            assert all(box.direction == Direction.LONG for row in grid.long_boxes for box in row)
            assert all(box.direction == Direction.SHORT for row in grid.short_boxes for box in row)

    def test_box_ids_unique_and_findable(self):
        grid = generate_grid(3000.0, "ETH")
        boxes = list(grid.all_boxes())

        assert len({box.id for box in boxes}) == len(boxes)
        assert grid.find("long-2-3") == grid.long_boxes[2][3]
        assert grid.find("short-0-0") == grid.short_boxes[0][0]
        assert grid.find("missing") is None

    def test_short_side_stops_at_zero(self):
        grid = generate_grid(0.05, "TEST", increment=0.01)
        assert all(box.price > 0 for row in grid.short_boxes for box in row)
        assert len(grid.short_boxes) < GRID_ROWS_PER_SIDE

    def test_no_price_gives_empty_grid(self):
        grid = generate_grid(0.0, "BTC")
        assert isinstance(grid, Grid)
        assert grid.is_empty
        assert list(grid.all_boxes()) == []

    def test_referentially_transparent(self):
        assert generate_grid(2512.37, "ETH") == generate_grid(2512.37, "ETH")


class TestMultiplier:
    """Tests for the multiplier surface."""

    @pytest.mark.parametrize("price,asset", [(100000.0, "BTC"), (3000.0, "ETH"), (150.0, "SOL")])
    def test_monotonic_in_distance(self, price, asset):
        grid = generate_grid(price, asset)
        for rows in (grid.long_boxes, grid.short_boxes):
            for col in range(len(TIME_WINDOWS)):
                column = [row[col].multiplier for row in rows]
                assert column == sorted(column)

    @pytest.mark.parametrize("price,asset", [(100000.0, "BTC"), (3000.0, "ETH"), (150.0, "SOL")])
    def test_monotonic_in_time(self, price, asset):
        grid = generate_grid(price, asset)
        for row in grid.long_boxes + grid.short_boxes:
            multipliers = [box.multiplier for box in row]
            assert multipliers == sorted(multipliers, reverse=True)

    def test_bounds(self):
        grid = generate_grid(100000.0, "BTC")
        for box in grid.all_boxes():
            assert MIN_MULTIPLIER <= box.multiplier <= MAX_MULTIPLIER

    def test_clamped_high(self):
        assert calculate_multiplier(0.05, 5) == MAX_MULTIPLIER

    def test_clamped_low(self):
        assert calculate_multiplier(0.0, 30) == MIN_MULTIPLIER

    def test_higher_volatility_lowers_multiplier(self):
        assert calculate_multiplier(0.001, 10, volatility=4) < calculate_multiplier(0.001, 10)

    def test_sign_of_delta_ignored(self):
        assert calculate_multiplier(-0.001, 10) == calculate_multiplier(0.001, 10)

    def test_custom_bounds(self):
        assert calculate_multiplier(0.05, 5, max_multiplier=10) == 10
