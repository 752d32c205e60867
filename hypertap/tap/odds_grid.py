"""
Odds grid generation.

Builds the two-sided grid of tappable cells around the current price.
Everything here is a pure function of its inputs.

Multiplier shape:
- Farther from current price = harder = higher multiplier
- Shorter time window = harder = higher multiplier
- Higher volatility = easier = lower multiplier
"""

import math
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence

from ..config import (
    DISTANCE_EXPONENT,
    DISTANCE_SCALE_BP,
    GRID_ROWS_PER_SIDE,
    MAX_MULTIPLIER,
    MIN_MULTIPLIER,
    PRICE_INCREMENTS,
    REFERENCE_WINDOW,
    TIME_WINDOWS,
)
from .models import Direction, GridBox


@dataclass(frozen=True)
class Grid:
    """Long rows above the price and short rows below, nearest row first."""

    long_boxes: list[list[GridBox]] = field(default_factory=list)
    short_boxes: list[list[GridBox]] = field(default_factory=list)
    current_price: float = 0.0
    asset: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.long_boxes and not self.short_boxes

    def all_boxes(self) -> Iterator[GridBox]:
        for rows in (self.long_boxes, self.short_boxes):
            for row in rows:
                yield from row

    def find(self, box_id: str) -> Optional[GridBox]:
        for box in self.all_boxes():
            if box.id == box_id:
                return box
        return None


def calculate_multiplier(
    price_delta: float,
    time_window: float,
    volatility: float = 1.0,
    min_multiplier: float = MIN_MULTIPLIER,
    max_multiplier: float = MAX_MULTIPLIER,
) -> float:
    """
    Payout multiplier for a cell.

    Args:
        price_delta: Normalized distance |target - current| / current
        time_window: Seconds until expiry
        volatility: Market volatility factor (1 = normal)
        min_multiplier: Lower clamp
        max_multiplier: Upper clamp

    Returns:
        Multiplier rounded to 2 decimals, clamped to [min, max]
    """
    basis_points = abs(price_delta) * 10000

    distance_factor = 1 + (basis_points / DISTANCE_SCALE_BP) ** DISTANCE_EXPONENT
    time_factor = math.sqrt(REFERENCE_WINDOW / time_window)
    vol_adjustment = 1 / math.sqrt(volatility)

    raw = distance_factor * time_factor * vol_adjustment

    # Rounding before clamping keeps both bounds exact
    return max(min_multiplier, min(max_multiplier, round(raw, 2)))


def get_price_increment(asset: str) -> float:
    """Price step per grid row for an asset."""
    return PRICE_INCREMENTS.get(asset.upper(), PRICE_INCREMENTS["DEFAULT"])


def round_to_increment(price: float, increment: float) -> float:
    """Round a price to the nearest increment (halves up), trimming float noise."""
    steps = math.floor(price / increment + 0.5)
    decimals = max(0, -math.floor(math.log10(increment))) + 2
    return round(steps * increment, decimals)


def generate_grid(
    current_price: float,
    asset: str,
    rows_per_side: int = GRID_ROWS_PER_SIDE,
    time_windows: Sequence[int] = TIME_WINDOWS,
    increment: Optional[float] = None,
    volatility: float = 1.0,
) -> Grid:
    """
    Generate grid boxes for the current price.

    Args:
        current_price: Latest price; an empty grid is returned if not positive
        asset: Asset symbol (selects the price increment)
        rows_per_side: Price levels above and below
        time_windows: Column time windows in seconds
        increment: Price step override
        volatility: Volatility factor passed to the multiplier curve

    Returns:
        Grid with long_boxes[row][col] and short_boxes[row][col]
    """
    if current_price <= 0:
        return Grid(asset=asset)

    increment = increment or get_price_increment(asset)
    base_price = round_to_increment(current_price, increment)

    long_boxes = []
    short_boxes = []

    for direction, rows in ((Direction.LONG, long_boxes), (Direction.SHORT, short_boxes)):
        sign = 1 if direction == Direction.LONG else -1

        for row in range(rows_per_side):
            target_price = round_to_increment(base_price + sign * (row + 1) * increment, increment)
            if target_price <= 0:
                break
            price_delta = abs(target_price - current_price) / current_price

            rows.append([
                GridBox(
                    id=f"{direction.value}-{row}-{col}",
                    row=row,
                    col=col,
                    price=target_price,
                    time_window=time_window,
                    multiplier=calculate_multiplier(price_delta, time_window, volatility),
                    direction=direction,
                )
                for col, time_window in enumerate(time_windows)
            ])

    return Grid(
        long_boxes=long_boxes,
        short_boxes=short_boxes,
        current_price=current_price,
        asset=asset,
    )
