#!/usr/bin/env python3
"""
Discount Allocator — spreads a checkout-level discount across line items.

All amounts are integer minor units (cents).  For each item:

    item_subtotal = unit_price * quantity
    item_discount = round_half_up(item_subtotal / subtotal * discount)
    final_total   = item_subtotal - item_discount

The aggregate discount is clamped to [0, subtotal], so no item ever ends up
with a negative price.  A zero subtotal allocates nothing.

Worked example:
    items [1000 × 2, 500 × 1], subtotal 2500, total 2000
    → discounts 400 / 100, final totals 1600 / 400
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence


@dataclass(frozen=True)
class LineItem:
    unit_price: int     # minor units
    quantity:   int = 1

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class AllocatedLine:
    item:        LineItem
    discount:    int        # minor units taken off this line
    final_total: int        # minor units charged for this line

    @property
    def final_unit_price(self) -> Decimal:
        """Per-unit price in minor units (may carry a fraction of a cent)."""
        if self.item.quantity <= 0:
            return Decimal(0)
        return Decimal(self.final_total) / Decimal(self.item.quantity)


@dataclass(frozen=True)
class Allocation:
    subtotal: int
    discount: int
    lines:    tuple[AllocatedLine, ...]

    @property
    def total(self) -> int:
        return sum(line.final_total for line in self.lines)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def clamp_discount(subtotal: int, final_total: int) -> int:
    """Discount implied by subtotal − final_total, bounded to [0, subtotal]."""
    if subtotal <= 0:
        return 0
    return max(0, min(subtotal - final_total, subtotal))


def allocate_discount(
    subtotal: int,
    final_total: int,
    items: Sequence[LineItem],
) -> Allocation:
    """Proportionally allocate (subtotal − final_total) over `items`."""
    discount = clamp_discount(subtotal, final_total)
    lines = []
    for item in items:
        if subtotal > 0 and discount:
            share = Decimal(item.subtotal) / Decimal(subtotal) * Decimal(discount)
            item_discount = min(_round_half_up(share), item.subtotal)
        else:
            item_discount = 0
        lines.append(AllocatedLine(item, item_discount, item.subtotal - item_discount))
    return Allocation(subtotal=subtotal, discount=discount, lines=tuple(lines))


def cart_subtotal(items: Iterable[LineItem]) -> int:
    return sum(item.subtotal for item in items)


def to_major(amount_minor, places: int = 2) -> str:
    """Minor units → major-unit string, e.g. 1599 → "15.99"."""
    value = Decimal(amount_minor) / Decimal(100)
    return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))
