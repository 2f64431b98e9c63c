#!/usr/bin/env python3
"""
test_discount.py — proportional discount allocation

Tests:
  1. Worked scenario      — [1000×2, 500×1], subtotal 2500, discount 500
  2. Sum property         — allocated totals match subtotal − discount within
                            one minor unit per item, over a spread of carts
  3. Edge cases           — zero subtotal, negative discount, over-large discount
  4. Formatting           — minor units → two-decimal major-unit strings

Run:
    python3 -m pytest test_discount.py -v
"""

import random
from decimal import Decimal

import pytest

from discount import LineItem, allocate_discount, cart_subtotal, clamp_discount, to_major


def _check(label: str, condition: bool, detail: str = "") -> None:
    suffix = f"  ({detail})" if detail else ""
    if not condition:
        raise AssertionError(f"FAILED: {label}{suffix}")


# ─── Test 1: Scenario ─────────────────────────────────────────────────────────

def test_worked_scenario():
    items = [LineItem(1000, 2), LineItem(500, 1)]
    alloc = allocate_discount(2500, 2000, items)
    _check("discount 500", alloc.discount == 500, str(alloc.discount))
    _check("per-item discounts 400 / 100",
           [l.discount for l in alloc.lines] == [400, 100],
           str([l.discount for l in alloc.lines]))
    _check("final totals 1600 / 400",
           [l.final_total for l in alloc.lines] == [1600, 400],
           str([l.final_total for l in alloc.lines]))
    _check("unit prices 800 / 400",
           [l.final_unit_price for l in alloc.lines] == [Decimal(800), Decimal(400)])
    _check("grand total 2000", alloc.total == 2000)


def test_no_discount_is_identity():
    items = [LineItem(1999, 3)]
    alloc = allocate_discount(5997, 5997, items)
    _check("no discount", alloc.discount == 0 and alloc.lines[0].final_total == 5997)


# ─── Test 2: Sum property ─────────────────────────────────────────────────────

def test_sum_within_rounding_tolerance():
    rng = random.Random(20240607)
    for _ in range(200):
        items = [LineItem(rng.randint(1, 10_000), rng.randint(1, 5))
                 for _ in range(rng.randint(1, 6))]
        subtotal = cart_subtotal(items)
        discount = rng.randint(0, subtotal)
        alloc = allocate_discount(subtotal, subtotal - discount, items)
        drift = abs(alloc.total - (subtotal - discount))
        _check("sum within tolerance", drift <= len(items),
               f"items={items} discount={discount} drift={drift}")
        _check("no negative line", all(l.final_total >= 0 for l in alloc.lines))


def test_half_cent_rounds_up():
    # each line's share of a 1-cent discount is 0.5
    alloc = allocate_discount(200, 199, [LineItem(100), LineItem(100)])
    _check("0.5 rounds half up", [l.discount for l in alloc.lines] == [1, 1],
           str([l.discount for l in alloc.lines]))


# ─── Test 3: Edge cases ───────────────────────────────────────────────────────

def test_zero_subtotal():
    alloc = allocate_discount(0, 0, [LineItem(0, 2)])
    _check("zero discount", alloc.discount == 0 and alloc.lines[0].discount == 0)


def test_overlarge_discount_clamped():
    items = [LineItem(700), LineItem(300)]
    alloc = allocate_discount(1000, -500, items)
    _check("capped at subtotal", alloc.discount == 1000, str(alloc.discount))
    _check("lines at zero", [l.final_total for l in alloc.lines] == [0, 0])


@pytest.mark.parametrize("subtotal, total, expected", [
    (1000, 1200, 0),      # total above subtotal → no negative discount
    (1000, 1000, 0),
    (1000, 250, 750),
    (1000, -1, 1000),
    (0, -50, 0),
])
def test_clamp_discount(subtotal, total, expected):
    got = clamp_discount(subtotal, total)
    _check(f"clamp({subtotal}, {total})", got == expected, str(got))


# ─── Test 4: Formatting ───────────────────────────────────────────────────────

@pytest.mark.parametrize("minor, expected", [
    (1599, "15.99"), (0, "0.00"), (5, "0.05"), (Decimal("266.5"), "2.67"),
])
def test_to_major(minor, expected):
    _check(f"{minor} → {expected}", to_major(minor) == expected, to_major(minor))


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
