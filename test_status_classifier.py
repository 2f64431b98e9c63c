#!/usr/bin/env python3
"""
test_status_classifier.py — channel name → status tag

Tests:
  1. Glyph precedence   — a glyph beats any keyword in the same name
  2. Keyword fallback   — work / test / update, case-insensitive
  3. Unknown fallback   — everything else, including empty names
  4. Title normalizing  — pictographs stripped, trimmed, lowercased

Run:
    python3 -m pytest test_status_classifier.py -v
"""

import pytest

from status_classifier import (
    DOWN_GLYPH,
    UPDATING_GLYPH,
    WORKING_GLYPH,
    StatusTag,
    classify_channel,
    normalize_title,
    strip_pictographs,
)


def _check(label: str, condition: bool, detail: str = "") -> None:
    suffix = f"  ({detail})" if detail else ""
    if not condition:
        raise AssertionError(f"FAILED: {label}{suffix}")


# ─── Test 1: Glyphs ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("name, expected", [
    (f"{WORKING_GLYPH} order-status", StatusTag.WORKING),
    (f"{DOWN_GLYPH} esp",             StatusTag.DOWN),
    (f"{UPDATING_GLYPH} spoofer",     StatusTag.UPDATING),
])
def test_glyph_maps_to_tag(name, expected):
    got = classify_channel(name)
    _check(f"{name!r} → {expected.value}", got is expected, f"got {got.value}")


def test_glyph_beats_keyword():
    got = classify_channel(f"{WORKING_GLYPH} testing")
    _check("green glyph wins over 'test' keyword", got is StatusTag.WORKING, got.value)

    got = classify_channel(f"{DOWN_GLYPH} works-again")
    _check("red glyph wins over 'work' keyword", got is StatusTag.DOWN, got.value)


def test_glyph_order_working_first():
    got = classify_channel(f"{UPDATING_GLYPH}{WORKING_GLYPH} aimbot")
    _check("working glyph checked before updating glyph", got is StatusTag.WORKING, got.value)


# ─── Test 2: Keywords ─────────────────────────────────────────────────────────

@pytest.mark.parametrize("name, expected", [
    ("cheat-WORKING",    StatusTag.WORKING),
    ("loader-testing",   StatusTag.DOWN),
    ("Spoofer-Updating", StatusTag.UPDATING),
])
def test_keyword_fallback(name, expected):
    got = classify_channel(name)
    _check(f"{name!r} → {expected.value}", got is expected, f"got {got.value}")


# ─── Test 3: Unknown ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("name", ["general", "", "🎮 lobby"])
def test_unknown_fallback(name):
    got = classify_channel(name)
    _check(f"{name!r} → unknown", got is StatusTag.UNKNOWN, got.value)


def test_none_name_is_unknown():
    _check("None → unknown", classify_channel(None) is StatusTag.UNKNOWN)


# ─── Test 4: Title normalization ──────────────────────────────────────────────

def test_strip_pictographs():
    _check("status glyph removed",
           strip_pictographs(f"{WORKING_GLYPH} order-status") == "order-status")
    _check("plain text untouched", strip_pictographs("order-status") == "order-status")


def test_normalize_title():
    got = normalize_title(f"  {UPDATING_GLYPH}Order-Status ")
    _check("glyph-free, trimmed, lowercased", got == "order-status", repr(got))


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
