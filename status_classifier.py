#!/usr/bin/env python3
"""
Status Classifier — infers a product status tag from a channel's display name.

Staff rename a Discord channel to signal product state, e.g.
"🟢 order-status" or "cheat-updating".  Precedence (first match wins):

    🟢  → working        "work"   → working
    🔴  → down           "test"   → down
    🟡  → updating       "update" → updating
    anything else → unknown

Glyphs are checked before keywords, so "🟢 testing" is working.
"""

from __future__ import annotations

import re
from enum import Enum


class StatusTag(str, Enum):
    WORKING  = "working"
    DOWN     = "down"
    UPDATING = "updating"
    UNKNOWN  = "unknown"


WORKING_GLYPH  = "\U0001F7E2"   # large green circle
DOWN_GLYPH     = "\U0001F534"   # large red circle
UPDATING_GLYPH = "\U0001F7E1"   # large yellow circle

_GLYPH_RULES: tuple[tuple[str, StatusTag], ...] = (
    (WORKING_GLYPH,  StatusTag.WORKING),
    (DOWN_GLYPH,     StatusTag.DOWN),
    (UPDATING_GLYPH, StatusTag.UPDATING),
)

# "test" → down is kept as deployed; pending product-owner confirmation.
_KEYWORD_RULES: tuple[tuple[str, StatusTag], ...] = (
    ("work",   StatusTag.WORKING),
    ("test",   StatusTag.DOWN),
    ("update", StatusTag.UPDATING),
)

# Pictographic blocks stripped before title lookups (U+1F300 – U+1FBFF).
_PICTOGRAPH_RE = re.compile("[\U0001F300-\U0001FBFF]")


def classify_channel(channel_name: str) -> StatusTag:
    """Return the status tag for a channel name. Never raises."""
    name = channel_name or ""
    for glyph, tag in _GLYPH_RULES:
        if glyph in name:
            return tag
    lowered = name.lower()
    for keyword, tag in _KEYWORD_RULES:
        if keyword in lowered:
            return tag
    return StatusTag.UNKNOWN


def strip_pictographs(text: str) -> str:
    """Remove emoji-style glyphs and surrounding whitespace."""
    return _PICTOGRAPH_RE.sub("", text or "").strip()


def normalize_title(text: str) -> str:
    """Lookup key for a product title: glyph-free, trimmed, lowercased."""
    return strip_pictographs(text).lower()
