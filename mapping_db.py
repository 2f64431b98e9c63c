#!/usr/bin/env python3
"""
Mapping Store — channel → product and title → product lookups.

Defines AbstractMappingStore so the reconciler is decoupled from SQLite.
The default backend is SQLiteMappingStore over `channelMapping.db`; tests
and alternative deployments swap it with:

    from mapping_db import set_store, SQLiteMappingStore
    set_store(SQLiteMappingStore(db_path=Path("/tmp/other.db")))

Tables
──────
  channel_mapping  (channel_id PK, product_id)
  product_mapping  (title_key PK, title, product_id, channel_id)

`title_key` is the normalized title (glyphs stripped, trimmed, lowercased),
which makes title lookups case-insensitive and emoji-insensitive.

Lookups never raise on "not found"; they return None.  Any sqlite3 failure
is re-raised as errors.StorageUnavailable so the reconciler can treat it as a
transient skip.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from errors import StorageUnavailable
from status_classifier import normalize_title

logger = logging.getLogger("statusbot.mapping_db")

def default_db_path() -> Path:
    return Path(os.getenv("MAPPING_DB_PATH", "channelMapping.db"))


# ─── Abstract Interface ───────────────────────────────────────────────────────

class AbstractMappingStore(ABC):
    """Contract every mapping backend must fulfil."""

    @abstractmethod
    def lookup_by_channel(self, channel_id: str) -> Optional[str]:
        """Exact channel-id match. Returns the product id or None."""
        ...

    @abstractmethod
    def lookup_by_title(self, title: str) -> Optional[str]:
        """Case- and glyph-insensitive title match. Returns the product id or None."""
        ...

    @abstractmethod
    def upsert_mapping(self, title: str, product_id: str,
                       channel_id: Optional[str] = None) -> None:
        """Insert or replace a title mapping and, when given, its channel mapping."""
        ...

    @abstractmethod
    def count(self) -> dict:
        """Row counts per table, for reporting."""
        ...

    def close(self) -> None:
        """Release resources. Default: nothing to release."""


# ─── SQLite Backend ───────────────────────────────────────────────────────────

class SQLiteMappingStore(AbstractMappingStore):
    """Default backend — stdlib sqlite3, one short-lived connection per call."""

    def __init__(self, db_path: Optional[Path] = None):
        self._db_path = Path(db_path) if db_path else default_db_path()
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        try:
            if self._db_path.parent != Path("."):
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._db_path), timeout=5.0)
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailable("mapping database unavailable", detail=str(exc)) from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS channel_mapping (
                    channel_id  TEXT PRIMARY KEY,
                    product_id  TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS product_mapping (
                    title_key   TEXT PRIMARY KEY,
                    title       TEXT NOT NULL,
                    product_id  TEXT NOT NULL,
                    channel_id  TEXT
                );
            """)
        logger.info("Mapping tables ready at %s", self._db_path)

    def _fetch_product_id(self, query: str, param: str) -> Optional[str]:
        try:
            with self._conn() as conn:
                row = conn.execute(query, (param,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable("mapping lookup failed", detail=str(exc)) from exc
        return row["product_id"] if row else None

    # ── Lookups ───────────────────────────────────────────────────────────────

    def lookup_by_channel(self, channel_id: str) -> Optional[str]:
        return self._fetch_product_id(
            "SELECT product_id FROM channel_mapping WHERE channel_id = ?",
            str(channel_id),
        )

    def lookup_by_title(self, title: str) -> Optional[str]:
        key = normalize_title(title)
        if not key:
            return None
        return self._fetch_product_id(
            "SELECT product_id FROM product_mapping WHERE title_key = ?", key,
        )

    # ── Writes (import only) ──────────────────────────────────────────────────

    def upsert_mapping(self, title: str, product_id: str,
                       channel_id: Optional[str] = None) -> None:
        try:
            with self._conn() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO product_mapping"
                    " (title_key, title, product_id, channel_id) VALUES (?,?,?,?)",
                    (normalize_title(title), title, product_id, channel_id or None),
                )
                if channel_id:
                    conn.execute(
                        "INSERT OR REPLACE INTO channel_mapping (channel_id, product_id)"
                        " VALUES (?,?)",
                        (channel_id, product_id),
                    )
        except sqlite3.Error as exc:
            raise StorageUnavailable("mapping write failed", detail=str(exc)) from exc

    def count(self) -> dict:
        try:
            with self._conn() as conn:
                channels = conn.execute("SELECT COUNT(*) FROM channel_mapping").fetchone()[0]
                titles = conn.execute("SELECT COUNT(*) FROM product_mapping").fetchone()[0]
        except sqlite3.Error as exc:
            raise StorageUnavailable("mapping count failed", detail=str(exc)) from exc
        return {"channels": channels, "titles": titles}


# ─── Store Registry ───────────────────────────────────────────────────────────

_store: Optional[AbstractMappingStore] = None


def get_store() -> AbstractMappingStore:
    """Return the active mapping store, creating the SQLite default on first use."""
    global _store
    if _store is None:
        _store = SQLiteMappingStore()
    return _store


def set_store(store: AbstractMappingStore) -> None:
    """Swap the active store at runtime; the outgoing store is closed."""
    global _store
    if not isinstance(store, AbstractMappingStore):
        raise TypeError(
            f"Store must be an AbstractMappingStore subclass, "
            f"got {type(store).__name__}"
        )
    if _store is not None and _store is not store:
        _store.close()
    _store = store
