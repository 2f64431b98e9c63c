#!/usr/bin/env python3
"""
populate_mappings.py — one-time import of the product mapping list.

File format, one mapping per line:

    TITLE : SHOPIFY PRODUCT ID : DISCORD CHANNEL ID

Blank lines and lines starting with `//` or `-` are ignored.  A line with
fewer than three colon-separated fields is logged and skipped; the rest of
the file is still imported.

Usage:
    python3 populate_mappings.py ["Product ID List.txt"] [--db channelMapping.db]
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from errors import StorageUnavailable
from mapping_db import AbstractMappingStore, SQLiteMappingStore, get_store
from settings import setup_logging

logger = logging.getLogger("statusbot.import")

DEFAULT_MAPPING_FILE = Path("Product ID List.txt")
_COMMENT_PREFIXES = ("//", "-")


@dataclass
class MappingLine:
    title:      str
    product_id: str
    channel_id: str


@dataclass
class ImportReport:
    imported: int = 0
    skipped:  list[str] = field(default_factory=list)
    failed:   list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (f"imported={self.imported} skipped={len(self.skipped)} "
                f"failed={len(self.failed)}")


def parse_line(line: str) -> Optional[MappingLine]:
    """Split one `title : product : channel` line. Returns None when malformed."""
    parts = [p.strip() for p in line.split(":")]
    if len(parts) < 3:
        return None
    title, product_id, channel_id = parts[0], parts[1], parts[2]
    if not title or not product_id:
        return None
    return MappingLine(title, product_id, channel_id)


def _content_lines(lines: Iterable[str]) -> Iterable[str]:
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue
        yield line


def import_lines(lines: Iterable[str],
                 store: Optional[AbstractMappingStore] = None) -> ImportReport:
    """Import mapping lines into the store, one upsert per line."""
    store = store or get_store()
    report = ImportReport()
    for line in _content_lines(lines):
        mapping = parse_line(line)
        if mapping is None:
            logger.warning("Skipping malformed line: %s", line)
            report.skipped.append(line)
            continue
        try:
            store.upsert_mapping(mapping.title, mapping.product_id, mapping.channel_id)
        except StorageUnavailable as exc:
            logger.error("Inserting mapping for %r failed: %s", mapping.title, exc.detail or exc)
            report.failed.append(line)
            continue
        report.imported += 1
        logger.info("Mapped product %r -> %s with channel %s",
                    mapping.title, mapping.product_id, mapping.channel_id or "-")
    return report


def import_file(path: Path, store: Optional[AbstractMappingStore] = None) -> ImportReport:
    text = Path(path).read_text(encoding="utf-8")
    return import_lines(text.splitlines(), store=store)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import product/channel mappings.")
    parser.add_argument("path", nargs="?", default=str(DEFAULT_MAPPING_FILE))
    parser.add_argument("--db", default=None, help="mapping database path")
    args = parser.parse_args(argv)

    setup_logging("import")
    store = SQLiteMappingStore(Path(args.db)) if args.db else get_store()
    try:
        report = import_file(Path(args.path), store=store)
    except OSError as exc:
        logger.error("Failed to read mapping file %s: %s", args.path, exc)
        return 1
    logger.info("DB population complete: %s (%s)", report, store.count())
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
