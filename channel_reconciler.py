#!/usr/bin/env python3
"""
Channel Reconciler — one cycle of the channel-status scan.

Per channel (sequential within the channel, concurrent across channels):

  ┌──────────────────────────────────────────────────────────────┐
  │  1. IGNORED?                       → skip                    │
  │  2. tag = classify_channel(name)                             │
  │  3. tag == last_tag?               → skip                    │
  │  4. product id: channel lookup, else title lookup            │
  │  5. no product id                  → IGNORED (terminal)      │
  │  6. tag == unknown                 → no push, cache as-is    │
  │  7. push {tag, title, productId}   → cache tag               │
  └──────────────────────────────────────────────────────────────┘

State is an explicit ChannelRecord per channel id, owned by the
ChannelReconciler instance.  Only the task for channel X touches record X.

Failure semantics:
  - StorageUnavailable during lookup → skipped this cycle, stays ACTIVE
  - push FAILED → cache untouched when retry_failed_pushes (default), so the
    next cycle re-sends; otherwise cached anyway (legacy drop behaviour)
  - any other exception → logged, siblings unaffected

Cycles are single-flight: run_cycle() returns None if one is already running.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from errors import StorageUnavailable
from mapping_db import AbstractMappingStore
from status_classifier import StatusTag, classify_channel
from status_sink import PushResult, StatusSink, StatusUpdate

logger = logging.getLogger("statusbot.reconciler")


# ─── Data Structures ──────────────────────────────────────────────────────────

class ChannelState(str, Enum):
    ACTIVE  = "active"
    IGNORED = "ignored"


class Outcome(str, Enum):
    SKIPPED_IGNORED = "skipped_ignored"
    UNCHANGED       = "unchanged"
    NEWLY_IGNORED   = "newly_ignored"
    UNKNOWN_TAG     = "unknown_tag"
    PUSHED          = "pushed"
    PUSH_SKIPPED    = "push_skipped"
    PUSH_FAILED     = "push_failed"
    STORAGE_SKIP    = "storage_skip"
    ERROR           = "error"


@dataclass(frozen=True)
class ChannelRef:
    """A text-capable channel as seen by the scan, independent of discord.py types."""
    channel_id: str
    name:       str
    group_id:   str = ""


@dataclass
class ChannelRecord:
    channel_id: str
    state:      ChannelState = ChannelState.ACTIVE
    last_tag:   Optional[StatusTag] = None


@dataclass
class CycleReport:
    outcomes:     Counter = field(default_factory=Counter)
    channels:     int = 0
    groups:       int = 0
    duration_sec: float = 0.0

    def __str__(self) -> str:
        counts = ", ".join(f"{k.value}={v}" for k, v in sorted(self.outcomes.items()))
        return (f"{self.channels} channels in {self.groups} groups "
                f"({counts or 'nothing to do'}) in {self.duration_sec:.2f}s")


# ─── Reconciler ───────────────────────────────────────────────────────────────

class ChannelReconciler:
    """
    Usage:
        reconciler = ChannelReconciler(store=get_store(), sink=StatusSink(...))
        report = await reconciler.run_cycle([[ChannelRef("123", "🟢 aimbot")]])
    """

    def __init__(
        self,
        store: AbstractMappingStore,
        sink: StatusSink,
        retry_failed_pushes: bool = True,
    ) -> None:
        self._store = store
        self._sink = sink
        self._retry_failed_pushes = retry_failed_pushes
        self._records: dict[str, ChannelRecord] = {}
        self._cycle_running = False

    # ── Record access ─────────────────────────────────────────────────────────

    def record(self, channel_id: str) -> ChannelRecord:
        rec = self._records.get(channel_id)
        if rec is None:
            rec = self._records[channel_id] = ChannelRecord(channel_id)
        return rec

    @property
    def ignored_channels(self) -> set[str]:
        return {cid for cid, r in self._records.items() if r.state is ChannelState.IGNORED}

    @property
    def is_running(self) -> bool:
        return self._cycle_running

    # ── Cycle ─────────────────────────────────────────────────────────────────

    async def run_cycle(
        self, groups: Iterable[Iterable[ChannelRef]]
    ) -> Optional[CycleReport]:
        """
        Reconcile every channel of every group.  Returns None when another
        cycle is still in flight.
        """
        if self._cycle_running:
            logger.warning("Previous cycle still running — skipping this one.")
            return None

        self._cycle_running = True
        started = time.monotonic()
        report = CycleReport()
        logger.info("Starting periodic channel scan for status updates.")
        try:
            group_lists = [list(g) for g in groups]
            report.groups = len(group_lists)
            results = await asyncio.gather(
                *(self._reconcile_group(channels) for channels in group_lists)
            )
            for outcomes in results:
                report.channels += len(outcomes)
                report.outcomes.update(outcomes)
        finally:
            self._cycle_running = False
        report.duration_sec = time.monotonic() - started
        logger.info("Cycle complete: %s", report)
        return report

    async def _reconcile_group(self, channels: list[ChannelRef]) -> list[Outcome]:
        results = await asyncio.gather(
            *(self.reconcile_channel(ch) for ch in channels),
            return_exceptions=True,
        )
        outcomes = []
        for ch, result in zip(channels, results):
            if isinstance(result, BaseException):
                logger.error("[Scan] Channel %r failed: %r", ch.name, result)
                outcomes.append(Outcome.ERROR)
            else:
                outcomes.append(result)
        return outcomes

    # ── One channel ───────────────────────────────────────────────────────────

    async def reconcile_channel(self, channel: ChannelRef) -> Outcome:
        rec = self.record(channel.channel_id)
        name = channel.name

        if rec.state is ChannelState.IGNORED:
            logger.debug("[Scan] Channel %r previously ignored. Skipping.", name)
            return Outcome.SKIPPED_IGNORED

        tag = classify_channel(name)
        logger.debug("[Scan] Channel %r status determined as %r", name, tag.value)

        if rec.last_tag is tag:
            logger.debug("[Scan] No status change for channel %r.", name)
            return Outcome.UNCHANGED

        try:
            product_id = await self._resolve_product_id(channel)
        except StorageUnavailable as exc:
            logger.error("[Scan] DB lookup failed for channel %r: %s",
                         name, exc.detail or exc)
            return Outcome.STORAGE_SKIP

        if not product_id:
            logger.warning("[Scan] No product mapping found for channel %r (ID: %s). "
                           "Marking channel as ignored.", name, channel.channel_id)
            rec.state = ChannelState.IGNORED
            return Outcome.NEWLY_IGNORED

        if tag is StatusTag.UNKNOWN:
            return Outcome.UNKNOWN_TAG

        result = await self._sink.push(StatusUpdate(tag.value, name, product_id))
        if result is PushResult.FAILED:
            if not self._retry_failed_pushes:
                rec.last_tag = tag
            return Outcome.PUSH_FAILED

        rec.last_tag = tag
        return Outcome.PUSHED if result is PushResult.SENT else Outcome.PUSH_SKIPPED

    async def _resolve_product_id(self, channel: ChannelRef) -> Optional[str]:
        product_id = await asyncio.to_thread(
            self._store.lookup_by_channel, channel.channel_id
        )
        if product_id:
            return product_id
        product_id = await asyncio.to_thread(self._store.lookup_by_title, channel.name)
        if product_id:
            logger.info("[Scan] Found product mapping for title %r as: %r",
                        channel.name, product_id)
        return product_id
