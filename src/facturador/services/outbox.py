"""Durable FIFO of submissions waiting for ARCA's confirmation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from facturador.models.outbox import OutboxEntry
from facturador.services.exceptions import ErrorKind
from facturador.services.interfaces import RecordStore
from facturador.services.results import DrainReport, SubmitResult

logger = logging.getLogger(__name__)

ProcessFn = Callable[[OutboxEntry], Awaitable[SubmitResult]]


class OutboxQueue:
    """In-memory view of the pending list; every change is persisted at once.

    ``drain()`` processes one entry at a time, in enqueue order. Validation
    failures drop the entry and move on; any other failure stops the pass
    and leaves the rest for the next trigger.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._entries: list[OutboxEntry] = []
        self._draining = False

    async def load(self) -> int:
        raw = await self._store.get_pending()
        self._entries = [OutboxEntry.from_dict(d) for d in raw]
        if self._entries:
            logger.info("Outbox loaded with %d pending submission(s)", len(self._entries))
        return len(self._entries)

    async def _persist(self) -> None:
        await self._store.set_pending([e.to_dict() for e in self._entries])

    @property
    def entries(self) -> tuple[OutboxEntry, ...]:
        return tuple(self._entries)

    @property
    def pending_ids(self) -> list[Any]:
        return [e.record_id for e in self._entries]

    @property
    def draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, record_id: object) -> bool:
        return any(e.record_id == record_id for e in self._entries)

    async def enqueue(self, entry: OutboxEntry) -> bool:
        """Append and persist. Returns False if the record is already queued."""
        if any(e.submission_key == entry.submission_key for e in self._entries):
            logger.debug("%s already queued", entry.submission_key)
            return False
        self._entries.append(entry)
        await self._persist()
        logger.info("Queued %s (%d pending)", entry.submission_key, len(self._entries))
        return True

    async def discard(self, record_id: Any, kind: str | None = None) -> bool:
        """Remove a record's entry. Removing an absent entry is a no-op."""
        kept = [
            e
            for e in self._entries
            if not (e.record_id == record_id and (kind is None or e.kind == kind))
        ]
        if len(kept) == len(self._entries):
            return False
        self._entries = kept
        await self._persist()
        return True

    async def drain(self, process_fn: ProcessFn) -> DrainReport:
        if self._draining:
            logger.debug("Drain already running, ignoring trigger")
            return DrainReport(remaining=len(self._entries), skipped=True)

        self._draining = True
        report = DrainReport()
        try:
            while self._entries:
                entry = self._entries[0]
                result = await process_fn(entry)
                if result.success:
                    await self.discard(entry.record_id, entry.kind)
                    report.approved.append(entry.record_id)
                    continue
                if result.error is not None and result.error.kind is ErrorKind.VALIDATION:
                    await self.discard(entry.record_id, entry.kind)
                    report.rejected.append(entry.record_id)
                    logger.warning("Dropped %s: %s", entry.submission_key, result.error.message)
                    continue
                report.stopped_on = result.error
                logger.info("Drain stopped at %s: %s", entry.submission_key, result.error)
                break
        finally:
            self._draining = False
        report.remaining = len(self._entries)
        return report
