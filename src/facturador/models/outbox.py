from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class OutboxEntry:
    """A submission waiting for ARCA's confirmation."""

    record_id: Any
    kind: str  # "invoice" or "note"
    enqueued_at: str
    invoice_id: Any = None  # referenced invoice, notes only

    @classmethod
    def for_record(cls, record: Any, enqueued_at: datetime | None = None) -> OutboxEntry:
        ts = enqueued_at or datetime.now(UTC)
        return cls(
            record_id=record.id,
            kind=record.kind,
            enqueued_at=ts.isoformat(),
            invoice_id=getattr(record, "invoice_id", None),
        )

    @classmethod
    def from_dict(cls, d: dict | Any) -> OutboxEntry:
        # Older pending lists stored bare invoice ids
        if not isinstance(d, dict):
            return cls(record_id=d, kind="invoice", enqueued_at="")
        return cls(
            record_id=d["record_id"],
            kind=d.get("kind", "invoice"),
            enqueued_at=d.get("enqueued_at", ""),
            invoice_id=d.get("invoice_id"),
        )

    def to_dict(self) -> dict:
        data = {
            "record_id": self.record_id,
            "kind": self.kind,
            "enqueued_at": self.enqueued_at,
        }
        if self.invoice_id is not None:
            data["invoice_id"] = self.invoice_id
        return data

    @property
    def submission_key(self) -> str:
        return f"{self.kind}:{self.record_id}"
