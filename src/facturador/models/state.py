from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ServiceState:
    """Read-only snapshot of one InvoicingClient. Never persisted."""

    connected: bool
    configured: bool
    last_sync: datetime | None
    certificate_valid: bool | None
    certificate_valid_until: datetime | None
    environment: str
    errors: tuple[str, ...]
    pending_count: int
    offline: bool
