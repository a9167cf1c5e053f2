"""Result values returned by the façade instead of raised exceptions.

Every awaited remote or persistence call made on behalf of a caller ends up
in one of these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from facturador.services.exceptions import ErrorKind, InvoicingError


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    @classmethod
    def from_exception(cls, exc: InvoicingError) -> Failure:
        return cls(kind=exc.kind, message=str(exc))

    @property
    def transient(self) -> bool:
        return self.kind.transient

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of submit()/submit_note() and of each replayed outbox entry."""

    success: bool
    record_id: Any
    offline_mode: bool = False
    authorization_code: str | None = None
    authorization_expiry: str | None = None
    number: int | None = None
    error: Failure | None = None

    @classmethod
    def approved(
        cls,
        record_id: Any,
        authorization_code: str,
        authorization_expiry: str | None,
        number: int | None = None,
    ) -> SubmitResult:
        return cls(
            success=True,
            record_id=record_id,
            authorization_code=authorization_code,
            authorization_expiry=authorization_expiry,
            number=number,
        )

    @classmethod
    def queued(cls, record_id: Any) -> SubmitResult:
        return cls(success=True, record_id=record_id, offline_mode=True)

    @classmethod
    def failed(cls, record_id: Any, error: Failure) -> SubmitResult:
        return cls(success=False, record_id=record_id, error=error)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of read-only remote operations (query, last number, PDF, status)."""

    success: bool
    data: Any = None
    error: Failure | None = None

    @classmethod
    def ok(cls, data: Any = None) -> OperationResult:
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: Failure) -> OperationResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    error: Failure | None = None


@dataclass
class DrainReport:
    """Summary of a single OutboxQueue.drain() pass."""

    approved: list[Any] = field(default_factory=list)
    rejected: list[Any] = field(default_factory=list)
    remaining: int = 0
    stopped_on: Failure | None = None
    skipped: bool = False

    @property
    def processed(self) -> int:
        return len(self.approved) + len(self.rejected)
