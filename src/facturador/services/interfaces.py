"""Collaborators injected into the invoicing core.

Concrete implementations shipped with the package: ``ArcaClient``
(SubmissionClient) and ``JsonStore`` (RecordStore). Tests use mocks.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from facturador.models.credentials import CertificateBundle


@dataclass(frozen=True)
class AuthRequest:
    tax_id: str
    certificate: CertificateBundle
    environment: str


@dataclass(frozen=True)
class AuthToken:
    token: str
    expiry: datetime


@dataclass(frozen=True)
class Authorization:
    """ARCA's approval of a document (CAE)."""

    authorization_code: str
    authorization_expiry: str | None = None
    number: int | None = None


class SubmissionClient(Protocol):
    """Remote authority. Methods raise the InvoicingError taxonomy."""

    async def authenticate(self, request: AuthRequest) -> AuthToken: ...

    async def submit_invoice(self, wire: Any, *, token: str | None = None) -> Authorization: ...

    async def submit_note(self, wire: Any, *, token: str | None = None) -> Authorization: ...

    async def query_document(
        self, type_code: int, number: int, *, token: str | None = None
    ) -> dict: ...

    async def last_number(self, type_code: int, *, token: str | None = None) -> int: ...

    async def download_pdf(
        self,
        type_code: int,
        number: int,
        authorization_code: str,
        *,
        token: str | None = None,
    ) -> bytes: ...

    async def verify_tax_id(self, tax_id: str, *, token: str | None = None) -> dict: ...

    async def points_of_sale(self, *, token: str | None = None) -> list[dict]: ...

    async def service_status(self) -> dict: ...


class RecordStore(Protocol):
    """Key/value persistence: configuration, records and the pending list.

    Records are addressed by kind ("invoice" or "note") and id; the two
    kinds have separate id spaces.
    """

    async def get_config(self, key: str) -> Any: ...

    async def save_config(self, key: str, value: Any) -> None: ...

    async def get_record(self, kind: str, record_id: Any) -> dict | None: ...

    async def put_record(self, kind: str, record: dict) -> None: ...

    async def update_record(self, kind: str, record_id: Any, patch: dict) -> dict | None: ...

    async def get_pending(self) -> list: ...

    async def set_pending(self, entries: list) -> None: ...


ConnectivityCallback = Callable[[bool], None]


class ConnectivityNotifier(Protocol):
    """Source of online/offline transitions."""

    def subscribe(self, callback: ConnectivityCallback) -> None: ...

    def unsubscribe(self, callback: ConnectivityCallback) -> None: ...


class Notifier(Protocol):
    """User-facing notifications (kind: info, success, warning, error)."""

    def notify(self, kind: str, message: str) -> None: ...
