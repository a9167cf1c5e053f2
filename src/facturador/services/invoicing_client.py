"""Invoicing façade: the only entry point callers use.

Owns one AuthenticationSession, OutboxQueue, SubmissionLedger and
ConnectivityCoordinator, and is the only component that changes a record's
status. Every public coroutine returns a result value; failures the core
knows how to classify never escape as exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from facturador.config import MAX_RECENT_ERRORS
from facturador.models.credentials import Credentials
from facturador.models.outbox import OutboxEntry
from facturador.models.record import InvoiceRecord, NoteKind, NoteRecord, RecordStatus, record_from_dict
from facturador.models.state import ServiceState
from facturador.services.auth_session import AuthenticationSession
from facturador.services.connectivity import ConnectivityCoordinator
from facturador.services.credential_store import CredentialStore
from facturador.services.exceptions import (
    AuthenticationError,
    ErrorKind,
    InvoicingError,
    ValidationError,
)
from facturador.services.interfaces import (
    Authorization,
    ConnectivityNotifier,
    Notifier,
    RecordStore,
    SubmissionClient,
)
from facturador.services.ledger import SubmissionLedger, submission_key
from facturador.services.outbox import OutboxQueue
from facturador.services.qr_builder import build_qr_url
from facturador.services.results import (
    DrainReport,
    Failure,
    OperationResult,
    RefreshResult,
    SubmitResult,
)
from facturador.services.transformer import (
    WireInvoice,
    WireNote,
    document_type_code,
    to_wire_format,
    type_code_for,
)
from facturador.utils.policy import ElectronicInvoicePolicy
from facturador.utils.validators import validate_cuit

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InvoicingClient:
    def __init__(
        self,
        store: RecordStore,
        submission_client: SubmissionClient,
        *,
        credential_store: CredentialStore | None = None,
        notifier: Notifier | None = None,
        connectivity: ConnectivityNotifier | None = None,
        policy: ElectronicInvoicePolicy | None = None,
        clock: Callable[[], datetime] | None = None,
        online: bool = True,
        retry_interval: float | None = None,
    ) -> None:
        self._store = store
        self._client = submission_client
        self._notifier = notifier
        self._source = connectivity
        self.policy = policy or ElectronicInvoicePolicy()
        self._clock = clock or _utcnow
        self._errors: deque[str] = deque(maxlen=MAX_RECENT_ERRORS)
        self._lock = asyncio.Lock()

        self.credential_store = credential_store or CredentialStore(store)
        self.outbox = OutboxQueue(store)
        self.ledger = SubmissionLedger(store)
        self.session = AuthenticationSession(
            self.credential_store,
            submission_client,
            clock=self._clock,
            is_offline=self.is_offline,
            errors=self._errors,
        )
        self.coordinator = ConnectivityCoordinator(
            self.session,
            self.outbox,
            self._process_entry,
            notifier=notifier,
            online=online,
            retry_interval=retry_interval,
        )

    # --- lifecycle ---

    async def start(self) -> RefreshResult:
        """Load outbox, ledger and session; replay anything left from a previous run."""
        await self.outbox.load()
        await self.ledger.load()
        if self._source is not None:
            self.coordinator.attach(self._source)
        result = await self.session.load()
        if self.coordinator.online and self.outbox:
            await self.coordinator.trigger_replay()
        return result

    async def close(self) -> None:
        await self.coordinator.close()

    def is_offline(self) -> bool:
        return not self.coordinator.online

    async def set_online(self, online: bool) -> DrainReport | None:
        return await self.coordinator.set_online(online)

    async def replay_pending(self) -> DrainReport:
        return await self.coordinator.trigger_replay()

    # --- helpers ---

    def _notify(self, kind: str, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(kind, message)

    def _record_error(self, failure: Failure) -> Failure:
        self._errors.append(str(failure))
        return failure

    def _point_of_sale(self) -> int | None:
        creds = self.session.credentials
        return creds.point_of_sale if creds else None

    def _transform(
        self, record: InvoiceRecord, original: InvoiceRecord | None
    ) -> WireInvoice | WireNote:
        return to_wire_format(
            record,
            point_of_sale=self._point_of_sale(),
            original=original,
            policy=self.policy,
        )

    async def _ensure_ready(self) -> Failure | None:
        """One refresh attempt when the session is not usable."""
        if self.session.is_ready():
            return None
        refreshed = await self.session.refresh()
        if self.session.is_ready():
            return None
        if refreshed.error is not None:
            return refreshed.error
        return self._record_error(
            Failure(ErrorKind.CONFIGURATION, "Credenciales del emisor incompletas")
        )

    async def _remember(self, record: InvoiceRecord) -> None:
        """Make sure the store holds the record so a replay can find it."""
        if await self._store.get_record(record.kind, record.id) is None:
            await self._store.put_record(record.kind, record.to_dict())

    async def _apply(self, record: InvoiceRecord, patch: dict) -> None:
        if await self._store.update_record(record.kind, record.id, patch) is None:
            await self._store.put_record(record.kind, {**record.to_dict(), **patch})

    async def _dispatch(
        self, record: InvoiceRecord, original: InvoiceRecord | None
    ) -> Authorization:
        wire = self._transform(record, original)
        token = self.session.token
        if isinstance(record, NoteRecord):
            authorization = await self._client.submit_note(wire, token=token)
        else:
            authorization = await self._client.submit_invoice(wire, token=token)
        await self.ledger.record(submission_key(record.kind, record.id), authorization)
        return authorization

    async def _approve(self, record: InvoiceRecord, authorization: Authorization) -> SubmitResult:
        number = authorization.number if authorization.number is not None else record.number
        await self._apply(
            record,
            {
                "status": RecordStatus.APPROVED.value,
                "authorization_code": authorization.authorization_code,
                "authorization_expiry": authorization.authorization_expiry,
                "number": number,
                "point_of_sale": record.point_of_sale or self._point_of_sale(),
                "error": None,
            },
        )
        await self.outbox.discard(record.id, record.kind)
        self.session.last_sync = self._clock()
        logger.info("%s %s approved, CAE %s", record.kind, record.id, authorization.authorization_code)
        return SubmitResult.approved(
            record.id,
            authorization.authorization_code,
            authorization.authorization_expiry,
            number,
        )

    async def _reject(self, record: InvoiceRecord, exc: InvoicingError) -> SubmitResult:
        failure = self._record_error(Failure.from_exception(exc))
        await self._apply(record, {"status": RecordStatus.ERROR.value, "error": failure.message})
        await self.outbox.discard(record.id, record.kind)
        logger.warning("%s %s rejected: %s", record.kind, record.id, failure.message)
        return SubmitResult.failed(record.id, failure)

    async def _enqueue(self, record: InvoiceRecord, original: InvoiceRecord | None) -> SubmitResult:
        await self._remember(record)
        if original is not None:
            await self._remember(original)
        await self.outbox.enqueue(OutboxEntry.for_record(record, self._clock()))
        self._notify("info", f"Comprobante {record.id} guardado para envio posterior")
        return SubmitResult.queued(record.id)

    async def _defer(self, record: InvoiceRecord, original: InvoiceRecord | None) -> SubmitResult:
        """Queue after a transient failure while online; no reconnect will replay it."""
        result = await self._enqueue(record, original)
        self.coordinator.schedule_retry()
        return result

    # --- submissions ---

    async def submit(self, record: InvoiceRecord) -> SubmitResult:
        return await self._submit(record, None)

    async def submit_note(self, note: NoteRecord, original: InvoiceRecord | None) -> SubmitResult:
        if original is None:
            failure = Failure(ErrorKind.VALIDATION, f"Nota {note.id}: falta la factura asociada")
            return SubmitResult.failed(note.id, failure)
        return await self._submit(note, original)

    async def _submit(self, record: InvoiceRecord, original: InvoiceRecord | None) -> SubmitResult:
        if record.status is not RecordStatus.PENDING:
            failure = Failure(
                ErrorKind.VALIDATION,
                f"Comprobante {record.id} ya procesado ({record.status.value})",
            )
            return SubmitResult.failed(record.id, failure)
        try:
            self._transform(record, original)
        except ValidationError as e:
            return SubmitResult.failed(record.id, self._record_error(Failure.from_exception(e)))

        async with self._lock:
            known = self.ledger.get(submission_key(record.kind, record.id))
            if known is not None:
                return await self._approve(record, known)

            if not self.is_offline():
                failure = await self._ensure_ready()
                if failure is not None:
                    if failure.transient:
                        return await self._defer(record, original)
                    return SubmitResult.failed(record.id, failure)

            if self.is_offline():
                return await self._enqueue(record, original)

            try:
                authorization = await self._dispatch(record, original)
            except ValidationError as e:
                return await self._reject(record, e)
            except AuthenticationError as e:
                await self.session.invalidate()
                return SubmitResult.failed(record.id, self._record_error(Failure.from_exception(e)))
            except InvoicingError as e:
                failure = self._record_error(Failure.from_exception(e))
                if failure.transient:
                    logger.warning("Submission of %s %s deferred: %s", record.kind, record.id, failure)
                    return await self._defer(record, original)
                return SubmitResult.failed(record.id, failure)
            return await self._approve(record, authorization)

    async def _process_entry(self, entry: OutboxEntry) -> SubmitResult:
        """Replay one outbox entry; used by the coordinator's drain."""
        if self.is_offline():
            return SubmitResult.failed(entry.record_id, Failure(ErrorKind.CONNECTIVITY, "Sin conexion"))

        data = await self._store.get_record(entry.kind, entry.record_id)
        if data is None:
            failure = Failure(ErrorKind.VALIDATION, f"Comprobante {entry.record_id} no encontrado")
            return SubmitResult.failed(entry.record_id, self._record_error(failure))
        record = record_from_dict(data, entry.kind)
        if record.status is not RecordStatus.PENDING:
            # Already settled (e.g. submitted directly after being queued)
            return SubmitResult(
                success=record.status is RecordStatus.APPROVED,
                record_id=record.id,
                authorization_code=record.authorization_code,
                authorization_expiry=record.authorization_expiry,
                number=record.number,
                error=None
                if record.status is RecordStatus.APPROVED
                else Failure(ErrorKind.VALIDATION, record.error or "Comprobante rechazado"),
            )

        original = None
        if isinstance(record, NoteRecord):
            invoice_id = entry.invoice_id if entry.invoice_id is not None else record.invoice_id
            original_data = await self._store.get_record(InvoiceRecord.kind, invoice_id)
            if original_data is None:
                return await self._reject(
                    record, ValidationError(f"Factura asociada {invoice_id} no encontrada")
                )
            original = InvoiceRecord.from_dict(original_data)

        async with self._lock:
            known = self.ledger.get(submission_key(record.kind, record.id))
            if known is not None:
                return await self._approve(record, known)

            failure = await self._ensure_ready()
            if failure is not None:
                return SubmitResult.failed(record.id, failure)

            try:
                authorization = await self._dispatch(record, original)
            except ValidationError as e:
                return await self._reject(record, e)
            except AuthenticationError as e:
                await self.session.invalidate()
                return SubmitResult.failed(record.id, self._record_error(Failure.from_exception(e)))
            except InvoicingError as e:
                return SubmitResult.failed(record.id, self._record_error(Failure.from_exception(e)))
            return await self._approve(record, authorization)

    # --- remote reads ---

    async def _remote(self, action: str, call: Callable[[str | None], Awaitable[Any]]) -> OperationResult:
        if self.is_offline():
            return OperationResult.failed(Failure(ErrorKind.CONNECTIVITY, "Sin conexion"))
        failure = await self._ensure_ready()
        if failure is not None:
            return OperationResult.failed(failure)
        try:
            data = await call(self.session.token)
        except AuthenticationError as e:
            await self.session.invalidate()
            return OperationResult.failed(self._record_error(Failure.from_exception(e)))
        except InvoicingError as e:
            logger.warning("%s failed: %s", action, e)
            return OperationResult.failed(self._record_error(Failure.from_exception(e)))
        return OperationResult.ok(data)

    async def query_document(
        self, letter: str, number: int, note_kind: NoteKind | None = None
    ) -> OperationResult:
        try:
            type_code = type_code_for(letter, note_kind)
        except ValidationError as e:
            return OperationResult.failed(Failure.from_exception(e))
        return await self._remote(
            "query_document",
            lambda token: self._client.query_document(type_code, number, token=token),
        )

    async def last_number(self, letter: str, note_kind: NoteKind | None = None) -> OperationResult:
        try:
            type_code = type_code_for(letter, note_kind)
        except ValidationError as e:
            return OperationResult.failed(Failure.from_exception(e))
        return await self._remote(
            "last_number",
            lambda token: self._client.last_number(type_code, token=token),
        )

    async def download_pdf(self, record: InvoiceRecord) -> OperationResult:
        if not record.authorization_code or record.number is None:
            failure = Failure(ErrorKind.VALIDATION, f"Comprobante {record.id} sin CAE o sin numero")
            return OperationResult.failed(failure)
        try:
            type_code = document_type_code(record)
        except ValidationError as e:
            return OperationResult.failed(Failure.from_exception(e))
        return await self._remote(
            "download_pdf",
            lambda token: self._client.download_pdf(
                type_code, record.number, record.authorization_code, token=token
            ),
        )

    async def verify_tax_id(self, tax_id: str) -> OperationResult:
        """Look up a taxpayer. The check digit is verified before any network call."""
        try:
            cuit = validate_cuit(tax_id)
        except ValueError as e:
            return OperationResult.failed(Failure(ErrorKind.VALIDATION, str(e)))
        return await self._remote(
            "verify_tax_id",
            lambda token: self._client.verify_tax_id(cuit, token=token),
        )

    async def points_of_sale(self) -> OperationResult:
        return await self._remote(
            "points_of_sale",
            lambda token: self._client.points_of_sale(token=token),
        )

    async def check_service_status(self) -> OperationResult:
        """Ask ARCA whether it is accepting submissions. No session needed."""
        if self.is_offline():
            return OperationResult.failed(Failure(ErrorKind.CONNECTIVITY, "Sin conexion"))
        try:
            status = await self._client.service_status()
        except InvoicingError as e:
            return OperationResult.failed(self._record_error(Failure.from_exception(e)))
        return OperationResult.ok(status)

    # --- local operations ---

    def qr_url(self, record: InvoiceRecord) -> OperationResult:
        creds = self.session.credentials
        if creds is None or not creds.tax_id:
            return OperationResult.failed(
                Failure(ErrorKind.CONFIGURATION, "CUIT del emisor no configurado")
            )
        try:
            url = build_qr_url(record, tax_id=creds.tax_id, point_of_sale=creds.point_of_sale)
        except ValidationError as e:
            return OperationResult.failed(Failure.from_exception(e))
        return OperationResult.ok(url)

    def requires_electronic(self, amount: object, payment_method: str | None = None) -> bool:
        return self.policy.requires_electronic(amount, payment_method)

    async def save_credentials(self, credentials: Credentials) -> OperationResult:
        await self.session.save_credentials(credentials)
        return OperationResult.ok()

    async def change_environment(self, environment: str) -> RefreshResult:
        return await self.session.change_environment(environment)

    def status(self) -> ServiceState:
        creds = self.session.credentials
        cert = creds.certificate if creds else None
        now = self._clock()
        return ServiceState(
            connected=self.coordinator.connected,
            configured=bool(creds and creds.complete),
            last_sync=self.session.last_sync,
            certificate_valid=cert.is_valid(now) if cert else False,
            certificate_valid_until=cert.valid_until if cert else None,
            environment=creds.environment if creds else "test",
            errors=tuple(self._errors),
            pending_count=len(self.outbox),
            offline=self.is_offline(),
        )
