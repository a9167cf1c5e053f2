from __future__ import annotations

import copy
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from facturador.models.credentials import CertificateBundle, Credentials
from facturador.models.record import InvoiceRecord, NoteRecord
from facturador.services.credential_store import CredentialStore
from facturador.services.interfaces import AuthToken, Authorization
from facturador.services.invoicing_client import InvoicingClient
from facturador.utils.store import record_key

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class MemoryStore:
    """In-memory RecordStore with the same contract as JsonStore."""

    def __init__(self) -> None:
        self.config: dict = {}
        self.records: dict[str, dict] = {}
        self.pending: list = []
        self.pending_writes: list[list] = []

    async def get_config(self, key):
        return copy.deepcopy(self.config.get(key))

    async def save_config(self, key, value):
        self.config[key] = copy.deepcopy(value)

    async def get_record(self, kind, record_id):
        rec = self.records.get(record_key(kind, record_id))
        return copy.deepcopy(rec) if rec is not None else None

    async def put_record(self, kind, record):
        self.records[record_key(kind, record["id"])] = copy.deepcopy(record)

    async def update_record(self, kind, record_id, patch):
        rec = self.records.get(record_key(kind, record_id))
        if rec is None:
            return None
        rec.update(copy.deepcopy(patch))
        return copy.deepcopy(rec)

    async def get_pending(self):
        return copy.deepcopy(self.pending)

    async def set_pending(self, entries):
        self.pending = copy.deepcopy(entries)
        self.pending_writes.append(copy.deepcopy(entries))


# --- Credentials fixtures ---


@pytest.fixture
def credentials_dict() -> dict:
    return {
        "tax_id": "20-12345678-6",
        "legal_name": "MI COMERCIO SRL",
        "point_of_sale": 3,
        "environment": "test",
        "certificate": {
            "pfx_path": "/certs/issuer.pfx",
            "valid_until": (NOW + timedelta(days=200)).isoformat(),
        },
    }


@pytest.fixture
def credentials(credentials_dict: dict) -> Credentials:
    creds = Credentials.from_dict(credentials_dict)
    cert = creds.certificate
    return Credentials(
        tax_id=creds.tax_id,
        legal_name=creds.legal_name,
        point_of_sale=creds.point_of_sale,
        certificate=CertificateBundle(cert.pfx_path, "testpass", cert.valid_until),
        environment=creds.environment,
    )


# --- Record fixtures ---


@pytest.fixture
def invoice_dict() -> dict:
    return {
        "id": 42,
        "document_type": "B",
        "customer": {"name": "Juan Perez", "document_type": "DNI", "document_number": "30123456"},
        "items": [
            {"description": "Yerba 1kg", "quantity": "2", "unit_price": "3500", "amount": "7000"},
            {"description": "Azucar", "quantity": "1", "unit_price": "1470", "amount": "1470"},
        ],
        "total": "8470",
        "subtotal": "7000",
        "vat": "1470",
        "issue_date": "2026-10-19",
    }


@pytest.fixture
def invoice(invoice_dict: dict) -> InvoiceRecord:
    return InvoiceRecord.from_dict(invoice_dict)


@pytest.fixture
def invoice_a() -> InvoiceRecord:
    return InvoiceRecord.from_dict(
        {
            "id": 7,
            "document_type": "A",
            "customer": {
                "name": "Distribuidora Norte SA",
                "document_type": "CUIT",
                "document_number": "30-71234567-1",
            },
            "items": [
                {"description": "Servicio", "quantity": "1", "unit_price": "1000", "amount": "1000"}
            ],
            "total": "1210.00",
            "subtotal": "1000.00",
            "vat": "210.00",
            "issue_date": "2026-10-18",
        }
    )


@pytest.fixture
def approved_invoice(invoice_a: InvoiceRecord) -> InvoiceRecord:
    data = invoice_a.to_dict()
    data.update(
        {
            "status": "APPROVED",
            "number": 15,
            "point_of_sale": 3,
            "authorization_code": "71234567890123",
            "authorization_expiry": "2026-10-28",
        }
    )
    return InvoiceRecord.from_dict(data)


@pytest.fixture
def credit_note(approved_invoice: InvoiceRecord) -> NoteRecord:
    return NoteRecord.from_dict(
        {
            "id": 501,
            "document_type": "A",
            "note_kind": "credit",
            "invoice_id": approved_invoice.id,
            "total": "121.00",
            "subtotal": "100.00",
            "vat": "21.00",
            "issue_date": "2026-10-19",
        }
    )


# --- Collaborator fixtures ---


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def submission_client() -> MagicMock:
    client = MagicMock()
    client.authenticate = AsyncMock(
        return_value=AuthToken(token="token-1", expiry=NOW + timedelta(hours=12))
    )
    client.submit_invoice = AsyncMock(
        return_value=Authorization("71234567890123", "2026-10-29", 16)
    )
    client.submit_note = AsyncMock(return_value=Authorization("71234567899999", "2026-10-29", 4))
    client.query_document = AsyncMock(return_value={"number": 15, "cae": "71234567890123"})
    client.last_number = AsyncMock(return_value=15)
    client.download_pdf = AsyncMock(return_value=b"%PDF-1.4")
    client.verify_tax_id = AsyncMock(
        return_value={"tax_id": "30712345671", "legal_name": "Distribuidora Norte SA"}
    )
    client.points_of_sale = AsyncMock(return_value=[{"number": 3, "type": "CAE"}])
    client.service_status = AsyncMock(return_value={"available": True})
    return client


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def seeded_store(store: MemoryStore, credentials: Credentials) -> MemoryStore:
    """Store holding credentials and a session valid for the next hour."""
    store.config["credentials"] = credentials.to_dict()
    store.config["session"] = {
        "token": "cached-token",
        "expiry": (NOW + timedelta(hours=1)).isoformat(),
        "environment": "test",
    }
    return store


@pytest.fixture
def make_client(submission_client, notifier, clock):
    """Factory for an InvoicingClient wired to in-memory collaborators."""

    def _make(store: MemoryStore, **kwargs) -> InvoicingClient:
        kwargs.setdefault("notifier", notifier)
        kwargs.setdefault("clock", clock)
        return InvoicingClient(
            store,
            submission_client,
            credential_store=CredentialStore(store, password_lookup=lambda: "testpass"),
            **kwargs,
        )

    return _make


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Certificate"),
            x509.NameAttribute(NameOID.SERIAL_NUMBER, "CUIT 20123456786"),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def test_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    password = b"testpass"
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path), "testpass"
