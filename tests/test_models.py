from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from conftest import NOW

from facturador.models.credentials import Credentials, Session
from facturador.models.outbox import OutboxEntry
from facturador.models.record import (
    Customer,
    InvoiceRecord,
    NoteKind,
    NoteRecord,
    RecordStatus,
    record_from_dict,
)

# --- Records ---


class TestInvoiceRecord:
    def test_from_dict(self, invoice_dict):
        r = InvoiceRecord.from_dict(invoice_dict)
        assert r.id == 42
        assert r.document_type == "B"
        assert r.customer.document_type == "DNI"
        assert len(r.items) == 2
        assert r.items[0].vat_rate == "21"
        assert r.total == "8470"
        assert r.status is RecordStatus.PENDING
        assert r.currency == "PES"

    def test_numbers_become_strings(self):
        r = InvoiceRecord.from_dict({"id": 1, "document_type": "c", "total": 1500.5})
        assert r.total == "1500.5"
        assert r.document_type == "C"
        assert r.subtotal is None

    def test_empty_number_is_none(self):
        r = InvoiceRecord.from_dict({"id": 1, "document_type": "B", "number": "", "point_of_sale": ""})
        assert r.number is None
        assert r.point_of_sale is None

    def test_final_consumer_default(self):
        assert Customer.from_dict(None) == Customer()
        assert Customer().name == "Consumidor Final"

    def test_round_trip(self, approved_invoice):
        again = InvoiceRecord.from_dict(approved_invoice.to_dict())
        assert again == approved_invoice
        assert again.to_dict()["status"] == "APPROVED"

    def test_kind(self, invoice):
        assert invoice.kind == "invoice"


class TestNoteRecord:
    def test_from_dict(self, credit_note):
        assert credit_note.note_kind is NoteKind.CREDIT
        assert credit_note.invoice_id == 7
        assert credit_note.kind == "note"

    def test_to_dict_carries_note_fields(self, credit_note):
        d = credit_note.to_dict()
        assert d["note_kind"] == "credit"
        assert d["invoice_id"] == 7

    def test_record_from_dict(self, credit_note, invoice):
        assert isinstance(record_from_dict(credit_note.to_dict()), NoteRecord)
        restored = record_from_dict(invoice.to_dict())
        assert type(restored) is InvoiceRecord

    def test_record_from_dict_with_store_kind(self, credit_note, invoice):
        assert type(record_from_dict(credit_note.to_dict(), "invoice")) is InvoiceRecord
        assert isinstance(record_from_dict(invoice.to_dict(), "note"), NoteRecord)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            NoteRecord.from_dict({"id": 1, "document_type": "A", "note_kind": "refund"})


# --- Credentials ---


class TestCredentials:
    def test_from_dict(self, credentials_dict):
        c = Credentials.from_dict(credentials_dict)
        assert c.tax_id == "20123456786"
        assert c.point_of_sale == 3
        assert c.certificate.pfx_path == "/certs/issuer.pfx"
        assert c.certificate.valid_until == NOW + timedelta(days=200)
        assert c.complete

    def test_password_never_serialized(self, credentials):
        assert credentials.certificate.password == "testpass"
        assert "password" not in credentials.to_dict()["certificate"]

    @pytest.mark.parametrize("field", ["tax_id", "legal_name", "point_of_sale", "certificate"])
    def test_incomplete(self, credentials_dict, field):
        credentials_dict[field] = None if field != "tax_id" else ""
        assert not Credentials.from_dict(credentials_dict).complete

    def test_with_environment(self, credentials):
        prod = credentials.with_environment("production")
        assert prod.environment == "production"
        assert credentials.environment == "test"


class TestSession:
    def test_validity_is_strict(self):
        s = Session("tok", NOW, "test")
        assert s.is_valid(NOW - timedelta(seconds=1))
        assert not s.is_valid(NOW)

    def test_naive_expiry_is_utc(self):
        s = Session.from_dict({"token": "tok", "expiry": "2026-10-19T12:00:00"})
        assert s.expiry == NOW
        assert s.environment == "test"

    def test_round_trip(self):
        s = Session("tok", NOW, "production")
        assert Session.from_dict(s.to_dict()) == s

    def test_missing_expiry(self):
        with pytest.raises(ValueError):
            Session.from_dict({"token": "tok"})


# --- Outbox entries ---


class TestOutboxEntry:
    def test_for_invoice(self, invoice):
        entry = OutboxEntry.for_record(invoice, NOW)
        assert entry.submission_key == "invoice:42"
        assert entry.enqueued_at == NOW.isoformat()
        assert "invoice_id" not in entry.to_dict()

    def test_for_note_keeps_original(self, credit_note):
        entry = OutboxEntry.for_record(credit_note, NOW)
        assert entry.submission_key == "note:501"
        assert entry.to_dict()["invoice_id"] == 7

    def test_default_timestamp(self, invoice):
        entry = OutboxEntry.for_record(invoice)
        assert datetime.fromisoformat(entry.enqueued_at).tzinfo is not None

    def test_from_bare_id(self):
        entry = OutboxEntry.from_dict(42)
        assert entry.record_id == 42
        assert entry.kind == "invoice"
