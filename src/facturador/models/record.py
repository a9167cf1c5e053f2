from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RecordStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    ERROR = "ERROR"


class NoteKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


@dataclass(frozen=True)
class Customer:
    """Document recipient (receptor). An empty document means final consumer."""

    name: str = "Consumidor Final"
    document_type: str = ""
    document_number: str = ""
    email: str | None = None

    @classmethod
    def from_dict(cls, d: dict | None) -> Customer:
        d = d or {}
        return cls(
            name=d.get("name") or "Consumidor Final",
            document_type=str(d.get("document_type") or ""),
            document_number=str(d.get("document_number") or ""),
            email=d.get("email"),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "email": self.email,
        }


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: str
    unit_price: str
    amount: str
    vat_rate: str = "21"

    @classmethod
    def from_dict(cls, d: dict) -> LineItem:
        return cls(
            description=d["description"],
            quantity=str(d.get("quantity", "1")),
            unit_price=str(d["unit_price"]),
            amount=str(d["amount"]),
            vat_rate=str(d.get("vat_rate", "21")),
        )

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "amount": self.amount,
            "vat_rate": self.vat_rate,
        }


@dataclass(frozen=True)
class InvoiceRecord:
    """Invoice issued locally at sale time.

    Monetary values are kept as strings, as entered; formatting for the wire
    happens in the transformer.
    """

    id: Any
    document_type: str  # A, B or C
    customer: Customer = field(default_factory=Customer)
    items: tuple[LineItem, ...] = ()
    total: str | None = None
    subtotal: str | None = None
    vat: str | None = None
    issue_date: str | None = None  # YYYY-MM-DD
    number: int | None = None
    point_of_sale: int | None = None
    currency: str = "PES"
    exchange_rate: str = "1"
    status: RecordStatus = RecordStatus.PENDING
    authorization_code: str | None = None
    authorization_expiry: str | None = None
    error: str | None = None

    kind = "invoice"

    @classmethod
    def _common_fields(cls, d: dict) -> dict:
        number = d.get("number")
        pos = d.get("point_of_sale")
        return {
            "id": d["id"],
            "document_type": str(d.get("document_type", "")).upper(),
            "customer": Customer.from_dict(d.get("customer")),
            "items": tuple(LineItem.from_dict(i) for i in d.get("items") or []),
            "total": None if d.get("total") is None else str(d["total"]),
            "subtotal": None if d.get("subtotal") is None else str(d["subtotal"]),
            "vat": None if d.get("vat") is None else str(d["vat"]),
            "issue_date": d.get("issue_date"),
            "number": int(number) if number not in (None, "") else None,
            "point_of_sale": int(pos) if pos not in (None, "") else None,
            "currency": d.get("currency", "PES"),
            "exchange_rate": str(d.get("exchange_rate", "1")),
            "status": RecordStatus(d.get("status", RecordStatus.PENDING.value)),
            "authorization_code": d.get("authorization_code"),
            "authorization_expiry": d.get("authorization_expiry"),
            "error": d.get("error"),
        }

    @classmethod
    def from_dict(cls, d: dict) -> InvoiceRecord:
        return cls(**cls._common_fields(d))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "customer": self.customer.to_dict(),
            "items": [i.to_dict() for i in self.items],
            "total": self.total,
            "subtotal": self.subtotal,
            "vat": self.vat,
            "issue_date": self.issue_date,
            "number": self.number,
            "point_of_sale": self.point_of_sale,
            "currency": self.currency,
            "exchange_rate": self.exchange_rate,
            "status": self.status.value,
            "authorization_code": self.authorization_code,
            "authorization_expiry": self.authorization_expiry,
            "error": self.error,
        }


@dataclass(frozen=True)
class NoteRecord(InvoiceRecord):
    """Credit or debit note referencing a previously issued invoice."""

    note_kind: NoteKind = NoteKind.CREDIT
    invoice_id: Any = None

    kind = "note"

    @classmethod
    def from_dict(cls, d: dict) -> NoteRecord:
        return cls(
            **cls._common_fields(d),
            note_kind=NoteKind(d.get("note_kind", NoteKind.CREDIT.value)),
            invoice_id=d.get("invoice_id"),
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["note_kind"] = self.note_kind.value
        data["invoice_id"] = self.invoice_id
        return data


def record_from_dict(d: dict, kind: str | None = None) -> InvoiceRecord:
    """Build an InvoiceRecord or NoteRecord from a stored dict.

    *kind* comes from the store key when known; otherwise the presence of
    ``note_kind`` decides.
    """
    if kind == NoteRecord.kind or (kind is None and d.get("note_kind")):
        return NoteRecord.from_dict(d)
    return InvoiceRecord.from_dict(d)
