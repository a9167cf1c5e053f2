"""Map local invoices and notes to ARCA's submission schema.

Pure functions: no I/O, no clock. Everything missing or malformed surfaces
as ValidationError.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from facturador.models.record import Customer, InvoiceRecord, LineItem, NoteKind, NoteRecord
from facturador.services.exceptions import ValidationError
from facturador.utils.formatters import format_amount, format_wire_date
from facturador.utils.policy import ElectronicInvoicePolicy
from facturador.utils.validators import (
    normalize_document_number,
    parse_decimal,
    validate_date,
    validate_monetary,
)

INVOICE_TYPE_CODES = {"A": 1, "B": 6, "C": 11}

NOTE_TYPE_CODES = {
    NoteKind.CREDIT: {"A": 3, "B": 8, "C": 13},
    NoteKind.DEBIT: {"A": 2, "B": 7, "C": 12},
}

CUIT = 80
FINAL_CONSUMER = 99

RECIPIENT_DOCUMENT_CODES = {
    "CUIT": CUIT,
    "CUIL": 86,
    "DNI": 96,
    "PASAPORTE": 94,
    "PASSPORT": 94,
    "CDI": 87,
    "LE": 89,
    "LC": 90,
}

VAT_RATE_CODES = {
    Decimal("0"): 3,
    Decimal("10.5"): 4,
    Decimal("21"): 5,
    Decimal("27"): 6,
}

CONCEPT_PRODUCTS = 1


@dataclass(frozen=True)
class WireItem:
    description: str
    quantity: str
    unit_price: str
    amount: str
    vat_code: int

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "amount": self.amount,
            "vat_code": self.vat_code,
        }


@dataclass(frozen=True)
class AssociatedDocument:
    type_code: int
    point_of_sale: int | None
    number: int

    def to_dict(self) -> dict:
        return {
            "invoice_type": self.type_code,
            "point_of_sale": self.point_of_sale,
            "number": self.number,
        }


@dataclass(frozen=True)
class WireInvoice:
    type_code: int
    point_of_sale: int | None
    issue_date: str  # YYYYMMDD
    total: str
    net: str
    vat: str
    recipient_doc_type: int
    recipient_doc_number: str
    recipient_name: str
    recipient_email: str | None = None
    currency: str = "PES"
    exchange_rate: str = "1.00"
    concept: int = CONCEPT_PRODUCTS
    items: tuple[WireItem, ...] = ()
    number: int | None = None

    def to_dict(self) -> dict:
        data = {
            "invoice_type": self.type_code,
            "point_of_sale": self.point_of_sale,
            "concept": self.concept,
            "issue_date": self.issue_date,
            "receiver": {
                "document_type": self.recipient_doc_type,
                "document_number": self.recipient_doc_number,
                "name": self.recipient_name,
                "email": self.recipient_email,
            },
            "amounts": {
                "net": self.net,
                "vat": self.vat,
                "total": self.total,
                "currency": self.currency,
                "exchange_rate": self.exchange_rate,
            },
            "items": [i.to_dict() for i in self.items],
        }
        if self.number is not None:
            data["number"] = self.number
        return data


@dataclass(frozen=True)
class WireNote(WireInvoice):
    associated: AssociatedDocument | None = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["related_documents"] = [self.associated.to_dict()] if self.associated else []
        return data


def type_code_for(letter: str, note_kind: NoteKind | None = None) -> int:
    """ARCA voucher code for a document letter, or for a note of that letter."""
    table = NOTE_TYPE_CODES[note_kind] if note_kind else INVOICE_TYPE_CODES
    try:
        return table[(letter or "").strip().upper()]
    except KeyError:
        raise ValidationError(f"Tipo de comprobante desconocido: '{letter}'") from None


def document_type_code(record: InvoiceRecord) -> int:
    note_kind = record.note_kind if isinstance(record, NoteRecord) else None
    return type_code_for(record.document_type, note_kind)


def recipient_document_code(document_type: str) -> int:
    """Recipient document code; anything unmapped is a final consumer."""
    return RECIPIENT_DOCUMENT_CODES.get((document_type or "").strip().upper(), FINAL_CONSUMER)


def _amount(value: object, label: str) -> str:
    try:
        return validate_monetary(value)
    except ValueError as e:
        raise ValidationError(f"{label}: {e}") from None


def _optional_amount(value: object, label: str, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    try:
        d = parse_decimal(value)
    except ValueError as e:
        raise ValidationError(f"{label}: {e}") from None
    if d < 0:
        raise ValidationError(f"{label}: no puede ser negativo")
    return d


def _check_customer(
    letter: str,
    customer: Customer,
    doc_code: int,
    total: str,
    policy: ElectronicInvoicePolicy | None,
) -> str:
    number = normalize_document_number(customer.document_number)
    if letter == "A" and (doc_code != CUIT or not number):
        raise ValidationError("Comprobante A: se requiere CUIT del receptor")
    if doc_code != FINAL_CONSUMER and not number:
        raise ValidationError("Falta el numero de documento del receptor")
    if policy is not None and policy.requires_customer_details(total):
        if doc_code == FINAL_CONSUMER or not number:
            raise ValidationError(
                f"Importe {total}: se requiere identificar al receptor"
            )
    return number or "0"


def _wire_item(item: LineItem) -> WireItem:
    try:
        rate = parse_decimal(item.vat_rate)
        quantity = parse_decimal(item.quantity)
    except ValueError as e:
        raise ValidationError(f"Item '{item.description}': {e}") from None
    if rate not in VAT_RATE_CODES:
        raise ValidationError(f"Item '{item.description}': alicuota de IVA invalida {item.vat_rate}")
    return WireItem(
        description=item.description,
        quantity=str(quantity.normalize()),
        unit_price=format_amount(_optional_amount(item.unit_price, "Precio unitario", Decimal(0))),
        amount=format_amount(_optional_amount(item.amount, "Importe del item", Decimal(0))),
        vat_code=VAT_RATE_CODES[rate],
    )


def _wire_fields(
    record: InvoiceRecord,
    customer: Customer,
    point_of_sale: int | None,
    policy: ElectronicInvoicePolicy | None,
) -> dict:
    type_code = document_type_code(record)
    total = _amount(record.total, "Importe total")
    vat = _optional_amount(record.vat, "IVA", Decimal(0))
    net = _optional_amount(record.subtotal, "Importe neto", Decimal(total) - vat)

    try:
        issue_date = validate_date(record.issue_date)
    except ValueError as e:
        raise ValidationError(str(e)) from None

    doc_code = recipient_document_code(customer.document_type)
    doc_number = _check_customer(
        (record.document_type or "").upper(), customer, doc_code, total, policy
    )
    try:
        exchange_rate = parse_decimal(record.exchange_rate)
    except ValueError as e:
        raise ValidationError(f"Cotizacion: {e}") from None

    return {
        "type_code": type_code,
        "point_of_sale": record.point_of_sale or point_of_sale,
        "issue_date": format_wire_date(issue_date),
        "total": total,
        "net": format_amount(net),
        "vat": format_amount(vat),
        "recipient_doc_type": doc_code,
        "recipient_doc_number": doc_number,
        "recipient_name": customer.name,
        "recipient_email": customer.email,
        "currency": record.currency,
        "exchange_rate": format_amount(exchange_rate),
        "items": tuple(_wire_item(i) for i in record.items),
        "number": record.number,
    }


def to_wire_invoice(
    record: InvoiceRecord,
    point_of_sale: int | None = None,
    policy: ElectronicInvoicePolicy | None = None,
) -> WireInvoice:
    return WireInvoice(**_wire_fields(record, record.customer, point_of_sale, policy))


def to_wire_note(
    note: NoteRecord,
    original: InvoiceRecord,
    point_of_sale: int | None = None,
    policy: ElectronicInvoicePolicy | None = None,
) -> WireNote:
    """Build a credit/debit note referencing *original*.

    The recipient falls back to the original invoice's customer when the
    note does not identify one.
    """
    if original.number is None:
        raise ValidationError(
            f"La factura asociada {original.id} no tiene numero de comprobante"
        )
    if note.customer.document_number:
        customer = note.customer
    else:
        customer = original.customer
    associated = AssociatedDocument(
        type_code=document_type_code(original),
        point_of_sale=original.point_of_sale or point_of_sale,
        number=original.number,
    )
    return WireNote(
        **_wire_fields(note, customer, point_of_sale, policy),
        associated=associated,
    )


def to_wire_format(
    record: InvoiceRecord,
    *,
    point_of_sale: int | None = None,
    original: InvoiceRecord | None = None,
    policy: ElectronicInvoicePolicy | None = None,
) -> WireInvoice | WireNote:
    """Dispatch to the invoice or note mapping."""
    if isinstance(record, NoteRecord):
        if original is None:
            raise ValidationError(f"Nota {record.id}: falta la factura asociada")
        return to_wire_note(record, original, point_of_sale, policy)
    return to_wire_invoice(record, point_of_sale, policy)
