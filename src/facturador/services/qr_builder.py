from __future__ import annotations

import base64
import json
from urllib.parse import parse_qs, quote, urlparse

from facturador.config import QR_URL
from facturador.models.record import InvoiceRecord
from facturador.services.exceptions import ValidationError
from facturador.services.transformer import document_type_code, recipient_document_code
from facturador.utils.validators import (
    normalize_document_number,
    parse_decimal,
    validate_date,
)

QR_VERSION = 1
AUTHORIZATION_TYPE = "E"  # CAE


def build_qr_payload(record: InvoiceRecord, *, tax_id: str, point_of_sale: int | None = None) -> dict:
    """Fields ARCA requires in the QR printed on an approved document.

    Raises ValidationError if the record has no CAE or no document number.
    """
    if not record.authorization_code:
        raise ValidationError(f"Comprobante {record.id} sin CAE")
    if not str(record.authorization_code).isdigit():
        raise ValidationError(f"CAE invalido: '{record.authorization_code}'")
    if record.number is None:
        raise ValidationError(f"Comprobante {record.id} sin numero")
    pos = record.point_of_sale or point_of_sale
    if pos is None:
        raise ValidationError(f"Comprobante {record.id} sin punto de venta")

    try:
        issue_date = validate_date(record.issue_date)
        total = parse_decimal(record.total)
        exchange_rate = parse_decimal(record.exchange_rate)
    except ValueError as e:
        raise ValidationError(str(e)) from None

    doc_number = normalize_document_number(record.customer.document_number)
    return {
        "ver": QR_VERSION,
        "fecha": issue_date.isoformat(),
        "cuit": int(normalize_document_number(tax_id)),
        "ptoVta": int(pos),
        "tipoCmp": document_type_code(record),
        "nroCmp": int(record.number),
        "importe": float(total),
        "moneda": record.currency,
        "ctz": float(exchange_rate),
        "tipoDocRec": recipient_document_code(record.customer.document_type),
        "nroDocRec": int(doc_number) if doc_number.isdigit() else 0,
        "tipoCodAut": AUTHORIZATION_TYPE,
        "codAut": int(record.authorization_code),
    }


def encode_payload(payload: dict) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return base64.b64encode(raw.encode()).decode()


def build_qr_url(record: InvoiceRecord, *, tax_id: str, point_of_sale: int | None = None) -> str:
    """Verification URL to encode in the printed QR."""
    payload = build_qr_payload(record, tax_id=tax_id, point_of_sale=point_of_sale)
    return f"{QR_URL}?p={quote(encode_payload(payload), safe='')}"


def decode_qr_url(url: str) -> dict:
    """Inverse of build_qr_url, for checking printed codes."""
    params = parse_qs(urlparse(url).query)
    if "p" not in params:
        raise ValidationError(f"URL de QR sin parametro 'p': {url}")
    return json.loads(base64.b64decode(params["p"][0]))
