from __future__ import annotations

import base64
import json
from dataclasses import replace
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from facturador.services.exceptions import ValidationError
from facturador.services.qr_builder import (
    build_qr_payload,
    build_qr_url,
    decode_qr_url,
    encode_payload,
)

FIELDS = {
    "ver",
    "fecha",
    "cuit",
    "ptoVta",
    "tipoCmp",
    "nroCmp",
    "importe",
    "moneda",
    "ctz",
    "tipoDocRec",
    "nroDocRec",
    "tipoCodAut",
    "codAut",
}


class TestPayload:
    def test_fixed_field_set(self, approved_invoice):
        payload = build_qr_payload(approved_invoice, tax_id="20-12345678-6")
        assert set(payload) == FIELDS

    def test_values_and_types(self, approved_invoice):
        payload = build_qr_payload(approved_invoice, tax_id="20-12345678-6")
        assert payload["ver"] == 1
        assert payload["fecha"] == "2026-10-18"
        assert payload["cuit"] == 20123456786
        assert payload["ptoVta"] == 3
        assert payload["tipoCmp"] == 1
        assert payload["nroCmp"] == 15
        assert payload["importe"] == 1210.0
        assert payload["moneda"] == "PES"
        assert payload["ctz"] == 1.0
        assert payload["tipoDocRec"] == 80
        assert payload["nroDocRec"] == 30712345671
        assert payload["tipoCodAut"] == "E"
        assert payload["codAut"] == 71234567890123

    def test_final_consumer_document_is_zero(self, approved_invoice):
        customer = replace(approved_invoice.customer, document_type="", document_number="")
        record = replace(approved_invoice, document_type="B", customer=customer)
        payload = build_qr_payload(record, tax_id="20123456786")
        assert payload["tipoDocRec"] == 99
        assert payload["nroDocRec"] == 0

    def test_point_of_sale_fallback(self, approved_invoice):
        record = replace(approved_invoice, point_of_sale=None)
        payload = build_qr_payload(record, tax_id="20123456786", point_of_sale=5)
        assert payload["ptoVta"] == 5

    def test_missing_authorization_code(self, approved_invoice):
        with pytest.raises(ValidationError, match="CAE"):
            build_qr_payload(replace(approved_invoice, authorization_code=None), tax_id="20123456786")

    def test_missing_number(self, approved_invoice):
        with pytest.raises(ValidationError, match="numero"):
            build_qr_payload(replace(approved_invoice, number=None), tax_id="20123456786")

    def test_pending_invoice_has_no_qr(self, invoice):
        with pytest.raises(ValidationError):
            build_qr_payload(invoice, tax_id="20123456786", point_of_sale=3)


class TestUrl:
    def test_url_template(self, approved_invoice):
        url = build_qr_url(approved_invoice, tax_id="20123456786")
        assert url.startswith("https://www.afip.gob.ar/fe/qr/?p=")

    def test_parameter_decodes_to_payload(self, approved_invoice):
        url = build_qr_url(approved_invoice, tax_id="20123456786")
        raw = parse_qs(urlparse(url).query)["p"][0]
        decoded = json.loads(base64.b64decode(raw))
        assert decoded == build_qr_payload(approved_invoice, tax_id="20123456786")

    def test_canonical_json(self):
        encoded = encode_payload({"b": 1, "a": "x"})
        assert base64.b64decode(encoded) == b'{"a":"x","b":1}'

    def test_base64_is_quoted(self, approved_invoice):
        url = build_qr_url(approved_invoice, tax_id="20123456786")
        param = url.split("?p=", 1)[1]
        assert "+" not in param and "/" not in param and "=" not in param
        assert base64.b64decode(unquote(param))

    def test_decode_helper(self, approved_invoice):
        url = build_qr_url(approved_invoice, tax_id="20123456786")
        assert decode_qr_url(url)["codAut"] == 71234567890123

    def test_decode_without_parameter(self):
        with pytest.raises(ValidationError):
            decode_qr_url("https://www.afip.gob.ar/fe/qr/")
