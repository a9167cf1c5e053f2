"""HTTP SubmissionClient for ARCA's REST API.

Every request uses mutual TLS with the issuer's .pfx (requests_pkcs12) and,
once authenticated, a bearer token. Transport and HTTP failures are mapped
onto the InvoicingError taxonomy so the core can decide between queueing
and rejecting.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import requests.exceptions
from requests_pkcs12 import get, post

from facturador.config import ENDPOINTS, READ_TIMEOUT, SUBMIT_TIMEOUT
from facturador.models.credentials import CertificateBundle
from facturador.models.record import NoteKind
from facturador.services.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectivityError,
    ServiceError,
    ValidationError,
)
from facturador.services.http_retry import (
    ARCA_AUTH,
    ARCA_READ,
    ARCA_SUBMIT,
    RetryableHTTPError,
    RetryPolicy,
    retry_in_thread,
)
from facturador.services.interfaces import AuthRequest, AuthToken, Authorization
from facturador.services.transformer import NOTE_TYPE_CODES

logger = logging.getLogger(__name__)

# Tokens are considered expired this long before ARCA says so
TOKEN_MARGIN = timedelta(minutes=5)

_CREDIT_NOTE_CODES = frozenset(NOTE_TYPE_CODES[NoteKind.CREDIT].values())

# Common AFIP/ARCA rejection codes
ERROR_MESSAGES = {
    "01": "La CUIT informada no existe en los padrones de AFIP",
    "02": "El comprobante ya fue autorizado anteriormente",
    "03": "La numeracion del comprobante ya existe",
    "04": "El punto de venta no se encuentra autorizado",
    "05": "La fecha del comprobante es anterior a la fecha actual",
    "06": "El formato del CAE devuelto es invalido",
    "07": "No se pudo establecer conexion con AFIP",
    "08": "Error en el certificado digital",
    "09": "Los importes informados no son validos",
    "10": "La CUIT emisora no esta autorizada para emitir este tipo de comprobante",
}

VAT_CONDITIONS = {
    1: "Responsable Inscripto",
    2: "Responsable No Inscripto",
    3: "Exento",
    4: "Monotributista",
    5: "Consumidor Final",
    6: "Sujeto No Categorizado",
    7: "No Alcanzado",
    8: "Importador de Servicios",
    9: "Cliente del Exterior",
    10: "IVA Liberado",
}


def describe_error_code(code: object) -> str | None:
    """Readable message for a known ARCA error code, else None."""
    if code in (None, ""):
        return None
    return ERROR_MESSAGES.get(str(code).zfill(2))


def _describe_error(error: object) -> str:
    if not isinstance(error, dict):
        return str(error)
    known = describe_error_code(error.get("code"))
    if known:
        return f"{known} (codigo {error['code']})"
    return str(error.get("message") or error)


def _format_errors(errors: object) -> str:
    if isinstance(errors, list):
        return "; ".join(_describe_error(e) for e in errors)
    return str(errors)


def _extract_reason(data: dict) -> str:
    """Best-effort extraction of a human-readable rejection reason."""
    known = describe_error_code(data.get("code"))
    if known:
        return f"{known} (codigo {data['code']})"
    for key in ("message", "error_description", "detail"):
        val = data.get(key)
        if val:
            return str(val)
    errors = data.get("errors") or data.get("observations")
    if errors:
        return _format_errors(errors)
    return json.dumps(data, ensure_ascii=False)[:200]


def _body(resp: Any) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {"message": resp.text[:500] if resp.text else ""}
    return data if isinstance(data, dict) else {"data": data}


def _raise_for_status(resp: Any, action: str, policy: RetryPolicy) -> None:
    """Map a non-2xx response onto the error taxonomy.

    Retryable codes raise RetryableHTTPError so retry_call can try again;
    the caller converts it to ServiceError once retries are exhausted.
    """
    if resp.ok:
        return
    status = resp.status_code
    data = _body(resp)
    reason = _extract_reason(data)
    if policy.is_retryable_status(status):
        raise RetryableHTTPError(f"ARCA {action} ({status}): {reason}", status, resp.text or "")
    if status in (401, 403):
        raise AuthenticationError(f"ARCA {action} ({status}): {reason}", response=data)
    if status == 429 or status >= 500:
        raise ServiceError(f"ARCA {action} ({status}): {reason}", response=data)
    raise ValidationError(f"ARCA {action} ({status}): {reason}", response=data)


def _check_error_payload(data: dict) -> None:
    """A 200 can still carry a rejection."""
    errors = data.get("errors")
    if errors:
        raise ValidationError(_format_errors(errors), response=data)
    result = data.get("result")
    if result is not None and str(result).upper() in ("R", "REJECTED"):
        raise ValidationError(f"Comprobante rechazado: {_extract_reason(data)}", response=data)


def _int_field(data: dict, key: str, action: str, default: int | None = None) -> int | None:
    """Read an integer field from an ARCA response; malformed values raise ServiceError."""
    value = data.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ServiceError(
            f"ARCA {action}: valor invalido en '{key}': {value!r}", response=data
        ) from None


def _parse_authorization(data: dict) -> Authorization:
    _check_error_payload(data)
    cae = data.get("cae")
    if not cae or not str(cae).strip():
        raise ValidationError(
            f"Respuesta sin CAE: {_extract_reason(data)}",
            response=data,
        )
    try:
        number = _int_field(data, "number", "authorization")
    except ServiceError as e:
        # The CAE is already granted; keep it and fall back to the local number
        logger.warning("Ignoring document number in approval: %s", e)
        number = None
    return Authorization(
        authorization_code=str(cae),
        authorization_expiry=data.get("cae_expiration"),
        number=number,
    )


class ArcaClient:
    """SubmissionClient over HTTPS.

    The certificate and environment are taken from the last authenticate()
    call, so one instance follows the session through environment changes.
    """

    def __init__(
        self,
        certificate: CertificateBundle | None = None,
        environment: str = "test",
        point_of_sale: int | None = None,
        *,
        sleep_func: Callable[[float], object] | None = None,
    ) -> None:
        self.certificate = certificate
        self.environment = environment
        self.point_of_sale = point_of_sale
        self._sleep_kwargs = {"sleep_func": sleep_func} if sleep_func else {}

    @property
    def api_url(self) -> str:
        return ENDPOINTS[self.environment]["api"]

    @property
    def auth_url(self) -> str:
        return ENDPOINTS[self.environment]["auth"]

    def _pkcs12(self) -> dict:
        cert = self.certificate
        if cert is None or cert.password is None:
            raise ConfigurationError("Certificado o contraseña no configurados")
        return {"pkcs12_filename": cert.pfx_path, "pkcs12_password": cert.password}

    @staticmethod
    def _headers(token: str | None) -> dict:
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _call(self, action: str, policy: RetryPolicy, func: Callable[[], Any]) -> Any:
        """Run *func* with retries and translate transport failures."""
        try:
            return await retry_in_thread(func, policy, **self._sleep_kwargs)
        except RetryableHTTPError as e:
            raise ServiceError(str(e), response={"status": e.status_code}) from e
        except requests.exceptions.Timeout as e:
            raise ConnectivityError(f"ARCA {action}: tiempo de espera agotado") from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectivityError(f"ARCA {action}: sin conexion ({e})") from e

    async def _post(self, action: str, url: str, payload: dict, token: str | None) -> dict:
        tls = self._pkcs12()

        def _do_post():
            resp = post(
                url,
                json=payload,
                headers=self._headers(token),
                timeout=SUBMIT_TIMEOUT,
                **tls,
            )
            _raise_for_status(resp, action, ARCA_SUBMIT)
            return _body(resp)

        return await self._call(action, ARCA_SUBMIT, _do_post)

    async def _get(
        self, action: str, url: str, token: str | None, params: dict | None = None, raw: bool = False
    ) -> Any:
        tls = self._pkcs12()

        def _do_get():
            resp = get(
                url,
                params=params,
                headers=self._headers(token),
                timeout=READ_TIMEOUT,
                **tls,
            )
            _raise_for_status(resp, action, ARCA_READ)
            return resp.content if raw else _body(resp)

        return await self._call(action, ARCA_READ, _do_get)

    # --- SubmissionClient protocol ---

    async def authenticate(self, request: AuthRequest) -> AuthToken:
        self.certificate = request.certificate
        self.environment = request.environment
        payload = {
            "grant_type": "client_credentials",
            "tax_id": request.tax_id,
            "scope": "invoice",
        }
        tls = self._pkcs12()

        def _do_post():
            resp = post(self.auth_url, json=payload, timeout=READ_TIMEOUT, **tls)
            _raise_for_status(resp, "auth", ARCA_AUTH)
            return _body(resp)

        try:
            data = await self._call("auth", ARCA_AUTH, _do_post)
        except ValidationError as e:
            # 4xx on the token endpoint means the credentials were refused
            raise AuthenticationError(str(e), response=e.response) from e

        token = data.get("access_token")
        if not token:
            raise AuthenticationError(f"Respuesta sin token: {_extract_reason(data)}", response=data)
        expires_in = _int_field(data, "expires_in", "auth", default=3600)
        expiry = datetime.now(UTC) + timedelta(seconds=expires_in) - TOKEN_MARGIN
        logger.info("Authenticated with ARCA (%s)", self.environment)
        return AuthToken(token=token, expiry=expiry)

    async def submit_invoice(self, wire: Any, *, token: str | None = None) -> Authorization:
        data = await self._post("invoices", f"{self.api_url}/invoices", wire.to_dict(), token)
        auth = _parse_authorization(data)
        logger.info("Invoice approved: CAE %s number %s", auth.authorization_code, auth.number)
        return auth

    async def submit_note(self, wire: Any, *, token: str | None = None) -> Authorization:
        path = "credit-notes" if wire.type_code in _CREDIT_NOTE_CODES else "debit-notes"
        data = await self._post(path, f"{self.api_url}/{path}", wire.to_dict(), token)
        auth = _parse_authorization(data)
        logger.info("Note approved: CAE %s number %s", auth.authorization_code, auth.number)
        return auth

    async def query_document(self, type_code: int, number: int, *, token: str | None = None) -> dict:
        params = {"point_of_sale": self.point_of_sale, "invoice_type": type_code, "number": number}
        return await self._get("query", f"{self.api_url}/invoices", token, params)

    async def last_number(self, type_code: int, *, token: str | None = None) -> int:
        params = {"point_of_sale": self.point_of_sale, "invoice_type": type_code}
        data = await self._get("last-invoice-number", f"{self.api_url}/last-invoice-number", token, params)
        for key in ("last_number", "number", "data"):
            if key in data:
                return _int_field(data, key, "last-invoice-number", default=0)
        return 0

    async def download_pdf(
        self,
        type_code: int,
        number: int,
        authorization_code: str,
        *,
        token: str | None = None,
    ) -> bytes:
        params = {
            "point_of_sale": self.point_of_sale,
            "invoice_type": type_code,
            "number": number,
            "cae": authorization_code,
        }
        return await self._get("pdf", f"{self.api_url}/invoices/pdf", token, params, raw=True)

    async def verify_tax_id(self, tax_id: str, *, token: str | None = None) -> dict:
        data = await self._get("taxpayers", f"{self.api_url}/taxpayers/{tax_id}", token)
        code = _int_field(data, "vat_condition", "taxpayers")
        return {
            "tax_id": tax_id,
            "legal_name": data.get("legal_name"),
            "address": data.get("address"),
            "vat_condition_code": code,
            "vat_condition": VAT_CONDITIONS.get(code, "Desconocida"),
        }

    async def points_of_sale(self, *, token: str | None = None) -> list[dict]:
        data = await self._get("points-of-sale", f"{self.api_url}/points-of-sale", token)
        points = data.get("points_of_sale", data.get("data", []))
        if not isinstance(points, list):
            raise ServiceError(f"ARCA points-of-sale: respuesta inesperada: {points!r}", response=data)
        return points

    async def service_status(self) -> dict:
        data = await self._get("status", f"{self.api_url}/status", None)
        return {"available": bool(data.get("available", True)), **data}
