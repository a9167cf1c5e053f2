from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives.serialization import pkcs12


def validate_certificate(pfx_path: str, password: str) -> dict:
    """Open a .pfx/.p12 certificate and return its identity and validity.

    Raises ValueError for a wrong password or a bundle without certificate,
    FileNotFoundError when the file does not exist.
    """
    pfx_data = Path(pfx_path).read_bytes()
    private_key, certificate, _ = pkcs12.load_key_and_certificates(
        pfx_data, password.encode()
    )

    if private_key is None or certificate is None:
        raise ValueError("Certificado o clave privada ausente en el archivo .pfx")

    now = datetime.now(UTC)
    return {
        "subject": certificate.subject.rfc4514_string(),
        "issuer": certificate.issuer.rfc4514_string(),
        "not_before": certificate.not_valid_before_utc,
        "not_after": certificate.not_valid_after_utc,
        "valid": certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc,
        "serial": certificate.serial_number,
    }
