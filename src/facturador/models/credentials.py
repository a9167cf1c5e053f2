from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime

ENVIRONMENTS = ("test", "production")


def _parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


@dataclass(frozen=True)
class CertificateBundle:
    """PKCS#12 certificate used for mutual TLS and authentication.

    The password is kept in memory only; ``to_dict`` never includes it.
    """

    pfx_path: str
    password: str | None = None
    valid_until: datetime | None = None

    @classmethod
    def from_pfx(cls, pfx_path: str, password: str) -> CertificateBundle:
        """Inspect the .pfx and record its expiry date."""
        from facturador.utils.certificate import validate_certificate

        info = validate_certificate(pfx_path, password)
        return cls(pfx_path=pfx_path, password=password, valid_until=info["not_after"])

    @classmethod
    def from_dict(cls, d: dict) -> CertificateBundle:
        return cls(
            pfx_path=d["pfx_path"],
            password=d.get("password"),
            valid_until=_parse_timestamp(d.get("valid_until")),
        )

    def to_dict(self) -> dict:
        return {
            "pfx_path": self.pfx_path,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }

    def is_valid(self, now: datetime) -> bool | None:
        """Return None when the expiry date is unknown."""
        if self.valid_until is None:
            return None
        return now < self.valid_until


@dataclass(frozen=True)
class Credentials:
    """Issuer identity registered with ARCA."""

    tax_id: str
    legal_name: str
    point_of_sale: int | None
    certificate: CertificateBundle | None = None
    environment: str = "test"

    @classmethod
    def from_dict(cls, d: dict) -> Credentials:
        """Create Credentials from a YAML- or JSON-loaded dict."""
        cert = d.get("certificate")
        pos = d.get("point_of_sale")
        return cls(
            tax_id=str(d.get("tax_id", "")).replace("-", ""),
            legal_name=d.get("legal_name", ""),
            point_of_sale=int(pos) if pos not in (None, "") else None,
            certificate=CertificateBundle.from_dict(cert) if cert else None,
            environment=d.get("environment", "test"),
        )

    def to_dict(self) -> dict:
        return {
            "tax_id": self.tax_id,
            "legal_name": self.legal_name,
            "point_of_sale": self.point_of_sale,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "environment": self.environment,
        }

    @property
    def complete(self) -> bool:
        return bool(
            self.tax_id and self.legal_name and self.point_of_sale and self.certificate
        )

    def with_environment(self, environment: str) -> Credentials:
        return replace(self, environment=environment)


@dataclass(frozen=True)
class Session:
    token: str
    expiry: datetime
    environment: str

    @classmethod
    def from_dict(cls, d: dict) -> Session:
        expiry = _parse_timestamp(d.get("expiry"))
        if expiry is None:
            raise ValueError("Session without expiry")
        return cls(token=d["token"], expiry=expiry, environment=d.get("environment", "test"))

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "expiry": self.expiry.isoformat(),
            "environment": self.environment,
        }

    def is_valid(self, now: datetime) -> bool:
        return now < self.expiry
