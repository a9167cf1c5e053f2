from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    CONNECTIVITY = "connectivity"
    VALIDATION = "validation"
    SERVICE = "service"

    @property
    def transient(self) -> bool:
        """Connectivity and remote-side failures are retried; everything else is not."""
        return self in (ErrorKind.CONNECTIVITY, ErrorKind.SERVICE)


class InvoicingError(Exception):
    """Base class for every failure the invoicing core knows how to classify."""

    kind: ErrorKind = ErrorKind.SERVICE

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response or {}


class ConfigurationError(InvoicingError):
    """Certificate or credentials missing. Fatal until fixed by the user."""

    kind = ErrorKind.CONFIGURATION


class AuthenticationError(InvoicingError):
    """ARCA rejected the credentials or the bearer token."""

    kind = ErrorKind.AUTHENTICATION


class ConnectivityError(InvoicingError):
    """ARCA could not be reached."""

    kind = ErrorKind.CONNECTIVITY


class ValidationError(InvoicingError):
    """Local or remote rejection of the document content. Never retried."""

    kind = ErrorKind.VALIDATION


class ServiceError(InvoicingError):
    """ARCA answered with a server-side failure (5xx, throttling)."""

    kind = ErrorKind.SERVICE
