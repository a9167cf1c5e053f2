"""Bearer-token session against ARCA.

``refresh()`` never raises for an expected failure: it records the error and
returns a RefreshResult, and callers check ``is_ready()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from facturador.config import MAX_RECENT_ERRORS
from facturador.models.credentials import ENVIRONMENTS, Credentials, Session
from facturador.services.credential_store import CredentialStore
from facturador.services.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ErrorKind,
    InvoicingError,
)
from facturador.services.interfaces import AuthRequest, SubmissionClient
from facturador.services.results import Failure, RefreshResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"


class AuthenticationSession:
    def __init__(
        self,
        credential_store: CredentialStore,
        submission_client: SubmissionClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
        is_offline: Callable[[], bool] = lambda: False,
        errors: deque[str] | None = None,
    ) -> None:
        self._credential_store = credential_store
        self._client = submission_client
        self._clock = clock
        self._is_offline = is_offline
        self.errors: deque[str] = errors if errors is not None else deque(maxlen=MAX_RECENT_ERRORS)
        self.credentials: Credentials | None = None
        self.session: Session | None = None
        self.last_failure: Failure | None = None
        self.last_sync: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        """Current state; expiry is checked against the clock on every access."""
        if self.session is None:
            return SessionState.UNAUTHENTICATED
        if not self.session.is_valid(self._clock()):
            return SessionState.EXPIRED
        return SessionState.AUTHENTICATED

    @property
    def token(self) -> str | None:
        if self.state is SessionState.AUTHENTICATED:
            return self.session.token
        return None

    def is_ready(self) -> bool:
        """Credentials complete and either a valid session or offline mode."""
        if self.credentials is None or not self.credentials.complete:
            return False
        return self._is_offline() or self.state is SessionState.AUTHENTICATED

    async def load(self) -> RefreshResult:
        """Read credentials and the cached session; refresh if it is unusable."""
        self.credentials = await self._credential_store.load_credentials()
        session = await self._credential_store.load_session()
        if (
            session is not None
            and self.credentials is not None
            and session.environment != self.credentials.environment
        ):
            logger.info("Cached session belongs to %s, ignoring", session.environment)
            session = None
        self.session = session
        if self.state is SessionState.AUTHENTICATED:
            logger.debug("Cached session valid until %s", self.session.expiry)
            return RefreshResult(success=True)
        return await self.refresh()

    def _fail(self, exc: InvoicingError, *, drop_session: bool = True) -> RefreshResult:
        failure = Failure.from_exception(exc)
        if drop_session:
            self.session = None
        self.last_failure = failure
        self.errors.append(str(failure))
        logger.warning("Session refresh failed: %s", failure)
        return RefreshResult(success=False, error=failure)

    async def refresh(self) -> RefreshResult:
        async with self._lock:
            creds = self.credentials
            if creds is None or creds.certificate is None:
                return self._fail(ConfigurationError("Certificado digital no configurado"))
            if not creds.tax_id:
                return self._fail(ConfigurationError("CUIT del emisor no configurado"))
            if self._is_offline():
                return self._fail(
                    ConnectivityError("Sin conexion: no se puede renovar la sesion"),
                    drop_session=False,
                )

            request = AuthRequest(
                tax_id=creds.tax_id,
                certificate=creds.certificate,
                environment=creds.environment,
            )
            try:
                token = await self._client.authenticate(request)
            except InvoicingError as e:
                return self._fail(e)

            self.session = Session(
                token=token.token, expiry=token.expiry, environment=creds.environment
            )
            self.last_failure = None
            self.last_sync = self._clock()
            await self._credential_store.save_session(self.session)
            logger.info("Session refreshed (%s), valid until %s", creds.environment, token.expiry)
            return RefreshResult(success=True)

    async def save_credentials(self, credentials: Credentials) -> None:
        """Persist new credentials; the old session no longer applies."""
        async with self._lock:
            await self._credential_store.save_credentials(credentials)
            self.credentials = credentials
            self.session = None
            await self._credential_store.save_session(None)

    async def change_environment(self, environment: str) -> RefreshResult:
        if environment not in ENVIRONMENTS:
            failure = Failure(ErrorKind.CONFIGURATION, f"Entorno invalido: '{environment}'")
            return RefreshResult(success=False, error=failure)
        if self.credentials is None:
            failure = Failure(ErrorKind.CONFIGURATION, "Credenciales no configuradas")
            return RefreshResult(success=False, error=failure)
        await self.save_credentials(self.credentials.with_environment(environment))
        logger.info("Environment changed to %s", environment)
        return await self.refresh()

    async def invalidate(self) -> None:
        """Drop the session after ARCA rejected its token."""
        async with self._lock:
            self.session = None
            await self._credential_store.save_session(None)
