"""Issuer credentials and the cached ARCA session, persisted in the store.

The certificate password never reaches the store: it is resolved on load
through *password_lookup* (environment, then OS keyring).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from facturador import config as _config
from facturador.models.credentials import Credentials, Session
from facturador.services.interfaces import RecordStore

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "credentials"
SESSION_KEY = "session"


class CredentialStore:
    def __init__(
        self,
        store: RecordStore,
        password_lookup: Callable[[], str] = _config.get_cert_password,
    ) -> None:
        self._store = store
        self._password_lookup = password_lookup

    def _password(self) -> str | None:
        try:
            return self._password_lookup()
        except KeyError:
            return None

    async def load_credentials(self) -> Credentials | None:
        data = await self._store.get_config(CREDENTIALS_KEY)
        if not data:
            return None
        creds = Credentials.from_dict(data)
        cert = creds.certificate
        if cert is not None and cert.password is None:
            creds = replace(creds, certificate=replace(cert, password=self._password()))
        return creds

    async def save_credentials(self, credentials: Credentials) -> None:
        await self._store.save_config(CREDENTIALS_KEY, credentials.to_dict())

    async def load_session(self) -> Session | None:
        data = await self._store.get_config(SESSION_KEY)
        if not data:
            return None
        try:
            return Session.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning("Discarding unreadable session: %s", e)
            return None

    async def save_session(self, session: Session | None) -> None:
        await self._store.save_config(SESSION_KEY, session.to_dict() if session else None)
