from __future__ import annotations

import logging

from facturador.services.interfaces import Authorization, RecordStore

logger = logging.getLogger(__name__)

LEDGER_KEY = "ledger"


def submission_key(kind: str, record_id: object) -> str:
    return f"{kind}:{record_id}"


class SubmissionLedger:
    """Persisted record of every submission ARCA accepted.

    Written right after the remote acceptance, before the record itself is
    updated, so a restart in between applies the stored authorization
    instead of submitting the document again.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store
        self._entries: dict[str, dict] = {}

    async def load(self) -> None:
        self._entries = dict(await self._store.get_config(LEDGER_KEY) or {})

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Authorization | None:
        data = self._entries.get(key)
        if data is None:
            return None
        return Authorization(
            authorization_code=data["authorization_code"],
            authorization_expiry=data.get("authorization_expiry"),
            number=data.get("number"),
        )

    async def record(self, key: str, authorization: Authorization) -> None:
        self._entries[key] = {
            "authorization_code": authorization.authorization_code,
            "authorization_expiry": authorization.authorization_expiry,
            "number": authorization.number,
        }
        await self._store.save_config(LEDGER_KEY, dict(self._entries))
        logger.debug("Ledger: %s accepted with CAE %s", key, authorization.authorization_code)
