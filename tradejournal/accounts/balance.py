from __future__ import annotations

import logging
from typing import Any

from tradejournal.common.errors import NotFoundError
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, snapshot_dict

logger = logging.getLogger(__name__)

BALANCE_FIELD = "currentBalance"


def as_balance(v: Any) -> float:
    """
    Coerce a stored balance to float. Missing balances read as 0.
    """
    if v is None:
        return 0.0
    if isinstance(v, bool):
        raise TypeError("balance must be number-like, got bool")
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        s = v.strip()
        return float(s) if s else 0.0
    raise TypeError(f"Expected number-like balance, got {type(v).__name__}")


class BalanceStore:
    """Reads and writes `users/{uid}.currentBalance`."""

    def __init__(self, store: JournalStore) -> None:
        self._store = store

    def read(self, uid: str, *, deadline: Deadline | None = None) -> float:
        deadline = deadline or self._store.deadline()
        user = snapshot_dict(self._store.get(self._store.user_ref(uid), deadline=deadline))
        if user is None:
            raise NotFoundError(f"user {uid} not found")
        return as_balance(user.get(BALANCE_FIELD))

    def read_user_in(self, txn: Any, uid: str, *, deadline: Deadline) -> dict[str, Any]:
        user = snapshot_dict(self._store.txn_get(txn, self._store.user_ref(uid), deadline=deadline))
        if user is None:
            raise NotFoundError(f"user {uid} not found")
        return user

    def write_in(self, txn: Any, uid: str, balance: float) -> None:
        txn.update(self._store.user_ref(uid), {BALANCE_FIELD: float(balance)})
