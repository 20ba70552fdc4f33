"""
Firestore access shared by every component.

Layout:
  users/{uid}
  users/{uid}/trades/{childId}
  master_trades/{masterId}
  dashboards/{uid}

`JournalStore` wraps an injected Firestore client; each call gets a bounded
retry budget and a timeout derived from the caller's Deadline.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from google.api_core import exceptions as gexc
from google.cloud.firestore_v1 import transactional

from tradejournal.common.config import JournalSettings
from tradejournal.common.errors import ConcurrencyConflictError
from tradejournal.persistence.firestore_retry import Deadline, retry_with_settings

T = TypeVar("T")
logger = logging.getLogger(__name__)

USERS = "users"
TRADES = "trades"
MASTER_TRADES = "master_trades"
DASHBOARDS = "dashboards"

# Firestore caps a batch at 500 writes.
MAX_BATCH_WRITES = 500


class JournalStore:
    def __init__(self, db: Any, settings: JournalSettings) -> None:
        self._db = db
        self._settings = settings

    @property
    def settings(self) -> JournalSettings:
        return self._settings

    def deadline(self) -> Deadline:
        return Deadline.after(self._settings.handler_deadline_s)

    def _timeout(self, deadline: Deadline) -> float:
        return deadline.timeout(self._settings.store_call_timeout_s)

    # --- references ---

    def user_ref(self, uid: str):
        return self._db.collection(USERS).document(uid)

    def user_trades(self, uid: str):
        return self.user_ref(uid).collection(TRADES)

    def dashboard_ref(self, uid: str):
        return self._db.collection(DASHBOARDS).document(uid)

    def master_trade_ref(self, master_id: str | None = None):
        col = self._db.collection(MASTER_TRADES)
        return col.document(master_id) if master_id else col.document()

    # --- retried primitives ---

    def get(self, ref: Any, *, deadline: Deadline) -> Any:
        return retry_with_settings(
            lambda: ref.get(timeout=self._timeout(deadline)), self._settings, deadline=deadline, op=f"get {ref.path}"
        )

    def set(self, ref: Any, data: dict[str, Any], *, deadline: Deadline, merge: bool = False) -> None:
        retry_with_settings(
            lambda: ref.set(data, merge=merge, timeout=self._timeout(deadline)),
            self._settings,
            deadline=deadline,
            op=f"set {ref.path}",
        )

    def update(self, ref: Any, data: dict[str, Any], *, deadline: Deadline) -> None:
        retry_with_settings(
            lambda: ref.update(data, timeout=self._timeout(deadline)),
            self._settings,
            deadline=deadline,
            op=f"update {ref.path}",
        )

    def create(self, ref: Any, data: dict[str, Any], *, deadline: Deadline) -> None:
        retry_with_settings(
            lambda: ref.create(data, timeout=self._timeout(deadline)),
            self._settings,
            deadline=deadline,
            op=f"create {ref.path}",
        )

    def stream(self, query: Any, *, deadline: Deadline, op: str = "query") -> list[Any]:
        # Materialize inside the retry so a mid-stream failure restarts the whole read.
        return retry_with_settings(
            lambda: list(query.stream(timeout=self._timeout(deadline))), self._settings, deadline=deadline, op=op
        )

    def users_with_subscription(self, statuses: Iterable[str], *, deadline: Deadline) -> list[Any]:
        query = self._db.collection(USERS).where("subscriptionStatus", "in", list(statuses))
        return self.stream(query, deadline=deadline, op="query users by subscriptionStatus")

    def child_trades_of(self, master_id: str, *, deadline: Deadline) -> list[Any]:
        query = self._db.collection_group(TRADES).where("parentId", "==", master_id)
        return self.stream(query, deadline=deadline, op=f"query trades parentId={master_id}")

    def all_dashboards(self, *, deadline: Deadline) -> list[Any]:
        return self.stream(self._db.collection(DASHBOARDS), deadline=deadline, op="query dashboards")

    def delete_all(self, refs: Iterable[Any], *, deadline: Deadline) -> int:
        """Delete documents in batched commits; returns the number deleted."""
        deleted = 0
        pending: list[Any] = []

        def commit(chunk: list[Any]) -> None:
            def _commit() -> None:
                batch = self._db.batch()
                for r in chunk:
                    batch.delete(r)
                batch.commit(timeout=self._timeout(deadline))

            retry_with_settings(_commit, self._settings, deadline=deadline, op="batch delete")

        for ref in refs:
            pending.append(ref)
            if len(pending) >= MAX_BATCH_WRITES:
                commit(pending)
                deleted += len(pending)
                pending = []
        if pending:
            commit(pending)
            deleted += len(pending)
        return deleted

    # --- transactions ---

    def txn_get(self, txn: Any, ref: Any, *, deadline: Deadline) -> Any:
        return ref.get(transaction=txn, timeout=self._timeout(deadline))

    def run_transaction(self, body: Callable[[Any], T], *, deadline: Deadline, op: str) -> T:
        """
        Run `body(transaction)` as a Firestore transaction.

        The body must do all reads before its writes and may be re-run on
        contention, so it must not have side effects outside the transaction.
        """

        def _attempt() -> T:
            txn = self._db.transaction(max_attempts=self._settings.transaction_max_attempts)
            try:
                return transactional(body)(txn)
            except ValueError as e:
                # The SDK reports exhausted commit attempts as ValueError chained to Aborted.
                if isinstance(e.__cause__, gexc.Aborted):
                    raise ConcurrencyConflictError(f"{op}: {e}") from e
                raise

        return retry_with_settings(_attempt, self._settings, deadline=deadline, op=op)


def snapshot_dict(snap: Any) -> Optional[dict[str, Any]]:
    if snap is None or not getattr(snap, "exists", False):
        return None
    return snap.to_dict() or {}


def owner_uid(ref: Any) -> str:
    """users/{uid}/trades/{childId} -> uid"""
    return ref.parent.parent.id


def iter_refs(snaps: Iterable[Any]) -> Iterator[Any]:
    for snap in snaps:
        yield snap.reference
