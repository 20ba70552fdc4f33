from __future__ import annotations

import logging
from typing import Optional

from google.api_core import exceptions as gexc
from google.cloud import firestore

from tradejournal.accounts.dashboard import DashboardAggregator
from tradejournal.common.errors import InvalidInputError, NotFoundError
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, iter_refs
from tradejournal.trades.models import AccountStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


class AccountLifecycle:
    """
    Signup, soft delete and admin balance resets.
    """

    def __init__(self, store: JournalStore, aggregator: DashboardAggregator) -> None:
        self._store = store
        self._aggregator = aggregator

    def on_user_created(self, uid: str, email: Optional[str], *, deadline: Deadline | None = None) -> bool:
        """
        Provision a new account. Returns False when the user document already
        existed (redelivered event); an existing account is never reset.
        """
        deadline = deadline or self._store.deadline()
        uid = str(uid or "").strip()
        if not uid:
            raise InvalidInputError("uid is required")

        try:
            self._store.create(
                self._store.user_ref(uid),
                {
                    "uid": uid,
                    "email": email,
                    "joined": firestore.SERVER_TIMESTAMP,
                    "subscriptionStatus": SubscriptionStatus.TRIAL.value,
                    "accountStatus": AccountStatus.ACTIVE.value,
                },
                deadline=deadline,
            )
        except gexc.AlreadyExists:
            # A previous delivery may have died between the user doc and the balance reset.
            dashboard = self._store.get(self._store.dashboard_ref(uid), deadline=deadline)
            if getattr(dashboard, "exists", False):
                log_event(logger, "account.create_duplicate", severity="WARNING", uid=uid)
                return False

        self.reset_balance(uid, self._store.settings.starting_balance, deadline=deadline)
        log_event(logger, "account.created", uid=uid)
        return True

    def on_user_deleted(self, uid: str, *, deadline: Deadline | None = None) -> None:
        """Soft delete: the account is flagged, nothing is purged."""
        deadline = deadline or self._store.deadline()
        try:
            self._store.update(
                self._store.user_ref(uid),
                {
                    "accountStatus": AccountStatus.DELETED.value,
                    "subscriptionStatus": SubscriptionStatus.CANCELED.value,
                },
                deadline=deadline,
            )
        except gexc.NotFound as e:
            raise NotFoundError(f"user {uid} not found") from e
        log_event(logger, "account.deleted", uid=uid)

    def reset_balance(self, uid: str, new_balance: float, *, deadline: Deadline | None = None) -> int:
        """
        Reset dashboard and user balance to `new_balance`, then clear the
        user's trades. Returns the number of trades removed.
        """
        deadline = deadline or self._store.deadline()
        self._aggregator.reset_account(uid, new_balance, deadline=deadline)
        return self.clear_trades(uid, deadline=deadline)

    def clear_trades(self, uid: str, *, deadline: Deadline | None = None) -> int:
        deadline = deadline or self._store.deadline()
        trades = self._store.stream(self._store.user_trades(uid), deadline=deadline, op=f"list trades {uid}")
        deleted = self._store.delete_all(iter_refs(trades), deadline=deadline)
        if deleted:
            log_event(logger, "account.trades_cleared", uid=uid, deleted=deleted)
        return deleted
