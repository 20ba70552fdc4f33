from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List

from google.cloud import firestore

from tradejournal.accounts.dashboard import DashboardAggregator, DashboardDelta
from tradejournal.common.errors import NotFoundError
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, snapshot_dict
from tradejournal.trades.models import ELIGIBLE_SUBSCRIPTIONS, ChildTrade, MasterTrade, child_trade_id

logger = logging.getLogger(__name__)


@dataclass
class FanoutReport:
    master_id: str
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "masterId": self.master_id,
            "created": len(self.created),
            "skipped": len(self.skipped),
            "failed": dict(self.failed),
        }


class TradePropagator:
    """
    Fans a master trade out into one child trade per subscribed user.

    Each user is an independent unit: its child create and the dashboard
    trade count commit in one transaction, and a failure for one user is
    reported without stopping the others.
    """

    def __init__(self, store: JournalStore, aggregator: DashboardAggregator) -> None:
        self._store = store
        self._aggregator = aggregator

    def load_master(self, master_id: str, *, deadline: Deadline) -> MasterTrade:
        doc = snapshot_dict(self._store.get(self._store.master_trade_ref(master_id), deadline=deadline))
        if doc is None:
            raise NotFoundError(f"master trade {master_id} not found")
        return MasterTrade.from_firestore(master_id, doc)

    def propagate(self, master_id: str, *, deadline: Deadline | None = None) -> FanoutReport:
        deadline = deadline or self._store.deadline()
        master = self.load_master(master_id, deadline=deadline)
        users = self._store.users_with_subscription(ELIGIBLE_SUBSCRIPTIONS, deadline=deadline)
        log_event(logger, "fanout.started", master_id=master_id, users=len(users), rr=master.rr)

        report = FanoutReport(master_id=master_id)
        if not users:
            return report

        workers = max(1, min(self._store.settings.fanout_max_workers, len(users)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {ex.submit(self.propagate_to_user, master, snap.id, deadline=deadline): snap.id for snap in users}
            for fut in as_completed(futures):
                uid = futures[fut]
                try:
                    created = fut.result()
                except Exception as e:  # noqa: BLE001 - isolate one user's failure
                    report.failed[uid] = f"{type(e).__name__}: {e}"
                    log_event(
                        logger,
                        "fanout.user_failed",
                        severity="ERROR",
                        message=f"Failed to create child trade for master {master_id} for user {uid}",
                        exc_info=True,
                        master_id=master_id,
                        uid=uid,
                    )
                    continue
                (report.created if created else report.skipped).append(uid)

        log_event(
            logger,
            "fanout.completed",
            severity="WARNING" if report.failed else "INFO",
            master_id=master_id,
            created_count=len(report.created),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    def propagate_to_user(self, master: MasterTrade, uid: str, *, deadline: Deadline) -> bool:
        """
        Create the child trade for (master, uid). Returns False when it already existed.
        """
        child_ref = self._store.user_trades(uid).document(child_trade_id(master_id=master.id, uid=uid))
        risk_fraction = self._store.settings.risk_fraction

        def _body(txn: Any) -> bool:
            if getattr(self._store.txn_get(txn, child_ref, deadline=deadline), "exists", False):
                return False
            state = self._aggregator.read_state(txn, uid, deadline=deadline)
            child = ChildTrade.sized_for(master, balance=state.balance, risk_fraction=risk_fraction)
            self._aggregator.stage(txn, state, DashboardDelta(trade_opened=True))
            txn.create(child_ref, {**child.to_dict(), "timestamp": firestore.SERVER_TIMESTAMP})
            return True

        created = self._store.run_transaction(_body, deadline=deadline, op=f"fanout {master.id} -> {uid}")
        if created:
            logger.debug("Created child for master %s for user %s", master.id, uid)
        return created
