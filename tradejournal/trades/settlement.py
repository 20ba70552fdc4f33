from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from google.cloud import firestore

from tradejournal.accounts.dashboard import DashboardAggregator, DashboardDelta
from tradejournal.common.errors import NotFoundError
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, owner_uid, snapshot_dict
from tradejournal.trades.models import normalize_status, settlement_for

logger = logging.getLogger(__name__)


@dataclass
class SettlementReport:
    master_id: str
    status: str
    settled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "masterId": self.master_id,
            "status": self.status,
            "settled": len(self.settled),
            "skipped": len(self.skipped),
            "failed": dict(self.failed),
        }


class TradeUpdater:
    """
    Cascades a master trade status change to its child trades.

    A child settles at most once: the first terminal status books the balance
    change, later updates (same or different status) are no-ops.
    """

    def __init__(self, store: JournalStore, aggregator: DashboardAggregator) -> None:
        self._store = store
        self._aggregator = aggregator

    def update_children(self, master_id: str, status: Any, *, deadline: Deadline | None = None) -> SettlementReport:
        deadline = deadline or self._store.deadline()
        report = SettlementReport(master_id=master_id, status=str(status or ""))

        outcome, _ = settlement_for(status, risk=0.0, reward=0.0)
        if outcome is None:
            log_event(logger, "settlement.not_terminal", master_id=master_id, status=report.status)
            return report

        children = self._store.child_trades_of(master_id, deadline=deadline)
        log_event(logger, "settlement.started", master_id=master_id, status=report.status, children=len(children))
        if not children:
            return report

        workers = max(1, min(self._store.settings.fanout_max_workers, len(children)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {ex.submit(self.settle_child, snap.reference, status, deadline=deadline): snap.reference for snap in children}
            for fut in as_completed(futures):
                ref = futures[fut]
                key = ref.path
                try:
                    settled = fut.result()
                except Exception as e:  # noqa: BLE001 - isolate one child's failure
                    report.failed[key] = f"{type(e).__name__}: {e}"
                    log_event(
                        logger,
                        "settlement.child_failed",
                        severity="ERROR",
                        message=f"Failed to update child trade {ref.id} for master {master_id}",
                        exc_info=True,
                        master_id=master_id,
                        child_path=key,
                    )
                    continue
                (report.settled if settled else report.skipped).append(key)

        log_event(
            logger,
            "settlement.completed",
            severity="WARNING" if report.failed else "INFO",
            master_id=master_id,
            status=report.status,
            settled=len(report.settled),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    def settle_child(self, child_ref: Any, status: Any, *, deadline: Deadline) -> bool:
        """
        Apply `status` to one child trade and book its outcome. Returns False
        when nothing changed (already settled, or status is not terminal).
        """
        uid = owner_uid(child_ref)
        status_s = str(status or "")

        def _body(txn: Any) -> Optional[float]:
            child = snapshot_dict(self._store.txn_get(txn, child_ref, deadline=deadline))
            if child is None:
                raise NotFoundError(f"child trade {child_ref.path} not found")
            if child.get("settled"):
                previous = normalize_status(child.get("settledStatus"))
                if previous != normalize_status(status_s):
                    log_event(
                        logger,
                        "settlement.already_settled",
                        severity="WARNING",
                        child_path=child_ref.path,
                        settled_status=previous,
                        ignored_status=status_s,
                    )
                return None

            outcome, amount = settlement_for(
                status_s, risk=float(child.get("risk") or 0.0), reward=float(child.get("reward") or 0.0)
            )
            if outcome is None:
                return None

            state = self._aggregator.read_state(txn, uid, deadline=deadline)
            self._aggregator.stage(txn, state, DashboardDelta(balance_change=amount, outcome=outcome))
            txn.update(
                child_ref,
                {
                    "status": status_s,
                    "settled": True,
                    "settledStatus": status_s,
                    "settledAmount": amount,
                    "settledAt": firestore.SERVER_TIMESTAMP,
                },
            )
            return amount

        amount = self._store.run_transaction(_body, deadline=deadline, op=f"settle {child_ref.path}")
        if amount is None:
            return False
        log_event(logger, "settlement.child_settled", child_path=child_ref.path, uid=uid, status=status_s, amount=amount)
        return True
