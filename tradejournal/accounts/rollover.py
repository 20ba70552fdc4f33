from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from google.cloud import firestore

from tradejournal.accounts.dashboard import COUNTERS, cap_history, current_field, prev_month_field
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, snapshot_dict

logger = logging.getLogger(__name__)


def period_key(now: Optional[datetime] = None) -> str:
    """Calendar month in UTC, e.g. '2026-10'."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def roll_over(
    dashboard: Mapping[str, Any],
    *,
    period: str,
    history_limit: int,
    reset_counters: bool = True,
) -> Dict[str, Any]:
    """
    Close the current period of one dashboard.

    Each current* counter is copied into its prevMonth* field (then zeroed when
    `reset_counters`), prevBalance records the closing balance, and the balance
    history is truncated.
    """
    out: Dict[str, Any] = {}
    for c in COUNTERS:
        value = dashboard.get(current_field(c)) or 0
        out[prev_month_field(c)] = value
        out[current_field(c)] = 0 if reset_counters else value
    # currentBalance is left alone: it must keep matching users/{uid}.currentBalance.
    if "currentBalance" in dashboard:
        out["prevBalance"] = dashboard.get("currentBalance")
    out["balances"] = cap_history(list(dashboard.get("balances") or []), history_limit)
    out["lastRolloverPeriod"] = period
    return out


@dataclass
class RolloverReport:
    period: str
    rolled: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class MonthlyRollover:
    def __init__(self, store: JournalStore) -> None:
        self._store = store

    def run(self, *, now: Optional[datetime] = None, deadline: Deadline | None = None) -> RolloverReport:
        deadline = deadline or self._store.deadline()
        report = RolloverReport(period=period_key(now))
        logger.info("Starting new month %s", report.period)

        dashboards = self._store.all_dashboards(deadline=deadline)
        if not dashboards:
            return report

        workers = max(1, min(self._store.settings.fanout_max_workers, len(dashboards)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = {ex.submit(self.roll_dashboard, snap.id, report.period, deadline=deadline): snap.id for snap in dashboards}
            for fut in as_completed(futures):
                uid = futures[fut]
                try:
                    rolled = fut.result()
                except Exception as e:  # noqa: BLE001 - isolate one dashboard's failure
                    report.failed[uid] = f"{type(e).__name__}: {e}"
                    log_event(
                        logger,
                        "rollover.dashboard_failed",
                        severity="ERROR",
                        exc_info=True,
                        uid=uid,
                        period=report.period,
                    )
                    continue
                (report.rolled if rolled else report.skipped).append(uid)

        log_event(
            logger,
            "rollover.completed",
            severity="WARNING" if report.failed else "INFO",
            period=report.period,
            rolled=len(report.rolled),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    def roll_dashboard(self, uid: str, period: str, *, deadline: Deadline) -> bool:
        """Returns False when the dashboard was already rolled for `period`."""
        ref = self._store.dashboard_ref(uid)
        settings = self._store.settings

        def _body(txn: Any) -> bool:
            doc = snapshot_dict(self._store.txn_get(txn, ref, deadline=deadline))
            if doc is None or doc.get("lastRolloverPeriod") == period:
                return False
            patch = roll_over(
                doc,
                period=period,
                history_limit=settings.balance_history_limit,
                reset_counters=settings.rollover_reset_counters,
            )
            txn.update(ref, {**patch, "updatedAt": firestore.SERVER_TIMESTAMP})
            return True

        return self._store.run_transaction(_body, deadline=deadline, op=f"rollover {uid}")
