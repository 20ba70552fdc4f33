"""
Per-user dashboard aggregate.

The dashboard (`dashboards/{uid}`) and the user's `currentBalance` are two
projections of one account state. Every change reads both and writes both in
a single Firestore transaction; the user's balance is the input and the
dashboard balance is reconciled to it on each write.

Pure helpers (`apply_delta`, `empty_dashboard`, `cap_history`) hold the
arithmetic so it can be checked without Firestore.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from google.cloud import firestore

from tradejournal.accounts.balance import BalanceStore, as_balance
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore, snapshot_dict
from tradejournal.trades.models import Outcome

logger = logging.getLogger(__name__)

# Period counters; each has a current* field and a prevMonth* snapshot.
COUNTERS = ("TotalTrades", "ActiveDays", "TotalWins", "TotalLosses", "TotalBreakevens", "WinStreak")


def current_field(counter: str) -> str:
    return f"current{counter}"


def prev_month_field(counter: str) -> str:
    return f"prevMonth{counter}"


@dataclass(frozen=True)
class DashboardDelta:
    """
    Sparse change to a dashboard.

    `balance_change` is None when the balance is untouched; 0.0 is a real
    change (it still records a balance snapshot).
    """

    trade_opened: bool = False
    balance_change: Optional[float] = None
    outcome: Optional[Outcome] = None


def cap_history(balances: list[Any], limit: int) -> list[Any]:
    """Keep the `limit` most recent entries, most-recent-last."""
    if limit <= 0:
        return []
    return list(balances[-limit:])


def _count(doc: Mapping[str, Any], key: str) -> int:
    v = doc.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return 0
    return int(v)


def empty_dashboard(balance: float) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "currentBalance": float(balance),
        "prevBalance": float(balance),
        "balances": [float(balance)],
    }
    for c in COUNTERS:
        doc[current_field(c)] = 0
        doc[prev_month_field(c)] = 0
    return doc


def apply_delta(
    dashboard: Optional[Mapping[str, Any]],
    delta: DashboardDelta,
    *,
    balance: float,
    history_limit: int,
) -> Dict[str, Any]:
    """
    Return the dashboard after applying `delta` on top of `balance`.

    - trade_opened: currentTotalTrades += 1, currentActiveDays += 1
    - balance_change: prevBalance = balance, currentBalance = balance + change,
      the new balance is appended to `balances` (capped)
    - WIN: wins += 1, streak += 1; LOSS: losses += 1, streak = 0;
      BREAKEVEN: breakevens += 1, streak untouched
    """
    out: Dict[str, Any] = dict(dashboard) if dashboard is not None else empty_dashboard(balance)
    for c in COUNTERS:
        out[current_field(c)] = _count(out, current_field(c))

    out["currentBalance"] = float(balance)
    balances = list(out.get("balances") or [])

    if delta.trade_opened:
        out["currentTotalTrades"] += 1
        out["currentActiveDays"] += 1

    if delta.balance_change is not None:
        new_balance = float(balance) + float(delta.balance_change)
        out["prevBalance"] = float(balance)
        out["currentBalance"] = new_balance
        balances.append(new_balance)

    out["balances"] = cap_history(balances, history_limit)

    if delta.outcome is Outcome.WIN:
        out["currentTotalWins"] += 1
        out["currentWinStreak"] += 1
    elif delta.outcome is Outcome.LOSS:
        out["currentTotalLosses"] += 1
        out["currentWinStreak"] = 0
    elif delta.outcome is Outcome.BREAKEVEN:
        out["currentTotalBreakevens"] += 1

    return out


@dataclass(frozen=True)
class AccountState:
    uid: str
    user: Dict[str, Any]
    dashboard: Optional[Dict[str, Any]]

    @property
    def balance(self) -> float:
        return as_balance(self.user.get("currentBalance"))


class DashboardAggregator:
    def __init__(self, store: JournalStore, balances: BalanceStore) -> None:
        self._store = store
        self._balances = balances

    @property
    def balances(self) -> BalanceStore:
        return self._balances

    def read_state(self, txn: Any, uid: str, *, deadline: Deadline) -> AccountState:
        user = self._balances.read_user_in(txn, uid, deadline=deadline)
        dashboard = snapshot_dict(self._store.txn_get(txn, self._store.dashboard_ref(uid), deadline=deadline))
        return AccountState(uid=uid, user=user, dashboard=dashboard)

    def stage(self, txn: Any, state: AccountState, delta: DashboardDelta) -> Dict[str, Any]:
        """
        Write `delta` into the transaction. All reads must already be done.
        """
        updated = apply_delta(
            state.dashboard,
            delta,
            balance=state.balance,
            history_limit=self._store.settings.balance_history_limit,
        )
        txn.set(self._store.dashboard_ref(state.uid), {**updated, "updatedAt": firestore.SERVER_TIMESTAMP}, merge=True)
        if delta.balance_change is not None:
            self._balances.write_in(txn, state.uid, updated["currentBalance"])
        return updated

    def apply(self, uid: str, delta: DashboardDelta, *, deadline: Deadline | None = None) -> Dict[str, Any]:
        deadline = deadline or self._store.deadline()

        def _body(txn: Any) -> Dict[str, Any]:
            state = self.read_state(txn, uid, deadline=deadline)
            return self.stage(txn, state, delta)

        updated = self._store.run_transaction(_body, deadline=deadline, op=f"dashboard update {uid}")
        log_event(
            logger,
            "dashboard.updated",
            uid=uid,
            trade_opened=delta.trade_opened,
            balance_change=delta.balance_change,
            outcome=delta.outcome.value if delta.outcome else None,
            current_balance=updated["currentBalance"],
        )
        return updated

    def reset_account(self, uid: str, balance: float, *, deadline: Deadline | None = None) -> Dict[str, Any]:
        """
        Start the account over at `balance`: both balance projections are set,
        the period counters are zeroed and the history restarts at [balance].
        """
        deadline = deadline or self._store.deadline()
        fresh = empty_dashboard(balance)

        def _body(txn: Any) -> None:
            self._balances.read_user_in(txn, uid, deadline=deadline)
            txn.set(self._store.dashboard_ref(uid), {**fresh, "updatedAt": firestore.SERVER_TIMESTAMP})
            self._balances.write_in(txn, uid, balance)

        self._store.run_transaction(_body, deadline=deadline, op=f"account reset {uid}")
        log_event(logger, "dashboard.reset", uid=uid, balance=float(balance))
        return fresh
