from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from google.api_core import exceptions as gexc
from google.cloud import firestore

from tradejournal.accounts.balance import BalanceStore
from tradejournal.accounts.dashboard import DashboardAggregator
from tradejournal.accounts.lifecycle import AccountLifecycle
from tradejournal.accounts.rollover import MonthlyRollover, RolloverReport
from tradejournal.common.config import JournalSettings, load_settings
from tradejournal.common.errors import NotFoundError
from tradejournal.common.logging import log_event
from tradejournal.persistence.firestore_retry import Deadline
from tradejournal.persistence.store import JournalStore
from tradejournal.trades.models import (
    CreateMasterTradeRequest,
    ResetDashboardRequest,
    TradeStatus,
    master_trade_id,
    normalize_status,
)
from tradejournal.trades.propagator import FanoutReport, TradePropagator
from tradejournal.trades.settlement import SettlementReport, TradeUpdater

logger = logging.getLogger(__name__)


class JournalService:
    """
    Wires the components around one injected Firestore client and exposes one
    method per trigger.
    """

    def __init__(self, db: Any, settings: Optional[JournalSettings] = None) -> None:
        self.settings = settings or load_settings()
        self.store = JournalStore(db, self.settings)
        self.balances = BalanceStore(self.store)
        self.aggregator = DashboardAggregator(self.store, self.balances)
        self.propagator = TradePropagator(self.store, self.aggregator)
        self.updater = TradeUpdater(self.store, self.aggregator)
        self.rollover = MonthlyRollover(self.store)
        self.accounts = AccountLifecycle(self.store, self.aggregator)

    # --- callables ---

    def create_master_trade(self, data: Any) -> Dict[str, Any]:
        """
        Create a master trade and fan it out.

        With a `requestId` the master id is derived from it and written with
        create(), so a retried call lands on the same master and fan-out picks
        up the users the failed attempt missed.
        """
        req = CreateMasterTradeRequest.parse(data)
        deadline = self.store.deadline()
        if req.request_id:
            ref = self.store.master_trade_ref(master_trade_id(request_id=req.request_id))
        else:
            ref = self.store.master_trade_ref()
        rr = req.rr
        doc = {
            "rr": rr,
            "type": req.type,
            "sl": req.sl,
            "tp": req.tp,
            "price": req.price,
            "status": TradeStatus.ACTIVE.value,
            "timestamp": firestore.SERVER_TIMESTAMP,
        }
        log_event(logger, "master_trade.creating", master_id=ref.id, type=req.type, rr=rr)
        try:
            self.store.create(ref, doc, deadline=deadline)
        except gexc.AlreadyExists:
            master = self.propagator.load_master(ref.id, deadline=deadline)
            log_event(logger, "master_trade.resumed", severity="WARNING", master_id=ref.id, status=master.status)
            rr = master.rr
            if normalize_status(master.status) != TradeStatus.ACTIVE.value:
                # Already settled; new children would miss the settlement.
                return {"id": ref.id, "rr": rr, **FanoutReport(master_id=ref.id).to_dict()}
        report = self.propagator.propagate(ref.id, deadline=deadline)
        return {"id": ref.id, "rr": rr, **report.to_dict()}

    def reset_dashboard(self, data: Any) -> Dict[str, Any]:
        req = ResetDashboardRequest.parse(data)
        cleared = self.accounts.reset_balance(req.user_id, req.new_balance)
        return {"userId": req.user_id, "currentBalance": req.new_balance, "tradesCleared": cleared}

    # --- background triggers ---

    def handle_user_created(self, uid: str, email: Optional[str]) -> bool:
        # Runs inside a blocking auth trigger, so it gets the short signup budget.
        deadline = Deadline.after(self.settings.signup_deadline_s)
        return self.accounts.on_user_created(uid, email, deadline=deadline)

    def handle_user_deleted(self, uid: str) -> None:
        self.accounts.on_user_deleted(uid)

    def delete_account(self, uid: str, *, delete_auth_user: Callable[[str], None]) -> None:
        """
        Soft-delete the journal account, then remove the auth record.

        The account is flagged first so a failure in either step leaves the
        caller signed in and able to retry; repeating the soft delete is harmless.
        """
        try:
            self.accounts.on_user_deleted(uid)
        except NotFoundError:
            log_event(logger, "account.delete_without_profile", severity="WARNING", uid=uid)
        delete_auth_user(uid)

    def handle_master_trade_updated(
        self,
        master_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
    ) -> Optional[SettlementReport]:
        """Cascade to child trades only when the status changed."""
        if after is None:
            return None
        old_status = normalize_status((before or {}).get("status"))
        new_status = after.get("status")
        if normalize_status(new_status) == old_status:
            logger.debug("master trade %s updated without status change", master_id)
            return None
        log_event(logger, "master_trade.status_changed", master_id=master_id, old=old_status, new=str(new_status))
        return self.updater.update_children(master_id, new_status)

    def run_monthly_rollover(self, *, now: Optional[datetime] = None) -> RolloverReport:
        return self.rollover.run(now=now)
