from __future__ import annotations

import pytest

from tests.fakes import seed_account
from tradejournal.accounts.dashboard import DashboardDelta, apply_delta, cap_history, empty_dashboard
from tradejournal.common.errors import NotFoundError
from tradejournal.trades.models import Outcome


def test_trade_opened_bumps_trade_and_day_counters_only():
    out = apply_delta(empty_dashboard(1000.0), DashboardDelta(trade_opened=True), balance=1000.0, history_limit=100)
    assert out["currentTotalTrades"] == 1
    assert out["currentActiveDays"] == 1
    assert out["currentBalance"] == 1000.0
    assert out["balances"] == [1000.0]


def test_zero_balance_change_is_still_recorded():
    out = apply_delta(
        empty_dashboard(1000.0),
        DashboardDelta(balance_change=0.0, outcome=Outcome.BREAKEVEN),
        balance=1000.0,
        history_limit=100,
    )
    assert out["balances"] == [1000.0, 1000.0]
    assert out["prevBalance"] == 1000.0
    assert out["currentTotalBreakevens"] == 1
    assert out["currentWinStreak"] == 0


def test_win_then_loss_resets_streak():
    dash = empty_dashboard(1000.0)
    dash = apply_delta(dash, DashboardDelta(balance_change=20.0, outcome=Outcome.WIN), balance=1000.0, history_limit=100)
    dash = apply_delta(dash, DashboardDelta(balance_change=20.0, outcome=Outcome.WIN), balance=1020.0, history_limit=100)
    assert dash["currentWinStreak"] == 2
    assert dash["currentTotalWins"] == 2

    dash = apply_delta(dash, DashboardDelta(balance_change=-10.0, outcome=Outcome.LOSS), balance=1040.0, history_limit=100)
    assert dash["currentWinStreak"] == 0
    assert dash["currentTotalLosses"] == 1
    assert dash["prevBalance"] == 1040.0
    assert dash["currentBalance"] == 1030.0
    assert dash["balances"] == [1000.0, 1020.0, 1040.0, 1030.0]


def test_breakeven_leaves_streak_untouched():
    dash = dict(empty_dashboard(1000.0), currentWinStreak=3)
    out = apply_delta(dash, DashboardDelta(balance_change=0.0, outcome=Outcome.BREAKEVEN), balance=1000.0, history_limit=100)
    assert out["currentWinStreak"] == 3


def test_balance_history_is_capped_most_recent_last():
    dash = dict(empty_dashboard(0.0), balances=[float(i) for i in range(100)])
    out = apply_delta(dash, DashboardDelta(balance_change=1.0), balance=99.0, history_limit=100)
    assert len(out["balances"]) == 100
    assert out["balances"][0] == 1.0
    assert out["balances"][-1] == 100.0

    assert cap_history([1, 2, 3], 2) == [2, 3]
    assert cap_history([1, 2, 3], 0) == []


def test_dashboard_balance_is_reconciled_to_user_balance():
    drifted = dict(empty_dashboard(500.0), currentBalance=123.0)
    out = apply_delta(drifted, DashboardDelta(trade_opened=True), balance=500.0, history_limit=100)
    assert out["currentBalance"] == 500.0


def test_missing_dashboard_is_created_from_user_balance():
    out = apply_delta(None, DashboardDelta(trade_opened=True), balance=750.0, history_limit=100)
    assert out["currentBalance"] == 750.0
    assert out["currentTotalTrades"] == 1
    assert out["prevMonthTotalTrades"] == 0


def test_apply_writes_user_and_dashboard_together(db, service):
    seed_account(db, "u1", balance=1000.0)

    service.aggregator.apply("u1", DashboardDelta(balance_change=25.0, outcome=Outcome.WIN))

    assert db.doc("users/u1")["currentBalance"] == 1025.0
    dash = db.doc("dashboards/u1")
    assert dash["currentBalance"] == 1025.0
    assert dash["prevBalance"] == 1000.0
    assert dash["balances"] == [1000.0, 1025.0]
    assert dash["currentTotalWins"] == 1


def test_apply_without_balance_change_leaves_user_untouched(db, service):
    seed_account(db, "u1", balance=1000.0)
    service.aggregator.apply("u1", DashboardDelta(trade_opened=True))
    assert db.doc("users/u1")["currentBalance"] == 1000.0
    assert db.doc("dashboards/u1")["currentTotalTrades"] == 1


def test_apply_for_unknown_user_raises_not_found(service):
    with pytest.raises(NotFoundError):
        service.aggregator.apply("ghost", DashboardDelta(trade_opened=True))


def test_reset_account_restarts_history_and_counters(db, service):
    seed_account(
        db,
        "u1",
        balance=1000.0,
        dashboard=dict(empty_dashboard(1000.0), currentTotalTrades=7, prevMonthTotalWins=2, balances=[900.0, 1000.0]),
    )

    service.aggregator.reset_account("u1", 5000.0)

    dash = db.doc("dashboards/u1")
    assert dash["currentBalance"] == 5000.0
    assert dash["prevBalance"] == 5000.0
    assert dash["balances"] == [5000.0]
    assert dash["currentTotalTrades"] == 0
    assert dash["prevMonthTotalWins"] == 0
    assert db.doc("users/u1")["currentBalance"] == 5000.0
