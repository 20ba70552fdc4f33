from __future__ import annotations

import threading

import pytest

from tests.fakes import seed_account, seed_master
from tradejournal.common.errors import NotFoundError
from tradejournal.trades.models import child_trade_id


def _fan_out(db, service, *uids, balance=10000.0, master_id="m1"):
    for uid in uids:
        seed_account(db, uid, balance=balance)
    seed_master(db, master_id)
    service.propagator.propagate(master_id)


def _child(db, uid, master_id="m1"):
    return db.doc(f"users/{uid}/trades/{child_trade_id(master_id=master_id, uid=uid)}")


def test_win_credits_reward_to_both_balances(db, service):
    _fan_out(db, service, "u1")

    report = service.updater.update_children("m1", "win")

    assert report.settled == [f"users/u1/trades/{child_trade_id(master_id='m1', uid='u1')}"]
    assert db.doc("users/u1")["currentBalance"] == pytest.approx(10200.0)
    dash = db.doc("dashboards/u1")
    assert dash["currentBalance"] == pytest.approx(10200.0)
    assert dash["prevBalance"] == pytest.approx(10000.0)
    assert dash["balances"] == [10000.0, 10200.0]
    assert dash["currentTotalWins"] == 1
    assert dash["currentWinStreak"] == 1

    child = _child(db, "u1")
    assert child["status"] == "win"
    assert child["settled"] is True
    assert child["settledAmount"] == pytest.approx(200.0)


def test_loss_debits_risk_and_breaks_streak(db, service):
    seed_account(db, "u1", balance=10000.0)
    db.seed("dashboards/u1", {**db.doc("dashboards/u1"), "currentWinStreak": 4})
    seed_master(db, "m1")
    service.propagator.propagate("m1")

    service.updater.update_children("m1", "loss")

    assert db.doc("users/u1")["currentBalance"] == pytest.approx(9900.0)
    dash = db.doc("dashboards/u1")
    assert dash["currentBalance"] == pytest.approx(9900.0)
    assert dash["currentTotalLosses"] == 1
    assert dash["currentWinStreak"] == 0


def test_unrecognized_terminal_status_settles_as_breakeven(db, service):
    _fan_out(db, service, "u1")

    service.updater.update_children("m1", "closed")

    assert db.doc("users/u1")["currentBalance"] == pytest.approx(10000.0)
    dash = db.doc("dashboards/u1")
    assert dash["currentTotalBreakevens"] == 1
    assert dash["balances"] == [10000.0, 10000.0]
    assert _child(db, "u1")["settledAmount"] == 0.0


def test_active_status_does_not_touch_children(db, service):
    _fan_out(db, service, "u1")
    report = service.updater.update_children("m1", "active")
    assert report.settled == [] and report.failed == {}
    assert _child(db, "u1")["settled"] is False


def test_second_terminal_update_is_a_no_op(db, service):
    _fan_out(db, service, "u1")

    service.updater.update_children("m1", "win")
    again = service.updater.update_children("m1", "win")
    flipped = service.updater.update_children("m1", "loss")

    assert again.settled == [] and len(again.skipped) == 1
    assert flipped.settled == [] and len(flipped.skipped) == 1
    assert db.doc("users/u1")["currentBalance"] == pytest.approx(10200.0)
    assert db.doc("dashboards/u1")["currentTotalWins"] == 1
    assert _child(db, "u1")["status"] == "win"


def test_settlement_only_touches_children_of_that_master(db, service):
    _fan_out(db, service, "u1", master_id="m1")
    seed_master(db, "m2")
    service.propagator.propagate("m2")

    service.updater.update_children("m1", "win")

    assert _child(db, "u1", "m1")["settled"] is True
    assert _child(db, "u1", "m2")["settled"] is False


def test_settle_missing_child_raises_not_found(db, service):
    seed_account(db, "u1")
    ref = db.collection("users").document("u1").collection("trades").document("missing")
    with pytest.raises(NotFoundError):
        service.updater.settle_child(ref, "win", deadline=service.store.deadline())


def test_concurrent_settlements_lose_no_updates(db, service):
    # Several masters settle at the same time for the same user; every credit must land.
    masters = [f"m{i}" for i in range(6)]
    seed_account(db, "u1", balance=10000.0)
    for m in masters:
        seed_master(db, m)
        service.propagator.propagate(m)
    db.read_delay_s = 0.002

    errors: list[BaseException] = []

    def settle(master_id: str) -> None:
        try:
            report = service.updater.update_children(master_id, "loss")
            assert report.failed == {}
        except BaseException as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=settle, args=(m,)) for m in masters]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    # Each loss is 1% of the balance at fan-out time (100.0).
    expected = 10000.0 - 100.0 * len(masters)
    assert db.doc("users/u1")["currentBalance"] == pytest.approx(expected)
    dash = db.doc("dashboards/u1")
    assert dash["currentBalance"] == pytest.approx(expected)
    assert dash["currentTotalLosses"] == len(masters)
    assert dash["currentTotalTrades"] == len(masters)
    assert len(dash["balances"]) == 1 + len(masters)
