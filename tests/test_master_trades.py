from __future__ import annotations

import math

import pytest

from tradejournal.common.errors import InvalidInputError
from tradejournal.trades.models import (
    ChildTrade,
    CreateMasterTradeRequest,
    MasterTrade,
    Outcome,
    ResetDashboardRequest,
    child_trade_id,
    compute_rr,
    settlement_for,
)


def test_buy_rr_is_reward_over_risk():
    assert compute_rr("Buy", price=100, tp=110, sl=95) == pytest.approx(2.0)


def test_sell_rr_mirrors_buy():
    assert compute_rr("Sell", price=100, tp=90, sl=105) == pytest.approx(2.0)


def test_rr_rejects_zero_risk_distance():
    with pytest.raises(InvalidInputError):
        compute_rr("Buy", price=100, tp=110, sl=100)


def test_child_trade_id_is_stable_per_master_and_user():
    a = child_trade_id(master_id="m1", uid="u1")
    assert a == child_trade_id(master_id="m1", uid="u1")
    assert a != child_trade_id(master_id="m1", uid="u2")
    assert a != child_trade_id(master_id="m2", uid="u1")
    assert len(a) == 40


@pytest.mark.parametrize(
    "status,expected",
    [
        ("win", (Outcome.WIN, 200.0)),
        ("WIN", (Outcome.WIN, 200.0)),
        ("loss", (Outcome.LOSS, -100.0)),
        ("breakeven", (Outcome.BREAKEVEN, 0.0)),
        ("closed", (Outcome.BREAKEVEN, 0.0)),
        ("active", (None, 0.0)),
        (None, (None, 0.0)),
    ],
)
def test_settlement_for_maps_status_to_outcome(status, expected):
    assert settlement_for(status, risk=100.0, reward=200.0) == expected


def test_child_trade_is_sized_from_balance():
    master = MasterTrade.from_firestore(
        "m1", {"type": "Buy", "price": 100.0, "tp": 110.0, "sl": 95.0, "rr": 2.0, "status": "active"}
    )
    child = ChildTrade.sized_for(master, balance=10000.0, risk_fraction=0.01)
    assert child.risk == pytest.approx(100.0)
    assert child.reward == pytest.approx(200.0)

    doc = child.to_dict()
    assert doc["parentId"] == "m1"
    assert doc["settled"] is False
    assert {k: doc[k] for k in ("type", "price", "tp", "sl", "rr", "status")} == {
        "type": "Buy",
        "price": 100.0,
        "tp": 110.0,
        "sl": 95.0,
        "rr": 2.0,
        "status": "active",
    }


def test_master_without_finite_rr_sizes_zero_reward():
    master = MasterTrade.from_firestore("m1", {"type": "Buy", "rr": math.nan})
    assert master.rr is None
    child = ChildTrade.sized_for(master, balance=5000.0, risk_fraction=0.01)
    assert child.risk == pytest.approx(50.0)
    assert child.reward == 0.0


def test_create_request_accepts_valid_buy():
    req = CreateMasterTradeRequest.parse({"price": 100, "tp": 110, "sl": 95, "type": "Buy", "note": "ignored"})
    assert req.rr == pytest.approx(2.0)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"price": 100, "tp": 110, "type": "Buy"},
        {"price": "abc", "tp": 110, "sl": 95, "type": "Buy"},
        {"price": 100, "tp": 110, "sl": 95, "type": "Hold"},
        {"price": float("nan"), "tp": 110, "sl": 95, "type": "Buy"},
        {"price": -1, "tp": 110, "sl": 95, "type": "Buy"},
        {"price": 100, "tp": 90, "sl": 95, "type": "Buy"},
        {"price": 100, "tp": 110, "sl": 105, "type": "Sell"},
    ],
)
def test_create_request_rejects_malformed_input(payload):
    with pytest.raises(InvalidInputError) as ei:
        CreateMasterTradeRequest.parse(payload)
    assert ei.value.details


def test_reset_request_uses_wire_names():
    req = ResetDashboardRequest.parse({"userId": "u1", "newBalance": 2500})
    assert req.user_id == "u1"
    assert req.new_balance == 2500.0

    with pytest.raises(InvalidInputError):
        ResetDashboardRequest.parse({"userId": "u1", "newBalance": 0})
    with pytest.raises(InvalidInputError):
        ResetDashboardRequest.parse({"newBalance": 100})
