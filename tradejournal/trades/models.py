from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.config import ConfigDict

from tradejournal.common.errors import InvalidInputError


class TradeType(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class TradeStatus(str, Enum):
    ACTIVE = "active"
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


# Users that receive new master trades.
ELIGIBLE_SUBSCRIPTIONS = (SubscriptionStatus.TRIAL.value, SubscriptionStatus.ACTIVE.value)


def compute_rr(trade_type: TradeType | str, *, price: float, tp: float, sl: float) -> float:
    """
    Reward:risk ratio of a trade.

    Buy:  (tp - price) / (price - sl)
    Sell: (price - tp) / (sl - price)

    >>> compute_rr("Buy", price=100, tp=110, sl=95)
    2.0
    """
    t = TradeType(trade_type)
    if t is TradeType.BUY:
        risk_pips = price - sl
        reward_pips = tp - price
    else:
        risk_pips = sl - price
        reward_pips = price - tp
    if risk_pips <= 0:
        raise InvalidInputError(f"stop loss {sl} leaves no risk distance for a {t.value} at {price}")
    return reward_pips / risk_pips


def child_trade_id(*, master_id: str, uid: str) -> str:
    """
    Deterministic child trade doc id: one child per (master, user) pair, so a
    redelivered fan-out resolves to the same document.
    """
    raw = f"{master_id}|{uid}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:40]


def master_trade_id(*, request_id: str) -> str:
    """Deterministic master trade doc id for a client request key."""
    raw = f"master|{request_id}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:40]


def normalize_status(raw: Any) -> str:
    return str(raw or "").strip().lower()


def settlement_for(status: Any, *, risk: float, reward: float) -> tuple[Optional[Outcome], float]:
    """
    Map a master status onto (outcome, signed balance change).

    - win: +reward
    - loss: -risk
    - active (or empty): not terminal, returns (None, 0.0)
    - anything else: breakeven, 0.0
    """
    s = normalize_status(status)
    if s in ("", TradeStatus.ACTIVE.value):
        return None, 0.0
    if s == TradeStatus.WIN.value:
        return Outcome.WIN, float(reward)
    if s == TradeStatus.LOSS.value:
        return Outcome.LOSS, -float(risk)
    return Outcome.BREAKEVEN, 0.0


@dataclass(frozen=True)
class MasterTrade:
    id: str
    type: str
    price: float
    tp: float
    sl: float
    rr: Optional[float]
    status: str

    @staticmethod
    def from_firestore(master_id: str, doc: Dict[str, Any]) -> "MasterTrade":
        rr = doc.get("rr")
        return MasterTrade(
            id=master_id,
            type=str(doc.get("type") or ""),
            price=doc.get("price"),
            tp=doc.get("tp"),
            sl=doc.get("sl"),
            rr=float(rr) if isinstance(rr, (int, float)) and math.isfinite(rr) else None,
            status=str(doc.get("status") or TradeStatus.ACTIVE.value),
        )


@dataclass(frozen=True)
class ChildTrade:
    parent_id: str
    risk: float
    reward: float
    type: str
    sl: Any
    tp: Any
    price: Any
    rr: Optional[float]
    status: str

    @staticmethod
    def sized_for(master: MasterTrade, *, balance: float, risk_fraction: float) -> "ChildTrade":
        risk = risk_fraction * balance
        reward = risk * (master.rr or 0.0)
        return ChildTrade(
            parent_id=master.id,
            risk=risk,
            reward=reward,
            type=master.type,
            sl=master.sl,
            tp=master.tp,
            price=master.price,
            rr=master.rr,
            status=master.status,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parentId": self.parent_id,
            "risk": self.risk,
            "reward": self.reward,
            "type": self.type,
            "sl": self.sl,
            "tp": self.tp,
            "price": self.price,
            "rr": self.rr,
            "status": self.status,
            "settled": False,
        }


# --- callable payloads ---


def _validation_details(err: ValidationError) -> list[dict]:
    return [{"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": e.get("msg")} for e in err.errors()]


class CreateMasterTradeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False, populate_by_name=True)

    price: float = Field(..., gt=0)
    tp: float = Field(..., gt=0)
    sl: float = Field(..., gt=0)
    type: Literal["Buy", "Sell"]
    # Client-chosen key; a retried call with the same key resumes the same master.
    request_id: Optional[str] = Field(None, alias="requestId", min_length=1, max_length=256)

    @model_validator(mode="after")
    def _check_geometry(self) -> "CreateMasterTradeRequest":
        if self.type == "Buy" and not (self.sl < self.price < self.tp):
            raise ValueError("Buy trades require sl < price < tp")
        if self.type == "Sell" and not (self.tp < self.price < self.sl):
            raise ValueError("Sell trades require tp < price < sl")
        return self

    @property
    def rr(self) -> float:
        return compute_rr(self.type, price=self.price, tp=self.tp, sl=self.sl)

    @classmethod
    def parse(cls, data: Any) -> "CreateMasterTradeRequest":
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise InvalidInputError("invalid master trade", details=_validation_details(e)) from e


class ResetDashboardRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, allow_inf_nan=False, populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    new_balance: float = Field(..., alias="newBalance", gt=0)

    @classmethod
    def parse(cls, data: Any) -> "ResetDashboardRequest":
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise InvalidInputError("invalid dashboard reset", details=_validation_details(e)) from e
