from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_STARTING_BALANCE = 10000.0
# Fixed-fractional sizing: 1% of the current balance is risked per trade.
DEFAULT_RISK_FRACTION = 0.01
DEFAULT_BALANCE_HISTORY_LIMIT = 100
DEFAULT_FANOUT_MAX_WORKERS = 8

DEFAULT_STORE_MAX_ATTEMPTS = 6
DEFAULT_STORE_BASE_DELAY_S = 0.2
DEFAULT_STORE_MAX_DELAY_S = 5.0
DEFAULT_STORE_CALL_TIMEOUT_S = 20.0
# Matches the default 2nd gen function timeout of 300 seconds.
DEFAULT_HANDLER_DEADLINE_S = 300.0
# Blocking auth triggers are rejected after ~7 seconds.
DEFAULT_SIGNUP_DEADLINE_S = 5.0
DEFAULT_TRANSACTION_MAX_ATTEMPTS = 5


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except Exception:
        return float(default)


def _parse_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _positive(value: float, default: float) -> float:
    return value if value > 0 else default


@dataclass(frozen=True)
class JournalSettings:
    starting_balance: float = DEFAULT_STARTING_BALANCE
    risk_fraction: float = DEFAULT_RISK_FRACTION
    balance_history_limit: int = DEFAULT_BALANCE_HISTORY_LIMIT
    fanout_max_workers: int = DEFAULT_FANOUT_MAX_WORKERS

    store_max_attempts: int = DEFAULT_STORE_MAX_ATTEMPTS
    store_base_delay_s: float = DEFAULT_STORE_BASE_DELAY_S
    store_max_delay_s: float = DEFAULT_STORE_MAX_DELAY_S
    store_call_timeout_s: float = DEFAULT_STORE_CALL_TIMEOUT_S
    handler_deadline_s: float = DEFAULT_HANDLER_DEADLINE_S
    signup_deadline_s: float = DEFAULT_SIGNUP_DEADLINE_S
    transaction_max_attempts: int = DEFAULT_TRANSACTION_MAX_ATTEMPTS

    rollover_reset_counters: bool = True


def load_settings() -> JournalSettings:
    """
    Resolve settings from the environment.

    Unparseable or out-of-range values fall back to the module defaults.
    """
    return JournalSettings(
        starting_balance=_positive(
            _parse_float_env("STARTING_BALANCE", DEFAULT_STARTING_BALANCE), DEFAULT_STARTING_BALANCE
        ),
        risk_fraction=_positive(_parse_float_env("RISK_FRACTION", DEFAULT_RISK_FRACTION), DEFAULT_RISK_FRACTION),
        balance_history_limit=int(
            _positive(
                _parse_int_env("BALANCE_HISTORY_LIMIT", DEFAULT_BALANCE_HISTORY_LIMIT),
                DEFAULT_BALANCE_HISTORY_LIMIT,
            )
        ),
        fanout_max_workers=int(
            _positive(_parse_int_env("FANOUT_MAX_WORKERS", DEFAULT_FANOUT_MAX_WORKERS), DEFAULT_FANOUT_MAX_WORKERS)
        ),
        store_max_attempts=int(
            _positive(_parse_int_env("STORE_MAX_ATTEMPTS", DEFAULT_STORE_MAX_ATTEMPTS), DEFAULT_STORE_MAX_ATTEMPTS)
        ),
        store_base_delay_s=_positive(
            _parse_float_env("STORE_BASE_DELAY_S", DEFAULT_STORE_BASE_DELAY_S), DEFAULT_STORE_BASE_DELAY_S
        ),
        store_max_delay_s=_positive(
            _parse_float_env("STORE_MAX_DELAY_S", DEFAULT_STORE_MAX_DELAY_S), DEFAULT_STORE_MAX_DELAY_S
        ),
        store_call_timeout_s=_positive(
            _parse_float_env("STORE_CALL_TIMEOUT_S", DEFAULT_STORE_CALL_TIMEOUT_S), DEFAULT_STORE_CALL_TIMEOUT_S
        ),
        handler_deadline_s=_positive(
            _parse_float_env("HANDLER_DEADLINE_S", DEFAULT_HANDLER_DEADLINE_S), DEFAULT_HANDLER_DEADLINE_S
        ),
        signup_deadline_s=_positive(
            _parse_float_env("SIGNUP_DEADLINE_S", DEFAULT_SIGNUP_DEADLINE_S), DEFAULT_SIGNUP_DEADLINE_S
        ),
        transaction_max_attempts=int(
            _positive(
                _parse_int_env("TRANSACTION_MAX_ATTEMPTS", DEFAULT_TRANSACTION_MAX_ATTEMPTS),
                DEFAULT_TRANSACTION_MAX_ATTEMPTS,
            )
        ),
        rollover_reset_counters=_parse_bool_env("ROLLOVER_RESET_COUNTERS", default=True),
    )
