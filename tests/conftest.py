from __future__ import annotations

import pytest

from tests.fakes import FakeFirestore, fake_transactional
from tradejournal.common.config import JournalSettings
from tradejournal.service import JournalService


@pytest.fixture(autouse=True)
def _fake_transactions(monkeypatch):
    """Route JournalStore.run_transaction through the in-memory commit."""
    from tradejournal.persistence import store as store_mod

    monkeypatch.setattr(store_mod, "transactional", fake_transactional)


@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore()


@pytest.fixture
def settings() -> JournalSettings:
    # Tiny backoff so retry paths stay fast; generous attempts for contention tests.
    return JournalSettings(
        store_max_attempts=50,
        store_base_delay_s=0.001,
        store_max_delay_s=0.01,
        store_call_timeout_s=5.0,
        handler_deadline_s=60.0,
        fanout_max_workers=4,
    )


@pytest.fixture
def service(db: FakeFirestore, settings: JournalSettings) -> JournalService:
    return JournalService(db, settings)

