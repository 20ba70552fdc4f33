from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from google.api_core import exceptions as gexc

from tradejournal.common.config import JournalSettings
from tradejournal.common.errors import ConcurrencyConflictError, TransientStoreError

T = TypeVar("T")
logger = logging.getLogger(__name__)

_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    gexc.Aborted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.ResourceExhausted,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
)


@dataclass(frozen=True)
class Deadline:
    """
    Absolute per-invocation deadline on the monotonic clock.

    Every store call derives its timeout from the time left, so one trigger
    invocation never outlives its function timeout.
    """

    expires_at: float
    _clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)

    @classmethod
    def after(cls, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(expires_at=clock() + max(0.0, float(seconds)), _clock=clock)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def timeout(self, cap_s: float) -> float:
        return min(float(cap_s), self.remaining())


def with_firestore_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int = 6,
    base_delay_s: float = 0.2,
    max_delay_s: float = 5.0,
    deadline: Optional[Deadline] = None,
    op: str = "firestore",
) -> T:
    """
    Retry transient Firestore errors with exponential backoff + full jitter.

    Non-transient errors propagate unchanged. When the budget (attempts or
    deadline) runs out, `Aborted` surfaces as ConcurrencyConflictError and any
    other transient error as TransientStoreError.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except _TRANSIENT_EXCEPTIONS as e:
            sleep_s = min(max_delay_s, base_delay_s * (2**attempt)) * random.random()
            out_of_attempts = attempt >= (max_attempts - 1)
            out_of_time = deadline is not None and deadline.remaining() <= sleep_s
            if out_of_attempts or out_of_time:
                reason = "deadline exceeded" if out_of_time and not out_of_attempts else "retries exhausted"
                if isinstance(e, gexc.Aborted):
                    raise ConcurrencyConflictError(f"{op}: transaction contention, {reason} after {attempt + 1} attempts") from e
                raise TransientStoreError(f"{op}: {reason} after {attempt + 1} attempts: {e}") from e

            logger.info("firestore_retry op=%s iteration=%d sleep_s=%.3f", op, attempt + 1, float(sleep_s))
            time.sleep(sleep_s)
            attempt += 1


def retry_with_settings(
    fn: Callable[[], T],
    settings: JournalSettings,
    *,
    deadline: Optional[Deadline] = None,
    op: str = "firestore",
) -> T:
    return with_firestore_retry(
        fn,
        max_attempts=settings.store_max_attempts,
        base_delay_s=settings.store_base_delay_s,
        max_delay_s=settings.store_max_delay_s,
        deadline=deadline,
        op=op,
    )
