from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, *, base_seconds: float = 1.0, max_seconds: float = 30.0) -> float:
    return min(base_seconds * (2 ** max(0, attempt - 1)), max_seconds)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 4
    base_seconds: float = 1.0
    max_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_seconds=settings.retry_base_seconds,
            max_seconds=settings.retry_max_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        return compute_backoff(
            attempt,
            base_seconds=self.base_seconds,
            max_seconds=self.max_seconds,
        )

    def call(
        self,
        fn: Callable[[], T],
        *,
        description: str,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Run `fn`, retrying only TransientNetworkError. The last failure propagates."""
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except TransientNetworkError as exc:
                if attempt >= attempts:
                    logger.warning(
                        "Giving up on %s after %s attempts: %s",
                        description,
                        attempt,
                        exc,
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    "Transient failure on %s (attempt %s/%s), retrying in %.1fs: %s",
                    description,
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy(max_attempts=1)
