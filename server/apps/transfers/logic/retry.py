"""Bounded exponential backoff for transient object store failures."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Self, TypeVar, final

from django.conf import settings

from server.apps.transfers.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

_T = TypeVar('_T')


@final
@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often and how patiently to retry idempotent store calls."""

    max_attempts: int = 4
    base_delay: float = 0.2
    max_delay: float = 5.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_settings(cls) -> Self:
        """Build the policy from Django settings.

        Returns:
            Policy configured in ``components/transfers.py``.
        """
        return cls(
            max_attempts=settings.TRANSFER_RETRY_ATTEMPTS,
            base_delay=settings.TRANSFER_RETRY_BASE_DELAY,
            max_delay=settings.TRANSFER_RETRY_MAX_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt``.

        Args:
            attempt: 1-based number of the attempt that just failed.

        Returns:
            Delay in seconds, doubled per attempt and capped.
        """
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


def call_with_retry(
    operation: Callable[[], _T],
    policy: RetryPolicy,
    description: str,
) -> _T:
    """Run ``operation``, retrying on ``StoreUnavailableError``.

    Only idempotent operations may be passed here. Every other
    exception propagates on the first occurrence.

    Args:
        operation: Zero-argument callable doing one store call.
        policy: Retry policy.
        description: Operation name for log messages.

    Returns:
        Whatever ``operation`` returns.

    Raises:
        StoreUnavailableError: When the last attempt also failed.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except StoreUnavailableError:
            if attempt >= policy.max_attempts:
                logger.exception(
                    'Giving up on %s after %d attempts',
                    description,
                    attempt,
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                'Retrying %s in %.2fs (attempt %d/%d)',
                description,
                delay,
                attempt,
                policy.max_attempts,
            )
            policy.sleep(delay)
            attempt += 1
