"""
Retry policy for authorization decisions that failed on infrastructure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from hearth.auth.decision import Decision

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_attempts: int = 2
    backoff_base: float = 0.05       # seconds
    backoff_multiplier: float = 2.0  # exponential factor
    max_backoff: float = 2.0         # cap

    def next_delay(self, attempt: int) -> float:
        """Delay before the attempt after `attempt` (exponential backoff)."""
        delay = self.backoff_base * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff)


async def decide_with_retry(
    evaluate: Callable[[], Awaitable[Decision]],
    policy: RetryPolicy,
) -> Decision:
    """
    Re-run `evaluate` while it keeps returning a retryable (infrastructure)
    denial. The last decision is returned as-is; it is never upgraded to allow.
    """
    attempt = 1
    decision = await evaluate()
    while decision.retryable and attempt < policy.max_attempts:
        delay = policy.next_delay(attempt)
        logger.info("authorization: store failure, retrying in %.2fs (attempt %d)", delay, attempt + 1)
        await asyncio.sleep(delay)
        attempt += 1
        decision = await evaluate()

    if decision.retryable:
        logger.error("authorization: store failure persisted after %d attempt(s)", attempt)
    return decision
