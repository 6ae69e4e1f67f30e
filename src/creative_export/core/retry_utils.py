"""Backoff scheduling and retry classification for outbound delivery."""

import random
from collections.abc import Callable, Iterator

from creative_export.core.schemas import RetryPolicy

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUS_CODES or 500 <= status < 600


def compute_backoff_delay(
    policy: RetryPolicy, retry_index: int, rng: Callable[[float, float], float] = random.uniform
) -> float:
    """Delay in milliseconds before retry number ``retry_index`` (0-based).

    The geometric delay is clamped to ``[initialIntervalMs, maxIntervalMs]``;
    with jitter enabled the result is drawn uniformly from ``[0, delay]``.
    """
    delay = float(policy.initial_interval_ms)
    # Stop growing at the cap
    for _ in range(max(retry_index, 0)):
        if delay >= policy.max_interval_ms or policy.backoff_multiplier <= 1:
            break
        delay *= policy.backoff_multiplier
    delay = min(max(delay, policy.initial_interval_ms), policy.max_interval_ms)
    if policy.jitter:
        return rng(0, delay)
    return float(delay)


def backoff_schedule(policy: RetryPolicy) -> Iterator[float]:
    """Pre-jitter delays between the attempts allowed by ``policy``."""
    unjittered = policy.model_copy(update={"jitter": False})
    for retry_index in range(policy.max_attempts - 1):
        yield compute_backoff_delay(unjittered, retry_index)
