import random
from typing import Optional
from ..models.queue import BackoffStrategy

JITTER_RATIO = 0.1

def compute_retry_delay(strategy: BackoffStrategy, base_delay_ms: int, attempts: int,
                        max_delay_ms: Optional[int] = None, jitter: bool = True) -> int:
    """Delay in milliseconds before a failed job becomes eligible again.

    ``attempts`` is the number of attempts already made, so the first retry
    is computed with ``attempts == 1``.
    """
    attempts = max(attempts, 1)
    strategy = BackoffStrategy(strategy)

    if strategy == BackoffStrategy.LINEAR:
        delay = base_delay_ms * attempts
    elif strategy == BackoffStrategy.EXPONENTIAL:
        delay = base_delay_ms * (2 ** (attempts - 1))
        if jitter and delay:
            delay += random.uniform(0, delay * JITTER_RATIO)
    else:
        delay = base_delay_ms

    if max_delay_ms is not None:
        delay = min(delay, max_delay_ms)
    return int(delay)
