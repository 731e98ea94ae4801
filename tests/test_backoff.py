from jobengine.models.queue import BackoffStrategy
from jobengine.services.backoff import compute_retry_delay

def test_fixed_delay_ignores_attempts():
    assert compute_retry_delay(BackoffStrategy.FIXED, 5000, 1) == 5000
    assert compute_retry_delay("fixed", 5000, 7) == 5000

def test_linear_delay():
    assert compute_retry_delay(BackoffStrategy.LINEAR, 1000, 3) == 3000

def test_exponential_delay():
    delays = [compute_retry_delay(BackoffStrategy.EXPONENTIAL, 1000, n, jitter=False) for n in (1, 2, 3, 4)]
    assert delays == [1000, 2000, 4000, 8000]

def test_exponential_jitter_bounded():
    for _ in range(50):
        delay = compute_retry_delay(BackoffStrategy.EXPONENTIAL, 1000, 3)
        assert 4000 <= delay <= 4400

def test_delay_capped():
    assert compute_retry_delay(BackoffStrategy.EXPONENTIAL, 1000, 20, max_delay_ms=60000) == 60000
