import random

import pytest

from batchwise import ConstantBackoff, ExponentialBackoff, FullJitterBackoff, NoBackoff


def test_exponential_without_jitter_doubles():
    backoff = ExponentialBackoff(base_delay=1.0, max_delay=100.0, jitter=0.0)
    assert [backoff.delay(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


def test_exponential_is_capped():
    backoff = ExponentialBackoff(base_delay=1.0, max_delay=30.0, jitter=1.0)
    assert backoff.delay(20) == 30.0


def test_exponential_jitter_bounds():
    backoff = ExponentialBackoff(base_delay=1.0, jitter=1.0, rng=random.Random(7))
    for _ in range(100):
        assert 2.0 <= backoff.delay(2) <= 3.0


def test_full_jitter_bounds():
    backoff = FullJitterBackoff(base_delay=0.1, max_delay=20.0, rng=random.Random(3))
    for attempt in range(1, 10):
        assert 0.0 <= backoff.delay(attempt) <= min(20.0, 0.1 * 2**attempt)


def test_seeded_backoff_is_reproducible():
    a = ExponentialBackoff(rng=random.Random(42))
    b = ExponentialBackoff(rng=random.Random(42))
    assert [a.delay(i) for i in range(1, 5)] == [b.delay(i) for i in range(1, 5)]


def test_constant_and_none():
    assert ConstantBackoff(0.5).delay(9) == 0.5
    assert NoBackoff().delay(3) == 0.0


def test_negative_delays_rejected():
    with pytest.raises(ValueError):
        ExponentialBackoff(base_delay=-1)
    with pytest.raises(ValueError):
        ConstantBackoff(-0.1)
