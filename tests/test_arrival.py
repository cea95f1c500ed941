import random

import pytest

from walkin_queue.arrival import sample_exponential_interarrival, sample_urgency
from walkin_queue.priority import UrgencyClass


def test_exponential_interarrival_requires_positive_rate():
    with pytest.raises(ValueError):
        sample_exponential_interarrival(rate_per_sec=0)


def test_exponential_interarrival_deterministic_with_rng():
    rng = random.Random(123)
    a = sample_exponential_interarrival(rate_per_sec=2.0, rng=rng)
    rng = random.Random(123)
    b = sample_exponential_interarrival(rate_per_sec=2.0, rng=rng)
    assert a == b
    assert a > 0


def test_sample_urgency_respects_mix():
    rng = random.Random(1)
    only_high = {UrgencyClass.HIGH: 1.0, UrgencyClass.LOW: 0.0}
    assert {sample_urgency(mix=only_high, rng=rng) for _ in range(20)} == {UrgencyClass.HIGH}


def test_sample_urgency_rejects_empty_mix():
    with pytest.raises(ValueError):
        sample_urgency(mix={UrgencyClass.LOW: 0.0})
