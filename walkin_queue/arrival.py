from __future__ import annotations

"""Arrival models for the walk-in simulator.

For a Poisson arrival process with rate λ (entities/second):
- The number of arrivals in a time window follows a Poisson distribution.
- The *inter-arrival times* are i.i.d. Exponential(λ).

Each arrival also draws an urgency class from a categorical distribution;
most walk-ins are low priority and emergencies are rare.
"""

import random
from typing import Mapping

from .priority import UrgencyClass

DEFAULT_URGENCY_MIX: dict[UrgencyClass, float] = {
    UrgencyClass.EMERGENCY: 0.05,
    UrgencyClass.HIGH: 0.15,
    UrgencyClass.MEDIUM: 0.30,
    UrgencyClass.LOW: 0.50,
}


def sample_exponential_interarrival(*, rate_per_sec: float, rng: random.Random | None = None) -> float:
    """Sample the next inter-arrival time (seconds) for a Poisson process.

    Args:
        rate_per_sec: λ, the arrival rate in entities/second. Must be > 0.
        rng: optional RNG (useful for deterministic tests).

    Returns:
        A positive float representing seconds until the next arrival.
    """
    if rate_per_sec <= 0:
        raise ValueError("rate_per_sec must be > 0")

    r = rng or random
    return float(r.expovariate(rate_per_sec))


def sample_urgency(
    *,
    mix: Mapping[UrgencyClass, float] | None = None,
    rng: random.Random | None = None,
) -> UrgencyClass:
    """Draw an urgency class; `mix` maps classes to non-negative weights."""
    weights = dict(mix or DEFAULT_URGENCY_MIX)
    if any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
        raise ValueError("urgency weights must be >= 0 and not all zero")

    r = rng or random
    classes = list(weights)
    return r.choices(classes, weights=[weights[c] for c in classes], k=1)[0]
