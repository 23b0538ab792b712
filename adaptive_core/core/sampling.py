# ═══════════════════════════════════════════════════════════════════════════════
# POSTERIOR SAMPLING
# Gamma / Beta draws for Thompson sampling, Wilson score intervals
# ═══════════════════════════════════════════════════════════════════════════════


"""
Beta(a, b) is drawn as X / (X + Y) with X ~ Gamma(a), Y ~ Gamma(b).
Gamma draws use Marsaglia & Tsang (2000). For shape < 1 the sampler boosts
the shape by one and rescales: Gamma(a) = Gamma(a + 1) * U^(1/a).

All draws take an explicit numpy Generator so callers can reproduce them.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np


def sample_gamma(shape: float, rng: np.random.Generator) -> float:
    """One draw from Gamma(shape, 1)."""
    if shape <= 0:
        raise ValueError(f"Gamma shape must be positive, got {shape}")

    if shape < 1:
        u = rng.random()
        return sample_gamma(shape + 1.0, rng) * u ** (1.0 / shape)

    d = shape - 1.0 / 3.0
    c = 1.0 / np.sqrt(9.0 * d)

    while True:
        x = rng.standard_normal()
        v = 1.0 + c * x
        if v <= 0:
            continue
        v = v * v * v
        u = rng.random()

        # Squeeze test first, then the full log test
        if u < 1.0 - 0.0331 * x ** 4:
            return float(d * v)
        if np.log(u) < 0.5 * x * x + d * (1.0 - v + np.log(v)):
            return float(d * v)


def sample_beta(a: float, b: float, rng: np.random.Generator) -> float:
    """One draw from Beta(a, b), in [0, 1]."""
    x = sample_gamma(a, rng)
    y = sample_gamma(b, rng)
    total = x + y
    if total <= 0:
        # Both gammas underflowed; fall back to the mean
        return a / (a + b)
    return x / total


def wilson_interval(wins: float, trials: float, z: float = 1.96) -> Tuple[float, float]:
    """
    Wilson score interval for a binomial proportion, clamped to [0, 1].

    Zero trials carry no information and return (0, 1).
    """
    if trials <= 0:
        return 0.0, 1.0

    p = wins / trials
    z2 = z * z
    denominator = 1.0 + z2 / trials
    center = p + z2 / (2.0 * trials)
    spread = z * np.sqrt(max(p * (1.0 - p) / trials + z2 / (4.0 * trials * trials), 0.0))

    # Rounding can push a bound past p at the extremes (p = 0 or 1)
    lower = min((center - spread) / denominator, p)
    upper = max((center + spread) / denominator, p)
    return float(max(0.0, lower)), float(min(1.0, upper))
