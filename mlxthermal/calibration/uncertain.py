"""Uncertainty-bearing scalars.

A Scalar is either a concrete float or a one-dimensional numpy array of samples drawn from
its distribution. Arithmetic between Scalars is ordinary numpy broadcasting: samples are
paired element-wise, so a quantity that enters a formula twice (the emissivity, say) stays
perfectly correlated with itself instead of being re-drawn.

Uniform distributions are sampled on a Latin hypercube: the interval is cut into ``samples``
equal strata, each stratum contributes its midpoint, and the order is shuffled. Every
marginal is then reproduced exactly (an odd sample count puts the median on the interval
midpoint) while independent distributions stay uncorrelated.
"""

import numpy as np

from ..config import DISTRIBUTION_SAMPLES, RANDOM_SEED


class Substrate:
    """Factory for uniform distributions.

    ``samples == 0`` models an arithmetic substrate without distribution support:
    ``uniform_dist(lo, hi)`` then degenerates to the interval midpoint. A single stratum
    holds nothing but that midpoint, so ``samples == 1`` behaves the same way.
    """

    def __init__(self, samples: int = DISTRIBUTION_SAMPLES, seed: int | None = RANDOM_SEED):
        if samples < 0:
            raise ValueError("samples must be non-negative")
        self.samples = samples
        self.seed = seed
        self._rng = np.random.default_rng(seed)
        self._strata = (np.arange(samples) + 0.5) / samples if samples else None

    @property
    def supports_distributions(self) -> bool:
        return self.samples > 1

    def uniform_dist(self, lo, hi):
        """A value uniformly distributed on [lo, hi]."""
        if not self.supports_distributions:
            return (lo + hi) / 2
        return lo + (hi - lo) * self._rng.permutation(self._strata)

    def __repr__(self):
        return f"Substrate(samples={self.samples}, seed={self.seed})"


DETERMINISTIC = Substrate(samples=0)


def is_distribution(x) -> bool:
    return isinstance(x, np.ndarray) and x.ndim == 1 and x.size > 1


def sample_count(x) -> int:
    """Number of samples carried by ``x``; 0 for a concrete value."""
    return x.size if is_distribution(x) else 0


def _concrete(x) -> float:
    return float(np.asarray(x).item())


def representative(x) -> float:
    """Single value standing in for ``x`` when a branch must be taken: the sample median."""
    if is_distribution(x):
        return float(np.median(x))
    return _concrete(x)


def mean(x) -> float:
    if is_distribution(x):
        return float(np.mean(x))
    return _concrete(x)


def support(x) -> tuple[float, float]:
    if is_distribution(x):
        return float(np.min(x)), float(np.max(x))
    return _concrete(x), _concrete(x)


def support_width(x) -> float:
    lo, hi = support(x)
    return hi - lo


def interval(x, level: float = 0.95) -> tuple[float, float]:
    """Central interval holding ``level`` of the probability mass."""
    if not 0 < level <= 1:
        raise ValueError("level must be in (0, 1]")
    if not is_distribution(x):
        return _concrete(x), _concrete(x)
    tail = (1 - level) / 2 * 100
    lo, hi = np.percentile(x, [tail, 100 - tail])
    return float(lo), float(hi)


def is_finite(x) -> bool:
    return bool(np.all(np.isfinite(x)))


def fourth_root(x):
    """sqrt(sqrt(x)); NaN for negative arguments instead of raising."""
    with np.errstate(invalid="ignore"):
        result = np.sqrt(np.sqrt(x))
    return result if is_distribution(result) else _concrete(result)
