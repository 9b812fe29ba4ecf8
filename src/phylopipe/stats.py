from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from scipy import stats as sps


def _as_sample(values: Sequence[float], label: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ValueError(f"{label} must be one-dimensional.")
    if arr.size == 0:
        raise ValueError(f"{label} must be non-empty.")
    return arr


def difference_of_means(sample_a: Sequence[float], sample_b: Sequence[float]) -> float:
    a = _as_sample(sample_a, "sample_a")
    b = _as_sample(sample_b, "sample_b")
    return float(np.mean(a) - np.mean(b))


def permutation_null_distribution(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
    iterations: int,
    *,
    seed: int | None = None,
) -> np.ndarray:
    """Difference of means over ``iterations`` random relabelings of the pooled sample."""
    a = _as_sample(sample_a, "sample_a")
    b = _as_sample(sample_b, "sample_b")
    if int(iterations) < 1:
        raise ValueError("iterations must be >= 1.")
    rng = np.random.default_rng(seed)
    pooled = np.concatenate([a, b])
    n_a = a.size
    null = np.empty(int(iterations), dtype=float)
    for i in range(int(iterations)):
        shuffled = rng.permutation(pooled)
        null[i] = float(np.mean(shuffled[:n_a]) - np.mean(shuffled[n_a:]))
    return null


def summarize_null(null_values: np.ndarray) -> tuple[float, float]:
    """Mean and sample standard deviation; the deviation is 0.0 when undefined."""
    if null_values.size == 0:
        raise ValueError("null_values must be non-empty.")
    mean = float(np.mean(null_values))
    if null_values.size < 2:
        return mean, 0.0
    sd = float(np.std(null_values, ddof=1))
    if not math.isfinite(sd):
        sd = 0.0
    return mean, sd


def permutation_test(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
    iterations: int,
    *,
    seed: int | None = None,
) -> tuple[float, float]:
    return summarize_null(permutation_null_distribution(sample_a, sample_b, iterations, seed=seed))


def z_score(observed: float, null_mean: float, null_sd: float) -> float | None:
    if null_sd == 0.0:
        return None
    return (observed - null_mean) / null_sd


def normal_two_sided_p(z: float | None) -> float | None:
    if z is None:
        return None
    return float(2.0 * sps.norm.sf(abs(z)))


def rank_p_value(observed: float, null_values: Sequence[float], *, tail: str = "two-sided") -> float:
    """Monte Carlo p-value (b + 1) / (n + 1), b counting null values at least as extreme.

    The two-sided tail measures extremity as distance from the null mean.
    """
    null = _as_sample(null_values, "null_values")
    if tail == "right":
        extreme = null >= observed
    elif tail == "left":
        extreme = null <= observed
    elif tail == "two-sided":
        center = float(np.mean(null))
        extreme = np.abs(null - center) >= abs(observed - center)
    else:
        raise ValueError(f"Unsupported tail: {tail}")
    return (int(np.count_nonzero(extreme)) + 1.0) / (null.size + 1.0)
