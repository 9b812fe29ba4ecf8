import numpy as np
import pytest

from phylopipe.stats import (
    difference_of_means,
    normal_two_sided_p,
    permutation_null_distribution,
    permutation_test,
    rank_p_value,
    summarize_null,
    z_score,
)


def test_difference_of_means() -> None:
    assert difference_of_means([1.0, 2.0, 3.0], [1.0, 1.0]) == pytest.approx(1.0)


def test_null_mean_near_zero_for_identical_samples() -> None:
    rng = np.random.default_rng(7)
    sample = rng.uniform(0.0, 10.0, size=20)
    mean, sd = permutation_test(sample, sample.copy(), 2000, seed=11)
    assert abs(mean) < 0.5
    assert sd > 0.0


def test_null_is_reproducible_with_seed() -> None:
    a = [0.1, 0.4, 0.35, 0.8]
    b = [0.9, 1.2, 0.7]
    first = permutation_null_distribution(a, b, 50, seed=3)
    second = permutation_null_distribution(a, b, 50, seed=3)
    assert first.shape == (50,)
    assert np.array_equal(first, second)


def test_degenerate_deviation_is_zero() -> None:
    assert summarize_null(np.array([0.25])) == (0.25, 0.0)
    mean, sd = permutation_test([1.0, 1.0], [1.0, 1.0], 10, seed=0)
    assert mean == pytest.approx(0.0)
    assert sd == pytest.approx(0.0)


def test_z_score_undefined_without_spread() -> None:
    assert z_score(1.0, 0.0, 0.0) is None
    assert normal_two_sided_p(None) is None
    assert z_score(2.0, 0.0, 1.0) == pytest.approx(2.0)
    assert normal_two_sided_p(0.0) == pytest.approx(1.0)
    assert normal_two_sided_p(1.959964) == pytest.approx(0.05, abs=1e-4)


def test_invalid_inputs_raise() -> None:
    with pytest.raises(ValueError):
        permutation_null_distribution([], [1.0], 10)
    with pytest.raises(ValueError):
        permutation_null_distribution([1.0], [1.0], 0)


def test_rank_p_value_tails() -> None:
    null = np.array([-2.0, -1.0, 0.0, 1.0, 2.0])
    assert rank_p_value(2.0, null, tail="right") == pytest.approx(2.0 / 6.0)
    assert rank_p_value(-1.0, null, tail="left") == pytest.approx(3.0 / 6.0)
    assert rank_p_value(2.0, null) == pytest.approx(3.0 / 6.0)
    assert rank_p_value(5.0, null) == pytest.approx(1.0 / 6.0)
    with pytest.raises(ValueError):
        rank_p_value(1.0, null, tail="up")
    with pytest.raises(ValueError):
        rank_p_value(1.0, [])
