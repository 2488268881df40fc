"""Tests for subsample stability, permutation significance and their task runner."""

import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

import pareto_ti as pti
from pareto_ti._core.types import PCHAConfig
from pareto_ti._core.utils.fit_results import FitResult, NullDistribution
from pareto_ti._core.utils.resampling import (
    _subsample_fit,
    align_archetypes,
    derive_seeds,
    permutation_test,
    run_tasks,
    subsample_size,
)
from pareto_ti._core.utils.shape_quality import compute_t_ratio


def _square(x):
    return x * x


def _interrupt_on_three(x):
    if x == 3:
        raise KeyboardInterrupt
    return x


def test_derive_seeds_independent_of_count():
    seeds_5 = derive_seeds(42, 5)
    seeds_10 = derive_seeds(42, 10)

    assert seeds_10[:5] == seeds_5
    assert len(set(seeds_10)) == 10
    assert derive_seeds(43, 5) != seeds_5
    assert derive_seeds(42, 5, key=(1,)) != seeds_5


def test_subsample_size():
    assert subsample_size(300, 0.9) == 270
    assert subsample_size(10, 1.0) == 10
    with pytest.raises(ValueError, match="sample_fraction"):
        subsample_size(10, 0.0)


def test_run_tasks_in_order():
    results, interrupted = run_tasks(_square, [(i,) for i in range(6)], n_jobs=1)
    assert results == [0, 1, 4, 9, 16, 25]
    assert not interrupted


def test_run_tasks_with_executor():
    with ThreadPoolExecutor(max_workers=2) as executor:
        results, interrupted = run_tasks(_square, [(i,) for i in range(5)], executor=executor)
    assert results == [0, 1, 4, 9, 16]
    assert not interrupted


def test_run_tasks_keeps_results_on_interrupt():
    with pytest.warns(RuntimeWarning, match="interrupted"):
        results, interrupted = run_tasks(_interrupt_on_three, [(i,) for i in range(6)], n_jobs=1)

    assert interrupted
    assert results[:3] == [0, 1, 2]
    assert results[3:] == [None, None, None]


def test_alignment_recovers_permutation():
    rng = np.random.default_rng(0)
    reference = rng.standard_normal((5, 4)) * 10
    perm = np.array([3, 0, 4, 1, 2])
    query = reference[perm] + rng.normal(0, 0.01, (5, 4))

    order = align_archetypes(reference, query)
    np.testing.assert_array_equal(order, np.argsort(perm))
    np.testing.assert_allclose(query[order], reference, atol=0.1)


def test_alignment_exact_on_noiseless_permutation():
    rng = np.random.default_rng(1)
    reference = rng.uniform(-5, 5, (4, 3))
    perm = np.array([2, 3, 1, 0])
    query = reference[perm]

    order = align_archetypes(reference, query)
    np.testing.assert_array_equal(order, np.argsort(perm))
    np.testing.assert_array_equal(query[order], reference)
    assert np.linalg.norm(query[order] - reference) == 0.0


def test_alignment_shape_mismatch():
    with pytest.raises(ValueError, match="shape"):
        align_archetypes(np.zeros((3, 2)), np.zeros((4, 2)))


def test_bootstrap_triangle_is_stable(triangle_data, triangle_fit):
    boot = pti.bootstrap_archetypes(triangle_data, 3, n_bootstrap=4, seed=1, reference=triangle_fit)

    assert boot.n_requested == 4
    assert boot.n_valid + boot.n_excluded == 4
    assert boot.n_valid >= 3
    assert boot.position_variance.shape == (3,)
    # Vertices move far less than the side length of 10
    assert boot.mean_position_variance < 1.0

    for fit in boot.fits:
        assert fit.sample_indices is not None
        assert len(fit.sample_indices) == 270
        assert len(np.unique(fit.sample_indices)) == 270
        # Aligned: each vertex is matched to the nearest reference vertex
        distances = np.linalg.norm(fit.archetypes - triangle_fit.archetypes, axis=1)
        assert np.all(distances < 2.0)


def test_bootstrap_frame(triangle_data):
    boot = pti.bootstrap_archetypes(triangle_data, 3, n_bootstrap=2, seed=1)
    df = boot.to_frame()

    assert {"pc_0", "pc_1", "pc_2", "archetype", "iter", "reference", "mean_variance"} <= set(df.columns)
    assert len(df) == 3 * (boot.n_valid + 1)
    assert df.loc[df["iter"] == 0, "reference"].all()
    assert isinstance(df["archetype"].dtype, pd.CategoricalDtype)


def test_bootstrap_deterministic_and_worker_independent(triangle_data):
    boot_a = pti.bootstrap_archetypes(triangle_data, 3, n_bootstrap=3, seed=9, n_jobs=1)
    with ThreadPoolExecutor(max_workers=3) as executor:
        boot_b = pti.bootstrap_archetypes(triangle_data, 3, n_bootstrap=3, seed=9, executor=executor)

    np.testing.assert_array_equal(boot_a.aligned_archetypes, boot_b.aligned_archetypes)
    np.testing.assert_array_equal(boot_a.position_variance, boot_b.position_variance)


def test_subsample_fit_single_archetype(triangle_data):
    """One-vertex subsample fits return the subsample centroid."""
    fit, error = _subsample_fit(triangle_data, 1, PCHAConfig(), 270, 2078861726)

    assert error is None
    assert fit.converged
    np.testing.assert_allclose(fit.archetypes[0], triangle_data[fit.sample_indices].mean(axis=0), atol=1e-10)


def test_bootstrap_extra_archetypes_has_finite_stability(triangle_data):
    boot = pti.bootstrap_archetypes(triangle_data, 4, n_bootstrap=3, seed=0)

    assert boot.n_valid >= 1
    assert np.all(np.isfinite(boot.position_variance))
    assert np.isfinite(boot.mean_position_variance)


def test_bootstrap_rejects_tiny_subsamples(triangle_data):
    with pytest.raises(pti.DegenerateInputError, match="too small"):
        pti.bootstrap_archetypes(triangle_data, 3, n_bootstrap=2, sample_fraction=0.01)


def test_pvalue_smoothing():
    null = NullDistribution(observed_t_ratio=1.0, null_t_ratios=np.array([0.5] * 9 + [1.0]), n_permutations=10)
    assert null.pvalue == pytest.approx(2 / 11)

    null = NullDistribution(observed_t_ratio=1.0, null_t_ratios=np.full(19, 0.2), n_permutations=19)
    assert null.pvalue == pytest.approx(1 / 20)

    null = NullDistribution(observed_t_ratio=1.0, null_t_ratios=np.array([]), n_permutations=5, n_excluded=5)
    assert null.pvalue == 1.0
    assert null.n_valid == 0


def test_pvalue_uniform_under_exchangeability():
    """When observed and null come from the same distribution, p-values are roughly uniform."""
    rng = np.random.default_rng(0)
    pvalues = np.array(
        [
            NullDistribution(
                observed_t_ratio=rng.standard_normal(), null_t_ratios=rng.standard_normal(19), n_permutations=19
            ).pvalue
            for _ in range(400)
        ]
    )

    assert pvalues.min() >= 1 / 20
    assert pvalues.max() <= 1.0
    assert abs(pvalues.mean() - 0.525) < 0.05
    assert np.mean(pvalues <= 0.05) < 0.1



@pytest.mark.slow
def test_permutation_test_calibrated_on_independent_features():
    """On data with independent features the test rejects at about the nominal rate."""
    pvalues = []
    for i in range(20):
        X = np.random.default_rng(100 + i).standard_normal((60, 2))
        fit = pti.fit_pcha(X, n_archetypes=3, seed=i)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            null = permutation_test(X, fit, n_permutations=19, seed=i)
        pvalues.append(null.pvalue)
    pvalues = np.array(pvalues)

    assert np.mean(pvalues <= 0.05) <= 0.2
    assert 0.3 <= pvalues.mean() <= 0.75


def test_permutation_test_scores_the_given_observations(triangle_data):
    """The observed t-ratio is taken against the data passed in, not the stored value."""
    subset_fit = pti.fit_pcha(triangle_data[:60], n_archetypes=3, seed=0)
    null = permutation_test(triangle_data, subset_fit, n_permutations=1, seed=0)

    assert null.observed_t_ratio == pytest.approx(compute_t_ratio(triangle_data, subset_fit.archetypes))

@pytest.mark.slow
def test_permutation_test_triangle_is_significant(triangle_data, triangle_fit):
    null = permutation_test(triangle_data, triangle_fit, n_permutations=8, seed=0)

    assert null.n_permutations == 8
    assert null.n_valid + null.n_excluded == 8
    assert null.n_valid >= 6
    assert null.observed_t_ratio == pytest.approx(triangle_fit.t_ratio)
    assert np.all(null.null_t_ratios < null.observed_t_ratio)
    assert null.pvalue == pytest.approx(1 / (null.n_valid + 1))

    df = null.to_frame()
    assert list(df.columns) == ["permutation", "t_ratio"]
    assert len(df) == null.n_valid


def test_permutation_test_deterministic(triangle_data, triangle_fit):
    null_a = permutation_test(triangle_data, triangle_fit, n_permutations=2, seed=3)
    null_b = permutation_test(triangle_data, triangle_fit, n_permutations=2, seed=3)
    np.testing.assert_array_equal(null_a.null_t_ratios, null_b.null_t_ratios)


def test_permutation_test_dimension_cap_before_work():
    rng = np.random.default_rng(0)
    X = rng.standard_normal((100, 9))
    fit = FitResult(
        archetypes=X[:9],
        weights=np.full((100, 9), 1 / 9),
        construction_weights=np.zeros((100, 9)),
        sse=0.0,
        variance_explained=0.0,
    )

    with pytest.raises(pti.DimensionalityTooHighError):
        permutation_test(X, fit, n_permutations=5)
    # Also a VolumeComputationTooExpensiveError
    with pytest.raises(pti.VolumeComputationTooExpensiveError):
        permutation_test(X, fit, n_permutations=5)


def test_permutation_test_needs_two_archetypes(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=1, seed=0)
    with pytest.raises(ValueError, match="at least 2"):
        permutation_test(triangle_data, fit, n_permutations=2)
