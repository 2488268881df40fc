"""Tests for the PCHA polytope fitter."""

import numpy as np
import pytest
from scipy.spatial import Delaunay

import pareto_ti as pti
from pareto_ti._core.utils.PCHA import MU_MAX, PCHA, _S_update, check_observations, furthest_sum
from pareto_ti._core.utils.resampling import align_archetypes


def test_fit_shapes_and_weights(triangle_data, triangle_fit):
    """Weights are non-negative and each row sums to one."""
    fit = triangle_fit
    n, d = triangle_data.shape

    assert fit.archetypes.shape == (3, d)
    assert fit.weights.shape == (n, 3)
    assert fit.construction_weights.shape == (n, 3)
    assert np.all(fit.weights >= 0)
    np.testing.assert_allclose(fit.weights.sum(axis=1), 1.0, atol=1e-6)
    assert fit.converged
    assert fit.n_iter >= 1
    assert fit.labels == ["archetype_1", "archetype_2", "archetype_3"]


def test_archetypes_inside_hull_without_relaxation(triangle_data, triangle_fit):
    """With relaxation 0 every vertex is a convex combination of observations."""
    C = triangle_fit.construction_weights
    assert np.all(C >= -1e-12)
    np.testing.assert_allclose(C.sum(axis=0), 1.0, atol=1e-8)
    np.testing.assert_allclose(triangle_fit.archetypes, C.T @ triangle_data, atol=1e-8)

    # 2-D check on the triangle plane
    hull = Delaunay(triangle_data[:, :2])
    assert np.all(hull.find_simplex(triangle_fit.archetypes[:, :2], tol=1e-8) >= 0)


def test_relaxation_bounds_construction_weights(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=3, relaxation=0.2, seed=0)
    column_sums = fit.construction_weights.sum(axis=0)

    assert fit.relaxation == 0.2
    assert np.all(column_sums >= 0.8 - 1e-8)
    assert np.all(column_sums <= 1.2 + 1e-8)
    np.testing.assert_allclose(fit.weights.sum(axis=1), 1.0, atol=1e-6)


def test_recovers_known_triangle(triangle_fit, triangle_vertices):
    """Matched vertex error is small relative to the vertex spacing."""
    order = align_archetypes(triangle_vertices, triangle_fit.archetypes)
    errors = np.linalg.norm(triangle_fit.archetypes[order] - triangle_vertices, axis=1)

    assert np.mean(errors) < 0.1 * 10.0
    assert triangle_fit.variance_explained > 0.9


def test_deterministic_under_fixed_seed(triangle_data):
    fit_a = pti.fit_pcha(triangle_data, n_archetypes=3, seed=123)
    fit_b = pti.fit_pcha(triangle_data, n_archetypes=3, seed=123)

    np.testing.assert_array_equal(fit_a.archetypes, fit_b.archetypes)
    np.testing.assert_array_equal(fit_a.weights, fit_b.weights)
    assert fit_a.sse == fit_b.sse
    assert fit_a.seed == 123


def test_variance_explained_monotone_in_k(triangle_data):
    varexpl = [pti.fit_pcha(triangle_data, n_archetypes=k, seed=0).variance_explained for k in range(1, 5)]
    assert all(b >= a - 1e-3 for a, b in zip(varexpl, varexpl[1:], strict=False))
    assert varexpl[0] == pytest.approx(0.0, abs=1e-3)


def test_single_archetype_is_centroid(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=1, seed=0)

    assert fit.t_ratio is None
    assert fit.converged
    assert fit.n_iter == 0
    assert fit.variance_explained == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_allclose(fit.weights, 1.0)
    np.testing.assert_allclose(fit.construction_weights.sum(axis=0), 1.0)
    np.testing.assert_allclose(fit.archetypes[0], triangle_data.mean(axis=0), atol=1e-10)


def test_single_archetype_with_relaxation(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=1, relaxation=0.3, seed=0)
    np.testing.assert_allclose(fit.archetypes[0], triangle_data.mean(axis=0), atol=1e-10)


def test_duplicated_rows_terminate():
    """Exact fits on repeated observations end with the distinct points as vertices."""
    points = np.repeat([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], 5, axis=0)
    fit = pti.fit_pcha(points, n_archetypes=3, seed=0)

    expected = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
    order = align_archetypes(expected, fit.archetypes)
    np.testing.assert_allclose(fit.archetypes[order], expected, atol=1e-3)
    np.testing.assert_allclose(fit.weights.sum(axis=1), 1.0, atol=1e-6)
    assert np.all(np.isfinite(fit.weights))
    assert fit.converged


def test_noiseless_triangle_recovers_exact_vertices(triangle_vertices):
    rng = np.random.default_rng(4)
    mixtures = rng.dirichlet(np.ones(3), size=60) @ triangle_vertices
    points = np.vstack([triangle_vertices, mixtures])

    fit = pti.fit_pcha(points, n_archetypes=3, seed=0)

    order = align_archetypes(triangle_vertices, fit.archetypes)
    np.testing.assert_allclose(fit.archetypes[order], triangle_vertices, atol=1e-3)
    assert fit.variance_explained > 0.999
    assert fit.converged
    assert fit.t_ratio == pytest.approx(1.0, abs=1e-2)


def test_zero_gradient_keeps_step_size_bounded():
    """S steps with a zero gradient stay finite and leave the weights unchanged."""
    X = np.array([[1.0, -1.0, 0.5, -0.5]])
    S = np.ones((1, 4))
    XC = np.zeros((1, 1))
    XCtX = XC.T @ X
    CtXtXC = XC.T @ XC
    SST = float(np.sum(X * X))

    S_new, SSE, muS, _ = _S_update(S, XCtX, CtXtXC, 1.0, SST, SST, 500)

    np.testing.assert_allclose(S_new, S, atol=1e-12)
    assert SSE == pytest.approx(SST)
    assert np.isfinite(muS)
    assert muS <= MU_MAX


@pytest.mark.parametrize("k", [4, 5])
def test_extra_archetypes_converge(triangle_data, k):
    """Fits with more vertices than the data supports still reach the tolerance."""
    fit = pti.fit_pcha(triangle_data, n_archetypes=k, seed=0)

    assert fit.converged
    assert fit.n_iter < 500
    np.testing.assert_allclose(fit.weights.sum(axis=1), 1.0, atol=1e-6)


def test_t_ratio_of_filled_triangle(triangle_fit):
    assert triangle_fit.t_ratio is not None
    assert 0.8 < triangle_fit.t_ratio <= 1.0 + 1e-6


def test_random_init(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=3, init="random", seed=5)
    np.testing.assert_allclose(fit.weights.sum(axis=1), 1.0, atol=1e-6)
    assert fit.variance_explained > 0.9


def test_non_convergence_warns(triangle_data):
    with pytest.warns(pti.NonConvergenceWarning):
        fit = pti.fit_pcha(triangle_data, n_archetypes=3, max_iter=1, conv_crit=1e-12, seed=0)
    assert not fit.converged
    assert fit.n_iter == 1


def test_fit_params_and_overrides(triangle_data):
    params = pti.PCHAConfig(relaxation=0.1, max_iter=300)
    fit = pti.fit_pcha(triangle_data, n_archetypes=3, fit_params=params, relaxation=0.0, seed=0)
    assert fit.relaxation == 0.0

    fit = pti.fit_pcha(triangle_data, n_archetypes=3, fit_params={"relaxation": 0.1}, seed=0)
    assert fit.relaxation == 0.1


def test_fit_result_is_read_only(triangle_fit):
    with pytest.raises(ValueError):
        triangle_fit.archetypes[0, 0] = 1.0
    with pytest.raises(AttributeError):
        triangle_fit.sse = 0.0


def test_reorder(triangle_fit):
    reordered = triangle_fit.reorder([2, 0, 1])

    np.testing.assert_array_equal(reordered.archetypes, triangle_fit.archetypes[[2, 0, 1]])
    np.testing.assert_array_equal(reordered.weights, triangle_fit.weights[:, [2, 0, 1]])
    assert reordered.sse == triangle_fit.sse

    with pytest.raises(ValueError, match="permutation"):
        triangle_fit.reorder([0, 0, 1])


def test_to_frame_and_summary(triangle_fit):
    frame = triangle_fit.to_frame()
    assert list(frame.index) == triangle_fit.labels
    assert list(frame.columns) == ["pc_0", "pc_1", "pc_2"]

    summary = triangle_fit.summary()
    assert summary["n_archetypes"] == 3
    assert summary["variance_explained"] == pytest.approx(triangle_fit.variance_explained)


@pytest.mark.parametrize(
    "observations, k, match",
    [
        (np.array([[0.0, 1.0], [np.nan, 2.0], [1.0, 1.0], [2.0, 0.0]]), 2, "NaN"),
        (np.ones((3, 3)), 1, "d \\+ 1"),
        (np.array([[0.0, 0.0], [0.0, 0.0], [1.0, 1.0], [1.0, 1.0]]), 3, "distinct"),
        (np.arange(10.0), 2, "2-D"),
    ],
)
def test_degenerate_input(observations, k, match):
    with pytest.raises(pti.DegenerateInputError, match=match):
        pti.fit_pcha(observations, n_archetypes=k)


def test_degenerate_input_is_value_error():
    with pytest.raises(ValueError):
        check_observations(np.ones((5, 2)), 0)


def test_furthest_sum_picks_extremes():
    points = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [1.0, 1.0], [2.0, 1.0], [1.0, 2.0]])
    selected = furthest_sum(points.T, 3, 4)

    assert sorted(selected) == [0, 1, 2]
    assert furthest_sum(points.T, 1, 4) == [4]


def test_pcha_transposed_layout(triangle_data):
    X = (triangle_data - triangle_data.mean(axis=0)).T
    XC, S, C, SSE, varexpl, n_iter, converged = PCHA(X, 3, rng=np.random.default_rng(0))

    assert XC.shape == (3, 3)
    assert S.shape == (3, 300)
    assert C.shape == (300, 3)
    np.testing.assert_allclose(S.sum(axis=0), 1.0, atol=1e-6)
    # Vertices sorted by total weight
    assert np.all(np.diff(S.sum(axis=1)) <= 1e-12)
    assert varexpl == pytest.approx(1 - SSE / np.sum(X * X))
