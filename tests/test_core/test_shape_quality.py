"""Tests for volumes and the t-ratio."""

import numpy as np
import pytest

import pareto_ti as pti
from pareto_ti._core.utils.shape_quality import (
    compute_t_ratio,
    hull_volume,
    project_on_affine_subspace,
    quality,
    simplex_volume,
)


def test_simplex_volume():
    assert simplex_volume(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])) == pytest.approx(0.5)
    assert simplex_volume(np.eye(4)[:, 1:]) == pytest.approx(1 / 6)
    assert simplex_volume(np.array([[2.0], [5.0]])) == pytest.approx(3.0)

    with pytest.raises(ValueError, match="vertices"):
        simplex_volume(np.zeros((3, 3)))


def test_hull_volume():
    square = np.array([[0.0, 0.0], [2.0, 0.0], [0.0, 2.0], [2.0, 2.0], [1.0, 1.0]])
    assert hull_volume(square) == pytest.approx(4.0)
    assert hull_volume(np.array([[3.0], [-1.0], [0.5]])) == pytest.approx(4.0)


def test_t_ratio_of_exact_triangle():
    """Archetypes equal to the hull give a t-ratio of one."""
    vertices = np.array([[0.0, 0.0], [4.0, 0.0], [0.0, 4.0]])
    rng = np.random.default_rng(0)
    weights = rng.dirichlet(np.ones(3), 100)
    points = np.vstack([vertices, weights @ vertices])

    assert compute_t_ratio(points, vertices) == pytest.approx(1.0)
    # Half-size triangle inside the same hull
    assert compute_t_ratio(points, vertices * 0.5) == pytest.approx(0.25)


def test_t_ratio_projects_on_vertex_subspace():
    """A segment in 3-D is compared with the 1-D extent of the projected data."""
    rng = np.random.default_rng(1)
    points = np.column_stack([rng.uniform(0, 10, 50), rng.normal(0, 0.1, 50), rng.normal(0, 0.1, 50)])
    points[0, 0], points[1, 0] = 0.0, 10.0
    archetypes = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]])

    coords = project_on_affine_subspace(points, archetypes)
    assert coords.shape == (50, 1)
    assert compute_t_ratio(points, archetypes) == pytest.approx(1.0)


def test_t_ratio_with_more_vertices_than_dimensions():
    square = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    points = np.vstack([square, np.random.default_rng(2).uniform(0, 1, (30, 2))])
    assert compute_t_ratio(points, square) == pytest.approx(1.0)


def test_t_ratio_dimension_cap():
    rng = np.random.default_rng(3)
    points = rng.standard_normal((60, 9))
    archetypes = points[:10]

    with pytest.raises(pti.VolumeComputationTooExpensiveError):
        compute_t_ratio(points, archetypes, max_volume_dim=7)


def test_t_ratio_volume_estimator_lifts_cap():
    rng = np.random.default_rng(3)
    points = rng.standard_normal((60, 9))
    archetypes = points[:10]

    t_ratio = compute_t_ratio(points, archetypes, max_volume_dim=7, volume_estimator=lambda p: 1.0)
    assert np.isfinite(t_ratio)
    assert t_ratio > 0


def test_t_ratio_needs_two_archetypes():
    with pytest.raises(ValueError, match="at least 2"):
        compute_t_ratio(np.zeros((5, 2)), np.zeros((1, 2)))


def test_quality(triangle_data, triangle_fit):
    result = quality(triangle_fit, triangle_data)
    assert set(result) == {"variance_explained", "t_ratio"}
    assert result["variance_explained"] == pytest.approx(triangle_fit.variance_explained)
    assert result["t_ratio"] == pytest.approx(triangle_fit.t_ratio)


def test_quality_recomputes_missing_t_ratio(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=3, seed=0, compute_t_ratio=False)
    assert fit.t_ratio is None

    result = quality(fit, triangle_data)
    assert result["t_ratio"] is not None
    assert 0 < result["t_ratio"] <= 1.0 + 1e-6


def test_fit_skips_t_ratio_when_too_expensive():
    rng = np.random.default_rng(4)
    X = rng.standard_normal((80, 9))
    fit = pti.fit_pcha(X, n_archetypes=9, max_volume_dim=3, max_iter=50, conv_crit=1e-3, seed=0)
    assert fit.t_ratio is None


def test_quality_measures_the_given_observations(triangle_data):
    fit = pti.fit_pcha(triangle_data, n_archetypes=3, seed=0)
    shifted = triangle_data + np.array([0.0, 0.0, 0.5])

    result = quality(fit, shifted)
    assert result["t_ratio"] == pytest.approx(compute_t_ratio(shifted, fit.archetypes))
    assert result["variance_explained"] < fit.variance_explained


def test_quality_rejects_other_rows(triangle_data):
    """A fit on a subsample can not be scored against the full matrix."""
    subset_fit = pti.fit_pcha(triangle_data[:60], n_archetypes=3, seed=0)

    with pytest.raises(ValueError, match="shape"):
        quality(subset_fit, triangle_data)
    assert quality(subset_fit, triangle_data[:60])["variance_explained"] == pytest.approx(
        subset_fit.variance_explained
    )


def test_t_ratio_of_zero_volume_hull_is_nan():
    """Data collapsing to a point in the vertex subspace gives NaN instead of dividing by zero."""
    points = np.array([[0.0, 0.0], [0.0, 1.0], [0.0, 2.0]])
    archetypes = np.array([[-1.0, 1.0], [1.0, 1.0]])

    with pytest.warns(RuntimeWarning, match="zero volume"):
        t_ratio = compute_t_ratio(points, archetypes)
    assert np.isnan(t_ratio)

    with pytest.warns(RuntimeWarning, match="zero volume"):
        t_ratio = compute_t_ratio(points, archetypes, volume_estimator=lambda p: 0.0)
    assert np.isnan(t_ratio)
