"""Shared fixtures for pareto_ti tests."""

import numpy as np
import pandas as pd
import pytest

import pareto_ti as pti
from pareto_ti._core.utils.convex_synth_data import generate_convex_data

# Equilateral triangle with side 10 in the first two of three dimensions
TRIANGLE_VERTICES = np.array(
    [
        [0.0, 0.0, 0.0],
        [10.0, 0.0, 0.0],
        [5.0, 5.0 * np.sqrt(3), 0.0],
    ]
)
TRIANGLE_SIDE = 10.0


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as an end-to-end workflow")


@pytest.fixture
def triangle_vertices():
    return TRIANGLE_VERTICES.copy()


@pytest.fixture
def triangle_data():
    """300 x 3 observations filling a triangle, concentrated towards its corners."""
    points, _, _ = generate_convex_data(
        n_points=300,
        n_dimensions=3,
        n_archetypes=3,
        noise=0.05,
        seed=0,
        archetypes=TRIANGLE_VERTICES,
        concentration=0.5,
    )
    return points


@pytest.fixture
def triangle_fit(triangle_data):
    return pti.fit_pcha(triangle_data, n_archetypes=3, seed=0)


@pytest.fixture
def blob_data():
    """Structureless Gaussian blob, 200 x 2."""
    rng = np.random.default_rng(7)
    return rng.standard_normal((200, 2))


@pytest.fixture
def marker_table(triangle_data, triangle_fit):
    """Attribution table with one feature peaking at each vertex plus a noise feature."""
    rng = np.random.default_rng(3)
    ids = [f"obs_{i}" for i in range(triangle_data.shape[0])]
    coords = pd.DataFrame(triangle_data, index=ids, columns=["pc_0", "pc_1", "pc_2"])

    distances = np.linalg.norm(triangle_data[:, None, :] - TRIANGLE_VERTICES[None, :, :], axis=-1)
    features = pd.DataFrame(
        {
            "marker_a": np.exp(-distances[:, 0] / 3) + rng.normal(0, 0.05, len(ids)),
            "marker_b": np.exp(-distances[:, 1] / 3) + rng.normal(0, 0.05, len(ids)),
            "marker_c": np.exp(-distances[:, 2] / 3) + rng.normal(0, 0.05, len(ids)),
            "noise": rng.normal(0, 1, len(ids)),
        },
        index=ids,
    )
    return pti.attribute(triangle_fit, coords, external_features=features)


@pytest.fixture
def small_adata():
    """Synthetic AnnData: 3 archetypes in a 3-D embedding, marker features in X."""
    return pti.pp.generate_synthetic(
        n_points=200,
        n_dimensions=3,
        n_archetypes=3,
        noise=0.05,
        seed=11,
        archetypes=TRIANGLE_VERTICES,
        concentration=0.5,
        n_background_features=5,
    )


@pytest.fixture
def fitted_small_adata(small_adata):
    """Small AnnData with fitted archetypes, distances and assignments."""
    pti.tl.fit_archetypes(small_adata, n_archetypes=3, verbose=False)
    pti.tl.archetypal_coordinates(small_adata, verbose=False)
    pti.tl.assign_archetypes(small_adata, near_fraction=0.2, verbose=False)
    return small_adata
