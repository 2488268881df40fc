"""
Basic preprocessing functions for archetypal analysis.

Main Functions:
- generate_synthetic(): Create synthetic AnnData with known archetypes for testing

Count loading, normalisation and PCA happen upstream (e.g. scanpy); the
tools in ``pareto_ti.tl`` read the embedding from ``adata.obsm["X_pca"]``.
"""

import numpy as np
from anndata import AnnData

from .._core.utils.convex_synth_data import generate_convex_data as _generate_convex_data


def generate_synthetic(
    n_points: int = 1000,
    n_dimensions: int = 3,
    n_archetypes: int = 3,
    noise: float = 0.1,
    *,
    seed: int = 1205,
    archetype_type: str = "random",
    scale: float = 20.0,
    archetypes: np.ndarray | None = None,
    concentration: float = 1.0,
    n_background_features: int = 10,
    marker_strength: float = 5.0,
) -> AnnData:
    """Generate synthetic convex data for testing.

    The embedding is stored as ``obsm["X_pca"]``. ``X`` holds one marker
    feature per archetype (``marker_1`` ... ``marker_k``, proportional to the
    weight of that archetype plus noise) and ``n_background_features``
    features without any relation to the archetypes.

    Parameters
    ----------
    n_points : int, default: 1000
        Number of observations to generate
    n_dimensions : int, default: 3
        Dimension of the embedding
    n_archetypes : int, default: 3
        Number of archetypes
    noise : float, default: 0.1
        Gaussian noise added to the embedding
    seed : int, default: 1205
        Random seed for reproducibility
    archetype_type : str, default: "random"
        Type of archetype generation ('random', 'corners', 'sphere')
    scale : float, default: 20.0
        Scale factor for data generation
    archetypes : np.ndarray | None
        Explicit archetype coordinates, shape (n_archetypes, n_dimensions)
    concentration : float, default: 1.0
        Dirichlet concentration of the mixing weights
    n_background_features : int, default: 10
        Number of uninformative features in ``X``
    marker_strength : float, default: 5.0
        Scale of the marker features relative to their unit-variance noise

    Returns
    -------
    AnnData
        Synthetic data with ground truth archetypes in ``.uns["true_archetypes"]``
        and ground truth weights in ``.obsm["true_weights"]``
    """
    points, archetypes, weights = _generate_convex_data(
        n_points=n_points,
        n_dimensions=n_dimensions,
        n_archetypes=n_archetypes,
        noise=noise,
        seed=seed,
        archetype_type=archetype_type,
        scale=scale,
        archetypes=archetypes,
        concentration=concentration,
    )

    # Feature noise from an independent stream of the same seed
    rng = np.random.default_rng(np.random.SeedSequence(seed).spawn(1)[0])
    markers = marker_strength * weights + rng.normal(0, 1, weights.shape)
    background = rng.normal(0, 1, (n_points, n_background_features))

    adata = AnnData(X=np.hstack([markers, background]))
    adata.var_names = [f"marker_{j + 1}" for j in range(n_archetypes)] + [
        f"background_{i}" for i in range(n_background_features)
    ]
    adata.obs_names = [f"Cell_{i}" for i in range(n_points)]

    adata.obsm["X_pca"] = points
    adata.obsm["true_weights"] = weights
    adata.uns["true_archetypes"] = archetypes

    return adata
