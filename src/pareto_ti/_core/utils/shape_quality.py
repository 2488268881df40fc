"""Shape quality of a fitted polytope: variance explained and t-ratio.

The t-ratio is the volume of the polytope spanned by the archetypes divided
by the volume of the convex hull of the observations. When the k vertices span
fewer dimensions than the data (k - 1 < d), both point sets are first projected
onto the affine subspace spanned by the vertices and the volumes are taken
there.

Exact hull volumes are computed with Qhull (``scipy.spatial.ConvexHull``), whose
cost grows exponentially with dimension. Working dimensions above
``max_volume_dim`` raise ``VolumeComputationTooExpensiveError`` unless the
caller passes its own ``volume_estimator``.
"""

import warnings
from math import factorial

import numpy as np
from scipy.spatial import ConvexHull

from ..exceptions import VolumeComputationTooExpensiveError

DEFAULT_MAX_VOLUME_DIM = 7


def project_on_affine_subspace(X: np.ndarray, Z: np.ndarray) -> np.ndarray:
    """Coordinates of points ``X`` in the affine subspace spanned by vertices ``Z``.

    Parameters
    ----------
    X : np.ndarray
        Points, shape (n, d).
    Z : np.ndarray
        Vertices, shape (k, d). The subspace is spanned by ``Z[1:] - Z[0]``.

    Returns
    -------
    np.ndarray
        Least-squares coordinates relative to ``Z[0]``, shape (n, k - 1).
    """
    basis = (Z[1:] - Z[0]).T
    coords, *_ = np.linalg.lstsq(basis, (X - Z[0]).T, rcond=None)
    return coords.T


def simplex_volume(vertices: np.ndarray) -> float:
    """Volume of a simplex given its (dim + 1) vertices in ``dim`` dimensions."""
    vertices = np.asarray(vertices, dtype=float)
    n_vertices, dim = vertices.shape
    if n_vertices != dim + 1:
        raise ValueError(f"A {dim}-dimensional simplex needs {dim + 1} vertices, got {n_vertices}")
    edges = vertices[1:] - vertices[0]
    return float(abs(np.linalg.det(edges)) / factorial(dim))


def hull_volume(points: np.ndarray) -> float:
    """Exact convex hull volume; the range for 1-D point sets."""
    points = np.asarray(points, dtype=float)
    if points.shape[1] == 1:
        return float(np.ptp(points[:, 0]))
    return float(ConvexHull(points).volume)


def compute_t_ratio(
    observations: np.ndarray,
    archetypes: np.ndarray,
    max_volume_dim: int = DEFAULT_MAX_VOLUME_DIM,
    volume_estimator=None,
) -> float:
    """Compute the t-ratio of a polytope relative to the data hull.

    Parameters
    ----------
    observations : np.ndarray
        Data matrix, shape (n, d).
    archetypes : np.ndarray
        Vertex coordinates, shape (k, d), k >= 2.
    max_volume_dim : int, default: 7
        Largest working dimension for exact hull volumes.
    volume_estimator : callable | None
        ``volume_estimator(points) -> float`` used for the data hull instead
        of Qhull. Lifts the dimension cap.

    Returns
    -------
    float
        Polytope volume divided by data hull volume. NaN (with a
        ``RuntimeWarning``) when the data hull has zero volume.

    Raises
    ------
    ValueError
        If fewer than 2 archetypes are given.
    VolumeComputationTooExpensiveError
        If the working dimension exceeds ``max_volume_dim`` and no estimator is given.
    """
    X = np.asarray(observations, dtype=float)
    Z = np.asarray(archetypes, dtype=float)
    n_dims, n_archetypes = X.shape[1], Z.shape[0]

    if n_archetypes < 2:
        raise ValueError("t-ratio needs at least 2 archetypes")

    working_dim = min(n_archetypes - 1, n_dims)
    if working_dim > max_volume_dim and volume_estimator is None:
        raise VolumeComputationTooExpensiveError(
            f"Exact hull volume in {working_dim} dimensions exceeds max_volume_dim={max_volume_dim} "
            f"({n_archetypes} archetypes); skip the t-ratio or pass a volume_estimator"
        )

    if n_archetypes - 1 < n_dims:
        proj_X = project_on_affine_subspace(X, Z)
        proj_Z = project_on_affine_subspace(Z, Z)
    else:
        proj_X, proj_Z = X, Z

    if proj_Z.shape[0] == working_dim + 1:
        polytope_volume = simplex_volume(proj_Z)
    else:
        polytope_volume = hull_volume(proj_Z)

    if volume_estimator is not None:
        convhull_volume = float(volume_estimator(proj_X))
    else:
        convhull_volume = hull_volume(proj_X)

    if convhull_volume <= 0:
        warnings.warn(
            f"Data hull has zero volume in the {working_dim}-dimensional vertex subspace; t-ratio is NaN",
            RuntimeWarning,
            stacklevel=2,
        )
        return float("nan")

    return polytope_volume / convhull_volume


def quality(fit_result, observations, max_volume_dim: int = DEFAULT_MAX_VOLUME_DIM) -> dict[str, float | None]:
    """Variance explained and t-ratio of a fit, both measured on ``observations``.

    Parameters
    ----------
    fit_result : FitResult
        Fitted polytope.
    observations : np.ndarray | pd.DataFrame
        The data the fit was computed on, shape (n, d). The weights of the fit
        reconstruct these rows, so n must match the fit.
    max_volume_dim : int, default: 7
        Largest working dimension for exact hull volumes.

    Returns
    -------
    dict
        ``variance_explained`` and ``t_ratio``. The t-ratio is ``None`` for a
        single archetype or when the exact volume is too expensive.

    Raises
    ------
    ValueError
        If ``observations`` do not have the shape the fit was computed on.

    Examples
    --------
    >>> fit = fit_pcha(X, n_archetypes=3, seed=0)
    >>> quality(fit, X)
    {'variance_explained': 0.97, 't_ratio': 0.84}
    """
    X = np.asarray(observations, dtype=float)
    if X.shape != (fit_result.n_observations, fit_result.n_dims):
        raise ValueError(
            f"observations have shape {X.shape} but the fit was computed on "
            f"({fit_result.n_observations}, {fit_result.n_dims}); score other data with compute_t_ratio"
        )

    reconstruction = fit_result.weights @ fit_result.archetypes
    sst = float(np.sum((X - X.mean(axis=0)) ** 2))
    sse = float(np.sum((X - reconstruction) ** 2))
    variance_explained = (sst - sse) / sst if sst > 0 else 0.0

    t_ratio = None
    if fit_result.n_archetypes >= 2:
        try:
            t_ratio = compute_t_ratio(X, fit_result.archetypes, max_volume_dim=max_volume_dim)
        except VolumeComputationTooExpensiveError:
            t_ratio = None

    return {"variance_explained": variance_explained, "t_ratio": t_ratio}
