"""
Core archetypal analysis functions.

This module provides the primary interface for fitting the archetypal polytope
on an embedding stored in AnnData and extracting archetypal coordinates. All
functions work directly with AnnData objects and follow scVerse conventions.

Main Functions:
- fit_archetypes(): Fit a k-vertex polytope (PCHA) to adata.obsm['X_pca']
- archetypal_coordinates(): Distances of every cell to every archetype
- assign_archetypes(): Assign the nearest cells to each archetype

Results are stored in ``adata.uns``, ``adata.obsm`` and ``adata.obs`` under
the keys documented in ``pareto_ti._core.types.AnnDataKeys``.
"""

from typing import Any

import numpy as np
import pandas as pd
from anndata import AnnData

from .._core.types import AnnDataKeys, PCHAConfig
from .._core.utils.analysis import bin_observations_by_archetype as _bin_observations_by_archetype
from .._core.utils.analysis import compute_archetype_distances as _compute_archetype_distances
from .._core.utils.analysis import distance_column, labels_from_assignments
from .._core.utils.fit_results import FitResult, archetype_labels
from .._core.utils.PCHA import fit_pcha as _fit_pcha


def _get_embedding(adata: AnnData, pca_key: str = "X_pca", n_dims: int | None = None) -> np.ndarray:
    """Embedding matrix from ``adata.obsm[pca_key]``, optionally its first ``n_dims`` columns."""
    if pca_key not in adata.obsm:
        raise ValueError(
            f"adata.obsm['{pca_key}'] not found. Available keys: {list(adata.obsm.keys())}. "
            "Run scanpy.pp.pca(adata) first."
        )
    X = np.asarray(adata.obsm[pca_key], dtype=float)
    if n_dims is not None:
        if n_dims < 1 or n_dims > X.shape[1]:
            raise ValueError(f"n_dims must be between 1 and {X.shape[1]}, got {n_dims}")
        X = X[:, :n_dims]
    # Ensure contiguous array (fixes negative stride issue)
    return np.ascontiguousarray(X)


def _fit_from_adata(
    adata: AnnData,
    coords_key: str = AnnDataKeys.ARCHETYPE_COORDINATES,
    weights_key: str = AnnDataKeys.CELL_ARCHETYPE_WEIGHTS,
    analysis_key: str = AnnDataKeys.ARCHETYPAL_ANALYSIS,
) -> FitResult:
    """Rebuild the FitResult stored by ``fit_archetypes()``."""
    if coords_key not in adata.uns or analysis_key not in adata.uns:
        raise ValueError(f"adata.uns['{coords_key}'] not found. Run pti.tl.fit_archetypes() first.")
    if weights_key not in adata.obsm:
        raise ValueError(f"adata.obsm['{weights_key}'] not found. Run pti.tl.fit_archetypes() first.")

    analysis = adata.uns[analysis_key]
    t_ratio = analysis.get("t_ratio")
    return FitResult(
        archetypes=np.asarray(adata.uns[coords_key], dtype=float),
        weights=np.asarray(adata.obsm[weights_key], dtype=float),
        construction_weights=np.asarray(analysis["construction_weights"], dtype=float),
        sse=float(analysis["sse"]),
        variance_explained=float(analysis["variance_explained"]),
        t_ratio=None if t_ratio is None or np.isnan(t_ratio) else float(t_ratio),
        n_iter=int(analysis["n_iter"]),
        converged=bool(analysis["converged"]),
        relaxation=float(analysis["relaxation"]),
        seed=None if analysis.get("seed", -1) < 0 else int(analysis["seed"]),
    )


def fit_archetypes(
    adata: AnnData,
    n_archetypes: int = 3,
    *,  # Keyword-only arguments (scVerse convention)
    pca_key: str = "X_pca",
    n_dims: int | None = None,
    relaxation: float | None = None,
    conv_crit: float | None = None,
    max_iter: int | None = None,
    init: str | None = None,
    seed: int = 42,
    fit_params: PCHAConfig | dict[str, Any] | None = None,
    compute_t_ratio: bool = True,
    coords_key: str = AnnDataKeys.ARCHETYPE_COORDINATES,
    weights_key: str = AnnDataKeys.CELL_ARCHETYPE_WEIGHTS,
    verbose: bool = True,
) -> FitResult:
    """Fit a k-vertex archetypal polytope to the cell embedding.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with an embedding in ``obsm[pca_key]``
    n_archetypes : int, default: 3
        Number of archetypes (polytope vertices)
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    n_dims : int | None, default: None
        Use only the first ``n_dims`` embedding columns (all if None)
    relaxation, conv_crit, max_iter, init : optional
        PCHA parameters; override ``fit_params``
    seed : int, default: 42
        Random seed of the initialisation
    fit_params : PCHAConfig | dict | None
        Full PCHA configuration
    compute_t_ratio : bool, default: True
        Compute the polytope/hull volume ratio
    coords_key : str, default: "archetype_coordinates"
        Key in adata.uns for the archetype coordinates
    weights_key : str, default: "cell_archetype_weights"
        Key in adata.obsm for the per-cell convex weights
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    FitResult
        The fitted polytope. Also stored in AnnData:

        - ``adata.uns[coords_key]`` : (n_archetypes, n_dims) coordinates
        - ``adata.uns['archetypal_analysis']`` : fit diagnostics
        - ``adata.obsm[weights_key]`` : (n_cells, n_archetypes) weights
        - ``adata.uns['t_ratio']`` : t-ratio, when computed

    Examples
    --------
    >>> fit = pti.tl.fit_archetypes(adata, n_archetypes=4, n_dims=10)
    >>> adata.uns["archetypal_analysis"]["variance_explained"]
    """
    X = _get_embedding(adata, pca_key=pca_key, n_dims=n_dims)

    if verbose:
        print(f" Fitting {n_archetypes} archetypes on adata.obsm['{pca_key}'] ({X.shape[0]} cells x {X.shape[1]} dims)")

    fit = _fit_pcha(
        X,
        n_archetypes,
        relaxation=relaxation,
        conv_crit=conv_crit,
        max_iter=max_iter,
        init=init,
        seed=seed,
        fit_params=fit_params,
        compute_t_ratio=compute_t_ratio,
    )

    adata.uns[coords_key] = np.array(fit.archetypes)
    adata.obsm[weights_key] = np.array(fit.weights)

    analysis = fit.summary()
    analysis["t_ratio"] = np.nan if fit.t_ratio is None else fit.t_ratio
    analysis["seed"] = -1 if fit.seed is None else fit.seed
    analysis["pca_key"] = pca_key
    analysis["construction_weights"] = np.array(fit.construction_weights)
    adata.uns[AnnDataKeys.ARCHETYPAL_ANALYSIS] = analysis
    if fit.t_ratio is not None:
        adata.uns[AnnDataKeys.T_RATIO] = fit.t_ratio

    if verbose:
        print(f"[OK] Fitted in {fit.n_iter} iterations (converged: {fit.converged})")
        print(f"   Variance explained: {fit.variance_explained:.4f}")
        if fit.t_ratio is not None:
            print(f"   t-ratio: {fit.t_ratio:.4f}")
        print(f"   Stored: adata.uns['{coords_key}'], adata.obsm['{weights_key}']")

    return fit


def archetypal_coordinates(
    adata: AnnData,
    *,
    fit_result: FitResult | None = None,
    pca_key: str = "X_pca",
    distance_metric: str = "euclidean",
    obsm_key: str = AnnDataKeys.ARCHETYPE_DISTANCES,
    verbose: bool = True,
) -> pd.DataFrame:
    """Compute distances of all cells to all archetypes.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with fitted archetypes
    fit_result : FitResult | None
        Fit to use; defaults to the one stored by ``fit_archetypes()``
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    distance_metric : str, default: "euclidean"
        'euclidean' or 'archetype_weight' (1 - convex weight)
    obsm_key : str, default: "archetype_distances"
        Key to store distance matrix in adata.obsm
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    pd.DataFrame
        Cells x archetypes distance table (``archetype_{j}_distance`` columns)
    """
    fit = fit_result if fit_result is not None else _fit_from_adata(adata)
    X = _get_embedding(adata, pca_key=pca_key, n_dims=fit.n_dims)

    distances = _compute_archetype_distances(X, fit, distance_metric)
    adata.obsm[obsm_key] = distances

    if verbose:
        nearest = np.argmin(distances, axis=1)
        print(f"[OK] Archetype distances ({distance_metric}) stored in adata.obsm['{obsm_key}']")
        for j, label in enumerate(fit.labels):
            count = int(np.sum(nearest == j))
            print(f"   {label}: nearest for {count} cells ({100 * count / len(nearest):.1f}%)")

    return pd.DataFrame(
        distances, index=pd.Index(adata.obs_names), columns=[distance_column(label) for label in fit.labels]
    )


def assign_archetypes(
    adata: AnnData,
    *,
    near_fraction: float = 0.1,
    obsm_key: str = AnnDataKeys.ARCHETYPE_DISTANCES,
    obs_key: str = AnnDataKeys.ARCHETYPES,
    include_central_archetype: bool = False,
    verbose: bool = True,
) -> pd.DataFrame:
    """Assign cells to archetypes based on distances.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with archetype distances
    near_fraction : float, default: 0.1
        Fraction of cells assigned to each archetype
    obsm_key : str, default: "archetype_distances"
        Key in adata.obsm containing distance matrix
    obs_key : str, default: "archetypes"
        Key to store assignments in adata.obs
    include_central_archetype : bool, default: False
        Whether to include a central archetype_0 (cells closest to the centre)
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    pd.DataFrame
        Long assignment table from ``bin_observations_by_archetype()``
    """
    if obsm_key not in adata.obsm:
        raise ValueError(f"adata.obsm['{obsm_key}'] not found. Run pti.tl.archetypal_coordinates() first.")

    distances = np.asarray(adata.obsm[obsm_key], dtype=float)
    table = pd.DataFrame(
        distances,
        index=pd.Index(adata.obs_names),
        columns=[distance_column(label) for label in archetype_labels(distances.shape[1])],
    )
    assignments = _bin_observations_by_archetype(
        table,
        near_fraction=near_fraction,
        include_central_archetype=include_central_archetype,
        verbose=verbose,
    )

    adata.obs[obs_key] = labels_from_assignments(assignments, adata.n_obs)

    if verbose:
        print(f"[OK] Assignments stored in adata.obs['{obs_key}']")

    return assignments
