"""
Archetype Distance and Attribution Utilities
============================================

Functions for measuring how close each observation is to each archetype,
merging those proximities with per-observation feature data, and binning
observations by archetype.

Observation identifiers are the canonical join key: a DataFrame index (or an
``on`` column), AnnData ``obs_names``, or positional integers for bare arrays.

Main Functions
--------------
compute_archetype_distances : Observation x archetype proximity matrix
attribute : Build the attribution table (distances + external features)
bin_observations_by_archetype : Nearest fraction of observations per archetype
labels_from_assignments : One categorical label per observation
compare_archetypal_recovery : Compare learned vs true archetypes

Examples
--------
>>> fit = fit_pcha(X, n_archetypes=3, seed=0)
>>> table = attribute(fit, X_df, external_features=expression_df)
>>> assignments = bin_observations_by_archetype(table, near_fraction=0.1)
"""

import numpy as np
import pandas as pd
from scipy.optimize import linear_sum_assignment
from scipy.spatial.distance import cdist

from ..exceptions import KeyMismatchError
from ..types import DistanceMetric
from .fit_results import FitResult, archetype_labels

NEAREST_COLUMNS = ("nearest_archetype", "nearest_distance")


def distance_column(label: str) -> str:
    return f"{label}_distance"


def distance_columns(table: pd.DataFrame) -> list[str]:
    """Per-archetype distance columns of an attribution table, in table order."""
    return [c for c in table.columns if str(c).endswith("_distance") and c not in NEAREST_COLUMNS]


def _is_anndata(obj) -> bool:
    return hasattr(obj, "obs_names") and hasattr(obj, "obsm")


def _resolve_observations(observations, n_dims: int, on: str | None = None, pca_key: str = "X_pca"):
    """Return (matrix, identifiers) for an array, DataFrame or AnnData."""
    if _is_anndata(observations):
        if pca_key not in observations.obsm:
            raise ValueError(
                f"No coordinates found in adata.obsm['{pca_key}']. Available keys: {list(observations.obsm.keys())}"
            )
        X = np.asarray(observations.obsm[pca_key], dtype=float)[:, :n_dims]
        ids = pd.Index(observations.obs_names)
    elif isinstance(observations, pd.DataFrame):
        if on is not None and on in observations.columns:
            ids = pd.Index(observations[on])
            X = observations.drop(columns=[on]).to_numpy(dtype=float)
        else:
            ids = observations.index
            X = observations.to_numpy(dtype=float)
    else:
        X = np.asarray(observations, dtype=float)
        ids = pd.RangeIndex(X.shape[0])

    if X.ndim != 2 or X.shape[1] != n_dims:
        raise ValueError(f"observations must have {n_dims} feature columns to match the fit, got shape {X.shape}")
    if ids.has_duplicates:
        raise KeyMismatchError(f"Duplicate observation identifiers: {list(ids[ids.duplicated()][:5])}")
    return X, ids


def _resolve_features(external_features, on: str | None = None, features_as_rows: bool = False) -> pd.DataFrame:
    """Return external features as an observation x feature DataFrame."""
    if _is_anndata(external_features):
        X = external_features.X
        if hasattr(X, "toarray"):
            X = X.toarray()
        features = pd.DataFrame(
            np.asarray(X), index=pd.Index(external_features.obs_names), columns=list(external_features.var_names)
        )
    elif isinstance(external_features, pd.DataFrame):
        features = external_features.T if features_as_rows else external_features
        if on is not None and on in features.columns:
            features = features.set_index(on)
    else:
        raise TypeError(
            f"external_features must be a pandas DataFrame or AnnData, got {type(external_features).__name__}"
        )

    if features.index.has_duplicates:
        duplicated = features.index[features.index.duplicated()]
        raise KeyMismatchError(f"Duplicate observation identifiers in external_features: {list(duplicated[:5])}")
    return features


def compute_archetype_distances(
    observations: np.ndarray,
    fit_result: FitResult,
    distance_metric: str | DistanceMetric = DistanceMetric.EUCLIDEAN,
) -> np.ndarray:
    """Observation x archetype proximity matrix (smaller = closer).

    Parameters
    ----------
    observations : np.ndarray
        Data matrix, shape (n, d).
    fit_result : FitResult
        Fitted polytope.
    distance_metric : str | DistanceMetric, default: 'euclidean'
        'euclidean' for Euclidean distance to each vertex, or
        'archetype_weight' for ``1 - weights`` of the fit. The latter requires
        the same observations, in the same order, that the fit was made on.

    Returns
    -------
    np.ndarray
        Shape (n, k).
    """
    metric = DistanceMetric(distance_metric)
    X = np.asarray(observations, dtype=float)

    if metric is DistanceMetric.EUCLIDEAN:
        return cdist(X, fit_result.archetypes, metric="euclidean")

    if fit_result.sample_indices is not None or X.shape[0] != fit_result.n_observations:
        raise ValueError(
            "distance_metric='archetype_weight' needs the observations the fit was made on "
            f"({fit_result.n_observations} rows, all observations), got {X.shape[0]} rows"
        )
    return 1.0 - np.asarray(fit_result.weights)


def attribute(
    fit_result: FitResult,
    observations,
    external_features=None,
    distance_metric: str | DistanceMetric = DistanceMetric.EUCLIDEAN,
    on: str | None = None,
    features_as_rows: bool = False,
    verbose: bool = False,
) -> pd.DataFrame:
    """Build the attribution table: per-archetype distances merged with external features.

    Parameters
    ----------
    fit_result : FitResult
        Fitted polytope.
    observations : np.ndarray | pd.DataFrame | AnnData
        Observations in the fit's feature space. For AnnData,
        ``obsm['X_pca']`` (first d columns) is used.
    external_features : pd.DataFrame | AnnData | None
        Per-observation features (genes, gene-set scores, covariates).
        DataFrames are observations x features unless ``features_as_rows``.
    distance_metric : str | DistanceMetric, default: 'euclidean'
        'euclidean' or 'archetype_weight'.
    on : str | None
        Column holding observation identifiers (in either table) instead of the index.
    features_as_rows : bool, default: False
        ``external_features`` is features x observations.
    verbose : bool, default: False
        Print merge statistics.

    Returns
    -------
    pd.DataFrame
        Index = observation identifiers. Columns ``archetype_{j}_distance``
        (j = 1..k), ``nearest_archetype``, ``nearest_distance``, then the
        external feature columns.

    Raises
    ------
    KeyMismatchError
        If identifiers are duplicated or differ between the two tables.

    Examples
    --------
    >>> table = attribute(fit, pcs_df, external_features=expr_df)
    >>> table["nearest_archetype"].value_counts()
    """
    X, ids = _resolve_observations(observations, fit_result.n_dims, on=on)
    distances = compute_archetype_distances(X, fit_result, distance_metric)

    labels = fit_result.labels
    table = pd.DataFrame(distances, index=ids, columns=[distance_column(label) for label in labels])
    nearest = np.argmin(distances, axis=1)
    table["nearest_archetype"] = pd.Categorical(np.asarray(labels)[nearest], categories=labels)
    table["nearest_distance"] = distances[np.arange(len(nearest)), nearest]

    if external_features is None:
        return table

    features = _resolve_features(external_features, on=on, features_as_rows=features_as_rows)

    missing_in_features = ids.difference(features.index)
    missing_in_observations = features.index.difference(ids)
    if len(missing_in_features) or len(missing_in_observations):
        raise KeyMismatchError(
            f"Observation identifiers do not align: {len(missing_in_features)} observations have no features "
            f"(e.g. {list(missing_in_features[:3])}), {len(missing_in_observations)} feature rows have no "
            f"observation (e.g. {list(missing_in_observations[:3])})"
        )

    clashes = set(table.columns) & set(features.columns)
    if clashes:
        raise ValueError(f"external_features columns clash with attribution columns: {sorted(clashes)}")

    table = pd.concat([table, features.reindex(ids)], axis=1)

    if verbose:
        print(
            f"[OK] Attribution table: {len(table)} observations, {len(labels)} archetypes, "
            f"{features.shape[1]} features"
        )
        for label in labels:
            count = int((table["nearest_archetype"] == label).sum())
            print(f"   {label}: nearest for {count} observations ({100 * count / len(table):.1f}%)")

    return table


def bin_observations_by_archetype(
    table,
    near_fraction: float = 0.1,
    vertex_columns: list[str] | None = None,
    include_central_archetype: bool = False,
    verbose: bool = False,
) -> pd.DataFrame:
    """Assign the nearest fraction of observations to each archetype.

    For each archetype, selects the closest ``near_fraction`` of observations.
    Optionally creates a central "archetype_0" for generalist observations
    with the smallest mean distance to all archetypes.

    Parameters
    ----------
    table : pd.DataFrame | np.ndarray
        Attribution table (``archetype_{j}_distance`` columns) or an (n, k)
        distance matrix.
    near_fraction : float, default: 0.1
        Fraction of observations (0-1) assigned to each archetype.
    vertex_columns : list[str] | None
        Distance columns to use. Default: all per-archetype distance columns.
    include_central_archetype : bool, default: False
        Add archetype_0 for observations closest to the polytope centre.
    verbose : bool, default: False
        Print assignment statistics.

    Returns
    -------
    pd.DataFrame
        One row per (observation, assigned archetype), plus one row per
        unassigned observation:

        - ``observation_id`` : identifier from the table index
        - ``observation_idx`` : 0-based position
        - ``archetype_label`` : 'archetype_0', 'archetype_1', ... or 'no_archetype'
        - ``archetype_idx`` : 0 for central, 1+ for vertices, -1 for unassigned
        - ``distance`` : distance to the assigned archetype (NaN if unassigned)
        - ``rank_in_archetype`` : 0 = closest, -1 if unassigned
        - ``multiple_archetypes`` : observation assigned to more than one archetype

    Notes
    -----
    An observation may be among the nearest fraction for several archetypes;
    it then appears once per archetype and ``multiple_archetypes`` is True.
    """
    if not 0 < near_fraction < 1:
        raise ValueError(f"near_fraction must be in (0, 1), got {near_fraction}")

    if isinstance(table, pd.DataFrame):
        columns = vertex_columns if vertex_columns is not None else distance_columns(table)
        if not columns:
            raise ValueError("No archetype distance columns found; run attribute() first")
        distance_matrix = table[columns].to_numpy(dtype=float)
        ids = table.index
        labels = [str(c)[: -len("_distance")] if str(c).endswith("_distance") else str(c) for c in columns]
    else:
        distance_matrix = np.asarray(table, dtype=float)
        ids = pd.RangeIndex(distance_matrix.shape[0])
        labels = archetype_labels(distance_matrix.shape[1])

    n_obs, n_archetypes = distance_matrix.shape
    n_per_archetype = int(n_obs * near_fraction)

    if verbose:
        print(f" Binning {n_obs} observations: top {n_per_archetype} ({near_fraction:.1%}) per archetype")
        if include_central_archetype:
            print("   INCLUDING central archetype_0 (generalist observations)")

    assignments = []
    assigned_to = {}

    def record(closest, archetype_label, archetype_idx, distances):
        for rank, position in enumerate(closest):
            assignments.append(
                {
                    "observation_id": ids[position],
                    "observation_idx": int(position),
                    "archetype_label": archetype_label,
                    "archetype_idx": archetype_idx,
                    "distance": float(distances[position]),
                    "rank_in_archetype": rank,
                }
            )
            assigned_to.setdefault(int(position), []).append(archetype_idx)

    if include_central_archetype:
        centroid_distances = distance_matrix.mean(axis=1)
        closest = np.argsort(centroid_distances, kind="stable")[:n_per_archetype]
        record(closest, "archetype_0", 0, centroid_distances)

    for arch_idx in range(n_archetypes):
        arch_distances = distance_matrix[:, arch_idx]
        closest = np.argsort(arch_distances, kind="stable")[:n_per_archetype]
        record(closest, labels[arch_idx], arch_idx + 1, arch_distances)

        if verbose and len(closest):
            closest_distances = arch_distances[closest]
            print(
                f"   {labels[arch_idx]}: {len(closest)} observations, "
                f"distance range: [{closest_distances.min():.4f}, {closest_distances.max():.4f}]"
            )

    for position in sorted(set(range(n_obs)) - set(assigned_to)):
        assignments.append(
            {
                "observation_id": ids[position],
                "observation_idx": position,
                "archetype_label": "no_archetype",
                "archetype_idx": -1,
                "distance": np.nan,
                "rank_in_archetype": -1,
            }
        )

    assignments_df = pd.DataFrame(assignments)
    assignments_df = assignments_df.sort_values(["observation_idx", "archetype_idx"], kind="stable").reset_index(
        drop=True
    )
    assignments_df["multiple_archetypes"] = assignments_df["observation_idx"].map(
        lambda x: len(assigned_to.get(x, [])) > 1
    )

    if verbose:
        unassigned = int((assignments_df["archetype_idx"] == -1).sum())
        overlap = int(assignments_df.loc[assignments_df["archetype_idx"] != -1, "multiple_archetypes"].sum())
        print("\n[STATS] Assignment Summary:")
        print(f"   No archetype: {unassigned} observations ({100 * unassigned / n_obs:.1f}%)")
        if overlap > 0:
            print(f"   [WARNING]  Overlapping assignments: {overlap} rows")

    return assignments_df


def labels_from_assignments(assignments_df: pd.DataFrame, n_observations: int) -> pd.Categorical:
    """One label per observation; overlapping observations keep their first assignment."""
    labels = ["no_archetype"] * n_observations
    assigned = assignments_df[assignments_df["archetype_idx"] != -1]
    first = assigned.drop_duplicates("observation_idx", keep="first")
    for position, label in zip(first["observation_idx"], first["archetype_label"], strict=False):
        labels[int(position)] = label

    categories = assigned.drop_duplicates("archetype_idx").sort_values("archetype_idx")["archetype_label"].tolist()
    return pd.Categorical(labels, categories=[*categories, "no_archetype"])


def compare_archetypal_recovery(
    true_archetypes: np.ndarray, estimated_archetypes: np.ndarray, tolerance: float = 0.5, verbose: bool = True
) -> tuple[float, float]:
    """Compare learned vs true archetypes.

    Handles dimensional mismatches by using only overlapping dimensions.

    Parameters
    ----------
    true_archetypes : np.ndarray
        Ground truth archetypes, shape (n_archetypes, n_features).
    estimated_archetypes : np.ndarray
        Estimated archetypes, shape (n_archetypes, n_features_reduced).
    tolerance : float, default: 0.5
        Tolerance for assignment accuracy calculation.
    verbose : bool, default: True
        Print the comparison.

    Returns
    -------
    tuple
        ``(recovery_score, assignment_accuracy)``: mean matched distance over
        the scale of the true archetypes (lower is better), and the fraction of
        archetypes recovered within ``tolerance`` times that scale.
    """
    true_archetypes = np.asarray(true_archetypes, dtype=float)
    estimated_archetypes = np.asarray(estimated_archetypes, dtype=float)

    # Handle dimensional mismatch: use minimum dimensions
    min_dims = min(true_archetypes.shape[1], estimated_archetypes.shape[1])
    true_subset = true_archetypes[:, :min_dims]
    estimated_subset = estimated_archetypes[:, :min_dims]

    distances = cdist(estimated_subset, true_subset)
    estimated_idx, true_idx = linear_sum_assignment(distances)

    matched_distances = distances[estimated_idx, true_idx]
    data_scale = np.std(true_subset)

    recovery_score = float(np.mean(matched_distances) / data_scale)
    assignment_accuracy = float(np.mean(matched_distances < tolerance * data_scale))

    if verbose:
        print("Archetype recovery comparison:")
        print(f"  True archetypes: {true_archetypes.shape} → using first {min_dims} dims")
        print(f"  Estimated archetypes: {estimated_archetypes.shape} → using first {min_dims} dims")
        print(f"  Recovery score: {recovery_score:.4f} (lower is better)")
        print(f"  Assignment accuracy: {assignment_accuracy:.4f} (higher is better)")

    return recovery_score, assignment_accuracy
