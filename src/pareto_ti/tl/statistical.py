"""
Statistical analysis of archetype-feature associations.

Main Functions:
- feature_associations(): Near-vs-far enrichment of every feature in X (or a
  layer) at every archetype, with multiple testing correction

Requires ``adata.obsm['archetype_distances']`` from
``pti.tl.archetypal_coordinates()``.
"""

from typing import Literal

import numpy as np
import pandas as pd
from anndata import AnnData

from .._core.types import AnnDataKeys, EnrichmentConfig
from .._core.utils.analysis import distance_column
from .._core.utils.fit_results import archetype_labels
from .._core.utils.statistical_tests import enrich as _enrich


def feature_associations(
    adata: AnnData,
    *,
    near_fraction: float = 0.1,
    distance_cutoff: float | None = None,
    obsm_key: str = AnnDataKeys.ARCHETYPE_DISTANCES,
    use_layer: str | None = None,
    features: list[str] | None = None,
    test_method: str = "mannwhitneyu",
    test_direction: str = "two-sided",
    fdr_method: str = "benjamini_hochberg",
    fdr_scope: Literal["global", "per_archetype", "none"] = "global",
    alpha: float = 0.05,
    min_observations: int = 10,
    config: EnrichmentConfig | None = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """Test feature associations with proximity to each archetype.

    For each archetype, the ``near_fraction`` of eligible cells closest to it
    are compared with the remaining eligible cells by a Mann-Whitney U test
    per feature.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with:

        - ``obsm[obsm_key]`` : Archetype distance matrix [n_cells, n_archetypes]
        - ``X`` or ``layers[use_layer]`` : Feature values
    near_fraction : float, default: 0.1
        Fraction of eligible cells closest to each archetype.
    distance_cutoff : float | None, default: None
        Cells farther than this from every archetype are excluded.
    obsm_key : str, default: "archetype_distances"
        Key in adata.obsm containing archetype distance matrix.
    use_layer : str | None, default: None
        Layer with feature values. If None, uses adata.X.
    features : list[str] | None, default: None
        Subset of ``var_names`` to test. If None, tests all.
    test_method : str, default: "mannwhitneyu"
        Rank-sum test ('mannwhitneyu', 'wilcoxon', 'ranksum').
    test_direction : str, default: "two-sided"
        Direction of statistical test: 'two-sided', 'greater', or 'less'.
    fdr_method : str, default: "benjamini_hochberg"
        FDR correction method: 'benjamini_hochberg' or 'bonferroni'.
    fdr_scope : {'global', 'per_archetype', 'none'}, default: 'global'
        Scope of FDR correction:

        - ``'global'`` : Correct across all tests (most stringent)
        - ``'per_archetype'`` : Correct within each archetype
        - ``'none'`` : No FDR correction (raw p-values)
    alpha : float, default: 0.05
        Significance threshold.
    min_observations : int, default: 10
        Minimum cells required in each group.
    config : EnrichmentConfig | None
        Validated configuration; replaces the individual test arguments.
    verbose : bool, default: True
        Whether to print progress messages.

    Returns
    -------
    pd.DataFrame
        Results with columns:

        - ``feature`` : str - Feature identifier (var name)
        - ``archetype`` : str - Archetype identifier
        - ``n_near`` / ``n_far`` : int - Group sizes
        - ``mean_near`` / ``mean_far`` : float - Group means
        - ``mean_diff`` : float - Effect size (near minus far)
        - ``distance_correlation`` : float - Spearman rho with distance
        - ``statistic`` : float - Mann-Whitney U statistic
        - ``pvalue`` : float - Raw p-value
        - ``fdr_pvalue`` : float - Corrected p-value
        - ``significant`` : bool - Whether corrected p-value < alpha
        - ``direction`` : str - 'higher' or 'lower' near the archetype

    Raises
    ------
    ValueError
        If required keys not found in adata.

    Examples
    --------
    >>> results = pti.tl.feature_associations(adata)
    >>> results[results.significant & (results.direction == "higher")]
    >>> # Per-archetype FDR correction (less stringent)
    >>> results = pti.tl.feature_associations(adata, fdr_scope="per_archetype")

    See Also
    --------
    pareto_ti._core.utils.statistical_tests.summarize_enrichment : Top features per archetype
    pareto_ti._core.types.EnrichmentResult : Result row structure
    """
    if obsm_key not in adata.obsm:
        raise ValueError(f"adata.obsm['{obsm_key}'] not found. Run pti.tl.archetypal_coordinates() first.")
    if use_layer is not None and use_layer not in adata.layers:
        raise ValueError(f"Layer '{use_layer}' not found. Available layers: {list(adata.layers.keys())}")

    var_names = list(adata.var_names)
    if features is not None:
        missing = [f for f in features if f not in set(var_names)]
        if missing:
            raise ValueError(f"Features not found in adata.var_names: {missing[:10]}")
        columns = [var_names.index(f) for f in features]
    else:
        features = var_names
        columns = list(range(len(var_names)))

    X = adata.layers[use_layer] if use_layer is not None else adata.X
    X = X[:, columns]
    if hasattr(X, "toarray"):
        X = X.toarray()

    distances = np.asarray(adata.obsm[obsm_key], dtype=float)
    vertex_columns = [distance_column(label) for label in archetype_labels(distances.shape[1])]
    index = pd.Index(adata.obs_names)
    table = pd.concat(
        [
            pd.DataFrame(distances, index=index, columns=vertex_columns),
            pd.DataFrame(np.asarray(X, dtype=float), index=index, columns=[str(f) for f in features]),
        ],
        axis=1,
    )

    if verbose:
        source = f"adata.layers['{use_layer}']" if use_layer is not None else "adata.X"
        print(f" Feature associations: {len(features)} features from {source}, {len(vertex_columns)} archetypes")

    return _enrich(
        table,
        vertex_columns=vertex_columns,
        feature_columns=[str(f) for f in features],
        near_fraction=near_fraction,
        distance_cutoff=distance_cutoff,
        test=test_method,
        test_direction=test_direction,
        fdr_method=fdr_method,
        fdr_scope=fdr_scope,
        alpha=alpha,
        min_observations=min_observations,
        config=config,
        verbose=verbose,
    )
