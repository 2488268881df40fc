"""
End-to-end Pareto task inference on an AnnData embedding.

Main Functions:
- pareto_analysis(): fit -> t-ratio significance -> bootstrap stability ->
  archetype distances -> assignments -> feature associations, driven by one
  validated ``AnalysisConfig``
"""

from typing import Any

from anndata import AnnData

from .._core.types import AnalysisConfig
from .archetypal import archetypal_coordinates, assign_archetypes, fit_archetypes
from .selection import bootstrap_archetypes, t_ratio_significance
from .statistical import feature_associations


def pareto_analysis(
    adata: AnnData,
    n_archetypes: int,
    *,
    config: AnalysisConfig | dict[str, Any] | None = None,
    pca_key: str = "X_pca",
    n_dims: int | None = None,
    test_significance: bool = True,
    bootstrap: bool = True,
    associations: bool = True,
    executor=None,
    verbose: bool = True,
) -> dict[str, Any]:
    """Run the full archetype analysis for a chosen number of archetypes.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with an embedding in ``obsm[pca_key]``
    n_archetypes : int
        Number of archetypes, e.g. from ``pti.tl.select_n_archetypes()``
    config : AnalysisConfig | dict | None
        Fit, resampling, distance and enrichment settings
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    n_dims : int | None, default: None
        Use only the first ``n_dims`` embedding columns
    test_significance : bool, default: True
        Run the t-ratio permutation test (needs n_archetypes >= 2)
    bootstrap : bool, default: True
        Run the bootstrap stability analysis
    associations : bool, default: True
        Test the features in ``adata.X`` for enrichment at each archetype
    executor : object | None, default: None
        Pool with ``submit(fn, *args)`` for the permutation and bootstrap
        refits; replaces the joblib pool sized by ``n_jobs``
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    dict
        ``fit``, ``significance``, ``bootstrap``, ``assignments`` and
        ``associations`` (None for skipped steps)
    """
    if config is None:
        config = AnalysisConfig()
    elif isinstance(config, dict):
        config = AnalysisConfig.model_validate(config)
    resampling = config.resampling

    fit = fit_archetypes(
        adata,
        n_archetypes,
        pca_key=pca_key,
        n_dims=n_dims,
        seed=resampling.seed,
        fit_params=config.fit,
        verbose=verbose,
    )

    significance = None
    if test_significance and n_archetypes >= 2 and fit.t_ratio is not None:
        significance = t_ratio_significance(
            adata,
            n_permutations=resampling.n_permutations,
            pca_key=pca_key,
            fit_params=config.fit,
            seed=resampling.seed,
            n_jobs=resampling.n_jobs,
            executor=executor,
            verbose=verbose,
        )
    elif test_significance and verbose:
        print("[WARNING] t-ratio unavailable for this fit; significance test skipped")

    stability = None
    if bootstrap:
        stability = bootstrap_archetypes(
            adata,
            n_bootstrap=resampling.n_bootstrap,
            sample_fraction=resampling.sample_fraction,
            pca_key=pca_key,
            fit_params=config.fit,
            seed=resampling.seed,
            n_jobs=resampling.n_jobs,
            executor=executor,
            verbose=verbose,
        )

    archetypal_coordinates(
        adata, fit_result=fit, pca_key=pca_key, distance_metric=config.distance_metric.value, verbose=verbose
    )
    assignments = assign_archetypes(adata, near_fraction=config.enrichment.near_fraction, verbose=verbose)

    results = None
    if associations:
        results = feature_associations(adata, config=config.enrichment, verbose=verbose)

    return {
        "fit": fit,
        "significance": significance,
        "bootstrap": stability,
        "assignments": assignments,
        "associations": results,
    }
