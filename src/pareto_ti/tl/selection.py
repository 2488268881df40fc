"""
Choosing and validating the archetypal polytope.

Main Functions:
- select_n_archetypes(): Quality and stability metrics across a range of k
- bootstrap_archetypes(): Positional stability of the fitted archetypes
- t_ratio_significance(): t-ratio of the fit against a column-permutation null

All functions read the embedding from ``adata.obsm[pca_key]`` and store their
summaries in ``adata.uns``.
"""

from typing import Any

import numpy as np
from anndata import AnnData

from .._core.types import AnnDataKeys, PCHAConfig
from .._core.utils.fit_results import BootstrapResult, ModelSelectionReport, NullDistribution
from .._core.utils.model_selection import select_n_archetypes as _select_n_archetypes
from .._core.utils.resampling import bootstrap_archetypes as _bootstrap_archetypes
from .._core.utils.resampling import permutation_test as _permutation_test
from .archetypal import _fit_from_adata, _get_embedding


def select_n_archetypes(
    adata: AnnData,
    k_range=range(1, 8),
    *,
    pca_key: str = "X_pca",
    n_dims: int | None = None,
    n_bootstrap: int = 10,
    sample_fraction: float = 0.9,
    fit_params: PCHAConfig | dict[str, Any] | None = None,
    seed: int = 42,
    n_jobs: int = 1,
    executor=None,
    uns_key: str = AnnDataKeys.ARCHETYPE_SELECTION,
    verbose: bool = True,
) -> ModelSelectionReport:
    """Evaluate a range of archetype numbers on the cell embedding.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with an embedding in ``obsm[pca_key]``
    k_range : Iterable[int], default: range(1, 8)
        Numbers of archetypes to evaluate
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    n_dims : int | None, default: None
        Use only the first ``n_dims`` embedding columns
    n_bootstrap : int, default: 10
        Subsample refits per k (0 skips the stability metrics)
    sample_fraction : float, default: 0.9
        Subsample size as a fraction of the cells
    fit_params : PCHAConfig | dict | None
        PCHA parameters for every fit
    seed : int, default: 42
        Master seed
    n_jobs : int, default: 1
        Number of parallel workers (-1 for all cores)
    executor : object | None
        Pool with ``submit(fn, *args)`` used instead of joblib
    uns_key : str, default: "archetype_selection"
        Key in adata.uns for the per-k summary table
    verbose : bool, default: True
        Whether to print progress and the report

    Returns
    -------
    ModelSelectionReport
        Full report; ``report.summary_df`` is also stored in ``adata.uns[uns_key]``

    Examples
    --------
    >>> report = pti.tl.select_n_archetypes(adata, k_range=range(2, 8), n_dims=10, n_jobs=-1)
    >>> report.suggest_n_archetypes()
    """
    X = _get_embedding(adata, pca_key=pca_key, n_dims=n_dims)
    report = _select_n_archetypes(
        X,
        k_range,
        n_bootstrap=n_bootstrap,
        sample_fraction=sample_fraction,
        fit_params=fit_params,
        seed=seed,
        n_jobs=n_jobs,
        executor=executor,
        verbose=verbose,
    )

    adata.uns[uns_key] = report.summary_df.copy()
    if verbose:
        print(f"[OK] Selection summary stored in adata.uns['{uns_key}']")

    return report


def bootstrap_archetypes(
    adata: AnnData,
    *,
    n_bootstrap: int = 20,
    sample_fraction: float = 0.9,
    pca_key: str = "X_pca",
    fit_params: PCHAConfig | dict[str, Any] | None = None,
    seed: int = 42,
    n_jobs: int = 1,
    executor=None,
    uns_key: str = AnnDataKeys.ARCHETYPE_BOOTSTRAP,
    verbose: bool = True,
) -> BootstrapResult:
    """Refit the stored archetypes on cell subsamples and measure their positional variance.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with archetypes from ``fit_archetypes()``
    n_bootstrap : int, default: 20
        Number of subsamples
    sample_fraction : float, default: 0.9
        Subsample size as a fraction of the cells
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    fit_params : PCHAConfig | dict | None
        PCHA parameters; default: the relaxation of the stored fit
    seed : int, default: 42
        Master seed
    n_jobs : int, default: 1
        Number of parallel workers
    executor : object | None
        Pool with ``submit(fn, *args)`` used instead of joblib
    uns_key : str, default: "archetype_bootstrap"
        Key in adata.uns for the long table of aligned positions
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    BootstrapResult
        Aligned refits; ``to_frame()`` is stored in ``adata.uns[uns_key]``
    """
    reference = _fit_from_adata(adata)
    X = _get_embedding(adata, pca_key=pca_key, n_dims=reference.n_dims)
    if fit_params is None:
        fit_params = {"relaxation": reference.relaxation}

    result = _bootstrap_archetypes(
        X,
        reference.n_archetypes,
        n_bootstrap=n_bootstrap,
        sample_fraction=sample_fraction,
        fit_params=fit_params,
        seed=seed,
        reference=reference,
        n_jobs=n_jobs,
        executor=executor,
        verbose=verbose,
    )

    adata.uns[uns_key] = result.to_frame()
    if verbose:
        print(f"[OK] Aligned bootstrap positions stored in adata.uns['{uns_key}']")
        for label, variance in zip(reference.labels, result.position_variance, strict=False):
            print(f"   {label}: position variance {variance:.4f}")

    return result


def t_ratio_significance(
    adata: AnnData,
    *,
    n_permutations: int = 100,
    pca_key: str = "X_pca",
    fit_params: PCHAConfig | dict[str, Any] | None = None,
    seed: int = 42,
    volume_estimator=None,
    n_jobs: int = 1,
    executor=None,
    uns_key: str = AnnDataKeys.T_RATIO_SIGNIFICANCE,
    verbose: bool = True,
) -> NullDistribution:
    """Test whether the cells fill a polytope more tightly than expected by chance.

    Each permutation shuffles every embedding column independently and refits
    the same number of archetypes. The p-value is the smoothed fraction of
    permuted t-ratios at least as large as the observed one.

    Parameters
    ----------
    adata : AnnData
        Annotated data object with archetypes from ``fit_archetypes()``
    n_permutations : int, default: 100
        Number of permutations
    pca_key : str, default: "X_pca"
        Key in adata.obsm containing the embedding
    fit_params : PCHAConfig | dict | None
        PCHA parameters of the null fits; default: the relaxation of the stored fit
    seed : int, default: 42
        Master seed
    volume_estimator : callable | None
        Replacement for the exact convex hull volume of the data
    n_jobs : int, default: 1
        Number of parallel workers
    executor : object | None
        Pool with ``submit(fn, *args)`` used instead of joblib
    uns_key : str, default: "t_ratio_significance"
        Key in adata.uns for the test summary
    verbose : bool, default: True
        Whether to print progress messages

    Returns
    -------
    NullDistribution
        Observed t-ratio, null t-ratios and p-value
    """
    observed = _fit_from_adata(adata)
    X = _get_embedding(adata, pca_key=pca_key, n_dims=observed.n_dims)

    null = _permutation_test(
        X,
        observed,
        n_permutations=n_permutations,
        fit_params=fit_params,
        seed=seed,
        volume_estimator=volume_estimator,
        n_jobs=n_jobs,
        executor=executor,
        verbose=verbose,
    )

    adata.uns[uns_key] = null.summary()
    adata.uns[AnnDataKeys.T_RATIO] = null.observed_t_ratio

    if verbose:
        print("[STATS] t-ratio significance:")
        print(f"   Observed t-ratio: {null.observed_t_ratio:.4f}")
        if null.n_valid:
            print(f"   Null t-ratio: {np.mean(null.null_t_ratios):.4f} +/- {np.std(null.null_t_ratios):.4f}")
        print(f"   p-value: {null.pvalue:.4f} ({null.n_valid} valid permutations)")
        print(f"[OK] Stored in adata.uns['{uns_key}']")

    return null
