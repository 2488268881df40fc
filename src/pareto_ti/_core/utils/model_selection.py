"""
Selection of the number of archetypes
=====================================

Fits polytopes across a range of vertex counts and collects, per k:

- variance explained of the full-data fit and its gain over k - 1,
- the elbow distance of the variance-explained curve,
- the t-ratio (full data and mean over subsamples),
- the positional variance of vertices across aligned subsample refits.

All fits across all k (full data and subsamples) are independent tasks on a
single worker pool. The per-k subsamples use the same seeds as
``bootstrap_archetypes`` with the same master seed, so a row of the report
matches a standalone stability run.

This module supports the choice of k; it does NOT apply a choice.
"""

import warnings

import numpy as np
import pandas as pd

from ..exceptions import DegenerateInputError
from ..types import PCHAConfig, resolve_fit_params
from .fit_results import ModelSelectionReport
from .PCHA import check_observations
from .resampling import _full_fit, _subsample_fit, collect_bootstrap, derive_seeds, run_tasks, subsample_size


def marginal_variance_explained(k_values, variance_explained) -> np.ndarray:
    """Gain in variance explained of each k over k - 1.

    k = 1 gains its full variance explained (zero archetypes explain nothing).
    The gain is NaN when k - 1 is not among ``k_values``.
    """
    by_k = dict(zip((int(k) for k in k_values), np.asarray(variance_explained, dtype=float), strict=True))
    ontop = []
    for k, varexpl in by_k.items():
        if k - 1 in by_k:
            ontop.append(varexpl - by_k[k - 1])
        elif k == 1:
            ontop.append(varexpl)
        else:
            ontop.append(np.nan)
    return np.array(ontop)


def elbow_distances(k_values, variance_explained) -> np.ndarray:
    """Distance of each (k, variance explained) point to the chord from the first to the last k.

    The maximum marks the elbow of the curve.
    """
    points = np.column_stack([np.asarray(k_values, dtype=float), np.asarray(variance_explained, dtype=float)])
    if len(points) < 2:
        return np.zeros(len(points))

    offset_vec = points[0]
    proj_vec = (points - offset_vec)[-1, :][:, None]
    proj_mtx = proj_vec @ np.linalg.inv(proj_vec.T @ proj_vec) @ proj_vec.T
    proj_val = (proj_mtx @ (points - offset_vec).T).T + offset_vec
    return np.linalg.norm(points - proj_val, axis=1)


def select_n_archetypes(
    observations,
    k_range,
    n_bootstrap: int = 10,
    sample_fraction: float = 0.9,
    fit_params: PCHAConfig | dict | None = None,
    seed: int = 42,
    n_jobs: int = 1,
    executor=None,
    verbose: bool = True,
) -> ModelSelectionReport:
    """Fit polytopes for a range of k and report quality and stability per k.

    Parameters
    ----------
    observations : np.ndarray | pd.DataFrame
        Data matrix, shape (n, d).
    k_range : Iterable[int]
        Vertex counts to evaluate, e.g. ``range(1, 8)``.
    n_bootstrap : int, default: 10
        Subsample refits per k. 0 skips the stability part.
    sample_fraction : float, default: 0.9
        Subsample size as a fraction of n (drawn without replacement).
    fit_params : PCHAConfig | dict | None
        PCHA parameters for every fit.
    seed : int, default: 42
        Master seed.
    n_jobs : int, default: 1
        joblib worker count.
    executor : object | None
        Pool with ``submit(fn, *args)``; replaces joblib.
    verbose : bool, default: True
        Print progress and the summary report.

    Returns
    -------
    ModelSelectionReport
        ``summary_df`` indexed by k, full-data fits and aligned subsample fits.

    Raises
    ------
    DegenerateInputError
        If any k can not be fitted on the data.

    Examples
    --------
    >>> report = select_n_archetypes(X, k_range=range(1, 7), n_bootstrap=20, n_jobs=-1)
    >>> report.summary_df[["variance_explained", "varexpl_ontop", "mean_position_variance"]]
    >>> report.suggest_n_archetypes()
    """
    k_values = sorted({int(k) for k in k_range})
    if not k_values:
        raise ValueError("k_range must contain at least one value")
    if n_bootstrap < 0:
        raise ValueError(f"n_bootstrap must be >= 0, got {n_bootstrap}")

    params = resolve_fit_params(fit_params)
    X = check_observations(observations, max(k_values))
    if min(k_values) < 1:
        raise DegenerateInputError(f"All k must be >= 1, got {k_values}")

    sample_size = subsample_size(X.shape[0], sample_fraction)
    if n_bootstrap > 0 and sample_size < max(X.shape[1] + 1, max(k_values)):
        raise DegenerateInputError(
            f"Subsamples of {sample_size} observations are too small for k={max(k_values)} "
            f"in {X.shape[1]} dimensions"
        )

    if verbose:
        print(f" Archetype number selection on {X.shape[0]} observations x {X.shape[1]} features")
        print(f"   k tested: {k_values}")
        print(f"   {n_bootstrap} subsamples of {sample_size} per k, {len(k_values) * (n_bootstrap + 1)} fits in total")

    # One task list across all k: full fit first, then subsamples
    subsample_seeds = derive_seeds(seed, n_bootstrap)
    task_funcs, tasks, owners = [], [], []
    for k in k_values:
        task_funcs.append(_full_fit)
        tasks.append((X, k, params, seed))
        owners.append((k, "full"))
        for s in subsample_seeds:
            task_funcs.append(_subsample_fit)
            tasks.append((X, k, params, sample_size, s))
            owners.append((k, "subsample"))

    outputs, interrupted = run_tasks(
        _dispatch, list(zip(task_funcs, tasks, strict=False)), n_jobs=n_jobs, executor=executor, verbose=verbose
    )

    fits, bootstraps, rows = {}, {}, []
    for k in k_values:
        k_outputs = [out for out, owner in zip(outputs, owners, strict=False) if owner[0] == k]
        full_output, sub_outputs = k_outputs[0], k_outputs[1:]

        if full_output is None or full_output[0] is None:
            reason = "interrupted" if full_output is None else full_output[1]
            warnings.warn(f"Full-data fit for k={k} unavailable ({reason}); k dropped from report", stacklevel=2)
            continue

        reference = full_output[0]
        boot = collect_bootstrap(reference, sub_outputs, n_bootstrap, interrupted)
        fits[k] = reference
        bootstraps[k] = boot

        sub_varexpl = [fit.variance_explained for fit in boot.fits]
        sub_t_ratio = [fit.t_ratio for fit in boot.fits if fit.t_ratio is not None]
        rows.append(
            {
                "k": k,
                "variance_explained": reference.variance_explained,
                "mean_variance_explained": float(np.mean(sub_varexpl)) if sub_varexpl else np.nan,
                "t_ratio": np.nan if reference.t_ratio is None else reference.t_ratio,
                "mean_t_ratio": float(np.mean(sub_t_ratio)) if sub_t_ratio else np.nan,
                "mean_position_variance": boot.mean_position_variance,
                "n_bootstrap_valid": boot.n_valid,
                "n_excluded": boot.n_excluded,
                "converged": reference.converged,
            }
        )

    if not rows:
        raise RuntimeError("No full-data fit completed; nothing to report")

    summary_df = pd.DataFrame(rows).set_index("k")
    varexpl = summary_df["variance_explained"].to_numpy()
    summary_df.insert(2, "varexpl_ontop", marginal_variance_explained(summary_df.index, varexpl))
    summary_df.insert(3, "elbow_distance", elbow_distances(summary_df.index.to_numpy(), varexpl))

    report = ModelSelectionReport(
        summary_df=summary_df,
        fits=fits,
        bootstraps=bootstraps,
        params={
            "n_bootstrap": n_bootstrap,
            "sample_fraction": sample_fraction,
            "sample_size": sample_size,
            "seed": seed,
            "fit_params": params.model_dump(mode="json"),
        },
        interrupted=interrupted,
    )

    if verbose:
        print(report.summary_report())

    return report


def _dispatch(func, args):
    """Worker: run one heterogeneous task."""
    return func(*args)
