"""
Resampling engine: subsample stability and permutation significance
===================================================================

Repeated refits of a fixed-k polytope on

- random subsamples (without replacement) to measure how stable vertex
  positions are, and
- column-permuted copies of the data to build a null distribution of the
  t-ratio.

Every iteration is an independent task. Seeds are derived from the master seed
and the iteration index with ``np.random.SeedSequence``, so results do not
depend on the worker count or on the order tasks finish in. Tasks run on a
``joblib`` pool (``n_jobs``) or on any executor exposing ``submit(fn, *args)``.

Failed or non-converged iterations are excluded from the aggregates and
counted. A ``KeyboardInterrupt`` while collecting keeps what already finished.

Main Functions
--------------
bootstrap_archetypes : Aligned subsample refits and per-vertex position variance
permutation_test : Column-permutation null of the t-ratio
align_archetypes : Hungarian matching of two vertex sets
derive_seeds : Per-iteration seeds from a master seed
run_tasks : Run independent tasks on a pool or executor
"""

import warnings

import numpy as np
from joblib import Parallel, delayed
from scipy.optimize import linear_sum_assignment
from scipy.spatial import QhullError
from scipy.spatial.distance import cdist
from tqdm.auto import tqdm

from ..exceptions import DegenerateInputError, DimensionalityTooHighError, ParetoTIError
from ..types import PCHAConfig, resolve_fit_params
from .fit_results import BootstrapResult, FitResult, NullDistribution
from .PCHA import _fit, check_observations
from .shape_quality import compute_t_ratio

# Errors that mark a single resample as failed instead of aborting the batch
RESAMPLE_ERRORS = (ParetoTIError, np.linalg.LinAlgError, QhullError, FloatingPointError)


def derive_seeds(seed: int, n: int, key: tuple = ()) -> list[int]:
    """Derive ``n`` independent integer seeds from a master seed.

    Seed ``i`` depends only on ``(seed, key, i)``, not on ``n``.
    """
    children = np.random.SeedSequence(seed, spawn_key=tuple(key)).spawn(n)
    return [int(child.generate_state(1)[0]) for child in children]


def subsample_size(n_obs: int, sample_fraction: float) -> int:
    """Subsample size ``round(n * sample_fraction)``."""
    if not 0 < sample_fraction <= 1:
        raise ValueError(f"sample_fraction must be in (0, 1], got {sample_fraction}")
    return int(round(n_obs * sample_fraction))


def run_tasks(func, tasks, n_jobs=1, executor=None, verbose=False, desc="Fitting"):
    """Run ``func(*args)`` for every ``args`` in ``tasks``.

    Parameters
    ----------
    func : callable
        Module-level worker function (must be picklable for process pools).
    tasks : list[tuple]
        Positional arguments per task.
    n_jobs : int, default: 1
        joblib worker count. 1 runs in-process, -1 uses all cores.
    executor : object | None
        Alternative pool with ``submit(fn, *args) -> future``.
    verbose : bool, default: False
        Show a tqdm progress bar.
    desc : str
        Progress bar label.

    Returns
    -------
    results : list
        One entry per task, in task order. ``None`` for tasks that did not
        finish because of an interrupt.
    interrupted : bool
        True when a ``KeyboardInterrupt`` stopped collection early.
    """
    results = [None] * len(tasks)
    interrupted = False
    futures = []

    try:
        if executor is not None:
            futures = [executor.submit(func, *args) for args in tasks]
            for i, future in enumerate(tqdm(futures, desc=desc, disable=not verbose)):
                results[i] = future.result()
        else:
            outputs = Parallel(n_jobs=n_jobs, return_as="generator")(delayed(func)(*args) for args in tasks)
            for i, output in enumerate(tqdm(outputs, total=len(tasks), desc=desc, disable=not verbose)):
                results[i] = output
    except KeyboardInterrupt:
        interrupted = True
        for i, future in enumerate(futures):
            if results[i] is None and future.done() and not future.cancelled() and future.exception() is None:
                results[i] = future.result()
            elif not future.done():
                future.cancel()

    if interrupted:
        n_done = sum(r is not None for r in results)
        warnings.warn(
            f"{desc} interrupted: keeping {n_done} of {len(tasks)} completed tasks",
            RuntimeWarning,
            stacklevel=2,
        )

    return results, interrupted


def align_archetypes(reference: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Order of ``query`` vertices that best matches ``reference``.

    Solves the minimum total Euclidean distance assignment (Hungarian
    algorithm) between the two vertex sets.

    Parameters
    ----------
    reference : np.ndarray
        Reference vertices, shape (k, d).
    query : np.ndarray
        Query vertices, shape (k, d).

    Returns
    -------
    np.ndarray
        Index array ``order`` such that ``query[order]`` is aligned to ``reference``.

    Examples
    --------
    >>> order = align_archetypes(fit_a.archetypes, fit_b.archetypes)
    >>> aligned_b = fit_b.reorder(order)
    """
    reference = np.asarray(reference, dtype=float)
    query = np.asarray(query, dtype=float)
    if reference.shape != query.shape:
        raise ValueError(f"Vertex sets differ in shape: {reference.shape} vs {query.shape}")

    distances = cdist(reference, query, metric="euclidean")
    _, query_idx = linear_sum_assignment(distances)
    return query_idx


def align_fit(reference: FitResult, fit: FitResult) -> FitResult:
    """Return ``fit`` with vertices reordered to match ``reference``."""
    return fit.reorder(align_archetypes(reference.archetypes, fit.archetypes))


def _subsample_fit(X, n_archetypes, params, sample_size, seed):
    """Worker: fit k vertices on a seeded subsample. Returns (fit, error)."""
    rng = np.random.default_rng(seed)
    idx = np.sort(rng.choice(X.shape[0], size=sample_size, replace=False))
    try:
        X_sub = check_observations(X[idx], n_archetypes)
        fit = _fit(X_sub, n_archetypes, params, seed=seed, sample_indices=idx)
    except RESAMPLE_ERRORS as e:
        return None, f"{type(e).__name__}: {e}"
    return fit, None


def _full_fit(X, n_archetypes, params, seed):
    """Worker: fit k vertices on all observations. Returns (fit, error)."""
    try:
        fit = _fit(X, n_archetypes, params, seed=seed)
    except RESAMPLE_ERRORS as e:
        return None, f"{type(e).__name__}: {e}"
    return fit, None


def _permuted_t_ratio(X, n_archetypes, params, seed, volume_estimator):
    """Worker: shuffle every column independently, refit and return (t_ratio, error)."""
    rng = np.random.default_rng(seed)
    X_perm = np.column_stack([rng.permutation(X[:, j]) for j in range(X.shape[1])])
    try:
        fit = _fit(X_perm, n_archetypes, params, seed=seed, compute_t_ratio=False)
        if not fit.converged:
            return None, "did not converge"
        t_ratio = compute_t_ratio(X_perm, fit.archetypes, params.max_volume_dim, volume_estimator)
    except RESAMPLE_ERRORS as e:
        return None, f"{type(e).__name__}: {e}"
    if not np.isfinite(t_ratio):
        return None, "non-finite t-ratio"
    return float(t_ratio), None


def collect_bootstrap(reference: FitResult, outputs, n_requested: int, interrupted: bool = False) -> BootstrapResult:
    """Align valid subsample fits to ``reference`` and compute position variance.

    ``outputs`` holds ``(fit, error)`` pairs (or ``None`` for unfinished
    tasks). Failed, unfinished and non-converged fits are excluded.
    """
    aligned = []
    for output in outputs:
        if output is None:
            continue
        fit, _ = output
        if fit is None or not fit.converged:
            continue
        aligned.append(align_fit(reference, fit))

    if aligned:
        Z_stack = np.stack([fit.archetypes for fit in aligned])
        position_variance = Z_stack.var(axis=0).mean(axis=1)
    else:
        position_variance = np.full(reference.n_archetypes, np.nan)

    return BootstrapResult(
        reference=reference,
        fits=aligned,
        position_variance=position_variance,
        n_requested=n_requested,
        n_excluded=n_requested - len(aligned),
        interrupted=interrupted,
    )


def bootstrap_archetypes(
    observations,
    n_archetypes: int,
    n_bootstrap: int = 20,
    sample_fraction: float = 0.9,
    fit_params: PCHAConfig | dict | None = None,
    seed: int = 42,
    reference: FitResult | None = None,
    n_jobs: int = 1,
    executor=None,
    verbose: bool = False,
) -> BootstrapResult:
    """Refit a k-vertex polytope on random subsamples and align the vertices.

    Parameters
    ----------
    observations : np.ndarray | pd.DataFrame
        Data matrix, shape (n, d).
    n_archetypes : int
        Number of vertices k.
    n_bootstrap : int, default: 20
        Number of subsamples.
    sample_fraction : float, default: 0.9
        Each subsample holds ``round(n * sample_fraction)`` distinct observations.
    fit_params : PCHAConfig | dict | None
        PCHA parameters for every fit.
    seed : int, default: 42
        Master seed. The reference fit (when not given) uses it directly.
    reference : FitResult | None
        Fit to align to. Fitted on all observations when None.
    n_jobs : int, default: 1
        joblib worker count.
    executor : object | None
        Pool with ``submit(fn, *args)``; replaces joblib.
    verbose : bool, default: False
        Print progress and a stability summary.

    Returns
    -------
    BootstrapResult
        Aligned fits, per-vertex position variance and exclusion count.

    Examples
    --------
    >>> boot = bootstrap_archetypes(X, n_archetypes=3, n_bootstrap=50, n_jobs=-1)
    >>> boot.position_variance
    >>> boot.to_frame().groupby("archetype")[["pc_0", "pc_1"]].std()
    """
    params = resolve_fit_params(fit_params)
    X = check_observations(observations, n_archetypes)
    if n_bootstrap < 1:
        raise ValueError(f"n_bootstrap must be >= 1, got {n_bootstrap}")
    sample_size = subsample_size(X.shape[0], sample_fraction)
    if sample_size < max(X.shape[1] + 1, n_archetypes):
        raise DegenerateInputError(
            f"Subsamples of {sample_size} observations are too small for {n_archetypes} archetypes "
            f"in {X.shape[1]} dimensions"
        )

    if reference is None:
        reference = _fit(X, n_archetypes, params, seed=seed)
    elif reference.n_archetypes != n_archetypes:
        raise ValueError(f"reference has {reference.n_archetypes} archetypes, expected {n_archetypes}")

    if verbose:
        print(f" Subsample stability: k={n_archetypes}, {n_bootstrap} subsamples of {sample_size}/{X.shape[0]}")

    seeds = derive_seeds(seed, n_bootstrap)
    tasks = [(X, n_archetypes, params, sample_size, s) for s in seeds]
    outputs, interrupted = run_tasks(
        _subsample_fit, tasks, n_jobs=n_jobs, executor=executor, verbose=verbose, desc="Subsampling"
    )

    result = collect_bootstrap(reference, outputs, n_bootstrap, interrupted)

    if result.n_valid == 0:
        warnings.warn(
            f"No valid subsample fit for k={n_archetypes}; position variance is NaN", RuntimeWarning, stacklevel=2
        )

    if verbose:
        print(f"[OK] {result.n_valid} valid fits, {result.n_excluded} excluded")
        for label, var in zip(reference.labels, result.position_variance, strict=False):
            print(f"   {label}: position variance {var:.4f}")
        print(f"[STATS] Mean position variance: {result.mean_position_variance:.4f}")

    return result


def permutation_test(
    observations,
    observed_fit: FitResult,
    n_permutations: int = 100,
    fit_params: PCHAConfig | dict | None = None,
    seed: int = 42,
    volume_estimator=None,
    n_jobs: int = 1,
    executor=None,
    verbose: bool = False,
) -> NullDistribution:
    """Test the observed t-ratio against a column-permutation null.

    Each permutation shuffles every feature column independently, which keeps
    the marginal distributions but destroys the correlation between features.
    A k-vertex polytope is refitted on the permuted matrix and its t-ratio
    recorded.

    Parameters
    ----------
    observations : np.ndarray | pd.DataFrame
        The data ``observed_fit`` was fitted on, shape (n, d).
    observed_fit : FitResult
        Fit on the unpermuted data (k >= 2).
    n_permutations : int, default: 100
        Number of permuted refits.
    fit_params : PCHAConfig | dict | None
        PCHA parameters. Default: defaults with the observed fit's relaxation.
    seed : int, default: 42
        Master seed.
    volume_estimator : callable | None
        ``volume_estimator(points) -> float`` for the data hull volume. Lifts
        the exact-volume dimension cap.
    n_jobs : int, default: 1
        joblib worker count.
    executor : object | None
        Pool with ``submit(fn, *args)``; replaces joblib.
    verbose : bool, default: False
        Print progress and the p-value.

    Returns
    -------
    NullDistribution
        Observed t-ratio, valid null t-ratios and the smoothed p-value.

    Raises
    ------
    DimensionalityTooHighError
        If exact volumes are needed above ``max_volume_dim`` and no estimator is given.
    """
    n_archetypes = observed_fit.n_archetypes
    if n_archetypes < 2:
        raise ValueError("permutation_test needs an observed fit with at least 2 archetypes")
    if n_permutations < 1:
        raise ValueError(f"n_permutations must be >= 1, got {n_permutations}")

    if fit_params is None:
        params = resolve_fit_params(None, relaxation=observed_fit.relaxation)
    else:
        params = resolve_fit_params(fit_params)

    X = check_observations(observations, n_archetypes)
    if X.shape[1] != observed_fit.n_dims:
        raise ValueError(f"observations have {X.shape[1]} features but the fit has {observed_fit.n_dims}")

    working_dim = min(n_archetypes - 1, X.shape[1])
    if working_dim > params.max_volume_dim and volume_estimator is None:
        raise DimensionalityTooHighError(
            f"Permutation test needs exact hull volumes in {working_dim} dimensions "
            f"(max_volume_dim={params.max_volume_dim}); pass a volume_estimator or use fewer archetypes"
        )

    observed_t_ratio = compute_t_ratio(X, observed_fit.archetypes, params.max_volume_dim, volume_estimator)

    if verbose:
        print(f" Permutation test: k={n_archetypes}, {n_permutations} permutations")
        print(f"   Observed t-ratio: {observed_t_ratio:.4f}")

    seeds = derive_seeds(seed, n_permutations)
    tasks = [(X, n_archetypes, params, s, volume_estimator) for s in seeds]
    outputs, interrupted = run_tasks(
        _permuted_t_ratio, tasks, n_jobs=n_jobs, executor=executor, verbose=verbose, desc="Randomizing"
    )

    null_t_ratios = [output[0] for output in outputs if output is not None and output[0] is not None]
    result = NullDistribution(
        observed_t_ratio=float(observed_t_ratio),
        null_t_ratios=np.array(null_t_ratios, dtype=float),
        n_permutations=n_permutations,
        n_excluded=n_permutations - len(null_t_ratios),
        interrupted=interrupted,
    )

    if result.n_excluded > 0:
        warnings.warn(
            f"{result.n_excluded} of {n_permutations} permutations failed or did not converge and were excluded",
            RuntimeWarning,
            stacklevel=2,
        )

    if verbose:
        print(f"[OK] {result.n_valid} valid permutations, {result.n_excluded} excluded")
        print(f"[STATS] Null t-ratio mean: {np.mean(result.null_t_ratios):.4f}, p = {result.pvalue:.4f}")

    return result
