# Principal Convex Hull Analysis after Morup & Hansen (2012), following the py_pcha
# formulation used in the Krishnaswamy lab AAnet examples, rewritten on plain ndarrays.
"""Principal Convex Hull Analysis (PCHA) / Archetypal Analysis.

=== MODULE API INVENTORY ===

MAIN FUNCTIONS:
├── furthest_sum(K, noc, i, exclude=None) -> list[int]
│   └── Purpose: Furthest sum seeding of candidate archetypes
│   └── Inputs: K(np.ndarray, [dimensions, examples] data matrix), noc(int), i(int, start observation), exclude(list[int])
│   └── Outputs: list[int] indices of selected observations
│
├── PCHA(X, noc, delta=0.0, conv_crit=1e-6, maxiter=500, init="furthest_sum", rng=None, verbose=False) -> tuple
│   └── Purpose: Alternating projected-gradient optimisation of S (weights) and C (construction weights)
│   └── Inputs: X(np.ndarray, [dimensions, examples], centred), noc(int), delta(float, relaxation)
│   └── Outputs: Tuple(XC archetypes [d, k], S [k, n], C [n, k], SSE, varexpl, n_iter, converged)
│
├── fit_pcha(observations, n_archetypes, *, ...) -> FitResult
│   └── Purpose: Validated entry point returning an immutable FitResult
│   └── Side Effects: NonConvergenceWarning when max_iter is hit
│
└── check_observations(observations, n_archetypes) -> np.ndarray
    └── Purpose: Fail fast on degenerate input before any optimisation

DATA FORMAT REQUIREMENTS:
├── PCHA works on X as [dimensions, examples] (transposed from the usual layout)
├── fit_pcha takes observations as [examples, dimensions] and transposes internally
└── Matrix conventions: S[noc, examples], C[examples, noc]
"""

import warnings
from datetime import datetime as dt

import numpy as np
import pandas as pd
from scipy.spatial import QhullError

from ..exceptions import DegenerateInputError, NonConvergenceWarning, VolumeComputationTooExpensiveError
from ..types import InitMethod, PCHAConfig, resolve_fit_params
from .fit_results import FitResult
from .shape_quality import compute_t_ratio as _compute_t_ratio

EPS = np.finfo(float).eps
VAREXPL_STOP = 0.9999
MU_MAX = 1e10
MAX_HALVINGS = 60
# allowed SSE increase per step, as a fraction of SST
ACCEPT_TOL = 1e-9


def furthest_sum(K, noc, i, exclude=None):
    """Furthest sum algorithm, to efficiently generate initial seed/archetypes.

    Note: Commonly data is formatted to have shape (examples, dimensions).
    This function takes input of the transposed shape, (dimensions, examples).

    Parameters
    ----------
    K : np.ndarray
        Data matrix, shape (dimensions, examples).
    noc : int
        Number of candidate archetypes to extract.
    i : int
        Initial observation used to start the furthest sum.
    exclude : list[int] | None
        Observations that can not be used as candidates.

    Returns
    -------
    list[int]
        The extracted candidate archetypes. Ties pick the lowest index.
    """
    n_examples = K.shape[1]
    selected = [int(i)]
    if noc == 1:
        return selected

    available = np.ones(n_examples, dtype=bool)
    if exclude is not None:
        available[list(exclude)] = False
    available[i] = False

    Kt2 = np.sum(K**2, axis=0)

    def dist_to(j):
        return np.sqrt(np.maximum(Kt2 - 2 * (K[:, j] @ K) + Kt2[j], 0.0))

    sum_dist = np.zeros(n_examples)
    ind_t = int(i)
    # first noc - 1 steps grow the set, the remaining 10 swap out the oldest pick
    for k in range(1, noc + 11):
        if k > noc - 1:
            oldest = selected.pop(0)
            sum_dist -= dist_to(oldest)
            available[oldest] = True
        t = np.flatnonzero(available)
        sum_dist += dist_to(ind_t)
        ind_t = int(t[np.argmax(sum_dist[t])])
        selected.append(ind_t)
        available[ind_t] = False

    return selected


def _accepted(SSE, SSE_old, SST):
    """Step acceptance: SSE may not grow by more than round-off relative to SST."""
    return SSE <= SSE_old + ACCEPT_TOL * SST


def _S_update(S, XCtX, CtXtXC, muS, SST, SSE, niter):
    """Update S for niter projected-gradient steps."""
    noc, J = S.shape
    SSt = S @ S.T
    for _ in range(niter):
        SSE_old = SSE
        g = (CtXtXC @ S - XCtX) / (SST / J)
        g = g - np.sum(g * S, axis=0)

        S_old = S
        for _ in range(MAX_HALVINGS):
            S = np.clip(S_old - g * muS, 0, None)
            S = S / (np.sum(S, axis=0) + EPS)
            SSt = S @ S.T
            SSE = SST - 2 * np.sum(XCtX * S) + np.sum(CtXtXC * SSt)
            if _accepted(SSE, SSE_old, SST):
                muS = min(muS * 1.2, MU_MAX)
                break
            muS = muS / 2
        else:
            # no descent step left, keep the previous weights
            S, SSE = S_old, SSE_old
            SSt = S @ S.T
            muS = 1.0
            break

    return S, SSE, muS, SSt


def _C_update(X, XSt, XC, SSt, C, delta, muC, mualpha, SST, SSE, niter=1):
    """Update C (and the relaxation scale alphaC when delta > 0) for niter steps."""
    J = C.shape[0]

    if delta != 0:
        alphaC = np.sum(C, axis=0)
        C = C / alphaC

    XtXSt = X.T @ XSt
    CtXtXC = XC.T @ XC

    for _ in range(niter):
        # Update C
        SSE_old = SSE
        g = (X.T @ (XC @ SSt) - XtXSt) / SST

        if delta != 0:
            g = g * alphaC
        g = g - np.sum(g * C, axis=0)

        C_old, XC_old, CtXtXC_old = C, XC, CtXtXC
        for _ in range(MAX_HALVINGS):
            C = np.clip(C_old - muC * g, 0, None)
            C = C / (np.sum(C, axis=0) + EPS)

            Ct = C * alphaC if delta != 0 else C

            XC = X @ Ct
            CtXtXC = XC.T @ XC
            SSE = SST - 2 * np.sum(XC * XSt) + np.sum(CtXtXC * SSt)

            if _accepted(SSE, SSE_old, SST):
                muC = min(muC * 1.2, MU_MAX)
                break
            muC = muC / 2
        else:
            C, XC, CtXtXC, SSE = C_old, XC_old, CtXtXC_old, SSE_old
            muC = 1.0

        # Update alphaC
        SSE_old = SSE
        if delta != 0:
            g = (np.diag(CtXtXC @ SSt) / alphaC - np.sum(C * XtXSt, axis=0)) / (SST * J)
            alphaC_old = alphaC
            for _ in range(MAX_HALVINGS):
                alphaC = np.clip(alphaC_old - mualpha * g, 1 - delta, 1 + delta)

                XCt = XC * (alphaC / alphaC_old)
                CtXtXC_t = XCt.T @ XCt
                SSE = SST - 2 * np.sum(XCt * XSt) + np.sum(CtXtXC_t * SSt)

                if _accepted(SSE, SSE_old, SST):
                    mualpha = min(mualpha * 1.2, MU_MAX)
                    XC = XCt
                    CtXtXC = CtXtXC_t
                    break
                mualpha = mualpha / 2
            else:
                alphaC, SSE = alphaC_old, SSE_old
                mualpha = 1.0

    if delta != 0:
        C = C * alphaC

    return C, SSE, muC, mualpha, CtXtXC, XC


def PCHA(X, noc, delta=0.0, conv_crit=1e-6, maxiter=500, init="furthest_sum", rng=None, verbose=False):
    """Return archetypes of dataset.

    Note: Commonly data is formatted to have shape (examples, dimensions).
    This function takes input and returns output of the transposed shape,
    (dimensions, examples). ``X`` is expected to be centred so that the
    relaxation scales vertices about the data centroid.

    Parameters
    ----------
    X : np.ndarray
        Data matrix in which to find archetypes, shape (dimensions, examples).
    noc : int
        Number of archetypes to find.
    delta : float
        Relaxation. 0 keeps archetypes inside the convex hull of X.
    conv_crit : float
        SSE change per iteration, as a fraction of the total sum of squares
        SST, below which the fit is converged.
    maxiter : int
        Maximum number of outer iterations.
    init : str
        'furthest_sum' or 'random'.
    rng : np.random.Generator | None
        Source of all randomness in the fit.
    verbose : bool
        Print an iteration table.

    Returns
    -------
    XC : np.ndarray
        d x noc feature matrix (i.e. XC = X @ C forming the archetypes).
    S : np.ndarray
        noc x n matrix, S >= 0, columns sum to 1.
    C : np.ndarray
        n x noc matrix, C >= 0, columns sum to 1 (within [1 - delta, 1 + delta] if relaxed).
    SSE : float
        Sum of Squared Errors.
    varexpl : float
        Fraction of variation explained by the model.
    n_iter : int
        Outer iterations performed.
    converged : bool
        False when maxiter was reached before the convergence criterion.
    """
    if rng is None:
        rng = np.random.default_rng()

    N, M = X.shape
    SST = float(np.sum(X * X))

    if noc == 1:
        # the single best vertex is the centroid
        C = np.full((M, 1), 1.0 / M)
        XC = X @ C
        S = np.ones((1, M))
        SSE = float(np.sum((X - XC) ** 2))
        varexpl = (SST - SSE) / SST if SST > 0 else 0.0
        if verbose:
            print(f"[OK] 1 archetype: centroid, explained variance {varexpl:.4f}")
        return XC, S, C, SSE, float(varexpl), 0, True

    # Initialize C
    if InitMethod(init) is InitMethod.FURTHEST_SUM:
        i = furthest_sum(X, noc, int(rng.integers(M)))
    else:
        _, unique_idx = np.unique(X.T, axis=0, return_index=True)
        i = sorted(rng.choice(np.sort(unique_idx), size=noc, replace=False).tolist())

    C = np.zeros((M, noc))
    C[i, np.arange(noc)] = 1.0
    XC = X @ C

    muS, muC, mualpha = 1.0, 1.0, 1.0

    # Initialise S
    XCtX = XC.T @ X
    CtXtXC = XC.T @ XC
    S = rng.exponential(size=(noc, M))
    S = S / np.sum(S, axis=0)
    SSt = S @ S.T
    SSE = SST - 2 * np.sum(XCtX * S) + np.sum(CtXtXC * SSt)
    S, SSE, muS, SSt = _S_update(S, XCtX, CtXtXC, muS, SST, SSE, 25)

    # Set PCHA parameters
    iter_ = 0
    dSSE = np.inf
    t1 = dt.now()
    varexpl = (SST - SSE) / SST

    if verbose:
        print("\nPrincipal Convex Hull Analysis / Archetypal Analysis")
        print("A " + str(noc) + " component model will be fitted")

    dheader = "%10s | %10s | %10s | %10s | %10s | %10s | %10s | %10s" % (
        "Iteration",
        "Expl. var.",
        "Cost func.",
        "Delta SSEf.",
        "muC",
        "mualpha",
        "muS",
        " Time(s)   ",
    )
    dline = "-----------+------------+------------+-------------+------------+------------+------------+------------+"

    while np.abs(dSSE) >= conv_crit * SST and iter_ < maxiter and varexpl < VAREXPL_STOP:
        if verbose and iter_ % 100 == 0:
            print(dline)
            print(dheader)
            print(dline)
        told = t1
        iter_ += 1
        SSE_old = SSE

        # C (and alpha) update
        XSt = X @ S.T
        C, SSE, muC, mualpha, CtXtXC, XC = _C_update(X, XSt, XC, SSt, C, delta, muC, mualpha, SST, SSE, 10)

        # S update
        XCtX = XC.T @ X
        S, SSE, muS, SSt = _S_update(S, XCtX, CtXtXC, muS, SST, SSE, 10)

        # Evaluate and display iteration
        dSSE = SSE_old - SSE
        t1 = dt.now()
        varexpl = (SST - SSE) / SST
        if verbose and iter_ % 10 == 0:
            print(
                "%10.0f | %10.4f | %10.4e | %10.4e | %10.4e | %10.4e | %10.4e | %10.4f"
                % (iter_, varexpl, SSE, dSSE / SST, muC, mualpha, muS, (t1 - told).total_seconds())
            )

    converged = bool(np.abs(dSSE) < conv_crit * SST or varexpl >= VAREXPL_STOP or iter_ < maxiter)

    varexpl = (SST - SSE) / SST
    if verbose:
        print(dline)
        print(f"[OK] {iter_} iterations, explained variance {varexpl:.4f}, converged={converged}")

    # Sort components according to importance (stable, so ties keep the lower index)
    ind = np.argsort(-np.sum(S, axis=1), kind="stable")
    S = S[ind, :]
    C = C[:, ind]
    XC = XC[:, ind]

    return XC, S, C, float(SSE), float(varexpl), iter_, converged


def check_observations(observations, n_archetypes: int) -> np.ndarray:
    """Validate an observation matrix for a k-vertex fit.

    Parameters
    ----------
    observations : np.ndarray | pd.DataFrame
        Data matrix, shape (n, d).
    n_archetypes : int
        Requested number of vertices.

    Returns
    -------
    np.ndarray
        Float copy of the data.

    Raises
    ------
    DegenerateInputError
        Non-finite values, wrong shape, d + 1 > n, k < 1, or more vertices than
        distinct observations.
    """
    if isinstance(observations, pd.DataFrame):
        X = observations.to_numpy(dtype=float)
    else:
        X = np.array(observations, dtype=float)

    if X.ndim != 2:
        raise DegenerateInputError(f"observations must be a 2-D (n, d) matrix, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise DegenerateInputError("observations contain NaN or infinite values")

    n_obs, n_dims = X.shape
    if n_dims + 1 > n_obs:
        raise DegenerateInputError(f"Need at least d + 1 = {n_dims + 1} observations, got {n_obs}")
    if int(n_archetypes) != n_archetypes or n_archetypes < 1:
        raise DegenerateInputError(f"n_archetypes must be a positive integer, got {n_archetypes}")

    n_distinct = np.unique(X, axis=0).shape[0]
    if n_archetypes > n_distinct:
        raise DegenerateInputError(
            f"n_archetypes={n_archetypes} exceeds the number of distinct observations ({n_distinct})"
        )

    return X


def _fit(X, n_archetypes, params: PCHAConfig, seed=None, compute_t_ratio=True, sample_indices=None, verbose=False):
    """Fit on an already validated matrix. Emits no warnings (used by batch workers)."""
    rng = np.random.default_rng(seed)
    centre = X.mean(axis=0)
    Xc = (X - centre).T

    XC, S, C, SSE, varexpl, n_iter, converged = PCHA(
        Xc,
        n_archetypes,
        delta=params.relaxation,
        conv_crit=params.conv_crit,
        maxiter=params.max_iter,
        init=params.init,
        rng=rng,
        verbose=verbose,
    )
    archetypes = XC.T + centre

    t_ratio = None
    if compute_t_ratio and n_archetypes >= 2:
        try:
            t_ratio = _compute_t_ratio(X, archetypes, max_volume_dim=params.max_volume_dim)
        except VolumeComputationTooExpensiveError:
            t_ratio = None
        except QhullError as e:
            warnings.warn(f"t-ratio skipped, Qhull failed on a degenerate hull: {e}", stacklevel=3)
            t_ratio = None

    return FitResult(
        archetypes=archetypes,
        weights=S.T,
        construction_weights=C,
        sse=SSE,
        variance_explained=varexpl,
        t_ratio=t_ratio,
        n_iter=n_iter,
        converged=converged,
        relaxation=params.relaxation,
        seed=seed,
        sample_indices=sample_indices,
    )


def fit_pcha(
    observations,
    n_archetypes: int,
    *,
    relaxation: float | None = None,
    conv_crit: float | None = None,
    max_iter: int | None = None,
    init: str | None = None,
    seed: int | None = None,
    fit_params: PCHAConfig | dict | None = None,
    compute_t_ratio: bool = True,
    max_volume_dim: int | None = None,
    verbose: bool = False,
) -> FitResult:
    """Fit a k-vertex polytope (archetypes) to an observation matrix with PCHA.

    Explicit keyword arguments override values in ``fit_params``. Defaults
    are those of ``PCHAConfig`` (relaxation 0, conv_crit 1e-6, max_iter 500,
    furthest-sum initialisation, max_volume_dim 7).

    Parameters
    ----------
    observations : np.ndarray | pd.DataFrame
        Data matrix, shape (n, d), e.g. principal component scores.
    n_archetypes : int
        Number of vertices k.
    relaxation : float | None
        Relaxation delta in [0, 1).
    conv_crit : float | None
        SSE change per iteration, relative to the total sum of squares, defining convergence.
    max_iter : int | None
        Maximum number of outer iterations.
    init : str | None
        'furthest_sum' or 'random'.
    seed : int | None
        Seed for initialisation. Same seed and inputs give identical results.
    fit_params : PCHAConfig | dict | None
        Base parameters.
    compute_t_ratio : bool, default: True
        Compute the t-ratio diagnostic (skipped silently when too expensive).
    max_volume_dim : int | None
        Largest dimension for exact hull volumes.
    verbose : bool, default: False
        Print the iteration table.

    Returns
    -------
    FitResult
        Immutable fit with archetypes (k, d), weights (n, k) and diagnostics.

    Raises
    ------
    DegenerateInputError
        If the input can not support a k-vertex fit.

    Warns
    -----
    NonConvergenceWarning
        If ``max_iter`` was reached before convergence.

    Examples
    --------
    >>> fit = fit_pcha(X, n_archetypes=3, seed=0)
    >>> fit.archetypes.shape
    (3, 2)
    >>> fit.weights.sum(axis=1)  # all ones
    """
    params = resolve_fit_params(
        fit_params,
        relaxation=relaxation,
        conv_crit=conv_crit,
        max_iter=max_iter,
        init=init,
        max_volume_dim=max_volume_dim,
    )
    X = check_observations(observations, n_archetypes)

    result = _fit(X, int(n_archetypes), params, seed=seed, compute_t_ratio=compute_t_ratio, verbose=verbose)

    if not result.converged:
        warnings.warn(
            f"PCHA with {n_archetypes} archetypes reached max_iter={params.max_iter} before converging "
            f"(conv_crit={params.conv_crit}); result is flagged converged=False",
            NonConvergenceWarning,
            stacklevel=2,
        )

    return result
