"""
Result containers for polytope fits and resampling runs
=======================================================

Every container is produced once by a fitting or resampling function and is
not modified afterwards. Numeric arrays are stored read-only.

Main Classes
------------
FitResult : One PCHA fit (vertices, weights, diagnostics)
BootstrapResult : Aligned subsample refits of a fixed-k polytope
NullDistribution : Permutation null of the t-ratio with an empirical p-value
ModelSelectionReport : Per-k metrics across a range of vertex counts

Examples
--------
>>> fit = fit_pcha(X, n_archetypes=3, seed=0)
>>> fit.to_frame()
>>> report = select_n_archetypes(X, k_range=range(1, 7))
>>> print(report.summary_report())
>>> report.save("results/selection.pkl")
"""

import pickle
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd


def archetype_labels(n_archetypes: int) -> list[str]:
    """Return ``['archetype_1', ..., 'archetype_k']``."""
    return [f"archetype_{j}" for j in range(1, n_archetypes + 1)]


def coordinate_labels(n_dims: int) -> list[str]:
    """Return coordinate column names ``['pc_0', ..., 'pc_{d-1}']``."""
    return [f"pc_{i}" for i in range(n_dims)]


def _readonly(array: np.ndarray | None) -> np.ndarray | None:
    if array is None:
        return None
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class FitResult:
    """A fitted polytope plus its scalar diagnostics.

    Attributes
    ----------
    archetypes : np.ndarray
        Vertex coordinates, shape (k, d).
    weights : np.ndarray
        Per-observation convex weights, shape (n, k). Non-negative, rows sum to 1.
    construction_weights : np.ndarray
        Vertices expressed over observations, shape (n, k). Columns sum to 1
        when ``relaxation == 0`` and to a value in [1 - delta, 1 + delta]
        otherwise (relative to the data centroid).
    sse : float
        Residual sum of squares of the reconstruction.
    variance_explained : float
        ``1 - sse / tss`` with the total sum of squares taken about the mean.
    t_ratio : float | None
        Polytope volume divided by data hull volume. ``None`` when k = 1 or
        when the exact volume was too expensive.
    n_iter : int
        Outer PCHA iterations performed.
    converged : bool
        False only when ``max_iter`` was reached before the tolerance.
    relaxation : float
        Relaxation delta used.
    seed : int | None
        Seed the fit was initialised with.
    sample_indices : np.ndarray | None
        Rows of the original matrix used for the fit (``None`` = all rows).
    """

    archetypes: np.ndarray
    weights: np.ndarray
    construction_weights: np.ndarray
    sse: float
    variance_explained: float
    t_ratio: float | None = None
    n_iter: int = 0
    converged: bool = True
    relaxation: float = 0.0
    seed: int | None = None
    sample_indices: np.ndarray | None = None

    def __post_init__(self):
        for name in ("archetypes", "weights", "construction_weights", "sample_indices"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))

    @property
    def n_archetypes(self) -> int:
        return self.archetypes.shape[0]

    @property
    def n_dims(self) -> int:
        return self.archetypes.shape[1]

    @property
    def n_observations(self) -> int:
        return self.weights.shape[0]

    @property
    def labels(self) -> list[str]:
        return archetype_labels(self.n_archetypes)

    def reorder(self, order) -> "FitResult":
        """Return a copy with vertices permuted so that new vertex ``j`` is old vertex ``order[j]``."""
        order = np.asarray(order, dtype=int)
        if sorted(order.tolist()) != list(range(self.n_archetypes)):
            raise ValueError(f"order must be a permutation of range({self.n_archetypes}), got {order.tolist()}")

        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["archetypes"] = self.archetypes[order]
        values["weights"] = self.weights[:, order]
        values["construction_weights"] = self.construction_weights[:, order]
        return FitResult(**values)

    def to_frame(self) -> pd.DataFrame:
        """Archetype coordinate table (rows = archetypes, columns = coordinates)."""
        return pd.DataFrame(self.archetypes, index=self.labels, columns=coordinate_labels(self.n_dims))

    def weights_frame(self, index=None) -> pd.DataFrame:
        """Observation x archetype weight table."""
        return pd.DataFrame(self.weights, index=index, columns=self.labels)

    def summary(self) -> dict[str, Any]:
        """Scalar diagnostics as a plain dict."""
        return {
            "n_archetypes": self.n_archetypes,
            "n_observations": self.n_observations,
            "n_dims": self.n_dims,
            "sse": float(self.sse),
            "variance_explained": float(self.variance_explained),
            "t_ratio": None if self.t_ratio is None else float(self.t_ratio),
            "n_iter": int(self.n_iter),
            "converged": bool(self.converged),
            "relaxation": float(self.relaxation),
            "seed": self.seed,
        }


@dataclass(frozen=True)
class BootstrapResult:
    """Subsample refits of a fixed-k polytope, aligned to a reference fit.

    Attributes
    ----------
    reference : FitResult
        Full-data fit every resample is aligned to.
    fits : list[FitResult]
        Valid resample fits with vertices reordered to match ``reference``.
    position_variance : np.ndarray
        Per-archetype variance of aligned vertex coordinates, averaged over
        coordinates, shape (k,). NaN when no resample was valid.
    n_requested : int
        Number of resamples requested.
    n_excluded : int
        Resamples that failed or did not converge.
    interrupted : bool
        True when the batch was stopped early by a keyboard interrupt.
    """

    reference: FitResult
    fits: list[FitResult]
    position_variance: np.ndarray
    n_requested: int
    n_excluded: int = 0
    interrupted: bool = False

    def __post_init__(self):
        object.__setattr__(self, "position_variance", _readonly(self.position_variance))

    @property
    def n_valid(self) -> int:
        return len(self.fits)

    @property
    def mean_position_variance(self) -> float:
        if np.all(np.isnan(self.position_variance)):
            return float("nan")
        return float(np.nanmean(self.position_variance))

    @property
    def aligned_archetypes(self) -> np.ndarray:
        """Stacked aligned vertices, shape (n_valid, k, d)."""
        if not self.fits:
            return np.empty((0, *self.reference.archetypes.shape))
        return np.stack([fit.archetypes for fit in self.fits])

    def to_frame(self) -> pd.DataFrame:
        """Long table of aligned coordinates.

        One row per (iteration, archetype) with ``pc_*`` coordinate columns,
        ``archetype``, ``iter`` (0 = reference), ``reference`` and
        ``mean_variance``.
        """
        columns = coordinate_labels(self.reference.n_dims)
        labels = self.reference.labels

        frames = [pd.DataFrame(self.reference.archetypes, columns=columns).assign(archetype=labels, iter=0)]
        for i, fit in enumerate(self.fits):
            frames.append(pd.DataFrame(fit.archetypes, columns=columns).assign(archetype=labels, iter=i + 1))

        df = pd.concat(frames, axis=0, ignore_index=True)
        df["reference"] = df["iter"] == 0
        df["archetype"] = pd.Categorical(df["archetype"], categories=labels)
        df["mean_variance"] = self.mean_position_variance
        return df


@dataclass(frozen=True)
class NullDistribution:
    """Permutation null distribution of the t-ratio.

    Attributes
    ----------
    observed_t_ratio : float
        t-ratio of the observed fit.
    null_t_ratios : np.ndarray
        t-ratios of the valid permuted refits.
    n_permutations : int
        Number of permutations requested.
    n_excluded : int
        Permutations that failed or did not converge.
    interrupted : bool
        True when the batch was stopped early by a keyboard interrupt.

    Examples
    --------
    >>> null = permutation_test(X, fit, n_permutations=200)
    >>> print(f"t-ratio {null.observed_t_ratio:.3f}, p = {null.pvalue:.4f}")
    """

    observed_t_ratio: float
    null_t_ratios: np.ndarray
    n_permutations: int
    n_excluded: int = 0
    interrupted: bool = False

    def __post_init__(self):
        object.__setattr__(self, "null_t_ratios", _readonly(np.asarray(self.null_t_ratios, dtype=float)))

    @property
    def n_valid(self) -> int:
        return len(self.null_t_ratios)

    @property
    def pvalue(self) -> float:
        """Smoothed empirical p-value ``(#(null >= observed) + 1) / (n_valid + 1)``."""
        n_extreme = int(np.sum(self.null_t_ratios >= self.observed_t_ratio))
        return (n_extreme + 1) / (self.n_valid + 1)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"permutation": np.arange(1, self.n_valid + 1), "t_ratio": self.null_t_ratios})

    def summary(self) -> dict[str, Any]:
        return {
            "observed_t_ratio": float(self.observed_t_ratio),
            "null_t_ratios": np.asarray(self.null_t_ratios).copy(),
            "pvalue": self.pvalue,
            "n_permutations": self.n_permutations,
            "n_valid": self.n_valid,
            "n_excluded": self.n_excluded,
            "interrupted": self.interrupted,
        }


@dataclass
class ModelSelectionReport:
    """Fits, stability and quality metrics across a range of vertex counts.

    Supports the choice of k; it does NOT pick one on its own. See
    ``suggest_n_archetypes()`` for the exposed heuristic.

    Attributes
    ----------
    summary_df : pd.DataFrame
        Indexed by ``k`` with columns ``variance_explained``,
        ``mean_variance_explained``, ``varexpl_ontop``, ``elbow_distance``,
        ``t_ratio``, ``mean_t_ratio``, ``mean_position_variance``,
        ``n_bootstrap_valid`` and ``n_excluded``.
    fits : dict[int, FitResult]
        Full-data fit per k.
    bootstraps : dict[int, BootstrapResult]
        Aligned subsample refits per k.
    params : dict
        Parameters of the run (sample fraction, seed, fit parameters).
    interrupted : bool
        True when the batch was stopped early by a keyboard interrupt.
    timestamp : str
        ISO format timestamp of when the report was created.

    Examples
    --------
    >>> report = select_n_archetypes(X, k_range=range(2, 8), n_bootstrap=20)
    >>> print(report.summary_report())
    >>> report.summary_df[["variance_explained", "varexpl_ontop"]]
    >>> k = report.suggest_n_archetypes()
    """

    summary_df: pd.DataFrame
    fits: dict[int, FitResult]
    bootstraps: dict[int, BootstrapResult]
    params: dict[str, Any] = field(default_factory=dict)
    interrupted: bool = False
    timestamp: str = field(default_factory=lambda: pd.Timestamp.now().isoformat())

    @property
    def k_values(self) -> list[int]:
        return [int(k) for k in self.summary_df.index]

    def suggest_n_archetypes(self, max_position_variance: float | None = None) -> int:
        """Heuristic choice of k: the variance-explained elbow, stepped down for stability.

        The elbow is the k whose (k, variance explained) point lies farthest
        from the chord joining the first and last k. When
        ``max_position_variance`` is given, the largest k not above the elbow
        whose mean vertex-position variance is within the bound is returned.

        Parameters
        ----------
        max_position_variance : float | None
            Upper bound on ``mean_position_variance`` for an acceptable k.

        Returns
        -------
        int
            Suggested number of archetypes.
        """
        df = self.summary_df
        elbow_k = int(df["elbow_distance"].idxmax())
        if max_position_variance is None:
            return elbow_k

        position_variance = df["mean_position_variance"].astype(float).fillna(np.inf)
        stable = df.index[(df.index <= elbow_k) & (position_variance <= max_position_variance)]
        if len(stable) == 0:
            return elbow_k
        return int(max(stable))

    def summary_report(self) -> str:
        """Generate a text summary for decision support.

        Returns
        -------
        str
            Formatted report with per-k variance explained, marginal gain,
            t-ratio and vertex-position variance.
        """
        df = self.summary_df
        report = []
        report.append(" ARCHETYPE NUMBER SELECTION")
        report.append("=" * 40)
        report.append(f"k tested: {self.k_values}")
        if self.params:
            report.append(
                f"Subsamples per k: {self.params.get('n_bootstrap', 'Unknown')}"
                f" (fraction {self.params.get('sample_fraction', 'Unknown')})"
            )

        report.append("\n[STATS] Per-k metrics:")
        for k, row in df.iterrows():
            t_ratio = "n/a" if pd.isna(row["t_ratio"]) else f"{row['t_ratio']:.3f}"
            ontop = "n/a" if pd.isna(row["varexpl_ontop"]) else f"{row['varexpl_ontop']:.4f}"
            position_var = "n/a" if pd.isna(row["mean_position_variance"]) else f"{row['mean_position_variance']:.4f}"
            report.append(
                f"  k={k}: R²={row['variance_explained']:.4f}"
                f" (+{ontop}), t-ratio={t_ratio}, position var={position_var}"
                f", valid={int(row['n_bootstrap_valid'])}, excluded={int(row['n_excluded'])}"
            )

        report.append(f"\nElbow (max distance to chord): k={self.suggest_n_archetypes()}")
        if self.interrupted:
            report.append("[WARNING] Run was interrupted; metrics use completed fits only")

        return "\n".join(report)

    def save(self, path: str | Path) -> None:
        """Save the report to a pickle file (parent directories are created)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "wb") as f:
            pickle.dump(self, f)

        print(f" Model selection report saved to {path}")

    @classmethod
    def load(cls, path: str | Path) -> "ModelSelectionReport":
        """Load a report saved with ``save()``."""
        with open(path, "rb") as f:
            results = pickle.load(f)

        print(f" Model selection report loaded from {path}")
        return results
