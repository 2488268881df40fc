"""
Error and warning types raised by pareto_ti.

Validation errors (``DegenerateInputError``, ``KeyMismatchError``) are raised
before any optimization work starts. Volume errors are fatal only for the
t-ratio diagnostic; callers that fit polytopes keep the remaining diagnostics.
Non-convergence is soft: the fit is returned with ``converged=False`` and a
``NonConvergenceWarning`` is emitted.
"""


class ParetoTIError(Exception):
    """Base class for all pareto_ti errors."""


class DegenerateInputError(ParetoTIError, ValueError):
    """Too few observations (or distinct observations) for the requested fit."""


class VolumeComputationTooExpensiveError(ParetoTIError, ValueError):
    """Exact convex hull volume requested in too many dimensions."""


class DimensionalityTooHighError(VolumeComputationTooExpensiveError):
    """Permutation test needs exact volumes in too many dimensions."""


class KeyMismatchError(ParetoTIError, ValueError):
    """Observation identifiers of two tables do not align."""


class NonConvergenceWarning(UserWarning):
    """PCHA reached ``max_iter`` before the convergence criterion was met."""
