# Core implementation modules
# These are the actual implementations that power the high-level API

from pareto_ti._core import exceptions, types, utils

from pareto_ti._core.exceptions import (
    DegenerateInputError,
    DimensionalityTooHighError,
    KeyMismatchError,
    NonConvergenceWarning,
    ParetoTIError,
    VolumeComputationTooExpensiveError,
)
from pareto_ti._core.types import (
    AnalysisConfig,
    AnnDataKeys,
    EnrichmentConfig,
    EnrichmentResult,
    PCHAConfig,
    ResamplingConfig,
    validate_enrichment_results,
)
from pareto_ti._core.utils import (
    attribute,
    bootstrap_archetypes,
    enrich,
    fit_pcha,
    permutation_test,
    quality,
    select_n_archetypes,
)

__all__ = [
    "exceptions",
    "types",
    "utils",
    # Commonly used functions
    "fit_pcha",
    "quality",
    "select_n_archetypes",
    "bootstrap_archetypes",
    "permutation_test",
    "attribute",
    "enrich",
    # Configuration and validation
    "PCHAConfig",
    "ResamplingConfig",
    "EnrichmentConfig",
    "AnalysisConfig",
    "EnrichmentResult",
    "AnnDataKeys",
    "validate_enrichment_results",
    # Errors
    "ParetoTIError",
    "DegenerateInputError",
    "VolumeComputationTooExpensiveError",
    "DimensionalityTooHighError",
    "KeyMismatchError",
    "NonConvergenceWarning",
]
