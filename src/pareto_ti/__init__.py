"""pareto_ti: Pareto task inference by archetypal analysis.

Fits a minimal enclosing polytope ("archetypes") to a low-dimensional
embedding, selects its number of vertices, checks vertex stability by
subsampling, tests the shape against a permutation null (t-ratio) and finds
the features enriched near each vertex.

The package can be imported as `import pareto_ti as pti` and provides:
- High-level AnnData API: pti.pp, pti.tl
- Core implementations: pti._core (fitting, resampling, attribution, enrichment)
- Direct access to the core functions: pti.fit_pcha, pti.select_n_archetypes, pti.attribute, etc.
"""

from . import _core, pp, tl
from ._core.exceptions import (
    DegenerateInputError,
    DimensionalityTooHighError,
    KeyMismatchError,
    NonConvergenceWarning,
    ParetoTIError,
    VolumeComputationTooExpensiveError,
)
from ._core.types import AnalysisConfig, AnnDataKeys, EnrichmentConfig, PCHAConfig, ResamplingConfig
from ._core.utils import (
    BootstrapResult,
    FitResult,
    ModelSelectionReport,
    NullDistribution,
    align_archetypes,
    apply_fdr_correction,
    attribute,
    bin_observations_by_archetype,
    bootstrap_archetypes,
    compare_archetypal_recovery,
    compute_t_ratio,
    enrich,
    fit_pcha,
    permutation_test,
    quality,
    select_n_archetypes,
    summarize_enrichment,
)

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "pp",
    "tl",
    # Core modules
    "_core",
    # Fitting and diagnostics
    "fit_pcha",
    "quality",
    "compute_t_ratio",
    "select_n_archetypes",
    "bootstrap_archetypes",
    "permutation_test",
    "align_archetypes",
    "compare_archetypal_recovery",
    # Attribution and enrichment
    "attribute",
    "bin_observations_by_archetype",
    "enrich",
    "apply_fdr_correction",
    "summarize_enrichment",
    # Results
    "FitResult",
    "BootstrapResult",
    "NullDistribution",
    "ModelSelectionReport",
    # Configuration
    "PCHAConfig",
    "ResamplingConfig",
    "EnrichmentConfig",
    "AnalysisConfig",
    "AnnDataKeys",
    # Errors
    "ParetoTIError",
    "DegenerateInputError",
    "VolumeComputationTooExpensiveError",
    "DimensionalityTooHighError",
    "KeyMismatchError",
    "NonConvergenceWarning",
]
