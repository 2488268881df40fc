# Attribution
from .analysis import (
    attribute,
    bin_observations_by_archetype,
    compare_archetypal_recovery,
    compute_archetype_distances,
    labels_from_assignments,
)
from .convex_synth_data import generate_convex_data
from .fit_results import BootstrapResult, FitResult, ModelSelectionReport, NullDistribution
from .model_selection import elbow_distances, select_n_archetypes
from .PCHA import PCHA, check_observations, fit_pcha, furthest_sum

# Resampling
from .resampling import align_archetypes, bootstrap_archetypes, derive_seeds, permutation_test
from .shape_quality import compute_t_ratio, hull_volume, quality, simplex_volume

# Enrichment
from .statistical_tests import (
    apply_fdr_correction,
    enrich,
    robust_mannwhitneyu_test,
    summarize_enrichment,
    test_archetype_feature_associations,
)

__all__ = [
    # Fitting
    "PCHA",
    "furthest_sum",
    "fit_pcha",
    "check_observations",
    "FitResult",
    # Shape quality
    "simplex_volume",
    "hull_volume",
    "compute_t_ratio",
    "quality",
    # Model selection
    "select_n_archetypes",
    "elbow_distances",
    "ModelSelectionReport",
    # Resampling
    "derive_seeds",
    "align_archetypes",
    "bootstrap_archetypes",
    "permutation_test",
    "BootstrapResult",
    "NullDistribution",
    # Attribution
    "compute_archetype_distances",
    "attribute",
    "bin_observations_by_archetype",
    "labels_from_assignments",
    "compare_archetypal_recovery",
    # Enrichment
    "robust_mannwhitneyu_test",
    "test_archetype_feature_associations",
    "apply_fdr_correction",
    "summarize_enrichment",
    "enrich",
    # Synthetic data
    "generate_convex_data",
]
