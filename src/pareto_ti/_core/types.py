# src/pareto_ti/_core/types.py
"""
Canonical type definitions for pareto_ti configuration and return structures.

THIS IS THE SINGLE SOURCE OF TRUTH FOR CONFIGURATION AND RESULT SCHEMAS.

Developer Notes:
    1. Configuration models are frozen and reject unknown keys
    2. Result containers for fits live in ``_core.utils.fit_results`` (dataclasses
       holding numpy arrays); this module holds the tabular row schemas
    3. Run: `python -c "from pareto_ti._core.types import PCHAConfig; print(PCHAConfig.model_fields.keys())"`

Usage:
    from pareto_ti._core.types import PCHAConfig, EnrichmentConfig

    # Validate a loose option dict:
    params = PCHAConfig.model_validate({"relaxation": 0.1, "max_iter": 1000})

    # Access with autocomplete:
    params.conv_crit
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# ENUMS
# =============================================================================


class InitMethod(str, Enum):
    """Initialization strategy for PCHA vertices."""

    FURTHEST_SUM = "furthest_sum"
    RANDOM = "random"


class DistanceMetric(str, Enum):
    """Observation-to-vertex proximity measure.

    Attributes
    ----------
    EUCLIDEAN : str
        Euclidean distance in feature space.
    ARCHETYPE_WEIGHT : str
        ``1 - weight`` from the fitted weight matrix (closer = smaller).
    """

    EUCLIDEAN = "euclidean"
    ARCHETYPE_WEIGHT = "archetype_weight"


class FDRMethod(str, Enum):
    """FDR correction methods."""

    BENJAMINI_HOCHBERG = "benjamini_hochberg"
    BONFERRONI = "bonferroni"


class FDRScope(str, Enum):
    """Scope for FDR correction."""

    GLOBAL = "global"
    PER_ARCHETYPE = "per_archetype"
    NONE = "none"


class TestDirection(str, Enum):
    """Statistical test direction."""

    __test__ = False  # not a pytest test class

    TWO_SIDED = "two-sided"
    GREATER = "greater"
    LESS = "less"


# =============================================================================
# CONFIGURATION MODELS
# =============================================================================


class PCHAConfig(BaseModel):
    """Parameters of a single polytope fit.

    Attributes
    ----------
    relaxation : float
        Relaxation delta. 0 keeps vertices inside the convex hull of the data;
        delta > 0 lets each vertex scale by a factor in [1 - delta, 1 + delta]
        about the data centroid.
    conv_crit : float
        SSE decrease per iteration, as a fraction of the total sum of squares,
        below which the fit is considered converged.
    max_iter : int
        Maximum number of outer PCHA iterations.
    init : InitMethod
        'furthest_sum' (default) or 'random' seeding of vertices.
    max_volume_dim : int
        Largest dimension in which exact hull volumes (t-ratio) are computed.
        The default of 7 allows up to 8 vertices.

    Examples
    --------
    >>> params = PCHAConfig(relaxation=0.05, max_iter=1000)
    >>> params.init
    <InitMethod.FURTHEST_SUM: 'furthest_sum'>
    """

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=False)

    relaxation: float = Field(default=0.0, ge=0.0, lt=1.0)
    conv_crit: float = Field(default=1e-6, gt=0.0)
    max_iter: int = Field(default=500, ge=1)
    init: InitMethod = Field(default=InitMethod.FURTHEST_SUM)
    max_volume_dim: int = Field(default=7, ge=1)


class ResamplingConfig(BaseModel):
    """Parameters shared by bootstrap and permutation resampling.

    Attributes
    ----------
    n_bootstrap : int
        Number of subsampling refits per vertex count.
    sample_fraction : float
        Fraction of observations drawn (without replacement) per subsample.
    n_permutations : int
        Number of column-permuted refits for the t-ratio null.
    n_jobs : int
        Worker count for joblib. -1 uses all cores, 1 runs in-process.
    seed : int
        Master seed. Per-iteration seeds are derived from it by index.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    n_bootstrap: int = Field(default=20, ge=1)
    sample_fraction: float = Field(default=0.9, gt=0.0, le=1.0)
    n_permutations: int = Field(default=100, ge=1)
    n_jobs: int = Field(default=1)
    seed: int = Field(default=42, ge=0)

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """Zero workers is meaningless for joblib."""
        if v == 0:
            raise ValueError("n_jobs must be a positive integer or negative (joblib convention), not 0")
        return v


class EnrichmentConfig(BaseModel):
    """Configuration for the near-vs-far feature enrichment test.

    Attributes
    ----------
    near_fraction : float
        Fraction of eligible observations nearest each vertex forming the
        "near" group. Default: 0.1 (10%).
    distance_cutoff : float | None
        Observations farther than this from every vertex are excluded.
    test_method : str
        Rank-based two-group test. Default: 'mannwhitneyu'.
    test_direction : TestDirection
        'two-sided', 'greater' or 'less'.
    fdr_method : FDRMethod
        Multiple testing correction method.
    fdr_scope : FDRScope
        'global', 'per_archetype' or 'none'.
    alpha : float
        Significance threshold on corrected p-values.
    min_effect : float
        Minimum absolute mean difference when summarizing.
    min_observations : int
        Minimum observations in each group for a vertex to be tested.

    Examples
    --------
    >>> config = EnrichmentConfig(near_fraction=0.15, fdr_scope="per_archetype")
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    near_fraction: float = Field(default=0.1, gt=0.0, lt=1.0)
    distance_cutoff: float | None = Field(default=None, gt=0.0)
    test_method: str = Field(default="mannwhitneyu", pattern=r"^(mannwhitneyu|wilcoxon|ranksum)$")
    test_direction: TestDirection = Field(default=TestDirection.TWO_SIDED)
    fdr_method: FDRMethod = Field(default=FDRMethod.BENJAMINI_HOCHBERG)
    fdr_scope: FDRScope = Field(default=FDRScope.GLOBAL)
    alpha: float = Field(default=0.05, gt=0.0, lt=1.0)
    min_effect: float = Field(default=0.0, ge=0.0)
    min_observations: int = Field(default=5, ge=1)


class AnalysisConfig(BaseModel):
    """Complete, validated configuration for a Pareto task inference run.

    Replaces loose option dictionaries. Each section can be passed on its own
    to the function that consumes it.

    Examples
    --------
    >>> config = AnalysisConfig.model_validate(
    ...     {"fit": {"relaxation": 0.1}, "resampling": {"n_bootstrap": 50}, "distance_metric": "euclidean"}
    ... )
    >>> config.fit.relaxation
    0.1
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    fit: PCHAConfig = Field(default_factory=PCHAConfig)
    resampling: ResamplingConfig = Field(default_factory=ResamplingConfig)
    distance_metric: DistanceMetric = Field(default=DistanceMetric.EUCLIDEAN)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)


def resolve_fit_params(fit_params: PCHAConfig | dict[str, Any] | None = None, **overrides: Any) -> PCHAConfig:
    """Build a PCHAConfig from a config, a dict, or nothing, then apply overrides.

    ``None`` values in ``overrides`` are ignored so callers can forward their
    optional keyword arguments unchanged.
    """
    if fit_params is None:
        base: dict[str, Any] = {}
    elif isinstance(fit_params, PCHAConfig):
        base = fit_params.model_dump()
    elif isinstance(fit_params, dict):
        base = dict(fit_params)
    else:
        raise TypeError(f"fit_params must be a PCHAConfig, dict or None, got {type(fit_params).__name__}")

    base.update({key: value for key, value in overrides.items() if value is not None})
    return PCHAConfig.model_validate(base)


# =============================================================================
# RESULT ROW SCHEMAS
# =============================================================================


class EnrichmentResult(BaseModel):
    """Single (archetype, feature) enrichment test result.

    Returned as rows in ``test_archetype_feature_associations()``.

    Attributes
    ----------
    feature : str
        Feature (gene, gene set, covariate) name.
    archetype : str
        Archetype label, e.g. 'archetype_1'.
    n_near : int
        Observations in the near-vertex group.
    n_far : int
        Observations in the comparison group.
    mean_near : float
        Mean feature value near the vertex.
    mean_far : float
        Mean feature value in the comparison group.
    mean_diff : float
        Effect size, ``mean_near - mean_far``.
    distance_correlation : float
        Spearman correlation between the feature and distance to the vertex.
        Negative values mean the feature decreases away from the vertex.
    statistic : float
        Mann-Whitney U statistic.
    pvalue : float
        Raw p-value.
    direction : str
        'higher' or 'lower' near the vertex.
    fdr_pvalue : float | None
        Corrected p-value (after ``apply_fdr_correction``).
    significant : bool | None
        Whether ``fdr_pvalue < alpha``.
    """

    feature: str
    archetype: str
    n_near: int = Field(..., ge=0)
    n_far: int = Field(..., ge=0)
    mean_near: float
    mean_far: float
    mean_diff: float
    distance_correlation: float
    statistic: float
    pvalue: float = Field(..., ge=0, le=1)
    direction: str = Field(..., pattern=r"^(higher|lower)$")
    fdr_pvalue: float | None = Field(default=None, ge=0, le=1)
    significant: bool | None = Field(default=None)

    model_config = {"extra": "allow"}


# =============================================================================
# ADATA MODIFICATIONS REFERENCE
# =============================================================================


class AnnDataKeys:
    """Reference for keys stored in AnnData by ``pareto_ti.tl`` functions.

    This is a documentation class, not a runtime type.

    Usage:
        >>> from pareto_ti._core.types import AnnDataKeys
        >>> print(AnnDataKeys.describe())
    """

    # Input (from external PCA)
    X_PCA = "X_pca"  # adata.obsm

    # fit_archetypes() stores:
    ARCHETYPE_COORDINATES = "archetype_coordinates"  # adata.uns, (n_archetypes, n_dims)
    ARCHETYPAL_ANALYSIS = "archetypal_analysis"  # adata.uns, dict of fit diagnostics
    CELL_ARCHETYPE_WEIGHTS = "cell_archetype_weights"  # adata.obsm, (n_cells, n_archetypes)

    # archetypal_coordinates() stores:
    ARCHETYPE_DISTANCES = "archetype_distances"  # adata.obsm, (n_cells, n_archetypes)

    # assign_archetypes() stores:
    ARCHETYPES = "archetypes"  # adata.obs, Categorical

    # select_n_archetypes() / bootstrap_archetypes() / t_ratio_significance() store:
    ARCHETYPE_SELECTION = "archetype_selection"  # adata.uns, DataFrame indexed by k
    ARCHETYPE_BOOTSTRAP = "archetype_bootstrap"  # adata.uns, long DataFrame of aligned positions
    T_RATIO = "t_ratio"  # adata.uns, float
    T_RATIO_SIGNIFICANCE = "t_ratio_significance"  # adata.uns, dict

    @classmethod
    def describe(cls) -> str:
        """Return all AnnData keys and their locations."""
        return """
AnnData Storage Locations:
==========================

adata.uns (unstructured):
  - 'archetype_coordinates': (n_archetypes, n_dims) vertex positions
  - 'archetypal_analysis': dict with variance explained, t-ratio, convergence
  - 'archetype_selection': DataFrame of model selection metrics per k
  - 'archetype_bootstrap': DataFrame of aligned bootstrap vertex positions
  - 't_ratio': float
  - 't_ratio_significance': dict with observed t-ratio, null t-ratios, p-value

adata.obsm (cell-level matrices):
  - 'cell_archetype_weights': (n_cells, n_archetypes) convex weights
  - 'archetype_distances': (n_cells, n_archetypes) distances

adata.obs (cell annotations):
  - 'archetypes': Categorical archetype assignments
"""


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

ENRICHMENT_REQUIRED_COLUMNS = ["feature", "archetype", "pvalue", "mean_diff", "direction"]


def validate_enrichment_results(df: Any, strict: bool = False) -> bool:
    """Validate an enrichment results DataFrame.

    Parameters
    ----------
    df : pd.DataFrame
        Output of ``test_archetype_feature_associations()``.
    strict : bool, default: False
        Also validate every row against ``EnrichmentResult``.

    Raises
    ------
    ValueError
        If required columns are missing.
    pydantic.ValidationError
        If ``strict`` and a row does not match the schema.
    """
    missing = set(ENRICHMENT_REQUIRED_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns for enrichment results: {missing}")
    if strict:
        for record in df.to_dict(orient="records"):
            EnrichmentResult.model_validate(record)
    return True
