"""Tools for archetypal analysis."""

from .archetypal import archetypal_coordinates, assign_archetypes, fit_archetypes
from .selection import bootstrap_archetypes, select_n_archetypes, t_ratio_significance
from .statistical import feature_associations
from .workflow import pareto_analysis

__all__ = [
    "fit_archetypes",
    "archetypal_coordinates",
    "assign_archetypes",
    "select_n_archetypes",
    "bootstrap_archetypes",
    "t_ratio_significance",
    "feature_associations",
    "pareto_analysis",
]
