#!/usr/bin/env python
"""
WORKFLOW 02: Significance, Stability & Feature Enrichment
=========================================================

This workflow runs the full analysis for a chosen number of archetypes:
1. Fit the archetypes
2. Test the t-ratio against a column-permutation null
3. Measure vertex stability on subsamples
4. Compute cell-archetype distances and assignments
5. Find features enriched in the cells nearest each archetype

The enrichment DataFrame has columns:
- feature: Feature name (adata.var_names)
- archetype: Which archetype (archetype_1, archetype_2, ...)
- n_near / n_far: Sizes of the near and far groups
- mean_near / mean_far / mean_diff: Group means and their difference
- distance_correlation: Spearman correlation of the feature with distance to the archetype
- statistic / pvalue: Mann-Whitney U test
- fdr_pvalue / significant: After multiple testing correction
- direction: 'higher' or 'lower' near the archetype

Example usage:
    python WORKFLOW_02_SIGNIFICANCE_ENRICHMENT.py

Requirements:
    - pareto_ti
    - Data with PCA (any .h5ad with obsm['X_pca']); synthetic data otherwise
"""

from pathlib import Path

import anndata as ad

import pareto_ti as pti

# =============================================================================
# Configuration
# =============================================================================

data_path = Path("data/cells.h5ad")
n_archetypes = 3  # From WORKFLOW_01

config = pti.AnalysisConfig.model_validate(
    {
        "fit": {"relaxation": 0.0, "max_iter": 500},
        "resampling": {"n_bootstrap": 20, "n_permutations": 100, "n_jobs": -1, "seed": 42},
        "distance_metric": "euclidean",
        "enrichment": {"near_fraction": 0.1, "fdr_scope": "per_archetype", "alpha": 0.05},
    }
)

top_n_features = 5  # Features displayed per archetype

# =============================================================================
# Step 1: Load Data
# =============================================================================

if data_path.exists():
    adata = ad.read_h5ad(data_path)
else:
    print("No data file found, generating synthetic data...")
    adata = pti.pp.generate_synthetic(n_points=1500, n_dimensions=3, n_archetypes=n_archetypes, concentration=0.5)
print(f"  Shape: {adata.n_obs:,} cells x {adata.n_vars:,} features")

# =============================================================================
# Step 2: Full Analysis
# =============================================================================

results = pti.tl.pareto_analysis(adata, n_archetypes=n_archetypes, config=config)

significance = results["significance"]
stability = results["bootstrap"]
associations = results["associations"]

print("\nPolytope:")
print(f"  t-ratio: {significance.observed_t_ratio:.3f} (p = {significance.pvalue:.4f})")
print(f"  Mean vertex position variance: {stability.mean_position_variance:.4f}")
for label, variance in zip(results["fit"].labels, stability.position_variance, strict=False):
    print(f"    {label}: {variance:.4f}")

# =============================================================================
# Step 3: Top Features per Archetype
# =============================================================================

summary = pti.summarize_enrichment(associations, alpha=config.enrichment.alpha, top_n=top_n_features)
print(f"\nTop {top_n_features} enriched features per archetype:")
for archetype, group in summary.groupby("archetype"):
    print(f"\n  {archetype}:")
    for _, row in group.iterrows():
        print(f"    {row['feature']}: diff={row['mean_diff']:.2f}, fdr_p={row['fdr_pvalue']:.2e}")

# =============================================================================
# Step 4: Export Results
# =============================================================================

output_file = "feature_enrichment.csv"
associations.to_csv(output_file, index=False)

print("\n" + "=" * 70)
print("WORKFLOW 02 COMPLETE")
print("=" * 70)
print(f"  • {len(associations):,} feature-archetype tests, {int(associations['significant'].sum())} significant")
print(f"  • Exported to: {output_file}")
print("=" * 70)
