#!/usr/bin/env python
"""
WORKFLOW 01: Choosing the Number of Archetypes
==============================================

This workflow demonstrates how to choose k, the number of vertices of the
polytope enclosing the cells:
1. Load data with a low-dimensional embedding in adata.obsm['X_pca']
2. Fit PCHA for a range of k on the full data and on subsamples
3. Inspect variance explained, marginal gain, t-ratio and vertex stability
4. Fit the chosen k and store the archetypes

Output structure (ModelSelectionReport):
- report.summary_df: DataFrame indexed by k (also in adata.uns['archetype_selection'])
- report.fits: Full-data FitResult per k
- report.bootstraps: Subsample stability (BootstrapResult) per k

Example usage:
    python WORKFLOW_01_ARCHETYPE_SELECTION.py

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

# Data path - should have PCA already computed
data_path = Path("data/cells.h5ad")

n_dims = 5                     # Embedding dimensions used for fitting
k_range = range(1, 8)          # Numbers of archetypes to test
n_bootstrap = 10               # Subsamples per k
sample_fraction = 0.9          # Subsample size
n_jobs = -1                    # All cores
random_state = 42              # For reproducibility

# =============================================================================
# Step 1: Load Data
# =============================================================================

if data_path.exists():
    print(f"Loading {data_path}...")
    adata = ad.read_h5ad(data_path)
else:
    print("No data file found, generating synthetic data (4 archetypes)...")
    adata = pti.pp.generate_synthetic(n_points=2000, n_dimensions=n_dims, n_archetypes=4, noise=0.5)
print(f"  Shape: {adata.n_obs:,} cells x {adata.n_vars:,} features")
print(f"  Embedding: adata.obsm['X_pca'] with {adata.obsm['X_pca'].shape[1]} dims (using {n_dims})")

# =============================================================================
# Step 2: Evaluate k
# =============================================================================

report = pti.tl.select_n_archetypes(
    adata,
    k_range=k_range,
    n_dims=n_dims,
    n_bootstrap=n_bootstrap,
    sample_fraction=sample_fraction,
    seed=random_state,
    n_jobs=n_jobs,
)

# =============================================================================
# Step 3: Inspect Results
# =============================================================================

print("\n" + report.summary_report())

columns = ["variance_explained", "varexpl_ontop", "t_ratio", "mean_position_variance"]
print("\nPer-k metrics:")
print(report.summary_df[columns].round(4).to_string())

# The suggestion is a heuristic: check the marginal gain and stability yourself
suggested_k = report.suggest_n_archetypes()
print(f"\nSuggested k (elbow of variance explained): {suggested_k}")

# =============================================================================
# Step 4: Fit the Chosen k
# =============================================================================

fit = pti.tl.fit_archetypes(adata, n_archetypes=suggested_k, n_dims=n_dims, seed=random_state)

output_file = Path("archetype_selection.pkl")
report.save(output_file)

# =============================================================================
# Summary
# =============================================================================

print("\n" + "=" * 70)
print("WORKFLOW 01 COMPLETE")
print("=" * 70)
print(f"Chosen k: {suggested_k} (variance explained {fit.variance_explained:.3f})")
print("Stored:")
print("  • adata.uns['archetype_selection']: per-k summary")
print("  • adata.uns['archetype_coordinates']: vertex coordinates")
print("  • adata.obsm['cell_archetype_weights']: convex weights per cell")
print(f"  • {output_file}: full selection report")
print("\nNext workflows:")
print("  • WORKFLOW_02: Significance, stability and feature enrichment")
print("=" * 70)
