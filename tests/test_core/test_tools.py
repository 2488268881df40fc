"""Tests for the AnnData-facing tools and where they store their results."""

import numpy as np
import pandas as pd
import pytest

import pareto_ti as pti
from pareto_ti._core.types import AnnDataKeys


def test_fit_archetypes_stores_results(small_adata):
    fit = pti.tl.fit_archetypes(small_adata, n_archetypes=3, seed=0, verbose=False)

    assert isinstance(fit, pti.FitResult)
    np.testing.assert_array_equal(small_adata.uns["archetype_coordinates"], fit.archetypes)
    np.testing.assert_array_equal(small_adata.obsm["cell_archetype_weights"], fit.weights)

    analysis = small_adata.uns["archetypal_analysis"]
    assert analysis["n_archetypes"] == 3
    assert analysis["variance_explained"] == pytest.approx(fit.variance_explained)
    assert analysis["pca_key"] == "X_pca"
    assert small_adata.uns["t_ratio"] == pytest.approx(fit.t_ratio)


def test_fit_archetypes_prints_progress(small_adata, capsys):
    pti.tl.fit_archetypes(small_adata, n_archetypes=3, verbose=True)
    out = capsys.readouterr().out
    assert "[OK]" in out
    assert "Variance explained" in out


def test_fit_archetypes_n_dims(small_adata):
    fit = pti.tl.fit_archetypes(small_adata, n_archetypes=3, n_dims=2, verbose=False)
    assert fit.n_dims == 2

    with pytest.raises(ValueError, match="n_dims"):
        pti.tl.fit_archetypes(small_adata, n_archetypes=3, n_dims=10, verbose=False)


def test_missing_embedding(small_adata):
    with pytest.raises(ValueError, match="not found"):
        pti.tl.fit_archetypes(small_adata, n_archetypes=3, pca_key="X_umap", verbose=False)


def test_tools_require_a_fit(small_adata):
    with pytest.raises(ValueError, match="fit_archetypes"):
        pti.tl.archetypal_coordinates(small_adata, verbose=False)
    with pytest.raises(ValueError, match="archetypal_coordinates"):
        pti.tl.assign_archetypes(small_adata, verbose=False)
    with pytest.raises(ValueError, match="archetypal_coordinates"):
        pti.tl.feature_associations(small_adata, verbose=False)


def test_archetypal_coordinates(fitted_small_adata):
    adata = fitted_small_adata
    distances = adata.obsm["archetype_distances"]

    assert distances.shape == (200, 3)
    fit = pti.FitResult(
        archetypes=adata.uns["archetype_coordinates"],
        weights=adata.obsm["cell_archetype_weights"],
        construction_weights=adata.uns["archetypal_analysis"]["construction_weights"],
        sse=0.0,
        variance_explained=0.0,
    )
    expected = np.linalg.norm(adata.obsm["X_pca"][0] - fit.archetypes[2])
    assert distances[0, 2] == pytest.approx(expected)


def test_archetypal_coordinates_weight_metric(fitted_small_adata):
    df = pti.tl.archetypal_coordinates(fitted_small_adata, distance_metric="archetype_weight", verbose=False)

    assert list(df.columns) == ["archetype_1_distance", "archetype_2_distance", "archetype_3_distance"]
    assert list(df.index) == list(fitted_small_adata.obs_names)
    np.testing.assert_allclose(df.to_numpy(), 1 - fitted_small_adata.obsm["cell_archetype_weights"])


def test_assign_archetypes(fitted_small_adata):
    labels = fitted_small_adata.obs["archetypes"]

    assert isinstance(labels.dtype, pd.CategoricalDtype)
    counts = labels.value_counts()
    for label in ["archetype_1", "archetype_2", "archetype_3"]:
        assert counts[label] >= 1
    assert "no_archetype" in set(labels)


def test_select_n_archetypes_wrapper(small_adata):
    report = pti.tl.select_n_archetypes(small_adata, k_range=[2, 3, 4], n_bootstrap=2, seed=0, verbose=False)

    stored = small_adata.uns[AnnDataKeys.ARCHETYPE_SELECTION]
    assert list(stored.index) == [2, 3, 4]
    pd.testing.assert_frame_equal(stored, report.summary_df)


def test_bootstrap_wrapper(fitted_small_adata):
    result = pti.tl.bootstrap_archetypes(fitted_small_adata, n_bootstrap=3, seed=0, verbose=False)

    np.testing.assert_array_equal(result.reference.archetypes, fitted_small_adata.uns["archetype_coordinates"])
    stored = fitted_small_adata.uns[AnnDataKeys.ARCHETYPE_BOOTSTRAP]
    assert len(stored) == 3 * (result.n_valid + 1)


def test_t_ratio_significance_wrapper(fitted_small_adata):
    null = pti.tl.t_ratio_significance(fitted_small_adata, n_permutations=3, seed=0, verbose=False)

    stored = fitted_small_adata.uns[AnnDataKeys.T_RATIO_SIGNIFICANCE]
    assert stored["pvalue"] == pytest.approx(null.pvalue)
    assert stored["n_permutations"] == 3
    assert fitted_small_adata.uns["t_ratio"] == pytest.approx(null.observed_t_ratio)


def test_feature_associations_wrapper(fitted_small_adata):
    results = pti.tl.feature_associations(fitted_small_adata, near_fraction=0.1, verbose=False)

    assert {"feature", "archetype", "pvalue", "fdr_pvalue", "significant", "direction"} <= set(results.columns)
    assert set(results["feature"]) <= set(fitted_small_adata.var_names)

    top = results[results["significant"] & (results["direction"] == "higher")]
    assert set(top["feature"]) <= {"marker_1", "marker_2", "marker_3"}
    assert len(top) >= 3


def test_feature_associations_subset_and_layer(fitted_small_adata):
    fitted_small_adata.layers["scaled"] = fitted_small_adata.X * 2.0
    results = pti.tl.feature_associations(
        fitted_small_adata, features=["marker_1", "background_0"], use_layer="scaled", verbose=False
    )
    assert set(results["feature"]) == {"marker_1", "background_0"}

    with pytest.raises(ValueError, match="Features not found"):
        pti.tl.feature_associations(fitted_small_adata, features=["gene_x"], verbose=False)
    with pytest.raises(ValueError, match="Layer"):
        pti.tl.feature_associations(fitted_small_adata, use_layer="counts", verbose=False)
