"""
Tests for batch correction, clustering and cluster labelling.
"""
import pytest
import numpy as np
import pandas as pd
import anndata as ad

from scbiomarker.analysis import run_harmony, cluster_cells, label_clusters, find_cluster_markers
from scbiomarker.analysis.integration import orient_cells_first


@pytest.fixture
def embedded_adata():
    """Two well separated populations with a PCA-like embedding."""
    rng = np.random.default_rng(0)
    n_per = 40
    X = np.vstack([
        rng.normal(0, 1, size=(n_per, 30)) + np.r_[np.full(15, 4.0), np.zeros(15)],
        rng.normal(0, 1, size=(n_per, 30)) + np.r_[np.zeros(15), np.full(15, 4.0)],
    ]).astype(np.float32)
    adata = ad.AnnData(X=X)
    adata.obs_names = [f'cell{i}' for i in range(2 * n_per)]
    adata.var_names = [f'GENE{i}' for i in range(30)]
    adata.obs['source'] = ['alpha', 'beta'] * n_per
    adata.obsm['X_pca'] = np.hstack([X[:, :5], X[:, 15:20]])
    return adata


def test_harmony_missing_batch_key(embedded_adata):
    with pytest.raises(ValueError, match="Batch key"):
        run_harmony(embedded_adata, batch_key='donor')


def test_harmony_missing_basis(embedded_adata):
    del embedded_adata.obsm['X_pca']
    with pytest.raises(ValueError, match="run PCA first"):
        run_harmony(embedded_adata)


def test_harmony_single_batch_copies_basis(embedded_adata):
    embedded_adata.obs['source'] = 'alpha'
    run_harmony(embedded_adata)
    np.testing.assert_array_equal(
        embedded_adata.obsm['X_pca_harmony'], embedded_adata.obsm['X_pca']
    )


def test_harmony_two_batches(embedded_adata):
    run_harmony(embedded_adata, max_iter_harmony=5)
    assert embedded_adata.obsm['X_pca_harmony'].shape == embedded_adata.obsm['X_pca'].shape
    assert np.isfinite(embedded_adata.obsm['X_pca_harmony']).all()


def test_harmony_output_oriented_cells_first():
    """Both harmonypy output layouts come back as cells x dims."""
    corrected = np.arange(30, dtype=float).reshape(10, 3)

    np.testing.assert_array_equal(orient_cells_first(corrected, 10), corrected)
    np.testing.assert_array_equal(orient_cells_first(corrected.T, 10), corrected)


def test_harmony_output_wrong_size():
    with pytest.raises(ValueError, match="does not match"):
        orient_cells_first(np.zeros((4, 3)), 10)


def test_cluster_cells(embedded_adata):
    """Separated populations fall into different clusters."""
    cluster_cells(embedded_adata, use_rep='X_pca', n_neighbors=10, resolution=0.5)

    assert 'X_umap' in embedded_adata.obsm
    clusters = embedded_adata.obs['cluster']
    assert isinstance(clusters.dtype, pd.CategoricalDtype)
    assert clusters.nunique() >= 2
    first = set(clusters.iloc[:40])
    second = set(clusters.iloc[40:])
    assert not first & second


def test_cluster_cells_missing_rep(embedded_adata):
    with pytest.raises(ValueError, match="X_pca_harmony"):
        cluster_cells(embedded_adata)


def test_label_clusters(embedded_adata):
    """Mapped clusters get labels, others keep their id."""
    embedded_adata.obs['cluster'] = pd.Categorical(['0'] * 30 + ['1'] * 30 + ['2'] * 20)
    label_clusters(embedded_adata, {0: 'T cells', '1': 'T cells'})

    labels = embedded_adata.obs['cell_type']
    assert labels.iloc[0] == 'T cells'
    assert labels.iloc[35] == 'T cells'
    assert labels.iloc[-1] == '2'
    assert set(labels.cat.categories) == {'T cells', '2'}


def test_label_clusters_unknown_id(embedded_adata):
    embedded_adata.obs['cluster'] = pd.Categorical(['0'] * 80)
    with pytest.raises(ValueError, match="not present"):
        label_clusters(embedded_adata, {'7': 'B cells'})


def test_label_clusters_before_clustering(embedded_adata):
    with pytest.raises(ValueError, match="cluster cells first"):
        label_clusters(embedded_adata, {'0': 'B cells'})


def test_find_cluster_markers(embedded_adata):
    embedded_adata.obs['cluster'] = ['0'] * 40 + ['1'] * 40
    markers = find_cluster_markers(embedded_adata, method='t-test', n_genes=5)

    assert set(markers['group']) == {'0', '1'}
    top_first = markers[markers['group'] == '0']['names'].iloc[0]
    assert int(top_first.replace('GENE', '')) < 15


def test_find_cluster_markers_single_group(embedded_adata):
    embedded_adata.obs['cluster'] = '0'
    with pytest.raises(ValueError, match="at least two groups"):
        find_cluster_markers(embedded_adata)
