"""
Smoke tests for plotting functions.
"""
import pytest
import numpy as np
import pandas as pd
import anndata as ad
import matplotlib

matplotlib.use('Agg')

from scbiomarker.analysis import (
    plot_embedding,
    plot_volcano,
    plot_gene_violin,
    plot_enrichment_bar,
    plot_confusion_matrix,
    plot_feature_importance,
    plot_biomarker_heatmap,
    plot_biomarker_overlap,
)


@pytest.fixture
def de_result():
    rng = np.random.default_rng(0)
    genes = [f'GENE{i}' for i in range(50)]
    q = np.sort(rng.uniform(0, 1, 50))
    q[0] = 0.0
    direction = np.where(q < 0.05, 'Up', 'Not significant')
    return pd.DataFrame(
        {'qvalue': q, 'log2fc': rng.normal(size=50), 'direction': direction},
        index=pd.Index(genes, name='gene'),
    )


@pytest.fixture
def mock_adata():
    rng = np.random.default_rng(1)
    adata = ad.AnnData(X=rng.poisson(2.0, size=(40, 5)).astype(np.float32))
    adata.obs_names = [f'cell{i}' for i in range(40)]
    adata.var_names = [f'GENE{i}' for i in range(5)]
    adata.obs['cluster'] = pd.Categorical(['0'] * 20 + ['1'] * 20)
    adata.obsm['X_umap'] = rng.normal(size=(40, 2))
    return adata


def test_plot_volcano(tmp_path, de_result):
    path = plot_volcano(de_result, tmp_path / "volcano.png", title="test")
    assert path.exists()


def test_plot_embedding(tmp_path, mock_adata):
    path = plot_embedding(mock_adata, 'cluster', tmp_path / "umap.png")
    assert path.exists()


def test_plot_embedding_missing_basis(tmp_path, mock_adata):
    with pytest.raises(ValueError, match="X_tsne"):
        plot_embedding(mock_adata, 'cluster', tmp_path / "tsne.png", basis='tsne')


def test_plot_gene_violin(tmp_path, mock_adata):
    path = plot_gene_violin(mock_adata, ['GENE0', 'GENE1'], 'cluster', tmp_path / "violin.png")
    assert path.exists()


def test_plot_gene_violin_no_genes(tmp_path, mock_adata):
    with pytest.raises(ValueError, match="No genes"):
        plot_gene_violin(mock_adata, [], 'cluster', tmp_path / "violin.png")


def test_plot_enrichment_bar(tmp_path):
    enrichment = pd.DataFrame({
        'Gene_set': ['KEGG_2021_Human', 'Reactome_2022'],
        'Term': ['T cell receptor signaling', 'Interferon signaling'],
        'Adjusted P-value': [1e-5, 1e-3],
    })
    assert plot_enrichment_bar(enrichment, tmp_path / "enrichment.png").exists()
    assert plot_enrichment_bar(enrichment.iloc[:0], tmp_path / "empty.png") is None


def test_plot_confusion_matrix(tmp_path):
    cm = pd.DataFrame(
        [[0.9, 0.1], [0.2, 0.8]], index=['T', 'B'], columns=['T', 'B']
    )
    path = plot_confusion_matrix(cm, tmp_path / "cm.png", order=['T', 'B', 'NK'], figsize=(4, 4))
    assert path.exists()


def test_plot_feature_importance(tmp_path):
    importance = pd.DataFrame({'gene': ['CD8A', 'GZMB'], 'importance': [0.7, 0.3]})
    assert plot_feature_importance(importance, tmp_path / "importance.png").exists()


def test_plot_biomarker_heatmap(tmp_path, mock_adata):
    mock_adata.obs['cell_type'] = pd.Categorical(['T'] * 10 + ['B'] * 15 + ['NK'] * 15)
    genes = ['GENE0', 'GENE1', 'GENE2', 'GENE3']
    path = plot_biomarker_heatmap(mock_adata, genes, 'cell_type', tmp_path / "heatmap.png")
    assert path.exists()


def test_plot_biomarker_heatmap_flat_gene(tmp_path, mock_adata):
    """A gene with the same mean in every group does not break the z-score."""
    mock_adata.X[:, 4] = 1.0
    path = plot_biomarker_heatmap(mock_adata, ['GENE0', 'GENE4'], 'cluster', tmp_path / "heatmap.png")
    assert path.exists()


def test_plot_biomarker_heatmap_errors(tmp_path, mock_adata):
    with pytest.raises(ValueError, match="No genes"):
        plot_biomarker_heatmap(mock_adata, [], 'cluster', tmp_path / "heatmap.png")
    with pytest.raises(ValueError, match="response"):
        plot_biomarker_heatmap(mock_adata, ['GENE0'], 'response', tmp_path / "heatmap.png")


def test_plot_biomarker_overlap(tmp_path):
    overlap = pd.DataFrame(
        [[3, 1], [1, 2]], index=['a Up', 'b Down'], columns=['a Up', 'b Down']
    )
    assert plot_biomarker_overlap(overlap, tmp_path / "overlap.png").exists()
    assert plot_biomarker_overlap(pd.DataFrame(), tmp_path / "empty.png") is None
