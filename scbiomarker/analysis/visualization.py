"""
Plots for embeddings, differential expression, enrichment and classifier results.
"""
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
import scanpy as sc
import anndata as ad
from pathlib import Path
from typing import Optional, List, Sequence, Tuple


DIRECTION_COLORS = {'Up': '#d62728', 'Down': '#1f77b4', 'Not significant': '#b0b0b0'}


def _save(fig, save_path: Path) -> Path:
    save_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=300, bbox_inches='tight')
    plt.close(fig)
    return save_path


def plot_embedding(
    adata: ad.AnnData,
    color: str,
    save_path: Path,
    basis: str = 'umap',
    title: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 7)
) -> Path:
    """Scatter of an embedding coloured by one obs column."""
    if f"X_{basis}" not in adata.obsm:
        raise ValueError(f"Embedding 'X_{basis}' not found; compute it first")
    fig, ax = plt.subplots(figsize=figsize)
    sc.pl.embedding(adata, basis=basis, color=color, ax=ax, show=False, title=title or color)
    return _save(fig, save_path)


def plot_volcano(
    de_result: pd.DataFrame,
    save_path: Path,
    title: str = "Differential Expression",
    label_top: int = 10,
    figsize: Tuple[int, int] = (8, 7)
) -> Path:
    """
    log2 fold change against -log10 q-value, coloured by direction.

    The ``label_top`` most significant Up/Down genes are annotated.
    """
    df = de_result.copy()
    floor = np.nextafter(0, 1)
    df['neg_log10_q'] = -np.log10(df['qvalue'].clip(lower=floor))

    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(
        data=df, x='log2fc', y='neg_log10_q', hue='direction',
        palette=DIRECTION_COLORS, hue_order=list(DIRECTION_COLORS),
        s=12, linewidth=0, ax=ax
    )
    significant = df[df['direction'] != 'Not significant'].head(label_top)
    for gene, row in significant.iterrows():
        ax.text(row['log2fc'], row['neg_log10_q'], str(gene), fontsize=8)

    ax.set_title(title, fontsize=14, pad=20)
    ax.set_xlabel("log2 fold change", fontsize=12)
    ax.set_ylabel("-log10 q-value", fontsize=12)
    ax.legend(title="Direction", bbox_to_anchor=(1.05, 1), loc='upper left')
    return _save(fig, save_path)


def plot_gene_violin(
    adata: ad.AnnData,
    genes: Sequence[str],
    groupby: str,
    save_path: Path,
    use_raw: Optional[bool] = None
) -> Path:
    """Violin plots of selected genes per group."""
    genes = list(genes)
    if not genes:
        raise ValueError("No genes selected for violin plot")
    if use_raw is None:
        use_raw = adata.raw is not None
    fig, axes = plt.subplots(len(genes), 1, figsize=(10, 3.5 * len(genes)), squeeze=False)
    for ax, gene in zip(axes[:, 0], genes):
        sc.pl.violin(adata, gene, groupby=groupby, use_raw=use_raw, ax=ax, show=False, rotation=45)
        ax.set_title(gene)
    fig.tight_layout()
    return _save(fig, save_path)


def plot_enrichment_bar(
    enrichment: pd.DataFrame,
    save_path: Path,
    title: str = "Enriched Terms",
    top_n: int = 20,
    figsize: Tuple[int, int] = (12, 8)
) -> Optional[Path]:
    """Horizontal bars of -log10 adjusted p-value for the top terms."""
    if enrichment.empty:
        return None
    df = enrichment.sort_values('Adjusted P-value').head(top_n).copy()
    df['neg_log10_padj'] = -np.log10(df['Adjusted P-value'].clip(lower=np.nextafter(0, 1)))

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(data=df, x='neg_log10_padj', y='Term', hue='Gene_set', dodge=False, ax=ax)
    ax.set_title(title, fontsize=14, pad=20)
    ax.set_xlabel("-log10 adjusted p-value", fontsize=12)
    ax.set_ylabel("")
    fig.tight_layout()
    return _save(fig, save_path)


def plot_confusion_matrix(
    cm: pd.DataFrame,
    save_path: Path,
    title: str = "Confusion Matrix",
    figsize: Tuple[int, int] = (12, 10),
    order: Optional[List[str]] = None,
    cmap: str = "Blues",
    fmt: str = ".2f"
) -> Path:
    """
    Heatmap of a (row-normalized) confusion matrix.

    Parameters
    ----------
    cm : pd.DataFrame
        True labels as rows, predicted labels as columns
    order : Optional[List[str]]
        Label order for rows and columns; labels absent from ``cm`` are
        dropped, default is alphabetical
    """
    if order is not None:
        rows = [r for r in order if r in cm.index]
        cols = [c for c in order if c in cm.columns]
        cm = cm.loc[rows or sorted(cm.index), cols or sorted(cm.columns)]
    else:
        cm = cm.sort_index()[sorted(cm.columns)]

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        cm, annot=True, fmt=fmt, cmap=cmap,
        cbar_kws={"label": "Proportion"}, vmin=0, vmax=1, ax=ax
    )
    ax.set_title(title, fontsize=14, pad=20)
    ax.set_ylabel("True Label", fontsize=12)
    ax.set_xlabel("Predicted Label", fontsize=12)
    plt.setp(ax.get_xticklabels(), rotation=45, ha='right')
    return _save(fig, save_path)


def plot_feature_importance(
    importance: pd.DataFrame,
    save_path: Path,
    title: str = "Feature Importance",
    top_n: int = 30,
    figsize: Tuple[int, int] = (10, 10)
) -> Path:
    """Bar chart of the most important classifier features."""
    df = importance.sort_values('importance', ascending=False).head(top_n)
    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(data=df, x='importance', y='gene', color='#4c72b0', ax=ax)
    ax.set_title(title, fontsize=14, pad=20)
    ax.set_xlabel("Mean decrease in impurity", fontsize=12)
    ax.set_ylabel("Gene", fontsize=12)
    fig.tight_layout()
    return _save(fig, save_path)


def plot_biomarker_heatmap(
    adata: ad.AnnData,
    genes: Sequence[str],
    groupby: str,
    save_path: Path,
    use_raw: Optional[bool] = None,
    title: str = "Biomarker Expression",
    figsize: Tuple[int, int] = (10, 10),
    cmap: str = "vlag"
) -> Path:
    """
    Clustered heatmap of per-group mean expression, z-scored per gene.

    Genes that are flat across groups get a z-score of 0.
    """
    genes = list(genes)
    if not genes:
        raise ValueError("No genes selected for heatmap")
    if groupby not in adata.obs.columns:
        raise ValueError(f"Group column '{groupby}' not found in obs")
    if use_raw is None:
        use_raw = adata.raw is not None

    expression = sc.get.obs_df(adata, keys=genes, use_raw=use_raw)
    groups = adata.obs[groupby].astype(str).to_numpy()
    means = expression.groupby(groups).mean().T

    spread = means.std(axis=1).replace(0, 1).fillna(1)
    z_scores = means.sub(means.mean(axis=1), axis=0).div(spread, axis=0)

    g = sns.clustermap(
        z_scores,
        cmap=cmap,
        center=0,
        figsize=figsize,
        row_cluster=len(genes) > 1,
        col_cluster=z_scores.shape[1] > 1,
        xticklabels=True,
        yticklabels=True,
        cbar_kws={"label": "Z-score"},
        dendrogram_ratio=0.15,
    )
    g.figure.suptitle(title, y=1.02, fontsize=14)
    plt.setp(g.ax_heatmap.get_xticklabels(), rotation=45, ha="right")
    plt.setp(g.ax_heatmap.get_yticklabels(), rotation=0)
    return _save(g.figure, save_path)


def plot_biomarker_overlap(
    overlap: pd.DataFrame,
    save_path: Path,
    title: str = "Shared Significant Genes",
    figsize: Tuple[int, int] = (10, 8)
) -> Optional[Path]:
    """Heatmap of gene counts shared between Up/Down sets of each comparison."""
    if overlap.empty:
        return None
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(overlap, annot=True, fmt="d", cmap="Purples", cbar_kws={"label": "Genes"}, ax=ax)
    ax.set_title(title, fontsize=14, pad=20)
    plt.setp(ax.get_xticklabels(), rotation=45, ha='right')
    return _save(fig, save_path)
