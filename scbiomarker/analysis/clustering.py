"""
Neighbour graph, UMAP embedding, Leiden clustering and cluster labelling.
"""
import pandas as pd
import scanpy as sc
import anndata as ad
from typing import Dict, Optional


def cluster_cells(
    adata: ad.AnnData,
    use_rep: str = 'X_pca_harmony',
    n_neighbors: int = 15,
    n_pcs: Optional[int] = None,
    resolution: float = 0.8,
    key_added: str = 'cluster',
    random_state: int = 0,
    logger=None
) -> ad.AnnData:
    """
    Build the kNN graph on ``use_rep``, embed with UMAP and cluster.

    Adds ``obsm['X_umap']`` and a categorical ``obs[key_added]``.
    """
    if use_rep not in adata.obsm:
        raise ValueError(f"Representation '{use_rep}' not found in obsm")

    if logger:
        logger.info(
            f"Clustering on {use_rep} (n_neighbors={n_neighbors}, resolution={resolution})"
        )
    sc.pp.neighbors(
        adata, n_neighbors=n_neighbors, n_pcs=n_pcs, use_rep=use_rep, random_state=random_state
    )
    sc.tl.umap(adata, random_state=random_state)
    sc.tl.leiden(
        adata,
        resolution=resolution,
        key_added=key_added,
        random_state=random_state,
        flavor='igraph',
        n_iterations=2,
        directed=False,
    )

    if logger:
        sizes = adata.obs[key_added].value_counts()
        logger.info(f"  Found {len(sizes)} clusters (largest {sizes.max()}, smallest {sizes.min()} cells)")
    return adata


def label_clusters(
    adata: ad.AnnData,
    mapping: Dict[str, str],
    key: str = 'cluster',
    label_key: str = 'cell_type',
    logger=None
) -> ad.AnnData:
    """
    Rename cluster ids to biological labels.

    Several clusters may share one label. Clusters missing from
    ``mapping`` keep their id as label.
    """
    if key not in adata.obs.columns:
        raise ValueError(f"Cluster column '{key}' not found; cluster cells first")

    clusters = adata.obs[key].astype(str)
    mapping = {str(k): v for k, v in mapping.items()}
    unknown = sorted(set(mapping) - set(clusters.unique()))
    if unknown:
        raise ValueError(f"Cluster ids in mapping not present in '{key}': {unknown}")

    labels = clusters.map(lambda c: mapping.get(c, c))
    adata.obs[label_key] = pd.Categorical(labels)

    if logger:
        unmapped = sorted(set(clusters.unique()) - set(mapping))
        logger.info(f"Labelled {len(mapping)} clusters into {adata.obs[label_key].nunique()} cell types")
        if unmapped:
            logger.warning(f"  Clusters without a label: {unmapped}")
    return adata


def find_cluster_markers(
    adata: ad.AnnData,
    groupby: str = 'cluster',
    method: str = 'wilcoxon',
    n_genes: Optional[int] = 100,
    use_raw: Optional[bool] = None,
    pval_cutoff: Optional[float] = None
) -> pd.DataFrame:
    """
    One-vs-rest markers for every group of ``groupby``.

    Returns
    -------
    markers : pd.DataFrame
        Long table with columns group, names, scores, logfoldchanges,
        pvals, pvals_adj
    """
    if groupby not in adata.obs.columns:
        raise ValueError(f"Group column '{groupby}' not found in obs")
    if adata.obs[groupby].nunique() < 2:
        raise ValueError(f"Need at least two groups in '{groupby}' to rank markers")
    if not isinstance(adata.obs[groupby].dtype, pd.CategoricalDtype):
        adata.obs[groupby] = adata.obs[groupby].astype(str).astype('category')
    if use_raw is None:
        use_raw = adata.raw is not None

    key = f"rank_genes_{groupby}"
    sc.tl.rank_genes_groups(
        adata, groupby=groupby, method=method, n_genes=n_genes, use_raw=use_raw, key_added=key
    )
    return sc.get.rank_genes_groups_df(adata, group=None, key=key, pval_cutoff=pval_cutoff)
