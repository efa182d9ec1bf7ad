"""
Quality control, normalization and feature selection.
"""
import numpy as np
import scanpy as sc
import anndata as ad
from typing import Dict, Any


class QualityControl:
    """Threshold-based cell/gene filtering followed by scanpy normalization."""

    def __init__(self, config: Dict[str, Any], logger=None):
        """
        Parameters
        ----------
        config : Dict
            QC configuration with keys:
            - min_genes / max_genes: detected genes per cell
            - max_pct_mito: maximum mitochondrial count percentage
            - min_cells: cells a gene must be detected in
            - mito_prefix: prefix marking mitochondrial genes
            - target_sum, n_top_genes, scale_max_value, n_pcs
            - batch_key: obs column used for batch-aware HVG selection
        logger : Optional
            Logger instance
        """
        self.config = config
        self.logger = logger

        self.min_genes = config.get('min_genes', 200)
        self.max_genes = config.get('max_genes', None)
        self.max_pct_mito = config.get('max_pct_mito', None)
        self.min_cells = config.get('min_cells', 3)
        self.mito_prefix = config.get('mito_prefix', 'MT-')
        self.target_sum = config.get('target_sum', 1e4)
        self.n_top_genes = config.get('n_top_genes', 2000)
        self.scale_max_value = config.get('scale_max_value', 10)
        self.n_pcs = config.get('n_pcs', 50)
        self.batch_key = config.get('batch_key', 'source')

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def compute_metrics(self, adata: ad.AnnData) -> ad.AnnData:
        """Add ``n_genes``, ``total_counts`` and ``pct_mito`` to obs."""
        adata.var['mito'] = adata.var_names.str.upper().str.startswith(self.mito_prefix.upper())
        sc.pp.calculate_qc_metrics(adata, qc_vars=['mito'], percent_top=None, log1p=False, inplace=True)
        adata.obs['n_genes'] = adata.obs['n_genes_by_counts']
        adata.obs['pct_mito'] = adata.obs['pct_counts_mito']
        return adata

    def filter(self, adata: ad.AnnData) -> ad.AnnData:
        """Apply numeric thresholds; returns a filtered copy."""
        if 'n_genes' not in adata.obs.columns or 'pct_mito' not in adata.obs.columns:
            adata = self.compute_metrics(adata)

        keep = adata.obs['n_genes'] >= self.min_genes
        if self.max_genes is not None:
            keep &= adata.obs['n_genes'] <= self.max_genes
        if self.max_pct_mito is not None:
            keep &= adata.obs['pct_mito'] <= self.max_pct_mito

        n_before = adata.n_obs
        adata = adata[keep.values].copy()
        self._log(f"  Kept {adata.n_obs}/{n_before} cells after QC thresholds")

        if self.min_cells > 0:
            n_genes_before = adata.n_vars
            sc.pp.filter_genes(adata, min_cells=self.min_cells)
            self._log(f"  Kept {adata.n_vars}/{n_genes_before} genes detected in >= {self.min_cells} cells")

        if adata.n_obs == 0:
            raise ValueError("No cells left after quality control")
        return adata

    def normalize(self, adata: ad.AnnData) -> ad.AnnData:
        """Normalize, log-transform, select HVGs, scale and run PCA."""
        adata.layers['counts'] = adata.X.copy()

        self._log(f"  Normalizing to {self.target_sum} counts per cell")
        sc.pp.normalize_total(adata, target_sum=self.target_sum)
        sc.pp.log1p(adata)
        adata.raw = adata

        batch_key = self.batch_key
        if batch_key is not None and (
            batch_key not in adata.obs.columns or adata.obs[batch_key].nunique() < 2
        ):
            batch_key = None
        n_top = min(self.n_top_genes, adata.n_vars)
        self._log(f"  Selecting {n_top} highly variable genes (batch_key={batch_key})")
        sc.pp.highly_variable_genes(adata, n_top_genes=n_top, batch_key=batch_key)

        sc.pp.scale(adata, max_value=self.scale_max_value)

        n_comps = int(min(self.n_pcs, adata.n_obs - 1, int(adata.var['highly_variable'].sum()) - 1))
        if n_comps < 1:
            raise ValueError(f"Too few cells or genes for PCA: {adata.shape}")
        self._log(f"  Running PCA with {n_comps} components")
        sc.tl.pca(adata, n_comps=n_comps, mask_var='highly_variable')
        return adata

    def run(self, adata: ad.AnnData) -> ad.AnnData:
        """Compute metrics, filter and normalize."""
        self._log("Running quality control...")
        adata = self.compute_metrics(adata.copy())
        adata = self.filter(adata)
        adata = self.normalize(adata)
        self._log(f"  QC complete: {adata.n_obs} cells, {adata.n_vars} genes")
        return adata


def qc_summary(adata: ad.AnnData, groupby: str = 'source'):
    """Per-group median QC metrics as a DataFrame."""
    columns = [c for c in ('n_genes', 'total_counts', 'pct_mito') if c in adata.obs.columns]
    summary = adata.obs.groupby(groupby, observed=True)[columns].median()
    summary.insert(0, 'n_cells', adata.obs.groupby(groupby, observed=True).size())
    return summary.replace([np.inf, -np.inf], np.nan)
