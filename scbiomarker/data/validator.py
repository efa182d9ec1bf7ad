"""
Data validation utilities.
"""
import numpy as np
import anndata as ad
from scipy.sparse import issparse


class DataValidator:
    """Structural checks on datasets entering the pipeline."""

    @staticmethod
    def validate_adata(adata: ad.AnnData, name: str = "dataset") -> None:
        """
        Validate basic AnnData structure.

        Parameters
        ----------
        adata : AnnData
            Dataset to validate
        name : str
            Name for error messages
        """
        if adata.X is None:
            raise ValueError(f"{name} has no expression matrix (X is None)")

        if adata.n_obs == 0:
            raise ValueError(f"{name} has no cells")

        if adata.n_vars == 0:
            raise ValueError(f"{name} has no genes")

        if 'source' not in adata.obs.columns:
            raise ValueError(f"{name} missing 'source' column in obs")

        if not adata.obs_names.is_unique:
            raise ValueError(f"{name} has duplicate cell ids")

        if not adata.var_names.is_unique:
            raise ValueError(f"{name} has duplicate gene ids")

    @staticmethod
    def validate_counts(adata: ad.AnnData, name: str = "dataset") -> None:
        """Raw counts must be finite and non-negative."""
        values = adata.X.data if issparse(adata.X) else np.asarray(adata.X)
        if not np.all(np.isfinite(values)):
            raise ValueError(f"{name} has non-finite expression values")
        if (values < 0).any():
            raise ValueError(f"{name} has negative expression values")

    @staticmethod
    def check_data_quality(adata: ad.AnnData, name: str = "dataset", logger=None) -> None:
        """
        Log warnings for zero-count cells/genes and tiny source groups.

        Parameters
        ----------
        adata : AnnData
            Dataset to check
        name : str
            Name for messages
        logger : Optional
            Logger instance
        """
        if logger is None:
            return

        cell_counts = np.asarray(adata.X.sum(axis=1)).ravel()
        n_zero = int((cell_counts == 0).sum())
        if n_zero > 0:
            logger.warning(f"{name} has {n_zero} cells with zero counts")

        gene_counts = np.asarray(adata.X.sum(axis=0)).ravel()
        n_zero_genes = int((gene_counts == 0).sum())
        if n_zero_genes > 0:
            logger.warning(f"{name} has {n_zero_genes} genes with zero expression")

        if 'source' in adata.obs.columns:
            source_counts = adata.obs['source'].value_counts()
            if source_counts.min() < 10:
                logger.warning(
                    f"{name} has sources with very few cells (min: {source_counts.min()})"
                )
