"""
Batch-effect correction with Harmony.
"""
import numpy as np
import anndata as ad
import harmonypy as hm


def run_harmony(
    adata: ad.AnnData,
    batch_key: str = 'source',
    basis: str = 'X_pca',
    adjusted_basis: str = 'X_pca_harmony',
    logger=None,
    **kwargs
) -> ad.AnnData:
    """
    Correct the PCA embedding for batch effects keyed by ``batch_key``.

    Parameters
    ----------
    adata : AnnData
        Data with ``obsm[basis]`` computed
    batch_key : str
        obs column identifying the batch (source dataset)
    basis : str
        Embedding to correct
    adjusted_basis : str
        obsm key for the corrected embedding
    logger : Optional
        Logger instance
    **kwargs
        Passed to ``harmonypy.run_harmony`` (e.g. ``max_iter_harmony``)

    Returns
    -------
    adata : AnnData
        Same object with ``obsm[adjusted_basis]`` added
    """
    if batch_key not in adata.obs.columns:
        raise ValueError(f"Batch key '{batch_key}' not found in obs")
    if basis not in adata.obsm:
        raise ValueError(f"Embedding '{basis}' not found in obsm; run PCA first")

    n_batches = adata.obs[batch_key].nunique()
    if n_batches < 2:
        if logger:
            logger.warning(
                f"Only {n_batches} batch in '{batch_key}'; copying {basis} uncorrected"
            )
        adata.obsm[adjusted_basis] = adata.obsm[basis].copy()
        return adata

    if logger:
        logger.info(f"Running Harmony over {n_batches} batches ({batch_key})")
    embedding = np.asarray(adata.obsm[basis], dtype=np.float64)
    meta_data = adata.obs[[batch_key]].astype(str)
    ho = hm.run_harmony(embedding, meta_data, batch_key, **kwargs)
    adata.obsm[adjusted_basis] = orient_cells_first(np.asarray(ho.Z_corr), adata.n_obs)
    return adata


def orient_cells_first(corrected: np.ndarray, n_obs: int) -> np.ndarray:
    """
    Return the corrected embedding as cells x dims.

    harmonypy releases differ in whether ``Z_corr`` is dims x cells or
    cells x dims.
    """
    if corrected.ndim != 2 or n_obs not in corrected.shape:
        raise ValueError(
            f"Harmony output of shape {corrected.shape} does not match {n_obs} cells"
        )
    if corrected.shape[0] == n_obs:
        return corrected
    return corrected.T
