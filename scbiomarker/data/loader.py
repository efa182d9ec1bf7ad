"""
Loading of per-dataset count tables into AnnData objects.
"""
import numpy as np
import pandas as pd
import scanpy as sc
import anndata as ad
from pathlib import Path
from typing import Optional, Dict, Any
from scipy.sparse import csr_matrix

from ..utils.config import DATASET_LAYOUTS


# Cell metadata fields every loaded dataset carries, possibly all-null
STANDARD_OBS_FIELDS = ('source', 'response', 'malignant')


class DatasetLoader:
    """
    Read one dataset's count matrix and metadata into AnnData.

    Supported count layouts:

    - ``genes_by_cells``: first column gene ids, header row cell ids
    - ``cells_by_genes``: first column cell ids, header row gene ids
    - ``header_metadata``: like ``genes_by_cells`` but the rows right
      after the header carry per-cell metadata, one row per entry of
      ``metadata_rows``
    """

    def __init__(self, dataset_config: Dict[str, Any], logger=None):
        self.config = dataset_config
        self.logger = logger
        self.name = dataset_config['name']
        self.counts_path = Path(dataset_config['counts_path'])
        self.layout = dataset_config.get('layout', 'genes_by_cells')
        self.sep = dataset_config.get('sep') or _infer_separator(self.counts_path)
        self.metadata_path = dataset_config.get('metadata_path')
        self.metadata_index = dataset_config.get('metadata_index')
        self.metadata_columns = dataset_config.get('metadata_columns', {})
        self.metadata_rows = list(dataset_config.get('metadata_rows', []))
        self.fixed_metadata = dataset_config.get('fixed_metadata', {})
        self.label_maps = dataset_config.get('label_maps', {})
        self.min_cells = dataset_config.get('min_cells', 3)
        self.min_genes = dataset_config.get('min_genes', 200)

        if self.layout not in DATASET_LAYOUTS:
            raise ValueError(
                f"Unknown layout '{self.layout}' for dataset {self.name}. "
                f"Available layouts: {list(DATASET_LAYOUTS)}"
            )

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def load(self) -> ad.AnnData:
        """
        Load, annotate and presence-filter the dataset.

        Returns
        -------
        adata : AnnData
            Cells x genes with ``obs['source']`` set to the dataset name
        """
        if not self.counts_path.exists():
            raise FileNotFoundError(f"Counts file not found: {self.counts_path}")

        self._log(f"Loading {self.name} counts from {self.counts_path} ({self.layout})")

        counts, header_obs = self._read_counts()
        adata = ad.AnnData(
            X=csr_matrix(counts.to_numpy(dtype=np.float32)),
            obs=pd.DataFrame(index=counts.index.astype(str)),
            var=pd.DataFrame(index=counts.columns.astype(str)),
        )
        adata.var_names_make_unique()

        self._log(f"  {adata.n_obs} cells, {adata.n_vars} genes")

        if header_obs is not None:
            for column in header_obs.columns:
                adata.obs[column] = header_obs[column].values

        if self.metadata_path is not None:
            self._attach_metadata(adata)

        for field, value in self.fixed_metadata.items():
            adata.obs[field] = value

        for field, mapping in self.label_maps.items():
            if field not in adata.obs.columns:
                raise ValueError(f"Cannot relabel '{field}': not present in {self.name} metadata")
            adata.obs[field] = adata.obs[field].map(lambda v: mapping.get(v, v))

        adata.obs['source'] = self.name
        for field in STANDARD_OBS_FIELDS:
            if field not in adata.obs.columns:
                adata.obs[field] = np.nan

        adata = self.apply_presence_filters(adata)
        if adata.n_obs == 0 or adata.n_vars == 0:
            raise ValueError(
                f"Dataset {self.name} is empty after presence filtering "
                f"(min_cells={self.min_cells}, min_genes={self.min_genes})"
            )
        return adata

    def _read_counts(self):
        """Return a cells x genes count frame and optional header metadata."""
        if self.layout == 'cells_by_genes':
            counts = pd.read_csv(self.counts_path, sep=self.sep, index_col=0)
            return counts, None

        if self.layout == 'genes_by_cells':
            counts = pd.read_csv(self.counts_path, sep=self.sep, index_col=0)
            return counts.T, None

        # header_metadata: decode the block, then read the gene rows below it
        n_meta = len(self.metadata_rows)
        block = pd.read_csv(
            self.counts_path, sep=self.sep, index_col=0, nrows=n_meta, dtype=str
        )
        if block.shape[0] != n_meta:
            raise ValueError(
                f"Expected {n_meta} metadata rows in {self.counts_path}, found {block.shape[0]}"
            )
        counts = pd.read_csv(
            self.counts_path, sep=self.sep, index_col=0,
            skiprows=range(1, n_meta + 1)
        )
        header_obs = block.T
        header_obs.columns = self.metadata_rows
        header_obs = header_obs.apply(lambda col: col.str.strip())
        return counts.T, header_obs

    def _attach_metadata(self, adata: ad.AnnData) -> None:
        """Join the per-cell metadata table onto ``adata.obs``."""
        metadata_path = Path(self.metadata_path)
        if not metadata_path.exists():
            raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

        meta = pd.read_csv(metadata_path, sep=_infer_separator(metadata_path), dtype=str)
        index_col = self.metadata_index or meta.columns[0]
        if index_col not in meta.columns:
            raise ValueError(
                f"Metadata index column '{index_col}' not found in {metadata_path}. "
                f"Available columns: {list(meta.columns)}"
            )
        meta = meta.drop_duplicates(subset=index_col).set_index(index_col)
        meta.index = meta.index.astype(str)

        n_matched = meta.index.isin(adata.obs_names).sum()
        self._log(f"  Matched metadata for {n_matched}/{adata.n_obs} cells")

        aligned = meta.reindex(adata.obs_names)
        for field, column in self.metadata_columns.items():
            if column not in aligned.columns:
                raise ValueError(
                    f"Metadata column '{column}' not found in {metadata_path}. "
                    f"Available columns: {list(meta.columns)}"
                )
            adata.obs[field] = aligned[column].values

    def apply_presence_filters(self, adata: ad.AnnData) -> ad.AnnData:
        """
        Drop genes seen in fewer than ``min_cells`` cells, then cells
        with fewer than ``min_genes`` detected genes.
        """
        n_cells, n_genes = adata.n_obs, adata.n_vars
        adata = adata.copy()
        if self.min_cells > 0:
            sc.pp.filter_genes(adata, min_cells=self.min_cells)
        if self.min_genes > 0:
            sc.pp.filter_cells(adata, min_genes=self.min_genes)

        self._log(
            f"  Presence filters kept {adata.n_obs}/{n_cells} cells, "
            f"{adata.n_vars}/{n_genes} genes"
        )
        return adata


def _infer_separator(path: Path) -> str:
    """Comma for .csv files, tab otherwise (compressed suffixes ignored)."""
    suffixes = [s for s in Path(path).suffixes if s not in ('.gz', '.bz2', '.zip', '.xz')]
    return ',' if suffixes and suffixes[-1] == '.csv' else '\t'
