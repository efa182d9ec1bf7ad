"""
Merge per-dataset matrices into one unified cell x gene matrix.
"""
import anndata as ad
import pandas as pd
from typing import Dict, Any, List, Optional

from .loader import DatasetLoader
from ..workspace import Workspace


COMBINED_KEY = 'combined'


def dataset_key(name: str) -> str:
    """Workspace entry name for one loaded dataset."""
    return f"dataset:{name}"


def build_unified_matrix(
    datasets: Dict[str, ad.AnnData],
    join: str = 'outer',
    logger=None
) -> ad.AnnData:
    """
    Concatenate datasets on the gene axis.

    Parameters
    ----------
    datasets : Dict[str, AnnData]
        Dataset name -> cells x genes matrix, in merge order
    join : str
        'outer' keeps every gene (absent counts are zero), 'inner' keeps
        only genes shared by all datasets
    logger : Optional
        Logger instance

    Returns
    -------
    combined : AnnData
        Cells ids prefixed ``<source>_``; ``obs['source']`` categorical
        in dataset order
    """
    if not datasets:
        raise ValueError("No datasets to merge")
    if join not in ('outer', 'inner'):
        raise ValueError(f"join must be 'outer' or 'inner', got '{join}'")

    names = list(datasets)
    parts = []
    for name in names:
        adata = datasets[name].copy()
        adata.obs_names = [f"{name}_{cell}" for cell in adata.obs_names]
        adata.obs['source'] = name
        parts.append(adata)

    combined = ad.concat(parts, join=join, fill_value=0, merge=None)
    if not combined.obs_names.is_unique:
        raise ValueError("Cell ids are not unique after merging; check dataset names")

    combined.obs['source'] = pd.Categorical(combined.obs['source'], categories=names)

    if logger:
        logger.info(
            f"Unified matrix: {combined.n_obs} cells x {combined.n_vars} genes "
            f"from {len(names)} datasets ({join} join)"
        )
        for name, n in combined.obs['source'].value_counts(sort=False).items():
            logger.info(f"  {name}: {n} cells")

    return combined


class UnifiedMatrixBuilder:
    """
    Load each dataset and the combined matrix into a workspace.

    Every stage is skipped when its workspace entry already exists, so
    building against a populated workspace leaves it untouched.
    """

    def __init__(
        self,
        dataset_configs: List[Dict[str, Any]],
        workspace: Workspace,
        join: str = 'outer',
        logger=None
    ):
        names = [c['name'] for c in dataset_configs]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate dataset names: {names}")
        self.dataset_configs = dataset_configs
        self.workspace = workspace
        self.join = join
        self.logger = logger

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def load_datasets(self) -> Dict[str, ad.AnnData]:
        """Load datasets missing from the workspace."""
        datasets = {}
        for config in self.dataset_configs:
            key = dataset_key(config['name'])
            if key in self.workspace:
                self._log(f"Using cached {config['name']}")
            else:
                self.workspace[key] = DatasetLoader(config, self.logger).load()
            datasets[config['name']] = self.workspace[key]
        return datasets

    def build(self) -> ad.AnnData:
        """Return the combined matrix, building it only if absent."""
        if COMBINED_KEY in self.workspace:
            self._log("Using cached unified matrix")
            return self.workspace[COMBINED_KEY]

        datasets = self.load_datasets()
        self.workspace[COMBINED_KEY] = build_unified_matrix(datasets, self.join, self.logger)
        return self.workspace[COMBINED_KEY]
