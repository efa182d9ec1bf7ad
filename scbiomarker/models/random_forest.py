"""
Random Forest cell-type classifier.
"""
import joblib
import numpy as np
import pandas as pd
import anndata as ad
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple
from scipy.sparse import issparse
from sklearn.ensemble import RandomForestClassifier
from sklearn.model_selection import train_test_split
from sklearn.preprocessing import LabelEncoder

from .base import BaseCellClassifier


def split_train_test(
    adata: ad.AnnData,
    label_key: str = 'cell_type',
    test_size: float = 0.3,
    seed: int = 0,
    logger=None
) -> Tuple[ad.AnnData, ad.AnnData]:
    """
    Split labelled cells into train and test sets.

    Cells with a missing label are dropped. The split is stratified by
    label unless some label has fewer than two cells.
    """
    if label_key not in adata.obs.columns:
        raise ValueError(f"Label column '{label_key}' not found in obs")

    labelled = adata[adata.obs[label_key].notna().to_numpy()]
    if labelled.n_obs < 2:
        raise ValueError(f"Need at least two labelled cells to split, got {labelled.n_obs}")

    labels = labelled.obs[label_key].astype(str)
    stratify = labels if labels.value_counts().min() >= 2 else None
    if stratify is None and logger:
        logger.warning("Some labels have a single cell; using an unstratified split")

    train_idx, test_idx = train_test_split(
        np.arange(labelled.n_obs), test_size=test_size, random_state=seed, stratify=stratify
    )
    if logger:
        logger.info(f"Train/test split: {len(train_idx)} / {len(test_idx)} cells")
    return labelled[train_idx].copy(), labelled[test_idx].copy()


class RandomForestCellClassifier(BaseCellClassifier):
    """Random Forest on a fixed gene panel (highly variable genes by default)."""

    def __init__(self, config: Dict[str, Any], save_dir: Path, logger=None):
        super().__init__(config, save_dir, logger)

        self.features = config.get('features', 'highly_variable')
        self.layer = config.get('layer', None)
        rf_config = config.get('random_forest', {})
        self.estimator = RandomForestClassifier(
            n_estimators=rf_config.get('n_estimators', 500),
            max_depth=rf_config.get('max_depth', None),
            min_samples_leaf=rf_config.get('min_samples_leaf', 1),
            class_weight=rf_config.get('class_weight', 'balanced'),
            n_jobs=rf_config.get('n_jobs', 1),
            random_state=rf_config.get('random_state', 0),
        )
        self.genes: Optional[List[str]] = None
        # estimator sees integer codes; labels round-trip through the encoder
        self.label_encoder = LabelEncoder()

    def _select_genes(self, data: ad.AnnData) -> List[str]:
        if isinstance(self.features, str):
            if self.features not in data.var.columns:
                raise ValueError(f"Feature column '{self.features}' not found in var")
            genes = data.var_names[data.var[self.features].astype(bool).to_numpy()].tolist()
        else:
            genes = list(self.features)
            missing = [g for g in genes if g not in data.var_names]
            if missing:
                raise ValueError(f"Feature genes not found: {missing[:10]}")
        if not genes:
            raise ValueError("No feature genes selected for classifier")
        return genes

    def _feature_matrix(self, data: ad.AnnData) -> np.ndarray:
        subset = data[:, self.genes]
        X = subset.layers[self.layer] if self.layer is not None else subset.X
        return X.toarray() if issparse(X) else np.asarray(X)

    def train(self, train_data: ad.AnnData, **kwargs) -> None:
        if self.label_key not in train_data.obs.columns:
            raise ValueError(f"Training data must have '{self.label_key}' column in obs")

        self.genes = self._select_genes(train_data)
        y = train_data.obs[self.label_key].astype(str).to_numpy()
        self.log_info(
            f"Training Random Forest on {train_data.n_obs} cells, "
            f"{len(self.genes)} genes, {len(np.unique(y))} classes"
        )
        self.estimator.fit(self._feature_matrix(train_data), self.label_encoder.fit_transform(y))

    def predict(self, data: ad.AnnData, **kwargs) -> np.ndarray:
        if self.genes is None:
            raise RuntimeError("Model not trained. Call train() first.")
        missing = [g for g in self.genes if g not in data.var_names]
        if missing:
            raise ValueError(f"Data lacks {len(missing)} training genes, e.g. {missing[:5]}")
        codes = self.estimator.predict(self._feature_matrix(data))
        predictions = self.label_encoder.inverse_transform(codes)
        self.log_info(f"Generated predictions for {len(predictions)} cells")
        return predictions

    def predict_proba(self, data: ad.AnnData) -> pd.DataFrame:
        """Class probabilities, one column per label."""
        if self.genes is None:
            raise RuntimeError("Model not trained. Call train() first.")
        proba = self.estimator.predict_proba(self._feature_matrix(data))
        labels = self.label_encoder.inverse_transform(self.estimator.classes_)
        return pd.DataFrame(proba, index=data.obs_names, columns=labels)

    def feature_importance(self) -> pd.DataFrame:
        """Impurity-based importance per gene, most important first."""
        if self.genes is None:
            raise RuntimeError("Model not trained. Call train() first.")
        importance = pd.DataFrame({
            'gene': self.genes,
            'importance': self.estimator.feature_importances_,
        })
        return importance.sort_values('importance', ascending=False, kind='mergesort').reset_index(drop=True)

    def save_model(self) -> Path:
        model_path = self.model_outputs_dir / "random_forest.joblib"
        joblib.dump({
            'estimator': self.estimator,
            'classes': self.label_encoder.classes_.tolist(),
            'genes': self.genes,
            'label_key': self.label_key,
        }, model_path)
        self.log_info(f"Model saved to {model_path}")
        return model_path
