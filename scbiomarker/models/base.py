"""
Abstract base class for cell-type classifiers.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Any
import numpy as np
import anndata as ad


class BaseCellClassifier(ABC):
    """
    Abstract base class for all cell-type classifiers.

    Models read labels from ``obs[label_key]`` and features from the
    AnnData they are given; they handle their own feature selection.
    """

    def __init__(self, config: Dict[str, Any], save_dir: Path, logger=None):
        """
        Initialize the model.

        Parameters
        ----------
        config : Dict[str, Any]
            Model configuration dictionary (must hold 'model')
        save_dir : Path
            Directory to save model outputs
        logger : Optional
            Logger instance
        """
        self.config = config
        self.save_dir = Path(save_dir)
        self.logger = logger
        self.label_key = config.get('label_key', 'cell_type')

        self.model_outputs_dir = self.save_dir / "model_outputs"
        self.model_outputs_dir.mkdir(parents=True, exist_ok=True)

        self.log_info(f"Initialized {self.config['model']} classifier")
        self.log_info(f"  Output directory: {self.model_outputs_dir}")

    @abstractmethod
    def train(self, train_data: ad.AnnData, **kwargs) -> None:
        """
        Fit the model on labelled cells.

        Parameters
        ----------
        train_data : AnnData
            Training cells with ``obs[label_key]``
        """

    @abstractmethod
    def predict(self, data: ad.AnnData, **kwargs) -> np.ndarray:
        """
        Predict labels for cells.

        Returns
        -------
        predictions : np.ndarray
            Predicted label strings
        """

    @abstractmethod
    def save_model(self) -> Path:
        """Save model artifacts to ``model_outputs_dir``."""

    def log_info(self, message: str) -> None:
        """Log info message if logger available."""
        if self.logger:
            self.logger.info(message)

    def log_warning(self, message: str) -> None:
        """Log warning message if logger available."""
        if self.logger:
            self.logger.warning(message)
