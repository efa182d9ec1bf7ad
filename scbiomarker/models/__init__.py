"""
Cell-type classifiers.
"""
from .base import BaseCellClassifier
from .random_forest import RandomForestCellClassifier, split_train_test

MODEL_REGISTRY = {
    'random_forest': RandomForestCellClassifier,
}


def get_model(model_name: str, config: dict, save_dir, logger=None) -> BaseCellClassifier:
    """
    Get model instance by name.

    Parameters
    ----------
    model_name : str
        Name of the model
    config : dict
        Model configuration
    save_dir : Path
        Directory to save model outputs
    logger : Optional
        Logger instance

    Returns
    -------
    model : BaseCellClassifier
        Model instance
    """
    if model_name not in MODEL_REGISTRY:
        raise ValueError(
            f"Unknown model: {model_name}. "
            f"Available models: {list(MODEL_REGISTRY.keys())}"
        )
    return MODEL_REGISTRY[model_name](config, save_dir, logger)


__all__ = [
    'BaseCellClassifier',
    'RandomForestCellClassifier',
    'split_train_test',
    'MODEL_REGISTRY',
    'get_model',
]
