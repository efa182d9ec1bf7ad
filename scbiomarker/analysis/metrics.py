"""
Evaluation metrics for the cell-type classifier.
"""
import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    precision_recall_fscore_support,
    confusion_matrix,
    classification_report
)
from typing import Dict, List, Optional


def compute_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """Accuracy plus macro- and weighted-averaged precision, recall and F1."""
    metrics = {'accuracy': float(accuracy_score(y_true, y_pred))}
    for average in ('macro', 'weighted'):
        precision, recall, f1, _ = precision_recall_fscore_support(
            y_true, y_pred, average=average, zero_division=0
        )
        metrics[f'precision_{average}'] = float(precision)
        metrics[f'recall_{average}'] = float(recall)
        metrics[f'f1_{average}'] = float(f1)
    metrics['n_samples'] = int(len(y_true))
    return metrics


def compute_per_class_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    labels: Optional[List[str]] = None
) -> pd.DataFrame:
    """Precision, recall, F1 and support per class label."""
    if labels is None:
        labels = sorted(set(y_true) | set(y_pred))
    precision, recall, f1, support = precision_recall_fscore_support(
        y_true, y_pred, labels=labels, average=None, zero_division=0
    )
    return pd.DataFrame(
        {'precision': precision, 'recall': recall, 'f1': f1, 'support': support},
        index=pd.Index(labels, name='label'),
    )


def compute_confusion_matrix(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    labels: Optional[List[str]] = None,
    normalize: bool = True
) -> pd.DataFrame:
    """Confusion matrix with true labels as rows, optionally row-normalized."""
    if labels is None:
        labels = sorted(set(y_true) | set(y_pred))
    cm = confusion_matrix(y_true, y_pred, labels=labels).astype(float)
    if normalize:
        row_sums = cm.sum(axis=1)
        row_sums[row_sums == 0] = 1
        cm = cm / row_sums[:, np.newaxis]
    return pd.DataFrame(cm, index=labels, columns=labels)


def get_classification_report(y_true: np.ndarray, y_pred: np.ndarray) -> str:
    return classification_report(y_true, y_pred, zero_division=0)
