"""
Data loading, merging and quality control.
"""
from .loader import DatasetLoader, STANDARD_OBS_FIELDS
from .merge import build_unified_matrix, UnifiedMatrixBuilder, dataset_key, COMBINED_KEY
from .qc import QualityControl, qc_summary
from .validator import DataValidator

__all__ = [
    'DatasetLoader',
    'STANDARD_OBS_FIELDS',
    'build_unified_matrix',
    'UnifiedMatrixBuilder',
    'dataset_key',
    'COMBINED_KEY',
    'QualityControl',
    'qc_summary',
    'DataValidator',
]
