"""
Utility functions for the pipeline.
"""
from .config import (
    load_yaml,
    save_yaml,
    load_dataset_config,
    load_analysis_config,
    compute_config_hash,
    public_config,
    ConfigValidator,
    DATASET_LAYOUTS,
)
from .logger import setup_logger, PipelineLogger
from .prompts import Prompter, parse_selection
from .reproducibility import (
    set_seed,
    get_git_commit,
    get_git_status,
    get_environment_info,
)

__all__ = [
    'load_yaml',
    'save_yaml',
    'load_dataset_config',
    'load_analysis_config',
    'compute_config_hash',
    'public_config',
    'ConfigValidator',
    'DATASET_LAYOUTS',
    'setup_logger',
    'PipelineLogger',
    'Prompter',
    'parse_selection',
    'set_seed',
    'get_git_commit',
    'get_git_status',
    'get_environment_info',
]
