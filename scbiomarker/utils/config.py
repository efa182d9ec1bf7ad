"""
Configuration loading and validation utilities.
"""
import yaml
from pathlib import Path
from typing import Dict, Any
import hashlib
import json


DATASET_LAYOUTS = ('genes_by_cells', 'cells_by_genes', 'header_metadata')


class ConfigValidator:
    """Validate dataset and analysis configurations."""

    @staticmethod
    def validate_dataset_config(config: Dict[str, Any], check_paths: bool = True) -> None:
        """Validate dataset configuration."""
        required = ['name', 'counts_path', 'layout']
        for field in required:
            if field not in config:
                raise ValueError(f"Dataset config missing required field: {field}")

        if config['layout'] not in DATASET_LAYOUTS:
            raise ValueError(
                f"Unknown layout '{config['layout']}' for dataset {config['name']}. "
                f"Available layouts: {list(DATASET_LAYOUTS)}"
            )

        if config['layout'] == 'header_metadata' and not config.get('metadata_rows'):
            raise ValueError(
                f"Dataset {config['name']} uses 'header_metadata' layout "
                f"but defines no 'metadata_rows'"
            )

        if check_paths:
            for key in ('counts_path', 'metadata_path'):
                if config.get(key) is None:
                    continue
                data_path = Path(config[key])
                if not data_path.exists():
                    raise FileNotFoundError(f"Data file not found: {data_path}")

    @staticmethod
    def validate_analysis_config(config: Dict[str, Any]) -> None:
        """Validate analysis configuration."""
        required = ['name', 'datasets']
        for field in required:
            if field not in config:
                raise ValueError(f"Analysis config missing required field: {field}")

        datasets = config['datasets']
        if not isinstance(datasets, list) or not datasets:
            raise ValueError("'datasets' must be a non-empty list of dataset names")

        if len(set(datasets)) != len(datasets):
            raise ValueError(f"Duplicate dataset names in analysis config: {datasets}")

        for comparison in config.get('comparisons', []):
            for field in ('name', 'group_key', 'group_a', 'group_b'):
                if field not in comparison:
                    raise ValueError(f"Comparison missing required field: {field}")

        classifier = config.get('classifier')
        if classifier is not None and 'model' not in classifier:
            raise ValueError("Classifier config must specify 'model'")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML configuration file."""
    with open(path, 'r') as f:
        return yaml.safe_load(f)


def save_yaml(config: Dict[str, Any], path: Path) -> None:
    """Save configuration to YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def compute_config_hash(config: Dict[str, Any]) -> str:
    """Compute hash of configuration for reproducibility."""
    config_str = json.dumps(config, sort_keys=True, default=str)
    return hashlib.md5(config_str.encode()).hexdigest()[:8]


def load_dataset_config(
    dataset_name: str,
    config_dir: Path = Path("configs/datasets"),
    check_paths: bool = True
) -> Dict[str, Any]:
    """Load dataset configuration by name."""
    config_path = config_dir / f"{dataset_name}.yaml"
    if not config_path.exists():
        raise FileNotFoundError(f"Dataset config not found: {config_path}")

    config = load_yaml(config_path)
    ConfigValidator.validate_dataset_config(config, check_paths=check_paths)
    return config


def load_analysis_config(analysis_path: Path, check_paths: bool = True) -> Dict[str, Any]:
    """Load and validate a full analysis configuration.

    Dataset configs named under ``datasets`` are resolved from
    ``dataset_config_dir`` (default ``configs/datasets``) and attached
    as ``_dataset_configs`` in the same order.
    """
    if not analysis_path.exists():
        raise FileNotFoundError(f"Analysis config not found: {analysis_path}")

    config = load_yaml(analysis_path)
    ConfigValidator.validate_analysis_config(config)

    config_dir = Path(config.get('dataset_config_dir', 'configs/datasets'))
    config['_dataset_configs'] = [
        load_dataset_config(name, config_dir, check_paths=check_paths)
        for name in config['datasets']
    ]

    return config


def public_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Drop resolved ``_``-prefixed entries before snapshotting."""
    return {k: v for k, v in config.items() if not k.startswith('_')}
