"""
Reproducibility utilities for seeding and versioning.
"""
import random
import subprocess
import sys
from importlib import metadata
from pathlib import Path
from typing import Optional

import numpy as np


TRACKED_PACKAGES = (
    'anndata',
    'scanpy',
    'harmonypy',
    'leidenalg',
    'scipy',
    'statsmodels',
    'scikit-learn',
    'gseapy',
    'pandas',
    'numpy',
)


def set_seed(seed: int) -> None:
    """Set random seed for reproducibility."""
    random.seed(seed)
    np.random.seed(seed)


def get_git_commit() -> Optional[str]:
    """Get current git commit hash."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            cwd=Path(__file__).parent.parent.parent
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def get_git_status() -> Optional[str]:
    """Check if git repo has uncommitted changes."""
    try:
        result = subprocess.run(
            ["git", "status", "--porcelain"],
            capture_output=True,
            text=True,
            check=True,
            cwd=Path(__file__).parent.parent.parent
        )
        status = result.stdout.strip()
        return "clean" if not status else "dirty"
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def get_environment_info() -> dict:
    """Get interpreter and analysis library versions."""
    packages = {}
    for name in TRACKED_PACKAGES:
        try:
            packages[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            packages[name] = "not installed"

    return {
        "python_version": sys.version,
        "packages": packages,
    }
