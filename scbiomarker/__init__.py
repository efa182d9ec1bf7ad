"""
Biomarker discovery for single-cell RNA-seq of tumour samples.
"""
from .pipeline import BiomarkerPipeline
from .workspace import Workspace

__version__ = "0.1.0"

__all__ = ['BiomarkerPipeline', 'Workspace']
