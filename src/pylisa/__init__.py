"""
pylisa: nonparametric statistical inference for fMRI maps.

Thresholds a statistical map at a controlled false discovery rate using
edge-preserving bilateral smoothing and an empirical null distribution
built from permutation maps (LISA).
"""

__version__ = "0.1.0"
__author__ = "pylisa Contributors"

from pylisa.core.bilateral import BilateralFilter, bilateral_filter
from pylisa.core.cleanup import remove_isolated_voxels
from pylisa.core.data_loader import DataLoader
from pylisa.core.exceptions import (
    DegenerateVarianceError,
    DimensionMismatchError,
    InsufficientDataError,
    LisaError,
)
from pylisa.core.fdr import FDRCorrector
from pylisa.core.histogram import Histogram
from pylisa.core.inference import LisaInference
from pylisa.core.null_estimation import NullEstimator
from pylisa.pipeline import LisaPipeline

__all__ = [
    "BilateralFilter",
    "bilateral_filter",
    "remove_isolated_voxels",
    "DataLoader",
    "DegenerateVarianceError",
    "DimensionMismatchError",
    "InsufficientDataError",
    "LisaError",
    "FDRCorrector",
    "Histogram",
    "LisaInference",
    "NullEstimator",
    "LisaPipeline",
    "__version__",
]
