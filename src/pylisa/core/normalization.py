"""
Scaling of observed and permutation maps to a common null variance.

This module handles:
- Null variance estimation from a subsample of permutation maps
- Mode estimation for optional mode-centering
- In-place z-scaling of nonzero voxels
"""

import logging
from typing import Optional, Sequence

import numpy as np

from pylisa.core.exceptions import DegenerateVarianceError, InsufficientDataError

logger = logging.getLogger(__name__)


def _tissue_samples(volume: np.ndarray) -> np.ndarray:
    values = np.asarray(volume, dtype=np.float64).ravel()
    return values[np.isfinite(values) & (values != 0)]


def volume_variance(volume: np.ndarray) -> Optional[float]:
    """
    Variance of the nonzero, finite samples of a volume.

    Returns None when the volume has no such samples.
    """
    values = _tissue_samples(volume)
    if values.size == 0:
        return None
    return float(np.var(values))


def estimate_null_scale(
    permutations: Sequence[np.ndarray],
    sample_size: int = 30,
) -> float:
    """
    Estimate the standard deviation of the null distribution.

    The variance of each of the first ``sample_size`` permutation maps is
    computed over its nonzero voxels; the square root of their mean is
    returned.

    Parameters
    ----------
    permutations : sequence of np.ndarray
        Permutation maps.
    sample_size : int
        Maximum number of permutation maps to use. Default: 30.

    Returns
    -------
    float
        Null standard deviation.

    Raises
    ------
    InsufficientDataError
        If no permutation map is supplied, or none of the sampled maps has
        nonzero voxels.
    DegenerateVarianceError
        If the estimated standard deviation is zero or not finite.
    """
    if sample_size < 1:
        raise ValueError(f"sample_size must be at least 1, got {sample_size}")
    if len(permutations) == 0:
        raise InsufficientDataError("No permutation images supplied")

    n_sample = min(sample_size, len(permutations))
    variances = [volume_variance(permutations[i]) for i in range(n_sample)]
    variances = [v for v in variances if v is not None]

    if not variances:
        raise InsufficientDataError(
            f"None of the first {n_sample} permutation images contain nonzero voxels"
        )

    stddev = float(np.sqrt(np.mean(variances)))
    if not np.isfinite(stddev) or stddev <= 0:
        raise DegenerateVarianceError(
            f"Null standard deviation is degenerate ({stddev}) "
            f"over {len(variances)} permutation images"
        )

    logger.info(f"Null standard deviation: {stddev:.6f} (from {len(variances)} permutations)")
    return stddev


def estimate_mode(volume: np.ndarray, n_bins: int = 100) -> float:
    """
    Robust central value of a volume: centre of the peak bin of the
    histogram of its nonzero samples.

    Parameters
    ----------
    volume : np.ndarray
        Input volume.
    n_bins : int
        Number of histogram bins. Default: 100.

    Returns
    -------
    float
        The mode, or 0.0 if the volume has no nonzero samples.
    """
    values = _tissue_samples(volume)
    if values.size == 0:
        return 0.0

    vmin, vmax = values.min(), values.max()
    if vmax <= vmin:
        return float(vmin)

    counts, edges = np.histogram(values, bins=n_bins, range=(vmin, vmax))
    peak = int(np.argmax(counts))
    return float(0.5 * (edges[peak] + edges[peak + 1]))


def z_scale(volume: np.ndarray, stddev: float, mode: float = 0.0) -> None:
    """
    Rescale the nonzero samples of ``volume`` in place.

    Each nonzero sample becomes ``(value - mode) / stddev``. Zero voxels are
    background and stay zero.

    Parameters
    ----------
    volume : np.ndarray
        Floating-point volume, modified in place.
    stddev : float
        Scale, must be positive and finite.
    mode : float
        Value subtracted before scaling. Default: 0.0 (no centering).
    """
    if not np.isfinite(stddev) or stddev <= 0:
        raise DegenerateVarianceError(f"Cannot z-scale with standard deviation {stddev}")

    mask = volume != 0
    volume[mask] = (volume[mask] - mode) / stddev
