"""
Volume helpers shared by every inference stage.

A volume is a floating-point numpy array. All volumes taking part in one
inference run must have the same number of voxels; permutation volumes
stored flattened are reshaped to the observed volume's grid.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from pylisa.core.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


def as_volume(data, name: str = "volume") -> np.ndarray:
    """
    Return ``data`` as a floating-point ndarray.

    Parameters
    ----------
    data : array-like
        Voxel samples.
    name : str
        Name used in error messages.

    Returns
    -------
    np.ndarray
        The samples, without a copy when ``data`` already is a float array.

    Raises
    ------
    DimensionMismatchError
        If the samples are not floating point.
    """
    volume = np.asarray(data)
    if not np.issubdtype(volume.dtype, np.floating):
        raise DimensionMismatchError(
            f"{name} must hold floating-point samples, got dtype {volume.dtype}"
        )
    return volume


def check_permutations(
    volume: np.ndarray,
    permutations: Sequence,
) -> List[np.ndarray]:
    """
    Check that every permutation volume is compatible with ``volume``.

    Parameters
    ----------
    volume : np.ndarray
        Observed volume.
    permutations : sequence of array-like
        Permutation volumes.

    Returns
    -------
    list of np.ndarray
        Permutation volumes with the observed volume's shape.

    Raises
    ------
    DimensionMismatchError
        If a permutation has another voxel count or is not floating point.
    """
    checked = []
    for i, perm in enumerate(permutations):
        perm = np.asarray(perm)
        if perm.size != volume.size:
            raise DimensionMismatchError(
                f"Inconsistent number of voxels in permutation image {i}: "
                f"{perm.size} != {volume.size}"
            )
        if not np.issubdtype(perm.dtype, np.floating):
            raise DimensionMismatchError(
                f"Permutation image {i} is not floating point (dtype {perm.dtype})"
            )
        if perm.shape != volume.shape:
            perm = perm.reshape(volume.shape)
        checked.append(perm)
    return checked


def histogram_range(volume: np.ndarray) -> Tuple[float, float]:
    """
    Value range used for the real and null histograms.

    The range spans the finite samples of ``volume``. A degenerate range
    (constant volume) is widened by 1.0 on each side.
    """
    finite = volume[np.isfinite(volume)]
    if finite.size == 0:
        hmin, hmax = 0.0, 0.0
    else:
        hmin, hmax = float(finite.min()), float(finite.max())

    if hmax <= hmin:
        logger.debug(f"Degenerate histogram range [{hmin}, {hmax}], widening")
        hmin -= 1.0
        hmax += 1.0
    return hmin, hmax


def zero_nonfinite(volume: np.ndarray) -> int:
    """
    Set NaN and infinite samples of ``volume`` to zero, in place.

    Masked maps commonly mark out-of-brain voxels with NaN. Zero is the
    background value of every later stage, and a NaN left in place would
    spread through the bilateral filter to every neighbour.

    Returns
    -------
    int
        Number of samples replaced.
    """
    bad = ~np.isfinite(volume)
    n_bad = int(bad.sum())
    if n_bad:
        volume[bad] = 0
    return n_bad
