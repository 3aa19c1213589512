"""
LISA statistical inference.

This module handles:
- Scaling of the observed and permutation maps to the null variance
- Bilateral filtering of the observed map
- Null distribution estimation from the permutation maps
- FDR thresholding
- Removal of isolated voxels
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from pylisa.core.bilateral import BilateralFilter
from pylisa.core.cleanup import remove_isolated_voxels
from pylisa.core.exceptions import InsufficientDataError
from pylisa.core.fdr import FDRCorrector
from pylisa.core.histogram import Histogram
from pylisa.core.normalization import estimate_mode, estimate_null_scale, z_scale
from pylisa.core.null_estimation import NullEstimator
from pylisa.core.volume import as_volume, check_permutations, zero_nonfinite

logger = logging.getLogger(__name__)


class LisaInference:
    """
    Permutation-based FDR inference on a statistical map.

    Parameters
    ----------
    alpha : float
        FDR level, in (0, 1]. Default: 0.05.
    radius : int
        Bilateral filter neighbourhood radius in voxels. Default: 2.
    rvar : float
        Radiometric variance of the bilateral filter. Default: 2.0.
    svar : float
        Spatial variance of the bilateral filter. Default: 2.0.
    numiter : int
        Number of bilateral filter passes. Default: 2.
    centering : bool
        Whether to subtract each map's mode before scaling. Default: False.
    cleanup : bool
        Whether to remove isolated voxels after thresholding. Default: True.
    n_bins : int
        Number of histogram bins. Default: 10000.
    null_sample_size : int
        Number of permutation maps used to estimate the null variance.
        Default: 30.
    n_jobs : int
        Number of worker threads, 0 for all processors. Default: 0.
    mode_bins : int
        Number of bins used for mode estimation. Default: 100.

    Attributes
    ----------
    null_stddev : float or None
        Null standard deviation used for scaling.
    mode : float
        Mode subtracted from the observed map (0 without centering).
    filtered_map : np.ndarray or None
        Scaled and filtered observed map.
    null_histogram, real_histogram : Histogram or None
        Histograms of the last run.
    thresholds : dict
        FDR thresholds of the last run.
    fdr_table : pd.DataFrame or None
        FDR curve of the last run.
    n_retained : int
        Voxels retained by FDR thresholding.
    significance_map : np.ndarray or None
        ``1 - q`` of each voxel left in the result, 0 elsewhere.
    n_removed : int
        Voxels removed as isolated.
    """

    def __init__(
        self,
        alpha: float = 0.05,
        radius: int = 2,
        rvar: float = 2.0,
        svar: float = 2.0,
        numiter: int = 2,
        centering: bool = False,
        cleanup: bool = True,
        n_bins: int = 10000,
        null_sample_size: int = 30,
        n_jobs: int = 0,
        mode_bins: int = 100,
    ):
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")

        self.alpha = alpha
        self.bilateral = BilateralFilter(radius=radius, svar=svar, rvar=rvar, numiter=numiter)
        self.centering = centering
        self.cleanup = cleanup
        self.n_bins = n_bins
        self.null_sample_size = null_sample_size
        self.n_jobs = n_jobs
        self.mode_bins = mode_bins

        self.null_stddev: Optional[float] = None
        self.mode = 0.0
        self.n_permutations = 0
        self.filtered_map: Optional[np.ndarray] = None
        self.null_histogram: Optional[Histogram] = None
        self.real_histogram: Optional[Histogram] = None
        self.thresholds: Dict[str, Optional[float]] = {"upper": None, "lower": None}
        self.fdr_table: Optional[pd.DataFrame] = None
        self.significance_map: Optional[np.ndarray] = None
        self.n_retained = 0
        self.n_removed = 0

    def _null_scale(self, permutations: Sequence[np.ndarray]) -> float:
        try:
            return estimate_null_scale(permutations, self.null_sample_size)
        except InsufficientDataError as e:
            logger.warning(f"{e}; using null standard deviation 1.0")
            return 1.0

    def run(
        self,
        volume: np.ndarray,
        permutations: Sequence[np.ndarray],
        fdr_file: Optional[Union[str, Path]] = None,
    ) -> np.ndarray:
        """
        Run the full inference on an observed map.

        Parameters
        ----------
        volume : np.ndarray
            Observed statistical map (e.g. z-map), floating point.
        permutations : sequence of np.ndarray
            Statistical maps computed from permuted data, each with the
            observed map's voxel count.
        fdr_file : str or Path, optional
            Where to write the FDR curve as TSV.

        Returns
        -------
        np.ndarray
            Thresholded map: filtered observed values where significant,
            zero elsewhere.

        Raises
        ------
        DimensionMismatchError
            If a permutation map is incompatible with the observed map.
        DegenerateVarianceError
            If the null standard deviation is zero or not finite.
        """
        volume = as_volume(volume, "observed volume")
        permutations = check_permutations(volume, permutations)
        self.n_permutations = len(permutations)
        logger.info(f"Number of permutation images: {self.n_permutations}")

        self.null_stddev = self._null_scale(permutations)

        observed = np.array(volume, copy=True)
        n_nonfinite = zero_nonfinite(observed)
        if n_nonfinite:
            logger.info(f"Treating {n_nonfinite} non-finite voxels of the observed map as background")
        self.mode = estimate_mode(observed, self.mode_bins) if self.centering else 0.0
        if self.centering:
            logger.info(f"Mode of observed map: {self.mode:.4f}")
        z_scale(observed, self.null_stddev, self.mode)

        logger.info(f"Filtering observed map with {self.bilateral!r}")
        self.filtered_map = self.bilateral.apply(observed)

        estimator = NullEstimator(
            self.bilateral,
            stddev=self.null_stddev,
            centering=self.centering,
            n_bins=self.n_bins,
            n_jobs=self.n_jobs,
            mode_bins=self.mode_bins,
        )
        self.null_histogram, self.real_histogram = estimator.run(self.filtered_map, permutations)

        corrector = FDRCorrector(self.alpha)
        result = corrector.correct(
            self.filtered_map,
            self.alpha,
            self.null_histogram,
            self.real_histogram,
            fdr_file=fdr_file,
        )
        self.thresholds = dict(corrector.thresholds)
        self.fdr_table = corrector.fdr_table
        self.n_retained = corrector.n_retained

        self.significance_map = corrector.significance_map
        self.n_removed = 0
        if self.cleanup and self.alpha < 1.0:
            # Isolation is judged on the significance scale, where every
            # retained voxel is at least 1 - alpha.
            retained = self.significance_map != 0
            self.n_removed = remove_isolated_voxels(self.significance_map, 1.0 - self.alpha)
            result[retained & (self.significance_map == 0)] = 0

        return result

    def get_results(self) -> Dict[str, Any]:
        """Scalar results of the last run, suitable for a JSON sidecar."""
        histogram_range = None
        if self.real_histogram is not None:
            histogram_range = [self.real_histogram.range_min, self.real_histogram.range_max]
        return {
            "n_permutations": self.n_permutations,
            "null_stddev": self.null_stddev,
            "mode": self.mode,
            "histogram_range": histogram_range,
            "thresholds": dict(self.thresholds),
            "n_retained": self.n_retained,
            "n_removed": self.n_removed,
        }

    def summary(self) -> str:
        """
        Get a text summary of inference results.

        Returns
        -------
        str
            Summary text.
        """
        lines = ["LISA Inference Summary", "=" * 30, ""]
        lines.append(f"FDR level (α): {self.alpha}")
        lines.append(f"Bilateral filter: {self.bilateral!r}")
        lines.append(f"Mode centering: {self.centering}")
        lines.append(f"Cleanup: {self.cleanup}")
        lines.append(f"Permutations: {self.n_permutations}")
        if self.null_stddev is not None:
            lines.append(f"Null standard deviation: {self.null_stddev:.4f}")
        lines.append("")

        for tail in ("upper", "lower"):
            value = self.thresholds.get(tail)
            if value is None:
                lines.append(f"  {tail} threshold: none")
            else:
                lines.append(f"  {tail} threshold: {value:.4f}")
        lines.append(f"  retained voxels: {self.n_retained}")
        lines.append(f"  isolated voxels removed: {self.n_removed}")

        return "\n".join(lines)
