"""
Empirical null distribution from permutation maps.

Each permutation map is scaled and filtered exactly like the observed map
and accumulated into a shared null histogram. Permutations are processed
on a thread pool; the histogram's bin array is the only shared state and
is only touched under a lock.
"""

import logging
import threading
from typing import Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from pylisa.core.bilateral import BilateralFilter
from pylisa.core.histogram import Histogram
from pylisa.core.normalization import estimate_mode, z_scale
from pylisa.core.volume import histogram_range, zero_nonfinite

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 20


def resolve_n_jobs(n_jobs: int) -> int:
    """Map a worker count where 0 means "all processors" to joblib's convention."""
    if n_jobs < -1:
        raise ValueError(f"n_jobs must be >= -1, got {n_jobs}")
    return -1 if n_jobs == 0 else n_jobs


class NullEstimator:
    """
    Build the real and null histograms of a LISA run.

    Parameters
    ----------
    bilateral : BilateralFilter
        Filter applied to each permutation map. Must be the one used for
        the observed map.
    stddev : float
        Null standard deviation used to z-scale each permutation map.
    centering : bool
        Whether to subtract each permutation map's mode before scaling.
    n_bins : int
        Number of histogram bins. Default: 10000.
    n_jobs : int
        Number of worker threads; 0 or -1 uses all processors. The result
        does not depend on it.
    mode_bins : int
        Number of bins used for mode estimation.

    Attributes
    ----------
    null_histogram : Histogram or None
        Null histogram of the last run.
    real_histogram : Histogram or None
        Real histogram of the last run.
    """

    def __init__(
        self,
        bilateral: BilateralFilter,
        stddev: float = 1.0,
        centering: bool = False,
        n_bins: int = 10000,
        n_jobs: int = 0,
        mode_bins: int = 100,
    ):
        self.bilateral = bilateral
        self.stddev = stddev
        self.centering = centering
        self.n_bins = n_bins
        self.n_jobs = resolve_n_jobs(n_jobs)
        self.mode_bins = mode_bins

        self.null_histogram: Optional[Histogram] = None
        self.real_histogram: Optional[Histogram] = None
        self._lock = threading.Lock()

    def _process_permutation(self, index: int, n_total: int, permutation: np.ndarray) -> int:
        if index % PROGRESS_INTERVAL == 0:
            logger.debug(f"Permutation {index:4d} of {n_total}")

        volume = np.array(permutation, copy=True)
        zero_nonfinite(volume)
        mode = estimate_mode(volume, self.mode_bins) if self.centering else 0.0
        z_scale(volume, self.stddev, mode)
        filtered = self.bilateral.apply(volume)
        del volume

        with self._lock:
            return self.null_histogram.update(filtered)

    def run(
        self,
        real_filtered: np.ndarray,
        permutations: Sequence[np.ndarray],
    ) -> Tuple[Histogram, Histogram]:
        """
        Build the null and real histograms.

        Parameters
        ----------
        real_filtered : np.ndarray
            Observed map, already scaled and filtered.
        permutations : sequence of np.ndarray
            Unscaled, unfiltered permutation maps. Not modified.

        Returns
        -------
        tuple of (Histogram, Histogram)
            Null histogram and real histogram, sharing range and bin count.
        """
        hmin, hmax = histogram_range(real_filtered)
        logger.info(f"Histogram range: [{hmin:.3f}, {hmax:.3f}]")

        self.real_histogram = Histogram(hmin, hmax, self.n_bins)
        self.real_histogram.update(real_filtered)
        self.null_histogram = Histogram(hmin, hmax, self.n_bins)

        n_perm = len(permutations)
        if n_perm == 0:
            logger.warning("No permutation images supplied: null histogram is empty")
            return self.null_histogram, self.real_histogram

        logger.info(f"Filtering {n_perm} permutation images")
        if self.n_jobs == 1:
            for i, perm in enumerate(permutations):
                self._process_permutation(i, n_perm, perm)
        else:
            Parallel(n_jobs=self.n_jobs, backend="threading")(
                delayed(self._process_permutation)(i, n_perm, perm)
                for i, perm in enumerate(permutations)
            )

        logger.info(
            f"Null histogram: {self.null_histogram.total} samples, "
            f"real histogram: {self.real_histogram.total} samples"
        )
        return self.null_histogram, self.real_histogram
