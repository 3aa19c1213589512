"""
Fixed-range frequency histogram for voxel values.

The real and null distributions are both accumulated into histograms of
this type. Values close to zero are background and never counted; values
outside the range are clamped into the first or last bin so that no
tissue sample is lost.
"""

import logging
from typing import Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1.0e-8


class Histogram:
    """
    Uniform-width histogram over ``[range_min, range_max]``.

    The bin array is the only mutable state. It is not locked: when a
    histogram is shared between threads, every call to :meth:`increment`
    or :meth:`update` must happen under a lock held by the caller.

    Parameters
    ----------
    range_min : float
        Lower bound of the first bin.
    range_max : float
        Upper bound of the last bin.
    n_bins : int
        Number of bins. Default: 10000.
    epsilon : float
        Values with ``|value| < epsilon`` are background and skipped. Also
        the distance to the range bounds used when clamping.

    Attributes
    ----------
    counts : np.ndarray
        Number of samples per bin.
    edges : np.ndarray
        ``n_bins + 1`` bin edges.
    """

    def __init__(
        self,
        range_min: float,
        range_max: float,
        n_bins: int = 10000,
        epsilon: float = DEFAULT_EPSILON,
    ):
        if n_bins < 1:
            raise ValueError(f"n_bins must be at least 1, got {n_bins}")
        if not np.isfinite(range_min) or not np.isfinite(range_max):
            raise ValueError(f"Histogram range must be finite, got [{range_min}, {range_max}]")
        if not range_max > range_min:
            raise ValueError(f"Invalid histogram range [{range_min}, {range_max}]")

        self.range_min = float(range_min)
        self.range_max = float(range_max)
        self.n_bins = int(n_bins)
        self.epsilon = float(epsilon)
        self.edges = np.linspace(self.range_min, self.range_max, self.n_bins + 1)
        self.counts = np.zeros(self.n_bins, dtype=np.int64)
        self._width = (self.range_max - self.range_min) / self.n_bins

    @property
    def total(self) -> int:
        """Total number of counted samples."""
        return int(self.counts.sum())

    @property
    def centers(self) -> np.ndarray:
        """Bin centres."""
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    def is_compatible(self, other: "Histogram") -> bool:
        """Whether ``other`` has the same range and bin count."""
        return (
            self.n_bins == other.n_bins
            and self.range_min == other.range_min
            and self.range_max == other.range_max
        )

    def _clamp(self, values: np.ndarray) -> np.ndarray:
        values = np.where(values > self.range_max, self.range_max - self.epsilon, values)
        return np.where(values < self.range_min, self.range_min + self.epsilon, values)

    def bin_index(self, values: Union[float, np.ndarray]) -> np.ndarray:
        """
        Bin index of each value after clamping to the histogram range.

        Parameters
        ----------
        values : float or np.ndarray
            Values to locate. NaN is not allowed.

        Returns
        -------
        np.ndarray
            Integer bin indices, same shape as ``values``.
        """
        values = self._clamp(np.asarray(values, dtype=np.float64))
        idx = np.floor((values - self.range_min) / self._width)
        return np.clip(idx, 0, self.n_bins - 1).astype(np.int64)

    def increment(self, value: float) -> bool:
        """
        Count a single value.

        Returns
        -------
        bool
            False if the value was skipped as background (or NaN).
        """
        value = float(value)
        if np.isnan(value) or abs(value) < self.epsilon:
            return False
        self.counts[int(self.bin_index(value))] += 1
        return True

    def update(self, values: np.ndarray) -> int:
        """
        Count every sample of ``values``.

        Parameters
        ----------
        values : np.ndarray
            Samples of any shape.

        Returns
        -------
        int
            Number of samples counted (background and NaN excluded).
        """
        values = np.asarray(values, dtype=np.float64).ravel()
        values = values[~np.isnan(values)]
        values = values[np.abs(values) >= self.epsilon]
        if values.size == 0:
            return 0
        self.counts += np.bincount(self.bin_index(values), minlength=self.n_bins)
        return int(values.size)

    def to_dataframe(self) -> pd.DataFrame:
        """Bin table with lower/upper edges, centres and counts."""
        return pd.DataFrame({
            "lower": self.edges[:-1],
            "upper": self.edges[1:],
            "center": self.centers,
            "count": self.counts,
        })

    def __repr__(self) -> str:
        return (
            f"Histogram(range=[{self.range_min:.4g}, {self.range_max:.4g}], "
            f"n_bins={self.n_bins}, total={self.total})"
        )
