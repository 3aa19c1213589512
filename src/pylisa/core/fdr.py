"""
Histogram-based false discovery rate thresholding.

The FDR at a value ``v`` is estimated as the proportion of the null
distribution at or beyond ``v`` divided by the proportion of the observed
distribution at or beyond ``v``. Positive and negative values are treated
as two separate tails.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd

from pylisa.core.histogram import Histogram

logger = logging.getLogger(__name__)


def compute_fdr_curve(null_histogram: Histogram, real_histogram: Histogram) -> pd.DataFrame:
    """
    Estimate the FDR of every histogram bin.

    Parameters
    ----------
    null_histogram : Histogram
        Histogram of the filtered permutation maps.
    real_histogram : Histogram
        Histogram of the filtered observed map.

    Returns
    -------
    pd.DataFrame
        One row per bin with columns ``bin``, ``lower``, ``upper``,
        ``center``, ``tail`` ("upper", "lower" or None for a bin centred
        on zero), ``null_count``, ``real_count``, ``null_tail``,
        ``real_tail``, ``fdr`` and ``qvalue`` (the smallest FDR of the bin
        and every less extreme bin of its tail). Tail proportions, FDR and
        q-values are NaN where they are undefined.
    """
    if not null_histogram.is_compatible(real_histogram):
        raise ValueError(
            f"Null and real histograms are not comparable: "
            f"{null_histogram!r} vs {real_histogram!r}"
        )

    centers = real_histogram.centers
    null_counts = null_histogram.counts.astype(np.float64)
    real_counts = real_histogram.counts.astype(np.float64)
    null_total = null_counts.sum()
    real_total = real_counts.sum()

    upper = centers > 0
    lower = centers < 0

    # Mass at or beyond each bin, accumulated from the extreme inwards.
    null_cum = np.zeros_like(null_counts)
    real_cum = np.zeros_like(real_counts)
    null_cum[upper] = np.cumsum(null_counts[upper][::-1])[::-1]
    real_cum[upper] = np.cumsum(real_counts[upper][::-1])[::-1]
    null_cum[lower] = np.cumsum(null_counts[lower])
    real_cum[lower] = np.cumsum(real_counts[lower])

    with np.errstate(divide="ignore", invalid="ignore"):
        null_tail = null_cum / null_total if null_total > 0 else np.full_like(null_cum, np.nan)
        real_tail = real_cum / real_total if real_total > 0 else np.full_like(real_cum, np.nan)
        fdr = np.where(real_tail > 0, null_tail / real_tail, np.nan)

    tail = np.where(upper, "upper", np.where(lower, "lower", None))
    null_tail[~(upper | lower)] = np.nan
    real_tail[~(upper | lower)] = np.nan
    fdr[~(upper | lower)] = np.nan

    # Smallest FDR over every threshold at least as inclusive as the bin:
    # q-values never increase away from zero.
    qvalue = np.full_like(fdr, np.nan)
    qvalue[upper] = np.fmin.accumulate(fdr[upper])
    qvalue[lower] = np.fmin.accumulate(fdr[lower][::-1])[::-1]

    return pd.DataFrame({
        "bin": np.arange(real_histogram.n_bins),
        "lower": real_histogram.edges[:-1],
        "upper": real_histogram.edges[1:],
        "center": centers,
        "tail": tail,
        "null_count": null_histogram.counts,
        "real_count": real_histogram.counts,
        "null_tail": null_tail,
        "real_tail": real_tail,
        "fdr": fdr,
        "qvalue": qvalue,
    })


def save_fdr_table(curve: pd.DataFrame, path: Union[str, Path]) -> Path:
    """
    Write the rows of an FDR curve that hold observed voxels as TSV.

    Parameters
    ----------
    curve : pd.DataFrame
        Output of :func:`compute_fdr_curve`.
    path : str or Path
        Output file.

    Returns
    -------
    Path
        The output file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table = curve[curve["real_count"] > 0]
    table.to_csv(path, sep="\t", index=False, float_format="%.6g")
    logger.info(f"FDR table saved to: {path}")
    return path


class FDRCorrector:
    """
    Threshold an observed map at a target false discovery rate.

    Parameters
    ----------
    alpha : float
        FDR level, in (0, 1]. Default: 0.05.

    Attributes
    ----------
    thresholds : dict
        ``{"upper": value or None, "lower": value or None}``. The upper
        threshold is the lower edge of the least extreme significant
        positive bin, the lower threshold the upper edge of the least
        extreme significant negative bin.
    threshold_bins : dict
        Indices of the same bins.
    fdr_table : pd.DataFrame or None
        FDR curve of the last correction.
    significance_map : np.ndarray or None
        ``1 - q`` of each retained voxel's bin, 0 elsewhere. Every retained
        voxel has a significance of at least ``1 - alpha``.
    n_retained : int
        Number of voxels retained by the last correction.
    """

    def __init__(self, alpha: float = 0.05):
        self.alpha = alpha
        self.thresholds: Dict[str, Optional[float]] = {"upper": None, "lower": None}
        self.threshold_bins: Dict[str, Optional[int]] = {"upper": None, "lower": None}
        self.fdr_table: Optional[pd.DataFrame] = None
        self.significance_map: Optional[np.ndarray] = None
        self.n_retained = 0

    @staticmethod
    def _select_bin(curve: pd.DataFrame, tail: str, alpha: float) -> Optional[int]:
        candidates = curve[
            (curve["tail"] == tail)
            & (curve["real_count"] > 0)
            & (curve["fdr"] <= alpha)
        ]
        if candidates.empty:
            return None
        # Least extreme significant bin: closest to zero.
        if tail == "upper":
            return int(candidates["bin"].min())
        return int(candidates["bin"].max())

    def correct(
        self,
        real_volume: np.ndarray,
        alpha: Optional[float],
        null_histogram: Histogram,
        real_histogram: Histogram,
        fdr_file: Optional[Union[str, Path]] = None,
    ) -> np.ndarray:
        """
        Apply FDR thresholding.

        Parameters
        ----------
        real_volume : np.ndarray
            Filtered observed map. Not modified.
        alpha : float, optional
            FDR level. Default: self.alpha.
        null_histogram : Histogram
            Null histogram.
        real_histogram : Histogram
            Real histogram, same range and bins as ``null_histogram``.
        fdr_file : str or Path, optional
            If given, the FDR curve of the bins holding observed voxels is
            written there as TSV.

        Returns
        -------
        np.ndarray
            Copy of ``real_volume`` where only voxels at least as extreme as
            the selected thresholds keep their value.
        """
        if alpha is None:
            alpha = self.alpha
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha

        logger.info(f"Applying FDR correction: q <= {alpha}")

        curve = compute_fdr_curve(null_histogram, real_histogram)
        self.fdr_table = curve
        self.thresholds = {"upper": None, "lower": None}
        self.threshold_bins = {"upper": None, "lower": None}

        real_volume = np.asarray(real_volume)
        result = np.zeros_like(real_volume)
        self.significance_map = np.zeros(real_volume.shape, dtype=np.float64)

        if null_histogram.total == 0:
            logger.warning("Null histogram is empty: no voxel can be declared significant")
            self.n_retained = 0
            if fdr_file is not None:
                save_fdr_table(curve, fdr_file)
            return result

        upper_bin = self._select_bin(curve, "upper", alpha)
        lower_bin = self._select_bin(curve, "lower", alpha)

        values = np.asarray(real_volume, dtype=np.float64)
        valid = ~np.isnan(values) & (np.abs(values) >= real_histogram.epsilon)
        bins = np.full(values.shape, -1, dtype=np.int64)
        bins[valid] = real_histogram.bin_index(values[valid])

        retain = np.zeros(values.shape, dtype=bool)
        if upper_bin is not None:
            retain |= valid & (bins >= upper_bin)
            self.threshold_bins["upper"] = upper_bin
            self.thresholds["upper"] = float(real_histogram.edges[upper_bin])
            logger.info(f"Upper FDR threshold: {self.thresholds['upper']:.4f}")
        if lower_bin is not None:
            retain |= valid & (bins <= lower_bin)
            self.threshold_bins["lower"] = lower_bin
            self.thresholds["lower"] = float(real_histogram.edges[lower_bin + 1])
            logger.info(f"Lower FDR threshold: {self.thresholds['lower']:.4f}")

        result[retain] = real_volume[retain]
        self.significance_map[retain] = 1.0 - curve["qvalue"].to_numpy()[bins[retain]]
        self.n_retained = int(retain.sum())

        if self.n_retained == 0:
            logger.warning(f"No voxels survive FDR correction at q <= {alpha}")
        else:
            logger.info(f"{self.n_retained} voxels survive FDR correction at q <= {alpha}")

        if fdr_file is not None:
            save_fdr_table(curve, fdr_file)
        return result

    def summary(self) -> str:
        """Text summary of the last correction."""
        lines = ["FDR Correction Summary", "=" * 30]
        lines.append(f"Alpha: {self.alpha}")
        for tail in ("upper", "lower"):
            value = self.thresholds[tail]
            if value is None:
                lines.append(f"{tail.capitalize()} threshold: none")
            else:
                lines.append(f"{tail.capitalize()} threshold: {value:.4f}")
        lines.append(f"Retained voxels: {self.n_retained}")
        return "\n".join(lines)
