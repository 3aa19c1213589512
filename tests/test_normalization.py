"""Tests for null variance estimation and scaling."""

import numpy as np
import pytest

from pylisa.core.exceptions import (
    DegenerateVarianceError,
    DimensionMismatchError,
    InsufficientDataError,
)
from pylisa.core.normalization import (
    estimate_mode,
    estimate_null_scale,
    volume_variance,
    z_scale,
)
from pylisa.core.volume import (
    as_volume,
    check_permutations,
    histogram_range,
    zero_nonfinite,
)


def _two_valued(a, shape=(4, 4, 4)):
    """Volume with half its voxels at +a and half at -a (variance a**2)."""
    data = np.full(shape, a, dtype=np.float32)
    data.reshape(-1)[::2] = -a
    return data


class TestNullScale:
    """Tests for estimate_null_scale."""

    def test_mean_of_variances(self):
        """Test that the scale is the root of the mean variance."""
        perms = [_two_valued(1.0), _two_valued(2.0)]

        assert estimate_null_scale(perms) == pytest.approx(np.sqrt(2.5))

    def test_sample_size_limit(self):
        """Test that only the first permutations are sampled."""
        perms = [_two_valued(1.0)] * 3 + [_two_valued(100.0)]

        assert estimate_null_scale(perms, sample_size=3) == pytest.approx(1.0)

    def test_zeros_ignored(self):
        """Test that background voxels do not enter the variance."""
        data = np.zeros((4, 4, 4), dtype=np.float32)
        data[0, 0, :2] = [3.0, -3.0]

        assert volume_variance(data) == pytest.approx(9.0)
        assert estimate_null_scale([data]) == pytest.approx(3.0)

    def test_no_permutations(self):
        """Test error on empty permutation set."""
        with pytest.raises(InsufficientDataError):
            estimate_null_scale([])

    def test_all_zero_permutations(self):
        """Test error when no permutation has tissue voxels."""
        with pytest.raises(InsufficientDataError):
            estimate_null_scale([np.zeros((3, 3, 3), dtype=np.float32)] * 5)

    def test_degenerate_variance(self):
        """Test error when the permutations are constant."""
        with pytest.raises(DegenerateVarianceError):
            estimate_null_scale([np.ones((3, 3, 3), dtype=np.float32)] * 5)


class TestScaling:
    """Tests for z_scale and estimate_mode."""

    def test_identity_scaling(self, rng):
        """Test that unit scale without centering leaves values unchanged."""
        data = rng.normal(0, 1, (5, 5, 5)).astype(np.float32)
        data[0] = 0
        original = data.copy()

        z_scale(data, 1.0, 0.0)

        np.testing.assert_array_equal(data, original)

    def test_scaling_keeps_background(self):
        """Test that zero voxels stay zero after centering and scaling."""
        data = np.array([0.0, 4.0, 6.0, 0.0])

        z_scale(data, 2.0, mode=1.0)

        np.testing.assert_allclose(data, [0.0, 1.5, 2.5, 0.0])

    @pytest.mark.parametrize("stddev", [0.0, -1.0, np.nan])
    def test_invalid_stddev(self, stddev):
        """Test that a degenerate scale is rejected."""
        with pytest.raises(DegenerateVarianceError):
            z_scale(np.ones(3), stddev)

    def test_estimate_mode(self, rng):
        """Test mode estimation on a shifted distribution."""
        data = rng.normal(3.0, 0.5, 20000)

        assert estimate_mode(data, n_bins=50) == pytest.approx(3.0, abs=0.3)

    def test_estimate_mode_empty(self):
        """Test that an all-zero volume has mode 0."""
        assert estimate_mode(np.zeros((3, 3, 3))) == 0.0


class TestVolumeChecks:
    """Tests for volume helpers."""

    def test_rejects_integer_volume(self):
        """Test that integer volumes are rejected."""
        with pytest.raises(DimensionMismatchError):
            as_volume(np.zeros((2, 2, 2), dtype=np.int16))

    def test_permutation_size_mismatch(self):
        """Test that the offending permutation is named."""
        volume = np.zeros((4, 4, 4), dtype=np.float32)
        perms = [np.zeros((4, 4, 4), dtype=np.float32), np.zeros((4, 4, 3), dtype=np.float32)]

        with pytest.raises(DimensionMismatchError, match="permutation image 1"):
            check_permutations(volume, perms)

    def test_flat_permutation_reshaped(self):
        """Test that flattened permutations take the observed shape."""
        volume = np.zeros((2, 3, 4), dtype=np.float32)
        perms = check_permutations(volume, [np.arange(24, dtype=np.float32)])

        assert perms[0].shape == (2, 3, 4)

    def test_histogram_range(self):
        """Test range of a volume, and widening of a constant one."""
        assert histogram_range(np.array([-2.0, 0.0, 3.0, np.nan])) == (-2.0, 3.0)
        assert histogram_range(np.zeros(8)) == (-1.0, 1.0)

    def test_zero_nonfinite(self):
        """Test that NaN and infinite samples become background."""
        data = np.array([1.0, np.nan, -np.inf, 2.0, np.inf])

        n = zero_nonfinite(data)

        assert n == 3
        np.testing.assert_array_equal(data, [1.0, 0.0, 0.0, 2.0, 0.0])
