"""Tests for the LISA inference module."""

import numpy as np
import pytest
from scipy.ndimage import convolve

from pylisa.core.exceptions import DegenerateVarianceError, DimensionMismatchError
from pylisa.core.inference import LisaInference


class TestLisaInference:
    """Tests for LisaInference class."""

    def test_initialization(self):
        """Test inference initialization."""
        inference = LisaInference(alpha=0.01, radius=3)

        assert inference.alpha == 0.01
        assert inference.bilateral.radius == 3
        assert inference.cleanup is True

    @pytest.mark.parametrize("alpha", [0.0, 1.01])
    def test_invalid_alpha(self, alpha):
        """Test alpha validation."""
        with pytest.raises(ValueError, match="alpha"):
            LisaInference(alpha=alpha)

    def test_all_zero(self):
        """Test that an empty map with empty permutations gives an empty result."""
        volume = np.zeros((4, 4, 4), dtype=np.float32)
        perms = [np.zeros((4, 4, 4), dtype=np.float32) for _ in range(5)]

        result = LisaInference(n_jobs=1).run(volume, perms)

        assert result.shape == (4, 4, 4)
        assert not result.any()

    def test_single_voxel_removed(self):
        """Test that a single strong voxel does not survive cleanup."""
        volume = np.zeros((8, 8, 8), dtype=np.float32)
        volume[4, 4, 4] = 100.0
        perms = [np.zeros((8, 8, 8), dtype=np.float32) for _ in range(20)]

        result = LisaInference(alpha=0.05, cleanup=True, n_jobs=1).run(volume, perms)

        assert not result.any()

    def test_no_permutations(self, block_volume):
        """Test that an empty permutation set retains nothing."""
        inference = LisaInference(n_jobs=1)

        result = inference.run(block_volume, [])

        assert not result.any()
        assert inference.null_stddev == 1.0

    def test_detects_block(self, block_volume, noise_permutations, block):
        """Test that a strong block is detected."""
        inference = LisaInference(alpha=0.05, n_jobs=1)

        result = inference.run(block_volume, noise_permutations)

        signal = result[block]
        assert signal[2, 2, 2] != 0
        assert np.count_nonzero(signal) >= 0.9 * signal.size
        assert inference.thresholds["upper"] is not None
        assert inference.null_stddev == pytest.approx(1.0, rel=0.1)

        background = np.ones(result.shape, dtype=bool)
        background[block] = False
        assert np.count_nonzero(result[background]) < 0.05 * background.sum()

    def test_retained_values_are_filtered(self, block_volume, noise_permutations):
        """Test that surviving voxels carry their filtered value."""
        inference = LisaInference(n_jobs=1)

        result = inference.run(block_volume, noise_permutations)

        kept = result != 0
        np.testing.assert_array_equal(result[kept], inference.filtered_map[kept])

    def test_thread_count_invariance(self, block_volume, noise_permutations):
        """Test that the result does not depend on the worker count."""
        serial = LisaInference(n_jobs=1).run(block_volume, noise_permutations)
        threaded = LisaInference(n_jobs=4).run(block_volume, noise_permutations)

        np.testing.assert_array_equal(serial, threaded)

    def test_inputs_not_modified(self, block_volume, noise_permutations):
        """Test that observed and permutation maps are left untouched."""
        volume = block_volume.copy()
        perms = [p.copy() for p in noise_permutations]

        LisaInference(centering=True, n_jobs=2).run(volume, perms)

        np.testing.assert_array_equal(volume, block_volume)
        for perm, original in zip(perms, noise_permutations):
            np.testing.assert_array_equal(perm, original)

    def test_dimension_mismatch(self, block_volume):
        """Test error on a permutation with the wrong voxel count."""
        perms = [np.zeros((5, 5, 5), dtype=np.float32)]

        with pytest.raises(DimensionMismatchError):
            LisaInference().run(block_volume, perms)

    def test_degenerate_null(self, block_volume):
        """Test error when the permutations are constant."""
        perms = [np.ones(block_volume.shape, dtype=np.float32)] * 3

        with pytest.raises(DegenerateVarianceError):
            LisaInference().run(block_volume, perms)

    def test_fdr_file(self, block_volume, noise_permutations, temp_dir):
        """Test that the FDR curve is written on request."""
        path = temp_dir / "fdr.tsv"

        LisaInference(n_jobs=1).run(block_volume, noise_permutations, fdr_file=path)

        assert path.exists()

    def test_get_results(self, block_volume, noise_permutations):
        """Test scalar results."""
        inference = LisaInference(n_jobs=1)
        inference.run(block_volume, noise_permutations)

        results = inference.get_results()

        assert results["n_permutations"] == 20
        assert len(results["histogram_range"]) == 2
        assert results["n_retained"] >= results["n_removed"]

    def test_summary(self, block_volume, noise_permutations):
        """Test summary generation."""
        inference = LisaInference(n_jobs=1)
        inference.run(block_volume, noise_permutations)

        summary = inference.summary()

        assert "LISA Inference Summary" in summary
        assert "Permutations: 20" in summary


def _unsupported_voxels(result):
    """Number of nonzero voxels with no nonzero voxel among their 26 neighbours."""
    kept = (result != 0).astype(np.int32)
    footprint = np.ones((3, 3, 3), dtype=np.int32)
    footprint[1, 1, 1] = 0
    neighbours = convolve(kept, footprint, mode="constant", cval=0)
    return int(np.sum((kept == 1) & (neighbours == 0)))


@pytest.fixture
def weak_cluster_case():
    """
    A 3x3x3 cluster and one isolated voxel, all at 0.5, on an empty map.

    Each permutation holds +-0.2 almost everywhere and +-8 in 64 voxels, so
    after scaling the observed voxels (about 0.49) lie beyond all but 32 of
    every 4096 null samples: they are significant although their value is
    below 1 - alpha.
    """
    shape = (16, 16, 16)
    volume = np.zeros(shape, dtype=np.float32)
    volume[2:5, 2:5, 2:5] = 0.5
    volume[10, 10, 10] = 0.5

    perm = np.full(shape, 0.2, dtype=np.float32)
    flat = perm.reshape(-1)
    flat[1::2] = -0.2
    flat[:64] = 8.0
    flat[1:64:2] = -8.0
    return volume, [perm.copy() for _ in range(20)]


@pytest.fixture
def spike_volume(rng):
    """Gaussian noise with a single strong voxel."""
    data = rng.normal(0, 1, (12, 12, 12)).astype(np.float32)
    data[6, 6, 6] = 50.0
    return data


class TestIsolationCleanup:
    """Tests for isolated voxel removal within the inference."""

    def test_weak_isolated_voxel_removed(self, weak_cluster_case):
        """Test that isolation is judged on significance, not on map values."""
        volume, perms = weak_cluster_case
        inference = LisaInference(alpha=0.05, radius=0, n_jobs=1)

        result = inference.run(volume, perms)

        assert inference.thresholds["upper"] < 0.95
        assert inference.n_retained == 28
        assert inference.n_removed == 1
        assert result[10, 10, 10] == 0
        assert np.all(result[2:5, 2:5, 2:5] != 0)
        assert inference.significance_map[10, 10, 10] == 0
        assert np.all(inference.significance_map[2:5, 2:5, 2:5] >= 0.95)

    def test_weak_isolated_voxel_kept_without_cleanup(self, weak_cluster_case):
        """Test that disabling cleanup keeps the isolated voxel."""
        volume, perms = weak_cluster_case

        result = LisaInference(radius=0, cleanup=False, n_jobs=1).run(volume, perms)

        assert result[10, 10, 10] != 0

    def test_no_unsupported_voxels(self, rng):
        """Test that no voxel of the output lacks a surviving neighbour."""
        shape = (20, 20, 20)
        volume = rng.normal(0, 1, shape).astype(np.float32)
        volume[5:15, 5:15, 5:15] += 1.0
        perms = [rng.normal(0, 1, shape).astype(np.float32) for _ in range(20)]
        inference = LisaInference(alpha=0.05, n_jobs=1)

        result = inference.run(volume, perms)

        assert np.count_nonzero(result) > 0
        assert _unsupported_voxels(result) == 0

    def test_spike_removed(self, spike_volume, noise_permutations):
        """Test that a strong isolated voxel passes FDR but not cleanup."""
        inference = LisaInference(alpha=0.05, cleanup=True, n_jobs=1)

        result = inference.run(spike_volume, noise_permutations)

        assert inference.significance_map is not None
        assert inference.n_removed >= 1
        assert result[6, 6, 6] == 0

    def test_spike_kept_without_cleanup(self, spike_volume, noise_permutations):
        """Test that the spike survives FDR when cleanup is disabled."""
        inference = LisaInference(alpha=0.05, cleanup=False, n_jobs=1)

        result = inference.run(spike_volume, noise_permutations)

        assert result[6, 6, 6] != 0
        assert inference.n_removed == 0

    def test_cleanup_skipped_at_alpha_one(self, spike_volume, noise_permutations):
        """Test that alpha=1 disables cleanup."""
        inference = LisaInference(alpha=1.0, cleanup=True, n_jobs=1)

        result = inference.run(spike_volume, noise_permutations)

        assert result[6, 6, 6] != 0
        assert inference.n_removed == 0


class TestNonFiniteBackground:
    """Tests for NaN-masked maps."""

    def test_nan_background(self, rng):
        """Test that NaN outside the brain is treated as background."""
        shape = (14, 14, 14)
        brain = (slice(2, 12),) * 3
        edge_block = (slice(2, 6),) * 3

        volume = np.full(shape, np.nan, dtype=np.float32)
        volume[brain] = rng.normal(0, 1, (10, 10, 10))
        volume[edge_block] += 10.0
        perms = []
        for _ in range(20):
            perm = np.full(shape, np.nan, dtype=np.float32)
            perm[brain] = rng.normal(0, 1, (10, 10, 10))
            perms.append(perm)

        inference = LisaInference(n_jobs=1)
        result = inference.run(volume, perms)

        assert np.isfinite(inference.filtered_map).all()
        assert np.isfinite(result).all()
        assert np.count_nonzero(result[edge_block]) >= 0.9 * 64
        assert not result[0].any()
        assert inference.null_stddev == pytest.approx(1.0, rel=0.1)
        assert np.isnan(volume[0, 0, 0])
