"""Pytest configuration and shared fixtures."""

import tempfile
from pathlib import Path

import nibabel as nib
import numpy as np
import pytest


SHAPE = (12, 12, 12)
BLOCK = (slice(4, 8), slice(4, 8), slice(4, 8))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def affine():
    """2mm isotropic affine."""
    affine = np.eye(4)
    affine[0, 0] = 2
    affine[1, 1] = 2
    affine[2, 2] = 2
    affine[:3, 3] = [-12, -12, -12]
    return affine


@pytest.fixture
def block():
    """Slices of the signal block in the synthetic volumes."""
    return BLOCK


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def block_volume(rng):
    """Gaussian noise with a strong positive block in the centre."""
    data = rng.normal(0, 1, SHAPE).astype(np.float32)
    data[BLOCK] += 10.0
    return data


@pytest.fixture
def noise_permutations(rng):
    """Twenty pure-noise permutation maps."""
    return [rng.normal(0, 1, SHAPE).astype(np.float32) for _ in range(20)]


@pytest.fixture
def sample_nifti_files(temp_dir, affine, block_volume, noise_permutations):
    """
    Write the block volume and its permutations to disk.

    Returns a dict with the input map, a 4D permutation image, a directory
    of 3D permutation images and a list file naming them.
    """
    input_path = temp_dir / "zmap.nii.gz"
    nib.save(nib.Nifti1Image(block_volume, affine), input_path)

    perm_4d = temp_dir / "perms_4d.nii.gz"
    nib.save(nib.Nifti1Image(np.stack(noise_permutations, axis=-1), affine), perm_4d)

    perm_dir = temp_dir / "perms"
    perm_dir.mkdir()
    perm_paths = []
    for i, perm in enumerate(noise_permutations):
        path = perm_dir / f"perm_{i:03d}.nii.gz"
        nib.save(nib.Nifti1Image(perm, affine), path)
        perm_paths.append(path)

    list_file = temp_dir / "permutations.txt"
    lines = ["# permutation maps", ""] + [f"perms/{p.name}" for p in perm_paths]
    list_file.write_text("\n".join(lines) + "\n")

    return {
        "input": input_path,
        "perm_4d": perm_4d,
        "perm_dir": perm_dir,
        "perm_paths": perm_paths,
        "list_file": list_file,
    }
