"""
Data loading module for LISA inference.

This module handles:
- Loading the observed statistical map
- Discovering and loading permutation maps (4D image, list file, glob or list)
- Geometry sanity checks
- Writing output maps with the observed map's geometry
"""

import glob
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import nibabel as nib
import numpy as np
from nilearn.image import new_img_like

from pylisa.core.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)

NIFTI_SUFFIXES = (".nii", ".nii.gz")

PermutationSource = Union[str, Path, nib.Nifti1Image, Sequence[Union[str, Path, nib.Nifti1Image]]]


def _is_nifti(path: Path) -> bool:
    return str(path).endswith(NIFTI_SUFFIXES)


def _is_float_image(img: nib.Nifti1Image) -> bool:
    return np.issubdtype(img.get_data_dtype(), np.floating)


def read_permutation_list(list_file: Union[str, Path]) -> List[Path]:
    """
    Read a text file listing one permutation image per line.

    Blank lines and lines starting with '#' are ignored. Relative paths are
    resolved against the directory of the list file.

    Parameters
    ----------
    list_file : str or Path
        Path to the list file.

    Returns
    -------
    list of Path
        Image paths, in file order.
    """
    list_file = Path(list_file)
    if not list_file.exists():
        raise FileNotFoundError(f"Permutation list not found: {list_file}")

    paths = []
    for line in list_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        path = Path(line)
        if not path.is_absolute():
            path = list_file.parent / path
        paths.append(path)
    return paths


class DataLoader:
    """
    Load the observed map and permutation maps of a LISA analysis.

    Parameters
    ----------
    input_image : str, Path, or nibabel image
        Observed statistical map (3D).
    permutations : str, Path, nibabel image, or list
        Permutation maps: a 4D image (one map per volume), a text file
        listing image paths, a glob pattern, or a list of paths/images.

    Attributes
    ----------
    reference_img : nibabel.Nifti1Image or None
        Observed image; its affine and header are copied to outputs.
    """

    def __init__(
        self,
        input_image: Union[str, Path, nib.Nifti1Image],
        permutations: PermutationSource,
    ):
        self.input_image = input_image
        self.permutations = permutations
        self.reference_img: Optional[nib.Nifti1Image] = None

    @staticmethod
    def _load(img: Union[str, Path, nib.Nifti1Image]) -> nib.Nifti1Image:
        if isinstance(img, (str, Path)):
            path = Path(img)
            if not path.exists():
                raise FileNotFoundError(f"Image not found: {path}")
            return nib.load(path, mmap=True)
        return img

    @staticmethod
    def check_geometry(img: nib.Nifti1Image, name: str = "image") -> None:
        """Warn about implausible voxel sizes. Never fatal."""
        zooms = img.header.get_zooms()[:3]
        if any(z <= 0 for z in zooms):
            logger.warning(f"Implausible voxel size {tuple(float(z) for z in zooms)} in {name}")

    def load_input(self) -> np.ndarray:
        """
        Load the observed map as float32.

        A 4D image holding a single volume is accepted and squeezed.

        Returns
        -------
        np.ndarray
            3D data array.
        """
        img = self._load(self.input_image)
        if not _is_float_image(img):
            logger.warning(
                f"Input map is stored as {img.get_data_dtype()}, converting to float32"
            )
        data = np.asarray(img.dataobj, dtype=np.float32)

        if data.ndim == 4 and data.shape[3] == 1:
            data = data[..., 0]
        if data.ndim != 3:
            raise ValueError(f"Input map must be 3D, got shape {data.shape}")

        self.check_geometry(img, "input map")
        self.reference_img = img
        logger.info(f"Loaded input map with shape {data.shape}")
        return data

    def _resolve_permutation_sources(self) -> List[Union[Path, nib.Nifti1Image]]:
        source = self.permutations
        if isinstance(source, nib.Nifti1Image):
            return [source]
        if isinstance(source, (str, Path)):
            text = str(source)
            if any(ch in text for ch in "*?["):
                matches = sorted(Path(p) for p in glob.glob(text, recursive=True))
                if not matches:
                    raise FileNotFoundError(f"No permutation images match pattern: {text}")
                return matches
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"Permutation source not found: {path}")
            if _is_nifti(path):
                return [path]
            return read_permutation_list(path)
        return [Path(s) if isinstance(s, str) else s for s in source]

    def load_permutations(self) -> List[np.ndarray]:
        """
        Load every permutation map as float32.

        4D images contribute one map per volume.

        Returns
        -------
        list of np.ndarray
            Permutation maps, in input order.

        Raises
        ------
        DimensionMismatchError
            If a permutation image is not stored as floating point.
        """
        volumes = []
        for i, source in enumerate(self._resolve_permutation_sources()):
            img = self._load(source)
            if not _is_float_image(img):
                name = source if isinstance(source, Path) else f"#{i}"
                raise DimensionMismatchError(
                    f"Permutation image {name} is not floating point "
                    f"(stored as {img.get_data_dtype()})"
                )
            data = np.asarray(img.dataobj, dtype=np.float32)
            if data.ndim == 4:
                volumes.extend(np.ascontiguousarray(data[..., t]) for t in range(data.shape[3]))
            else:
                volumes.append(data)

        logger.info(f"Loaded {len(volumes)} permutation images")
        return volumes

    def to_image(self, data: np.ndarray) -> nib.Nifti1Image:
        """Wrap ``data`` in an image with the observed map's geometry."""
        if self.reference_img is None:
            self.load_input()
        img = new_img_like(self.reference_img, data.astype(np.float32), copy_header=True)
        img.set_data_dtype(np.float32)
        return img

    def save_image(self, data: np.ndarray, path: Union[str, Path]) -> Path:
        """
        Save ``data`` as NIfTI with the observed map's affine and header.

        Parameters
        ----------
        data : np.ndarray
            Data to save.
        path : str or Path
            Output file.

        Returns
        -------
        Path
            The output file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        nib.save(self.to_image(data), path)
        logger.info(f"Saved image: {path}")
        return path
