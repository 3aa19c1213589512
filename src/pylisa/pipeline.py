"""
Main pipeline module for pylisa.

This module provides a high-level interface for running a complete
LISA analysis from image files to thresholded maps on disk.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import nibabel as nib
import numpy as np

from pylisa import __version__
from pylisa.config import Config, load_config
from pylisa.core.data_loader import DataLoader, PermutationSource
from pylisa.core.fdr import save_fdr_table
from pylisa.core.inference import LisaInference

logger = logging.getLogger(__name__)


def _strip_nifti_suffix(name: str) -> str:
    for suffix in (".nii.gz", ".nii"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class LisaPipeline:
    """
    High-level pipeline for LISA inference.

    This class orchestrates the complete workflow:
    1. Loading the observed map and the permutation maps
    2. Null variance estimation and scaling
    3. Bilateral filtering and null distribution estimation
    4. FDR thresholding and cleanup
    5. Saving the thresholded map, FDR table and JSON sidecar

    Nothing is written to ``output_dir`` unless the inference succeeds.

    Parameters
    ----------
    input_image : str, Path, or nibabel image
        Observed statistical map.
    permutations : str, Path, nibabel image, or list
        Permutation maps (4D image, list file, glob pattern or list).
    output_dir : str or Path
        Output directory.
    config : Config, str, Path, or dict, optional
        Configuration (Config object, path to config file, or dict).

    Attributes
    ----------
    config : Config
        Configuration object.
    data_loader : DataLoader
        Data loader instance.
    inference : LisaInference or None
        Inference instance of the last run.
    """

    def __init__(
        self,
        input_image: Union[str, Path, nib.Nifti1Image],
        permutations: PermutationSource,
        output_dir: Union[str, Path],
        config: Optional[Union[Config, str, Path, Dict]] = None,
    ):
        self.input_image = input_image
        self.output_dir = Path(output_dir)

        if config is None:
            self.config = Config()
        elif isinstance(config, Config):
            self.config = config
        elif isinstance(config, dict):
            self.config = Config(**config)
        else:
            self.config = load_config(config)

        self._setup_logging()

        logger.info("Initializing pylisa pipeline")
        if isinstance(input_image, (str, Path)):
            logger.info(f"Input map: {input_image}")
        logger.info(f"Output directory: {self.output_dir}")

        self.data_loader = DataLoader(input_image, permutations)
        self.inference: Optional[LisaInference] = None

        self._volume: Optional[np.ndarray] = None
        self._permutations: List[np.ndarray] = []
        self._result: Optional[np.ndarray] = None

    def _setup_logging(self) -> None:
        """Configure logging based on verbosity setting."""
        verbose = self.config.get("verbose", 1)

        if verbose == 0:
            level = logging.WARNING
        elif verbose == 1:
            level = logging.INFO
        else:
            level = logging.DEBUG

        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    @property
    def prefix(self) -> str:
        """Prefix of output file names."""
        prefix = self.config.get("output.prefix")
        if prefix:
            return prefix
        if isinstance(self.input_image, (str, Path)):
            return _strip_nifti_suffix(Path(self.input_image).name)
        return "lisa"

    def load_data(self) -> None:
        """Load the observed map and the permutation maps."""
        self._volume = self.data_loader.load_input()
        self._permutations = self.data_loader.load_permutations()

    def run_inference(self) -> np.ndarray:
        """
        Run LISA inference on the loaded data.

        Returns
        -------
        np.ndarray
            Thresholded map.
        """
        if self._volume is None:
            self.load_data()

        self.inference = LisaInference(
            alpha=self.config.get("inference.alpha"),
            radius=self.config.get("filter.radius"),
            rvar=self.config.get("filter.rvar"),
            svar=self.config.get("filter.svar"),
            numiter=self.config.get("filter.numiter"),
            centering=self.config.get("normalization.centering"),
            cleanup=self.config.get("inference.cleanup"),
            n_bins=self.config.get("inference.n_bins"),
            null_sample_size=self.config.get("normalization.null_sample_size"),
            n_jobs=self.config.get("n_jobs"),
            mode_bins=self.config.get("normalization.mode_bins"),
        )
        self._result = self.inference.run(self._volume, self._permutations)

        # Permutation maps are no longer needed
        self._permutations = []
        return self._result

    def _create_sidecar(self) -> Dict[str, Any]:
        """Parameters, results and history of the run."""
        return {
            "Description": "LISA thresholded statistical map",
            "SoftwareName": "pylisa",
            "SoftwareVersion": __version__,
            "Parameters": {
                "inference": self.config.get("inference"),
                "filter": self.config.get("filter"),
                "normalization": self.config.get("normalization"),
            },
            "Results": self.inference.get_results(),
            "History": {
                "Command": " ".join(sys.argv),
                "Date": datetime.now().isoformat(timespec="seconds"),
            },
        }

    def save_results(self) -> Dict[str, Path]:
        """
        Save the thresholded map, FDR table and JSON sidecar.

        Returns
        -------
        dict
            Dictionary of saved file paths.
        """
        if self._result is None:
            raise RuntimeError("No results to save: run the inference first")

        # Nothing is written until the sidecar has serialised
        sidecar_text = None
        if self.config.get("output.save_sidecar", True):
            sidecar_text = json.dumps(self._create_sidecar(), indent=2)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        saved_files = {}

        map_path = self.output_dir / f"{self.prefix}_lisa.nii.gz"
        saved_files["thresholded_map"] = self.data_loader.save_image(self._result, map_path)

        if self.config.get("output.save_fdr_table", True) and self.inference.fdr_table is not None:
            saved_files["fdr_table"] = save_fdr_table(
                self.inference.fdr_table,
                self.output_dir / f"{self.prefix}_fdr.tsv",
            )

        if sidecar_text is not None:
            sidecar_path = self.output_dir / f"{self.prefix}_lisa.json"
            with open(sidecar_path, "w") as f:
                f.write(sidecar_text)
            saved_files["sidecar"] = sidecar_path

        logger.info(f"Saved {len(saved_files)} result files to {self.output_dir}")
        return saved_files

    def run(self) -> Dict[str, Any]:
        """
        Run the complete pipeline.

        Returns
        -------
        dict
            ``thresholded_map`` (array), ``thresholds``, ``summary`` and
            ``saved_files``.
        """
        logger.info(self.config.summary())

        self.load_data()
        result = self.run_inference()
        saved_files = self.save_results()

        summary = self.inference.summary()
        logger.info("\n" + summary)

        return {
            "thresholded_map": result,
            "thresholds": dict(self.inference.thresholds),
            "summary": summary,
            "saved_files": saved_files,
        }
