"""
Configuration handling for pylisa.

This module handles:
- Configuration file parsing (YAML/JSON)
- Configuration validation
- Default values
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)


# Default configuration values
DEFAULT_CONFIG = {
    # Statistical inference settings
    "inference": {
        "alpha": 0.05,  # FDR level, in (0, 1]
        "cleanup": True,  # Remove isolated voxels after thresholding
        "n_bins": 10000,  # Histogram bins for the real and null distributions
    },

    # Bilateral filter settings
    "filter": {
        "radius": 2,  # Neighbourhood radius in voxels
        "rvar": 2.0,  # Radiometric variance
        "svar": 2.0,  # Spatial variance
        "numiter": 2,  # Number of filter passes
    },

    # Scaling settings
    "normalization": {
        "centering": False,  # Subtract the mode of each map before scaling
        "null_sample_size": 30,  # Permutations used to estimate the null variance
        "mode_bins": 100,  # Histogram bins used for mode estimation
    },

    # Output settings
    "output": {
        "prefix": None,  # Output file prefix, defaults to the input file stem
        "save_fdr_table": True,
        "save_sidecar": True,
    },

    # Computational settings
    "n_jobs": 0,  # 0 uses all available processors
    "verbose": 1,
}


class Config:
    """
    Configuration manager for pylisa.

    Parameters
    ----------
    config_file : str or Path, optional
        Path to configuration file (YAML or JSON).
    **kwargs
        Additional configuration options to override defaults.

    Attributes
    ----------
    data : dict
        Configuration dictionary.
    """

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        **kwargs,
    ):
        # Start with defaults
        self.data = copy.deepcopy(DEFAULT_CONFIG)

        if config_file is not None:
            self.load_from_file(config_file)

        self.update(kwargs)
        self.validate()

    def _update_nested(self, base: Dict, updates: Dict) -> None:
        """Update nested dictionary with another dictionary."""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._update_nested(base[key], value)
            else:
                base[key] = value

    def update(self, updates: Dict) -> None:
        """Merge ``updates`` into the configuration (nested dicts are merged)."""
        self._update_nested(self.data, updates)

    def load_from_file(self, filepath: Union[str, Path]) -> None:
        """
        Load configuration from a YAML or JSON file.

        Parameters
        ----------
        filepath : str or Path
            Path to configuration file.
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        logger.info(f"Loading configuration from: {filepath}")

        with open(filepath, "r") as f:
            if filepath.suffix == ".json":
                file_config = json.load(f)
            else:
                file_config = yaml.safe_load(f)

        if file_config is not None:
            if not isinstance(file_config, dict):
                raise ValueError(f"Configuration file must contain a mapping: {filepath}")
            self._update_nested(self.data, file_config)

    def save_to_file(self, filepath: Union[str, Path]) -> None:
        """
        Save configuration to a YAML or JSON file.

        Parameters
        ----------
        filepath : str or Path
            Path to output file.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, "w") as f:
            if filepath.suffix in [".yaml", ".yml"]:
                yaml.safe_dump(self.data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(self.data, f, indent=2)

        logger.info(f"Configuration saved to: {filepath}")

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises
        ------
        ValueError
            If configuration is invalid.
        """
        errors = []

        inference = self.data["inference"]
        alpha = inference.get("alpha")
        if not isinstance(alpha, (int, float)) or not 0 < alpha <= 1:
            errors.append(f"inference.alpha must be in (0, 1], got {alpha}")
        n_bins = inference.get("n_bins")
        if not isinstance(n_bins, int) or n_bins < 1:
            errors.append(f"inference.n_bins must be a positive integer, got {n_bins}")

        flt = self.data["filter"]
        for key in ("radius", "numiter"):
            value = flt.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"filter.{key} must be a non-negative integer, got {value}")
        for key in ("rvar", "svar"):
            value = flt.get(key)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"filter.{key} must be positive, got {value}")

        norm = self.data["normalization"]
        for key in ("null_sample_size", "mode_bins"):
            value = norm.get(key)
            if not isinstance(value, int) or value < 1:
                errors.append(f"normalization.{key} must be a positive integer, got {value}")

        n_jobs = self.data.get("n_jobs")
        if not isinstance(n_jobs, int) or n_jobs < -1:
            errors.append(f"n_jobs must be an integer >= -1 (0 or -1 for all processors), got {n_jobs}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key (supports dot notation).

        Parameters
        ----------
        key : str
            Configuration key (e.g., "inference.alpha").
        default : any
            Default value if key not found.

        Returns
        -------
        any
            Configuration value.
        """
        value = self.data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value by key (supports dot notation).

        Parameters
        ----------
        key : str
            Configuration key (e.g., "filter.radius").
        value : any
            Value to set.
        """
        keys = key.split(".")
        data = self.data
        for k in keys[:-1]:
            data = data.setdefault(k, {})
        data[keys[-1]] = value

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def to_dict(self) -> Dict:
        """Return configuration as dictionary."""
        return copy.deepcopy(self.data)

    def summary(self) -> str:
        """
        Get a text summary of the configuration.

        Returns
        -------
        str
            Configuration summary.
        """
        lines = ["Configuration Summary", "=" * 40]

        inference = self.data["inference"]
        lines.append("\nInference Settings:")
        lines.append(f"  Alpha (FDR): {inference['alpha']}")
        lines.append(f"  Cleanup: {inference['cleanup']}")
        lines.append(f"  Histogram bins: {inference['n_bins']}")

        flt = self.data["filter"]
        lines.append("\nBilateral Filter:")
        lines.append(f"  Radius: {flt['radius']}")
        lines.append(f"  Radiometric variance: {flt['rvar']}")
        lines.append(f"  Spatial variance: {flt['svar']}")
        lines.append(f"  Iterations: {flt['numiter']}")

        lines.append(f"\nMode centering: {self.data['normalization']['centering']}")
        n_jobs = self.data["n_jobs"]
        lines.append(f"Workers: {'all' if n_jobs in (0, -1) else n_jobs}")

        return "\n".join(lines)


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    **kwargs,
) -> Config:
    """
    Load configuration from file and/or keyword arguments.

    Parameters
    ----------
    config_file : str or Path, optional
        Path to configuration file.
    **kwargs
        Additional configuration options.

    Returns
    -------
    Config
        Configuration object.
    """
    return Config(config_file=config_file, **kwargs)


def create_default_config(output_path: Union[str, Path]) -> Path:
    """
    Create a documented default configuration file.

    Parameters
    ----------
    output_path : str or Path
        Path for the output configuration file.

    Returns
    -------
    Path
        Path to created configuration file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    template = """# ===============================================================================
# pylisa Configuration File
# ===============================================================================
# Nonparametric FDR inference for statistical maps (LISA): bilateral
# smoothing, permutation null distribution, histogram-based FDR threshold.
#
# USAGE:
#   pylisa zmap.nii.gz /path/to/output -p permutations.txt --config this_file.yaml
#
# CLI arguments take precedence over config file values.
# ===============================================================================

# -------------------------------------------------------------------------------
# STATISTICAL INFERENCE
# -------------------------------------------------------------------------------
inference:
  # False discovery rate level, in (0, 1]
  # CLI equivalent: --alpha
  alpha: 0.05

  # Remove significant voxels that have no significant neighbour
  # CLI equivalent: --no-cleanup (flag to disable)
  cleanup: true

  # Number of bins of the real and null histograms
  # CLI equivalent: --n-bins
  n_bins: 10000

# -------------------------------------------------------------------------------
# BILATERAL FILTER
# -------------------------------------------------------------------------------
filter:
  # Neighbourhood radius in voxels (cube of side 2*radius+1)
  # CLI equivalent: --radius
  radius: 2

  # Radiometric variance (intensity differences)
  # CLI equivalent: --rvar
  rvar: 2.0

  # Spatial variance (voxel distances)
  # CLI equivalent: --svar
  svar: 2.0

  # Number of filter passes
  # CLI equivalent: --numiter
  numiter: 2

# -------------------------------------------------------------------------------
# SCALING
# -------------------------------------------------------------------------------
normalization:
  # Subtract the mode of each map before scaling
  # CLI equivalent: --centering
  centering: false

  # Number of permutation maps used to estimate the null variance
  null_sample_size: 30

  # Histogram bins used for mode estimation
  mode_bins: 100

# -------------------------------------------------------------------------------
# OUTPUT
# -------------------------------------------------------------------------------
output:
  # Prefix of output files; null uses the input file name
  # CLI equivalent: --prefix
  prefix: null

  # Write the FDR curve as <prefix>_fdr.tsv
  save_fdr_table: true

  # Write parameters and results as <prefix>_lisa.json
  save_sidecar: true

# -------------------------------------------------------------------------------
# COMPUTATIONAL SETTINGS
# -------------------------------------------------------------------------------
# Number of worker threads for the permutation maps
# CLI equivalent: --n-jobs / -j
#   0: use all available processors
#   N: use N threads
n_jobs: 0

# Verbosity level
#   0: warnings and errors only
#   1: progress information (default)
#   2: debug information
verbose: 1
"""

    with open(output_path, "w") as f:
        f.write(template)

    logger.info(f"Configuration file created: {output_path}")
    return output_path
