"""
Command-line interface for pylisa.

This module provides the CLI entry point for thresholding a statistical
map with LISA inference.
"""

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

from pylisa import __version__
from pylisa.config import Config, create_default_config
from pylisa.pipeline import LisaPipeline

logger = logging.getLogger(__name__)


class Colors:
    """ANSI color codes for terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    END = '\033[0m'


class ColoredHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Custom formatter with colored section headers."""

    def __init__(self, prog, indent_increment=2, max_help_position=40, width=100):
        super().__init__(prog, indent_increment, max_help_position, width)

    def _format_usage(self, usage, actions, groups, prefix):
        if prefix is None:
            prefix = f'{Colors.BOLD}Usage:{Colors.END} '
        return super()._format_usage(usage, actions, groups, prefix)

    def start_section(self, heading):
        if heading:
            heading = f'{Colors.BOLD}{Colors.CYAN}{heading}{Colors.END}'
        super().start_section(heading)


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""

    description = textwrap.dedent(f"""
    {Colors.BOLD}{Colors.GREEN}pylisa v{__version__}{Colors.END}
    Nonparametric FDR inference for statistical maps

    {Colors.BOLD}Description:{Colors.END}
      Thresholds a statistical map (e.g. a z-map) at a controlled false
      discovery rate. The map and a set of maps computed from permuted data
      are scaled to a common null variance and smoothed with an
      edge-preserving bilateral filter; the permutation maps provide the
      null distribution for a histogram-based FDR threshold. Isolated
      significant voxels are removed.

    {Colors.BOLD}Workflow:{Colors.END}
      1. Load the observed map and the permutation maps
      2. Estimate the null variance from up to 30 permutation maps
      3. Filter the observed map and every permutation map
      4. Compare real and null histograms to find the FDR threshold
      5. Remove isolated voxels and save the thresholded map
    """)

    epilog = textwrap.dedent(f"""
    {Colors.BOLD}EXAMPLES{Colors.END}

      {Colors.YELLOW}# Permutation maps stored as one 4D image{Colors.END}
      pylisa zmap.nii.gz results/ -p perms_4d.nii.gz

      {Colors.YELLOW}# Permutation maps listed in a text file, one path per line{Colors.END}
      pylisa zmap.nii.gz results/ -p permutations.txt --alpha 0.01

      {Colors.YELLOW}# Glob pattern, stronger smoothing, 8 threads{Colors.END}
      pylisa zmap.nii.gz results/ -p 'perms/perm_*.nii.gz' --radius 3 -j 8

      {Colors.YELLOW}# Generate a default configuration file{Colors.END}
      pylisa --init-config lisa.yaml

      Version: {__version__}
    """)

    parser = argparse.ArgumentParser(
        prog="pylisa",
        description=description,
        epilog=epilog,
        formatter_class=ColoredHelpFormatter,
        add_help=False,
    )

    # =========================================================================
    # REQUIRED ARGUMENTS
    # =========================================================================
    required = parser.add_argument_group(
        f'{Colors.BOLD}Required Arguments{Colors.END}'
    )

    required.add_argument(
        "input_file",
        type=Path,
        nargs="?",
        metavar="INPUT",
        help="Observed statistical map (3D NIfTI).",
    )

    required.add_argument(
        "output_dir",
        type=Path,
        nargs="?",
        metavar="OUTPUT_DIR",
        help="Output directory.",
    )

    required.add_argument(
        "-p", "--permutations",
        metavar="SOURCE",
        help="Permutation maps: a 4D NIfTI, a text file listing one image per line, "
             "or a quoted glob pattern.",
    )

    # =========================================================================
    # GENERAL OPTIONS
    # =========================================================================
    general = parser.add_argument_group(
        f'{Colors.BOLD}General Options{Colors.END}'
    )

    general.add_argument(
        "-h", "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit.",
    )

    general.add_argument(
        "--version",
        action="version",
        version=f"pylisa {__version__}",
        help="Show program version and exit.",
    )

    general.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (-v for progress, -vv for debug).",
    )

    general.add_argument(
        "-c", "--config",
        type=Path,
        metavar="FILE",
        help="Path to configuration file (.json, .yaml, or .yml). "
             "CLI arguments override config file settings.",
    )

    general.add_argument(
        "--init-config",
        type=Path,
        metavar="FILE",
        help="Generate a default configuration file and exit.",
    )

    # =========================================================================
    # INFERENCE OPTIONS
    # =========================================================================
    inference = parser.add_argument_group(
        f'{Colors.BOLD}Inference Options{Colors.END}'
    )

    inference.add_argument(
        "--alpha",
        type=float,
        metavar="Q",
        help="FDR significance level, in (0, 1]. (default: 0.05)",
    )

    inference.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Keep isolated significant voxels.",
    )

    inference.add_argument(
        "--n-bins",
        type=int,
        metavar="N",
        help="Number of histogram bins. (default: 10000)",
    )

    inference.add_argument(
        "--centering",
        action="store_true",
        help="Subtract the mode of each map before scaling.",
    )

    # =========================================================================
    # FILTER OPTIONS
    # =========================================================================
    filter_group = parser.add_argument_group(
        f'{Colors.BOLD}Bilateral Filter Options{Colors.END}'
    )

    filter_group.add_argument(
        "--radius",
        type=int,
        metavar="R",
        help="Neighbourhood radius in voxels. (default: 2)",
    )

    filter_group.add_argument(
        "--rvar",
        type=float,
        metavar="VAR",
        help="Radiometric variance. (default: 2.0)",
    )

    filter_group.add_argument(
        "--svar",
        type=float,
        metavar="VAR",
        help="Spatial variance. (default: 2.0)",
    )

    filter_group.add_argument(
        "--numiter",
        type=int,
        metavar="N",
        help="Number of filter iterations. (default: 2)",
    )

    # =========================================================================
    # OUTPUT / COMPUTATION OPTIONS
    # =========================================================================
    output = parser.add_argument_group(
        f'{Colors.BOLD}Output and Computation Options{Colors.END}'
    )

    output.add_argument(
        "--prefix",
        metavar="STRING",
        help="Prefix of output file names. (default: input file name)",
    )

    output.add_argument(
        "-j", "--n-jobs",
        type=int,
        metavar="N",
        dest="n_jobs",
        help="Number of worker threads, 0 to use all processors. (default: 0)",
    )

    return parser


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Configuration overrides for the options given on the command line.

    Options left at their default are not included, so values from a
    configuration file are kept.
    """
    overrides: Dict[str, Any] = {}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    put("inference", "alpha", args.alpha)
    put("inference", "n_bins", args.n_bins)
    if args.no_cleanup:
        put("inference", "cleanup", False)
    put("filter", "radius", args.radius)
    put("filter", "rvar", args.rvar)
    put("filter", "svar", args.svar)
    put("filter", "numiter", args.numiter)
    if args.centering:
        put("normalization", "centering", True)
    put("output", "prefix", args.prefix)

    if args.n_jobs is not None:
        overrides["n_jobs"] = args.n_jobs
    if args.verbose is not None:
        overrides["verbose"] = args.verbose

    return overrides


def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Handle --init-config flag
    if args.init_config:
        output_path = Path(args.init_config)
        if not output_path.suffix:
            output_path = output_path.with_suffix(".yaml")
        create_default_config(output_path)
        print(f"{Colors.GREEN}✓ Configuration file created: {output_path}{Colors.END}")
        return

    if args.input_file is None or args.output_dir is None or args.permutations is None:
        parser.error("INPUT, OUTPUT_DIR and --permutations are required")

    print(f"{Colors.BOLD}{Colors.GREEN}pylisa v{__version__}{Colors.END}")
    print("=" * 40)

    try:
        cfg = Config(config_file=args.config)
        cfg.update(build_overrides(args))
        cfg.validate()
    except Exception as e:
        print(f"{Colors.RED}✗ Invalid configuration: {e}{Colors.END}", file=sys.stderr)
        sys.exit(1)

    try:
        pipeline = LisaPipeline(
            input_image=args.input_file,
            permutations=args.permutations,
            output_dir=args.output_dir,
            config=cfg,
        )
        results = pipeline.run()

        print(f"\n{Colors.GREEN}✓ Analysis completed successfully!{Colors.END}")
        print(f"  Results saved to: {args.output_dir}")
        print(f"  Thresholded map: {results['saved_files']['thresholded_map']}")

    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted by user{Colors.END}", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        logger.exception("Analysis failed")
        print(f"\n{Colors.RED}✗ Analysis failed: {str(e)}{Colors.END}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
