#!/usr/bin/env python3
"""
Estimate a template ICA prior (mean and between-subject variance maps).

Settings come from a YAML config (``estimation`` section), with command-line
options taking precedence.

Usage:
    python scripts/estimate_template.py --config study.yaml
    python scripts/estimate_template.py --modality gifti \\
        --bold-files subjects.txt --group-map groupICA.func.gii \\
        --inds 1 3 5 --out-prefix templates/rest
    python scripts/estimate_template.py --modality nifti \\
        --bold-files ses1.txt --retest-files ses2.txt \\
        --group-map groupICA.nii.gz --mask brain_mask.nii.gz \\
        --out-prefix templates/rest
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from templateica.config import (
    BRAINSTRUCTURES,
    MODALITIES,
    ConfigurationError,
    get_config_value,
    load_config,
    validate_config,
)
from templateica.config_validator import validate_all_workflows
from templateica.errors import DimensionMismatchError, EstimationCancelled, EstimationError
from templateica.estimation import check_output_prefix, estimate_template

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# CLI option -> estimation.<key>
OVERRIDES = [
    'modality', 'bold_files', 'retest_files', 'group_map', 'mask',
    'medial_wall', 'brainstructures', 'inds', 'scale', 'out_prefix',
]


def setup_logging(level: str, log_file: Path = None, fmt: str = LOG_FORMAT) -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=fmt)
    if log_file is not None:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter(fmt))
        logging.getLogger().addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Estimate template ICA mean and variance maps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--config', type=Path, default=None,
                        help='Path to configuration YAML file')
    parser.add_argument('--modality', choices=MODALITIES, default=None,
                        help='Data format of the recordings and group map')
    parser.add_argument('--bold-files', type=Path, default=None,
                        help='Text file listing one subject recording per line')
    parser.add_argument('--retest-files', type=Path, default=None,
                        help='Text file listing the retest recordings, same order')
    parser.add_argument('--group-map', type=Path, default=None,
                        help='Group ICA maps')
    parser.add_argument('--mask', type=Path, default=None,
                        help='Binary brain mask (nifti)')
    parser.add_argument('--medial-wall', type=Path, default=None,
                        help='Vertex flags or 1-based vertex indices to analyse (gifti)')
    parser.add_argument('--brainstructures', nargs='+', choices=BRAINSTRUCTURES, default=None,
                        help='CIFTI structures to analyse (default: left right)')
    parser.add_argument('--inds', nargs='+', type=int, default=None,
                        help='1-based indices of the group components to keep')
    parser.add_argument('--scale', action=argparse.BooleanOptionalAction, default=None,
                        help='Scale data by its spatial standard deviation (default: on)')
    parser.add_argument('--out-prefix', type=Path, default=None,
                        help='Output prefix, e.g. templates/rest')
    parser.add_argument('--verbose', action='store_true',
                        help='Log debug messages')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging('INFO')
        logger.error("%s", e)
        return 1

    estimation = config.setdefault('estimation', {})
    for key in OVERRIDES:
        value = getattr(args, key)
        if value is not None:
            estimation[key] = str(value) if isinstance(value, Path) else value

    level = 'DEBUG' if args.verbose else get_config_value(config, 'logging.level', 'INFO')
    fmt = get_config_value(config, 'logging.format') or LOG_FORMAT
    out_prefix = get_config_value(config, 'estimation.out_prefix')

    # Log file is written next to the outputs
    if out_prefix:
        try:
            check_output_prefix(out_prefix)
        except ConfigurationError as e:
            setup_logging(level, fmt=fmt)
            logger.error("%s", e)
            return 1

    log_file = None
    if get_config_value(config, 'logging.log_file') and out_prefix:
        log_file = Path(f"{out_prefix}.log")
    setup_logging(level, log_file, fmt)

    try:
        validate_config(config)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    is_valid, missing, _ = validate_all_workflows(config, ['estimation'])['estimation']
    if not is_valid:
        logger.error("Missing or invalid settings: %s", ", ".join(missing))
        return 1

    try:
        output = estimate_template(
            modality=estimation['modality'],
            bold_files=estimation['bold_files'],
            group_map=estimation['group_map'],
            retest_files=get_config_value(config, 'estimation.retest_files'),
            mask=get_config_value(config, 'estimation.mask'),
            medial_wall=get_config_value(config, 'estimation.medial_wall'),
            brainstructures=get_config_value(config, 'estimation.brainstructures') or ('left', 'right'),
            inds=get_config_value(config, 'estimation.inds'),
            scale=get_config_value(config, 'estimation.scale', True),
            out_prefix=out_prefix,
        )
    except (ConfigurationError, DimensionMismatchError, FileNotFoundError,
            EstimationError, EstimationCancelled) as e:
        logger.error("Template estimation failed: %s", e)
        return 1

    if not output.paths:
        logger.info("No output prefix given; template was not written")
    return 0


if __name__ == '__main__':
    sys.exit(main())
