#!/usr/bin/env python3
"""
Dual-regress one subject against group ICA maps.

Writes ``{out_prefix}_dr.<ext>`` holding one spatial map per group component.

Usage:
    python scripts/dual_regression.py --modality cifti \\
        --bold-file sub-01_rest.dtseries.nii --group-map groupICA.dscalar.nii \\
        --out-prefix sub-01
    python scripts/dual_regression.py --config study.yaml
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
)
from templateica.config_validator import validate_all_workflows
from templateica.errors import DimensionMismatchError
from templateica.io import open_group_map
from templateica.single_subject import run_subject_dual_regression

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

OVERRIDES = ['modality', 'bold_file', 'group_map', 'mask', 'medial_wall',
             'brainstructures', 'scale', 'out_prefix']


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Dual regression of one subject against group ICA maps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument('--config', type=Path, default=None,
                        help='Path to configuration YAML file')
    parser.add_argument('--modality', choices=MODALITIES, default=None)
    parser.add_argument('--bold-file', type=Path, default=None,
                        help='Subject recording')
    parser.add_argument('--group-map', type=Path, default=None,
                        help='Group ICA maps')
    parser.add_argument('--mask', type=Path, default=None,
                        help='Binary brain mask (nifti)')
    parser.add_argument('--medial-wall', type=Path, default=None,
                        help='Vertex flags or 1-based vertex indices to analyse (gifti)')
    parser.add_argument('--brainstructures', nargs='+', choices=BRAINSTRUCTURES, default=None)
    parser.add_argument('--scale', action=argparse.BooleanOptionalAction, default=None,
                        help='Scale data by its spatial standard deviation (default: on)')
    parser.add_argument('--out-prefix', type=Path, default=None,
                        help='Output prefix')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    settings = config.setdefault('dual_regression', {})
    for key in OVERRIDES:
        value = getattr(args, key)
        if value is not None:
            settings[key] = str(value) if isinstance(value, Path) else value

    is_valid, missing, _ = validate_all_workflows(config, ['dual_regression'])['dual_regression']
    if not is_valid:
        logger.error("Missing or invalid settings: %s", ", ".join(missing))
        return 1

    try:
        adapter = open_group_map(
            settings['modality'],
            settings['group_map'],
            mask=get_config_value(config, 'dual_regression.mask'),
            medial_wall=get_config_value(config, 'dual_regression.medial_wall'),
            brainstructures=get_config_value(config, 'dual_regression.brainstructures') or ('left', 'right'),
        )
        run_subject_dual_regression(
            settings['bold_file'],
            adapter,
            scale=get_config_value(config, 'dual_regression.scale', True),
            out_prefix=get_config_value(config, 'dual_regression.out_prefix'),
        )
    except (ConfigurationError, DimensionMismatchError, FileNotFoundError, ValueError) as e:
        logger.error("Dual regression failed: %s", e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
