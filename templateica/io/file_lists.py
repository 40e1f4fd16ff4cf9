"""
Readers for subject file lists and location (medial wall) masks.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from templateica.config import ConfigurationError
from templateica.errors import DimensionMismatchError

logger = logging.getLogger(__name__)


def read_file_list(list_file: Union[str, Path]) -> List[Path]:
    """
    Read a text file listing one recording path per line.

    Blank lines and lines starting with ``#`` are ignored. Relative paths are
    kept as written (resolved against the working directory when opened).
    """
    list_file = Path(list_file)
    if not list_file.exists():
        raise ConfigurationError(f"File list not found: {list_file}")

    with open(list_file) as f:
        paths = [
            Path(line.strip()) for line in f
            if line.strip() and not line.strip().startswith('#')
        ]

    logger.info("Read %d file paths from %s", len(paths), list_file)
    return paths


def resolve_file_list(files: Union[str, Path, Sequence[Union[str, Path]], None]) -> Optional[List[Path]]:
    """Accept either a list of paths or the path of a text file listing them."""
    if files is None:
        return None
    if isinstance(files, (str, Path)):
        return read_file_list(files)
    return [Path(f) for f in files]


def read_location_mask(mask_file: Union[str, Path], n_locations: int) -> np.ndarray:
    """
    Read a medial wall / location subset file.

    Two layouts are accepted:

    - one flag per location (``TRUE``/``FALSE`` or ``1``/``0``), where true
      marks an analysed location;
    - a list of 1-based indices of the analysed locations.

    Parameters
    ----------
    mask_file : Path
        Whitespace-delimited text file.
    n_locations : int
        Number of candidate locations (vertices) the mask refers to.

    Returns
    -------
    ndarray of bool, shape (n_locations,)
    """
    mask_file = Path(mask_file)
    if not mask_file.exists():
        raise FileNotFoundError(f"Location mask file not found: {mask_file}")

    values = pd.read_csv(mask_file, header=None, sep=r"\s+").to_numpy().ravel()

    if values.dtype == bool:
        flags = values
    elif np.issubdtype(values.dtype, np.number) and len(values) == n_locations \
            and set(np.unique(values)) <= {0, 1}:
        flags = values.astype(bool)
    elif np.issubdtype(values.dtype, np.integer):
        if values.min() < 1 or values.max() > n_locations:
            raise ConfigurationError(
                f"Location indices in {mask_file.name} must lie in 1..{n_locations}"
            )
        flags = np.zeros(n_locations, dtype=bool)
        flags[values - 1] = True
    else:
        raise ConfigurationError(
            f"Could not interpret {mask_file.name} as location flags or 1-based indices"
        )

    if flags.shape[0] != n_locations:
        raise DimensionMismatchError(
            f"Location mask {mask_file.name} has {flags.shape[0]} entries, "
            f"expected {n_locations}"
        )
    if not flags.any():
        raise ConfigurationError(f"Location mask {mask_file.name} excludes every location")

    logger.info(
        "Location mask %s keeps %d of %d locations",
        mask_file.name, int(flags.sum()), n_locations,
    )
    return flags
