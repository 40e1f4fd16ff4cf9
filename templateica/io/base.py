"""
Common interface of the modality adapters.

An adapter is built from a group ICA file, which fixes the spatial layout
(which locations are analysed, and in what order). It then flattens subject
recordings into (locations x time) matrices in that order and re-embeds
(locations x components) results into the modality's native container.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence, Union

import nibabel as nib
import numpy as np

from templateica.errors import DimensionMismatchError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def component_names(inds: Sequence[int]) -> list:
    """Names for 1-based component indices: ``IC 1``, ``IC 3``, ..."""
    return [f"IC {int(q)}" for q in inds]


class ModalityAdapter(ABC):
    """
    Flatten and re-embed one imaging modality.

    Subclasses implement ``from_group_map``, ``_extract`` and ``reembed``.

    Attributes
    ----------
    group_map : ndarray, shape (n_locations, n_components)
        Group IC maps in flattened location order (not centered).
    extension : str
        File extension of outputs written by :meth:`save`.
    drops_flat_locations : bool
        Whether locations with constant time series are removed from the
        analysis mask during estimation.
    """

    modality = ""
    extension = ""
    drops_flat_locations = False

    def __init__(self, group_map: np.ndarray):
        group_map = np.asarray(group_map, dtype=np.float64)
        if group_map.ndim != 2:
            raise ValueError(f"Group map must be 2D (locations x components), got {group_map.ndim}D")
        self.group_map = group_map

    @classmethod
    @abstractmethod
    def from_group_map(cls, path: PathLike, **kwargs) -> "ModalityAdapter":
        """Read a group ICA file and build an adapter for its layout."""

    @property
    def n_locations(self) -> int:
        return self.group_map.shape[0]

    @property
    def n_components(self) -> int:
        return self.group_map.shape[1]

    def load(self, path: PathLike) -> np.ndarray:
        """
        Read a recording as a (locations x time) matrix.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        DimensionMismatchError
            If the flattened location count differs from the group map's.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")

        logger.debug("Reading %s", path)
        matrix = self._extract(nib.load(str(path)), path)
        if matrix.shape[0] != self.n_locations:
            raise DimensionMismatchError(
                f"The number of data locations in the group map ({self.n_locations}) "
                f"and in {path.name} ({matrix.shape[0]}) do not match"
            )
        return matrix

    @abstractmethod
    def _extract(self, img: Any, path: Path) -> np.ndarray:
        """Flatten a loaded image to (locations x time)."""

    @abstractmethod
    def reembed(self, matrix: np.ndarray, names: Sequence[str]) -> Any:
        """Place a (locations x components) matrix into the native container."""

    def restricted(self, keep: np.ndarray) -> "ModalityAdapter":
        """
        Return an adapter limited to the locations flagged in ``keep``.

        Only adapters with ``drops_flat_locations`` support narrowing; for
        the others ``keep`` must select every location.
        """
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != (self.n_locations,):
            raise DimensionMismatchError(
                f"Location selection has {keep.shape[0]} entries, expected {self.n_locations}"
            )
        if keep.all():
            return self
        raise ValueError(
            f"{type(self).__name__} cannot drop locations; only volumetric adapters "
            "narrow their mask"
        )

    def save(self, img: Any, path: PathLike) -> Path:
        path = Path(path)
        nib.save(img, str(path))
        logger.info("Saved %s", path)
        return path

    def output_path(self, prefix: PathLike, kind: str) -> Path:
        """``{prefix}_{kind}{extension}``, e.g. ``out/tmpl_mean.func.gii``."""
        return Path(f"{prefix}_{kind}{self.extension}")

    def _check_matrix(self, matrix: np.ndarray, names: Sequence[str]) -> np.ndarray:
        matrix = np.asarray(matrix)
        if matrix.ndim == 1:
            matrix = matrix[:, None]
        if matrix.shape[0] != self.n_locations:
            raise DimensionMismatchError(
                f"Cannot re-embed {matrix.shape[0]} locations into a layout "
                f"of {self.n_locations} locations"
            )
        if len(names) != matrix.shape[1]:
            raise ValueError(f"Got {len(names)} names for {matrix.shape[1]} columns")
        return matrix
