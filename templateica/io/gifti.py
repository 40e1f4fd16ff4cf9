"""
GIFTI (surface vertex list) adapter.

Each data array of a ``.func.gii`` file is one column: a time point for
recordings, a component for group ICA maps. An optional medial wall mask
drops non-cortical vertices; they are written back as zeros.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import nibabel as nib
import numpy as np

from templateica.errors import DimensionMismatchError
from templateica.io.base import ModalityAdapter, PathLike
from templateica.io.file_lists import read_location_mask

logger = logging.getLogger(__name__)


def gifti_to_matrix(img: nib.gifti.GiftiImage) -> np.ndarray:
    """Stack the data arrays of a GIFTI image as columns (vertices x arrays)."""
    if not img.darrays:
        raise ValueError("GIFTI image contains no data arrays")
    return np.column_stack([np.asarray(da.data, dtype=np.float64).ravel() for da in img.darrays])


def matrix_to_gifti(matrix: np.ndarray, names: Sequence[str]) -> nib.gifti.GiftiImage:
    """Build a GIFTI image with one named float32 data array per column."""
    darrays = [
        nib.gifti.GiftiDataArray(
            data=np.ascontiguousarray(matrix[:, i], dtype=np.float32),
            intent='NIFTI_INTENT_NONE',
            datatype='NIFTI_TYPE_FLOAT32',
            meta=nib.gifti.GiftiMetaData({'Name': name}),
        )
        for i, name in enumerate(names)
    ]
    return nib.gifti.GiftiImage(darrays=darrays)


class GiftiAdapter(ModalityAdapter):
    """
    Vertex-list adapter for GIFTI functional data.

    Parameters
    ----------
    group_map : ndarray, shape (n_locations, n_components)
        Group maps restricted to the analysed vertices.
    vertex_mask : ndarray of bool, shape (n_vertices,)
        Analysed vertices of the full surface.
    """

    modality = "gifti"
    extension = ".func.gii"

    def __init__(self, group_map: np.ndarray, vertex_mask: np.ndarray):
        super().__init__(group_map)
        self.vertex_mask = np.asarray(vertex_mask, dtype=bool)
        if self.vertex_mask.sum() != self.n_locations:
            raise DimensionMismatchError(
                f"Vertex mask keeps {int(self.vertex_mask.sum())} vertices but the "
                f"group map has {self.n_locations} locations"
            )

    @property
    def n_vertices(self) -> int:
        return self.vertex_mask.shape[0]

    @classmethod
    def from_group_map(cls, path: PathLike, medial_wall: Optional[PathLike] = None) -> "GiftiAdapter":
        """
        Read group ICA maps from a GIFTI file.

        Parameters
        ----------
        path : Path
            GIFTI file with one data array per group IC.
        medial_wall : Path, optional
            Medial wall file (see :func:`read_location_mask`). Default keeps
            every vertex.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Group ICA file not found: {path}")

        full = gifti_to_matrix(nib.load(str(path)))
        n_vertices = full.shape[0]

        if medial_wall is not None:
            vertex_mask = read_location_mask(medial_wall, n_vertices)
        else:
            vertex_mask = np.ones(n_vertices, dtype=bool)

        logger.info(
            "Group ICA %s: %d vertices (%d analysed), %d components",
            path.name, n_vertices, int(vertex_mask.sum()), full.shape[1],
        )
        return cls(full[vertex_mask], vertex_mask)

    def _extract(self, img, path: Path) -> np.ndarray:
        full = gifti_to_matrix(img)
        if full.shape[0] != self.n_vertices:
            raise DimensionMismatchError(
                f"{path.name} has {full.shape[0]} vertices, expected {self.n_vertices}"
            )
        return full[self.vertex_mask]

    def reembed(self, matrix: np.ndarray, names: Sequence[str]) -> nib.gifti.GiftiImage:
        matrix = self._check_matrix(matrix, names)
        full = np.zeros((self.n_vertices, matrix.shape[1]), dtype=np.float64)
        full[self.vertex_mask] = matrix
        return matrix_to_gifti(full, names)
