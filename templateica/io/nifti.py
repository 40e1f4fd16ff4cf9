"""
NIfTI (masked 3D volume) adapter.

A binary brain mask selects which voxels of 4D images (x, y, z, t) become
rows of the flattened matrix; rows follow the mask's C-order voxel order.
The mask can be narrowed during estimation when voxels with constant time
series are found, and the narrowed mask is written with the templates.
"""

import logging
from pathlib import Path
from typing import Sequence

import nibabel as nib
import numpy as np

from templateica.config import ConfigurationError
from templateica.errors import DimensionMismatchError
from templateica.io.base import ModalityAdapter, PathLike

logger = logging.getLogger(__name__)


def load_binary_mask(mask_file: PathLike) -> nib.Nifti1Image:
    """
    Load a 3D brain mask and check that it is binary and non-empty.

    Raises
    ------
    ConfigurationError
        If the mask has values other than 0 and 1, is not 3D, or is empty.
    """
    mask_file = Path(mask_file)
    if not mask_file.exists():
        raise FileNotFoundError(f"Mask file not found: {mask_file}")

    mask_img = nib.load(str(mask_file))
    data = np.asanyarray(mask_img.dataobj)
    if data.ndim == 4 and data.shape[3] == 1:
        data = data[..., 0]
    if data.ndim != 3:
        raise ConfigurationError(f"Mask must be a 3D image, got {data.ndim}D")

    values = set(np.unique(data).tolist())
    if not values <= {0, 1}:
        raise ConfigurationError(f"Mask must be binary, found values {sorted(values)[:5]}")
    if 1 not in values:
        raise ConfigurationError(f"Mask {mask_file.name} contains no voxels")

    return nib.Nifti1Image(data.astype(np.uint8), mask_img.affine, mask_img.header)


class NiftiAdapter(ModalityAdapter):
    """
    Masked-volume adapter for 4D NIfTI data.

    Parameters
    ----------
    group_map : ndarray, shape (n_voxels_in_mask, n_components)
        Group maps at the mask's voxels.
    mask : ndarray of bool, shape (x, y, z)
        Analysed voxels.
    affine : ndarray, shape (4, 4)
        Affine used for written images.
    header : Nifti1Header, optional
        Header copied into written images.
    """

    modality = "nifti"
    extension = ".nii.gz"
    drops_flat_locations = True

    def __init__(self, group_map: np.ndarray, mask: np.ndarray, affine: np.ndarray, header=None):
        super().__init__(group_map)
        self.mask = np.asarray(mask, dtype=bool)
        self.affine = np.asarray(affine)
        self.header = header
        if int(self.mask.sum()) != self.n_locations:
            raise DimensionMismatchError(
                f"Mask has {int(self.mask.sum())} voxels but the group map has "
                f"{self.n_locations} locations"
            )

    @property
    def volume_shape(self) -> tuple:
        return self.mask.shape

    @classmethod
    def from_group_map(cls, path: PathLike, mask: PathLike = None) -> "NiftiAdapter":
        """
        Read 4D group ICA maps (x, y, z, n_components) inside a brain mask.

        Parameters
        ----------
        path : Path
            4D NIfTI with one volume per group IC.
        mask : Path
            Binary 3D brain mask with the same spatial dimensions.
        """
        if mask is None:
            raise ConfigurationError("A binary brain mask is required for NIfTI data")
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Group ICA file not found: {path}")

        mask_img = load_binary_mask(mask)
        mask_data = np.asanyarray(mask_img.dataobj).astype(bool)

        img = nib.load(str(path))
        data = img.get_fdata()
        if data.ndim == 3:
            data = data[..., np.newaxis]
        if data.shape[:3] != mask_data.shape:
            raise DimensionMismatchError(
                f"Group ICA dims {data.shape[:3]} and mask dims {mask_data.shape} do not match"
            )

        logger.info(
            "Group ICA %s: %s grid, %d voxels in mask, %d components",
            path.name, "x".join(map(str, mask_data.shape)), int(mask_data.sum()), data.shape[3],
        )
        return cls(data[mask_data], mask_data, img.affine, img.header)

    def _extract(self, img, path: Path) -> np.ndarray:
        if len(img.shape) != 4:
            raise DimensionMismatchError(f"Expected 4D data in {path.name}, got {len(img.shape)}D")
        if tuple(img.shape[:3]) != self.volume_shape:
            raise DimensionMismatchError(
                f"BOLD dims {tuple(img.shape[:3])} of {path.name} and mask dims "
                f"{self.volume_shape} do not match"
            )
        return img.get_fdata()[self.mask]

    def restricted(self, keep: np.ndarray) -> "NiftiAdapter":
        """Return an adapter whose mask only keeps the flagged in-mask voxels."""
        keep = np.asarray(keep, dtype=bool)
        if keep.shape != (self.n_locations,):
            raise DimensionMismatchError(
                f"Voxel selection has {keep.shape[0]} entries, expected {self.n_locations}"
            )
        if keep.all():
            return self
        if not keep.any():
            raise ConfigurationError("Voxel selection removes every voxel from the mask")

        mask = np.zeros_like(self.mask)
        mask[self.mask] = keep
        return NiftiAdapter(self.group_map[keep], mask, self.affine, self.header)

    def mask_image(self) -> nib.Nifti1Image:
        return nib.Nifti1Image(self.mask.astype(np.uint8), self.affine)

    def reembed(self, matrix: np.ndarray, names: Sequence[str]) -> nib.Nifti1Image:
        matrix = self._check_matrix(matrix, names)
        volumes = np.zeros(self.volume_shape + (matrix.shape[1],), dtype=np.float32)
        volumes[self.mask] = matrix

        if self.header is not None:
            header = self.header.copy()
            header.set_data_shape(volumes.shape)
            header.set_data_dtype(np.float32)
        else:
            header = None
        img = nib.Nifti1Image(volumes, self.affine, header)
        # Volume order follows the component names
        img.header['descrip'] = ",".join(names)[:79].encode()
        return img
