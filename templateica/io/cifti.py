"""
CIFTI (multi-structure surface + volume) adapter.

Grayordinates are taken from the brain-model axis of each file and grouped
into three blocks: left cortex, right cortex and subcortical voxels. Only the
requested blocks are analysed, always concatenated in that order. Results
are written as dense scalar files (``.dscalar.nii``) whose scalar axis
carries the component names.
"""

import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Union

import nibabel as nib
import numpy as np

from templateica.config import ConfigurationError
from templateica.errors import DimensionMismatchError
from templateica.io.base import ModalityAdapter, PathLike

logger = logging.getLogger(__name__)

STRUCTURE_ORDER = ('left', 'right', 'subcortical')

CORTEX_NAMES = {
    'left': 'CIFTI_STRUCTURE_CORTEX_LEFT',
    'right': 'CIFTI_STRUCTURE_CORTEX_RIGHT',
}


def normalize_brainstructures(brainstructures: Union[str, Iterable[str]]) -> List[str]:
    """
    Validate a brainstructure selection and return it in canonical order.

    ``'all'`` expands to left, right and subcortical.
    """
    if isinstance(brainstructures, str):
        brainstructures = [brainstructures]
    requested = set(brainstructures)
    unknown = requested - set(STRUCTURE_ORDER) - {'all'}
    if unknown:
        raise ConfigurationError(
            f"Unknown brainstructures {sorted(unknown)}; "
            f"choose from {list(STRUCTURE_ORDER) + ['all']}"
        )
    if not requested:
        raise ConfigurationError("At least one brainstructure must be selected")
    if 'all' in requested:
        return list(STRUCTURE_ORDER)
    return [s for s in STRUCTURE_ORDER if s in requested]


def structure_indices(brain_models: nib.cifti2.BrainModelAxis, structure: str) -> np.ndarray:
    """Grayordinate indices of one block of a brain-model axis."""
    if structure == 'subcortical':
        selected = brain_models.volume_mask
    else:
        selected = brain_models.surface_mask & (brain_models.name == CORTEX_NAMES[structure])
    return np.flatnonzero(selected)


def _brain_model_axis(img, path: Path) -> nib.cifti2.BrainModelAxis:
    axis = img.header.get_axis(1)
    if not isinstance(axis, nib.cifti2.BrainModelAxis):
        raise ValueError(f"{path.name} is not a dense CIFTI file (no brain-model axis)")
    return axis


class CiftiAdapter(ModalityAdapter):
    """
    Composite adapter for CIFTI dense data.

    Parameters
    ----------
    group_map : ndarray, shape (n_locations, n_components)
        Group maps for the selected blocks, concatenated.
    brain_models : BrainModelAxis
        Brain-model axis of the selected grayordinates, in flattened order.
    block_sizes : dict
        Number of grayordinates per selected block, in flattened order.
    """

    modality = "cifti"
    extension = ".dscalar.nii"

    def __init__(self, group_map: np.ndarray, brain_models: nib.cifti2.BrainModelAxis,
                 block_sizes: Dict[str, int]):
        super().__init__(group_map)
        self.brain_models = brain_models
        self.block_sizes = OrderedDict(block_sizes)
        if sum(self.block_sizes.values()) != self.n_locations:
            raise DimensionMismatchError(
                f"Blocks hold {sum(self.block_sizes.values())} grayordinates but the "
                f"group map has {self.n_locations} locations"
            )

    @property
    def brainstructures(self) -> List[str]:
        return list(self.block_sizes)

    @classmethod
    def from_group_map(cls, path: PathLike,
                       brainstructures: Union[str, Iterable[str]] = ('left', 'right')) -> "CiftiAdapter":
        """
        Read group ICA maps from a dense CIFTI file.

        Parameters
        ----------
        path : Path
            Dense scalar (or series) CIFTI with one row per group IC.
        brainstructures : str or list of str
            Blocks to analyse: any of 'left', 'right', 'subcortical', or 'all'.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Group ICA file not found: {path}")

        structures = normalize_brainstructures(brainstructures)
        img = nib.load(str(path))
        brain_models = _brain_model_axis(img, path)
        data = np.asarray(img.get_fdata(), dtype=np.float64)

        block_sizes = OrderedDict()
        indices = []
        for structure in structures:
            idx = structure_indices(brain_models, structure)
            if idx.size == 0:
                raise ConfigurationError(f"Group ICA file {path.name} has no {structure} data")
            block_sizes[structure] = idx.size
            indices.append(idx)
        indices = np.concatenate(indices)

        logger.info(
            "Group ICA %s: %s, %d components",
            path.name,
            ", ".join(f"{s}={n}" for s, n in block_sizes.items()),
            data.shape[0],
        )
        return cls(data[:, indices].T, brain_models[indices], block_sizes)

    def _extract(self, img, path: Path) -> np.ndarray:
        brain_models = _brain_model_axis(img, path)
        data = np.asarray(img.get_fdata(), dtype=np.float64)

        indices = []
        for structure, expected in self.block_sizes.items():
            idx = structure_indices(brain_models, structure)
            if idx.size != expected:
                raise DimensionMismatchError(
                    f"{path.name} has {idx.size} {structure} grayordinates, expected {expected}"
                )
            indices.append(idx)
        return data[:, np.concatenate(indices)].T

    def split_blocks(self, matrix: np.ndarray) -> "OrderedDict[str, np.ndarray]":
        """Split a flattened (locations x k) matrix into its per-structure blocks."""
        blocks = OrderedDict()
        start = 0
        for structure, size in self.block_sizes.items():
            blocks[structure] = matrix[start:start + size]
            start += size
        return blocks

    def reembed(self, matrix: np.ndarray, names: Sequence[str]) -> nib.cifti2.Cifti2Image:
        matrix = self._check_matrix(matrix, names)
        blocks = self.split_blocks(matrix)
        data = np.vstack([blocks[s] for s in self.brainstructures]).T.astype(np.float32)

        scalar_axis = nib.cifti2.ScalarAxis(list(names))
        img = nib.Cifti2Image(data, header=(scalar_axis, self.brain_models))
        img.nifti_header.set_intent('NIFTI_INTENT_CONNECTIVITY_DENSE_SCALARS')
        return img
