"""
Modality adapters: flatten GIFTI, CIFTI and NIfTI data to (locations x time)
matrices and re-embed results into the native containers.
"""

from pathlib import Path
from typing import Iterable, Optional, Union

from templateica.config import MODALITIES, ConfigurationError

from .base import ModalityAdapter, component_names
from .cifti import CiftiAdapter, normalize_brainstructures
from .file_lists import read_file_list, read_location_mask, resolve_file_list
from .gifti import GiftiAdapter
from .nifti import NiftiAdapter, load_binary_mask

ADAPTERS = {
    'gifti': GiftiAdapter,
    'cifti': CiftiAdapter,
    'nifti': NiftiAdapter,
}


def open_group_map(
    modality: str,
    group_map: Union[str, Path],
    mask: Optional[Union[str, Path]] = None,
    medial_wall: Optional[Union[str, Path]] = None,
    brainstructures: Union[str, Iterable[str]] = ('left', 'right'),
) -> ModalityAdapter:
    """
    Build the adapter for ``modality`` from a group ICA file.

    Options that do not apply to the modality are ignored with no error
    (e.g. ``mask`` for GIFTI).
    """
    if modality not in ADAPTERS:
        raise ConfigurationError(f"modality must be one of {MODALITIES}, got {modality!r}")
    if modality == 'gifti':
        return GiftiAdapter.from_group_map(group_map, medial_wall=medial_wall)
    if modality == 'cifti':
        return CiftiAdapter.from_group_map(group_map, brainstructures=brainstructures)
    return NiftiAdapter.from_group_map(group_map, mask=mask)


__all__ = [
    "ADAPTERS",
    "CiftiAdapter",
    "GiftiAdapter",
    "ModalityAdapter",
    "NiftiAdapter",
    "component_names",
    "load_binary_mask",
    "normalize_brainstructures",
    "open_group_map",
    "read_file_list",
    "read_location_mask",
    "resolve_file_list",
]
