"""
Dual regression of a recording on group ICA spatial maps.

Stage 1 regresses the data (locations x time) on the group maps to get one
time course per component; stage 2 regresses the data on those time courses
to get subject-specific spatial maps.

References:
- Beckmann et al. (2009). Group comparison of resting-state FMRI data using
  multi-subject ICA and dual regression. NeuroImage, 47, S148.
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy import linalg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DualRegressionResult:
    """Output of :func:`dual_regress`."""
    spatial_maps: np.ndarray  # (n_components, n_locations)
    time_courses: np.ndarray  # (n_timepoints, n_components)


def center_columns(matrix: np.ndarray) -> np.ndarray:
    """Return a copy of ``matrix`` with every column centered to mean zero."""
    matrix = np.asarray(matrix, dtype=np.float64)
    return matrix - matrix.mean(axis=0, keepdims=True)


def scale_bold(bold: np.ndarray, scale: bool = True) -> np.ndarray:
    """
    Center BOLD data across time and space, optionally scaling it.

    Each location's time series is centered, then each time point is centered
    across locations. With ``scale`` the result is divided by the spatial
    standard deviation, sqrt(mean over locations of the temporal variance).

    Parameters
    ----------
    bold : ndarray, shape (n_locations, n_timepoints)
        Input data; not modified.
    scale : bool
        Divide by the spatial standard deviation.

    Returns
    -------
    ndarray, shape (n_locations, n_timepoints)
    """
    bold = np.asarray(bold, dtype=np.float64)
    n_locations, n_timepoints = bold.shape
    if n_timepoints > n_locations:
        logger.warning(
            "More time points (%d) than locations (%d); check the data orientation",
            n_timepoints, n_locations,
        )

    centered = bold - bold.mean(axis=1, keepdims=True)
    centered = centered - centered.mean(axis=0, keepdims=True)

    if scale:
        sigma = np.sqrt(np.mean(np.var(centered, axis=1, ddof=1)))
        if sigma == 0:
            raise ValueError("Cannot scale BOLD data with zero spatial standard deviation")
        centered = centered / sigma

    return centered


def dual_regress(data: np.ndarray, reference_maps: np.ndarray, scale: bool = False) -> DualRegressionResult:
    """
    Estimate subject spatial maps and time courses by dual regression.

    Parameters
    ----------
    data : ndarray, shape (n_locations, n_timepoints)
        Subject recording.
    reference_maps : ndarray, shape (n_locations, n_components)
        Group IC spatial maps. Centered per component internally.
    scale : bool
        Scale the data by its spatial standard deviation after centering.

    Returns
    -------
    DualRegressionResult
        spatial_maps (n_components x n_locations) and time_courses
        (n_timepoints x n_components, unit standard deviation).

    Raises
    ------
    ValueError
        If the location axes disagree or a component time course is constant.

    Notes
    -----
    Neither input array is modified.
    """
    data = np.asarray(data)
    reference_maps = np.asarray(reference_maps)
    if data.ndim != 2 or reference_maps.ndim != 2:
        raise ValueError("data and reference_maps must both be 2D (locations x ...)")

    n_locations, n_timepoints = data.shape
    if reference_maps.shape[0] != n_locations:
        raise ValueError(
            f"Number of locations in data ({n_locations}) and reference maps "
            f"({reference_maps.shape[0]}) must match"
        )
    n_components = reference_maps.shape[1]
    if n_components > n_timepoints:
        logger.warning("More components (%d) than time points (%d)", n_components, n_timepoints)

    bold = scale_bold(data, scale=scale)
    maps = center_columns(reference_maps)

    # Stage 1: A = Y' G (G'G)^-1
    gram = linalg.cho_factor(maps.T @ maps)
    time_courses = linalg.cho_solve(gram, maps.T @ bold).T

    sd = time_courses.std(axis=0, ddof=1)
    if np.any(sd == 0):
        raise ValueError("Dual regression produced a constant component time course")
    time_courses = time_courses / sd

    # Stage 2: S = (A'A)^-1 A' Y'
    spatial_maps = linalg.solve(
        time_courses.T @ time_courses,
        time_courses.T @ bold.T,
        assume_a='pos',
    )

    return DualRegressionResult(spatial_maps=spatial_maps, time_courses=time_courses)
