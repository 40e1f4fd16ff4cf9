"""
Split-half template estimation.

For every subject, dual regression is run separately on the two halves of
its data against the group ICA maps. The selected components of the subject
maps are accumulated, and after the last subject the accumulators are
reduced to a template mean and a decomposition of the variance into
within-subject (noise) and between-subject (signal) parts.

The estimator works on plain matrices and knows nothing about file formats;
subject data come from a :class:`SplitHalfProvider`.

Typical usage::

    estimator = TemplateEstimator(adapter.group_map, inds=[1, 3], scale=True)
    result = estimator.fit(SplitHalfProvider(adapter.load, bold_files))
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from templateica.config import ConfigurationError
from templateica.dual_regression import center_columns, dual_regress
from templateica.errors import (
    DimensionMismatchError,
    EstimationCancelled,
    EstimationError,
)
from templateica.estimation.split_half import SplitHalfProvider, SubjectHalves
from templateica.estimation.variance import decompose_variance
from templateica.io.base import component_names

logger = logging.getLogger(__name__)


class EstimatorState(Enum):
    INIT = "init"
    LOADING_GROUP_MAP = "loading_group_map"
    PER_SUBJECT_LOOP = "per_subject_loop"
    REDUCING = "reducing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ExcludedSubject:
    """A subject left out of the template, and why."""
    index: int
    label: str
    reason: str


@dataclass(frozen=True)
class TemplateResult:
    """
    Template estimates in flattened location order.

    Every matrix is (n_locations, n_components) where n_locations counts the
    locations still in ``kept_locations`` and the columns follow ``inds``.
    """
    mean: np.ndarray
    total_variance: np.ndarray
    noise_variance: np.ndarray
    signal_variance: np.ndarray
    inds: Tuple[int, ...]
    scale: bool
    kept_locations: np.ndarray  # bool over the locations of the input group map
    n_subjects: int
    n_subjects_total: int
    excluded: Tuple[ExcludedSubject, ...] = ()
    warnings: Tuple[str, ...] = ()
    n_clipped: int = 0

    @property
    def component_names(self) -> List[str]:
        return component_names(self.inds)

    @property
    def excluded_subjects(self) -> List[str]:
        return [e.label for e in self.excluded]

    @property
    def n_locations(self) -> int:
        return int(self.kept_locations.sum())

    @property
    def n_locations_initial(self) -> int:
        return int(self.kept_locations.size)

    @property
    def n_flat_locations(self) -> int:
        return self.n_locations_initial - self.n_locations


def validate_scale(scale) -> bool:
    if not isinstance(scale, (bool, np.bool_)):
        raise ConfigurationError(f"scale must be a single boolean, got {scale!r}")
    return bool(scale)


def validate_inds(inds: Optional[Sequence[int]], n_components: int) -> Tuple[int, ...]:
    """
    Check a 1-based component selection against the group map.

    Returns all components when ``inds`` is None.
    """
    if inds is None:
        return tuple(range(1, n_components + 1))

    values = np.atleast_1d(np.asarray(inds, dtype=object))
    if values.size == 0:
        raise ConfigurationError("inds must select at least one component")

    bad = [
        q for q in values
        if isinstance(q, (bool, np.bool_))
        or not isinstance(q, (int, np.integer))
        or not 1 <= q <= n_components
    ]
    if bad:
        raise ConfigurationError(
            f"Invalid entries in inds: {bad} (group map has {n_components} components, "
            f"valid indices are 1..{n_components})"
        )
    selected = tuple(int(q) for q in values)
    if len(set(selected)) != len(selected):
        raise ConfigurationError(f"inds contains repeated components: {list(selected)}")
    return selected


def find_flat_locations(half_1: np.ndarray, half_2: np.ndarray) -> np.ndarray:
    """Locations whose time series is constant in either half."""
    # max == min; np.var of a constant 0.1 series is not exactly zero
    return (np.ptp(half_1, axis=1) == 0) | (np.ptp(half_2, axis=1) == 0)


class TemplateEstimator:
    """
    Estimate template mean and variance from split-half dual regression.

    Parameters
    ----------
    group_map : ndarray, shape (n_locations, n_components)
        Group ICA maps. Each map is centered before use; the input is not
        modified.
    inds : sequence of int, optional
        1-based indices of the components to keep in the template. Default:
        all components.
    scale : bool
        Scale each half by its spatial standard deviation before dual
        regression.
    detect_flat_locations : bool
        Scan all subjects before estimation and drop locations whose time
        series is constant in either half of any subject (volumetric data).
    should_stop : callable, optional
        Called between subjects; returning True cancels the run.
    """

    def __init__(
        self,
        group_map: np.ndarray,
        inds: Optional[Sequence[int]] = None,
        scale: bool = True,
        detect_flat_locations: bool = False,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.group_map = np.asarray(group_map)
        self.inds = inds
        self.scale = scale
        self.detect_flat_locations = detect_flat_locations
        self.should_stop = should_stop
        self.state = EstimatorState.INIT
        self.result: Optional[TemplateResult] = None
        self._warnings: List[str] = []

    def _enter(self, state: EstimatorState) -> None:
        logger.debug("Template estimation: %s -> %s", self.state.value, state.value)
        self.state = state

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)

    def _check_cancelled(self, index: int, n_subjects: int) -> None:
        if self.should_stop is not None and self.should_stop():
            raise EstimationCancelled(
                f"Template estimation cancelled before subject {index + 1} of {n_subjects}"
            )

    def prepare(self) -> Tuple[np.ndarray, Tuple[int, ...], bool]:
        """
        Validate the run settings and center the group maps.

        Raises
        ------
        ConfigurationError
            If ``scale`` or ``inds`` are invalid, or the group map is malformed.
        """
        if self.group_map.ndim != 2 or 0 in self.group_map.shape:
            raise ConfigurationError(
                f"Group map must be a non-empty (locations x components) matrix, "
                f"got shape {self.group_map.shape}"
            )
        scale = validate_scale(self.scale)
        inds = validate_inds(self.inds, self.group_map.shape[1])

        n_locations, n_components = self.group_map.shape
        logger.info("Number of data locations: %d", n_locations)
        logger.info("Number of original group ICs: %d", n_components)
        logger.info("Number of template ICs: %d", len(inds))
        return center_columns(self.group_map), inds, scale

    def fit(self, provider: SplitHalfProvider) -> TemplateResult:
        """
        Run the estimation over every subject of ``provider``.

        Raises
        ------
        ConfigurationError
            On invalid settings, before any subject is read.
        DimensionMismatchError
            If no readable subject matches the group map's location count.
        EstimationError
            If fewer than two subjects contribute or no location survives.
        EstimationCancelled
            If ``should_stop`` returned True between subjects.
        """
        self._warnings = []
        try:
            self._enter(EstimatorState.LOADING_GROUP_MAP)
            group_map, inds, scale = self.prepare()
            provider.check_available()
            n_subjects = len(provider)
            logger.info("Number of training subjects: %d", n_subjects)

            n_initial = group_map.shape[0]
            kept = np.ones(n_initial, dtype=bool)
            if self.detect_flat_locations:
                kept = ~self._scan_flat_locations(provider, n_initial)
                if not kept.all():
                    group_map = center_columns(self.group_map[kept])

            self._enter(EstimatorState.PER_SUBJECT_LOOP)
            dr1, dr2, valid, excluded, n_missing, n_mismatched = self._accumulate(
                provider, group_map, inds, scale, kept,
            )

            self._enter(EstimatorState.REDUCING)
            n_valid = int(valid.sum())
            n_readable = n_subjects - n_missing
            if n_valid == 0 and n_readable > 0 and n_mismatched == n_readable:
                raise DimensionMismatchError(
                    "No subject could be matched to the group map; every readable "
                    "subject had a dimension mismatch"
                )
            if n_valid < 2:
                raise EstimationError(
                    f"Only {n_valid} of {n_subjects} subjects have usable data; at least "
                    "two are needed to estimate the template variance"
                )

            logger.info("Estimating template mean and variance from %d subjects", n_valid)
            decomposition = decompose_variance(dr1[valid], dr2[valid])
            if decomposition.n_clipped:
                logger.info(
                    "Between-subject variance floored at zero for %d of %d entries",
                    decomposition.n_clipped, decomposition.raw_signal_variance.size,
                )

            self.result = TemplateResult(
                mean=decomposition.mean,
                total_variance=decomposition.total_variance,
                noise_variance=decomposition.noise_variance,
                signal_variance=decomposition.signal_variance,
                inds=inds,
                scale=scale,
                kept_locations=kept,
                n_subjects=n_valid,
                n_subjects_total=n_subjects,
                excluded=tuple(excluded),
                warnings=tuple(self._warnings),
                n_clipped=decomposition.n_clipped,
            )
            self._enter(EstimatorState.DONE)
        except Exception:
            self.state = EstimatorState.FAILED
            raise

        if excluded:
            logger.info(
                "Excluded %d subject(s): %s",
                len(excluded), ", ".join(e.label for e in excluded),
            )
        if self.result.n_flat_locations:
            logger.info(
                "Locations in updated mask: %d (of %d)",
                self.result.n_locations, self.result.n_locations_initial,
            )
        return self.result

    def _read_subject(self, provider: SplitHalfProvider, index: int,
                      n_locations: int) -> SubjectHalves:
        halves = provider.get(index)
        for half in (halves.half_1, halves.half_2):
            if half.shape[0] != n_locations:
                raise DimensionMismatchError(
                    f"The number of data locations in the group map ({n_locations}) and "
                    f"the data of subject {index + 1} ({half.shape[0]}) do not match"
                )
        return halves

    def _scan_flat_locations(self, provider: SplitHalfProvider, n_locations: int) -> np.ndarray:
        """
        Find locations that are constant in either half of any subject.

        Runs before any dual regression so that every subject is analysed
        with the same final mask. Unreadable subjects are skipped here and
        reported by the main loop.
        """
        n_subjects = len(provider)
        flat = np.zeros(n_locations, dtype=bool)

        for i in range(n_subjects):
            self._check_cancelled(i, n_subjects)
            try:
                halves = self._read_subject(provider, i, n_locations)
            except (FileNotFoundError, DimensionMismatchError):
                continue

            subject_flat = find_flat_locations(halves.half_1, halves.half_2)
            new = subject_flat & ~flat
            if new.any():
                self._warn(
                    f"{int(new.sum())} flat location(s) detected in subject {i + 1} "
                    f"({halves.label}). Removing them from the mask for all subjects."
                )
            flat |= subject_flat

        if flat.all():
            raise EstimationError("Every location has constant data; the mask is empty")
        return flat

    def _accumulate(self, provider: SplitHalfProvider, group_map: np.ndarray,
                    inds: Tuple[int, ...], scale: bool, kept: np.ndarray):
        n_subjects = len(provider)
        n_locations = group_map.shape[0]
        rows = np.asarray(inds) - 1

        dr1 = np.zeros((n_subjects, len(inds), n_locations))
        dr2 = np.zeros((n_subjects, len(inds), n_locations))
        valid = np.zeros(n_subjects, dtype=bool)
        excluded: List[ExcludedSubject] = []
        n_missing = 0
        n_mismatched = 0

        for i in range(n_subjects):
            self._check_cancelled(i, n_subjects)
            label = provider.label(i)
            logger.info("Reading and analyzing data for subject %d of %d", i + 1, n_subjects)

            try:
                halves = self._read_subject(provider, i, kept.size)
            except FileNotFoundError as e:
                n_missing += 1
                self._warn(f"Data not available for subject {i + 1}: {e}")
                excluded.append(ExcludedSubject(i, label, f"missing data: {e}"))
                continue
            except DimensionMismatchError as e:
                n_mismatched += 1
                self._warn(f"Excluding subject {i + 1}: {e}")
                excluded.append(ExcludedSubject(i, label, f"dimension mismatch: {e}"))
                continue

            try:
                maps_1 = dual_regress(halves.half_1[kept], group_map, scale=scale).spatial_maps
                maps_2 = dual_regress(halves.half_2[kept], group_map, scale=scale).spatial_maps
            except (ValueError, np.linalg.LinAlgError) as e:
                self._warn(f"Dual regression failed for subject {i + 1}: {e}")
                excluded.append(ExcludedSubject(i, label, f"dual regression failed: {e}"))
                continue

            dr1[i] = maps_1[rows]
            dr2[i] = maps_2[rows]
            valid[i] = True

        return dr1, dr2, valid, excluded, n_missing, n_mismatched
