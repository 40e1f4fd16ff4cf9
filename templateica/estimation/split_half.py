"""
Split-half data for template estimation.

Every subject contributes two matrices over the same locations: either two
sessions (test-retest), or the first and second halves of one session
(pseudo test-retest).
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from templateica.config import ConfigurationError
from templateica.errors import DimensionMismatchError, MissingDataError

logger = logging.getLogger(__name__)

Source = Union[str, Path]


@dataclass
class SubjectHalves:
    """Two independent measurements of one subject."""
    index: int
    label: str
    half_1: np.ndarray  # (n_locations, n_timepoints_1)
    half_2: np.ndarray  # (n_locations, n_timepoints_2)


def split_pseudo_retest(bold: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a (locations x time) recording into two contiguous halves.

    The first half holds the first ``floor(T / 2)`` time points and the second
    half the rest, so for odd T the second half is one longer.
    """
    n_timepoints = bold.shape[1]
    if n_timepoints < 2:
        raise DimensionMismatchError(
            f"Cannot split a recording with {n_timepoints} time point(s) into halves"
        )
    cut = n_timepoints // 2
    return bold[:, :cut], bold[:, cut:]


class SplitHalfProvider:
    """
    Produce (half_1, half_2) for each subject on demand.

    Parameters
    ----------
    loader : callable
        Reads one source into a (locations x time) matrix, raising
        FileNotFoundError when unavailable (e.g. ``adapter.load``).
    sources : sequence
        One source (file path) per subject.
    retest_sources : sequence, optional
        Second session per subject, same order. If None, each recording is
        split in time.
    require_equal_length : bool
        Require both sessions of a subject to have the same number of time
        points.
    exists : callable, optional
        Cheap availability check used before a run; defaults to
        ``Path(source).exists()``.
    """

    def __init__(
        self,
        loader: Callable[[Source], np.ndarray],
        sources: Sequence[Source],
        retest_sources: Optional[Sequence[Source]] = None,
        require_equal_length: bool = False,
        exists: Optional[Callable[[Source], bool]] = None,
    ):
        self.loader = loader
        self.sources = list(sources)
        self.retest_sources = list(retest_sources) if retest_sources is not None else None
        self.require_equal_length = require_equal_length
        self._exists = exists or (lambda source: Path(source).exists())

        if self.retest_sources is not None and len(self.retest_sources) != len(self.sources):
            raise ConfigurationError(
                f"The retest list ({len(self.retest_sources)} files) must have the same "
                f"length as the test list ({len(self.sources)} files) and be in the same "
                "subject order"
            )

    @property
    def retest(self) -> bool:
        return self.retest_sources is not None

    def __len__(self) -> int:
        return len(self.sources)

    def label(self, index: int) -> str:
        return str(self.sources[index])

    @property
    def labels(self) -> List[str]:
        return [self.label(i) for i in range(len(self))]

    def check_available(self) -> None:
        """
        Check that some data exist before any subject is processed.

        Raises
        ------
        ConfigurationError
            If none of the test (or retest) files exist.
        """
        if not self.sources:
            raise ConfigurationError("No subject files were given")

        lists = [('test', self.sources)]
        if self.retest:
            lists.append(('retest', self.retest_sources))

        for name, sources in lists:
            missing = sum(not self._exists(s) for s in sources)
            if missing == len(sources):
                raise ConfigurationError(f"None of the {name} files exist")
            if missing:
                logger.warning(
                    "%d of %d %s files do not exist; these subjects will be excluded",
                    missing, len(sources), name,
                )

    def _read(self, source: Source) -> np.ndarray:
        try:
            return self.loader(source)
        except FileNotFoundError as e:
            raise MissingDataError(f"Data not available for {source}", path=source) from e

    def get(self, index: int) -> SubjectHalves:
        """
        Read subject ``index`` and return both halves.

        Raises
        ------
        MissingDataError
            If either of the subject's files is unavailable.
        DimensionMismatchError
            If the halves do not match the group map or each other.
        """
        bold = self._read(self.sources[index])

        if not self.retest:
            half_1, half_2 = split_pseudo_retest(bold)
        else:
            half_1 = bold
            half_2 = self._read(self.retest_sources[index])
            if half_2.shape[0] != half_1.shape[0]:
                raise DimensionMismatchError(
                    f"Test ({half_1.shape[0]}) and retest ({half_2.shape[0]}) location "
                    f"counts differ for subject {index + 1}"
                )
            if self.require_equal_length and half_2.shape[1] != half_1.shape[1]:
                raise DimensionMismatchError(
                    f"Retest data has a different duration ({half_2.shape[1]}) from the "
                    f"first session ({half_1.shape[1]}) for subject {index + 1}"
                )

        return SubjectHalves(index=index, label=self.label(index), half_1=half_1, half_2=half_2)
