"""
Mean and variance decomposition of split-half dual regression estimates.

With two exchangeable measurements per subject, the total variance of the
subject maps splits into within-subject (noise) and between-subject (signal)
parts:

    total  = (var(DR1) + var(DR2)) / 2
    noise  = var(DR1 - DR2) / 2
    signal = max(total - noise, 0)

All variances are taken across subjects with the unbiased (n - 1) estimator.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class VarianceDecomposition:
    """Template estimates, each shaped (n_locations, n_components)."""
    mean: np.ndarray
    total_variance: np.ndarray
    noise_variance: np.ndarray
    signal_variance: np.ndarray
    # total - noise before flooring at zero
    raw_signal_variance: np.ndarray

    @property
    def n_clipped(self) -> int:
        """Number of entries where the signal variance was floored."""
        return int(np.count_nonzero(self.raw_signal_variance < 0))


def decompose_variance(dr1: np.ndarray, dr2: np.ndarray) -> VarianceDecomposition:
    """
    Reduce split-half estimates over subjects.

    Parameters
    ----------
    dr1, dr2 : ndarray, shape (n_subjects, n_components, n_locations)
        Dual regression maps from the first and second halves of the subjects
        that contribute (no missing entries).

    Returns
    -------
    VarianceDecomposition
        Estimates transposed to (n_locations, n_components).
    """
    dr1 = np.asarray(dr1, dtype=np.float64)
    dr2 = np.asarray(dr2, dtype=np.float64)
    if dr1.shape != dr2.shape or dr1.ndim != 3:
        raise ValueError(
            f"Split-half estimates must be 3D arrays of equal shape, got {dr1.shape} and {dr2.shape}"
        )
    if dr1.shape[0] < 2:
        raise ValueError(f"At least two subjects are needed to estimate variance, got {dr1.shape[0]}")

    mean = (dr1.mean(axis=0) + dr2.mean(axis=0)) / 2
    total = (dr1.var(axis=0, ddof=1) + dr2.var(axis=0, ddof=1)) / 2
    noise = 0.5 * (dr1 - dr2).var(axis=0, ddof=1)
    raw_signal = total - noise
    signal = np.where(raw_signal < 0, 0.0, raw_signal)

    return VarianceDecomposition(
        mean=mean.T,
        total_variance=total.T,
        noise_variance=noise.T,
        signal_variance=signal.T,
        raw_signal_variance=raw_signal.T,
    )
