"""
Exceptions raised during template estimation.

Per-subject errors (missing files, location-count mismatches) are caught by
the estimator, which excludes the subject and carries on. Run-level errors
stop the estimation.
"""


class DimensionMismatchError(ValueError):
    """Raised when a matrix does not agree with the group map's location axis."""
    pass


class MissingDataError(FileNotFoundError):
    """Raised when one of a subject's recordings is unavailable."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class EstimationError(RuntimeError):
    """Raised when a template estimation run cannot complete."""
    pass


class EstimationCancelled(RuntimeError):
    """Raised when a run is stopped between subjects by its cancellation check."""
    pass
