"""Exception hierarchy for imforest.

Every error raised by this package on purpose derives from
:class:`ImforestError` so the CLI can report it and exit with a non-zero
status. Failures raised by the tree-training engine itself are not wrapped.
"""

from __future__ import annotations


class ImforestError(Exception):
    """Base class for all imforest errors."""


class ConfigurationError(ImforestError, ValueError):
    """Raised when a hyperparameter is missing or outside its domain."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnknownAccelerationModeError(ConfigurationError):
    """Raised when the acceleration mode label is not recognized."""

    def __init__(self, label: str) -> None:
        super().__init__(
            f"Unknown acceleration mode: {label!r}. Expected one of 'gpu', 'cpu', 'compare'",
            field="mode",
        )
        self.label = label


class InfeasibleResourceBudgetError(ImforestError, RuntimeError):
    """Raised when the device memory budget cannot accommodate training.

    Attributes
    ----------
    min_free : int
        Minimum free device memory in bytes across the selected devices.
    cache_bytes : int
        Resolved image cache size in bytes.
    max_samples_per_batch : int or None
        Computed batch size, when the failure happened after computing it.
    """

    def __init__(
        self,
        message: str,
        *,
        min_free: int,
        cache_bytes: int,
        max_samples_per_batch: int | None = None,
    ) -> None:
        super().__init__(message)
        self.min_free = min_free
        self.cache_bytes = cache_bytes
        self.max_samples_per_batch = max_samples_per_batch


class EmptyDatasetError(ImforestError):
    """Raised when the training location yields no images."""


class InvalidImageError(ImforestError, ValueError):
    """Raised when a training image cannot be read or does not match the others."""


class DeviceError(ImforestError):
    """Raised when a device cannot be queried or used."""


__all__ = [
    "ImforestError",
    "ConfigurationError",
    "UnknownAccelerationModeError",
    "InfeasibleResourceBudgetError",
    "EmptyDatasetError",
    "InvalidImageError",
    "DeviceError",
]
