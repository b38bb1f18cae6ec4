"""Device memory budget for tree training.

Running out of device memory in the middle of training is fatal and wastes
all compute spent so far, so every feasibility check happens here, before
the first tree is grown.

The budget answers two questions for the worst-case device (the one with
the least free memory):

1. How many images fit into the device image cache?
2. How many samples may one feature-evaluation batch hold?

Algorithm
---------
* The cache defaults to 66% of the free memory; an explicit size is given
  in MB (1 MB = 1024 * 1024 bytes). It must be strictly smaller than the free
  memory.
* One third of the memory left after the cache is available to batches.
  From it, the histogram counters (``10 * 2 * weight_size * features *
  thresholds`` bytes) are reserved.
* Each batch sample costs ``2 * response_size * features`` bytes. The batch
  size is capped at :data:`MAX_SAMPLES_PER_BATCH` and must reach
  :data:`MIN_SAMPLES_PER_BATCH`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from imforest.errors import InfeasibleResourceBudgetError
from imforest.model.dtypes import FEATURE_RESPONSE_TYPE_SIZE, WEIGHT_TYPE_SIZE
from imforest.utils import BYTES_PER_MB, format_bytes_mb

logger = logging.getLogger(__name__)

AUTO_CACHE_FRACTION = 0.66
BATCH_MEMORY_DIVISOR = 3
HISTOGRAM_RESERVE_FACTOR = 10
MAX_SAMPLES_PER_BATCH = 50000
MIN_SAMPLES_PER_BATCH = 1000


@dataclass(frozen=True)
class ResourceBudget:
    """Feasible image cache and batch sizes."""

    image_cache_count: int
    max_samples_per_batch: int


def resolve_cache_bytes(min_free: int, image_cache_size_mb: int) -> int:
    """Return the image cache size in bytes (``0`` MB selects 66% of ``min_free``)."""
    if image_cache_size_mb == 0:
        return int(AUTO_CACHE_FRACTION * min_free)
    return int(image_cache_size_mb) * BYTES_PER_MB


def compute_resource_budget(
    min_free: int,
    image_cache_size_mb: int,
    image_count: int,
    image_size: int,
    feature_count: int,
    num_thresholds: int,
    *,
    weight_size: int = WEIGHT_TYPE_SIZE,
    feature_response_size: int = FEATURE_RESPONSE_TYPE_SIZE,
) -> ResourceBudget:
    """Compute the image cache and batch budget.

    Parameters
    ----------
    min_free : int
        Minimum free memory across the selected devices, in bytes.
    image_cache_size_mb : int
        Requested cache size in MB; ``0`` sizes it automatically.
    image_count : int
        Number of images in the dataset.
    image_size : int
        Per-image footprint in bytes.
    feature_count : int
        Candidate features evaluated per node.
    num_thresholds : int
        Thresholds evaluated per feature.
    weight_size, feature_response_size : int
        Byte sizes of the kernel's histogram counter and feature response types.

    Returns
    -------
    ResourceBudget
        Cache size in images and maximum samples per batch.

    Raises
    ------
    InfeasibleResourceBudgetError
        If the cache does not fit strictly below ``min_free`` or the batch
        size falls below :data:`MIN_SAMPLES_PER_BATCH`.
    ValueError
        If ``min_free``, ``image_size`` or ``feature_count`` is not positive
        or the requested cache size is negative.
    """
    if min_free <= 0:
        raise ValueError(f"min_free must be positive, got {min_free}")
    if image_size <= 0:
        raise ValueError(f"image_size must be positive, got {image_size}")
    if image_cache_size_mb < 0:
        raise ValueError(f"image_cache_size_mb must be >= 0, got {image_cache_size_mb}")
    if feature_count <= 0:
        raise ValueError(f"feature_count must be positive, got {feature_count}")

    cache_bytes = resolve_cache_bytes(min_free, image_cache_size_mb)
    if cache_bytes >= min_free:
        raise InfeasibleResourceBudgetError(
            f"image cache size too large: {format_bytes_mb(cache_bytes)} requested, "
            f"{format_bytes_mb(min_free)} free on device",
            min_free=min_free,
            cache_bytes=cache_bytes,
        )

    image_cache_count = min(image_count, cache_bytes // image_size)
    logger.info(
        "image cache size: %d images (%s)",
        image_cache_count,
        format_bytes_mb(image_cache_count * image_size),
    )

    remaining = (min_free - cache_bytes) // BATCH_MEMORY_DIVISOR
    remaining -= HISTOGRAM_RESERVE_FACTOR * (2 * weight_size * feature_count * num_thresholds)
    size_per_sample = 2 * feature_response_size * feature_count

    max_samples_per_batch = min(remaining // size_per_sample, MAX_SAMPLES_PER_BATCH)
    if max_samples_per_batch < MIN_SAMPLES_PER_BATCH:
        raise InfeasibleResourceBudgetError(
            f"memory headroom on device too low: {max_samples_per_batch} samples per batch "
            f"(minimum {MIN_SAMPLES_PER_BATCH}) with a {format_bytes_mb(cache_bytes)} image cache "
            f"and {format_bytes_mb(min_free)} free. Try to decrease the image cache size manually",
            min_free=min_free,
            cache_bytes=cache_bytes,
            max_samples_per_batch=int(max_samples_per_batch),
        )

    logger.info("max samples per batch: %d", max_samples_per_batch)
    return ResourceBudget(image_cache_count=int(image_cache_count), max_samples_per_batch=int(max_samples_per_batch))


__all__ = [
    "ResourceBudget",
    "resolve_cache_bytes",
    "compute_resource_budget",
    "MAX_SAMPLES_PER_BATCH",
    "MIN_SAMPLES_PER_BATCH",
]
