"""Depth-normalised box features and their batched evaluation.

A feature compares the mean of two rectangular regions placed around a
sampled pixel. Offsets and region extents are given in pixels at unit depth
and are divided by the depth at the sampled pixel, which makes the response
roughly invariant to the distance between camera and object.

Region sums are read from per-image integral images. Box coordinates are
always computed on the host with numpy; only the gather from the integral
images runs on the selected backend:

* :class:`CPUFeatureEvaluator` gathers from numpy arrays.
* :class:`GPUFeatureEvaluator` keeps the first ``image_cache_count`` integral
  images resident on a CUDA device and uploads the others one at a time.
* :class:`CompareFeatureEvaluator` runs both and checks they agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np
import torch

from imforest.config import AccelerationMode
from imforest.data.image import ImageDataset
from imforest.errors import InvalidImageError
from imforest.model.dtypes import FEATURE_RESPONSE_DTYPE, FEATURE_RESPONSE_TYPE_SIZE
from imforest.model.sampling import PixelSamples

logger = logging.getLogger(__name__)

FEATURE_TYPES = ("color", "depth")
DEPTH_CHANNEL = 3
N_CHANNELS = 4

# Device bytes reserved per (sample, feature) pair by the resource budget.
BUDGET_BYTES_PER_PAIR = 2 * FEATURE_RESPONSE_TYPE_SIZE
# Peak device bytes per pair while gathering: eight int64 box coordinates plus
# the float32 corner gathers, int64 box areas and both region means.
DEVICE_BYTES_PER_PAIR = 128


@dataclass(frozen=True)
class ImageFeature:
    """One candidate split feature.

    Parameters
    ----------
    feature_type : str
        ``"color"`` or ``"depth"``.
    channel : int
        Channel of the integral image (0-2 color, 3 depth).
    offset1, offset2 : tuple[int, int]
        ``(dy, dx)`` offsets of the region centers at unit depth.
    region1, region2 : tuple[int, int]
        ``(ry, rx)`` region half extents at unit depth.
    """

    feature_type: str
    channel: int
    offset1: tuple[int, int]
    region1: tuple[int, int]
    offset2: tuple[int, int]
    region2: tuple[int, int]

    def to_dict(self) -> dict:
        return {
            "type": self.feature_type,
            "channel": self.channel,
            "offset1": list(self.offset1),
            "region1": list(self.region1),
            "offset2": list(self.offset2),
            "region2": list(self.region2),
        }


def random_feature(rng: np.random.Generator, box_radius: int, region_size: int) -> ImageFeature:
    """Draw a feature with offsets in ``[-box_radius, box_radius]`` and extents in ``[1, region_size]``."""
    feature_type = FEATURE_TYPES[int(rng.integers(0, len(FEATURE_TYPES)))]
    channel = int(rng.integers(0, 3)) if feature_type == "color" else DEPTH_CHANNEL
    offsets = rng.integers(-box_radius, box_radius + 1, size=4)
    regions = rng.integers(1, region_size + 1, size=4)
    return ImageFeature(
        feature_type=feature_type,
        channel=channel,
        offset1=(int(offsets[0]), int(offsets[1])),
        region1=(int(regions[0]), int(regions[1])),
        offset2=(int(offsets[2]), int(offsets[3])),
        region2=(int(regions[2]), int(regions[3])),
    )


def compute_integral_images(dataset: ImageDataset) -> np.ndarray:
    """Return integral images of shape ``(N, H + 1, W + 1, 4)`` as float32.

    Channels are the three color channels followed by depth. Missing depth
    values contribute zero.
    """
    first = dataset[0]
    height, width = first.height, first.width
    integrals = np.zeros((len(dataset), height + 1, width + 1, N_CHANNELS), dtype=np.float32)
    for i, image in enumerate(dataset):
        if (image.height, image.width) != (height, width):
            raise InvalidImageError(
                f"Image {image.name!r} has shape {image.height}x{image.width}, expected {height}x{width}"
            )
        channels = np.concatenate(
            [image.color.astype(np.float64), np.nan_to_num(image.depth, nan=0.0)[..., None]],
            axis=2,
        )
        integrals[i, 1:, 1:, :] = channels.cumsum(axis=0).cumsum(axis=1)
    return integrals


@dataclass
class BoxCoordinates:
    """Integral-image coordinates of both regions for ``(B, F)`` sample/feature pairs."""

    image: np.ndarray
    channel: np.ndarray
    boxes: tuple[tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray], ...]


def box_coordinates(
    features: Sequence[ImageFeature], samples: PixelSamples, height: int, width: int
) -> BoxCoordinates:
    offsets1 = np.array([f.offset1 for f in features], dtype=np.float64)
    offsets2 = np.array([f.offset2 for f in features], dtype=np.float64)
    regions1 = np.array([f.region1 for f in features], dtype=np.float64)
    regions2 = np.array([f.region2 for f in features], dtype=np.float64)

    depth = samples.depth.astype(np.float64)
    scale = np.where(np.isfinite(depth) & (depth > 0), 1.0 / np.where(depth > 0, depth, 1.0), 1.0)[:, None]
    y = samples.y[:, None]
    x = samples.x[:, None]

    boxes = []
    for offsets, regions in ((offsets1, regions1), (offsets2, regions2)):
        cy = y + np.rint(offsets[None, :, 0] * scale).astype(np.int64)
        cx = x + np.rint(offsets[None, :, 1] * scale).astype(np.int64)
        ry = np.floor(regions[None, :, 0] * scale).astype(np.int64)
        rx = np.floor(regions[None, :, 1] * scale).astype(np.int64)
        y0 = np.clip(cy - ry, 0, height - 1)
        y1 = np.clip(cy + ry, 0, height - 1) + 1
        x0 = np.clip(cx - rx, 0, width - 1)
        x1 = np.clip(cx + rx, 0, width - 1) + 1
        boxes.append((y0, y1, x0, x1))

    channel = np.array([f.channel for f in features], dtype=np.int64)[None, :]
    return BoxCoordinates(image=samples.image[:, None], channel=channel, boxes=tuple(boxes))


def region_difference(integral, image, channel, boxes):
    """Mean of region 1 minus mean of region 2.

    Works unchanged on numpy arrays and torch tensors as long as all
    arguments live on the same backend.
    """
    means = []
    for y0, y1, x0, x1 in boxes:
        total = (
            integral[image, y1, x1, channel]
            - integral[image, y0, x1, channel]
            - integral[image, y1, x0, channel]
            + integral[image, y0, x0, channel]
        )
        means.append(total / ((y1 - y0) * (x1 - x0)))
    return means[0] - means[1]


class FeatureEvaluator(Protocol):
    def responses(self, features: Sequence[ImageFeature], samples: PixelSamples) -> np.ndarray: ...

    def close(self) -> None: ...


class CPUFeatureEvaluator:
    """Evaluate responses with numpy on the host."""

    def __init__(self, integrals: np.ndarray) -> None:
        self.integrals = integrals
        self.height = integrals.shape[1] - 1
        self.width = integrals.shape[2] - 1

    def responses(self, features: Sequence[ImageFeature], samples: PixelSamples) -> np.ndarray:
        coords = box_coordinates(features, samples, self.height, self.width)
        out = region_difference(self.integrals, coords.image, coords.channel, coords.boxes)
        return out.astype(FEATURE_RESPONSE_DTYPE, copy=False)

    def close(self) -> None:
        pass


class GPUFeatureEvaluator:
    """Evaluate responses on a CUDA device with a resident image cache.

    Device memory stays within the training budget: the first
    ``image_cache_count`` integral images are resident, every other image is
    uploaded on its own while its samples are evaluated, and samples are
    gathered in chunks of :attr:`rows_per_chunk` so the index tensors of one
    chunk never exceed what ``max_samples_per_batch`` samples are budgeted.

    Parameters
    ----------
    integrals : np.ndarray
        Host integral images for the whole dataset.
    device_id : int
        CUDA device index.
    image_cache_count : int
        Number of leading images kept resident on the device.
    max_samples_per_batch : int
        Budgeted batch size.
    device : torch.device, optional
        Overrides ``cuda:<device_id>``.
    """

    def __init__(
        self,
        integrals: np.ndarray,
        device_id: int,
        image_cache_count: int,
        max_samples_per_batch: int,
        device: torch.device | None = None,
    ) -> None:
        self.integrals = integrals
        self.height = integrals.shape[1] - 1
        self.width = integrals.shape[2] - 1
        self.device = device if device is not None else torch.device(f"cuda:{device_id}")
        self.image_cache_count = min(image_cache_count, len(integrals))
        self.rows_per_chunk = max(1, max_samples_per_batch * BUDGET_BYTES_PER_PAIR // DEVICE_BYTES_PER_PAIR)
        self._cache = torch.from_numpy(integrals[: self.image_cache_count]).to(self.device)
        logger.debug(
            "Cached %d of %d images on %s, %d samples per chunk",
            self.image_cache_count,
            len(integrals),
            self.device,
            self.rows_per_chunk,
        )

    def _to_device(self, a: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(a, dtype=torch.long, device=self.device)

    def _evaluate(
        self, integral: torch.Tensor, image: np.ndarray, coords: BoxCoordinates, rows: np.ndarray, out: np.ndarray
    ) -> None:
        channel = self._to_device(coords.channel)
        for start in range(0, rows.size, self.rows_per_chunk):
            chunk = rows[start : start + self.rows_per_chunk]
            local = self._to_device(image[start : start + self.rows_per_chunk, None])
            boxes = tuple(tuple(self._to_device(c[chunk]) for c in box) for box in coords.boxes)
            out[chunk] = region_difference(integral, local, channel, boxes).cpu().numpy()

    def responses(self, features: Sequence[ImageFeature], samples: PixelSamples) -> np.ndarray:
        coords = box_coordinates(features, samples, self.height, self.width)
        out = np.empty((len(samples), len(features)), dtype=FEATURE_RESPONSE_DTYPE)
        cached = samples.image < self.image_cache_count

        rows = np.flatnonzero(cached)
        if rows.size:
            self._evaluate(self._cache, samples.image[rows], coords, rows, out)

        for image_id in np.unique(samples.image[~cached]):
            rows = np.flatnonzero(samples.image == image_id)
            uploaded = torch.from_numpy(self.integrals[image_id : image_id + 1]).to(self.device)
            self._evaluate(uploaded, np.zeros(rows.size, dtype=np.int64), coords, rows, out)
            del uploaded
        return out

    def close(self) -> None:
        self._cache = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
class CompareFeatureEvaluator:
    """Evaluate on host and device and fail on disagreement."""

    def __init__(self, cpu: CPUFeatureEvaluator, gpu: GPUFeatureEvaluator, rtol: float = 1e-4, atol: float = 1e-3):
        self.cpu = cpu
        self.gpu = gpu
        self.rtol = rtol
        self.atol = atol

    def responses(self, features: Sequence[ImageFeature], samples: PixelSamples) -> np.ndarray:
        expected = self.cpu.responses(features, samples)
        actual = self.gpu.responses(features, samples)
        if not np.allclose(expected, actual, rtol=self.rtol, atol=self.atol, equal_nan=True):
            worst = float(np.nanmax(np.abs(expected - actual)))
            raise RuntimeError(f"CPU and GPU feature responses differ (max abs difference {worst:.6g})")
        return expected

    def close(self) -> None:
        self.gpu.close()


def make_evaluator(
    mode: AccelerationMode,
    integrals: np.ndarray,
    device_id: int,
    image_cache_count: int,
    max_samples_per_batch: int,
) -> FeatureEvaluator:
    """Return the evaluator for ``mode``."""
    if mode is AccelerationMode.CPU:
        return CPUFeatureEvaluator(integrals)
    gpu = GPUFeatureEvaluator(integrals, device_id, image_cache_count, max_samples_per_batch)
    if mode is AccelerationMode.GPU:
        return gpu
    return CompareFeatureEvaluator(CPUFeatureEvaluator(integrals), gpu)


__all__ = [
    "BUDGET_BYTES_PER_PAIR",
    "ImageFeature",
    "random_feature",
    "compute_integral_images",
    "CPUFeatureEvaluator",
    "GPUFeatureEvaluator",
    "CompareFeatureEvaluator",
    "make_evaluator",
]
