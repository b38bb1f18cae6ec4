"""Labeled RGB-D images and the in-memory training dataset."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np


def color_keys(colors: np.ndarray) -> np.ndarray:
    """Pack ``(..., 3)`` uint8 RGB values into ``R << 16 | G << 8 | B`` integers."""
    colors = colors.astype(np.int64)
    return (colors[..., 0] << 16) | (colors[..., 1] << 8) | colors[..., 2]


@dataclass
class LabeledImage:
    """One training image.

    Parameters
    ----------
    color : np.ndarray
        ``(H, W, 3)`` float32 color channels (RGB or CIELab).
    depth : np.ndarray
        ``(H, W)`` float32 depth; ``NaN`` or ``<= 0`` marks missing values.
    labels : np.ndarray
        ``(H, W, 3)`` uint8 ground-truth label colors.
    name : str
        Identifier, usually the source file stem.
    """

    color: np.ndarray
    depth: np.ndarray
    labels: np.ndarray
    name: str = ""

    def __post_init__(self) -> None:
        if self.color.ndim != 3 or self.color.shape[2] != 3:
            raise ValueError(f"color must have shape (H, W, 3), got {self.color.shape}")
        if self.depth.shape != self.color.shape[:2]:
            raise ValueError(f"depth shape {self.depth.shape} does not match color {self.color.shape[:2]}")
        if self.labels.shape != self.color.shape:
            raise ValueError(f"labels shape {self.labels.shape} does not match color {self.color.shape}")

    @property
    def height(self) -> int:
        return int(self.color.shape[0])

    @property
    def width(self) -> int:
        return int(self.color.shape[1])

    @property
    def size_in_memory(self) -> int:
        """Bytes held by the color, depth and label arrays."""
        return int(self.color.nbytes + self.depth.nbytes + self.labels.nbytes)


class ImageDataset(Sequence[LabeledImage]):
    """Ordered collection of labeled images of uniform size."""

    def __init__(self, images: Sequence[LabeledImage]) -> None:
        self._images = list(images)

    def __len__(self) -> int:
        return len(self._images)

    def __getitem__(self, index):
        return self._images[index]

    def __iter__(self) -> Iterator[LabeledImage]:
        return iter(self._images)

    @property
    def image_size_in_memory(self) -> int:
        """Per-image footprint, taken from the first image."""
        if not self._images:
            return 0
        return self._images[0].size_in_memory

    @property
    def size_in_memory(self) -> int:
        return len(self) * self.image_size_in_memory

    def label_keys(self) -> np.ndarray:
        """Sorted packed label colors present in any image."""
        keys = [np.unique(color_keys(image.labels)) for image in self._images]
        if not keys:
            return np.empty(0, dtype=np.int64)
        return np.unique(np.concatenate(keys))

    def __repr__(self) -> str:
        return f"ImageDataset(images={len(self)}, image_bytes={self.image_size_in_memory})"


__all__ = ["LabeledImage", "ImageDataset", "color_keys"]
