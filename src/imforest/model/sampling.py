"""Pixel subsampling for tree training.

Two policies are supported:

``pixelUniform``
    Pixels are drawn uniformly from all pixels whose label color is not
    ignored.
``classUniform``
    The per-image sample count is split evenly across the label colors present
    in the image, so rare classes are sampled as often as frequent ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from imforest.data.image import ImageDataset, color_keys


@dataclass
class PixelSamples:
    """Sampled pixels as parallel arrays.

    ``label`` is the index of the pixel's label color in the dataset's sorted
    label keys.
    """

    image: np.ndarray
    y: np.ndarray
    x: np.ndarray
    depth: np.ndarray
    label: np.ndarray

    def __len__(self) -> int:
        return int(self.image.shape[0])

    def subset(self, index) -> PixelSamples:
        return PixelSamples(
            image=self.image[index],
            y=self.y[index],
            x=self.x[index],
            depth=self.depth[index],
            label=self.label[index],
        )

    @classmethod
    def concatenate(cls, parts: Sequence[PixelSamples]) -> PixelSamples:
        if not parts:
            return cls(
                image=np.empty(0, dtype=np.int64),
                y=np.empty(0, dtype=np.int64),
                x=np.empty(0, dtype=np.int64),
                depth=np.empty(0, dtype=np.float32),
                label=np.empty(0, dtype=np.int64),
            )
        return cls(
            image=np.concatenate([p.image for p in parts]),
            y=np.concatenate([p.y for p in parts]),
            x=np.concatenate([p.x for p in parts]),
            depth=np.concatenate([p.depth for p in parts]),
            label=np.concatenate([p.label for p in parts]),
        )


def _draw(rng: np.random.Generator, candidates: np.ndarray, count: int) -> np.ndarray:
    return rng.choice(candidates, size=count, replace=candidates.size < count)


def sample_pixels(
    dataset: ImageDataset,
    image_ids: Iterable[int],
    samples_per_image: int,
    subsampling_type: str,
    ignored_colors: Sequence[tuple[int, int, int]],
    label_keys: np.ndarray,
    rng: np.random.Generator,
) -> PixelSamples:
    """Draw ``samples_per_image`` pixels from every image in ``image_ids``.

    Images without any usable pixel contribute no samples.
    """
    ignored = color_keys(np.array(ignored_colors, dtype=np.uint8).reshape(-1, 3))
    parts = []
    for image_id in image_ids:
        image = dataset[image_id]
        keys = color_keys(image.labels).ravel()
        usable = np.flatnonzero(~np.isin(keys, ignored))
        if usable.size == 0:
            continue

        if subsampling_type == "pixelUniform":
            chosen = _draw(rng, usable, samples_per_image)
        elif subsampling_type == "classUniform":
            classes = np.unique(keys[usable])
            shares = np.full(classes.size, samples_per_image // classes.size)
            shares[: samples_per_image % classes.size] += 1
            chosen = np.concatenate(
                [_draw(rng, usable[keys[usable] == key], int(n)) for key, n in zip(classes, shares) if n > 0]
            )
        else:
            raise ValueError(f"unknown subsampling type: {subsampling_type!r}")

        y, x = np.divmod(chosen, image.width)
        parts.append(
            PixelSamples(
                image=np.full(chosen.size, image_id, dtype=np.int64),
                y=y.astype(np.int64),
                x=x.astype(np.int64),
                depth=image.depth[y, x].astype(np.float32),
                label=np.searchsorted(label_keys, keys[chosen]).astype(np.int64),
            )
        )
    return PixelSamples.concatenate(parts)


__all__ = ["PixelSamples", "sample_pixels"]
