"""Random decision tree over depth-normalised box features.

Training grows the tree depth first. At each node ``feature_count`` random
features are drawn and evaluated over the node's samples in batches of at
most ``max_samples_per_batch``. ``num_thresholds`` thresholds per feature are
drawn from the responses of the first batch, and left-branch label
histograms are accumulated batch by batch, so host and device memory stay
bounded by the batch size whatever the number of samples. The split with
the highest information gain wins, provided each child keeps at least
``min_sample_count`` samples.

A node becomes a leaf when

* its level reaches ``max_depth - 1`` (the root is level 0),
* all its samples carry the same label, or
* it holds fewer than ``2 * min_sample_count`` samples or no split is valid.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from imforest.config import TrainingConfiguration
from imforest.data.image import ImageDataset
from imforest.errors import EmptyDatasetError
from imforest.model.dtypes import WEIGHT_DTYPE
from imforest.model.features import (
    FeatureEvaluator,
    ImageFeature,
    compute_integral_images,
    make_evaluator,
    random_feature,
)
from imforest.model.sampling import PixelSamples, sample_pixels
from imforest.profiling import Profiler

if TYPE_CHECKING:
    from imforest.model.ensemble import SharedRandomSource

logger = logging.getLogger(__name__)


def entropy(counts: np.ndarray) -> np.ndarray:
    """Shannon entropy in bits of histograms along the last axis."""
    counts = np.asarray(counts, dtype=np.float64)
    totals = counts.sum(axis=-1, keepdims=True)
    p = np.divide(counts, totals, out=np.zeros_like(counts), where=totals > 0)
    with np.errstate(divide="ignore", invalid="ignore"):
        logs = np.where(p > 0, np.log2(p), 0.0)
    return -(p * logs).sum(axis=-1)


@dataclass
class TreeNode:
    """One node; split nodes carry ``feature``, ``threshold`` and both children."""

    node_id: int
    level: int
    histogram: np.ndarray
    feature: Optional[ImageFeature] = None
    threshold: Optional[float] = None
    left: Optional[TreeNode] = None
    right: Optional[TreeNode] = None

    @property
    def is_leaf(self) -> bool:
        return self.feature is None

    @property
    def num_samples(self) -> int:
        return int(self.histogram.sum())

    def iter_nodes(self):
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            if not node.is_leaf:
                stack.append(node.right)
                stack.append(node.left)

    def to_dict(self, verbose: bool = False) -> dict:
        data: dict = {"histogram": self.histogram.tolist()}
        if verbose:
            data["id"] = self.node_id
            data["level"] = self.level
            data["samples"] = self.num_samples
        if not self.is_leaf:
            data["feature"] = self.feature.to_dict()
            data["threshold"] = float(self.threshold)
            data["left"] = self.left.to_dict(verbose)
            data["right"] = self.right.to_dict(verbose)
        return data


class RandomTree:
    """A single tree bound to a shared configuration and one device.

    Parameters
    ----------
    tree_id : int
        Position of the tree in its ensemble.
    configuration : TrainingConfiguration
        Shared, read-only run configuration.
    device_id : int
        CUDA device used for feature evaluation in ``gpu`` and ``compare`` mode.
    """

    def __init__(self, tree_id: int, configuration: TrainingConfiguration, device_id: int) -> None:
        self.tree_id = tree_id
        self.configuration = configuration
        self.device_id = device_id
        self.root: Optional[TreeNode] = None
        self.seed: Optional[int] = None
        self.label_keys: Optional[np.ndarray] = None
        self.profiler = Profiler(enabled=False)
        self._evaluator: Optional[FeatureEvaluator] = None
        self._next_node_id = 0

    @property
    def is_trained(self) -> bool:
        return self.root is not None

    @property
    def node_count(self) -> int:
        return 0 if self.root is None else sum(1 for _ in self.root.iter_nodes())

    @property
    def depth(self) -> int:
        return 0 if self.root is None else 1 + max(node.level for node in self.root.iter_nodes())

    def __repr__(self) -> str:
        return (
            f"RandomTree(id={self.tree_id}, device={self.device_id}, "
            f"nodes={self.node_count}, depth={self.depth})"
        )

    def train(
        self,
        dataset: ImageDataset,
        random_source: SharedRandomSource,
        integrals: Optional[np.ndarray] = None,
        profile: bool = False,
    ) -> RandomTree:
        """Grow the tree on ``dataset``.

        The per-tree seed is drawn from ``random_source`` when training
        starts. ``integrals`` may be shared across trees; it is computed
        here when omitted.

        Raises
        ------
        EmptyDatasetError
            If no pixel of the selected images has a usable label color.
        """
        cfg = self.configuration
        self.profiler = Profiler(enabled=profile)
        self.seed = random_source.next_seed()
        rng = np.random.default_rng(self.seed)
        self._next_node_id = 0

        with self.profiler.section("integral_images"):
            if integrals is None:
                integrals = compute_integral_images(dataset)
        self.label_keys = dataset.label_keys()

        n_images = len(dataset)
        if 0 < cfg.max_images < n_images:
            image_ids = np.sort(rng.choice(n_images, size=cfg.max_images, replace=False))
        else:
            image_ids = np.arange(n_images)

        with self.profiler.section("sampling"):
            samples = sample_pixels(
                dataset,
                image_ids,
                cfg.samples_per_image,
                cfg.subsampling_type,
                cfg.ignored_color_values,
                self.label_keys,
                rng,
            )
        if len(samples) == 0:
            raise EmptyDatasetError(f"tree {self.tree_id}: no pixel with a usable label color")

        logger.debug("tree %d: seed %d, %d images, %d samples", self.tree_id, self.seed, len(image_ids), len(samples))
        self._evaluator = make_evaluator(
            cfg.acceleration_mode, integrals, self.device_id, cfg.image_cache_size, cfg.max_samples_per_batch
        )
        self.root = self._grow(samples, 0, rng)
        logger.info("tree %d trained: %d nodes, depth %d", self.tree_id, self.node_count, self.depth)
        self.profiler.log(f"tree {self.tree_id}")
        return self

    def release(self) -> None:
        """Free transient device allocations held for training."""
        if self._evaluator is not None:
            self._evaluator.close()
            self._evaluator = None

    def count_features(self) -> dict[str, int]:
        """Occurrences of each feature type among the split nodes."""
        if self.root is None:
            return {}
        return dict(Counter(node.feature.feature_type for node in self.root.iter_nodes() if not node.is_leaf))

    def to_dict(self, verbose: bool = False) -> dict:
        label_colors = []
        if self.label_keys is not None:
            label_colors = [[int(k) >> 16 & 0xFF, int(k) >> 8 & 0xFF, int(k) & 0xFF] for k in self.label_keys]
        data = {
            "tree_id": self.tree_id,
            "device_id": self.device_id,
            "seed": self.seed,
            "label_colors": label_colors,
            "root": None if self.root is None else self.root.to_dict(verbose),
        }
        if verbose:
            data["nodes"] = self.node_count
            data["depth"] = self.depth
            data["profile"] = self.profiler.timings
        return data

    # ------------------------------------------------------------------
    # growing
    # ------------------------------------------------------------------
    def _new_node(self, level: int, histogram: np.ndarray) -> TreeNode:
        node = TreeNode(node_id=self._next_node_id, level=level, histogram=histogram)
        self._next_node_id += 1
        return node

    def _batches(self, n: int):
        step = self.configuration.max_samples_per_batch
        for start in range(0, n, step):
            yield slice(start, min(start + step, n))

    def _grow(self, samples: PixelSamples, level: int, rng: np.random.Generator) -> TreeNode:
        cfg = self.configuration
        n_classes = len(self.label_keys)
        histogram = np.bincount(samples.label, minlength=n_classes).astype(WEIGHT_DTYPE)
        node = self._new_node(level, histogram)

        if (
            level >= cfg.max_depth - 1
            or np.count_nonzero(histogram) <= 1
            or len(samples) < 2 * cfg.min_sample_count
        ):
            return node

        split = self._find_split(samples, histogram, rng)
        if split is None:
            return node
        feature, threshold = split

        goes_left = np.empty(len(samples), dtype=bool)
        with self.profiler.section("partition"):
            for batch in self._batches(len(samples)):
                responses = self._evaluator.responses([feature], samples.subset(batch))
                goes_left[batch] = responses[:, 0] < threshold

        node.feature = feature
        node.threshold = threshold
        node.left = self._grow(samples.subset(goes_left), level + 1, rng)
        node.right = self._grow(samples.subset(~goes_left), level + 1, rng)
        return node

    def _find_split(
        self, samples: PixelSamples, histogram: np.ndarray, rng: np.random.Generator
    ) -> Optional[tuple[ImageFeature, float]]:
        cfg = self.configuration
        n_classes = histogram.shape[0]
        features = [random_feature(rng, cfg.box_radius, cfg.region_size) for _ in range(cfg.feature_count)]
        n_features = len(features)

        thresholds: Optional[np.ndarray] = None
        left = np.zeros((n_features, cfg.num_thresholds, n_classes), dtype=WEIGHT_DTYPE)
        for batch in self._batches(len(samples)):
            part = samples.subset(batch)
            with self.profiler.section("feature_evaluation"):
                responses = self._evaluator.responses(features, part)
            if thresholds is None:
                picks = rng.integers(0, len(part), size=(n_features, cfg.num_thresholds))
                thresholds = responses[picks, np.arange(n_features)[:, None]]
            with self.profiler.section("histograms"):
                onehot = np.eye(n_classes, dtype=np.float64)[part.label]
                for t in range(cfg.num_thresholds):
                    mask = (responses < thresholds[None, :, t]).astype(np.float64)
                    left[:, t, :] += np.einsum("bf,bk->fk", mask, onehot).astype(WEIGHT_DTYPE)

        with self.profiler.section("scoring"):
            total = histogram.astype(np.float64)
            left_counts = left.astype(np.float64)
            right_counts = total - left_counts
            n_left = left_counts.sum(axis=-1)
            n_right = right_counts.sum(axis=-1)
            n = total.sum()
            gain = entropy(total) - (n_left * entropy(left_counts) + n_right * entropy(right_counts)) / n
            valid = (n_left >= cfg.min_sample_count) & (n_right >= cfg.min_sample_count)
            if not valid.any():
                return None
            gain = np.where(valid, gain, -np.inf)
            f, t = np.unravel_index(int(np.argmax(gain)), gain.shape)
            if gain[f, t] <= 0:
                return None
        return features[f], float(thresholds[f, t])


__all__ = ["TreeNode", "RandomTree", "entropy"]
