"""Random forest ensemble and the tree-training orchestrator.

Trees are trained through a bounded :class:`concurrent.futures.ThreadPoolExecutor`
sized by ``num_threads`` (``0`` uses every core).

Sequential mode (the default) submits one tree at a time and waits for it;
the tree releases its device allocations before the next one starts, so at
most one tree holds device memory and the run is reproducible for a given
seed.

Concurrent mode submits every tree at once and waits for all of them. The
resource budget is computed for a single tree and is not divided between
trees, so concurrent trees on the same device may exceed it. Seeds are drawn
in scheduling order, which makes concurrent runs non-deterministic.

A failing tree aborts the run: trees that have not started are cancelled
and the error is re-raised unchanged.
"""

from __future__ import annotations

import logging
import threading
from concurrent import futures
from typing import Iterator, Optional, Sequence

import numpy as np
from tqdm.auto import tqdm

from imforest.config import TrainingConfiguration
from imforest.data.image import ImageDataset
from imforest.model.features import compute_integral_images
from imforest.model.feature_usage import count_features
from imforest.model.tree import RandomTree
from imforest.utils import Timer

logger = logging.getLogger(__name__)


class SharedRandomSource:
    """Thread-safe source of per-tree seeds.

    Parameters
    ----------
    seed : int
        Seed of the underlying generator.

    Examples
    --------
    >>> a, b = SharedRandomSource(4711), SharedRandomSource(4711)
    >>> [a.next_seed() for _ in range(3)] == [b.next_seed() for _ in range(3)]
    True
    """

    def __init__(self, seed: int) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()
        self.drawn: list[int] = []

    def next_seed(self) -> int:
        with self._lock:
            value = int(self._rng.integers(0, 2**32))
            self.drawn.append(value)
            return value


class RandomForestEnsemble(Sequence[RandomTree]):
    """Ordered trees sharing one configuration.

    Tree ``i`` evaluates features on ``configuration.device_ids[i % len]``.
    Trees start untrained; :meth:`train` populates them.
    """

    def __init__(self, n_trees: int, configuration: TrainingConfiguration) -> None:
        if n_trees <= 0:
            raise ValueError(f"n_trees must be > 0, got {n_trees}")
        device_ids = configuration.device_ids or (0,)
        self.configuration = configuration
        self.trees = [RandomTree(i, configuration, device_ids[i % len(device_ids)]) for i in range(n_trees)]

    def __len__(self) -> int:
        return len(self.trees)

    def __getitem__(self, index):
        return self.trees[index]

    def __iter__(self) -> Iterator[RandomTree]:
        return iter(self.trees)

    @property
    def is_trained(self) -> bool:
        return all(tree.is_trained for tree in self.trees)

    def __repr__(self) -> str:
        nodes = sum(tree.node_count for tree in self.trees)
        depth = max(tree.depth for tree in self.trees)
        return f"RandomForestEnsemble(trees={len(self)}, nodes={nodes}, max_depth={depth})"

    def train(
        self,
        dataset: ImageDataset,
        parallel: bool = False,
        profile: bool = False,
        random_source: Optional[SharedRandomSource] = None,
    ) -> RandomForestEnsemble:
        """Train every tree on ``dataset``.

        Parameters
        ----------
        dataset : ImageDataset
            Training images.
        parallel : bool, default=False
            Train trees concurrently.
        profile : bool, default=False
            Record per-phase timings in each tree.
        random_source : SharedRandomSource, optional
            Seed source; a new one seeded with ``configuration.random_seed``
            by default.
        """
        if random_source is None:
            random_source = SharedRandomSource(self.configuration.random_seed)
        integrals = compute_integral_images(dataset)
        workers = self.configuration.worker_count

        def train_one(tree: RandomTree) -> RandomTree:
            try:
                return tree.train(dataset, random_source, integrals=integrals, profile=profile)
            finally:
                tree.release()

        with futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tree") as executor:
            if not parallel:
                for tree in tqdm(self.trees, desc="Training trees"):
                    executor.submit(train_one, tree).result()
                return self

            logger.warning(
                "Training %d trees concurrently on %d workers; the device memory budget is "
                "computed for a single tree and may be exceeded",
                len(self),
                workers,
            )
            pending = {executor.submit(train_one, tree): tree for tree in self.trees}
            try:
                for completed in tqdm(futures.as_completed(pending), total=len(pending), desc="Training trees"):
                    completed.result()
            except BaseException:
                for future in pending:
                    future.cancel()
                raise
        return self


def train_ensemble(
    images: ImageDataset,
    trees: int,
    configuration: TrainingConfiguration,
    parallel: bool = False,
    profile: bool = False,
) -> RandomForestEnsemble:
    """Train a forest of ``trees`` trees and log the run summary.

    Errors raised while training propagate unchanged and no partial ensemble
    is returned.
    """
    logger.info("Training %d trees on %d images (parallel=%s)", trees, len(images), parallel)
    logger.info("%s", configuration)

    ensemble = RandomForestEnsemble(trees, configuration)
    timer = Timer()
    ensemble.train(images, parallel=parallel, profile=profile)
    timer.stop()

    logger.info("Training took %.2f s (%.2f min)", timer.seconds, timer.seconds / 60.0)
    logger.info("%r", ensemble)
    for feature_type, count in sorted(count_features(ensemble).items()):
        logger.info("feature %s: %d", feature_type, count)
    return ensemble


__all__ = ["SharedRandomSource", "RandomForestEnsemble", "train_ensemble"]
