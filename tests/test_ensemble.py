"""Tests for the forest ensemble and the training orchestrator."""

from __future__ import annotations

import logging
import threading

import pytest
from factories import make_configuration

from imforest.model import ensemble as ensemble_module
from imforest.model.ensemble import RandomForestEnsemble, SharedRandomSource, train_ensemble
from imforest.model.tree import RandomTree


def test_trees_are_assigned_devices_round_robin():
    configuration = make_configuration(device_ids=[3, 5])
    forest = RandomForestEnsemble(5, configuration)
    assert [tree.device_id for tree in forest] == [3, 5, 3, 5, 3]
    assert [tree.tree_id for tree in forest] == [0, 1, 2, 3, 4]
    assert not forest.is_trained


def test_ensemble_requires_trees(configuration):
    with pytest.raises(ValueError):
        RandomForestEnsemble(0, configuration)


def test_shared_random_source_is_reproducible():
    a, b = SharedRandomSource(4711), SharedRandomSource(4711)
    assert [a.next_seed() for _ in range(5)] == [b.next_seed() for _ in range(5)]
    assert SharedRandomSource(1).next_seed() != SharedRandomSource(2).next_seed()


def test_shared_random_source_is_thread_safe():
    expected = SharedRandomSource(7)
    reference = sorted(expected.next_seed() for _ in range(200))

    source = SharedRandomSource(7)
    threads = [threading.Thread(target=lambda: [source.next_seed() for _ in range(50)]) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(source.drawn) == reference


def test_sequential_training_is_reproducible(dataset, configuration):
    first = RandomForestEnsemble(3, configuration).train(dataset)
    second = RandomForestEnsemble(3, configuration).train(dataset)

    assert first.is_trained
    assert [tree.to_dict() for tree in first] == [tree.to_dict() for tree in second]


def test_sequential_training_seeds_follow_tree_order(dataset, configuration):
    source = SharedRandomSource(configuration.random_seed)
    forest = RandomForestEnsemble(3, configuration).train(dataset, random_source=source)
    assert [tree.seed for tree in forest] == source.drawn


def test_sequential_training_releases_each_tree_before_the_next(dataset, configuration, monkeypatch):
    events = []
    original_train = RandomTree.train
    original_release = RandomTree.release

    def train(self, *args, **kwargs):
        events.append(("train", self.tree_id))
        return original_train(self, *args, **kwargs)

    def release(self):
        events.append(("release", self.tree_id))
        original_release(self)

    monkeypatch.setattr(RandomTree, "train", train)
    monkeypatch.setattr(RandomTree, "release", release)

    RandomForestEnsemble(3, configuration).train(dataset)

    assert events == [("train", 0), ("release", 0), ("train", 1), ("release", 1), ("train", 2), ("release", 2)]


def test_concurrent_training_trains_every_tree(dataset, caplog):
    configuration = make_configuration(num_threads=3)
    source = SharedRandomSource(configuration.random_seed)

    with caplog.at_level(logging.WARNING, logger="imforest.model.ensemble"):
        forest = RandomForestEnsemble(4, configuration).train(dataset, parallel=True, random_source=source)

    assert forest.is_trained
    reference = SharedRandomSource(configuration.random_seed)
    assert sorted(tree.seed for tree in forest) == sorted(source.drawn)
    assert sorted(source.drawn) == sorted(reference.next_seed() for _ in range(4))
    assert "may be exceeded" in caplog.text


def test_error_in_sequential_mode_aborts(dataset, configuration, monkeypatch):
    original_train = RandomTree.train

    def train(self, *args, **kwargs):
        if self.tree_id == 1:
            raise RuntimeError("device lost")
        return original_train(self, *args, **kwargs)

    monkeypatch.setattr(RandomTree, "train", train)
    forest = RandomForestEnsemble(3, configuration)

    with pytest.raises(RuntimeError, match="device lost"):
        forest.train(dataset)
    assert forest[0].is_trained
    assert not forest[2].is_trained


def test_error_in_concurrent_mode_propagates(dataset, monkeypatch):
    def train(self, *args, **kwargs):
        raise RuntimeError(f"tree {self.tree_id} failed")

    monkeypatch.setattr(RandomTree, "train", train)
    forest = RandomForestEnsemble(3, make_configuration(num_threads=1))

    with pytest.raises(RuntimeError, match="failed"):
        forest.train(dataset, parallel=True)


def test_train_ensemble_logs_summary(dataset, configuration, caplog, monkeypatch):
    monkeypatch.setattr(ensemble_module, "count_features", lambda forest: {"color": 3, "depth": 2})

    with caplog.at_level(logging.INFO, logger="imforest.model.ensemble"):
        forest = train_ensemble(dataset, 2, configuration)

    assert len(forest) == 2
    assert "min)" in caplog.text
    assert "feature color: 3" in caplog.text
    assert "feature depth: 2" in caplog.text
