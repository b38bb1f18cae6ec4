"""Tests for ensemble-wide feature usage counts."""

from __future__ import annotations

from types import SimpleNamespace

from imforest.model.ensemble import RandomForestEnsemble
from imforest.model.feature_usage import count_features


def _tree(counts):
    return SimpleNamespace(count_features=lambda: dict(counts))


def test_counts_are_summed_per_type():
    trees = [_tree({"color": 3, "depth": 1}), _tree({"color": 2}), _tree({})]
    assert count_features(trees) == {"color": 5, "depth": 1}


def test_empty_forest_has_no_features():
    assert count_features([]) == {}


def test_counting_is_repeatable_and_read_only(dataset, configuration):
    forest = RandomForestEnsemble(2, configuration).train(dataset)
    before = [tree.to_dict() for tree in forest]

    first = count_features(forest)
    second = count_features(forest)

    assert first == second
    assert sum(first.values()) == sum(sum(tree.count_features().values()) for tree in forest)
    assert [tree.to_dict() for tree in forest] == before
