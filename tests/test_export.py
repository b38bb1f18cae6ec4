"""Tests for exporting trained trees."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from imforest import __version__
from imforest.export import export_ensemble
from imforest.model.ensemble import RandomForestEnsemble


def test_export_writes_one_file_per_tree(tmp_path: Path, dataset, configuration):
    forest = RandomForestEnsemble(2, configuration).train(dataset)
    output = tmp_path / "out" / "forest"

    written = export_ensemble(forest, configuration, output, "data/training")

    assert written == [output / "tree0.json", output / "tree1.json"]
    data = json.loads(written[1].read_text())
    assert data["version"] == __version__
    assert data["training_folder"] == "data/training"
    assert data["configuration"] == configuration.to_dict()
    assert data["tree"]["tree_id"] == 1
    assert "date" in data
    assert "git_commit" in data


def test_verbose_export_includes_node_details(tmp_path: Path, dataset, configuration):
    forest = RandomForestEnsemble(1, configuration).train(dataset, profile=True)

    (path,) = export_ensemble(forest, configuration, tmp_path, "train", verbose=True)

    tree = json.loads(path.read_text())["tree"]
    assert "profile" in tree
    assert tree["root"]["level"] == 0


def test_export_without_output_folder_is_skipped(dataset, configuration, caplog):
    forest = RandomForestEnsemble(1, configuration)
    with caplog.at_level(logging.WARNING, logger="imforest.export"):
        assert export_ensemble(forest, configuration, "", "train") == []
    assert "not exported" in caplog.text
