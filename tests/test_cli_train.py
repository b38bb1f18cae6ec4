"""Tests for the `imforest` CLI."""

from __future__ import annotations

from pathlib import Path

from factories import BASE_PARAMS
from omegaconf import OmegaConf
from typer.testing import CliRunner

import imforest.cli.train as train_cli
from imforest import __version__
from imforest.cli import app
from imforest.pipeline import run_training

runner = CliRunner()

# SAMPLES_PER_IMAGE .. NUM_THRESHOLDS
POSITIONAL = ["40", "8", "2", "6", "4", "2", "5"]


def _run_on_host(monkeypatch, free: int = 2 * 1024**3):
    """Route the CLI through the real pipeline with a fake device query."""
    captured = {}

    def fake_run_training(params, **kwargs):
        captured["params"] = params
        captured["kwargs"] = kwargs
        return run_training(params, device_query=lambda device_id: free, **kwargs)

    monkeypatch.setattr(train_cli, "run_training", fake_run_training)
    return captured


def test_help_exits_with_status_one():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 1
    assert "Usage" in result.output
    assert "train" in result.output


def test_version_exits_with_status_one():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 1
    assert __version__ in result.output


def test_no_command_prints_help_and_fails():
    result = runner.invoke(app, [])
    assert result.exit_code == 1
    assert "Usage" in result.output


def test_train_help_exits_with_status_one():
    result = runner.invoke(app, ["train", "--help"])
    assert result.exit_code == 1
    assert "FOLDER_TRAINING" in result.output
    assert "--image-cache-size" in result.output


def test_missing_positionals_fail(monkeypatch):
    _run_on_host(monkeypatch)
    result = runner.invoke(app, ["train", "data/training", "3"])
    assert result.exit_code == 1
    assert "samples_per_image" in result.output
    assert "Usage" in result.output


def test_unknown_mode_fails(monkeypatch, training_folder: Path):
    _run_on_host(monkeypatch)
    result = runner.invoke(app, ["train", str(training_folder), "2", *POSITIONAL, "--mode", "GPU"])
    assert result.exit_code == 1
    assert "Unknown acceleration mode" in result.output


def test_train_on_host(monkeypatch, training_folder: Path, tmp_path: Path):
    captured = _run_on_host(monkeypatch)
    output = tmp_path / "forest"

    result = runner.invoke(
        app,
        [
            "train",
            str(training_folder),
            "2",
            *POSITIONAL,
            str(output),
            "--mode",
            "cpu",
            "--no-cielab",
            "--num-threads",
            "2",
            "--ignore-color",
            "0,0,0",
            "--device-id",
            "0",
            "--device-id",
            "1",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Trained 2 trees" in result.output
    assert (output / "tree0.json").exists()
    assert (output / "tree1.json").exists()
    params = captured["params"]
    assert list(params.device_ids) == [0, 1]
    assert list(params.ignore_colors) == ["0,0,0"]
    assert params.use_cielab is False
    assert params.profile is False


def test_yaml_config_supplies_positionals(monkeypatch, training_folder: Path, tmp_path: Path):
    captured = _run_on_host(monkeypatch)
    config_file = tmp_path / "forest.yaml"
    OmegaConf.save(OmegaConf.create({**BASE_PARAMS, "folder_training": str(training_folder), "trees": 1}), config_file)

    result = runner.invoke(app, ["train", "--config", str(config_file), "--max-images", "2", "--profile"])

    assert result.exit_code == 0, result.output
    params = captured["params"]
    assert params.trees == 1
    assert params.max_images == 2
    assert params.profile is True
    assert params.mode == "cpu"


def test_infeasible_budget_reports_error(monkeypatch, training_folder: Path):
    _run_on_host(monkeypatch, free=100_000)
    result = runner.invoke(app, ["train", str(training_folder), "1", *POSITIONAL, "--mode", "cpu"])
    assert result.exit_code == 1
    assert "memory headroom on device too low" in result.output


def test_tracking_options_are_forwarded(monkeypatch, training_folder: Path):
    captured = {}

    def fake_run_training(params, **kwargs):
        captured.update(kwargs)
        raise train_cli.ImforestError("stop here")

    monkeypatch.setattr(train_cli, "run_training", fake_run_training)
    result = runner.invoke(
        app,
        [
            "train",
            str(training_folder),
            "1",
            *POSITIONAL,
            "--tracking-uri",
            "file:///tmp/mlruns",
            "--experiment-name",
            "forests",
        ],
    )

    assert result.exit_code == 1
    assert captured == {"tracking_uri": "file:///tmp/mlruns", "experiment_name": "forests"}


def test_unreadable_image_reports_error(monkeypatch, training_folder: Path):
    _run_on_host(monkeypatch)
    (training_folder / "frame99.npz").write_bytes(b"not an archive")
    result = runner.invoke(app, ["train", str(training_folder), "1", *POSITIONAL, "--mode", "cpu"])
    assert result.exit_code == 1
    assert "not a readable image archive" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
