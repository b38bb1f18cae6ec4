"""Tests for hyperparameter loading, validation and the frozen configuration."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

import pytest
from omegaconf import OmegaConf
from omegaconf.errors import ReadonlyConfigError

from imforest.budget import ResourceBudget
from imforest.config import (
    AccelerationMode,
    ConfigurationBuilder,
    load_training_params,
    parse_acceleration_mode,
    parse_ignored_color,
)
from imforest.errors import ConfigurationError, UnknownAccelerationModeError

from factories import BASE_PARAMS, make_configuration


@pytest.mark.parametrize(
    "label, expected",
    [("gpu", AccelerationMode.GPU), ("cpu", AccelerationMode.CPU), ("compare", AccelerationMode.COMPARE)],
)
def test_parse_acceleration_mode(label, expected):
    assert parse_acceleration_mode(label) is expected


@pytest.mark.parametrize("label", ["GPU", "Cpu", "fast", ""])
def test_unknown_acceleration_mode(label):
    with pytest.raises(UnknownAccelerationModeError) as excinfo:
        parse_acceleration_mode(label)
    assert isinstance(excinfo.value, ConfigurationError)
    assert excinfo.value.field == "mode"


def test_builder_rejects_unknown_mode():
    with pytest.raises(ConfigurationError, match="Unknown acceleration mode"):
        ConfigurationBuilder({**BASE_PARAMS, "mode": "tpu"})


def test_configuration_reflects_params():
    budget = ResourceBudget(image_cache_count=7, max_samples_per_batch=4096)
    params = {**BASE_PARAMS, "device_ids": [0, 1], "ignore_colors": ["0,0,0"], "max_images": 3}
    configuration = ConfigurationBuilder(params).build(budget)

    for name in (
        "samples_per_image",
        "feature_count",
        "min_sample_count",
        "max_depth",
        "box_radius",
        "region_size",
        "num_thresholds",
        "num_threads",
        "max_images",
        "use_cielab",
    ):
        assert getattr(configuration, name) == params[name]
    assert configuration.acceleration_mode is AccelerationMode.CPU
    assert configuration.device_ids == (0, 1)
    assert configuration.ignored_colors == ("0,0,0",)
    assert configuration.ignored_color_values == ((0, 0, 0),)
    assert configuration.image_cache_size == 7
    assert configuration.max_samples_per_batch == 4096
    assert configuration.random_seed == 4711


def test_configuration_is_frozen(configuration):
    with pytest.raises(dataclasses.FrozenInstanceError):
        configuration.max_depth = 3  # type: ignore[misc]


def test_builder_params_are_read_only():
    builder = ConfigurationBuilder(BASE_PARAMS)
    with pytest.raises(ReadonlyConfigError):
        builder.params.trees = 5


def test_each_build_returns_new_configuration():
    builder = ConfigurationBuilder(BASE_PARAMS)
    a = builder.build(ResourceBudget(1, 1000))
    b = builder.build(ResourceBudget(2, 2000))
    assert a is not b
    assert a.image_cache_size == 1
    assert b.image_cache_size == 2
    assert builder.trees == BASE_PARAMS["trees"]


def test_missing_required_field_is_named():
    params = {k: v for k, v in BASE_PARAMS.items() if k != "feature_count"}
    with pytest.raises(ConfigurationError) as excinfo:
        ConfigurationBuilder(params)
    assert excinfo.value.field == "feature_count"


@pytest.mark.parametrize(
    "field, value",
    [
        ("trees", 0),
        ("samples_per_image", 0),
        ("feature_count", -1),
        ("min_sample_count", 0),
        ("max_depth", 0),
        ("max_depth", 65),
        ("box_radius", 0),
        ("region_size", 0),
        ("num_thresholds", 0),
        ("num_threads", -1),
        ("max_images", -1),
        ("image_cache_size_mb", -1),
        ("device_ids", [0, -1]),
        ("subsampling_type", "random"),
        ("ignore_colors", ["256,0,0"]),
        ("ignore_colors", ["red"]),
        ("folder_training", ""),
    ],
)
def test_out_of_domain_values_rejected(field, value):
    with pytest.raises(ConfigurationError) as excinfo:
        ConfigurationBuilder({**BASE_PARAMS, field: value})
    assert excinfo.value.field == field


def test_max_depth_upper_bound_accepted():
    assert make_configuration(max_depth=64).max_depth == 64


def test_parse_ignored_color():
    assert parse_ignored_color(" 10, 20 ,30") == (10, 20, 30)


def test_worker_count_defaults_to_cpu_count():
    assert make_configuration(num_threads=0).worker_count == (os.cpu_count() or 1)
    assert make_configuration(num_threads=3).worker_count == 3


def test_to_dict_and_str(configuration):
    data = configuration.to_dict()
    assert data["acceleration_mode"] == "cpu"
    assert data["image_cache_size"] == 2
    assert data["max_samples_per_batch"] == 64
    assert "max_samples_per_batch: 64" in str(configuration)


def test_load_training_params_merges_yaml_and_overrides(tmp_path: Path):
    config_file = tmp_path / "forest.yaml"
    OmegaConf.save(OmegaConf.create({**BASE_PARAMS, "trees": 5, "mode": "gpu"}), config_file)

    params = load_training_params(config_file, {"trees": 7, "mode": None, "max_depth": None})

    assert params.trees == 7
    assert params.mode == "gpu"
    assert params.max_depth == BASE_PARAMS["max_depth"]
    assert params.subsampling_type == "classUniform"


def test_load_training_params_defaults_only():
    params = load_training_params()
    assert OmegaConf.is_missing(params, "trees")
    assert params.random_seed == 4711
    assert params.train_trees_in_parallel is False


def test_load_training_params_type_error():
    with pytest.raises(ConfigurationError):
        load_training_params(None, {"trees": "many"})


def test_load_training_params_unreadable_file(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        load_training_params(tmp_path / "missing.yaml")
