"""Training hyperparameters and the immutable training configuration.

Hyperparameters are collected into :class:`TrainingParams`, an OmegaConf
structured config that merges defaults, an optional YAML file and command
line overrides. :class:`ConfigurationBuilder` validates them once and builds
:class:`TrainingConfiguration` values, which are frozen and shared read-only
by every tree of a training run.

Key classes:
    - TrainingParams: Every value of the command surface (required ones are MISSING)
    - AccelerationMode: Where split evaluation runs (gpu, cpu, compare)
    - TrainingConfiguration: Frozen per-run configuration including the resource budget
    - ConfigurationBuilder: Validation and construction

Example YAML::

    folder_training: data/training
    trees: 3
    samples_per_image: 500
    feature_count: 500
    min_sample_count: 10
    max_depth: 20
    box_radius: 60
    region_size: 10
    num_thresholds: 20
    mode: cpu
    ignore_colors: ["0,0,0"]
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Union

from omegaconf import MISSING, DictConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException

from imforest.errors import ConfigurationError, UnknownAccelerationModeError

if TYPE_CHECKING:
    from imforest.budget import ResourceBudget


SUBSAMPLING_TYPES = ("pixelUniform", "classUniform")
MAX_TREE_DEPTH = 64
DEFAULT_RANDOM_SEED = 4711

_COLOR_PATTERN = re.compile(r"^\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*$")


class AccelerationMode(Enum):
    """Where candidate splits are evaluated."""

    GPU = "gpu"
    CPU = "cpu"
    COMPARE = "compare"


def parse_acceleration_mode(label: str) -> AccelerationMode:
    """Map ``"gpu"``, ``"cpu"`` or ``"compare"`` (case-sensitive) to an :class:`AccelerationMode`."""
    for mode in AccelerationMode:
        if mode.value == label:
            return mode
    raise UnknownAccelerationModeError(str(label))


def parse_ignored_color(text: str) -> tuple[int, int, int]:
    """Parse an ``R,G,B`` triple with ``0 <= R,G,B <= 255``."""
    match = _COLOR_PATTERN.match(str(text))
    if match is None:
        raise ConfigurationError(f"ignore_colors: expected 'R,G,B', got {text!r}", field="ignore_colors")
    rgb = tuple(int(v) for v in match.groups())
    if any(v > 255 for v in rgb):
        raise ConfigurationError(
            f"ignore_colors: components must be within 0..255, got {text!r}", field="ignore_colors"
        )
    return rgb  # type: ignore[return-value]


@dataclass
class TrainingParams:
    """Every value accepted by the ``train`` command.

    Parameters:
        folder_training: Folder with training images.
        trees: Number of trees to train.
        samples_per_image: Pixels sampled per image.
        feature_count: Candidate features evaluated per node.
        min_sample_count: Minimum samples per child of a split.
        max_depth: Maximum tree depth.
        box_radius: Maximum feature offset in pixels at unit depth.
        region_size: Maximum feature region half extent at unit depth.
        num_thresholds: Thresholds evaluated per candidate feature.
        output_folder: Export destination; empty skips the export.
        num_threads: Worker pool size; 0 uses all cores.
        use_cielab: Convert colors to CIELab while loading.
        use_depth_filling: Fill missing depth values while loading.
        device_ids: CUDA devices; empty selects device 0.
        subsampling_type: ``pixelUniform`` or ``classUniform``.
        max_images: Images drawn per tree; 0 uses all.
        image_cache_size_mb: Device image cache in MB; 0 sizes it automatically.
        mode: Acceleration mode label.
        profile: Record per-phase timings.
        random_seed: Seed of the shared random source.
        ignore_colors: Label colors (``R,G,B``) never sampled.
        verbose_tree: Export verbose trees (profiling and node details).
        train_trees_in_parallel: Train trees concurrently (experimental).
    """

    folder_training: str = MISSING
    trees: int = MISSING
    samples_per_image: int = MISSING
    feature_count: int = MISSING
    min_sample_count: int = MISSING
    max_depth: int = MISSING
    box_radius: int = MISSING
    region_size: int = MISSING
    num_thresholds: int = MISSING
    output_folder: str = ""
    num_threads: int = 0
    use_cielab: bool = True
    use_depth_filling: bool = False
    device_ids: list[int] = field(default_factory=list)
    subsampling_type: str = "classUniform"
    max_images: int = 0
    image_cache_size_mb: int = 0
    mode: str = "gpu"
    profile: bool = False
    random_seed: int = DEFAULT_RANDOM_SEED
    ignore_colors: list[str] = field(default_factory=list)
    verbose_tree: bool = False
    train_trees_in_parallel: bool = False


REQUIRED_FIELDS = (
    "folder_training",
    "trees",
    "samples_per_image",
    "feature_count",
    "min_sample_count",
    "max_depth",
    "box_radius",
    "region_size",
    "num_thresholds",
)


def load_training_params(
    config_file: Union[str, Path, None] = None,
    overrides: Mapping[str, Any] | None = None,
) -> DictConfig:
    """Merge structured defaults, an optional YAML file and explicit overrides.

    ``None`` values in ``overrides`` are ignored so unset command line
    options do not mask values from the YAML file.

    Raises
    ------
    ConfigurationError
        If the YAML file is unreadable or a value has the wrong type.
    """
    layers: list[Any] = [OmegaConf.structured(TrainingParams)]
    try:
        if config_file is not None:
            layers.append(OmegaConf.load(config_file))
        if overrides:
            layers.append(OmegaConf.create({k: v for k, v in overrides.items() if v is not None}))
        return OmegaConf.merge(*layers)  # type: ignore[return-value]
    except OmegaConfBaseException as exc:
        key = getattr(exc, "full_key", None) or getattr(exc, "key", None)
        raise ConfigurationError(f"invalid configuration: {exc}", field=str(key) if key else None) from exc
    except OSError as exc:
        raise ConfigurationError(f"cannot read configuration file {config_file}: {exc}") from exc


def _require(condition: bool, name: str, message: str) -> None:
    if not condition:
        raise ConfigurationError(f"{name}: {message}", field=name)


def validate_training_params(params: DictConfig) -> AccelerationMode:
    """Validate ``params`` and return the parsed acceleration mode.

    Raises
    ------
    ConfigurationError
        Naming the first missing or invalid field.
    UnknownAccelerationModeError
        If ``mode`` is not one of ``gpu``, ``cpu``, ``compare``.
    """
    for name in REQUIRED_FIELDS:
        if OmegaConf.is_missing(params, name):
            raise ConfigurationError(f"{name}: required value is missing", field=name)

    _require(str(params.folder_training) != "", "folder_training", "must not be empty")
    _require(params.trees > 0, "trees", f"must be > 0, got {params.trees}")
    _require(params.samples_per_image > 0, "samples_per_image", f"must be > 0, got {params.samples_per_image}")
    _require(params.feature_count > 0, "feature_count", f"must be > 0, got {params.feature_count}")
    _require(params.min_sample_count > 0, "min_sample_count", f"must be > 0, got {params.min_sample_count}")
    _require(
        1 <= params.max_depth <= MAX_TREE_DEPTH,
        "max_depth",
        f"must be within 1..{MAX_TREE_DEPTH}, got {params.max_depth}",
    )
    _require(params.box_radius > 0, "box_radius", f"must be > 0, got {params.box_radius}")
    _require(params.region_size > 0, "region_size", f"must be > 0, got {params.region_size}")
    _require(params.num_thresholds > 0, "num_thresholds", f"must be > 0, got {params.num_thresholds}")
    _require(params.num_threads >= 0, "num_threads", f"must be >= 0, got {params.num_threads}")
    _require(params.max_images >= 0, "max_images", f"must be >= 0, got {params.max_images}")
    _require(
        params.image_cache_size_mb >= 0,
        "image_cache_size_mb",
        f"must be >= 0, got {params.image_cache_size_mb}",
    )
    _require(
        all(device_id >= 0 for device_id in params.device_ids),
        "device_ids",
        f"must be >= 0, got {list(params.device_ids)}",
    )
    _require(
        params.subsampling_type in SUBSAMPLING_TYPES,
        "subsampling_type",
        f"must be one of {SUBSAMPLING_TYPES}, got {params.subsampling_type!r}",
    )
    for color in params.ignore_colors:
        parse_ignored_color(color)
    return parse_acceleration_mode(params.mode)


@dataclass(frozen=True)
class TrainingConfiguration:
    """Frozen configuration shared read-only by every tree of a run.

    The tree count is not part of the configuration; it is passed to the
    orchestrator separately.
    """

    random_seed: int
    samples_per_image: int
    feature_count: int
    min_sample_count: int
    max_depth: int
    box_radius: int
    region_size: int
    num_thresholds: int
    num_threads: int
    max_images: int
    acceleration_mode: AccelerationMode
    use_cielab: bool
    use_depth_filling: bool
    device_ids: tuple[int, ...]
    subsampling_type: str
    ignored_colors: tuple[str, ...]
    budget: ResourceBudget

    @property
    def image_cache_size(self) -> int:
        """Number of images resident in the device image cache."""
        return self.budget.image_cache_count

    @property
    def max_samples_per_batch(self) -> int:
        return self.budget.max_samples_per_batch

    @property
    def ignored_color_values(self) -> tuple[tuple[int, int, int], ...]:
        return tuple(parse_ignored_color(color) for color in self.ignored_colors)

    @property
    def worker_count(self) -> int:
        """Worker pool size (``num_threads``, or the core count when 0)."""
        return self.num_threads or os.cpu_count() or 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "random_seed": self.random_seed,
            "samples_per_image": self.samples_per_image,
            "feature_count": self.feature_count,
            "min_sample_count": self.min_sample_count,
            "max_depth": self.max_depth,
            "box_radius": self.box_radius,
            "region_size": self.region_size,
            "num_thresholds": self.num_thresholds,
            "num_threads": self.num_threads,
            "max_images": self.max_images,
            "image_cache_size": self.image_cache_size,
            "max_samples_per_batch": self.max_samples_per_batch,
            "acceleration_mode": self.acceleration_mode.value,
            "use_cielab": self.use_cielab,
            "use_depth_filling": self.use_depth_filling,
            "device_ids": list(self.device_ids),
            "subsampling_type": self.subsampling_type,
            "ignored_colors": list(self.ignored_colors),
        }

    def __str__(self) -> str:
        lines = ["TrainingConfiguration:"]
        lines.extend(f"  {key}: {value}" for key, value in self.to_dict().items())
        return "\n".join(lines)


class ConfigurationBuilder:
    """Validate hyperparameters once and build :class:`TrainingConfiguration` values.

    Parameters
    ----------
    params : DictConfig, TrainingParams or mapping
        Hyperparameters. They are merged onto :class:`TrainingParams`,
        validated and frozen.

    Raises
    ------
    ConfigurationError
        If a value is missing or invalid.

    Examples
    --------
    >>> builder = ConfigurationBuilder(params)        # doctest: +SKIP
    >>> configuration = builder.build(budget)         # doctest: +SKIP
    """

    def __init__(self, params: DictConfig | TrainingParams | Mapping[str, Any]) -> None:
        try:
            merged = OmegaConf.merge(OmegaConf.structured(TrainingParams), params)
        except OmegaConfBaseException as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc
        self.acceleration_mode = validate_training_params(merged)
        OmegaConf.set_readonly(merged, True)
        self.params: DictConfig = merged  # type: ignore[assignment]

    @property
    def trees(self) -> int:
        return int(self.params.trees)

    def build(self, budget: ResourceBudget) -> TrainingConfiguration:
        """Return a new configuration bound to ``budget``."""
        p = self.params
        return TrainingConfiguration(
            random_seed=p.random_seed,
            samples_per_image=p.samples_per_image,
            feature_count=p.feature_count,
            min_sample_count=p.min_sample_count,
            max_depth=p.max_depth,
            box_radius=p.box_radius,
            region_size=p.region_size,
            num_thresholds=p.num_thresholds,
            num_threads=p.num_threads,
            max_images=p.max_images,
            acceleration_mode=self.acceleration_mode,
            use_cielab=p.use_cielab,
            use_depth_filling=p.use_depth_filling,
            device_ids=tuple(p.device_ids),
            subsampling_type=p.subsampling_type,
            ignored_colors=tuple(p.ignore_colors),
            budget=budget,
        )


__all__ = [
    "AccelerationMode",
    "parse_acceleration_mode",
    "parse_ignored_color",
    "TrainingParams",
    "load_training_params",
    "validate_training_params",
    "TrainingConfiguration",
    "ConfigurationBuilder",
    "SUBSAMPLING_TYPES",
    "MAX_TREE_DEPTH",
]
