"""End-to-end training run.

Steps, in order:

1. Validate the hyperparameters (:class:`~imforest.config.ConfigurationBuilder`).
   Nothing touches a device or the file system before this succeeds.
2. Query free memory on the selected devices (device 0 when none is given).
3. Load the training images.
4. Compute the resource budget for the worst-case device.
5. Build the frozen training configuration and train the forest.
6. Export the trees when an output folder is configured.
7. Optionally log the run to MLflow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from omegaconf import DictConfig, OmegaConf

from imforest import __version__
from imforest.budget import compute_resource_budget
from imforest.config import ConfigurationBuilder, TrainingConfiguration, TrainingParams
from imforest.data.image import ImageDataset
from imforest.data.load import load_images
from imforest.device import DEFAULT_DEVICE_IDS, MemoryQuery, min_free_memory, query_free_memory, resolve_devices
from imforest.export import export_ensemble
from imforest.model.ensemble import RandomForestEnsemble, train_ensemble
from imforest.model.feature_usage import count_features
from imforest.tracking import log_training_run, set_mlflow_tracking
from imforest.utils import Timer

logger = logging.getLogger(__name__)

ImageLoader = Callable[..., ImageDataset]


@dataclass
class TrainingResult:
    """Outcome of :func:`run_training`."""

    ensemble: RandomForestEnsemble
    configuration: TrainingConfiguration
    feature_usage: dict[str, int]
    duration_seconds: float
    exported: list[Path] = field(default_factory=list)


def _with_default_devices(builder: ConfigurationBuilder) -> ConfigurationBuilder:
    if builder.params.device_ids:
        return builder
    logger.info("No device ids given; using device %s", list(DEFAULT_DEVICE_IDS))
    values = OmegaConf.to_container(builder.params, resolve=True)
    values["device_ids"] = list(DEFAULT_DEVICE_IDS)
    return ConfigurationBuilder(values)


def _log_failed_run(
    params: DictConfig, seconds: float, tracking_uri: Optional[str], experiment_name: Optional[str]
) -> None:
    try:
        set_mlflow_tracking(tracking_uri, experiment_name)
        log_training_run(OmegaConf.to_container(params, resolve=True), {}, seconds, "FAILED")
    except Exception:
        logger.exception("Could not log the failed run to MLflow")


def run_training(
    params: Union[DictConfig, TrainingParams, Mapping[str, Any]],
    *,
    device_query: MemoryQuery = query_free_memory,
    loader: ImageLoader = load_images,
    tracking_uri: Optional[str] = None,
    experiment_name: Optional[str] = None,
) -> TrainingResult:
    """Validate, budget, train and export.

    Parameters
    ----------
    params : DictConfig, TrainingParams or mapping
        Hyperparameters, usually from :func:`~imforest.config.load_training_params`.
    device_query : callable, optional
        Free-memory query per device id; replaced in tests.
    loader : callable, optional
        Image loader called as ``loader(folder, use_cielab=..., use_depth_filling=...)``.
    tracking_uri, experiment_name : str, optional
        Enable MLflow logging when either is given.

    Raises
    ------
    ConfigurationError
        If a hyperparameter is missing or invalid.
    InfeasibleResourceBudgetError
        If training cannot fit the device memory.
    EmptyDatasetError
        If the training folder yields no images.
    """
    logger.info("imforest %s", __version__)
    builder = _with_default_devices(ConfigurationBuilder(params))
    p = builder.params
    tracking = bool(tracking_uri or experiment_name)
    timer = Timer()

    try:
        devices = resolve_devices(list(p.device_ids), builder.acceleration_mode, device_query)
        min_free = min_free_memory(devices)

        images = loader(p.folder_training, use_cielab=p.use_cielab, use_depth_filling=p.use_depth_filling)
        budget = compute_resource_budget(
            min_free,
            p.image_cache_size_mb,
            len(images),
            images.image_size_in_memory,
            p.feature_count,
            p.num_thresholds,
        )

        configuration = builder.build(budget)
        ensemble = train_ensemble(
            images,
            builder.trees,
            configuration,
            parallel=p.train_trees_in_parallel,
            profile=p.profile,
        )
        feature_usage = count_features(ensemble)
        exported = export_ensemble(ensemble, configuration, p.output_folder, p.folder_training, verbose=p.verbose_tree)
        timer.stop()
    except Exception:
        if tracking:
            timer.stop()
            _log_failed_run(p, timer.seconds, tracking_uri, experiment_name)
        raise

    if tracking:
        set_mlflow_tracking(tracking_uri, experiment_name)
        log_training_run(configuration.to_dict(), feature_usage, timer.seconds, "FINISHED")

    return TrainingResult(
        ensemble=ensemble,
        configuration=configuration,
        feature_usage=feature_usage,
        duration_seconds=timer.seconds,
        exported=exported,
    )


__all__ = ["TrainingResult", "run_training"]
