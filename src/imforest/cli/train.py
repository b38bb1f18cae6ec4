"""imforest.cli.train
====================

Train a random decision forest via Typer CLI.

Hyperparameters come from three layers, later ones winning:

1. Built-in defaults (:class:`imforest.config.TrainingParams`).
2. An optional YAML file (``--config``).
3. Positional arguments and options given on the command line.

Positional arguments are therefore optional on the command line as long as
the YAML file provides them. Missing or invalid values print the usage line
and an error message and exit with status 1.

Configuration File (YAML)
-------------------------
Example::

    folder_training: data/training
    trees: 3
    samples_per_image: 500
    feature_count: 500
    min_sample_count: 10
    max_depth: 20
    box_radius: 60
    region_size: 10
    num_thresholds: 20
    device_ids: [0, 1]
    ignore_colors: ["0,0,0"]

Usage Examples
--------------
Fully on the command line::

    imforest train data/training 3 500 500 10 20 60 10 20 out/ --mode cpu

From a YAML file, overriding the number of trees::

    imforest train --config forest.yaml --mode gpu --device-id 0 --device-id 1
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from imforest.cli.common import fail, help_option
from imforest.config import load_training_params
from imforest.errors import ImforestError
from imforest.pipeline import run_training

logger = logging.getLogger(__name__)


def train(
    ctx: typer.Context,
    folder_training: Optional[str] = typer.Argument(None, help="Folder with training images (*.npz)."),
    trees: Optional[int] = typer.Argument(None, help="Number of trees to train."),
    samples_per_image: Optional[int] = typer.Argument(None, help="Pixels sampled per image."),
    feature_count: Optional[int] = typer.Argument(None, help="Candidate features evaluated per node."),
    min_sample_count: Optional[int] = typer.Argument(None, help="Minimum samples per child of a split."),
    max_depth: Optional[int] = typer.Argument(None, help="Maximum tree depth (1..64)."),
    box_radius: Optional[int] = typer.Argument(None, help="Maximum feature offset at unit depth."),
    region_size: Optional[int] = typer.Argument(None, help="Maximum feature region extent at unit depth."),
    num_thresholds: Optional[int] = typer.Argument(None, help="Thresholds evaluated per feature."),
    output_folder: Optional[str] = typer.Argument(None, help="Export destination for the trained trees."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML file with training parameters."),
    output_folder_opt: Optional[str] = typer.Option(
        None, "--output-folder", "-o", help="Export destination (same as the OUTPUT_FOLDER argument)."
    ),
    num_threads: Optional[int] = typer.Option(None, "--num-threads", "-j", help="Worker threads; 0 uses all cores."),
    use_cielab: Optional[bool] = typer.Option(None, "--use-cielab/--no-cielab", help="Convert colors to CIELab."),
    use_depth_filling: Optional[bool] = typer.Option(
        None, "--use-depth-filling/--no-depth-filling", help="Fill missing depth values."
    ),
    device_id: Optional[List[int]] = typer.Option(
        None, "--device-id", "-d", help="CUDA device to train on (repeatable; default 0)."
    ),
    subsampling_type: Optional[str] = typer.Option(
        None, "--subsampling-type", help="Pixel subsampling: pixelUniform or classUniform."
    ),
    max_images: Optional[int] = typer.Option(None, "--max-images", help="Images drawn per tree; 0 uses all."),
    image_cache_size: Optional[int] = typer.Option(
        None, "--image-cache-size", help="Device image cache in MB; 0 sizes it automatically."
    ),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Acceleration mode: gpu, cpu or compare."),
    profile: bool = typer.Option(False, "--profile", help="Record per-phase timings."),
    random_seed: Optional[int] = typer.Option(None, "--random-seed", help="Seed of the shared random source."),
    ignore_color: Optional[List[str]] = typer.Option(
        None, "--ignore-color", help="Label color 'R,G,B' never sampled (repeatable)."
    ),
    verbose_tree: bool = typer.Option(False, "--verbose-tree", help="Export node details and timings."),
    train_trees_in_parallel: bool = typer.Option(
        False, "--train-trees-in-parallel", help="Train trees concurrently (experimental)."
    ),
    tracking_uri: Optional[str] = typer.Option(None, "--tracking-uri", help="MLflow tracking URI."),
    experiment_name: Optional[str] = typer.Option(None, "--experiment-name", help="MLflow experiment name."),
    _help: bool = help_option(),
) -> None:
    """Train a random decision forest and export its trees.

    Parameters
    ----------
    folder_training : str, optional
        Folder with ``*.npz`` training images.
    trees, samples_per_image, feature_count, min_sample_count : int, optional
        Forest size and sampling parameters.
    max_depth, box_radius, region_size, num_thresholds : int, optional
        Tree growth and feature parameters.
    output_folder : str, optional
        Export destination; nothing is exported when omitted.
    config : pathlib.Path, optional
        YAML file providing any of the above and the remaining options.
    """
    overrides = {
        "folder_training": folder_training,
        "trees": trees,
        "samples_per_image": samples_per_image,
        "feature_count": feature_count,
        "min_sample_count": min_sample_count,
        "max_depth": max_depth,
        "box_radius": box_radius,
        "region_size": region_size,
        "num_thresholds": num_thresholds,
        "output_folder": output_folder_opt or output_folder,
        "num_threads": num_threads,
        "use_cielab": use_cielab,
        "use_depth_filling": use_depth_filling,
        "device_ids": list(device_id) if device_id else None,
        "subsampling_type": subsampling_type,
        "max_images": max_images,
        "image_cache_size_mb": image_cache_size,
        "mode": mode,
        "profile": True if profile else None,
        "random_seed": random_seed,
        "ignore_colors": list(ignore_color) if ignore_color else None,
        "verbose_tree": True if verbose_tree else None,
        "train_trees_in_parallel": True if train_trees_in_parallel else None,
    }

    try:
        params = load_training_params(config, overrides)
        result = run_training(params, tracking_uri=tracking_uri, experiment_name=experiment_name)
    except ImforestError as exc:
        logger.error("Training failed: %s", exc)
        fail(ctx, str(exc))

    typer.echo(
        typer.style(
            f"Trained {len(result.ensemble)} trees in {result.duration_seconds:.2f} s",
            fg=typer.colors.GREEN,
            bold=True,
        )
    )
    for path in result.exported:
        typer.echo(f"  {path}")


__all__ = ["train"]
