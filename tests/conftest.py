"""
Shared pytest fixtures for imforest tests.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from factories import make_arrays, make_configuration, make_image

from imforest.config import TrainingConfiguration
from imforest.data.image import ImageDataset


@pytest.fixture
def dataset() -> ImageDataset:
    rng = np.random.default_rng(0)
    return ImageDataset([make_image(rng, name=f"frame{i}") for i in range(4)])


@pytest.fixture
def configuration() -> TrainingConfiguration:
    return make_configuration()


@pytest.fixture
def training_folder(tmp_path: Path) -> Path:
    """Folder with four ``.npz`` frames."""
    folder = tmp_path / "training"
    folder.mkdir()
    rng = np.random.default_rng(1)
    for i in range(4):
        color, depth, labels = make_arrays(rng)
        np.savez(folder / f"frame{i:02d}.npz", color=color, depth=depth, labels=labels)
    return folder
