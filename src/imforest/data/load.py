"""imforest.data.load
=====================

Load labeled RGB-D training images from a folder.

File Format
-----------
Every ``*.npz`` file in the folder (sorted by name, non-recursive) holds one
image with three arrays:

``color``
    ``(H, W, 3)`` sRGB values in ``[0, 255]``.
``depth``
    ``(H, W)`` depth in meters; ``0`` or ``NaN`` marks missing values.
``labels``
    ``(H, W, 3)`` uint8 ground-truth label colors.

Preprocessing
-------------
Colors are converted to CIELab when ``use_cielab`` is set and missing depth
values are filled row-wise when ``use_depth_filling`` is set (see
:mod:`imforest.data.preprocess`).

Examples
--------
Load a folder and inspect the per-image footprint::

    from pathlib import Path
    from imforest.data.load import load_images

    images = load_images(Path("training"), use_cielab=True, use_depth_filling=False)
    print(len(images), images.image_size_in_memory)
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Union

import numpy as np
from tqdm.auto import tqdm

from imforest.data.image import ImageDataset, LabeledImage
from imforest.data.preprocess import fill_depth, rgb_to_cielab
from imforest.errors import EmptyDatasetError, InvalidImageError

logger = logging.getLogger(__name__)

REQUIRED_ARRAYS = ("color", "depth", "labels")


def load_image(path: Path, *, use_cielab: bool = True, use_depth_filling: bool = False) -> LabeledImage:
    """Load and preprocess a single ``.npz`` image.

    Raises
    ------
    InvalidImageError
        If the file is not a readable archive, misses one of the required
        arrays or holds arrays of inconsistent shapes.
    """
    try:
        with np.load(path) as archive:
            missing = [key for key in REQUIRED_ARRAYS if key not in archive.files]
            if missing:
                raise InvalidImageError(f"{path} is missing arrays: {missing}")
            color = archive["color"]
            depth = archive["depth"].astype(np.float32)
            labels = archive["labels"].astype(np.uint8)
    except InvalidImageError:
        raise
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise InvalidImageError(f"{path} is not a readable image archive: {exc}") from exc

    color = rgb_to_cielab(color) if use_cielab else color.astype(np.float32)
    if use_depth_filling:
        depth = fill_depth(depth)
    try:
        return LabeledImage(color=color, depth=depth, labels=labels, name=path.stem)
    except ValueError as exc:
        raise InvalidImageError(f"{path}: {exc}") from exc


def load_images(
    folder: Union[str, Path],
    use_cielab: bool = True,
    use_depth_filling: bool = False,
) -> ImageDataset:
    """Load every image in ``folder``.

    Parameters
    ----------
    folder : str or pathlib.Path
        Directory holding ``*.npz`` images.
    use_cielab : bool, default=True
        Convert colors to CIELab.
    use_depth_filling : bool, default=False
        Fill missing depth values.

    Returns
    -------
    ImageDataset
        Images in file-name order.

    Raises
    ------
    EmptyDatasetError
        If the folder does not exist or contains no images.
    InvalidImageError
        If an image cannot be read or the images differ in size.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise EmptyDatasetError(f"found no files in {folder}: not a directory")
    paths = sorted(folder.glob("*.npz"))
    if not paths:
        raise EmptyDatasetError(f"found no files in {folder}")

    logger.info(
        "Loading %d images from %s (CIELab=%s, depth filling=%s)",
        len(paths),
        folder,
        use_cielab,
        use_depth_filling,
    )
    images = [
        load_image(path, use_cielab=use_cielab, use_depth_filling=use_depth_filling)
        for path in tqdm(paths, desc="Loading images")
    ]
    shapes = {(image.height, image.width) for image in images}
    if len(shapes) > 1:
        raise InvalidImageError(f"images in {folder} have different sizes: {sorted(shapes)}")
    dataset = ImageDataset(images)
    logger.info("Loaded %d images, %d bytes per image", len(dataset), dataset.image_size_in_memory)
    return dataset


__all__ = ["load_image", "load_images"]
