"""
Data Subpackage
===============

Labeled RGB-D images, preprocessing, and folder loading.

.. module:: imforest.data

"""

from .image import ImageDataset, LabeledImage, color_keys
from .load import load_image, load_images
from .preprocess import fill_depth, rgb_to_cielab

__all__ = [
    # image
    "LabeledImage",
    "ImageDataset",
    "color_keys",
    # load
    "load_image",
    "load_images",
    # preprocess
    "rgb_to_cielab",
    "fill_depth",
]
