"""
Model Subpackage
================

Random decision trees over depth-normalised box features, the forest
ensemble and its training orchestrator.

.. module:: imforest.model

"""

from .dtypes import FEATURE_RESPONSE_TYPE_SIZE, WEIGHT_TYPE_SIZE
from .ensemble import RandomForestEnsemble, SharedRandomSource, train_ensemble
from .feature_usage import count_features
from .features import ImageFeature, compute_integral_images, make_evaluator
from .sampling import PixelSamples, sample_pixels
from .tree import RandomTree, TreeNode

__all__ = [
    # dtypes
    "WEIGHT_TYPE_SIZE",
    "FEATURE_RESPONSE_TYPE_SIZE",
    # ensemble
    "RandomForestEnsemble",
    "SharedRandomSource",
    "train_ensemble",
    # feature usage
    "count_features",
    # features
    "ImageFeature",
    "compute_integral_images",
    "make_evaluator",
    # sampling
    "PixelSamples",
    "sample_pixels",
    # tree
    "RandomTree",
    "TreeNode",
]
