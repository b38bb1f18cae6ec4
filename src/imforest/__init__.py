"""
Image Random Forest Training
============================

This package trains ensembles of random decision trees on labeled RGB-D
images. Before any tree is grown it budgets device memory: how many images
can stay resident in the device image cache and how many samples a single
feature-evaluation batch may hold.

.. module:: imforest

"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
