"""Numeric types of the tree-training kernel.

Histogram counters are stored as :data:`WEIGHT_DTYPE` and feature responses
as :data:`FEATURE_RESPONSE_DTYPE`; their byte sizes drive the device memory
budget.
"""

from __future__ import annotations

import numpy as np

WEIGHT_DTYPE = np.uint32
FEATURE_RESPONSE_DTYPE = np.float32
WEIGHT_TYPE_SIZE = np.dtype(WEIGHT_DTYPE).itemsize
FEATURE_RESPONSE_TYPE_SIZE = np.dtype(FEATURE_RESPONSE_DTYPE).itemsize

__all__ = ["WEIGHT_DTYPE", "FEATURE_RESPONSE_DTYPE", "WEIGHT_TYPE_SIZE", "FEATURE_RESPONSE_TYPE_SIZE"]
