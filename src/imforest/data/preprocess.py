"""Image preprocessing applied while loading.

Contents
--------
* :func:`rgb_to_cielab` – Convert sRGB colors to CIELab (D65 white point).
* :func:`fill_depth` – Fill missing depth values along image rows.
"""

from __future__ import annotations

import numpy as np

# sRGB (linear) -> XYZ, D65
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ]
)
_D65_WHITE = np.array([0.95047, 1.0, 1.08883])
_EPSILON = 216.0 / 24389.0
_KAPPA = 24389.0 / 27.0


def rgb_to_cielab(color: np.ndarray) -> np.ndarray:
    """Convert ``(H, W, 3)`` sRGB values in ``[0, 255]`` to CIELab.

    Returns float32 ``L`` in ``[0, 100]`` and ``a``/``b`` roughly in
    ``[-128, 127]``.
    """
    rgb = np.clip(color.astype(np.float64) / 255.0, 0.0, 1.0)
    linear = np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)
    xyz = linear @ _RGB_TO_XYZ.T / _D65_WHITE
    f = np.where(xyz > _EPSILON, np.cbrt(xyz), (_KAPPA * xyz + 16.0) / 116.0)
    lab = np.empty_like(f)
    lab[..., 0] = 116.0 * f[..., 1] - 16.0
    lab[..., 1] = 500.0 * (f[..., 0] - f[..., 1])
    lab[..., 2] = 200.0 * (f[..., 1] - f[..., 2])
    return lab.astype(np.float32)


def fill_depth(depth: np.ndarray) -> np.ndarray:
    """Replace missing depth values with the nearest valid value in the same row.

    A value is missing when it is not finite or ``<= 0``. The nearest valid
    value to the left wins; pixels without one take the nearest valid value
    to the right. Rows without any valid value are left unchanged.
    """
    depth = np.asarray(depth, dtype=np.float32)
    height, width = depth.shape
    valid = np.isfinite(depth) & (depth > 0)
    rows = np.arange(height)[:, None]
    columns = np.arange(width)

    left = np.where(valid, columns, 0)
    np.maximum.accumulate(left, axis=1, out=left)
    filled = depth[rows, left]

    flipped_valid = valid[:, ::-1]
    right = np.where(flipped_valid, columns, 0)
    np.maximum.accumulate(right, axis=1, out=right)
    from_right = depth[:, ::-1][rows, right][:, ::-1]

    no_left = ~np.logical_or.accumulate(valid, axis=1)
    filled = np.where(no_left, from_right, filled)
    keep = valid | ~valid.any(axis=1, keepdims=True)
    return np.where(keep, depth, filled).astype(np.float32)


__all__ = ["rgb_to_cielab", "fill_depth"]
