"""Device descriptors and free-memory queries.

The budget is governed by the worst-case device: :func:`min_free_memory`
reduces a list of :class:`Device` snapshots to the smallest free-memory
reading. Queries go through ``torch.cuda.mem_get_info``; CPU-only runs on a
machine without CUDA fall back to the host's available memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import psutil
import torch

from imforest.config import AccelerationMode
from imforest.errors import DeviceError
from imforest.utils import format_bytes_mb

logger = logging.getLogger(__name__)

HOST_DEVICE_ID = -1
DEFAULT_DEVICE_IDS = (0,)

MemoryQuery = Callable[[int], int]


@dataclass(frozen=True)
class Device:
    """Free memory of one device at query time."""

    device_id: int
    free_memory: int

    @property
    def is_host(self) -> bool:
        return self.device_id == HOST_DEVICE_ID


def query_free_memory(device_id: int) -> int:
    """Return free memory in bytes on CUDA device ``device_id``.

    Raises
    ------
    DeviceError
        If CUDA is unavailable or the device does not exist.
    """
    if not torch.cuda.is_available():
        raise DeviceError("CUDA is not available; use --mode cpu to train without a GPU")
    n_devices = torch.cuda.device_count()
    if not 0 <= device_id < n_devices:
        raise DeviceError(f"GPU device {device_id} not found ({n_devices} available)")
    free, _total = torch.cuda.mem_get_info(device_id)
    return int(free)


def query_host_memory() -> int:
    return int(psutil.virtual_memory().available)


def query_devices(device_ids: Sequence[int], query: MemoryQuery = query_free_memory) -> list[Device]:
    """Query every device in order."""
    devices = []
    for device_id in device_ids:
        device = Device(device_id=device_id, free_memory=int(query(device_id)))
        logger.info("device %d: %s free", device.device_id, format_bytes_mb(device.free_memory))
        devices.append(device)
    return devices


def min_free_memory(devices: Sequence[Device]) -> int:
    """Smallest free-memory reading across ``devices``."""
    if not devices:
        raise ValueError("at least one device is required")
    return min(device.free_memory for device in devices)


def resolve_devices(
    device_ids: Sequence[int],
    mode: AccelerationMode,
    query: MemoryQuery = query_free_memory,
) -> list[Device]:
    """Query the devices a run will use.

    CPU mode on a machine without CUDA budgets against host memory instead.
    GPU and compare modes always query the CUDA devices.
    """
    if mode is AccelerationMode.CPU and query is query_free_memory and not torch.cuda.is_available():
        host = Device(device_id=HOST_DEVICE_ID, free_memory=query_host_memory())
        logger.info(
            "CUDA not available; budgeting against host memory (%s free)",
            format_bytes_mb(host.free_memory),
        )
        return [host]
    return query_devices(device_ids, query)


__all__ = [
    "Device",
    "HOST_DEVICE_ID",
    "DEFAULT_DEVICE_IDS",
    "query_free_memory",
    "query_host_memory",
    "query_devices",
    "min_free_memory",
    "resolve_devices",
]
