# src/orimap/raster/resources.py

"""
This module inspects the system hardware before a run.

It checks two key aspects before processing:
- How many tiles can be processed in parallel (Worker Count)
- Whether the in-flight tiles fit into RAM (Memory Estimation)
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import psutil

from orimap.constants import SIDE_LENGTH

log = logging.getLogger(__name__)

__all__ = [
    "MemoryEstimate",
    "determine_worker_count",
    "estimate_tile_memory"
]

DEFAULT_SAFETY_FACTOR = 3.0
MIN_FREE_GB = 0.5

# x, y, z, intensity (float64), return number, classification (uint8)
_BYTES_PER_POINT = 4 * 8 + 2
# DEM, DRM, DIM, slope plus scratch copies (float64)
_GRIDS_PER_TILE = 8

@dataclass(frozen=True)
class MemoryEstimate:
    """
    Estimation of memory requirements and safety for processing tiles in parallel.

    Args:
        total_required_bytes: Total bytes required by all workers (with overhead)
        available_system_bytes: Currently available system memory in bytes
        is_safe: Boolean indicating if the run is considered safe
        reason: Explanation for the safety assessment (e.g. "Req: 1.20GB, Avail: 8.00GB")
    """
    total_required_bytes: int
    available_system_bytes: int
    is_safe: bool
    reason: str

def determine_worker_count(requested: Optional[int] = None) -> int:
    """
    Number of tile workers to run.

    Args:
        requested: Explicit worker count. None uses the hardware parallelism.

    Returns:
        int: Worker count, at least 1.
    """
    if requested is not None:
        if requested < 1:
            raise ValueError(f"Worker count must be at least 1, got {requested}")
        return requested

    count = psutil.cpu_count(logical=True) or os.cpu_count() or 1
    return max(1, count)

def estimate_tile_memory(
    points_per_tile: int,
    workers: int = 1,
    safety_factor: float = DEFAULT_SAFETY_FACTOR,
    min_free_gb: float = MIN_FREE_GB
) -> MemoryEstimate:
    """
    Checks whether `workers` tiles of `points_per_tile` points fit in RAM at once.

    Args:
        points_per_tile: Expected number of points in one tile (with overlap).
        workers: Number of tiles processed concurrently.
        safety_factor: Multiplier to account for overhead (default 3.0)
        min_free_gb: Minimum free GB to leave available (default 0.5)

    Returns:
        MemoryEstimate: Contains total required bytes, available bytes, safety boolean, and reason.
    """
    raw_bytes = points_per_tile * _BYTES_PER_POINT + _GRIDS_PER_TILE * SIDE_LENGTH * SIDE_LENGTH * 8
    total_required = int(raw_bytes * safety_factor) * max(1, workers)

    mem = psutil.virtual_memory()
    min_free_bytes = int(min_free_gb * (1024**3))
    is_safe = (total_required + min_free_bytes) <= mem.available

    reason = f"Req: {total_required/1e9:.2f}GB, Avail: {mem.available/1e9:.2f}GB"
    if not is_safe:
        log.warning(f"Tile workers may exhaust system memory. {reason}")

    return MemoryEstimate(total_required, mem.available, is_safe, reason)
