# src/orimap/lidar/rasterize.py

"""
This module implements functions to rasterize lidar point clouds onto tile DFMs.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import numpy as np
import scipy.ndimage as ndimage
from numba import jit

from orimap.constants import CELL_SIZE, NODATA_VAL, SIDE_LENGTH
from orimap.raster.layer import Dfm
from orimap.raster.filters import fill_gaps

from .layer import PointCloud
from .stats import LidarStats

log = logging.getLogger(__name__)

__all__ = [
    "points_to_grid",
    "TileRasters",
    "compute_dfms"
]

_METHODS = {'count': 0, 'max': 1, 'min': 2, 'mean': 3}

@jit(nopython=True, nogil=True, cache=True)
def _rasterize_chunk(
    grid: np.ndarray,
    counts: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    values: np.ndarray,
    method_flag: int
    ):
    """
    Helper function to rasterize a chunk of points into the grid using explicit loops for numba optimization.

    Args:
        grid: 2D array representing the raster grid to update.
        counts: 2D array of per-cell point counts, updated alongside the grid.
        rows: Row indices for each point.
        cols: Column indices for each point.
        values: Value carried by each point.
        method_flag: Integer flag indicating the aggregation method (0=count, 1=max, 2=min, 3=mean).

    Returns:
        None (the grid is modified in place).
    """
    for i in range(len(rows)):
        r = rows[i]
        c = cols[i]
        counts[r, c] += 1
        if method_flag == 1:  # max
            if values[i] > grid[r, c]:
                grid[r, c] = values[i]
        elif method_flag == 2:  # min
            if values[i] < grid[r, c]:
                grid[r, c] = values[i]
        elif method_flag == 3:  # mean, accumulated as a sum
            grid[r, c] += values[i]

def points_to_grid(
    pc: PointCloud,
    origin: Tuple[float, float],
    values: Optional[np.ndarray] = None,
    method: str = 'max',
    cell_size: float = CELL_SIZE,
    side: int = SIDE_LENGTH,
    nodata: float = NODATA_VAL
    ) -> Dfm:
    """
    Rasterizes a point cloud onto a square grid anchored at the north-west corner.

    Points outside the grid are ignored. Cells without points get the no-data value,
    except for 'count' where they hold zero.

    Args:
        pc (PointCloud): Points to rasterize.
        origin (Tuple[float, float]): (x, y) of the north-west grid corner.
        values (np.ndarray): Per-point value to aggregate. Defaults to elevation.
        method (str): Statistical aggregator ('count', 'max', 'min', 'mean').
        cell_size (float): Ground size of one cell.
        side (int): Number of cells per axis.
        nodata (float): Filler value.

    Returns:
        Dfm: The rasterized grid.
    """
    if method not in _METHODS:
        raise ValueError(f"Unknown rasterization method: {method}")
    method_flag = _METHODS[method]

    if values is None:
        values = pc.z
    values = np.asarray(values, dtype=np.float64)
    if len(values) != len(pc):
        raise ValueError(f"Got {len(values)} values for {len(pc)} points")

    if method == 'max':
        grid = np.full((side, side), -np.inf, dtype=np.float64)
    elif method == 'min':
        grid = np.full((side, side), np.inf, dtype=np.float64)
    else:
        grid = np.zeros((side, side), dtype=np.float64)
    counts = np.zeros((side, side), dtype=np.int64)

    origin_x, origin_y = origin
    # Convert point coordinates to grid indices, keeping only points inside the grid
    cols = np.floor((pc.x - origin_x) / cell_size).astype(np.int64)
    rows = np.floor((origin_y - pc.y) / cell_size).astype(np.int64)
    inside = (rows >= 0) & (rows < side) & (cols >= 0) & (cols < side)

    if np.any(inside):
        _rasterize_chunk(grid, counts, rows[inside], cols[inside], values[inside], method_flag)

    empty = counts == 0
    if method == 'count':
        grid = counts.astype(np.float64)
    else:
        if method == 'mean':
            np.divide(grid, counts, out=grid, where=~empty)
        grid[empty] = nodata

    return Dfm(grid, float(origin_x), float(origin_y), cell_size, nodata)

@dataclass
class TileRasters:
    """
    The three DFMs derived for one tile.

    Attributes:
        dem (Dfm): Digital elevation model (mean ground elevation).
        drm (Dfm): Return number model, normalised mean return number of all points (vegetation density).
        dim (Dfm): Intensity model, normalised mean ground intensity.
        footprint (np.ndarray): Cells covered by the tile's point data.
    """
    dem: Dfm
    drm: Dfm
    dim: Dfm
    footprint: np.ndarray

    @property
    def z_range(self) -> Tuple[float, float]:
        valid = self.dem.data[self.dem.valid_mask]
        if valid.size == 0:
            return (0.0, 0.0)
        return (float(valid.min()), float(valid.max()))

def _footprint(all_points: PointCloud, origin: Tuple[float, float], cell_size: float, side: int) -> np.ndarray:
    # Footprint of where we have data, closed and hole-filled to keep interpolation inside the coverage
    density = points_to_grid(all_points, origin, method='count', cell_size=cell_size, side=side)
    pad = 2
    # edge padding keeps the closing from eroding coverage that reaches the grid border
    padded = np.pad(density.data > 0, pad, mode='edge')
    footprint = ndimage.binary_closing(padded, structure=np.ones((2 * pad + 1, 2 * pad + 1)))
    return ndimage.binary_fill_holes(footprint[pad:-pad, pad:-pad])

def _normalized(grid: Dfm, offset: float, scale: float) -> Dfm:
    valid = grid.valid_mask
    data = grid.data.copy()
    data[valid] = np.clip((data[valid] - offset) / scale, 0.0, 1.0)
    return grid.with_data(data)

def compute_dfms(
    ground: PointCloud,
    all_points: PointCloud,
    origin: Tuple[float, float],
    stats: LidarStats,
    cell_size: float = CELL_SIZE,
    side: int = SIDE_LENGTH
    ) -> TileRasters:
    """
    Rasterizes the elevation, vegetation density and intensity models of a tile.

    Args:
        ground (PointCloud): Ground-classified points of the tile.
        all_points (PointCloud): Every point of the tile.
        origin (Tuple[float, float]): (x, y) of the north-west corner of the tile.
        stats (LidarStats): Combined statistics of the survey, fixing the normalisation.
        cell_size (float): Ground size of one cell.
        side (int): Number of cells per axis.

    Returns:
        TileRasters: DEM, DRM and DIM of the tile.
    """
    footprint = _footprint(all_points, origin, cell_size, side)
    max_search = max(15, int(35.0 / cell_size))

    dem = points_to_grid(ground, origin, method='mean', cell_size=cell_size, side=side)
    dem = fill_gaps(dem, max_search_cells=max_search, footprint=footprint)

    r_offset, r_scale = stats.return_normalization()
    drm = points_to_grid(
        all_points, origin, values=all_points.return_number, method='mean', cell_size=cell_size, side=side
    )
    drm = _normalized(fill_gaps(drm, max_search_cells=max_search, footprint=footprint), r_offset, r_scale)

    i_offset, i_scale = stats.intensity_normalization()
    dim = points_to_grid(ground, origin, values=ground.intensity, method='mean', cell_size=cell_size, side=side)
    dim = _normalized(fill_gaps(dim, max_search_cells=max_search, footprint=footprint), i_offset, i_scale)

    log.debug(f"Rasterized tile at {origin}: {int(footprint.sum())} covered cells")

    return TileRasters(dem=dem, drm=drm, dim=dim, footprint=footprint)
