# src/orimap/raster/filters.py

"""
This module implements the neighbourhood filters applied to DFMs: slope derivation,
smoothing and gap filling.
"""

import logging

import numpy as np
import scipy.ndimage as ndimage
from numba import jit
from rasterio.fill import fillnodata

from .layer import Dfm

log = logging.getLogger(__name__)

__all__ = [
    "slope",
    "smoothen",
    "smoothen_normals",
    "fill_gaps"
]

@jit(nopython=True, nogil=True, cache=True)
def _plane_fit_slope(
    data: np.ndarray,
    valid: np.ndarray,
    radius: int,
    cell_size: float,
    nodata: float
    ) -> np.ndarray:
    """
    Least-squares plane fit over the (2r+1)² window of each valid cell.

    Args:
        data: 2D array of values.
        valid: Boolean mask of usable cells.
        radius: Half size of the window in cells.
        cell_size: Ground size of one cell.
        nodata: Value written where no plane can be fitted.

    Returns:
        2D array holding the gradient magnitude sqrt(a² + b²) of z = a·x + b·y + c.
    """
    rows, cols = data.shape
    out = np.full((rows, cols), nodata, dtype=np.float64)

    for i in range(rows):
        for j in range(cols):
            if not valid[i, j]:
                continue

            # First pass: window centroid
            n = 0
            sx = 0.0
            sy = 0.0
            sz = 0.0
            for di in range(-radius, radius + 1):
                ii = i + di
                if ii < 0 or ii >= rows:
                    continue
                for dj in range(-radius, radius + 1):
                    jj = j + dj
                    if jj < 0 or jj >= cols or not valid[ii, jj]:
                        continue
                    n += 1
                    sx += dj * cell_size
                    sy += -di * cell_size
                    sz += data[ii, jj]

            if n < 3:
                continue

            mx = sx / n
            my = sy / n
            mz = sz / n

            # Second pass: centred second moments
            sxx = 0.0
            syy = 0.0
            sxy = 0.0
            sxz = 0.0
            syz = 0.0
            for di in range(-radius, radius + 1):
                ii = i + di
                if ii < 0 or ii >= rows:
                    continue
                for dj in range(-radius, radius + 1):
                    jj = j + dj
                    if jj < 0 or jj >= cols or not valid[ii, jj]:
                        continue
                    dx = dj * cell_size - mx
                    dy = -di * cell_size - my
                    dz = data[ii, jj] - mz
                    sxx += dx * dx
                    syy += dy * dy
                    sxy += dx * dy
                    sxz += dx * dz
                    syz += dy * dz

            det = sxx * syy - sxy * sxy
            if abs(det) < 1e-12:
                continue

            a = (sxz * syy - syz * sxy) / det
            b = (syz * sxx - sxz * sxy) / det
            out[i, j] = np.sqrt(a * a + b * b)

    return out

def slope(grid: Dfm, kernel_radius: int = 3) -> Dfm:
    """
    Derives the terrain slope (rise over run) of a DFM.

    Each cell is assigned the gradient magnitude of the least-squares plane through
    the valid cells of its (2r+1)² neighbourhood. The result does not depend on the
    order cells are visited in. Cells with fewer than 3 valid neighbours, or whose
    neighbours are collinear, become no-data.

    Args:
        grid (Dfm): Elevation model.
        kernel_radius (int): Half size of the window in cells (>= 1).

    Returns:
        Dfm: Slope grid with the same placement as the input.
    """
    if kernel_radius < 1:
        raise ValueError(f"Slope kernel radius must be at least 1, got {kernel_radius}")

    out = _plane_fit_slope(grid.data, grid.valid_mask, kernel_radius, grid.cell_size, grid.nodata)
    return grid.with_data(out)

def smoothen(grid: Dfm, radius: int = 1, iterations: int = 1) -> Dfm:
    """
    Repeated box mean that ignores no-data cells.

    No-data cells stay no-data; valid cells average only over valid neighbours.
    """
    if radius < 1 or iterations < 1:
        raise ValueError(f"Smoothing needs radius >= 1 and iterations >= 1, got {radius}, {iterations}")

    valid = grid.valid_mask
    weights = valid.astype(np.float64)
    size = 2 * radius + 1
    data = np.where(valid, grid.data, 0.0)

    # uniform_filter of the mask is constant over iterations
    norm = ndimage.uniform_filter(weights, size=size, mode='nearest')
    for _ in range(iterations):
        summed = ndimage.uniform_filter(data * weights, size=size, mode='nearest')
        with np.errstate(invalid='ignore', divide='ignore'):
            data = np.where(valid, summed / norm, 0.0)

    return grid.with_data(np.where(valid, data, grid.nodata))

@jit(nopython=True, nogil=True, cache=True)
def _cos_angle(ax: float, ay: float, bx: float, by: float) -> float:
    return (ax * bx + ay * by + 1.0) / np.sqrt((ax * ax + ay * ay + 1.0) * (bx * bx + by * by + 1.0))

@jit(nopython=True, nogil=True, cache=True)
def _normal_smoothing(
    data: np.ndarray,
    valid: np.ndarray,
    cell_size: float,
    threshold: float,
    half_size: int,
    iterations: int
    ) -> np.ndarray:
    """
    Feature preserving DEM smoothing by normal vector smoothing (Lindsay, 2019).

    Args:
        data: 2D elevation array.
        valid: Boolean mask of usable cells.
        cell_size: Ground size of one cell.
        threshold: Cosine of the largest normal angle still smoothed across.
        half_size: Half size of the normal smoothing window.
        iterations: Number of elevation update sweeps.

    Returns:
        Smoothed copy of the elevation array.
    """
    rows, cols = data.shape
    gx = np.zeros((rows, cols), dtype=np.float64)
    gy = np.zeros((rows, cols), dtype=np.float64)

    # Sobel gradients per meter, dz/dcol and dz/drow
    for i in range(rows):
        for j in range(cols):
            if not valid[i, j]:
                continue
            z = np.empty((3, 3), dtype=np.float64)
            for di in range(-1, 2):
                for dj in range(-1, 2):
                    ii = min(max(i + di, 0), rows - 1)
                    jj = min(max(j + dj, 0), cols - 1)
                    z[di + 1, dj + 1] = data[ii, jj] if valid[ii, jj] else data[i, j]
            gx[i, j] = ((z[0, 2] + 2.0 * z[1, 2] + z[2, 2]) - (z[0, 0] + 2.0 * z[1, 0] + z[2, 0])) / (8.0 * cell_size)
            gy[i, j] = ((z[2, 0] + 2.0 * z[2, 1] + z[2, 2]) - (z[0, 0] + 2.0 * z[0, 1] + z[0, 2])) / (8.0 * cell_size)

    # Smooth the normals, weighting neighbours by their angular similarity
    sgx = gx.copy()
    sgy = gy.copy()
    for i in range(rows):
        for j in range(cols):
            if not valid[i, j]:
                continue
            sum_w = 0.0
            a = 0.0
            b = 0.0
            for di in range(-half_size, half_size + 1):
                ii = min(max(i + di, 0), rows - 1)
                for dj in range(-half_size, half_size + 1):
                    jj = min(max(j + dj, 0), cols - 1)
                    if not valid[ii, jj]:
                        continue
                    diff = _cos_angle(gx[i, j], gy[i, j], gx[ii, jj], gy[ii, jj])
                    if diff > threshold:
                        w = (diff - threshold) ** 2
                        sum_w += w
                        a += gx[ii, jj] * w
                        b += gy[ii, jj] * w
            if sum_w > 0.0:
                sgx[i, j] = a / sum_w
                sgy[i, j] = b / sum_w

    # Fit elevations to the smoothed normals
    out = data.copy()
    for _ in range(iterations):
        for i in range(rows):
            for j in range(cols):
                if not valid[i, j]:
                    continue
                sum_w = 0.0
                z = 0.0
                for di in range(-1, 2):
                    for dj in range(-1, 2):
                        if di == 0 and dj == 0:
                            continue
                        ii = i + di
                        jj = j + dj
                        if ii < 0 or ii >= rows or jj < 0 or jj >= cols or not valid[ii, jj]:
                            continue
                        diff = _cos_angle(sgx[i, j], sgy[i, j], sgx[ii, jj], sgy[ii, jj])
                        if diff > threshold:
                            w = (diff - threshold) ** 2
                            sum_w += w
                            # extrapolate the neighbour's plane back to this cell
                            z += (out[ii, jj] - sgx[ii, jj] * dj * cell_size - sgy[ii, jj] * di * cell_size) * w
                if sum_w > 1e-12:
                    out[i, j] = z / sum_w

    return out

def smoothen_normals(
    grid: Dfm,
    max_norm_diff: float = 15.0,
    filter_size: int = 15,
    iterations: int = 3
    ) -> Dfm:
    """
    Smooths an elevation model while preserving breaks in slope.

    Normal vectors are first averaged with neighbours whose orientation differs by
    less than max_norm_diff degrees, then the surface is iteratively refitted to the
    smoothed normals. Sharp features such as ditches and cliffs are kept.

    Args:
        grid (Dfm): Elevation model.
        max_norm_diff (float): Largest angle in degrees between normals that are smoothed together (capped at 60).
        filter_size (int): Window size in cells for normal smoothing, forced odd and >= 3.
        iterations (int): Number of elevation update sweeps (>= 1).

    Returns:
        Dfm: Smoothed elevation model.
    """
    if filter_size % 2 == 0:
        filter_size += 1
    filter_size = max(filter_size, 3)
    iterations = max(iterations, 1)
    max_norm_diff = min(abs(max_norm_diff), 60.0)
    threshold = float(np.cos(np.radians(max_norm_diff)))

    out = _normal_smoothing(
        grid.data, grid.valid_mask, grid.cell_size, threshold, filter_size // 2, iterations
    )
    return grid.with_data(out)

def fill_gaps(grid: Dfm, max_search_cells: int = 15, footprint: np.ndarray = None) -> Dfm:
    """
    Fills no-data cells by inverse distance interpolation from valid cells.

    Args:
        grid (Dfm): Grid with gaps.
        max_search_cells (int): Largest distance in cells searched for valid values.
        footprint (np.ndarray): Optional boolean mask; cells outside it are left as no-data.

    Returns:
        Dfm: Gap-filled grid.
    """
    valid = grid.valid_mask
    if not np.any(valid):
        return grid.copy()

    data = grid.data.copy()
    if not np.all(valid):
        data = fillnodata(
            data.astype(np.float32),
            mask=valid.astype(np.uint8),
            max_search_distance=max_search_cells
        ).astype(np.float64)

    # fillnodata leaves unreachable cells at their original (no-data) value
    data[~np.isfinite(data)] = grid.nodata
    if footprint is not None:
        data[~footprint & ~valid] = grid.nodata

    return grid.with_data(data)
