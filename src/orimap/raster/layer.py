# src/orimap/raster/layer.py

"""
This module defines the square scalar grid (DFM) rasterized for each tile.

A DFM stores one derived field (elevation, slope, density, intensity) on a fixed
resolution grid. Cell (0, 0) is the north-west cell of the tile; the value of a
cell is located at its centre, which is also where the contour extractor places
its corner samples.
"""

from dataclasses import dataclass
from typing import Tuple, Union
import logging

import numpy as np
from rasterio.transform import Affine
from shapely.geometry import LineString

from orimap.constants import CELL_SIZE, NODATA_VAL, SIDE_LENGTH

log = logging.getLogger(__name__)

__all__ = [
    "Dfm"
]

@dataclass
class Dfm:
    """
    Digital feature model: a square grid of float values with geographic placement.

    Attributes:
        data (np.ndarray): 2D array of shape (side, side), row 0 is the northern row.
        origin_x (float): X coordinate of the western edge of the grid.
        origin_y (float): Y coordinate of the northern edge of the grid.
        cell_size (float): Ground size of one cell in meters.
        nodata (float): Sentinel for cells without a value.
    """
    data: np.ndarray
    origin_x: float
    origin_y: float
    cell_size: float = CELL_SIZE
    nodata: float = NODATA_VAL

    def __post_init__(self):
        if not isinstance(self.data, np.ndarray):
            raise TypeError(f"Data must be numpy.ndarray, got {type(self.data)}")
        if self.data.ndim != 2 or self.data.shape[0] != self.data.shape[1]:
            raise ValueError(f"DFM data must be a square 2D array, got shape {self.data.shape}")
        if self.cell_size <= 0:
            raise ValueError(f"Cell size must be positive, got {self.cell_size}")
        if self.data.dtype != np.float64:
            self.data = self.data.astype(np.float64)

    @classmethod
    def new(
        cls,
        origin: Tuple[float, float],
        side: int = SIDE_LENGTH,
        cell_size: float = CELL_SIZE,
        fill: float = NODATA_VAL,
        nodata: float = NODATA_VAL
        ) -> 'Dfm':
        """
        Allocates a grid filled with a constant.

        Args:
            origin (Tuple[float, float]): (x, y) of the north-west corner.
            side (int): Number of cells along each axis.
            cell_size (float): Ground size of one cell.
            fill (float): Initial value of every cell.
            nodata (float): No-data sentinel of the grid.

        Returns:
            Dfm: The allocated grid.
        """
        data = np.full((side, side), fill, dtype=np.float64)
        return cls(data, float(origin[0]), float(origin[1]), cell_size, nodata)

    @property
    def side(self) -> int:
        return self.data.shape[0]

    @property
    def transform(self) -> Affine:
        """Affine transform mapping (col, row) of a cell corner to (x, y)."""
        return Affine.translation(self.origin_x, self.origin_y) * Affine.scale(self.cell_size, -self.cell_size)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) of the grid outline."""
        extent = self.side * self.cell_size
        return (self.origin_x, self.origin_y - extent, self.origin_x + extent, self.origin_y)

    @property
    def valid_mask(self) -> np.ndarray:
        return (self.data != self.nodata) & np.isfinite(self.data)

    def xy(self, row: Union[int, np.ndarray], col: Union[int, np.ndarray]):
        """Coordinates of the centre of cell (row, col)."""
        x = self.origin_x + (np.asarray(col) + 0.5) * self.cell_size
        y = self.origin_y - (np.asarray(row) + 0.5) * self.cell_size
        if np.ndim(x) == 0:
            return float(x), float(y)
        return x, y

    def rowcol(self, x: Union[float, np.ndarray], y: Union[float, np.ndarray]):
        """Indices of the cell containing (x, y). Indices may fall outside the grid."""
        col = np.floor((np.asarray(x) - self.origin_x) / self.cell_size).astype(np.int64)
        row = np.floor((self.origin_y - np.asarray(y)) / self.cell_size).astype(np.int64)
        if np.ndim(row) == 0:
            return int(row), int(col)
        return row, col

    def contains_cell(self, row: int, col: int) -> bool:
        return 0 <= row < self.side and 0 <= col < self.side

    def sample(self, x: float, y: float) -> float:
        """
        Value of the cell containing (x, y).

        Returns:
            float: The cell value, or the no-data sentinel when (x, y) lies outside the grid.
        """
        row, col = self.rowcol(x, y)
        if not self.contains_cell(row, col):
            return self.nodata
        return float(self.data[row, col])

    def center_value(self) -> float:
        """Value at the centre of the grid, used as a classification hint."""
        mid = self.side // 2
        return float(self.data[mid, mid])

    def extent(self) -> LineString:
        """
        Closed ring through the centres of the four corner cells.

        This is the region covered by marching squares and therefore the natural
        boundary against which open contours are closed.
        """
        x0, y0 = self.xy(0, 0)
        x1, y1 = self.xy(self.side - 1, self.side - 1)
        return LineString([(x0, y1), (x1, y1), (x1, y0), (x0, y0), (x0, y1)])

    def with_data(self, data: np.ndarray) -> 'Dfm':
        """Grid with the same placement but different values."""
        return Dfm(data, self.origin_x, self.origin_y, self.cell_size, self.nodata)

    def copy(self) -> 'Dfm':
        return self.with_data(self.data.copy())
