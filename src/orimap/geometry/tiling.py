# src/orimap/geometry/tiling.py

"""
This module splits a survey bounding box into overlapping processing tiles.

Every tile has the fixed side length of one DFM. Neighbouring tiles overlap so
that contours and polygons can be traced past the tile edge; each tile also gets
a disjoint cut rectangle, and the cut rectangles tile the input bounds exactly.
Output geometry is clipped to the cut rectangle of the tile that produced it.
"""

from dataclasses import dataclass
from enum import IntFlag
from typing import Iterator, List, Optional, Tuple
import logging
import math

from shapely.geometry import Polygon, box

from orimap.constants import MIN_NEIGHBOUR_MARGIN, TILE_SIZE

log = logging.getLogger(__name__)

__all__ = [
    "Neighborhood",
    "Rect",
    "TileSet",
    "retile_bounds"
]

class Neighborhood(IntFlag):
    """
    Sides of a file on which adjacent input files exist.

    Tiles on a side with a neighbour are extended past the file bounds so the
    overlap with the neighbour's tiles is at least the minimum margin.
    """
    NONE = 0
    ABOVE = 1
    BELOW = 2
    LEFT = 4
    RIGHT = 8

@dataclass(frozen=True)
class Rect:
    """
    Axis aligned rectangle.
    """
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.min_x + self.max_x) / 2.0, (self.min_y + self.max_y) / 2.0)

    @property
    def top_left(self) -> Tuple[float, float]:
        return (self.min_x, self.max_y)

    def intersects(self, other: 'Rect') -> bool:
        """True if the interiors of both rectangles overlap."""
        return (
            self.min_x < other.max_x and other.min_x < self.max_x
            and self.min_y < other.max_y and other.min_y < self.max_y
        )

    def overlap(self, other: 'Rect') -> Optional['Rect']:
        """Intersection rectangle, None if the interiors are disjoint."""
        if not self.intersects(other):
            return None
        return Rect(
            max(self.min_x, other.min_x), max(self.min_y, other.min_y),
            min(self.max_x, other.max_x), min(self.max_y, other.max_y)
        )

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def to_polygon(self) -> Polygon:
        return box(self.min_x, self.min_y, self.max_x, self.max_y)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

@dataclass(frozen=True)
class TileSet:
    """
    Result of retiling a bounding box.

    Attributes:
        tiles (List[Rect]): Overlapping rasterization bounds, row-major from the north-west.
        cuts (List[Rect]): Disjoint output bounds, index-aligned with tiles.
        nx (int): Number of tile columns.
        ny (int): Number of tile rows.
    """
    tiles: List[Rect]
    cuts: List[Rect]
    nx: int
    ny: int

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self) -> Iterator[Tuple[Rect, Rect]]:
        return iter(zip(self.tiles, self.cuts))

    def index(self, xi: int, yi: int) -> int:
        return yi * self.nx + xi

def _axis_tiles(
    low: float,
    high: float,
    ext_low: float,
    ext_high: float,
    tile_size: float,
    min_margin: float,
    descending: bool,
    cut_low: Optional[float] = None,
    cut_high: Optional[float] = None
    ) -> List[Tuple[float, float, float, float]]:
    """
    Tile intervals along one axis.

    Returns (tile_min, tile_max, cut_min, cut_max) per tile, ordered from low to
    high, or from high to low when descending. The outer cut edges default to the
    bounds and are kept within the outer tiles.
    """
    span = (high + ext_high) - (low - ext_low)
    n = max(2, math.ceil((span - min_margin) / (tile_size - min_margin)))
    margin = (n * tile_size - span) / (n - 1)
    step = tile_size - margin
    start = low - ext_low

    spans = []
    for i in range(n):
        if i == n - 1:
            t_max = high + ext_high
            t_min = t_max - tile_size
        else:
            t_min = start + step * i
            t_max = t_min + tile_size
        spans.append((t_min, t_max))

    # Cut between consecutive tiles in the middle of their overlap. Narrow bounds
    # with a one-sided extension can push that midpoint out of the bounds, so the
    # overlap is clamped to the bounds first.
    cuts = [low if cut_low is None else max(cut_low, spans[0][0])]
    for (_, prev_max), (next_min, _) in zip(spans[:-1], spans[1:]):
        cuts.append((max(low, next_min) + min(high, prev_max)) / 2.0)
    cuts.append(high if cut_high is None else min(cut_high, spans[-1][1]))

    intervals = [
        (t_min, t_max, cuts[i], cuts[i + 1]) for i, (t_min, t_max) in enumerate(spans)
    ]

    if descending:
        intervals.reverse()
    return intervals

def retile_bounds(
    bounds: Rect,
    neighborhood: Neighborhood = Neighborhood.NONE,
    tile_size: float = TILE_SIZE,
    margin: float = MIN_NEIGHBOUR_MARGIN,
    cut_bounds: Optional[Rect] = None
    ) -> TileSet:
    """
    Computes the processing tiles of a file's bounding box.

    The number of tiles per axis is N = max(2, ceil((w - M) / (T - M))) where w is
    the axis extent (extended by M on every side that has a neighbouring file),
    and the actual overlap between consecutive tiles is (N·T - w) / (N - 1) >= M.
    Edge tiles stick out by M only on the sides with a neighbour. Rows are ordered
    from north to south and columns from west to east.

    Args:
        bounds (Rect): Bounding box of the file.
        neighborhood (Neighborhood): Sides with adjacent files.
        tile_size (float): Side length T of every tile.
        margin (float): Minimum overlap M between tiles.
        cut_bounds (Optional[Rect]): Outer edges of the union of the cuts when they should
            differ from the bounds, e.g. to meet the cuts of a neighbouring file. Clamped
            to the tiles.

    Returns:
        TileSet: Tiles and cut bounds.

    Raises:
        ValueError: If the bounds have zero area or the margin is not smaller than the tile size.
    """
    if bounds.width <= 0 or bounds.height <= 0:
        raise ValueError(f"Cannot retile bounds with zero area: {bounds}")
    if margin < 0 or margin >= tile_size:
        raise ValueError(f"Tile margin must satisfy 0 <= margin < tile size, got {margin} and {tile_size}")

    ext = {
        side: (margin if neighborhood & side else 0.0)
        for side in (Neighborhood.ABOVE, Neighborhood.BELOW, Neighborhood.LEFT, Neighborhood.RIGHT)
    }

    cut_bounds = cut_bounds or bounds
    x_tiles = _axis_tiles(
        bounds.min_x, bounds.max_x, ext[Neighborhood.LEFT], ext[Neighborhood.RIGHT],
        tile_size, margin, descending=False,
        cut_low=cut_bounds.min_x, cut_high=cut_bounds.max_x
    )
    y_tiles = _axis_tiles(
        bounds.min_y, bounds.max_y, ext[Neighborhood.BELOW], ext[Neighborhood.ABOVE],
        tile_size, margin, descending=True,
        cut_low=cut_bounds.min_y, cut_high=cut_bounds.max_y
    )

    tiles = []
    cuts = []
    for ty_min, ty_max, cy_min, cy_max in y_tiles:
        for tx_min, tx_max, cx_min, cx_max in x_tiles:
            tiles.append(Rect(tx_min, ty_min, tx_max, ty_max))
            cuts.append(Rect(cx_min, cy_min, cx_max, cy_max))

    log.debug(f"Retiled {bounds.width:.1f}x{bounds.height:.1f} m into {len(x_tiles)}x{len(y_tiles)} tiles")

    return TileSet(tiles=tiles, cuts=cuts, nx=len(x_tiles), ny=len(y_tiles))
