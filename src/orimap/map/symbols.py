# src/orimap/map/symbols.py

"""
This module defines the cartographic symbol set written by the pipeline.

Symbol codes follow the ISOM numbering so that the output can be mapped onto a
standard orienteering symbol set by any downstream serializer.
"""

from enum import Enum, IntEnum
import logging

log = logging.getLogger(__name__)

__all__ = [
    "GeometryKind",
    "Symbol"
]

# Reference scale that the minimum feature areas below are expressed in
_REFERENCE_SCALE = 15_000

class GeometryKind(Enum):
    """
    Geometry family a symbol can be drawn with.

    Options:
        POINT: Single coordinate features (dot knolls).
        LINE: Open or closed polylines (contours, form lines).
        AREA: Polygons with optional holes (vegetation, rock).
    """
    POINT = "point"
    LINE = "line"
    AREA = "area"

class Symbol(IntEnum):
    """
    Stable enumeration of every symbol the generator can emit.
    """
    CONTOUR = 101
    INDEX_CONTOUR = 102
    FORM_LINE = 103
    DOT_KNOLL = 109
    BASEMAP_CONTOUR = 199
    GIGANTIC_BOULDER = 207
    BARE_ROCK = 214
    ROUGH_OPEN_LAND = 403
    LIGHT_GREEN = 406
    MEDIUM_GREEN = 408
    DARK_GREEN = 410

    @property
    def kind(self) -> GeometryKind:
        if self in _POINT_SYMBOLS:
            return GeometryKind.POINT
        if self in _LINE_SYMBOLS:
            return GeometryKind.LINE
        return GeometryKind.AREA

    def min_size(self, scale: int) -> float:
        """
        Smallest area (in square meters on the ground) an area symbol may cover at the given map scale.

        Args:
            scale (int): Map scale denominator, e.g. 15000 for 1:15 000.

        Returns:
            float: Minimum area in m². Zero for point and line symbols.
        """
        base = _MIN_AREA_AT_REFERENCE.get(self, 0.0)
        return base * (scale / _REFERENCE_SCALE) ** 2

_POINT_SYMBOLS = frozenset({Symbol.DOT_KNOLL})

_LINE_SYMBOLS = frozenset({
    Symbol.CONTOUR,
    Symbol.INDEX_CONTOUR,
    Symbol.FORM_LINE,
    Symbol.BASEMAP_CONTOUR,
})

# 1 mm² on a 1:15 000 map is 225 m² on the ground
_MIN_AREA_AT_REFERENCE = {
    Symbol.ROUGH_OPEN_LAND: 225.0,
    Symbol.LIGHT_GREEN: 225.0,
    Symbol.MEDIUM_GREEN: 110.0,
    Symbol.DARK_GREEN: 64.0,
    Symbol.GIGANTIC_BOULDER: 10.0,
    Symbol.BARE_ROCK: 50.0,
}
