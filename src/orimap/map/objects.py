# src/orimap/map/objects.py

"""
This module defines the map objects collected in a map document.

The three variants share a symbol and an ordered tag list and differ only in
their geometry. They form a closed union: there are no other object kinds.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union
import logging

from shapely.geometry import LineString, Point, Polygon

from orimap.constants import GENERATOR_TAG
from .symbols import GeometryKind, Symbol

log = logging.getLogger(__name__)

__all__ = [
    "ELEVATION_TAG",
    "PointObject",
    "LineObject",
    "AreaObject",
    "MapObject",
    "default_tags"
]

ELEVATION_TAG = "Elevation"

Tags = Tuple[Tuple[str, str], ...]

def default_tags(elevation: Optional[float] = None) -> Tags:
    """Generator provenance tag, preceded by an elevation tag when given."""
    if elevation is None:
        return (GENERATOR_TAG,)
    return ((ELEVATION_TAG, f"{elevation:.2f}"), GENERATOR_TAG)

class _TaggedObject:
    """Tag helpers shared by every map object variant."""

    def tag(self, key: str) -> Optional[str]:
        for k, v in self.tags:
            if k == key:
                return v
        return None

    def with_tag(self, key: str, value: str):
        """Copy with the tag set, replacing an existing value in place."""
        tags = list(self.tags)
        for idx, (k, _) in enumerate(tags):
            if k == key:
                tags[idx] = (key, value)
                break
        else:
            tags.append((key, value))
        return replace(self, tags=tuple(tags))

    @property
    def elevation(self) -> Optional[float]:
        value = self.tag(ELEVATION_TAG)
        return float(value) if value is not None else None

def _check_symbol(obj, kind: GeometryKind):
    object.__setattr__(obj, "symbol", Symbol(obj.symbol))
    if obj.symbol.kind != kind:
        raise ValueError(f"Symbol {obj.symbol.name} cannot be drawn as {kind.value}")

@dataclass(frozen=True)
class PointObject(_TaggedObject):
    symbol: Symbol
    geometry: Point
    tags: Tags = (GENERATOR_TAG,)

    def __post_init__(self):
        _check_symbol(self, GeometryKind.POINT)

@dataclass(frozen=True)
class LineObject(_TaggedObject):
    """
    Polyline object (contours and form lines).
    """
    symbol: Symbol
    geometry: LineString
    tags: Tags = (GENERATOR_TAG,)

    def __post_init__(self):
        _check_symbol(self, GeometryKind.LINE)

    @property
    def is_closed(self) -> bool:
        return self.geometry.is_closed

@dataclass(frozen=True)
class AreaObject(_TaggedObject):
    """
    Polygon object. The exterior runs counter-clockwise, holes clockwise.
    """
    symbol: Symbol
    geometry: Polygon
    tags: Tags = (GENERATOR_TAG,)

    def __post_init__(self):
        _check_symbol(self, GeometryKind.AREA)

MapObject = Union[PointObject, LineObject, AreaObject]
