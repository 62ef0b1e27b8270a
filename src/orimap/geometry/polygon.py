# src/orimap/geometry/polygon.py

"""
This module turns contour sets into area polygons and post-processes them.

Marching squares alone cannot tell whether a ring encloses the region above the
isovalue or the region below it; orientation, a convex hull and a hint value
supply that context.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple
import bisect
import logging

import numpy as np
from shapely.geometry import (
    LineString,
    MultiPolygon,
    Point,
    Polygon,
)
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from .contour import ContourSet

log = logging.getLogger(__name__)

__all__ = [
    "signed_area",
    "PolygonSet",
    "from_contours",
    "close_open_contours",
    "explode_polygons",
    "remove_small_polygons",
    "apply_buffer_rule",
    "clip_polygons",
    "simplify_polygons"
]

def signed_area(ring) -> float:
    """
    Shoelace area of a ring, positive when counter-clockwise.

    Args:
        ring: LineString, LinearRing or sequence of (x, y) coordinates.

    Returns:
        float: Signed area. Open rings are closed implicitly.
    """
    coords = np.asarray(ring.coords if hasattr(ring, 'coords') else ring, dtype=np.float64)
    if len(coords) < 3:
        return 0.0
    x = coords[:, 0]
    y = coords[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))

@dataclass
class PolygonSet:
    """
    Result of classifying a contour set.

    Attributes:
        polygons (List[Polygon]): Oriented polygons (exterior CCW, holes CW).
        discarded (int): Number of rings or polygons dropped as below the minimum area.
        orphans (List[LineString]): Hole rings that no exterior contains.
    """
    polygons: List[Polygon] = field(default_factory=list)
    discarded: int = 0
    orphans: List[LineString] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.polygons)

    def __iter__(self):
        return iter(self.polygons)

    @property
    def multipolygon(self) -> MultiPolygon:
        return MultiPolygon(self.polygons)

def explode_polygons(geom: Optional[BaseGeometry]) -> List[Polygon]:
    """Non-empty polygons contained in any geometry (collections are flattened)."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if hasattr(geom, 'geoms'):
        out = []
        for part in geom.geoms:
            out.extend(explode_polygons(part))
        return out
    return []

def _ring_positions(ring: LineString) -> List[float]:
    coords = list(ring.coords)
    positions = [0.0]
    for a, b in zip(coords[:-1], coords[1:]):
        positions.append(positions[-1] + float(np.hypot(b[0] - a[0], b[1] - a[1])))
    return positions

def _boundary_walk(ring: LineString, positions: List[float], start: float, stop: float) -> List[Tuple[float, float]]:
    """Ring vertices met walking forward (counter-clockwise) strictly between two positions."""
    coords = list(ring.coords)[:-1]
    length = positions[-1]
    pos = positions[:-1]
    if stop < start:
        stop += length

    out = []
    first = bisect.bisect_right(pos, start)
    for k in range(len(coords) * 2):
        idx = (first + k) % len(coords)
        p = pos[idx] + (length if first + k >= len(coords) else 0.0)
        if p >= stop:
            break
        out.append(coords[idx])
    return out

def close_open_contours(lines: Sequence[LineString], convex_hull: Polygon) -> List[LineString]:
    """
    Closes contours that end on the hull boundary.

    From the end of an open contour the hull boundary is followed counter-clockwise
    until the start of the first open contour met, which is then appended; this
    repeats until the walk returns to the contour it started from. Because the
    region above the isovalue lies left of every contour, the resulting rings
    enclose that region counter-clockwise.

    Args:
        lines (Sequence[LineString]): Open contours.
        convex_hull (Polygon): Boundary the contours end on.

    Returns:
        List[LineString]: Closed rings.
    """
    if not lines:
        return []

    ring = orient(convex_hull, 1.0).exterior
    positions = _ring_positions(ring)
    length = positions[-1]
    starts = [ring.project(Point(line.coords[0])) for line in lines]
    ends = [ring.project(Point(line.coords[-1])) for line in lines]

    used = [False] * len(lines)
    closed = []
    for i in range(len(lines)):
        if used[i]:
            continue
        coords = list(lines[i].coords)
        used[i] = True
        cur = i
        while True:
            # nearest unused start (or our own) counter-clockwise from the current end
            best = None
            best_dist = None
            for j in range(len(lines)):
                if used[j] and j != i:
                    continue
                dist = (starts[j] - ends[cur]) % length if length > 0 else 0.0
                if best is None or dist < best_dist:
                    best, best_dist = j, dist
            coords.extend(_boundary_walk(ring, positions, ends[cur], ends[cur] + best_dist))
            if best == i:
                coords.append(coords[0])
                break
            coords.extend(lines[best].coords)
            used[best] = True
            cur = best

        if len(coords) >= 4:
            closed.append(LineString(coords))

    return closed

def from_contours(
    contours: ContourSet,
    convex_hull: Polygon,
    min_area: float,
    hint: bool,
    invert: bool = False
    ) -> PolygonSet:
    """
    Builds the polygons of the region at or above a contour level.

    Rules, in order:
        1. No contours: the hull is uniformly above (hint True) or below the level,
           giving the hull or nothing.
        2. Open contours are closed along the hull boundary.
        3. Rings with positive area >= min_area become exteriors. Rings with
           area in (-min_area / 10, min_area), or zero area, are noise and are discarded.
        4. Without any exterior, remaining rings are holes of the whole hull.
        5. Every other (negative) ring is a hole of the smallest exterior covering
           it. Holes without a covering exterior are returned as orphans.
        6. With invert, the result is the hull minus the polygons, i.e. the region below.

    Args:
        contours (ContourSet): Traced contours of the level.
        convex_hull (Polygon): Region with data.
        min_area (float): Smallest exterior area kept.
        hint (bool): Whether a contour-free hull lies above the level.
        invert (bool): Return the region below the level instead.

    Returns:
        PolygonSet: Oriented polygons plus the bookkeeping of dropped rings.
    """
    result = PolygonSet()
    hull = orient(convex_hull, 1.0) if not convex_hull.is_empty else convex_hull

    if len(contours) == 0:
        above = [hull] if hint and not hull.is_empty else []
        return _finish(result, above, hull, min_area, invert)

    rings = contours.closed()
    open_lines = contours.open()
    if open_lines:
        if hull.is_empty:
            raise ValueError("Open contours need a non-empty hull to be closed against")
        rings.extend(close_open_contours(open_lines, hull))

    exteriors = []
    holes = []
    for ring in rings:
        area = signed_area(ring)
        if area > 0 and area >= min_area:
            exteriors.append(ring)
        elif area == 0 or -min_area / 10.0 < area < min_area:
            result.discarded += 1
        else:
            holes.append(ring)

    if not exteriors:
        if holes and not hull.is_empty:
            exteriors.append(hull.exterior)
        elif not holes:
            return _finish(result, [], hull, min_area, invert)

    shells = [_valid(Polygon(ext.coords)) for ext in exteriors]
    shell_areas = [abs(s.area) for s in shells]
    assigned = [[] for _ in shells]
    for hole in holes:
        hole_polygon = _valid(Polygon(hole.coords))
        candidates = [k for k, shell in enumerate(shells) if shell.covers(hole_polygon)]
        if not candidates:
            result.orphans.append(hole)
            continue
        smallest = min(candidates, key=lambda k: shell_areas[k])
        assigned[smallest].append(hole.coords)

    above = [Polygon(ext.coords, hole_rings) for ext, hole_rings in zip(exteriors, assigned)]
    if result.orphans:
        log.warning(f"{len(result.orphans)} hole contours at level {contours.level:.2f} have no exterior")

    return _finish(result, above, hull, min_area, invert)

def _valid(polygon: Polygon) -> BaseGeometry:
    return polygon if polygon.is_valid else polygon.buffer(0)

def _finish(
    result: PolygonSet,
    above: List[Polygon],
    hull: Polygon,
    min_area: float,
    invert: bool
    ) -> PolygonSet:
    polygons = [_valid(p) for p in above]
    polygons = [part for p in polygons for part in explode_polygons(p)]

    if invert:
        if hull.is_empty:
            polygons = []
        elif polygons:
            polygons = explode_polygons(hull.difference(MultiPolygon(polygons)))
        else:
            polygons = [hull]

    kept = []
    for polygon in polygons:
        if Polygon(polygon.exterior).area < min_area:
            result.discarded += 1
            continue
        kept.append(orient(polygon, 1.0))

    result.polygons = kept
    return result

def remove_small_polygons(polygons: Iterable[Polygon], min_size: float) -> List[Polygon]:
    return [p for p in polygons if p.area >= min_size]

def simplify_polygons(polygons: Iterable[Polygon], tolerance: float) -> List[Polygon]:
    out = []
    for polygon in polygons:
        out.extend(explode_polygons(polygon.simplify(tolerance, preserve_topology=True)))
    return out

def apply_buffer_rule(polygons: Iterable[Polygon], rule, tolerance: float) -> List[Polygon]:
    """
    Grows or shrinks the polygons and simplifies the result.

    Args:
        polygons (Iterable[Polygon]): Polygons to buffer.
        rule (BufferRule): Buffer to apply; a positive `distance` grows, a negative one shrinks.
        tolerance (float): Simplification tolerance applied afterwards.
    """
    polygons = list(polygons)
    if not polygons:
        return []
    buffered = MultiPolygon(polygons).buffer(rule.distance)
    return [orient(p, 1.0) for p in simplify_polygons(explode_polygons(buffered), tolerance)]

def clip_polygons(polygons: Iterable[Polygon], overlay: Polygon) -> List[Polygon]:
    """Intersection of every polygon with the overlay, oriented."""
    out = []
    for polygon in polygons:
        out.extend(orient(p, 1.0) for p in explode_polygons(polygon.intersection(overlay)))
    return out
