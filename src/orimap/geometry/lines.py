# src/orimap/geometry/lines.py

"""
This module implements polyline operations: clipping, simplification and the
endpoint merge used to stitch contours across tile boundaries.
"""

from typing import Iterable, List, Optional
import logging

import numpy as np
from scipy.spatial import cKDTree
from shapely.geometry import LineString, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import linemerge

log = logging.getLogger(__name__)

__all__ = [
    "explode_lines",
    "clip_lines",
    "simplify_lines",
    "merge_line_strings"
]

def explode_lines(geom: Optional[BaseGeometry]) -> List[LineString]:
    """Non-empty LineStrings contained in any geometry (collections are flattened)."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, LineString):
        return [geom]
    if hasattr(geom, 'geoms'):
        out = []
        for part in geom.geoms:
            out.extend(explode_lines(part))
        return out
    return []

def clip_lines(lines: Iterable[LineString], overlay: Polygon) -> List[LineString]:
    """
    Parts of the lines inside the overlay.

    Pieces of one line split by the clip are re-joined where they touch so a
    closed contour fully inside the overlay stays a single closed line.
    """
    out = []
    for line in lines:
        clipped = line.intersection(overlay)
        parts = explode_lines(clipped)
        if len(parts) > 1:
            parts = explode_lines(linemerge(parts, directed=True))
        out.extend(p for p in parts if p.length > 0)
    return out

def simplify_lines(lines: Iterable[LineString], tolerance: float) -> List[LineString]:
    out = []
    for line in lines:
        simple = line.simplify(tolerance, preserve_topology=True)
        if not simple.is_empty and simple.length > 0:
            out.append(simple)
    return out

def _sort_key(line: LineString):
    coords = line.coords
    return (coords[0], coords[-1], len(coords), line.length)

def merge_line_strings(lines: Iterable[LineString], tolerance: float) -> List[LineString]:
    """
    Joins open lines whose end lies within tolerance of another line's start.

    Lines are visited in a canonical order (by start, end and size) so the result
    does not depend on input order. A line is extended repeatedly with the nearest
    unconsumed start found at its current end; a join that would make two simple
    lines self-intersecting is rejected and the next candidate is tried. A chain
    whose end returns to its own start is closed.

    Only end to start joins are made; start-start and end-end pairs are never
    joined by reversing a line. Every line symbol the document holds is oriented
    (higher ground on the left), so a reversed piece is not part of the same line.

    Args:
        lines (Iterable[LineString]): Lines of one symbol and elevation.
        tolerance (float): Largest endpoint gap bridged.

    Returns:
        List[LineString]: Merged lines, closed lines passed through unchanged.
    """
    lines = list(lines)
    closed = [line for line in lines if line.is_closed]
    open_lines = sorted((line for line in lines if not line.is_closed), key=_sort_key)
    if len(open_lines) == 0:
        return closed

    starts = np.array([line.coords[0] for line in open_lines], dtype=np.float64)[:, :2]
    tree = cKDTree(starts)

    chains = [list(line.coords) for line in open_lines]
    simple = [line.is_simple for line in open_lines]
    consumed = [False] * len(open_lines)
    closed_flags = [False] * len(open_lines)
    merges = 0

    for i in range(len(open_lines)):
        if consumed[i]:
            continue
        while True:
            end = chains[i][-1][:2]
            candidates = tree.query_ball_point(end, r=tolerance)
            if not candidates:
                break
            dists = np.hypot(starts[candidates, 0] - end[0], starts[candidates, 1] - end[1])
            ordered = [c for _, c in sorted(zip(dists.tolist(), candidates))]

            joined = False
            for j in ordered:
                if j == i:
                    if len(chains[i]) >= 3:
                        if tuple(chains[i][-1]) != tuple(chains[i][0]):
                            chains[i].append(chains[i][0])
                        closed_flags[i] = True
                        joined = True
                    break
                if consumed[j] or closed_flags[j]:
                    continue
                tail = chains[j][1:] if tuple(chains[j][0]) == tuple(chains[i][-1]) else chains[j]
                merged = LineString(chains[i] + tail)
                if simple[i] and simple[j] and not merged.is_simple:
                    continue
                chains[i] = list(merged.coords)
                simple[i] = simple[i] and simple[j]
                consumed[j] = True
                merges += 1
                joined = True
                break

            if not joined or closed_flags[i]:
                break

    merged_lines = [LineString(chains[i]) for i in range(len(open_lines)) if not consumed[i]]
    log.debug(f"Merged {merges} line joints, {len(open_lines)} open lines became {len(merged_lines)}")
    return closed + merged_lines
