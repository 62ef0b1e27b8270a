# src/orimap/geometry/contour.py

"""
This module implements marching squares contour extraction on DFMs.

Corner samples are the cell centres of the grid. Each 2x2 block of samples is
classified against the isovalue (samples equal to the isovalue count as above,
no-data counts as below) and emits zero, one or two segments between edge
crossings. Segments are linked into polylines through maps keyed by the integer
identity of the grid edge they cross, so the result never depends on hash order.

Contours are oriented so that the region at or above the isovalue lies on their
left: closed contours around high ground run counter-clockwise, closed contours
around low ground run clockwise.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import logging

import numpy as np
from shapely.geometry import LineString

from orimap.raster.layer import Dfm

log = logging.getLogger(__name__)

__all__ = [
    "ContourSet",
    "marching_squares"
]

@dataclass
class ContourSet:
    """
    Isolines of a grid at one level.

    Attributes:
        level (float): The isovalue.
        lines (List[LineString]): Traced polylines, closed lines repeat their first vertex.
    """
    level: float
    lines: List[LineString] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    def closed(self) -> List[LineString]:
        return [line for line in self.lines if line.is_closed]

    def open(self) -> List[LineString]:
        return [line for line in self.lines if not line.is_closed]

# Edge slots of a block, walking its outline counter-clockwise on the ground
# (north-west, south-west, south-east, north-east):
#   slot 0: west edge  (tl-bl)    slot 1: south edge (bl-br)
#   slot 2: east edge  (br-tr)    slot 3: north edge (tr-tl)
# Case bits: tl=1, tr=2, br=4, bl=8.

def _corner_flags(case: int) -> Tuple[bool, bool, bool, bool]:
    # corners in walking order tl, bl, br, tr
    return (bool(case & 1), bool(case & 8), bool(case & 4), bool(case & 2))

def _build_table() -> Dict[Tuple[int, bool], List[Tuple[int, int]]]:
    """
    Segment table keyed by (case, centre_above).

    A segment starts where the walk leaves the above region and ends where it
    enters it again, which keeps the above region on the left of the segment.
    Saddles pair each start with the next crossing when the centre is above
    (the high corners connect) and with the previous crossing otherwise.
    """
    table = {}
    for case in range(16):
        flags = _corner_flags(case)
        crossings = [
            (slot, flags[slot]) for slot in range(4) if flags[slot] != flags[(slot + 1) % 4]
        ]
        for centre_above in (False, True):
            segments = []
            count = len(crossings)
            for pos, (slot, leaving) in enumerate(crossings):
                if not leaving:
                    continue
                if count == 2 or centre_above:
                    partner = crossings[(pos + 1) % count][0]
                else:
                    partner = crossings[(pos - 1) % count][0]
                segments.append((slot, partner))
            table[(case, centre_above)] = segments
    return table

_SEGMENT_TABLE = _build_table()

def _edge_key(slot: int, i: int, j: int, width: int) -> int:
    """Integer identity of the grid edge behind a block's edge slot. Horizontal edges are even, vertical odd."""
    if slot == 0:
        return (i * width + j) * 2 + 1
    if slot == 1:
        return ((i + 1) * width + j) * 2
    if slot == 2:
        return (i * width + j + 1) * 2 + 1
    return (i * width + j) * 2

def marching_squares(grid: Dfm, level: float, closed: bool = False) -> ContourSet:
    """
    Traces the isolines of a DFM.

    Args:
        grid (Dfm): Grid to contour.
        level (float): Isovalue.
        closed (bool): Pad the grid with a ring of no-data so that every contour
            closes, running along the grid outline where the region reaches it.

    Returns:
        ContourSet: The traced lines.
    """
    level = float(level)
    pad = 1 if closed else 0
    valid = grid.valid_mask
    values = grid.data
    if pad:
        values = np.pad(values, pad, mode='constant', constant_values=grid.nodata)
        valid = np.pad(valid, pad, mode='constant', constant_values=False)

    height, width = values.shape
    if height < 2 or width < 2:
        return ContourSet(level)

    above = valid & (values >= level)
    a = above.astype(np.uint8)
    cases = a[:-1, :-1] * 1 + a[:-1, 1:] * 2 + a[1:, 1:] * 4 + a[1:, :-1] * 8
    active = np.argwhere((cases != 0) & (cases != 15))

    cs = grid.cell_size
    x0 = grid.origin_x + (0.5 - pad) * cs
    y0 = grid.origin_y - (0.5 - pad) * cs

    points: Dict[int, Tuple[float, float]] = {}

    def crossing(key: int) -> Tuple[float, float]:
        pt = points.get(key)
        if pt is not None:
            return pt
        idx, vertical = divmod(key, 2)
        i, j = divmod(idx, width)
        bi, bj = (i + 1, j) if vertical else (i, j + 1)
        if valid[i, j] and valid[bi, bj]:
            va = values[i, j]
            vb = values[bi, bj]
            t = (level - va) / (vb - va)
        else:
            t = 0.5
        # rows grow southwards
        x = x0 + (j + t * (bj - j)) * cs
        y = y0 - (i + t * (bi - i)) * cs
        pt = (float(x), float(y))
        points[key] = pt
        return pt

    seg_start: List[int] = []
    seg_end: List[int] = []
    for i, j in active.tolist():
        case = int(cases[i, j])
        centre_above = False
        if case in (5, 10):
            block = values[i:i + 2, j:j + 2]
            if valid[i:i + 2, j:j + 2].all():
                centre_above = bool(block.mean() >= level)
        for s_slot, e_slot in _SEGMENT_TABLE[(case, centre_above)]:
            seg_start.append(_edge_key(s_slot, i, j, width))
            seg_end.append(_edge_key(e_slot, i, j, width))

    lines = _link_segments(seg_start, seg_end, crossing)
    log.debug(f"Level {level:.2f}: {len(seg_start)} segments linked into {len(lines)} lines")

    return ContourSet(level=level, lines=lines)

def _link_segments(seg_start: List[int], seg_end: List[int], crossing) -> List[LineString]:
    """
    Joins segments that share a crossed edge into maximal polylines.

    Every edge is the start of at most one segment and the end of at most one,
    so each line is found by walking back to its head and then forward.
    Lines are emitted in the order their first segment was created.
    """
    by_start = {key: idx for idx, key in enumerate(seg_start)}
    by_end = {key: idx for idx, key in enumerate(seg_end)}
    visited = [False] * len(seg_start)
    lines = []

    for k in range(len(seg_start)):
        if visited[k]:
            continue

        head = k
        while True:
            prev = by_end.get(seg_start[head])
            if prev is None:
                break
            if prev == k:
                head = k
                break
            head = prev

        coords = [crossing(seg_start[head])]
        cur = head
        while True:
            visited[cur] = True
            coords.append(crossing(seg_end[cur]))
            nxt = by_start.get(seg_end[cur])
            if nxt is None or visited[nxt]:
                break
            cur = nxt

        line = _clean_line(coords)
        if line is not None:
            lines.append(line)

    return lines

def _clean_line(coords: List[Tuple[float, float]]):
    # crossings exactly on a sample repeat the same point on both adjacent edges
    deduped = [coords[0]]
    for pt in coords[1:]:
        if pt != deduped[-1]:
            deduped.append(pt)

    is_ring = len(deduped) > 1 and deduped[0] == deduped[-1]
    if is_ring and len(deduped) < 4:
        return None
    if len(deduped) < 2:
        return None
    return LineString(deduped)
