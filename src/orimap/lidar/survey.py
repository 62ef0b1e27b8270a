# src/orimap/lidar/survey.py

"""
This module works out the spatial relationships of the input lidar files.

Lidar projects are usually delivered as a square-ish grid of files. For each
file we find the files adjacent to it (which decides on which sides its tiles
must reach past the file bounds), the connected groups of files, and a
reference point for the map.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
import logging

import laspy
import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components as _csgraph_components
from scipy.spatial import cKDTree

from orimap.crs import reproject_xy, resolve_crs
from orimap.errors import ProjectionFailureError, UnreadableInputError
from orimap.geometry.tiling import Neighborhood, Rect
from .stats import LidarStats

log = logging.getLogger(__name__)

__all__ = [
    "FileNeighbors",
    "neighbors_on_grid",
    "neighbouring_files",
    "connected_components",
    "reference_point",
    "SurveyFile",
    "Survey",
    "read_survey"
]

# Slot order of FileNeighbors.slots, clockwise from the north-west
_SLOTS = ("center", "top_left", "top", "top_right", "right", "bottom_right", "bottom", "bottom_left", "left")

@dataclass(frozen=True)
class FileNeighbors:
    """
    A file and the indices of up to eight surrounding files.

    Attributes:
        slots (Tuple[Optional[int], ...]): Nine file indices: the file itself, then its
            neighbours clockwise from the north-west. None where there is no neighbour.
    """
    slots: Tuple[Optional[int], ...]

    def __post_init__(self):
        if len(self.slots) != 9:
            raise ValueError(f"Expected 9 neighbour slots, got {len(self.slots)}")
        if self.slots[0] is None:
            raise ValueError("The center slot of a neighbour set cannot be empty")

    @property
    def center(self) -> int:
        return self.slots[0]

    def get(self, name: str) -> Optional[int]:
        return self.slots[_SLOTS.index(name)]

    def has_neighbor_above(self) -> bool:
        return any(self.get(s) is not None for s in ("top_left", "top", "top_right"))

    def has_neighbor_below(self) -> bool:
        return any(self.get(s) is not None for s in ("bottom_left", "bottom", "bottom_right"))

    def has_neighbor_left(self) -> bool:
        return any(self.get(s) is not None for s in ("top_left", "left", "bottom_left"))

    def has_neighbor_right(self) -> bool:
        return any(self.get(s) is not None for s in ("top_right", "right", "bottom_right"))

    @property
    def flags(self) -> Neighborhood:
        flags = Neighborhood.NONE
        if self.has_neighbor_above():
            flags |= Neighborhood.ABOVE
        if self.has_neighbor_below():
            flags |= Neighborhood.BELOW
        if self.has_neighbor_left():
            flags |= Neighborhood.LEFT
        if self.has_neighbor_right():
            flags |= Neighborhood.RIGHT
        return flags

    def indices(self) -> List[int]:
        """Neighbouring file indices, without the file itself."""
        return [i for i in self.slots[1:] if i is not None]

def neighbors_on_grid(nx: int, ny: int) -> List[FileNeighbors]:
    """
    Neighbour sets of an nx by ny grid of cells, row-major from the north-west.
    """
    if nx < 1 or ny < 1:
        raise ValueError(f"Grid must have at least one cell per axis, got {nx}x{ny}")

    # (dx, dy) per slot after the center, dy growing southwards
    offsets = [(-1, -1), (0, -1), (1, -1), (1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0)]
    out = []
    for yi in range(ny):
        for xi in range(nx):
            slots = [yi * nx + xi]
            for dx, dy in offsets:
                x, y = xi + dx, yi + dy
                slots.append(y * nx + x if 0 <= x < nx and 0 <= y < ny else None)
            out.append(FileNeighbors(tuple(slots)))
    return out

def _side_of(bounds: Rect, center: Tuple[float, float]) -> Optional[int]:
    cx, cy = center
    left = cx < bounds.min_x
    right = cx > bounds.max_x
    above = cy > bounds.max_y
    below = cy < bounds.min_y

    if left and above:
        return 1
    if right and above:
        return 3
    if right and below:
        return 5
    if left and below:
        return 7
    if above:
        return 2
    if right:
        return 4
    if below:
        return 6
    if left:
        return 8
    return None

def _touch(a: Rect, b: Rect, margin: float) -> bool:
    return (
        a.min_x - margin <= b.max_x and b.min_x <= a.max_x + margin
        and a.min_y - margin <= b.max_y and b.min_y <= a.max_y + margin
    )

def neighbouring_files(bounds: Sequence[Rect]) -> List[FileNeighbors]:
    """
    Neighbour sets of files given their bounding boxes.

    Candidates are the nine nearest file centres; a candidate is a neighbour when
    its bounds come within 10 % of the average file size, and its slot is decided
    by where its centre lies relative to the file's bounds.

    Args:
        bounds (Sequence[Rect]): Bounding box of every file.

    Returns:
        List[FileNeighbors]: One neighbour set per file, index-aligned with bounds.
    """
    n = len(bounds)
    if n == 0:
        return []
    if n == 1:
        return [FileNeighbors((0,) + (None,) * 8)]

    centers = np.array([b.center for b in bounds], dtype=np.float64)
    avg_size = sum(b.width + b.height for b in bounds) / (2 * n)
    margin = 0.1 * avg_size

    tree = cKDTree(centers)
    k = min(9, n)
    _, nearest = tree.query(centers, k=k)

    out = []
    for i, candidates in enumerate(nearest):
        slots: List[Optional[int]] = [i] + [None] * 8
        for j in np.atleast_1d(candidates).tolist():
            if j == i or not _touch(bounds[i], bounds[j], margin):
                continue
            side = _side_of(bounds[i], tuple(centers[j]))
            if side is not None:
                slots[side] = j
        out.append(FileNeighbors(tuple(slots)))
    return out

def connected_components(neighbors: Sequence[FileNeighbors]) -> List[List[int]]:
    """
    Groups of files connected through neighbour relations.

    Returns:
        List[List[int]]: Sorted file indices per group, groups ordered by their smallest index.
    """
    n = len(neighbors)
    if n == 0:
        return []

    rows, cols = [], []
    for nb in neighbors:
        for j in nb.indices():
            rows.append(nb.center)
            cols.append(j)
    graph = csr_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))
    _, labels = _csgraph_components(graph, directed=False)

    groups = {}
    for idx, label in enumerate(labels.tolist()):
        groups.setdefault(label, []).append(idx)
    return sorted(groups.values(), key=lambda g: g[0])

def reference_point(bounds: Sequence[Rect]) -> Tuple[float, float]:
    """Mean of the file centres, rounded to the nearest 10 m."""
    if len(bounds) == 0:
        return (0.0, 0.0)
    centers = np.array([b.center for b in bounds], dtype=np.float64)
    mean = centers.mean(axis=0)
    return (float(np.round(mean[0] / 10.0) * 10.0), float(np.round(mean[1] / 10.0) * 10.0))

@dataclass
class SurveyFile:
    """
    One readable input file.

    Attributes:
        path (Path): Location of the file.
        bounds (Rect): XY bounds in the working CRS of the survey.
        epsg (Optional[int]): CRS of the file's coordinates (detected or default).
        crs_detected (bool): False when the default CRS was substituted.
        stats (LidarStats): Return and intensity statistics of the file.
        point_count (int): Number of points declared in the header.
    """
    path: Path
    bounds: Rect
    epsg: Optional[int]
    crs_detected: bool
    stats: LidarStats
    point_count: int = 0

@dataclass
class Survey:
    """
    The readable input files and their spatial relations.

    Attributes:
        files (List[SurveyFile]): Readable files, in input order.
        neighbors (List[FileNeighbors]): Neighbour set per file.
        components (List[List[int]]): Connected groups of files.
        ref_point (Tuple[float, float]): Reference point of the map.
        epsg (Optional[int]): Working CRS every file's bounds are expressed in.
        skipped (List[Tuple[Path, str]]): Unreadable files and the reason they were dropped.
        warnings (List[str]): Recoverable problems met while reading.
    """
    files: List[SurveyFile]
    neighbors: List[FileNeighbors]
    components: List[List[int]]
    ref_point: Tuple[float, float]
    epsg: Optional[int] = None
    skipped: List[Tuple[Path, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.files)

    @property
    def stats(self) -> LidarStats:
        """Statistics of the whole survey."""
        out = LidarStats.empty()
        for f in self.files:
            out = out.combine(f.stats)
        return out

    def cut_bounds(self, index: int) -> Rect:
        """
        Region the output of a file is cut to.

        Header bounds are point extents, so two adjacent files leave a strip about
        one point spacing wide between them. On every side with a neighbouring file
        the edge moves to the middle between the file's edge and the facing edge of
        the neighbour, where the neighbour's cut region starts as well. The direct
        neighbour decides; a side with only diagonal neighbours uses the nearest
        facing edge among them.

        Args:
            index (int): Index of the file in `files`.

        Returns:
            Rect: The cut region in the working CRS.
        """
        own = self.files[index].bounds
        nb = self.neighbors[index]

        def facing(direct: str, diagonals: Tuple[str, str], attr: str, nearest) -> Optional[float]:
            slots = [nb.get(direct)]
            if slots[0] is None:
                slots = [nb.get(s) for s in diagonals]
            edges = [getattr(self.files[j].bounds, attr) for j in slots if j is not None]
            return nearest(edges) if edges else None

        sides = (
            ("min_x", facing("left", ("top_left", "bottom_left"), "max_x", max)),
            ("max_x", facing("right", ("top_right", "bottom_right"), "min_x", min)),
            ("min_y", facing("bottom", ("bottom_left", "bottom_right"), "max_y", max)),
            ("max_y", facing("top", ("top_left", "top_right"), "min_y", min)),
        )
        edges = {attr: getattr(own, attr) for attr, _ in sides}
        for attr, other in sides:
            if other is not None:
                edges[attr] = (edges[attr] + other) / 2.0
        return Rect(edges["min_x"], edges["min_y"], edges["max_x"], edges["max_y"])

def _header_bounds(header, epsg: Optional[int], working_epsg: Optional[int]) -> Rect:
    min_x, min_y = float(header.x_min), float(header.y_min)
    max_x, max_y = float(header.x_max), float(header.y_max)
    if epsg == working_epsg:
        return Rect(min_x, min_y, max_x, max_y)

    xs, ys = reproject_xy(
        epsg, working_epsg,
        np.array([min_x, min_x, max_x, max_x]),
        np.array([min_y, max_y, min_y, max_y])
    )
    return Rect(float(xs.min()), float(ys.min()), float(xs.max()), float(ys.max()))

def read_survey(
    paths: Sequence[Union[str, Path]],
    default_epsg: Optional[int] = None,
    chunk_size: int = 1_000_000
    ) -> Survey:
    """
    Reads headers and statistics of every input file and relates them spatially.

    Files that cannot be decoded, or whose bounds cannot be reprojected, are dropped
    and listed in `Survey.skipped`, one warning per file. Files without a detectable
    CRS get the default EPSG code. The working CRS is the CRS of the first readable
    file; bounds of files in another CRS are reprojected.

    Args:
        paths (Sequence[Union[str, Path]]): Input .las/.laz files.
        default_epsg (Optional[int]): CRS assumed for files without one.
        chunk_size (int): Points streamed per chunk while gathering statistics.

    Returns:
        Survey: Readable files, their neighbours, components and reference point.

    Raises:
        UnreadableInputError: If none of the files can be read.
    """
    headers = []
    skipped: List[Tuple[Path, str]] = []
    warnings: List[str] = []

    for raw in paths:
        path = Path(raw)
        try:
            with laspy.open(path) as fh:
                header = fh.header
            epsg, detected = resolve_crs(header, default_epsg)
            stats = LidarStats.from_file(path, chunk_size=chunk_size)
        except (FileNotFoundError, UnreadableInputError, laspy.LaspyException) as e:
            log.warning(f"Skipping unreadable lidar file {path}: {e}")
            skipped.append((path, str(e)))
            continue

        if not detected:
            warnings.append(f"No CRS detected in {path.name}, assuming EPSG:{epsg}")
        headers.append((path, header, epsg, detected, stats))

    for path, reason in skipped:
        warnings.append(f"{path.name} was not readable as a lidar file and was removed: {reason}")
    if not headers:
        raise UnreadableInputError("None of the given files were readable as lidar files")

    working_epsg = headers[0][2]
    files = []
    for path, header, epsg, detected, stats in headers:
        try:
            bounds = _header_bounds(header, epsg, working_epsg)
        except ProjectionFailureError as e:
            log.warning(f"Skipping {path}, its bounds cannot be brought into EPSG:{working_epsg}: {e}")
            skipped.append((path, str(e)))
            warnings.append(f"{path.name} could not be reprojected into EPSG:{working_epsg} and was removed: {e}")
            continue
        files.append(SurveyFile(path, bounds, epsg, detected, stats, int(header.point_count)))

    bounds = [f.bounds for f in files]
    neighbors = neighbouring_files(bounds)
    components = connected_components(neighbors)
    ref_point = reference_point(bounds)

    log.info(
        f"Survey of {len(files)} files in {len(components)} connected groups, "
        f"reference point ({ref_point[0]:.0f}, {ref_point[1]:.0f})"
    )

    return Survey(
        files=files,
        neighbors=neighbors,
        components=components,
        ref_point=ref_point,
        epsg=working_epsg,
        skipped=skipped,
        warnings=warnings
    )
