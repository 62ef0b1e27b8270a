# src/orimap/pipeline/orchestrator.py

"""
This module drives a map generation run.

The survey of the input files is read first, then every selected file is split
into overlapping tiles which are processed concurrently by a thread pool. Each
tile is rasterized, passed through the enabled feature steps and its objects
appended to the shared map document. Lines cut at tile boundaries are merged
once all tiles of a file are done.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging
import threading

import numpy as np
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

from orimap.constants import CELL_SIZE
from orimap.crs import reproject_xy
from orimap.errors import (
    AreaMismatchError,
    NoGroundPointsError,
    OrimapError,
    ProjectionFailureError,
    TopologyError,
    UnreadableInputError,
)
from orimap.geometry.tiling import Rect, retile_bounds
from orimap.lidar.layer import PointCloud
from orimap.lidar.rasterize import compute_dfms
from orimap.lidar.stats import LidarStats
from orimap.lidar.survey import Survey, read_survey
from orimap.map.document import MapDocument
from orimap.params import MapParameters
from orimap.raster.filters import slope
from orimap.raster.io import save_dfm
from orimap.raster.resources import determine_worker_count, estimate_tile_memory

from .events import (
    ErrorEvent,
    EventSink,
    LogMessage,
    LoggingSink,
    ProgressFinish,
    ProgressIncrement,
    ProgressStart,
    TaskComplete,
)
from .steps import (
    StepOutput,
    compute_basemap,
    compute_cliffs,
    compute_contours,
    compute_intensity,
    compute_vegetation,
)

log = logging.getLogger(__name__)

__all__ = [
    "TileJob",
    "cut_overlay",
    "process_tile",
    "load_points",
    "make_map"
]

@dataclass
class TileJob:
    """
    Everything a worker needs to process one tile.

    Attributes:
        tag (str): Identifier of the tile, used in events and file names.
        tile (Rect): Rasterization bounds, one DFM side long.
        cut (Rect): Output bounds; objects are clipped to it.
        points (PointCloud): Points inside the tile bounds, in the working CRS.
        stats (LidarStats): Survey statistics fixing the raster normalisation.
        epsg (Optional[int]): Working CRS, written into the GeoTIFFs.
        area_filter (Optional[BaseGeometry]): Optional region the output is further restricted to.
    """
    tag: str
    tile: Rect
    cut: Rect
    points: PointCloud
    stats: LidarStats
    epsg: Optional[int] = None
    area_filter: Optional[BaseGeometry] = None

def cut_overlay(cut: Rect, convex_hull: Polygon, area_filter: Optional[BaseGeometry] = None) -> BaseGeometry:
    """Region a tile's objects are clipped to: its cut bounds within the data hull."""
    overlay = cut.to_polygon().intersection(convex_hull)
    if area_filter is not None and not overlay.is_empty:
        overlay = overlay.intersection(area_filter)
    return overlay

def _append(document: MapDocument, output: StepOutput):
    for symbol, objects in output.by_symbol().items():
        document.reserve_capacity(symbol, len(objects))
        for obj in objects:
            document.add_object(obj)

def process_tile(
    job: TileJob,
    params: MapParameters,
    document: MapDocument,
    sink: Optional[EventSink] = None
    ) -> bool:
    """
    Rasterizes one tile, runs the enabled feature steps and appends the results.

    Args:
        job (TileJob): The tile to process.
        params (MapParameters): Run configuration.
        document (MapDocument): Shared document receiving the objects.
        sink (Optional[EventSink]): Progress channel.

    Returns:
        bool: False if the tile had no output region, True otherwise.

    Raises:
        NoGroundPointsError: If the tile holds fewer ground points than params.min_ground_points.
    """
    sink = sink or LoggingSink(log)

    ground = job.points.ground()
    if len(ground) < max(1, params.min_ground_points):
        raise NoGroundPointsError(
            f"Tile {job.tag} has {len(ground)} ground points (< {params.min_ground_points}), skipped"
        )

    side = int(round(job.tile.width / CELL_SIZE))
    rasters = compute_dfms(ground, job.points, job.tile.top_left, job.stats, cell_size=CELL_SIZE, side=side)

    hull = job.points.convex_hull()
    overlay = cut_overlay(job.cut, hull, job.area_filter)
    if overlay.is_empty:
        log.debug(f"Tile {job.tag} has no data inside its cut bounds")
        sink.emit(TaskComplete(job.tag))
        return False

    z_range = rasters.z_range
    output = StepOutput()

    if params.basemap_enabled:
        output.extend(compute_basemap(rasters.dem, z_range, overlay, params))
    if params.contours:
        output.extend(compute_contours(rasters.dem, z_range, overlay, params))
    if params.vegetation:
        output.extend(compute_vegetation(rasters.drm, hull, overlay, params))

    slope_grid = None
    if params.cliffs or params.write_tiffs:
        slope_grid = slope(rasters.dem, params.slope_kernel_radius)
    if params.cliffs:
        output.extend(compute_cliffs(slope_grid, hull, overlay, params))
    if params.intensity and params.intensity_filters:
        output.extend(compute_intensity(rasters.dim, hull, overlay, params))

    if output.orphans > 0:
        error = TopologyError(f"Tile {job.tag}: {output.orphans} hole contours matched no exterior and were dropped")
        sink.emit(ErrorEvent(str(error), fatal=False))

    _append(document, output)

    if params.write_tiffs:
        directory = Path(params.tiff_directory)
        save_dfm(rasters.dem, directory / f"dem_{job.tag}.tif", crs=job.epsg)
        save_dfm(rasters.drm, directory / f"drm_{job.tag}.tif", crs=job.epsg)
        save_dfm(rasters.dim, directory / f"dim_{job.tag}.tif", crs=job.epsg)
        save_dfm(slope_grid, directory / f"slope_{job.tag}.tif", crs=job.epsg)

    log.debug(f"Tile {job.tag}: {len(output.objects)} map objects")
    sink.emit(TaskComplete(job.tag))
    return True

def _file_points(survey: Survey, idx: int, bounds: Rect, chunk_size: int) -> List[PointCloud]:
    survey_file = survey.files[idx]
    parts = []
    for chunk in PointCloud.iter_chunks(survey_file.path, chunk_size=chunk_size):
        if survey_file.epsg != survey.epsg:
            x, y = reproject_xy(survey_file.epsg, survey.epsg, chunk.x, chunk.y)
            chunk = PointCloud.from_arrays(
                x, y, chunk.z,
                intensity=chunk.intensity,
                return_number=chunk.return_number,
                classification=chunk.classification
            )
        parts.append(chunk.crop(*bounds.as_tuple()))
    return parts

def load_points(
    survey: Survey,
    indices: Sequence[int],
    bounds: Rect,
    chunk_size: int = 1_000_000,
    sink: Optional[EventSink] = None
    ) -> PointCloud:
    """
    Points of the given survey files that fall inside bounds, in the working CRS.

    Files are streamed in chunks; only the points inside bounds are kept. A file
    whose points cannot be reprojected or read contributes nothing and is reported
    as a non-fatal error.
    """
    sink = sink or LoggingSink(log)
    parts = []
    for idx in indices:
        survey_file = survey.files[idx]
        if not survey_file.bounds.intersects(bounds):
            continue
        try:
            parts.extend(_file_points(survey, idx, bounds, chunk_size))
        except (ProjectionFailureError, UnreadableInputError) as e:
            log.warning(f"Dropping the points of {survey_file.path}: {e}")
            sink.emit(ErrorEvent(f"Points of {survey_file.path.name} were dropped: {e}", fatal=False))
    return PointCloud.concatenate(parts)

def _run_tile(job, params, document, sink, cancel_event) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return False
    try:
        return process_tile(job, params, document, sink)
    except OrimapError as e:
        if not e.recoverable:
            raise
        log.warning(str(e))
        sink.emit(ErrorEvent(str(e), fatal=False))
        return False

def _fatal(sink: EventSink, error: Exception):
    log.error(str(error))
    sink.emit(ErrorEvent(str(error), fatal=True))

def make_map(
    paths: Sequence[Union[str, Path]],
    params: Optional[MapParameters] = None,
    sink: Optional[EventSink] = None,
    workers: Optional[int] = None,
    polygon_filter: Optional[BaseGeometry] = None,
    cancel_event: Optional[threading.Event] = None
    ) -> Optional[MapDocument]:
    """
    Generates a map document from a set of lidar files.

    Args:
        paths (Sequence[Union[str, Path]]): Input .las/.laz files.
        params (Optional[MapParameters]): Run configuration. Defaults to MapParameters().
        sink (Optional[EventSink]): Progress channel. Defaults to a LoggingSink.
        workers (Optional[int]): Thread pool size. None uses the hardware parallelism.
        polygon_filter (Optional[BaseGeometry]): Restrict the map to this region (working CRS).
        cancel_event (Optional[threading.Event]): Set to stop the run; checked before each tile.

    Returns:
        Optional[MapDocument]: The frozen document, or None if the run was cancelled.

    Raises:
        UnreadableInputError: If no input file is readable.
        AreaMismatchError: If the polygon filter misses every input file.
        PoisonedSharedStateError: If a worker failed while appending to the document.
        ProjectionFailureError: If coordinates cannot be brought into the working CRS.
    """
    params = params or MapParameters()
    sink = sink or LoggingSink(log)
    workers = determine_worker_count(workers)

    sink.emit(LogMessage(f"Generating map from {len(paths)} lidar files on {workers} threads"))

    try:
        survey = read_survey(paths, params.default_epsg)
    except OrimapError as e:
        _fatal(sink, e)
        raise
    for warning in survey.warnings:
        sink.emit(ErrorEvent(warning, fatal=False))

    # files of one connected group are processed back to back
    selected = [i for group in survey.components for i in group]
    if polygon_filter is not None:
        selected = [i for i in selected if survey.files[i].bounds.to_polygon().intersects(polygon_filter)]
        if not selected:
            error = AreaMismatchError("The selected area does not intersect any of the lidar files")
            _fatal(sink, error)
            raise error
    if len(survey.components) > 1:
        sink.emit(LogMessage(f"The lidar files form {len(survey.components)} separate groups"))

    stats = survey.stats
    document = MapDocument(survey.ref_point, survey.epsg, params.scale)

    for count, fi in enumerate(selected, start=1):
        survey_file = survey.files[fi]
        neighbors = survey.neighbors[fi]
        sink.emit(LogMessage(f"Processing lidar file {count} of {len(selected)}: {survey_file.path.name}"))

        try:
            tiles = retile_bounds(survey_file.bounds, neighbors.flags, cut_bounds=survey.cut_bounds(fi))
        except ValueError as e:
            sink.emit(ErrorEvent(f"Skipping {survey_file.path.name}: {e}", fatal=False))
            continue
        covered = Rect(
            min(t.min_x for t in tiles.tiles), min(t.min_y for t in tiles.tiles),
            max(t.max_x for t in tiles.tiles), max(t.max_y for t in tiles.tiles)
        )
        cloud = load_points(survey, [fi] + neighbors.indices(), covered, sink=sink)

        jobs: List[TileJob] = []
        for ti, (tile, cut) in enumerate(tiles):
            if polygon_filter is not None and not cut.to_polygon().intersects(polygon_filter):
                continue
            jobs.append(TileJob(
                tag=f"{survey_file.path.stem}_{ti}",
                tile=tile,
                cut=cut,
                points=cloud.crop(*tile.as_tuple()),
                stats=stats,
                epsg=survey.epsg,
                area_filter=polygon_filter
            ))
        del cloud

        if jobs:
            estimate = estimate_tile_memory(int(np.mean([len(j.points) for j in jobs])), workers)
            if not estimate.is_safe:
                sink.emit(ErrorEvent(f"Tile workers may exhaust system memory. {estimate.reason}", fatal=False))

        sink.emit(ProgressStart(total=len(jobs), label=survey_file.path.name))
        increment = 1.0 / len(jobs) if jobs else 1.0

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(_run_tile, job, params, document, sink, cancel_event) for job in jobs
            ]
            try:
                for future in as_completed(futures):
                    future.result()
                    sink.emit(ProgressIncrement(increment))
            except Exception as e:
                for future in futures:
                    future.cancel()
                _fatal(sink, e)
                raise

        if cancel_event is not None and cancel_event.is_set():
            sink.emit(LogMessage("Map generation cancelled"))
            return None

        document.merge_lines(params.merge_tolerance)
        sink.emit(ProgressFinish(label=survey_file.path.name))

    document.freeze()
    sink.emit(LogMessage(f"Map generation finished with {len(document)} map objects"))
    return document
