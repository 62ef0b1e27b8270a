# src/orimap/pipeline/steps.py

"""
This module implements the per-tile feature steps of the pipeline.

Each step turns one DFM into map objects on thread-local data only: contour
extraction, polygon classification, simplification and clipping to the tile's
cut overlay. The objects are handed back to the orchestrator, which appends
them to the shared document.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import logging
import math

from shapely.geometry import Polygon

from orimap.geometry.contour import marching_squares
from orimap.geometry.lines import clip_lines, simplify_lines
from orimap.geometry.polygon import (
    apply_buffer_rule,
    clip_polygons,
    explode_polygons,
    from_contours,
    remove_small_polygons,
    simplify_polygons,
)
from orimap.map.objects import AreaObject, LineObject, MapObject, PointObject, default_tags
from orimap.map.symbols import Symbol
from orimap.params import ContourAlgorithm, MapParameters, Threshold
from orimap.raster.filters import smoothen, smoothen_normals
from orimap.raster.layer import Dfm

log = logging.getLogger(__name__)

__all__ = [
    "StepOutput",
    "contour_levels",
    "classify_level",
    "compute_basemap",
    "compute_contours",
    "compute_area_class",
    "compute_vegetation",
    "compute_cliffs",
    "compute_intensity"
]

# Normal smoothing settings of the SMOOTH contour algorithm
SMOOTHING_MAX_NORM_DIFF = 15.0
SMOOTHING_FILTER_SIZE = 15

@dataclass
class StepOutput:
    """
    Map objects produced by a step, plus the rings the polygon classifier could not place.
    """
    objects: List[MapObject] = field(default_factory=list)
    orphans: int = 0

    def extend(self, other: 'StepOutput'):
        self.objects.extend(other.objects)
        self.orphans += other.orphans

    def by_symbol(self) -> Dict[Symbol, List[MapObject]]:
        out: Dict[Symbol, List[MapObject]] = {}
        for obj in self.objects:
            out.setdefault(obj.symbol, []).append(obj)
        return out

def contour_levels(z_range: Tuple[float, float], interval: float) -> List[float]:
    """
    Levels of a contour ladder covering z_range.

    The ladder starts at the last multiple of the interval at or below the
    minimum and has ceil((max - min) / interval) + 1 levels.
    """
    if interval <= 0:
        raise ValueError(f"Contour interval must be positive, got {interval}")
    z_min, z_max = z_range
    start = math.floor(z_min / interval) * interval
    count = int(math.ceil((z_max - z_min) / interval)) + 1
    return [round(start + k * interval, 6) for k in range(count)]

def _is_multiple(value: float, step: float) -> bool:
    ratio = value / step
    return abs(ratio - round(ratio)) < 1e-6

def classify_level(z: float, contour_interval: float) -> Symbol:
    """Index contour every fifth interval, contour on the interval, form line in between."""
    if _is_multiple(z, 5.0 * contour_interval):
        return Symbol.INDEX_CONTOUR
    if _is_multiple(z, contour_interval):
        return Symbol.CONTOUR
    return Symbol.FORM_LINE

def compute_basemap(
    dem: Dfm,
    z_range: Tuple[float, float],
    cut_overlay: Polygon,
    params: MapParameters
    ) -> StepOutput:
    """
    Dense basemap contours at the basemap interval.
    """
    out = StepOutput()
    for level in contour_levels(z_range, params.basemap_interval):
        contours = marching_squares(dem, level)
        # clip first so cuts shared with a neighbouring tile keep identical endpoints
        lines = clip_lines(contours.lines, cut_overlay)
        for line in simplify_lines(lines, params.simplification_distance):
            out.objects.append(LineObject(Symbol.BASEMAP_CONTOUR, line, default_tags(level)))
    return out

def compute_contours(
    dem: Dfm,
    z_range: Tuple[float, float],
    cut_overlay: Polygon,
    params: MapParameters
    ) -> StepOutput:
    """
    Contour ladder with index contours, optional form lines and dot knolls.

    Small closed contours around high ground whose area lies within the dot
    knoll range are emitted as dot knoll points instead of lines.

    Args:
        dem (Dfm): Elevation model of the tile.
        z_range (Tuple[float, float]): Elevation range of the tile.
        cut_overlay (Polygon): Output region of the tile.
        params (MapParameters): Run configuration.

    Returns:
        StepOutput: Line and point objects.
    """
    if params.contour_algorithm == ContourAlgorithm.SMOOTH:
        dem = smoothen_normals(dem, SMOOTHING_MAX_NORM_DIFF, SMOOTHING_FILTER_SIZE, params.smoothing_steps)

    knoll_min, knoll_max = params.dot_knoll_area
    out = StepOutput()
    for level in contour_levels(z_range, params.effective_interval):
        symbol = classify_level(level, params.contour_interval)
        contours = marching_squares(dem, level)
        lines = clip_lines(contours.lines, cut_overlay)

        for line in simplify_lines(lines, params.simplification_distance):
            if line.is_closed and len(line.coords) >= 4:
                ring = Polygon(line.coords)
                # knolls are enclosed counter-clockwise, depressions clockwise
                if ring.exterior.is_ccw and knoll_min <= ring.area <= knoll_max:
                    if cut_overlay.contains(ring.centroid):
                        out.objects.append(PointObject(Symbol.DOT_KNOLL, ring.centroid, default_tags(level)))
                    continue
            out.objects.append(LineObject(symbol, line, default_tags(level)))

    return out

def compute_area_class(
    dfm: Dfm,
    threshold: Threshold,
    convex_hull: Polygon,
    symbol: Symbol,
    min_area: float = 0.0
    ) -> Tuple[List[Polygon], int]:
    """
    Polygons of the region on the feature side of a threshold.

    Args:
        dfm (Dfm): Grid to classify.
        threshold (Threshold): Isovalue and whether the feature lies above or below it.
        convex_hull (Polygon): Region with data.
        symbol (Symbol): Symbol the polygons are destined for (for logging).
        min_area (float): Smallest polygon kept by the classifier.

    Returns:
        Tuple[List[Polygon], int]: Polygons and the number of orphaned hole rings.
    """
    contours = marching_squares(dfm, threshold.value, closed=True)
    hint = dfm.center_value() >= threshold.value
    result = from_contours(contours, convex_hull, min_area, hint, invert=threshold.upper)
    log.debug(
        f"{symbol.name} at {threshold.value:.2f}: {len(result)} polygons, {result.discarded} discarded"
    )
    return result.polygons, len(result.orphans)

def _prefilter(dfm: Dfm, params: MapParameters) -> Dfm:
    """Optional box smoothing of a grid before it is classified into areas."""
    if params.area_smoothing > 0:
        return smoothen(dfm, radius=1, iterations=params.area_smoothing)
    return dfm

def _finish_areas(
    polygons: List[Polygon],
    symbol: Symbol,
    cut_overlay: Polygon,
    params: MapParameters,
    buffered: bool
    ) -> List[AreaObject]:
    polygons = simplify_polygons(polygons, params.simplification_distance)
    if buffered:
        for rule in params.buffer_rules:
            polygons = apply_buffer_rule(polygons, rule, params.simplification_distance)
    polygons = remove_small_polygons(polygons, symbol.min_size(params.scale))
    polygons = clip_polygons(polygons, cut_overlay)
    return [AreaObject(symbol, p, default_tags()) for p in polygons]

def compute_vegetation(
    drm: Dfm,
    convex_hull: Polygon,
    cut_overlay: Polygon,
    params: MapParameters
    ) -> StepOutput:
    """
    Rough open land below the yellow threshold and three green bands above the green thresholds.
    """
    classes = [
        (Threshold.upper_bound(params.yellow), Symbol.ROUGH_OPEN_LAND),
        (Threshold.lower_bound(params.green[0]), Symbol.LIGHT_GREEN),
        (Threshold.lower_bound(params.green[1]), Symbol.MEDIUM_GREEN),
        (Threshold.lower_bound(params.green[2]), Symbol.DARK_GREEN),
    ]
    drm = _prefilter(drm, params)
    out = StepOutput()
    for threshold, symbol in classes:
        polygons, orphans = compute_area_class(
            drm, threshold, convex_hull, symbol, symbol.min_size(params.scale)
        )
        out.orphans += orphans
        out.objects.extend(_finish_areas(polygons, symbol, cut_overlay, params, buffered=False))
    return out

def compute_cliffs(
    slope: Dfm,
    convex_hull: Polygon,
    cut_overlay: Polygon,
    params: MapParameters
    ) -> StepOutput:
    """
    Steep terrain (slope above the cliff threshold) as gigantic boulder areas.
    """
    symbol = Symbol.GIGANTIC_BOULDER
    slope = _prefilter(slope, params)
    polygons, orphans = compute_area_class(slope, Threshold.lower_bound(params.cliff), convex_hull, symbol)
    return StepOutput(_finish_areas(polygons, symbol, cut_overlay, params, buffered=True), orphans)

def compute_intensity(
    dim: Dfm,
    convex_hull: Polygon,
    cut_overlay: Polygon,
    params: MapParameters
    ) -> StepOutput:
    """
    Areas whose normalised ground intensity falls within each intensity filter band.
    """
    dim = _prefilter(dim, params)
    out = StepOutput()
    for band in params.intensity_filters:
        lower, lower_orphans = compute_area_class(
            dim, Threshold.lower_bound(band.low), convex_hull, band.symbol
        )
        upper, upper_orphans = compute_area_class(
            dim, Threshold.upper_bound(band.high), convex_hull, band.symbol
        )
        out.orphans += lower_orphans + upper_orphans

        polygons = []
        for a in lower:
            for b in upper:
                if a.intersects(b):
                    polygons.extend(explode_polygons(a.intersection(b)))

        out.objects.extend(_finish_areas(polygons, band.symbol, cut_overlay, params, buffered=True))
    return out
