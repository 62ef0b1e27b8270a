# src/orimap/params.py

"""
This module defines the parameter structures that configure a map generation run.
"""

from dataclasses import dataclass, field, asdict, fields
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union, Dict, Any
import json
import logging

from orimap.constants import SIMPLIFICATION_DIST, MERGE_DELTA, TILE_SIZE
from orimap.map.symbols import Symbol, GeometryKind

log = logging.getLogger(__name__)

__all__ = [
    "ContourAlgorithm",
    "BufferDirection",
    "BufferRule",
    "IntensityFilter",
    "Threshold",
    "MapParameters"
]

class ContourAlgorithm(Enum):
    """
    Elevation model preparation used before contour extraction.

    Options:
        RAW: Contour the rasterized elevation model directly.
        SMOOTH: Apply feature preserving normal vector smoothing first.
    """
    RAW = "raw"
    SMOOTH = "smooth"

class BufferDirection(Enum):
    GROW = "grow"
    SHRINK = "shrink"

@dataclass
class BufferRule:
    """
    Morphological buffer applied to cliff and intensity polygons.

    Args:
        direction: Whether the polygons are grown or shrunk.
        amount: Buffer distance in meters.
    """
    direction: BufferDirection = BufferDirection.GROW
    amount: float = 5.0

    @property
    def distance(self) -> float:
        sign = 1.0 if self.direction == BufferDirection.GROW else -1.0
        return sign * self.amount

@dataclass
class IntensityFilter:
    """
    Band of normalized return intensity mapped onto an area symbol.

    Args:
        low: Lower bound of the normalized intensity band.
        high: Upper bound of the normalized intensity band.
        symbol: Area symbol assigned to the band.
    """
    low: float = 0.4
    high: float = 0.6
    symbol: Symbol = Symbol.BARE_ROCK

    def __post_init__(self):
        self.symbol = Symbol(self.symbol)
        if self.low >= self.high:
            raise ValueError(f"Intensity filter bounds must satisfy low < high, got {self.low} >= {self.high}")
        if self.symbol.kind != GeometryKind.AREA:
            raise ValueError(f"Intensity filters need an area symbol, got {self.symbol.name}")

@dataclass(frozen=True)
class Threshold:
    """
    Isovalue together with the side of it that forms the feature.

    Args:
        value: The isovalue to contour at.
        upper: True if the feature is the area BELOW the value (the value is an upper bound).
    """
    value: float
    upper: bool = False

    @classmethod
    def lower_bound(cls, value: float) -> "Threshold":
        return cls(value, upper=False)

    @classmethod
    def upper_bound(cls, value: float) -> "Threshold":
        return cls(value, upper=True)

@dataclass
class MapParameters:
    """
    Complete configuration of a map generation run.

    Args:
        scale: Map scale denominator.
        output_epsg: EPSG code of the output document. None keeps the working CRS.
        default_epsg: CRS assumed for files without a detectable CRS. None leaves them unprojected.
        contour_interval: Equidistance of the contour ladder in meters.
        basemap_interval: Interval of the dense basemap contours in meters (<= 0 disables).
        contour_algorithm: Elevation model preparation before contouring.
        smoothing_steps: Iterations used by the SMOOTH contour algorithm.
        form_lines: Emit form lines at half the contour interval.
        dot_knoll_area: (min, max) area in m² of closed contours rendered as dot knolls.
        green: Vegetation density thresholds for light, medium and dark green.
        yellow: Vegetation density below which land is rough open land.
        cliff: Slope (rise over run) above which terrain is mapped as cliff/boulder area.
        slope_kernel_radius: Half size in cells of the plane-fit window used for slope.
        area_smoothing: Box smoothing passes applied to the density, slope and intensity
            grids before they are classified into areas (0 disables).
        intensity_filters: Intensity bands mapped onto area symbols.
        buffer_rules: Buffers applied sequentially to cliff and intensity polygons.
        simplification_distance: Douglas-Peucker tolerance in meters.
        merge_tolerance: Endpoint distance under which lines of adjacent tiles are merged.
        min_ground_points: Minimum ground points for a tile to be processed.
        contours / basemap / vegetation / cliffs / intensity: Enable flags per feature class.
        write_tiffs: Write the per-tile DFMs as GeoTIFFs into tiff_directory.
    """
    scale: int = 15_000
    output_epsg: Optional[int] = None
    default_epsg: Optional[int] = None

    contour_interval: float = 5.0
    basemap_interval: float = 0.5
    contour_algorithm: ContourAlgorithm = ContourAlgorithm.RAW
    smoothing_steps: int = 3
    form_lines: bool = False
    dot_knoll_area: Tuple[float, float] = (10.0, 160.0)

    green: Tuple[float, float, float] = (0.4, 0.6, 0.8)
    yellow: float = 0.01
    cliff: float = 0.75
    slope_kernel_radius: int = 3
    area_smoothing: int = 0
    intensity_filters: List[IntensityFilter] = field(default_factory=list)
    buffer_rules: List[BufferRule] = field(default_factory=list)

    simplification_distance: float = SIMPLIFICATION_DIST
    merge_tolerance: float = MERGE_DELTA
    min_ground_points: int = int(TILE_SIZE)

    contours: bool = True
    basemap: bool = False
    vegetation: bool = True
    cliffs: bool = True
    intensity: bool = False

    write_tiffs: bool = False
    tiff_directory: Optional[Path] = None

    def __post_init__(self):
        self.contour_algorithm = ContourAlgorithm(self.contour_algorithm)
        self.green = tuple(float(g) for g in self.green)
        self.dot_knoll_area = tuple(float(a) for a in self.dot_knoll_area)
        self.intensity_filters = [
            f if isinstance(f, IntensityFilter) else IntensityFilter(**f) for f in self.intensity_filters
        ]
        self.buffer_rules = [
            b if isinstance(b, BufferRule) else BufferRule(BufferDirection(b["direction"]), float(b["amount"]))
            for b in self.buffer_rules
        ]
        if self.tiff_directory is not None:
            self.tiff_directory = Path(self.tiff_directory)
        self.validate()

    def validate(self):
        if self.scale <= 0:
            raise ValueError(f"Map scale must be positive, got {self.scale}")
        if self.contour_interval <= 0:
            raise ValueError(f"Contour interval must be positive, got {self.contour_interval}")
        if len(self.green) != 3 or list(self.green) != sorted(self.green):
            raise ValueError(f"Green thresholds must be three ascending values, got {self.green}")
        if self.dot_knoll_area[0] > self.dot_knoll_area[1]:
            raise ValueError(f"Dot knoll area range is inverted: {self.dot_knoll_area}")
        if self.area_smoothing < 0:
            raise ValueError(f"Area smoothing passes cannot be negative, got {self.area_smoothing}")
        if self.simplification_distance < 0 or self.merge_tolerance < 0:
            raise ValueError("Tolerances cannot be negative")
        if self.write_tiffs and self.tiff_directory is None:
            raise ValueError("write_tiffs requires a tiff_directory")

    @property
    def basemap_enabled(self) -> bool:
        return self.basemap and self.basemap_interval >= 0.1

    @property
    def effective_interval(self) -> float:
        """Contour ladder step, halved when form lines are drawn."""
        return self.contour_interval / 2.0 if self.form_lines else self.contour_interval

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["contour_algorithm"] = self.contour_algorithm.value
        out["intensity_filters"] = [
            {"low": f.low, "high": f.high, "symbol": int(f.symbol)} for f in self.intensity_filters
        ]
        out["buffer_rules"] = [
            {"direction": b.direction.value, "amount": b.amount} for b in self.buffer_rules
        ]
        out["tiff_directory"] = str(self.tiff_directory) if self.tiff_directory else None
        return out

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "MapParameters":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown map parameters: {sorted(unknown)}")
        return cls(**values)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "MapParameters":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Parameter file not found: {path}")
        with open(path, "r", encoding="utf-8") as fh:
            values = json.load(fh)
        log.debug(f"Loaded map parameters from {path}")
        return cls.from_dict(values)
