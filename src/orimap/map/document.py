# src/orimap/map/document.py

"""
This module defines the map document that accumulates map objects from all tile workers.

Tile workers compute on private data and only touch the document to reserve
room for, and append, their finished objects. Those two calls are the only
critical sections. An exception raised inside a critical section poisons the
document: every later access raises PoisonedSharedStateError and the run must
be abandoned.
"""

from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union
import json
import logging
import threading

import geopandas as gpd
import numpy as np
from pyproj.exceptions import CRSError, ProjError

from orimap.constants import MERGE_DELTA
from orimap.errors import PoisonedSharedStateError, ProjectionFailureError
from orimap.geometry.lines import merge_line_strings
from .objects import ELEVATION_TAG, AreaObject, LineObject, MapObject, PointObject
from .symbols import GeometryKind, Symbol

log = logging.getLogger(__name__)

__all__ = [
    "MapDocument"
]

_OBJECT_TYPES = (PointObject, LineObject, AreaObject)

class _SymbolBuffer:
    """Growable object buffer with explicit spare capacity."""

    def __init__(self):
        self._items: List[Optional[MapObject]] = []
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[MapObject]:
        return iter(self._items[:self._size])

    @property
    def capacity(self) -> int:
        return len(self._items)

    def reserve(self, additional: int):
        free = len(self._items) - self._size
        if additional > free:
            self._items.extend([None] * (additional - free))

    def append(self, obj: MapObject):
        if self._size < len(self._items):
            self._items[self._size] = obj
        else:
            self._items.append(obj)
        self._size += 1

    def replace_all(self, objects: List[MapObject]):
        self._items = list(objects)
        self._size = len(self._items)

class MapDocument:
    """
    Symbol-keyed collection of map objects.

    Args:
        ref_point (Tuple[float, float]): Reference point of the map in working CRS coordinates.
        epsg (Optional[int]): EPSG code of the working CRS. None for unprojected local coordinates.
        scale (int): Map scale denominator.
    """

    def __init__(
        self,
        ref_point: Tuple[float, float] = (0.0, 0.0),
        epsg: Optional[int] = None,
        scale: int = 15_000
    ):
        self.ref_point = (float(ref_point[0]), float(ref_point[1]))
        self.epsg = epsg
        self.scale = scale
        self._buffers: Dict[Symbol, _SymbolBuffer] = defaultdict(_SymbolBuffer)
        self._lock = threading.Lock()
        self._poisoned = False
        self._frozen = False

    @contextmanager
    def _critical(self):
        with self._lock:
            if self._poisoned:
                raise PoisonedSharedStateError("Map document was poisoned by a failed worker")
            try:
                yield
            except BaseException:
                self._poisoned = True
                log.error("Failure inside a map document critical section, document poisoned")
                raise

    def _check_usable(self):
        if self._poisoned:
            raise PoisonedSharedStateError("Map document was poisoned by a failed worker")

    @property
    def is_poisoned(self) -> bool:
        return self._poisoned

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def reserve_capacity(self, symbol: Symbol, additional: int):
        """Makes room for `additional` more objects of a symbol."""
        if self._frozen:
            raise RuntimeError("Cannot reserve capacity in a frozen map document")
        with self._critical():
            if additional < 0:
                raise ValueError(f"Cannot reserve a negative capacity: {additional}")
            self._buffers[Symbol(symbol)].reserve(additional)

    def add_object(self, obj: MapObject):
        if self._frozen:
            raise RuntimeError("Cannot add objects to a frozen map document")
        with self._critical():
            if not isinstance(obj, _OBJECT_TYPES):
                raise TypeError(f"Expected a map object, got {type(obj)}")
            self._buffers[obj.symbol].append(obj)

    def add_objects(self, objects: Iterable[MapObject]):
        """Appends a batch, taking the lock once per object."""
        for obj in objects:
            self.add_object(obj)

    def freeze(self):
        """Ends the generation phase; the document becomes read-only."""
        self._check_usable()
        self._frozen = True

    def symbols(self) -> List[Symbol]:
        self._check_usable()
        with self._lock:
            return sorted(s for s, buf in self._buffers.items() if len(buf) > 0)

    def objects(self, symbol: Symbol) -> List[MapObject]:
        self._check_usable()
        with self._lock:
            buf = self._buffers.get(Symbol(symbol))
            return list(buf) if buf is not None else []

    def count(self, symbol: Symbol) -> int:
        self._check_usable()
        with self._lock:
            buf = self._buffers.get(Symbol(symbol))
            return len(buf) if buf is not None else 0

    def capacity(self, symbol: Symbol) -> int:
        self._check_usable()
        with self._lock:
            buf = self._buffers.get(Symbol(symbol))
            return buf.capacity if buf is not None else 0

    def __len__(self) -> int:
        self._check_usable()
        with self._lock:
            return sum(len(buf) for buf in self._buffers.values())

    def __iter__(self) -> Iterator[MapObject]:
        for symbol in self.symbols():
            yield from self.objects(symbol)

    def merge_lines(self, tolerance: float = MERGE_DELTA) -> int:
        """
        Joins line objects split across tile boundaries.

        Lines are grouped by symbol and elevation tag and merged end to start when
        the gap is within tolerance. Must run after all workers have finished.

        Args:
            tolerance (float): Largest endpoint gap bridged.

        Returns:
            int: Reduction in the number of line objects.
        """
        self._check_usable()
        if self._frozen:
            raise RuntimeError("Cannot merge lines in a frozen map document")

        removed = 0
        with self._lock:
            for symbol, buf in self._buffers.items():
                if symbol.kind != GeometryKind.LINE or len(buf) < 2:
                    continue

                groups: Dict[Optional[str], List[LineObject]] = defaultdict(list)
                for obj in buf:
                    groups[obj.tag(ELEVATION_TAG)].append(obj)

                merged_objects = []
                for key in sorted(groups, key=lambda k: (k is None, k or "")):
                    members = groups[key]
                    tags = min((m.tags for m in members))
                    merged = merge_line_strings([m.geometry for m in members], tolerance)
                    merged_objects.extend(LineObject(symbol, line, tags) for line in merged)

                removed += len(buf) - len(merged_objects)
                buf.replace_all(merged_objects)

        log.info(f"Line merge removed {removed} line objects")
        return removed

    def to_geodataframe(self, target_epsg: Optional[int] = None) -> gpd.GeoDataFrame:
        """
        Flattens the document into a GeoDataFrame with one row per object.

        Args:
            target_epsg (Optional[int]): Reproject into this CRS. None keeps the working CRS.

        Returns:
            gpd.GeoDataFrame: Columns symbol, symbol_name, kind, elevation, tags, geometry.
        """
        rows = []
        geoms = []
        for obj in self:
            rows.append({
                "symbol": int(obj.symbol),
                "symbol_name": obj.symbol.name,
                "kind": obj.symbol.kind.value,
                "elevation": obj.elevation,
                "tags": json.dumps(dict(obj.tags))
            })
            geoms.append(obj.geometry)

        crs = f"EPSG:{self.epsg}" if self.epsg is not None else None
        gdf = gpd.GeoDataFrame(rows, geometry=geoms, crs=crs)

        if target_epsg is None or target_epsg == self.epsg:
            return gdf
        if self.epsg is None:
            raise ProjectionFailureError(
                f"Cannot reproject a map without a working CRS to EPSG:{target_epsg}"
            )

        try:
            out = gdf.to_crs(epsg=target_epsg)
        except (CRSError, ProjError) as e:
            raise ProjectionFailureError(f"Failed to reproject map to EPSG:{target_epsg}: {e}") from e

        bounds = out.geometry.bounds.to_numpy()
        if bounds.size and not np.all(np.isfinite(bounds)):
            raise ProjectionFailureError(f"Reprojection to EPSG:{target_epsg} produced non-finite coordinates")
        return out

    def save(
        self,
        path: Union[str, Path],
        driver: str = "GPKG",
        target_epsg: Optional[int] = None,
        engine: str = "pyogrio"
    ) -> Path:
        """
        Writes the document with geopandas.

        GeoPackages get one layer per geometry kind (points, lines, areas); other
        drivers receive all objects in a single layer.
        """
        gdf = self.to_geodataframe(target_epsg)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        log.info(f"Saving {len(gdf)} map objects → {path}")
        try:
            if driver == "GPKG":
                for kind in GeometryKind:
                    layer = gdf[gdf["kind"] == kind.value]
                    if len(layer) == 0:
                        continue
                    layer.to_file(path, layer=f"{kind.value}s", driver=driver, engine=engine)
            else:
                gdf.to_file(path, driver=driver, engine=engine)
        except Exception as e:
            raise IOError(f"Failed to save map document to {path}: {e}") from e

        return path
