# src/orimap/crs.py

"""
This module detects the coordinate reference system of lidar files and
reprojects coordinates between EPSG codes.

Geometry that failed to reproject is never passed on: every failure,
including coordinates that come back as inf or NaN, raises
ProjectionFailureError.
"""

from functools import lru_cache
from typing import Optional, Tuple
import logging

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError

from orimap.errors import NoCrsDetectedError, ProjectionFailureError

log = logging.getLogger(__name__)

__all__ = [
    "detect_crs",
    "resolve_crs",
    "reproject",
    "reproject_xy"
]

def detect_crs(header) -> int:
    """
    EPSG code of the CRS declared in a LAS header.

    Args:
        header (laspy.LasHeader): Header of the lidar file.

    Returns:
        int: EPSG code.

    Raises:
        NoCrsDetectedError: If the header declares no CRS, or one without an EPSG code.
    """
    try:
        crs = header.parse_crs()
    except (CRSError, ValueError) as e:
        raise NoCrsDetectedError(f"Malformed CRS record in lidar header: {e}") from e

    if crs is None:
        raise NoCrsDetectedError("Lidar header declares no CRS")

    epsg = crs.to_epsg()
    if epsg is None:
        raise NoCrsDetectedError(f"CRS '{crs.name}' has no EPSG code")
    return int(epsg)

def resolve_crs(header, default_epsg: Optional[int] = None) -> Tuple[Optional[int], bool]:
    """
    EPSG code of a file, falling back to the default.

    Returns:
        Tuple[Optional[int], bool]: The EPSG code (None if unknown and no default)
            and whether the code was detected in the header.
    """
    try:
        return detect_crs(header), True
    except NoCrsDetectedError as e:
        log.warning(f"{e}; using default EPSG:{default_epsg}")
        return default_epsg, False

@lru_cache(maxsize=32)
def _transformer(epsg_from: int, epsg_to: int) -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(epsg_from), CRS.from_epsg(epsg_to), always_xy=True)

def reproject_xy(
    epsg_from: Optional[int],
    epsg_to: Optional[int],
    x: np.ndarray,
    y: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reprojects coordinate arrays from one EPSG code to another.

    Arrays are returned unchanged when both codes are equal.

    Raises:
        ProjectionFailureError: If either CRS is unknown, pyproj fails, or the result is not finite.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if epsg_from == epsg_to:
        return x, y
    if epsg_from is None or epsg_to is None:
        raise ProjectionFailureError(f"Cannot reproject between EPSG:{epsg_from} and EPSG:{epsg_to}")

    try:
        tx, ty = _transformer(int(epsg_from), int(epsg_to)).transform(x, y)
    except (CRSError, ProjError) as e:
        raise ProjectionFailureError(f"Failed to reproject EPSG:{epsg_from} → EPSG:{epsg_to}: {e}") from e

    tx = np.asarray(tx, dtype=np.float64)
    ty = np.asarray(ty, dtype=np.float64)
    if not (np.all(np.isfinite(tx)) and np.all(np.isfinite(ty))):
        raise ProjectionFailureError(
            f"Reprojection EPSG:{epsg_from} → EPSG:{epsg_to} produced non-finite coordinates"
        )
    return tx, ty

def reproject(epsg_from: Optional[int], epsg_to: Optional[int], points) -> np.ndarray:
    """
    Reprojects an (N, 2) array of x/y coordinates.

    Args:
        epsg_from (Optional[int]): Source EPSG code.
        epsg_to (Optional[int]): Target EPSG code.
        points: Array-like of shape (N, 2).

    Returns:
        np.ndarray: Reprojected coordinates, shape (N, 2).
    """
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"Expected points of shape (N, 2), got {points.shape}")
    x, y = reproject_xy(epsg_from, epsg_to, points[:, 0], points[:, 1])
    return np.column_stack((x, y))
