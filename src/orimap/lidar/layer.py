# src/orimap/lidar/layer.py

"""
This module defines the core data structure for lidar point clouds, along with methods for loading and basic manipulation.
"""

from pathlib import Path
from dataclasses import dataclass
from typing import Union, Generator, Iterable, Optional
import logging

import laspy
import numpy as np
from scipy.spatial import ConvexHull, QhullError
from shapely.geometry import Polygon, box

from orimap.constants import GROUND_CLASS
from orimap.errors import UnreadableInputError

log = logging.getLogger(__name__)

__all__ = [
    "PointCloud"
]

@dataclass
class PointCloud:
    """
    Core data structure for holding LiDAR point cloud data and bounding properties.

    Primary point cloud attributes:
        x (np.ndarray): X coordinates of points.
        y (np.ndarray): Y coordinates of points.
        z (np.ndarray): Z coordinates (elevation) of points.
        intensity (np.ndarray): Return intensity of each point.
        return_number (np.ndarray): Return number for each point (1 for first return, etc.).
        classification (np.ndarray): Point classifications (ground, vegetation, etc.).

    Secondary attributes for bounding properties, used for tiling and rasterization:
        min_x, max_x, min_y, max_y, min_z, max_z (float): Extent of the cloud.
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    intensity: np.ndarray
    return_number: np.ndarray
    classification: np.ndarray

    min_x: float
    max_x: float
    min_y: float
    max_y: float
    min_z: float
    max_z: float

    def __len__(self) -> int:
        return len(self.x)

    @property
    def is_empty(self) -> bool:
        return len(self.x) == 0

    @classmethod
    def from_arrays(
        cls,
        x: np.ndarray,
        y: np.ndarray,
        z: np.ndarray,
        intensity: Optional[np.ndarray] = None,
        return_number: Optional[np.ndarray] = None,
        classification: Optional[np.ndarray] = None
        ) -> 'PointCloud':
        """
        Builds a point cloud from raw arrays and derives its bounds.

        Missing attributes default to zero intensity, first return and ground class.
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        n = len(x)
        if len(y) != n or len(z) != n:
            raise ValueError(f"Coordinate arrays differ in length: {n}, {len(y)}, {len(z)}")

        if intensity is None:
            intensity = np.zeros(n, dtype=np.float64)
        if return_number is None:
            return_number = np.ones(n, dtype=np.uint8)
        if classification is None:
            classification = np.full(n, GROUND_CLASS, dtype=np.uint8)

        if n == 0:
            bounds = (0.0,) * 6
        else:
            bounds = (
                float(x.min()), float(x.max()),
                float(y.min()), float(y.max()),
                float(z.min()), float(z.max())
            )

        return cls(
            x=x, y=y, z=z,
            intensity=np.asarray(intensity, dtype=np.float64),
            return_number=np.asarray(return_number),
            classification=np.asarray(classification),
            min_x=bounds[0], max_x=bounds[1],
            min_y=bounds[2], max_y=bounds[3],
            min_z=bounds[4], max_z=bounds[5]
        )

    @classmethod
    def _from_las_points(cls, points, header) -> 'PointCloud':
        # map laspy point attributes to our PointCloud structure
        return cls(
            x=np.array(points.x, dtype=np.float64),
            y=np.array(points.y, dtype=np.float64),
            z=np.array(points.z, dtype=np.float64),
            intensity=np.array(points.intensity, dtype=np.float64),
            return_number=np.array(points.return_number),
            classification=np.array(points.classification),
            min_x=header.x_min,
            max_x=header.x_max,
            min_y=header.y_min,
            max_y=header.y_max,
            min_z=header.z_min,
            max_z=header.z_max
        )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path]
        ) -> 'PointCloud':
        """
        Loads the entirety of a LiDAR point cloud into memory.

        Args:
            path (Union[str, Path]): Target .las or .laz file.

        Returns:
            PointCloud: Fully populated object.

        Raises:
            FileNotFoundError: If the file does not exist.
            UnreadableInputError: If laspy cannot decode the file.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                las = fh.read()
                return cls._from_las_points(las, las.header)
        except laspy.LaspyException as e:
            raise UnreadableInputError(f"Failed to decode lidar file {path}: {e}") from e

    @classmethod
    def iter_chunks(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000
        ) -> Generator['PointCloud', None, None]:
        """
        Iterates over a LiDAR file in chunks to maintain strict memory safety.

        Args:
            path (Union[str, Path]): Target .las or .laz file.
            chunk_size (int): Number of points to stream per chunk.

        Yields:
            Generator[PointCloud, None, None]: Sequential point cloud fragments inheriting the file bounds.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Lidar file not found: {path}")

        try:
            with laspy.open(path) as fh:
                header = fh.header
                for chunk in fh.chunk_iterator(chunk_size):
                    yield cls._from_las_points(chunk, header)
        except laspy.LaspyException as e:
            raise UnreadableInputError(f"Failed to stream lidar file {path}: {e}") from e

    @classmethod
    def concatenate(cls, clouds: Iterable['PointCloud']) -> 'PointCloud':
        """Joins several clouds into one, recomputing bounds."""
        clouds = [c for c in clouds if not c.is_empty]
        if not clouds:
            return cls.from_arrays(np.empty(0), np.empty(0), np.empty(0))
        return cls.from_arrays(
            np.concatenate([c.x for c in clouds]),
            np.concatenate([c.y for c in clouds]),
            np.concatenate([c.z for c in clouds]),
            intensity=np.concatenate([c.intensity for c in clouds]),
            return_number=np.concatenate([c.return_number for c in clouds]),
            classification=np.concatenate([c.classification for c in clouds])
        )

    def select(self, mask: np.ndarray) -> 'PointCloud':
        """Subset of points selected by a boolean mask, with bounds recomputed."""
        return PointCloud.from_arrays(
            self.x[mask], self.y[mask], self.z[mask],
            intensity=self.intensity[mask],
            return_number=self.return_number[mask],
            classification=self.classification[mask]
        )

    def crop(self, min_x: float, min_y: float, max_x: float, max_y: float) -> 'PointCloud':
        """Points inside the rectangle, half-open on the max side."""
        mask = (self.x >= min_x) & (self.x < max_x) & (self.y >= min_y) & (self.y < max_y)
        return self.select(mask)

    def ground(self) -> 'PointCloud':
        return self.select(self.classification == GROUND_CLASS)

    def convex_hull(self) -> Polygon:
        """
        Convex hull of the XY footprint.

        Clouds with fewer than three distinct points, or collinear points, yield their envelope.
        """
        if self.is_empty:
            return Polygon()

        xy = np.column_stack((self.x, self.y))
        unique = np.unique(xy, axis=0)
        if len(unique) >= 3:
            try:
                hull = ConvexHull(unique)
                # scipy returns 2D hull vertices in counterclockwise order
                return Polygon(unique[hull.vertices])
            except QhullError:
                log.debug("Degenerate point footprint, falling back to envelope")

        return box(self.min_x, self.min_y, self.max_x, self.max_y)
