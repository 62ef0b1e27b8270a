# tests/helpers.py

import numpy as np
import laspy
from pyproj import CRS

UTM33 = 32633
ORIGIN_X = 500_000.0
ORIGIN_Y = 6_600_000.0

def hill(x, y, cx, cy, height=20.0, sigma=30.0, base=100.0):
    """Gaussian hill on a flat base."""
    return base + height * np.exp(-((x - cx) ** 2 + (y - cy) ** 2) / (2.0 * sigma ** 2))

def grid_points(min_x, min_y, max_x, max_y, spacing=0.5):
    """Regular point lattice offset by half a spacing, one point per 0.5 m cell."""
    xs = np.arange(min_x + spacing / 2.0, max_x, spacing)
    ys = np.arange(min_y + spacing / 2.0, max_y, spacing)
    xx, yy = np.meshgrid(xs, ys)
    return xx.ravel(), yy.ravel()

def write_las(path, x, y, z, intensity=None, return_number=None, classification=None, epsg=None):
    """Writes a LAS 1.4 file from arrays, optionally declaring a CRS."""
    n = len(x)
    header = laspy.LasHeader(point_format=6, version="1.4")
    header.offsets = np.array([np.min(x), np.min(y), np.min(z)])
    header.scales = np.array([0.001, 0.001, 0.001])
    if epsg is not None:
        header.add_crs(CRS.from_epsg(epsg))

    las = laspy.LasData(header)
    las.x = np.asarray(x)
    las.y = np.asarray(y)
    las.z = np.asarray(z)

    if intensity is None:
        intensity = np.full(n, 100)
    if return_number is None:
        return_number = np.ones(n)
    if classification is None:
        classification = np.full(n, 2)

    las.intensity = np.asarray(intensity, dtype=np.uint16)
    las.return_number = np.asarray(return_number, dtype=np.uint8)
    las.number_of_returns = np.asarray(return_number, dtype=np.uint8)
    las.classification = np.asarray(classification, dtype=np.uint8)
    las.write(str(path))
    return path
