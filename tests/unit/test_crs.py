# tests/unit/test_crs.py

import laspy
import numpy as np
import pytest

from helpers import ORIGIN_X, ORIGIN_Y, UTM33, grid_points
from orimap.crs import detect_crs, reproject, reproject_xy, resolve_crs
from orimap.errors import NoCrsDetectedError, ProjectionFailureError

def _header(path):
    with laspy.open(path) as fh:
        return fh.header

@pytest.fixture
def crs_less_las(las_factory):
    x, y = grid_points(0.0, 0.0, 10.0, 10.0)
    return las_factory("local.las", x, y, np.zeros(len(x)))

# --- Detection ---

def test_detect_crs_from_header(hill_las):
    assert detect_crs(_header(hill_las)) == UTM33

def test_missing_crs_is_reported(crs_less_las):
    with pytest.raises(NoCrsDetectedError):
        detect_crs(_header(crs_less_las))

def test_resolve_falls_back_to_the_default(crs_less_las, hill_las):
    assert resolve_crs(_header(crs_less_las), default_epsg=25833) == (25833, False)
    assert resolve_crs(_header(crs_less_las)) == (None, False)
    assert resolve_crs(_header(hill_las), default_epsg=25833) == (UTM33, True)

# --- Reprojection ---

def test_same_crs_is_identity():
    x = np.array([1.0, 2.0])
    y = np.array([3.0, 4.0])
    tx, ty = reproject_xy(UTM33, UTM33, x, y)
    assert np.array_equal(tx, x) and np.array_equal(ty, y)
    assert np.array_equal(reproject_xy(None, None, x, y)[0], x)

def test_geographic_to_utm():
    tx, ty = reproject_xy(4326, UTM33, np.array([15.0]), np.array([0.0]))
    assert tx[0] == pytest.approx(500_000.0, abs=1e-3)
    assert ty[0] == pytest.approx(0.0, abs=1e-3)

def test_points_array_roundtrip_stays_in_place():
    points = np.array([[ORIGIN_X, ORIGIN_Y], [ORIGIN_X + 100.0, ORIGIN_Y + 100.0]])
    geographic = reproject(UTM33, 4326, points)
    assert geographic.shape == (2, 2)
    assert np.allclose(reproject(4326, UTM33, geographic), points, atol=1e-4)

def test_invalid_coordinates_fail():
    with pytest.raises(ProjectionFailureError):
        reproject_xy(4326, UTM33, np.array([15.0]), np.array([100.0]))

def test_unknown_crs_fails():
    with pytest.raises(ProjectionFailureError):
        reproject_xy(None, UTM33, np.array([0.0]), np.array([0.0]))

def test_points_shape_is_checked():
    with pytest.raises(ValueError):
        reproject(4326, UTM33, np.zeros((3, 3)))
