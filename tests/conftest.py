# tests/conftest.py

import pytest
import numpy as np

from helpers import ORIGIN_X, ORIGIN_Y, UTM33, grid_points, hill, write_las
from orimap.lidar.layer import PointCloud
from orimap.raster.layer import Dfm

@pytest.fixture
def las_factory(tmp_path):
    """
    Fixture: returns a function writing synthetic LAS files into tmp_path.
    """
    def _make(name, x, y, z, **kwargs):
        return write_las(tmp_path / name, x, y, z, **kwargs)
    return _make

@pytest.fixture
def hill_cloud():
    """A 64 x 64 m ground-only cloud of a hill centred in the area."""
    x, y = grid_points(0.0, 0.0, 64.0, 64.0)
    z = hill(x, y, 32.0, 32.0, height=10.0, sigma=12.0)
    return PointCloud.from_arrays(x, y, z)

@pytest.fixture
def hill_las(las_factory):
    """A 150 x 150 m LAS file in UTM 33N holding a single hill."""
    x, y = grid_points(ORIGIN_X, ORIGIN_Y, ORIGIN_X + 150.0, ORIGIN_Y + 150.0)
    z = hill(x, y, ORIGIN_X + 75.0, ORIGIN_Y + 75.0)
    rng = np.random.default_rng(42)
    intensity = rng.integers(50, 150, size=len(x))
    return las_factory("hill.las", x, y, z, intensity=intensity, epsg=UTM33)

@pytest.fixture
def hill_pair_las(las_factory):
    """Two adjacent 100 x 100 m LAS files sharing one hill across their common edge."""
    paths = []
    for k in range(2):
        min_x = ORIGIN_X + 100.0 * k
        x, y = grid_points(min_x, ORIGIN_Y, min_x + 100.0, ORIGIN_Y + 100.0)
        z = hill(x, y, ORIGIN_X + 100.0, ORIGIN_Y + 50.0, sigma=25.0)
        paths.append(las_factory(f"pair_{k}.las", x, y, z, epsg=UTM33))
    return paths

@pytest.fixture
def block_dfm():
    """
    40 x 40 grid with 1 m cells: a 20 x 20 plateau at 200 on a base of 100.
    """
    data = np.full((40, 40), 100.0)
    data[10:30, 10:30] = 200.0
    return Dfm(data, 0.0, 40.0, 1.0)

@pytest.fixture
def ramp_dfm():
    """20 x 20 grid with 1 m cells whose value equals the column index (rising eastwards)."""
    data = np.tile(np.arange(20, dtype=np.float64), (20, 1))
    return Dfm(data, 0.0, 20.0, 1.0)
