# tests/unit/test_dfm.py

import numpy as np
import pytest
import rasterio

from orimap.constants import NODATA_VAL
from orimap.raster.filters import fill_gaps, slope, smoothen, smoothen_normals
from orimap.raster.io import load_dfm, save_dfm
from orimap.raster.layer import Dfm
from orimap.raster.resources import MemoryEstimate, determine_worker_count, estimate_tile_memory

def _plane(side=20, cell_size=1.0, a=0.5, b=-0.25):
    grid = Dfm.new((0.0, side * cell_size), side=side, cell_size=cell_size, fill=0.0)
    rows, cols = np.indices((side, side))
    x, y = grid.xy(rows, cols)
    return grid.with_data(a * x + b * y)

# --- Placement ---

def test_cell_centres_and_indices():
    grid = Dfm.new((100.0, 200.0), side=4, cell_size=0.5, fill=1.0)

    assert grid.xy(0, 0) == (100.25, 199.75)
    assert grid.xy(3, 3) == (101.75, 198.25)
    assert grid.rowcol(100.25, 199.75) == (0, 0)
    assert grid.rowcol(101.9, 198.1) == (3, 3)
    assert grid.bounds == (100.0, 198.0, 102.0, 200.0)

def test_transform_matches_rasterio_convention():
    grid = Dfm.new((100.0, 200.0), side=4, cell_size=0.5)
    assert grid.transform * (0, 0) == (100.0, 200.0)
    assert grid.transform * (4, 4) == (102.0, 198.0)

def test_sample_outside_returns_nodata():
    grid = Dfm.new((0.0, 10.0), side=10, cell_size=1.0, fill=3.0)
    assert grid.sample(5.0, 5.0) == 3.0
    assert grid.sample(-1.0, 5.0) == NODATA_VAL
    assert grid.sample(5.0, 11.0) == NODATA_VAL

def test_invalid_shapes_are_rejected():
    with pytest.raises(ValueError):
        Dfm(np.zeros((3, 4)), 0.0, 0.0, 1.0)
    with pytest.raises(ValueError):
        Dfm(np.zeros((3, 3)), 0.0, 0.0, 0.0)
    with pytest.raises(TypeError):
        Dfm([[0.0]], 0.0, 0.0, 1.0)

def test_extent_runs_through_corner_cell_centres():
    grid = Dfm.new((0.0, 10.0), side=10, cell_size=1.0)
    extent = grid.extent()
    assert extent.is_closed
    assert extent.bounds == (0.5, 0.5, 9.5, 9.5)

# --- Slope ---

def test_slope_of_a_plane():
    result = slope(_plane(), kernel_radius=2)
    expected = np.hypot(0.5, 0.25)
    assert np.allclose(result.data, expected)

def test_slope_skips_nodata():
    grid = _plane()
    data = grid.data.copy()
    data[5, 5] = NODATA_VAL
    result = slope(grid.with_data(data), kernel_radius=1)

    assert result.data[5, 5] == NODATA_VAL
    assert result.data[5, 6] == pytest.approx(np.hypot(0.5, 0.25))

def test_slope_radius_must_be_positive():
    with pytest.raises(ValueError):
        slope(_plane(), kernel_radius=0)

# --- Smoothing ---

def test_smoothen_keeps_constant_grid_and_nodata():
    data = np.full((10, 10), 7.0)
    data[0, 0] = NODATA_VAL
    grid = Dfm(data, 0.0, 10.0, 1.0)

    result = smoothen(grid, radius=2, iterations=3)

    assert result.data[0, 0] == NODATA_VAL
    assert np.allclose(result.data[result.valid_mask], 7.0)

def test_smoothen_reduces_a_spike():
    data = np.zeros((9, 9))
    data[4, 4] = 9.0
    result = smoothen(Dfm(data, 0.0, 9.0, 1.0), radius=1)
    assert result.data[4, 4] == pytest.approx(1.0)

def test_smoothen_normals_keeps_flat_ground():
    grid = Dfm(np.full((12, 12), 50.0), 0.0, 12.0, 1.0)
    result = smoothen_normals(grid, filter_size=4)
    assert np.allclose(result.data, 50.0)

# --- Gap filling ---

def test_fill_gaps_interpolates_holes():
    data = np.full((10, 10), 5.0)
    data[4:6, 4:6] = NODATA_VAL
    result = fill_gaps(Dfm(data, 0.0, 10.0, 1.0))

    assert result.valid_mask.all()
    assert np.allclose(result.data, 5.0)

def test_fill_gaps_respects_the_footprint():
    data = np.full((10, 10), 5.0)
    data[4:6, 4:6] = NODATA_VAL
    footprint = np.ones((10, 10), dtype=bool)
    footprint[4, 4] = False

    result = fill_gaps(Dfm(data, 0.0, 10.0, 1.0), footprint=footprint)

    assert result.data[4, 4] == NODATA_VAL
    assert result.data[5, 5] == pytest.approx(5.0)

def test_fill_gaps_without_any_data_is_a_copy():
    grid = Dfm.new((0.0, 4.0), side=4, cell_size=1.0)
    result = fill_gaps(grid)
    assert not result.valid_mask.any()
    assert result is not grid

# --- GeoTIFF output ---

def test_save_and_load(tmp_path):
    grid = _plane(side=8)
    path = save_dfm(grid, tmp_path / "out" / "plane.tif", crs=32633)

    with rasterio.open(path) as src:
        assert src.crs.to_epsg() == 32633
        assert src.nodata == NODATA_VAL

    loaded = load_dfm(path)
    assert loaded.origin_x == pytest.approx(grid.origin_x)
    assert loaded.origin_y == pytest.approx(grid.origin_y)
    assert loaded.cell_size == pytest.approx(1.0)
    assert np.allclose(loaded.data, grid.data, atol=1e-4)

def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_dfm(tmp_path / "missing.tif")

# --- Resources ---

def test_worker_count():
    assert determine_worker_count(3) == 3
    assert determine_worker_count() >= 1
    with pytest.raises(ValueError):
        determine_worker_count(0)

def test_memory_estimate():
    estimate = estimate_tile_memory(100_000, workers=2)
    assert isinstance(estimate, MemoryEstimate)
    assert estimate.total_required_bytes > 0
    assert "Req:" in estimate.reason
