# tests/unit/test_survey.py

import numpy as np
import pytest

from helpers import ORIGIN_X, ORIGIN_Y, UTM33, grid_points, hill
from orimap.errors import UnreadableInputError
from orimap.geometry.tiling import Neighborhood, Rect
from orimap.lidar.survey import (
    FileNeighbors,
    connected_components,
    neighbors_on_grid,
    neighbouring_files,
    read_survey,
    reference_point,
)

def _square_grid(n, size=100.0):
    """Bounds of an n x n grid of files, listed row-major from the north-west."""
    return [
        Rect(xi * size, (n - 1 - yi) * size, (xi + 1) * size, (n - yi) * size)
        for yi in range(n) for xi in range(n)
    ]

# --- Neighbour sets ---

def test_neighbors_on_grid_middle_cell():
    middle = neighbors_on_grid(3, 3)[4]
    assert middle.slots == (4, 0, 1, 2, 5, 8, 7, 6, 3)
    assert middle.flags == Neighborhood.ABOVE | Neighborhood.BELOW | Neighborhood.LEFT | Neighborhood.RIGHT

def test_neighbors_on_grid_corner_cell():
    corner = neighbors_on_grid(3, 3)[0]
    assert corner.get("right") == 1
    assert corner.get("bottom_right") == 4
    assert corner.get("top") is None
    assert not corner.has_neighbor_above()
    assert not corner.has_neighbor_left()
    assert corner.indices() == [1, 4, 3]

def test_neighbour_set_validation():
    with pytest.raises(ValueError):
        FileNeighbors((0, None))
    with pytest.raises(ValueError):
        FileNeighbors((None,) * 9)
    with pytest.raises(ValueError):
        neighbors_on_grid(0, 2)

def test_neighbouring_files_matches_the_grid_layout():
    bounds = _square_grid(3)
    assert neighbouring_files(bounds) == neighbors_on_grid(3, 3)

def test_neighbouring_files_of_a_two_by_two_grid():
    neighbors = neighbouring_files(_square_grid(2))
    north_west = neighbors[0]
    assert north_west.get("right") == 1
    assert north_west.get("bottom") == 2
    assert north_west.get("bottom_right") == 3
    assert north_west.flags == Neighborhood.RIGHT | Neighborhood.BELOW

def test_distant_files_are_not_neighbours():
    bounds = [Rect(0.0, 0.0, 100.0, 100.0), Rect(500.0, 0.0, 600.0, 100.0)]
    neighbors = neighbouring_files(bounds)
    assert neighbors[0].indices() == []
    assert connected_components(neighbors) == [[0], [1]]

def test_single_file():
    neighbors = neighbouring_files([Rect(0.0, 0.0, 10.0, 10.0)])
    assert neighbors[0].slots == (0,) + (None,) * 8
    assert neighbouring_files([]) == []

# --- Components and reference point ---

def test_connected_components():
    bounds = _square_grid(2) + [Rect(1000.0, 1000.0, 1100.0, 1100.0)]
    assert connected_components(neighbouring_files(bounds)) == [[0, 1, 2, 3], [4]]

def test_reference_point_is_rounded_mean_of_centres():
    bounds = [Rect(0.0, 0.0, 100.0, 100.0), Rect(100.0, 0.0, 200.0, 104.0)]
    assert reference_point(bounds) == (100.0, 50.0)
    assert reference_point([]) == (0.0, 0.0)

# --- Reading ---

def test_read_survey_of_adjacent_files(hill_pair_las):
    survey = read_survey(hill_pair_las)

    assert len(survey) == 2
    assert survey.epsg == UTM33
    assert survey.components == [[0, 1]]
    assert survey.neighbors[0].get("right") == 1
    assert survey.neighbors[1].get("left") == 0
    assert survey.ref_point == (ORIGIN_X + 100.0, ORIGIN_Y + 50.0)
    assert survey.stats.intensity.num_points == 2 * 200 * 200
    assert not survey.warnings

def test_unreadable_files_are_skipped(hill_las, tmp_path):
    garbage = tmp_path / "garbage.laz"
    garbage.write_bytes(b"\x00" * 512)

    survey = read_survey([hill_las, garbage, tmp_path / "missing.las"])

    assert len(survey) == 1
    assert [p for p, _ in survey.skipped] == [garbage, tmp_path / "missing.las"]
    assert any("removed" in w for w in survey.warnings)
    # one warning per dropped file, naming it
    for name in ("garbage.laz", "missing.las"):
        assert len([w for w in survey.warnings if name in w]) == 1

def test_no_readable_file_fails(tmp_path):
    garbage = tmp_path / "garbage.las"
    garbage.write_bytes(b"junk")
    with pytest.raises(UnreadableInputError):
        read_survey([garbage])

def test_files_without_crs_use_the_default(las_factory):
    x, y = grid_points(ORIGIN_X, ORIGIN_Y, ORIGIN_X + 20.0, ORIGIN_Y + 20.0)
    path = las_factory("no_crs.las", x, y, hill(x, y, ORIGIN_X, ORIGIN_Y))

    survey = read_survey([path], default_epsg=UTM33)

    assert survey.epsg == UTM33
    assert not survey.files[0].crs_detected
    assert any("No CRS" in w for w in survey.warnings)

def test_bounds_in_another_crs_are_reprojected(hill_las, las_factory):
    # ETRS89 / UTM 33N lies within a metre of WGS 84 / UTM 33N
    x, y = grid_points(ORIGIN_X + 150.0, ORIGIN_Y, ORIGIN_X + 250.0, ORIGIN_Y + 150.0)
    other = las_factory("etrs.las", x, y, np.full(len(x), 100.0), epsg=25833)

    survey = read_survey([hill_las, other])

    assert survey.epsg == UTM33
    assert survey.files[1].epsg == 25833
    assert survey.files[1].bounds.min_x == pytest.approx(ORIGIN_X + 150.25, abs=2.0)
    assert survey.neighbors[0].get("right") == 1

def test_files_that_cannot_be_reprojected_are_skipped(hill_las, las_factory):
    # metric coordinates declared as geographic degrees fall outside any valid latitude
    x, y = grid_points(ORIGIN_X + 150.0, ORIGIN_Y, ORIGIN_X + 200.0, ORIGIN_Y + 50.0)
    bad = las_factory("metric_in_degrees.las", x, y, np.full(len(x), 100.0), epsg=4326)

    survey = read_survey([hill_las, bad])

    assert len(survey) == 1
    assert survey.epsg == UTM33
    assert [p for p, _ in survey.skipped] == [bad]
    assert any("metric_in_degrees.las" in w and "removed" in w for w in survey.warnings)

# --- Cut bounds ---

def test_cut_bounds_meet_in_the_middle_of_the_seam(hill_pair_las):
    survey = read_survey(hill_pair_las)
    left, right = survey.files[0].bounds, survey.files[1].bounds

    # point lattices stop half a spacing short of the shared edge
    assert left.max_x < ORIGIN_X + 100.0 < right.min_x

    a = survey.cut_bounds(0)
    b = survey.cut_bounds(1)
    assert a.max_x == pytest.approx(ORIGIN_X + 100.0)
    assert b.min_x == pytest.approx(ORIGIN_X + 100.0)
    assert a.min_x == pytest.approx(left.min_x)
    assert b.max_x == pytest.approx(right.max_x)
    assert (a.min_y, a.max_y) == pytest.approx((left.min_y, left.max_y))

def test_cut_bounds_of_a_lone_file_are_its_bounds(hill_las):
    survey = read_survey([hill_las])
    assert survey.cut_bounds(0) == survey.files[0].bounds
