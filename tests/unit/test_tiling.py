# tests/unit/test_tiling.py

import itertools

import pytest

from orimap.geometry.tiling import Neighborhood, Rect, retile_bounds

M = 14.0
T = 128.0

def _row(tileset, yi):
    return [tileset.tiles[tileset.index(xi, yi)] for xi in range(tileset.nx)]

# --- Tile counts ---

@pytest.mark.parametrize("side, expected", [(10.0, 2), (200.0, 2), (250.0, 3), (1000.0, 9)])
def test_tile_count_per_axis(side, expected):
    """N = max(2, ceil((w - M) / (T - M)))."""
    tiles = retile_bounds(Rect(0.0, 0.0, side, side))
    assert tiles.nx == expected
    assert tiles.ny == expected
    assert len(tiles) == expected * expected

def test_every_tile_has_the_grid_size():
    tiles = retile_bounds(Rect(0.0, 0.0, 1000.0, 400.0))
    for tile in tiles.tiles:
        assert tile.width == pytest.approx(T)
        assert tile.height == pytest.approx(T)

# --- Cut bounds ---

@pytest.mark.parametrize("bounds", [
    Rect(0.0, 0.0, 1000.0, 1000.0),
    Rect(10.0, 20.0, 310.0, 150.0),
    Rect(0.0, 0.0, 10.0, 10.0),
])
def test_cuts_partition_the_bounds(bounds):
    """Cut rectangles are pairwise disjoint and their union is the bounds."""
    tiles = retile_bounds(bounds)

    assert sum(c.area for c in tiles.cuts) == pytest.approx(bounds.area)
    for a, b in itertools.combinations(tiles.cuts, 2):
        assert not a.intersects(b)
    for cut in tiles.cuts:
        assert cut.min_x >= bounds.min_x - 1e-9 and cut.max_x <= bounds.max_x + 1e-9
        assert cut.min_y >= bounds.min_y - 1e-9 and cut.max_y <= bounds.max_y + 1e-9

def test_each_tile_contains_its_cut():
    tiles = retile_bounds(Rect(0.0, 0.0, 10.0, 10.0), Neighborhood.LEFT | Neighborhood.ABOVE)
    for tile, cut in tiles:
        assert tile.min_x <= cut.min_x and cut.max_x <= tile.max_x
        assert tile.min_y <= cut.min_y and cut.max_y <= tile.max_y

def test_adjacent_tiles_overlap_by_at_least_the_margin():
    tiles = retile_bounds(Rect(0.0, 0.0, 1000.0, 1000.0))
    row = _row(tiles, 0)
    for left, right in zip(row[:-1], row[1:]):
        assert left.max_x - right.min_x >= M - 1e-9

    column = [tiles.tiles[tiles.index(0, yi)] for yi in range(tiles.ny)]
    for north, south in zip(column[:-1], column[1:]):
        assert south.max_y - north.min_y >= M - 1e-9

# --- Ordering and neighbours ---

def test_rows_run_north_to_south_and_columns_west_to_east():
    tiles = retile_bounds(Rect(0.0, 0.0, 400.0, 400.0))
    first = tiles.tiles[0]
    assert first.max_y == pytest.approx(max(t.max_y for t in tiles.tiles))
    assert first.min_x == pytest.approx(min(t.min_x for t in tiles.tiles))
    assert tiles.tiles[1].min_x > first.min_x

def test_edge_tiles_extend_only_towards_neighbours():
    bounds = Rect(0.0, 0.0, 500.0, 500.0)
    tiles = retile_bounds(bounds, Neighborhood.LEFT)

    xs_min = min(t.min_x for t in tiles.tiles)
    xs_max = max(t.max_x for t in tiles.tiles)
    ys_min = min(t.min_y for t in tiles.tiles)
    ys_max = max(t.max_y for t in tiles.tiles)

    assert xs_min == pytest.approx(-M)
    assert xs_max == pytest.approx(500.0)
    assert ys_min == pytest.approx(0.0)
    assert ys_max == pytest.approx(500.0)
    assert min(c.min_x for c in tiles.cuts) == pytest.approx(0.0)

def test_neighbours_on_all_sides():
    bounds = Rect(0.0, 0.0, 300.0, 300.0)
    flags = Neighborhood.LEFT | Neighborhood.RIGHT | Neighborhood.ABOVE | Neighborhood.BELOW
    tiles = retile_bounds(bounds, flags)

    assert min(t.min_x for t in tiles.tiles) == pytest.approx(-M)
    assert max(t.max_x for t in tiles.tiles) == pytest.approx(300.0 + M)
    assert min(t.min_y for t in tiles.tiles) == pytest.approx(-M)
    assert max(t.max_y for t in tiles.tiles) == pytest.approx(300.0 + M)
    assert sum(c.area for c in tiles.cuts) == pytest.approx(bounds.area)

def test_cuts_reach_the_given_cut_bounds():
    """Outer cut edges move to the cut bounds, e.g. the middle of a seam with a neighbouring file."""
    bounds = Rect(0.25, 0.25, 99.75, 99.75)
    seam = Rect(0.25, 0.25, 100.0, 99.75)
    tiles = retile_bounds(bounds, Neighborhood.RIGHT, cut_bounds=seam)

    assert max(c.max_x for c in tiles.cuts) == pytest.approx(100.0)
    assert min(c.min_x for c in tiles.cuts) == pytest.approx(0.25)
    assert sum(c.area for c in tiles.cuts) == pytest.approx(seam.area)
    for a, b in itertools.combinations(tiles.cuts, 2):
        assert not a.intersects(b)
    for tile, cut in tiles:
        assert tile.min_x <= cut.min_x and cut.max_x <= tile.max_x

def test_cut_bounds_are_clamped_to_the_tiles():
    bounds = Rect(0.0, 0.0, 100.0, 100.0)
    tiles = retile_bounds(bounds, Neighborhood.RIGHT, cut_bounds=Rect(-50.0, 0.0, 200.0, 100.0))

    assert max(c.max_x for c in tiles.cuts) == pytest.approx(100.0 + M)
    # no neighbour on the left, the tiles and cuts stop at the bounds
    assert min(c.min_x for c in tiles.cuts) == pytest.approx(0.0)

# --- Failures ---

def test_zero_area_bounds_fail():
    with pytest.raises(ValueError):
        retile_bounds(Rect(0.0, 0.0, 0.0, 100.0))

def test_margin_not_smaller_than_tile_fails():
    with pytest.raises(ValueError):
        retile_bounds(Rect(0.0, 0.0, 100.0, 100.0), tile_size=10.0, margin=10.0)

# --- Rect ---

def test_rect_overlap():
    a = Rect(0.0, 0.0, 10.0, 10.0)
    b = Rect(5.0, 5.0, 15.0, 15.0)
    assert a.overlap(b) == Rect(5.0, 5.0, 10.0, 10.0)
    assert a.overlap(Rect(10.0, 0.0, 20.0, 10.0)) is None
    assert a.to_polygon().area == pytest.approx(100.0)
