# tests/integration/test_pipeline.py

import threading

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import box

from helpers import ORIGIN_X, ORIGIN_Y, UTM33, grid_points, hill
from orimap.errors import AreaMismatchError, NoGroundPointsError, UnreadableInputError
from orimap.geometry.tiling import Rect
from orimap.lidar.layer import PointCloud
from orimap.lidar.stats import LidarStats
from orimap.lidar.survey import FileNeighbors, Survey, SurveyFile
from orimap.map.document import MapDocument
from orimap.map.symbols import Symbol
from orimap.params import MapParameters
from orimap.pipeline import (
    CollectingSink,
    LogMessage,
    ProgressStart,
    TaskComplete,
    TileJob,
    load_points,
    make_map,
    process_tile,
)
from orimap.raster.resources import MemoryEstimate

def test_map_of_two_adjacent_files(hill_pair_las, tmp_path):
    """
    Simulates a standard run over a two-file survey:
    1. Survey: both files are read and found to be neighbours.
    2. Tiles: each file is split into overlapping tiles processed on two threads.
    3. Merge: contours cut at tile and file edges are stitched back together.
    4. Save: the frozen document is written as a GeoPackage.
    """
    sink = CollectingSink()
    document = make_map(hill_pair_las, MapParameters(), sink=sink, workers=2)

    # --- 1. THE DOCUMENT ---
    assert isinstance(document, MapDocument)
    assert document.is_frozen
    assert document.epsg == UTM33
    assert document.ref_point == (ORIGIN_X + 100.0, ORIGIN_Y + 50.0)

    # --- 2. CONTOURS ---
    contours = document.objects(Symbol.CONTOUR)
    assert len(contours) > 0
    assert {c.elevation for c in contours} == {105.0, 110.0, 115.0}
    # the hill is centred on the shared file edge, contours must reach into both files
    for elevation in (105.0, 110.0, 115.0):
        parts = [c.geometry for c in contours if c.elevation == elevation]
        min_x = min(g.bounds[0] for g in parts)
        max_x = max(g.bounds[2] for g in parts)
        assert min_x < ORIGIN_X + 100.0 < max_x

    # single returns everywhere, the whole survey is rough open land without cliffs
    assert document.count(Symbol.ROUGH_OPEN_LAND) > 0
    assert document.count(Symbol.GIGANTIC_BOULDER) == 0
    assert document.count(Symbol.DARK_GREEN) == 0

    # --- 3. EVENTS ---
    assert len(sink.of_type(ProgressStart)) == 2
    assert sink.progress == pytest.approx(2.0)
    assert len(sink.of_type(TaskComplete)) == 8
    assert not [e for e in sink.errors if e.fatal]

    # --- 4. SAVE ---
    path = document.save(tmp_path / "map.gpkg", target_epsg=4326)
    lines = gpd.read_file(path, layer="lines")
    assert lines.crs.to_epsg() == 4326
    assert "CONTOUR" in set(lines["symbol_name"])

def test_contours_merge_across_tiles(hill_pair_las):
    params = MapParameters(vegetation=False, cliffs=False)
    document = make_map(hill_pair_las, params, workers=1)

    rings = [c for c in document.objects(Symbol.CONTOUR) if c.elevation == 110.0]
    # the halves from both files meet at the middle of the seam and close into one ring
    assert len(rings) == 1
    assert rings[0].is_closed
    total = rings[0].geometry.length
    # circle of radius sigma * sqrt(2 ln 2) around the summit
    radius = 25.0 * np.sqrt(2.0 * np.log(2.0))
    assert total == pytest.approx(2.0 * np.pi * radius, rel=0.03)
    assert document.count(Symbol.ROUGH_OPEN_LAND) == 0

def test_tiffs_are_written(hill_las, tmp_path):
    tiff_dir = tmp_path / "tiffs"
    params = MapParameters(write_tiffs=True, tiff_directory=tiff_dir, vegetation=False)

    make_map([hill_las], params, workers=2)

    written = sorted(p.name for p in tiff_dir.glob("*.tif"))
    assert len(written) == 4 * 4
    assert "dem_hill_0.tif" in written
    assert "slope_hill_3.tif" in written

def test_unreadable_file_is_reported_and_skipped(hill_las, tmp_path):
    garbage = tmp_path / "garbage.las"
    garbage.write_bytes(b"not lidar")
    sink = CollectingSink()

    document = make_map([hill_las, garbage], MapParameters(vegetation=False), sink=sink, workers=1)

    assert document.count(Symbol.CONTOUR) + document.count(Symbol.INDEX_CONTOUR) > 0
    assert any("removed" in e.text for e in sink.errors)

def test_file_that_cannot_be_reprojected_is_skipped(hill_las, las_factory):
    x, y = grid_points(ORIGIN_X + 150.0, ORIGIN_Y, ORIGIN_X + 200.0, ORIGIN_Y + 50.0)
    bad = las_factory("metric_in_degrees.las", x, y, np.full(len(x), 100.0), epsg=4326)
    sink = CollectingSink()

    document = make_map([hill_las, bad], MapParameters(vegetation=False), sink=sink, workers=1)

    assert document.count(Symbol.CONTOUR) + document.count(Symbol.INDEX_CONTOUR) > 0
    assert any("metric_in_degrees.las" in e.text for e in sink.errors)
    assert not [e for e in sink.errors if e.fatal]

def test_points_that_cannot_be_reprojected_are_dropped(hill_las):
    bounds = Rect(ORIGIN_X, ORIGIN_Y, ORIGIN_X + 50.0, ORIGIN_Y + 50.0)
    survey = Survey(
        files=[SurveyFile(hill_las, bounds, 4326, True, LidarStats.empty())],
        neighbors=[FileNeighbors((0,) + (None,) * 8)],
        components=[[0]],
        ref_point=(0.0, 0.0),
        epsg=UTM33
    )
    sink = CollectingSink()

    cloud = load_points(survey, [0], bounds, sink=sink)

    assert len(cloud) == 0
    assert len(sink.errors) == 1
    assert "hill.las" in sink.errors[0].text
    assert not sink.errors[0].fatal

def test_separate_groups_are_reported(hill_las, las_factory):
    x, y = grid_points(ORIGIN_X + 1000.0, ORIGIN_Y, ORIGIN_X + 1050.0, ORIGIN_Y + 50.0)
    far = las_factory("far.las", x, y, hill(x, y, ORIGIN_X + 1025.0, ORIGIN_Y + 25.0, sigma=10.0), epsg=UTM33)
    sink = CollectingSink()

    document = make_map([hill_las, far], MapParameters(vegetation=False), sink=sink, workers=1)

    assert document is not None
    assert any("2 separate groups" in m.text for m in sink.of_type(LogMessage))

def test_low_memory_is_reported(hill_las, monkeypatch):
    monkeypatch.setattr(
        "orimap.pipeline.orchestrator.estimate_tile_memory",
        lambda points, workers: MemoryEstimate(1, 0, False, "Req: 1.00GB, Avail: 0.00GB")
    )
    sink = CollectingSink()

    make_map([hill_las], MapParameters(vegetation=False), sink=sink, workers=1)

    warnings = [e for e in sink.errors if "memory" in e.text]
    assert len(warnings) == 1
    assert not warnings[0].fatal

def test_no_readable_file_aborts(tmp_path):
    garbage = tmp_path / "garbage.las"
    garbage.write_bytes(b"not lidar")
    sink = CollectingSink()

    with pytest.raises(UnreadableInputError):
        make_map([garbage], sink=sink, workers=1)
    assert sink.errors[-1].fatal

def test_polygon_filter_outside_the_data(hill_las):
    far_away = box(0.0, 0.0, 10.0, 10.0)
    with pytest.raises(AreaMismatchError):
        make_map([hill_las], polygon_filter=far_away, workers=1)

def test_polygon_filter_restricts_the_output(hill_las):
    west = box(ORIGIN_X, ORIGIN_Y, ORIGIN_X + 60.0, ORIGIN_Y + 150.0)
    document = make_map([hill_las], MapParameters(vegetation=False), polygon_filter=west, workers=2)

    lines = document.objects(Symbol.CONTOUR) + document.objects(Symbol.INDEX_CONTOUR)
    assert len(lines) > 0
    assert max(l.geometry.bounds[2] for l in lines) <= ORIGIN_X + 60.0 + 1e-6

def test_cancelled_run_returns_nothing(hill_las):
    cancel = threading.Event()
    cancel.set()
    assert make_map([hill_las], cancel_event=cancel, workers=1) is None

# --- Single tile ---

def _tile_job(points, tag="t"):
    return TileJob(
        tag=tag,
        tile=Rect(0.0, 0.0, 128.0, 128.0),
        cut=Rect(0.0, 0.0, 64.0, 64.0),
        points=points,
        stats=LidarStats.from_point_cloud(points)
    )

def test_tile_without_enough_ground_points():
    x = np.array([1.0, 2.0, 3.0])
    points = PointCloud.from_arrays(x, x, x, classification=np.array([2, 1, 1]))
    document = MapDocument()

    with pytest.raises(NoGroundPointsError):
        process_tile(_tile_job(points), MapParameters(), document)
    assert len(document) == 0

def test_tile_with_no_data_in_its_cut():
    x, y = grid_points(100.0, 100.0, 128.0, 128.0)
    points = PointCloud.from_arrays(x, y, np.full(len(x), 50.0))
    sink = CollectingSink()

    assert process_tile(_tile_job(points), MapParameters(), MapDocument(), sink) is False
    assert sink.of_type(TaskComplete) == [TaskComplete("t")]

def test_tile_objects_land_in_the_document(hill_cloud):
    document = MapDocument()
    job = TileJob(
        tag="hill",
        tile=Rect(0.0, -64.0, 128.0, 64.0),
        cut=Rect(0.0, 0.0, 64.0, 64.0),
        points=hill_cloud,
        stats=LidarStats.from_point_cloud(hill_cloud)
    )

    assert process_tile(job, MapParameters(), document) is True

    contours = document.objects(Symbol.CONTOUR)
    assert len(contours) == 1
    assert contours[0].elevation == 105.0
    assert contours[0].is_closed
    assert document.count(Symbol.ROUGH_OPEN_LAND) == 1
