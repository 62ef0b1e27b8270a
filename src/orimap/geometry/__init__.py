# src/orimap/geometry/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The geometry subpackage turns grids into vectors: tiling of the survey
bounds, marching squares contour extraction, polygon classification and the
line operations used to clip and stitch contours.
"""

# Tiling
from .tiling import (
    Neighborhood,
    Rect,
    TileSet,
    retile_bounds
)

# Contour extraction
from .contour import (
    ContourSet,
    marching_squares
)

# Polygon classification
from .polygon import (
    signed_area,
    PolygonSet,
    explode_polygons,
    close_open_contours,
    from_contours,
    remove_small_polygons,
    simplify_polygons,
    apply_buffer_rule,
    clip_polygons
)

# Line operations
from .lines import (
    explode_lines,
    clip_lines,
    simplify_lines,
    merge_line_strings
)

__all__ = [
    # Tiling
    "Neighborhood",
    "Rect",
    "TileSet",
    "retile_bounds",

    # Contours
    "ContourSet",
    "marching_squares",

    # Polygons
    "signed_area",
    "PolygonSet",
    "explode_polygons",
    "close_open_contours",
    "from_contours",
    "remove_small_polygons",
    "simplify_polygons",
    "apply_buffer_rule",
    "clip_polygons",

    # Lines
    "explode_lines",
    "clip_lines",
    "simplify_lines",
    "merge_line_strings",
]
