# src/orimap/constants.py

"""
Constants shared by every stage of the terrain-to-vector pipeline.

The grid side length must stay identical across tiles, otherwise contours from
neighbouring tiles will not line up along the cut bounds.
"""

# Tile geometry (meters)
TILE_SIZE = 128.0
MIN_NEIGHBOUR_MARGIN = 14.0

# Raster resolution (meters per cell) and the resulting grid side length
CELL_SIZE = 0.5
SIDE_LENGTH = int(round(TILE_SIZE / CELL_SIZE))

# No-data sentinel for DFM cells without contributing points
NODATA_VAL = -9999.0

# Vector post-processing tolerances (meters)
SIMPLIFICATION_DIST = 0.1
MERGE_DELTA = 0.1

# LAS classification code for ground returns
GROUND_CLASS = 2

# Generator provenance tag written on every map object
GENERATOR_TAG = ("generator", "orimap")
