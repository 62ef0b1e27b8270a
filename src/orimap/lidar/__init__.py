# src/orimap/lidar/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The lidar subpackage provides core functionality for handling lidar data,
including I/O operations, per-file return statistics, rasterization of tile
point clouds into DFMs and the spatial relations of the input files.
"""

# Data structure
from .layer import (
    PointCloud
)

# Statistics
from .stats import (
    MAX_NUMBER_OF_RETURNS,
    Stat,
    LidarStats,
    combine_stats
)

# Rasterization
from .rasterize import (
    points_to_grid,
    TileRasters,
    compute_dfms
)

# Survey of the input files
from .survey import (
    FileNeighbors,
    neighbors_on_grid,
    neighbouring_files,
    connected_components,
    reference_point,
    SurveyFile,
    Survey,
    read_survey
)

__all__ = [
    # Data structure
    "PointCloud",

    # Statistics
    "MAX_NUMBER_OF_RETURNS",
    "Stat",
    "LidarStats",
    "combine_stats",

    # Rasterization
    "points_to_grid",
    "TileRasters",
    "compute_dfms",

    # Survey
    "FileNeighbors",
    "neighbors_on_grid",
    "neighbouring_files",
    "connected_components",
    "reference_point",
    "SurveyFile",
    "Survey",
    "read_survey",
]
