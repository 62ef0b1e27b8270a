# src/orimap/raster/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The raster subpackage provides the DFM grid, the filters applied to it
(slope, smoothing, gap filling), GeoTIFF I/O and resource management for
the tile workers.
"""
# Core data structure
from .layer import (
    Dfm
)

# Filters
from .filters import (
    slope,
    smoothen,
    smoothen_normals,
    fill_gaps
)

# I/O operations
from .io import (
    save_dfm,
    load_dfm
)

# Resource management
from .resources import (
    MemoryEstimate,
    determine_worker_count,
    estimate_tile_memory
)

__all__ = [
    # Layer
    "Dfm",

    # Filters
    "slope",
    "smoothen",
    "smoothen_normals",
    "fill_gaps",

    # I/O
    "save_dfm",
    "load_dfm",

    # Resources
    "MemoryEstimate",
    "determine_worker_count",
    "estimate_tile_memory",
]
