# src/orimap/pipeline/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The pipeline subpackage runs a map generation: the progress event channel,
the per-tile feature steps and the orchestrator driving the worker pool.
"""

# Progress channel
from .events import (
    ProgressStart,
    ProgressIncrement,
    ProgressFinish,
    LogMessage,
    TaskComplete,
    ErrorEvent,
    Event,
    EventSink,
    QueueSink,
    LoggingSink,
    CollectingSink
)

# Feature steps
from .steps import (
    StepOutput,
    contour_levels,
    classify_level,
    compute_basemap,
    compute_contours,
    compute_area_class,
    compute_vegetation,
    compute_cliffs,
    compute_intensity
)

# Orchestration
from .orchestrator import (
    TileJob,
    cut_overlay,
    process_tile,
    load_points,
    make_map
)

__all__ = [
    # Progress channel
    "ProgressStart",
    "ProgressIncrement",
    "ProgressFinish",
    "LogMessage",
    "TaskComplete",
    "ErrorEvent",
    "Event",
    "EventSink",
    "QueueSink",
    "LoggingSink",
    "CollectingSink",

    # Feature steps
    "StepOutput",
    "contour_levels",
    "classify_level",
    "compute_basemap",
    "compute_contours",
    "compute_area_class",
    "compute_vegetation",
    "compute_cliffs",
    "compute_intensity",

    # Orchestration
    "TileJob",
    "cut_overlay",
    "process_tile",
    "load_points",
    "make_map",
]
