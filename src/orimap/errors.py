# src/orimap/errors.py

"""
This module defines the exception hierarchy raised by the map generation pipeline.

File- and tile-scoped errors are recoverable: the offending file or tile is skipped
and the run continues. Document- and process-scoped errors always abort the run.
"""

__all__ = [
    "OrimapError",
    "UnreadableInputError",
    "NoCrsDetectedError",
    "NoGroundPointsError",
    "AreaMismatchError",
    "PoisonedSharedStateError",
    "ProjectionFailureError",
    "TopologyError",
]

class OrimapError(Exception):
    """Base class for all pipeline errors."""
    recoverable = False

class UnreadableInputError(OrimapError, IOError):
    """A lidar file could not be opened or decoded. The file is dropped from the batch."""
    recoverable = True

class NoCrsDetectedError(OrimapError, ValueError):
    """A lidar file carries no usable CRS. The default CRS is used instead."""
    recoverable = True

class NoGroundPointsError(OrimapError, ValueError):
    """A tile holds too few ground points to build a terrain model. The tile is skipped."""
    recoverable = True

class AreaMismatchError(OrimapError, ValueError):
    """The requested output area does not intersect any input data."""
    recoverable = False

class PoisonedSharedStateError(OrimapError, RuntimeError):
    """A worker failed while holding the map document lock."""
    recoverable = False

class ProjectionFailureError(OrimapError, RuntimeError):
    """Coordinates could not be reprojected between two CRSs."""
    recoverable = False

class TopologyError(OrimapError, ValueError):
    """A hole contour could not be assigned to any exterior ring."""
    recoverable = True
