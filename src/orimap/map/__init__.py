# src/orimap/map/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The map subpackage holds the output model: the symbol set, the point, line
and area map objects, and the thread-safe map document with its export.
"""

# Symbols
from .symbols import (
    GeometryKind,
    Symbol
)

# Map objects
from .objects import (
    ELEVATION_TAG,
    PointObject,
    LineObject,
    AreaObject,
    MapObject,
    default_tags
)

# Document
from .document import (
    MapDocument
)

__all__ = [
    # Symbols
    "GeometryKind",
    "Symbol",

    # Map objects
    "ELEVATION_TAG",
    "PointObject",
    "LineObject",
    "AreaObject",
    "MapObject",
    "default_tags",

    # Document
    "MapDocument",
]
