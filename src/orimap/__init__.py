# src/orimap/__init__.py
#
# Copyright (c) The orimap project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
orimap converts airborne lidar point clouds into orienteering map vectors.
"""

__version__ = "0.1.0"
