# src/orimap/raster/io.py

"""
This module handles disk-based output of DFMs.
"""

import logging
from pathlib import Path
from typing import Union, Optional

import numpy as np
import rasterio
from rasterio.crs import CRS

from .layer import Dfm

log = logging.getLogger(__name__)

__all__ = [
    "save_dfm",
    "load_dfm"
]

def save_dfm(
    dfm: Dfm,
    path: Union[str, Path],
    crs: Optional[Union[int, str, CRS]] = None,
    **profile_kwargs
) -> Path:
    """
    Write a DFM to disk as a single-band GeoTIFF.

    Args:
        dfm: Grid to save.
        path: Output file path.
        crs: EPSG code, CRS string or rasterio CRS of the grid coordinates. None writes no CRS.
        **profile_kwargs: Override default rasterio profile settings.

    Returns:
        Path: The written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(crs, int):
        crs = CRS.from_epsg(crs)

    profile = {
        'driver': 'GTiff',
        'height': dfm.side,
        'width': dfm.side,
        'count': 1,
        'dtype': 'float32',
        'crs': crs,
        'transform': dfm.transform,
        'nodata': dfm.nodata,
        'compress': 'deflate'
    }
    profile.update(profile_kwargs)

    log.debug(f"Saving DFM {dfm.data.shape} → {path}")

    try:
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(dfm.data.astype(np.float32), 1)
    except Exception as e:
        raise IOError(f"Failed to save DFM to {path}: {e}") from e

    return path

def load_dfm(path: Union[str, Path]) -> Dfm:
    """
    Read a single-band GeoTIFF written by save_dfm back into a DFM.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster file not found: {path}")

    try:
        with rasterio.open(path) as src:
            data = src.read(1).astype(np.float64)
            transform = src.transform
            nodata = src.nodata
    except rasterio.RasterioIOError as e:
        raise IOError(f"Failed to read raster from {path}: {e}") from e

    return Dfm(data, transform.c, transform.f, transform.a, nodata)
