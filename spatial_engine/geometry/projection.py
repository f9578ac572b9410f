"""Metric projection helpers.

Buffer distances are expressed in metres (or kilometres / miles), never
in degrees.  A geometry is projected to a local azimuthal-equidistant CRS
centred on its own centroid, buffered there, and projected back to WGS 84.
Distances measured from the centre are exact in that projection, which is
what a point buffer needs, and distortion stays small for feature-sized
extents.

Longitudes of the projected-back result stay continuous around the
centroid: a buffer crossing the antimeridian extends past ±180 instead of
wrapping to the other side of the globe.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import shapely
from pyproj import Transformer

if TYPE_CHECKING:
    import numpy as np
    from shapely.geometry.base import BaseGeometry

WGS84 = "EPSG:4326"

# Segments per quarter circle, matching the usual GeoJSON buffer output.
BUFFER_QUAD_SEGMENTS = 8


def local_metric_crs(lon: float, lat: float) -> str:
    """Return a PROJ string for an azimuthal-equidistant CRS at ``(lon, lat)``.

    Args:
        lon: Longitude in degrees.
        lat: Latitude in degrees.
    """
    return f"+proj=aeqd +lat_0={lat:.9f} +lon_0={lon:.9f} +datum=WGS84 +units=m +no_defs"


@lru_cache(maxsize=256)
def _transformers(crs: str) -> tuple[Transformer, Transformer]:
    to_metric = Transformer.from_crs(WGS84, crs, always_xy=True)
    to_wgs = Transformer.from_crs(crs, WGS84, always_xy=True)
    return to_metric, to_wgs


def _project(geom: BaseGeometry, transformer: Transformer) -> BaseGeometry:
    def apply(coords: np.ndarray) -> np.ndarray:
        out = coords.copy()
        out[:, 0], out[:, 1] = transformer.transform(coords[:, 0], coords[:, 1])
        return out

    return shapely.transform(geom, apply)


def unwrap_longitudes(geom: BaseGeometry, centre_lon: float) -> BaseGeometry:
    """Shift longitudes by ±360° so they lie within 180° of *centre_lon*."""

    def apply(coords: np.ndarray) -> np.ndarray:
        out = coords.copy()
        lon = out[:, 0]
        lon[lon - centre_lon > 180] -= 360
        lon[lon - centre_lon < -180] += 360
        return out

    return shapely.transform(geom, apply)


def buffer_metres(geom: BaseGeometry, distance_m: float) -> BaseGeometry:
    """Buffer a WGS 84 geometry by *distance_m* metres.

    Negative distances shrink polygonal geometry; the result may be empty.

    Raises:
        ValueError: If *geom* is empty.
    """
    if geom.is_empty:
        msg = "Cannot buffer an empty geometry"
        raise ValueError(msg)

    centre = geom.centroid
    to_metric, to_wgs = _transformers(local_metric_crs(centre.x, centre.y))

    projected = _project(geom, to_metric)
    buffered = projected.buffer(distance_m, quad_segs=BUFFER_QUAD_SEGMENTS)
    if buffered.is_empty:
        return buffered
    return unwrap_longitudes(_project(buffered, to_wgs), centre.x)
