"""Geodesic measurement of feature collections.

Uses ``pyproj.Geod`` on the WGS 84 ellipsoid so totals are accurate at any
latitude.  Lengths are reported in kilometres and areas in square
kilometres.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pyproj import Geod

from spatial_engine.core.constants import METRES_PER_KM, SQ_METRES_PER_SQ_KM
from spatial_engine.geometry.normalize import is_lineal, is_polygonal
from spatial_engine.models.feature import FeatureCollection
from spatial_engine.models.outcome import attempt

logger = logging.getLogger("spatial_engine.geometry.measure")

_GEOD = Geod(ellps="WGS84")


@dataclass(frozen=True, slots=True)
class Measurement:
    """Totals over a collection.

    Attributes:
        length_km: Summed geodesic length of lineal features.
        area_sq_km: Summed geodesic area of polygonal features.
    """

    length_km: float = 0.0
    area_sq_km: float = 0.0


def measure(collection: FeatureCollection) -> Measurement:
    """Sum geodesic line length and polygon area over *collection*.

    Features that cannot be measured are skipped.
    """
    length_m = 0.0
    area_m2 = 0.0
    for index, feature in enumerate(collection):
        if is_lineal(feature):
            result = attempt(lambda f: _GEOD.geometry_length(f.shape()), feature)
            if result.ok:
                length_m += result.value  # type: ignore[operator]
        elif is_polygonal(feature):
            result = attempt(lambda f: _GEOD.geometry_area_perimeter(f.shape())[0], feature)
            if result.ok:
                # Geod area is signed by winding.
                area_m2 += abs(result.value)  # type: ignore[arg-type]
        else:
            continue
        if not result.ok:
            logger.debug("Measure skipped | index=%d | reason=%s", index, result.error)

    return Measurement(length_km=length_m / METRES_PER_KM, area_sq_km=area_m2 / SQ_METRES_PER_SQ_KM)
