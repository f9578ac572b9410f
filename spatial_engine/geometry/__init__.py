"""Geometry helpers: normalization, metric projection, geodesic measurement."""

from spatial_engine.geometry.measure import Measurement, measure
from spatial_engine.geometry.normalize import (
    clean_collection,
    is_lineal,
    is_polygonal,
    is_puntal,
    normalize,
    normalize_checked,
    sanitize_properties,
    split_multipolygon,
)

__all__ = [
    "Measurement",
    "clean_collection",
    "is_lineal",
    "is_polygonal",
    "is_puntal",
    "measure",
    "normalize",
    "normalize_checked",
    "sanitize_properties",
    "split_multipolygon",
]
