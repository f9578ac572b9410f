"""Spatial Operations Execution Engine.

Runs geometric analysis (buffer, union, intersection, difference, clip,
simplify, point-in-polygon) over GeoJSON-style feature collections, either
in an isolated worker process or inline on the caller's event loop, and
reports progress and results back to the caller.
"""

__version__ = "0.1.0"
