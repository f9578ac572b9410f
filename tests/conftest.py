"""Shared pytest fixtures for the spatial engine test suite."""

from __future__ import annotations

import pytest

from spatial_engine.models.feature import FeatureCollection
from tests.builders import collection, point, square

# ---------------------------------------------------------------------------
# Collection fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def unit_square() -> FeatureCollection:
    """One 1x1 square at the origin."""
    return collection(square(0, 0, 1, name="unit"))


@pytest.fixture()
def big_mask() -> FeatureCollection:
    """A 10x10 mask that fully contains ``unit_square``."""
    return collection(square(-5, -5, 10, name="mask"))


@pytest.fixture()
def half_mask() -> FeatureCollection:
    """Mask covering the lower-left part of ``unit_square``."""
    return collection(square(-1, -1, 1.5, name="half"))


@pytest.fixture()
def points_fc() -> FeatureCollection:
    """Three points: inside, on the boundary of, and outside the unit square."""
    return collection(
        point(0.5, 0.5, id="inside"),
        point(1.0, 0.5, id="edge"),
        point(3.0, 3.0, id="outside"),
    )
