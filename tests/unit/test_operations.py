"""Tests for the operation library.

Covers every operation through ``run_operation``:
- buffer, simplify (per-feature transforms)
- point-in-polygon
- union, intersection (binary overlays)
- clip, difference (mask operations, including the shared mask union)

plus the cross-cutting guarantees: progress ends in exactly one 100,
inputs are never mutated, skipped sub-steps are recorded, and inline
loops yield to the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import patch

import pytest
from shapely.ops import unary_union

from spatial_engine.models.feature import Feature, FeatureCollection
from spatial_engine.models.outcome import OperationOutcome
from spatial_engine.models.requests import (
    BufferRequest,
    ClipRequest,
    DifferenceRequest,
    DistanceUnit,
    IntersectionRequest,
    OperationRequest,
    PointInPolygonRequest,
    SimplifyRequest,
    UnionRequest,
    build_request,
)
from spatial_engine.operations._geom import union_step
from spatial_engine.operations.library import run_operation
from tests.builders import collection, line, point, square


def _run(request: OperationRequest, **kwargs: Any) -> OperationOutcome:
    return asyncio.run(run_operation(request, **kwargs))


def _area(fc: FeatureCollection) -> float:
    return sum(f.shape().area for f in fc)


def _length(fc: FeatureCollection) -> float:
    return sum(f.shape().length for f in fc)


def _merged(fc: FeatureCollection):  # noqa: ANN202
    return unary_union([f.shape() for f in fc])


# ---------------------------------------------------------------------------
# Buffer
# ---------------------------------------------------------------------------


class TestBuffer:
    def test_point_one_kilometre(self) -> None:
        outcome = _run(BufferRequest(collection(point(0, 0)), 1, DistanceUnit.KILOMETERS))
        assert len(outcome.collection) == 1
        assert outcome.collection[0].geometry_type == "Polygon"
        minx, miny, maxx, maxy = outcome.collection.bbox()
        for value, expected in ((minx, -0.009), (miny, -0.009), (maxx, 0.009), (maxy, 0.009)):
            assert value == pytest.approx(expected, abs=5e-4)

    def test_units_are_equivalent(self) -> None:
        km = _run(BufferRequest(collection(point(10, 45)), 1, DistanceUnit.KILOMETERS))
        m = _run(BufferRequest(collection(point(10, 45)), 1000, DistanceUnit.METERS))
        assert km.collection.bbox() == pytest.approx(m.collection.bbox())

    def test_miles_larger_than_kilometres(self) -> None:
        km = _run(BufferRequest(collection(point(0, 0)), 1, DistanceUnit.KILOMETERS))
        mi = _run(BufferRequest(collection(point(0, 0)), 1, DistanceUnit.MILES))
        assert _area(mi.collection) > _area(km.collection)

    def test_properties_carried(self) -> None:
        outcome = _run(BufferRequest(collection(point(0, 0, name="well")), 0.5))
        assert outcome.collection[0].properties == {"name": "well"}

    def test_every_point_yields_polygon(self) -> None:
        points = collection(*(point(x * 10, x * 5) for x in range(-3, 4)))
        outcome = _run(BufferRequest(points, 2))
        assert len(outcome.collection) == len(points)
        assert all(f.geometry_type in ("Polygon", "MultiPolygon") for f in outcome.collection)

    def test_shrunk_to_nothing_is_skipped(self) -> None:
        tiny = square(0, 0, 0.001)
        outcome = _run(BufferRequest(collection(tiny, point(1, 1)), -1))
        # The point has nothing to shrink either.
        assert len(outcome.collection) == 0
        assert outcome.failure_count == 2
        assert {f.step for f in outcome.failures} == {"buffer"}

    def test_bad_feature_skipped_others_kept(self) -> None:
        broken = Feature(geometry={"type": "Point", "coordinates": []})
        outcome = _run(BufferRequest(collection(broken, point(0, 0)), 1))
        assert len(outcome.collection) == 1
        assert outcome.failures[0].index == 0


# ---------------------------------------------------------------------------
# Simplify
# ---------------------------------------------------------------------------


class TestSimplify:
    def test_reduces_vertices(self) -> None:
        zigzag = line((0, 0), (1, 0.0001), (2, 0), (3, 0.0001), (4, 0))
        outcome = _run(SimplifyRequest(collection(zigzag), tolerance=0.001))
        assert outcome.collection[0].geometry["coordinates"] == [[0.0, 0.0], [4.0, 0.0]]

    def test_high_quality_keeps_valid_polygon(self) -> None:
        outcome = _run(SimplifyRequest(collection(square(0, 0, 1)), tolerance=0.1, high_quality=True))
        assert outcome.collection[0].shape().is_valid
        assert _area(outcome.collection) == pytest.approx(1.0)

    def test_no_feature_removed(self) -> None:
        tiny = square(0, 0, 0.0001, name="tiny")
        outcome = _run(SimplifyRequest(collection(tiny, point(1, 1)), tolerance=1.0))
        assert len(outcome.collection) == 2
        assert outcome.collection[0].properties == {"name": "tiny"}
        assert outcome.collection[0].geometry_type == "Polygon"

    def test_failure_keeps_original(self) -> None:
        broken = Feature(geometry={"type": "LineString", "coordinates": [[0, 0]]})
        outcome = _run(SimplifyRequest(collection(broken), tolerance=0.1))
        assert outcome.collection[0] is broken
        assert outcome.failures[0].step == "simplify"


# ---------------------------------------------------------------------------
# Point in polygon
# ---------------------------------------------------------------------------


class TestPointInPolygon:
    def test_inside_and_boundary_kept(self, points_fc, unit_square) -> None:
        outcome = _run(PointInPolygonRequest(points_fc, unit_square))
        assert [f.properties["id"] for f in outcome.collection] == ["inside", "edge"]

    def test_overlapping_masks_do_not_duplicate(self) -> None:
        masks = collection(square(0, 0, 2), square(0.5, 0.5, 2))
        outcome = _run(PointInPolygonRequest(collection(point(1, 1)), masks))
        assert len(outcome.collection) == 1

    def test_non_point_features_recorded(self, unit_square) -> None:
        inputs = collection(line((0, 0), (1, 1)), point(0.5, 0.5))
        outcome = _run(PointInPolygonRequest(inputs, unit_square))
        assert len(outcome.collection) == 1
        assert outcome.failures[0].step == "point_in_polygon"
        assert outcome.failures[0].index == 0

    def test_non_polygonal_mask_recorded(self) -> None:
        masks = collection(point(0, 0), square(0, 0, 1))
        outcome = _run(PointInPolygonRequest(collection(point(0.5, 0.5)), masks))
        assert len(outcome.collection) == 1
        assert outcome.failures[0].step == "mask"

    def test_no_masks_selects_nothing(self, points_fc) -> None:
        outcome = _run(PointInPolygonRequest(points_fc, FeatureCollection()))
        assert len(outcome.collection) == 0


# ---------------------------------------------------------------------------
# Union
# ---------------------------------------------------------------------------


class TestUnion:
    def test_overlapping_squares_merge(self) -> None:
        a = collection(square(0, 0, 1, name="a"))
        b = collection(square(0.5, 0.5, 1, name="b"))
        outcome = _run(UnionRequest(a, b))
        assert len(outcome.collection) == 1
        assert _area(outcome.collection) == pytest.approx(1.75)
        assert outcome.collection[0].properties == {}

    def test_order_insensitive(self) -> None:
        a = collection(square(0, 0, 1), square(3, 3, 1))
        b = collection(square(0.5, 0.5, 1))
        ab = _merged(_run(UnionRequest(a, b)).collection)
        ba = _merged(_run(UnionRequest(b, a)).collection)
        assert ab.symmetric_difference(ba).area == pytest.approx(0.0, abs=1e-9)

    def test_non_polygonal_filtered(self) -> None:
        a = collection(square(0, 0, 1), point(10, 10), line((5, 5), (6, 6)))
        b = collection(square(2, 0, 1))
        outcome = _run(UnionRequest(a, b))
        assert len(outcome.collection) == 1
        assert _area(outcome.collection) == pytest.approx(2.0)

    def test_empty_input_yields_empty(self, unit_square) -> None:
        assert len(_run(UnionRequest(unit_square, FeatureCollection())).collection) == 0
        assert len(_run(UnionRequest(FeatureCollection(), unit_square)).collection) == 0

    def test_failed_step_keeps_accumulator(self) -> None:
        a = collection(square(0, 0, 1), square(5, 5, 1))
        b = collection(square(10, 10, 1))
        failing = iter([False, True, False])

        def flaky(acc, geom):  # noqa: ANN001, ANN202
            if next(failing):
                raise ValueError("boom")
            return union_step(acc, geom)

        with patch("spatial_engine.operations.overlay.union_step", side_effect=flaky):
            outcome = _run(UnionRequest(a, b))

        assert _area(outcome.collection) == pytest.approx(2.0)
        assert outcome.failure_count == 1
        assert outcome.failures[0].step == "union"
        assert outcome.failures[0].index == 1


# ---------------------------------------------------------------------------
# Intersection
# ---------------------------------------------------------------------------


class TestIntersection:
    def test_disjoint_buffers_yield_empty(self) -> None:
        a = _run(BufferRequest(collection(point(0, 0)), 1)).collection
        b = _run(BufferRequest(collection(point(10, 10)), 1)).collection
        outcome = _run(IntersectionRequest(a, b))
        assert len(outcome.collection) == 0

    def test_overlap_carries_primary_properties(self) -> None:
        a = collection(square(0, 0, 1, name="a"))
        b = collection(square(0.5, 0.5, 1, name="b"))
        outcome = _run(IntersectionRequest(a, b))
        assert len(outcome.collection) == 1
        assert _area(outcome.collection) == pytest.approx(0.25)
        assert outcome.collection[0].properties == {"name": "a"}

    def test_touching_edges_skipped(self) -> None:
        a = collection(square(0, 0, 1))
        b = collection(square(1, 0, 1))
        assert len(_run(IntersectionRequest(a, b)).collection) == 0

    def test_one_output_per_overlapping_pair(self) -> None:
        a = collection(square(0, 0, 4))
        b = collection(square(1, 1, 1), square(2.5, 2.5, 1), square(10, 10, 1))
        outcome = _run(IntersectionRequest(a, b))
        assert len(outcome.collection) == 2

    def test_point_against_polygon(self, unit_square) -> None:
        outcome = _run(IntersectionRequest(collection(point(0.5, 0.5)), unit_square))
        assert outcome.collection[0].geometry_type == "Point"

    def test_spatial_index_matches_full_scan(self) -> None:
        a = collection(*(square(x, x, 1.5, i=x) for x in range(6)))
        b = collection(*(square(x + 0.5, x, 1, j=x) for x in range(0, 6, 2)))
        request = IntersectionRequest(a, b)
        indexed = _run(request, use_spatial_index=True).collection
        scanned = _run(request, use_spatial_index=False).collection
        assert indexed.to_dict() == scanned.to_dict()


# ---------------------------------------------------------------------------
# Clip
# ---------------------------------------------------------------------------


class TestClip:
    def test_square_inside_mask_is_unchanged(self, unit_square, big_mask) -> None:
        outcome = _run(ClipRequest(unit_square, big_mask))
        assert len(outcome.collection) == 1
        assert outcome.collection[0].shape().equals(unit_square[0].shape())
        assert outcome.collection[0].properties == {"name": "unit"}

    def test_partial_overlap_is_cut(self, unit_square, half_mask) -> None:
        outcome = _run(ClipRequest(unit_square, half_mask))
        assert _area(outcome.collection) == pytest.approx(0.25)

    def test_outside_polygon_dropped(self, big_mask) -> None:
        outcome = _run(ClipRequest(collection(square(20, 20, 1)), big_mask))
        assert len(outcome.collection) == 0

    def test_multipolygon_parts_clipped_separately(self, big_mask) -> None:
        inside = square(0, 0, 1).geometry["coordinates"]
        outside = square(20, 20, 1).geometry["coordinates"]
        multi = Feature(geometry={"type": "MultiPolygon", "coordinates": [inside, outside]})
        outcome = _run(ClipRequest(collection(multi), big_mask))
        assert len(outcome.collection) == 1
        assert outcome.collection[0].geometry_type == "Polygon"

    def test_line_keeps_inside_segment(self, unit_square) -> None:
        crossing = line((-2, 0.5), (2, 0.5), name="road")
        outcome = _run(ClipRequest(collection(crossing), unit_square))
        assert _length(outcome.collection) == pytest.approx(1.0)
        assert all(f.properties == {"name": "road"} for f in outcome.collection)

    def test_line_against_overlapping_masks_not_duplicated(self) -> None:
        crossing = line((-1, 0.5), (4, 0.5))
        overlapping = collection(square(0, 0, 2), square(1, 0, 2))
        outcome = _run(ClipRequest(collection(crossing), overlapping))
        assert _length(outcome.collection) == pytest.approx(3.0)
        assert _merged(outcome.collection).length == pytest.approx(3.0)

    def test_points_kept_when_inside(self, points_fc, unit_square) -> None:
        outcome = _run(ClipRequest(points_fc, unit_square))
        assert [f.properties["id"] for f in outcome.collection] == ["inside", "edge"]

    def test_empty_mask_yields_empty(self, unit_square) -> None:
        assert len(_run(ClipRequest(unit_square, FeatureCollection())).collection) == 0

    def test_results_lie_within_mask(self, half_mask) -> None:
        features = collection(
            square(0, 0, 1),
            square(-3, -3, 2.5),
            line((-2, 0), (2, 0.3)),
            point(0.2, 0.2),
        )
        mask = _merged(half_mask).buffer(1e-9)
        outcome = _run(ClipRequest(features, half_mask))
        assert len(outcome.collection) > 0
        assert all(mask.covers(f.shape()) for f in outcome.collection)

    def test_failed_mask_union_falls_back_to_parts(self, unit_square) -> None:
        mask = collection(square(-20, -20, 4), square(-0.5, -0.5, 2))

        def failing(acc, geom):  # noqa: ANN001, ANN202
            if acc is None:
                return geom
            raise ValueError("boom")

        with patch("spatial_engine.operations.masking.union_step", side_effect=failing):
            outcome = _run(ClipRequest(unit_square, mask))

        assert len(outcome.collection) == 1
        assert _area(outcome.collection) == pytest.approx(1.0)
        assert [f.step for f in outcome.failures] == ["mask_union"]


# ---------------------------------------------------------------------------
# Difference
# ---------------------------------------------------------------------------


class TestDifference:
    def test_contained_square_removed(self, unit_square, big_mask) -> None:
        outcome = _run(DifferenceRequest(unit_square, big_mask))
        assert len(outcome.collection) == 0

    def test_partial_overlap_is_subtracted(self, unit_square, half_mask) -> None:
        outcome = _run(DifferenceRequest(unit_square, half_mask))
        assert _area(outcome.collection) == pytest.approx(0.75)
        assert outcome.collection[0].properties == {"name": "unit"}

    def test_no_mask_keeps_everything(self, unit_square) -> None:
        outcome = _run(DifferenceRequest(unit_square, FeatureCollection()))
        assert outcome.collection[0].shape().equals(unit_square[0].shape())

    def test_line_keeps_outside_segments(self, unit_square) -> None:
        crossing = line((-2, 0.5), (2, 0.5))
        outcome = _run(DifferenceRequest(collection(crossing), unit_square))
        assert len(outcome.collection) == 2
        assert _length(outcome.collection) == pytest.approx(3.0)

    def test_points_outside_kept(self, points_fc, unit_square) -> None:
        outcome = _run(DifferenceRequest(points_fc, unit_square))
        assert [f.properties["id"] for f in outcome.collection] == ["outside"]

    def test_failed_subtraction_keeps_uncontained_feature(self, unit_square, half_mask) -> None:
        with patch(
            "spatial_engine.operations.masking.polygon_difference",
            side_effect=ValueError("boom"),
        ):
            outcome = _run(DifferenceRequest(unit_square, half_mask))
        assert _area(outcome.collection) == pytest.approx(1.0)
        assert outcome.failures[0].step == "difference"

    def test_failed_subtraction_drops_contained_feature(self, unit_square, big_mask) -> None:
        with patch(
            "spatial_engine.operations.masking.polygon_difference",
            side_effect=ValueError("boom"),
        ):
            outcome = _run(DifferenceRequest(unit_square, big_mask))
        assert len(outcome.collection) == 0

    def test_clip_and_difference_partition_input(self, half_mask) -> None:
        features = collection(square(0, 0, 1), square(-0.75, 0, 1))
        clipped = _merged(_run(ClipRequest(features, half_mask)).collection)
        remainder = _merged(_run(DifferenceRequest(features, half_mask)).collection)
        for feature in features:
            source = feature.shape()
            inside = clipped.intersection(source).area
            outside = remainder.intersection(source).area
            assert inside + outside == pytest.approx(source.area)
        assert clipped.intersection(remainder).area == pytest.approx(0.0, abs=1e-9)


# ---------------------------------------------------------------------------
# Cross-cutting guarantees
# ---------------------------------------------------------------------------


def _all_requests() -> list[OperationRequest]:
    polys = collection(square(0, 0, 1), square(0.5, 0.5, 1), square(4, 4, 1))
    mask = collection(square(-1, -1, 1.5), square(3.5, 3.5, 2))
    pts = collection(*(point(x / 10, x / 10) for x in range(30)))
    return [
        build_request("buffer", polys, params={"distance": 1}),
        build_request("simplify", polys, params={"tolerance": 0.01}),
        build_request("pip", pts, polys),
        build_request("union", polys, mask),
        build_request("intersection", polys, mask),
        build_request("clip", polys, mask),
        build_request("difference", polys, mask),
    ]


@pytest.mark.parametrize("request_", _all_requests(), ids=lambda r: r.kind.value)
def test_progress_ends_with_single_hundred(request_: OperationRequest) -> None:
    seen: list[int] = []
    _run(request_, on_progress=seen.append)
    assert seen
    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert seen.count(100) == 1


@pytest.mark.parametrize("request_", _all_requests(), ids=lambda r: r.kind.value)
def test_inputs_not_mutated(request_: OperationRequest) -> None:
    from spatial_engine.models.requests import request_to_payload

    before = request_to_payload(request_)
    _run(request_)
    assert request_to_payload(request_) == before


def test_empty_collection_still_reports_hundred() -> None:
    seen: list[int] = []
    _run(BufferRequest(FeatureCollection(), 1), on_progress=seen.append)
    assert seen == [100]


def test_inline_loops_yield_to_event_loop() -> None:
    points = collection(*(point(x / 1000, 0) for x in range(200)))

    async def scenario() -> int:
        ticks = 0
        done = False

        async def ticker() -> None:
            nonlocal ticks
            while not done:
                ticks += 1
                await asyncio.sleep(0)

        task = asyncio.create_task(ticker())
        mask = collection(square(0, 0, 1))
        await run_operation(PointInPolygonRequest(points, mask), yield_every=25)
        done = True
        await task
        return ticks

    # 200 features yield 8 times; the ticker runs during each yield.
    assert asyncio.run(scenario()) >= 8
