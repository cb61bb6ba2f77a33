import math

import pytest

from zcut.geometry import (
    Rect,
    bulge_arc_points,
    chain_segments,
    mitre_point,
    offset_outline,
    orient_ccw,
    outline_area,
    outline_bounds,
    outline_perimeter,
    outlines_overlap,
    point_in_outline,
    prune_contained,
    reflex_vertices,
    rotate_outline,
    rotate_with_holes,
    segments_intersect,
    tessellate_arc,
    translate_outline,
)

SQUARE = ((0, 0), (10, 0), (10, 10), (0, 10))
L_SHAPE = ((0, 0), (100, 0), (100, 40), (40, 40), (40, 100), (0, 100))


def test_touching_rects_do_not_intersect():
    a = Rect(0, 0, 10, 10)
    assert not a.intersects(Rect(10, 0, 5, 5))
    assert a.intersects(Rect(9, 9, 5, 5))


def test_subtract_disjoint_pieces_cover_remainder():
    outer = Rect(0, 0, 100, 100)
    hole = Rect(20, 30, 40, 20)
    pieces = outer.subtract(hole)
    assert sum(p.area for p in pieces) == pytest.approx(outer.area - hole.area)
    for a in pieces:
        assert not a.intersects(hole)
        for b in pieces:
            if a is not b:
                assert not a.intersects(b)


def test_subtract_maximal_pieces_span_full_extent():
    pieces = Rect(0, 0, 100, 100).subtract(Rect(20, 30, 40, 20), maximal=True)
    assert Rect(0, 0, 100, 30) in pieces
    assert Rect(0, 50, 100, 50) in pieces
    assert Rect(0, 0, 20, 100) in pieces
    assert Rect(60, 0, 40, 100) in pieces


def test_prune_contained_keeps_one_of_duplicates():
    rects = [Rect(0, 0, 10, 10), Rect(0, 0, 10, 10), Rect(1, 1, 2, 2)]
    assert prune_contained(rects) == [Rect(0, 0, 10, 10)]


def test_outline_measurements():
    assert outline_area(SQUARE) == pytest.approx(100)
    assert outline_area(tuple(reversed(SQUARE))) == pytest.approx(100)
    assert outline_perimeter(SQUARE) == pytest.approx(40)
    assert outline_area(L_SHAPE) == pytest.approx(100 * 40 + 40 * 60)
    bounds = outline_bounds(translate_outline(SQUARE, 5, -2))
    assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (5, -2, 15, 8)


def test_rotate_outline_normalises_to_origin():
    rect = ((0, 0), (100, 0), (100, 50), (0, 50))
    bounds = outline_bounds(rotate_outline(rect, 90))
    assert bounds.min_x == pytest.approx(0, abs=1e-9)
    assert bounds.min_y == pytest.approx(0, abs=1e-9)
    assert bounds.width == pytest.approx(50)
    assert bounds.height == pytest.approx(100)


def test_rotate_with_holes_keeps_holes_in_place():
    rect = ((0, 0), (100, 0), (100, 50), (0, 50))
    hole = ((10, 10), (30, 10), (30, 20), (10, 20))
    shell, (turned,) = rotate_with_holes(rect, [hole], 90)
    assert outline_bounds(shell).min_x == pytest.approx(0, abs=1e-9)
    b = outline_bounds(turned)
    assert (b.min_x, b.min_y, b.max_x, b.max_y) == pytest.approx((30, 10, 40, 30))


def test_point_in_outline():
    assert point_in_outline(L_SHAPE, 20, 80)
    assert not point_in_outline(L_SHAPE, 80, 80)


def test_segments_intersect():
    assert segments_intersect((0, 0), (10, 10), (0, 10), (10, 0))
    assert not segments_intersect((0, 0), (10, 0), (0, 1), (10, 1))


def test_outlines_overlap_ignores_shared_edges():
    neighbour = translate_outline(SQUARE, 10, 0)
    assert not outlines_overlap(SQUARE, neighbour)
    assert outlines_overlap(SQUARE, translate_outline(SQUARE, 5, 5))


def test_reflex_vertices_of_l_shape():
    assert reflex_vertices(L_SHAPE) == [3]
    # Same vertex when the winding is reversed
    reversed_l = tuple(reversed(L_SHAPE))
    assert [reversed_l[i] for i in reflex_vertices(reversed_l)] == [(40, 40)]
    assert reflex_vertices(SQUARE) == []


def test_offset_outline_grows_square_with_sharp_corners():
    grown = offset_outline(SQUARE, 2)
    bounds = outline_bounds(grown)
    assert (bounds.min_x, bounds.max_x) == pytest.approx((-2, 12))
    assert outline_area(grown) == pytest.approx(14 * 14)


def test_mitre_point_of_reflex_corner():
    q = mitre_point(L_SHAPE[2], L_SHAPE[3], L_SHAPE[4], 3)
    assert q == pytest.approx((43, 43))


def test_orient_ccw():
    cw = tuple(reversed(SQUARE))
    ccw = orient_ccw(cw)
    x = [p[0] for p in ccw]
    y = [p[1] for p in ccw]
    signed = sum(x[i] * y[(i + 1) % 4] - x[(i + 1) % 4] * y[i] for i in range(4))
    assert signed > 0


def test_tessellate_arc_endpoints():
    points = tessellate_arc(0, 0, 10, 0, math.pi / 2, segments=8)
    assert len(points) == 9
    assert points[0] == pytest.approx((10, 0))
    assert points[-1] == pytest.approx((0, 10), abs=1e-9)


def test_bulge_semicircle():
    points = bulge_arc_points((0, 0), (10, 0), 1.0, segments=16)
    assert points[-1] == (10, 0)
    for x, y in points:
        assert math.hypot(x - 5, y) == pytest.approx(5)
    # Positive bulge turns counter-clockwise, so the arc dips below the chord
    assert min(y for _, y in points) == pytest.approx(-5)


def test_zero_bulge_is_straight():
    assert bulge_arc_points((0, 0), (10, 0), 0.0) == [(10, 0)]


def test_chain_segments_builds_closed_outline():
    segments = [
        ((0, 0), (10, 0)),
        ((0, 10.004), (10, 10)),
        ((10.002, 0), (10, 10)),
        ((0, 10), (0, 0)),
    ]
    outlines = chain_segments(segments, tolerance=0.01)
    assert len(outlines) == 1
    assert len(outlines[0]) == 4
    assert outline_area(outlines[0]) == pytest.approx(100, rel=1e-3)


def test_chain_segments_drops_open_chains():
    open_chain = [((0, 0), (10, 0)), ((10, 0), (10, 10)), ((10, 10), (0, 10))]
    square = [
        ((20, 0), (30, 0)),
        ((30, 0), (30, 10)),
        ((30, 10), (20, 10)),
        ((20, 10), (20, 0)),
    ]
    outlines = chain_segments(open_chain + square)
    assert len(outlines) == 1
    assert outline_bounds(outlines[0]).min_x == pytest.approx(20)


def test_chain_segments_empty():
    assert chain_segments([]) == []
