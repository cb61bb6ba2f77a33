import itertools

import pytest

from zcut.geometry import Rect
from zcut.models import Grain, Part, PartInstance, PlacedPart, SheetLayout, StockSheet
from zcut.settings import Settings


def assert_area_identity(result):
    for sheet in result.sheets:
        total = sheet.used_area + sheet.waste_area + sheet.kerf_area
        assert total == pytest.approx(sheet.total_area)
        assert sheet.waste_area >= -1e-6


def assert_no_overlap(result, kerf):
    for sheet in result.sheets:
        for p in sheet.placements:
            assert p.x >= -1e-6 and p.y >= -1e-6
            assert p.x + p.width <= sheet.stock.width + 1e-6
            assert p.y + p.height <= sheet.stock.height + 1e-6
        for a, b in itertools.combinations(sheet.placements, 2):
            if a.holds(b) or b.holds(a):
                host, inner = (a, b) if a.holds(b) else (b, a)
                assert any(r.inflate(-kerf).contains(inner.bounds) for r in host.cutout_rects())
                continue
            assert not a.bounds.inflate(kerf / 2).intersects(b.bounds.inflate(kerf / 2)), (
                f"{a.instance.label} overlaps {b.instance.label} on sheet {sheet.index}"
            )


def placed_grain(placement):
    grain = placement.part.grain
    if not placement.rotated:
        return grain
    return Grain.VERTICAL if grain == Grain.HORIZONTAL else Grain.HORIZONTAL


def assert_grain_respected(result):
    for sheet in result.sheets:
        for p in sheet.placements:
            if p.part.grain == Grain.NONE:
                continue
            if sheet.stock.grain == Grain.NONE:
                assert not p.rotated
            else:
                assert placed_grain(p) == sheet.stock.grain


def assert_valid_layout(result, kerf):
    assert_area_identity(result)
    assert_no_overlap(result, kerf)
    assert_grain_respected(result)


def make_layout(stock, rects, index=0):
    """Layout with rectangular parts placed at fixed (x, y, width, height) positions."""
    placements = []
    for order, (x, y, w, h) in enumerate(rects):
        part = Part(label=f"P{order + 1}", width=w, height=h)
        placements.append(PlacedPart(
            instance=PartInstance(part=part, copy=0, order=order),
            sheet_index=index,
            x=x,
            y=y,
            width=w,
            height=h,
            reserved=Rect(x, y, w, h),
        ))
    return SheetLayout(stock=stock, placements=placements, index=index)


@pytest.fixture
def settings():
    return Settings(kerf_width=3.0, edge_trim=0.0)


@pytest.fixture
def sheet():
    return StockSheet(label="Ply 1200", width=1200, height=600)


@pytest.fixture
def cabinet_parts():
    return [
        Part(label="Side", width=720, height=560, quantity=2),
        Part(label="Top", width=800, height=560),
        Part(label="Shelf", width=764, height=540, quantity=3),
        Part(label="Back", width=800, height=300, grain=Grain.HORIZONTAL),
        Part(label="Rail", width=764, height=100, quantity=4),
        Part(label="Door", width=397, height=715, quantity=2, grain=Grain.VERTICAL),
    ]


@pytest.fixture
def full_sheet():
    return StockSheet(label="Birch 2440", width=2440, height=1220, quantity=10, grain=Grain.HORIZONTAL)
