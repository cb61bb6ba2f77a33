import pytest

from zcut.geometry import Rect
from zcut.guillotine import (
    FreeRectPacker,
    GuillotinePacker,
    RotationRule,
    area_order,
    fill_sheet,
    initial_free_rects,
    orientations,
    pack_sequence,
    select_best_stock,
)
from zcut.models import Grain, Part, PartInstance, StockInstance, StockSheet
from zcut.optimizer import expand_parts, expand_stocks
from zcut.settings import ClampZone, Settings, StockTabConfig


def instances(*parts):
    return expand_parts(parts)


def snapshot(outcome):
    return [
        [(p.instance.order, p.x, p.y, p.width, p.height, p.rotated) for p in layout.placements]
        for layout in outcome.layouts
    ]


def test_split_keeps_larger_remainder_whole():
    packer = FreeRectPacker([Rect(0, 0, 1200, 600)], kerf=3, bounds=Rect(0, 0, 1200, 600))
    score, index = packer.find(600, 300)
    reserved = packer.place(index, 600, 300)
    assert reserved == Rect(0, 0, 603, 303)
    # Vertical cut: full-height strip on the right, short strip above the part
    assert Rect(603, 0, 597, 600) in packer.free
    assert Rect(0, 303, 603, 297) in packer.free
    assert sum(r.area for r in packer.free) == pytest.approx(1200 * 600 - 603 * 303)


def test_part_filling_usable_area_needs_no_kerf():
    packer = FreeRectPacker([Rect(10, 10, 500, 400)], kerf=3, bounds=Rect(10, 10, 500, 400))
    assert packer.find(500, 400) is not None


def test_kerf_required_against_interior_edge():
    packer = FreeRectPacker([Rect(0, 0, 500, 400)], kerf=3, bounds=Rect(0, 0, 1000, 400))
    assert packer.find(498, 400) is None
    assert packer.find(497, 400) is not None


def test_best_area_fit_prefers_tightest_rect():
    free = [Rect(0, 0, 500, 500), Rect(600, 0, 210, 110)]
    packer = FreeRectPacker(free, kerf=0, bounds=Rect(0, 0, 1000, 1000))
    _, index = packer.find(200, 100)
    assert index == 1


def test_maximal_mode_frees_overlapping_space():
    packer = FreeRectPacker([Rect(0, 0, 100, 100)], kerf=0, bounds=Rect(0, 0, 100, 100), guillotine=False)
    _, index = packer.find(40, 40)
    packer.place(index, 40, 40)
    assert Rect(40, 0, 60, 100) in packer.free
    assert Rect(0, 40, 100, 60) in packer.free


def test_orientations_respect_grain():
    part = Part(label="Back", width=800, height=300, grain=Grain.HORIZONTAL)
    inst = PartInstance(part, 0, 0)
    settings = Settings()
    assert [o.rotated for o in orientations(inst, Grain.NONE, settings)] == [False]
    assert [o.rotated for o in orientations(inst, Grain.HORIZONTAL, settings)] == [False]
    assert [o.rotated for o in orientations(inst, Grain.VERTICAL, settings)] == [True]
    free_part = PartInstance(Part(label="Shelf", width=800, height=300), 0, 1)
    assert [o.rotated for o in orientations(free_part, Grain.VERTICAL, settings)] == [False, True]


def test_square_part_has_single_orientation():
    inst = PartInstance(Part(label="Sq", width=300, height=300), 0, 0)
    assert len(orientations(inst, Grain.NONE, Settings())) == 1


def test_outline_part_nesting_rotations_tightest_first():
    triangle = Part.from_outline("Tri", [(0, 0), (200, 0), (0, 100)])
    inst = PartInstance(triangle, 0, 0)
    options = orientations(inst, Grain.NONE, Settings(nesting_rotations=4))
    assert len(options) == 4
    areas = [o.width * o.height for o in options]
    assert areas == sorted(areas)


def test_rotation_allows_long_part_on_portrait_sheet(settings):
    stock = expand_stocks([StockSheet(label="Portrait", width=600, height=1200)])
    outcome = pack_sequence(instances(Part(label="Rail", width=1100, height=200)), stock, settings)
    assert outcome.unplaced == []
    assert outcome.layouts[0].placements[0].rotated


def test_grain_blocks_rotation(settings):
    stock = expand_stocks([StockSheet(label="Portrait", width=600, height=1200)])
    part = Part(label="Rail", width=1100, height=200, grain=Grain.HORIZONTAL)
    outcome = pack_sequence(instances(part), stock, settings)
    assert outcome.layouts == []
    assert len(outcome.unplaced) == 1


def test_infeasible_parts_reported_up_front(settings, sheet):
    parts = instances(Part(label="Huge", width=2000, height=2000), Part(label="Small", width=100, height=100))
    outcome = pack_sequence(parts, expand_stocks([sheet]), settings)
    assert [i.part.label for i in outcome.unplaced] == ["Huge"]
    assert len(outcome.layouts) == 1


def test_select_best_stock_prefers_efficient_size(settings):
    pool = expand_stocks([
        StockSheet(label="Full", width=2440, height=1220),
        StockSheet(label="Remnant", width=700, height=400),
    ])
    fill = select_best_stock(instances(Part(label="Panel", width=600, height=300)), pool, settings)
    assert fill.stock.stock.label == "Remnant"


def test_stock_tabs_and_clamps_stay_clear(settings):
    tabs = StockTabConfig(enabled=True)
    clamp = ClampZone(label="C1", x=500, y=250, width=100, height=100, z_height=20)
    cfg = settings.replace(stock_tabs=tabs, clamp_zones=(clamp,))
    stock = expand_stocks([StockSheet(label="Ply", width=1200, height=600, quantity=3)])
    outcome = pack_sequence(instances(Part(label="Box", width=200, height=150, quantity=10)), stock, cfg)
    zones = tabs.exclusion_zones(1200, 600) + [clamp.rect]
    for layout in outcome.layouts:
        for p in layout.placements:
            for zone in zones:
                assert not p.bounds.intersects(zone)


def test_initial_free_rects_exclude_zones(settings):
    stock = StockInstance(StockSheet(label="Ply", width=1000, height=500), 0, 0)
    cfg = settings.replace(stock_tabs=StockTabConfig(enabled=True, advanced_mode=True, custom_zones=(Rect(0, 0, 100, 100),)))
    bounds, free = initial_free_rects(stock, cfg)
    assert bounds == Rect(0, 0, 1000, 500)
    assert sum(r.area for r in free) == pytest.approx(1000 * 500 - 103 * 103)


def test_fill_sheet_with_hints_prefers_rotation(settings):
    stock = StockInstance(StockSheet(label="Ply", width=1200, height=600), 0, 0)
    inst = instances(Part(label="Panel", width=400, height=200))
    fill = fill_sheet(stock, inst, settings, RotationRule.NORMAL_FIRST, hints={0: True})
    assert fill.placements[0].rotated
    fill = fill_sheet(stock, inst, settings, RotationRule.ROTATED_FIRST)
    assert fill.placements[0].rotated
    fill = fill_sheet(stock, inst, settings, RotationRule.NORMAL_FIRST)
    assert not fill.placements[0].rotated


def test_area_order_is_stable():
    parts = instances(
        Part(label="A", width=100, height=100),
        Part(label="B", width=200, height=100),
        Part(label="C", width=100, height=100),
    )
    assert [i.part.label for i in area_order(parts)] == ["B", "A", "C"]


def test_guillotine_packer_is_deterministic(settings, cabinet_parts, full_sheet):
    pool = expand_stocks([full_sheet])
    first = GuillotinePacker().pack(expand_parts(cabinet_parts), pool, settings)
    second = GuillotinePacker().pack(expand_parts(cabinet_parts), pool, settings)
    assert snapshot(first) == snapshot(second)
    assert first.unplaced == []


def test_maximal_split_mode_packs_all(settings, cabinet_parts, full_sheet):
    cfg = settings.replace(guillotine_only=False)
    outcome = GuillotinePacker().pack(expand_parts(cabinet_parts), expand_stocks([full_sheet]), cfg)
    assert outcome.unplaced == []
    for layout in outcome.layouts:
        for i, a in enumerate(layout.placements):
            for b in layout.placements[i + 1:]:
                assert not a.reserved.intersects(b.reserved)


def square(x, y, size):
    return [(x, y), (x + size, y), (x + size, y + size), (x, y + size)]


def test_cutout_bounds():
    single = Part(label="Panel", width=500, height=400, cutouts=[square(100, 100, 100)])
    assert single.cutout_bounds() == [Rect(100, 100, 100, 100)]
    double = Part(label="Panel", width=500, height=400, cutouts=[square(100, 100, 100), square(250, 200, 150)])
    assert [(r.width, r.height) for r in double.cutout_bounds()] == [(100, 100), (150, 150)]
    assert double.area == 500 * 400 - 100 * 100 - 150 * 150


def test_rotated_orientation_turns_cutouts_with_part():
    part = Part(label="Panel", width=500, height=400, grain=Grain.HORIZONTAL, cutouts=[square(100, 50, 100)])
    (option,) = orientations(PartInstance(part, 0, 0), Grain.VERTICAL, Settings())
    assert option.rotated
    # Counter-clockwise quarter turn: (x, y) -> (400 - y, x)
    (bounds,) = Part(label="Turned", width=400, height=500, cutouts=option.cutouts).cutout_bounds()
    assert (bounds.x, bounds.y, bounds.width, bounds.height) == pytest.approx((250, 100, 100, 100))


def test_open_cutout_shrinks_by_kerf():
    packer = FreeRectPacker([], kerf=3, bounds=Rect(0, 0, 500, 400))
    packer.open_cutout(Rect(150, 100, 200, 200))
    assert packer.free == [Rect(153, 103, 194, 194)]
    packer.open_cutout(Rect(10, 10, 7, 50))
    assert len(packer.free) == 1


def test_fill_sheet_nests_into_cutout(settings):
    stock = StockInstance(StockSheet(label="Ply", width=500, height=400), 0, 0)
    shelf = Part(label="Shelf", width=500, height=400, cutouts=[square(150, 100, 200)])
    fill = fill_sheet(stock, instances(shelf, Part(label="Bracket", width=100, height=100)), settings)
    host, nested = fill.placements
    assert (nested.x, nested.y) == (153, 103)
    assert host.holds(nested)
