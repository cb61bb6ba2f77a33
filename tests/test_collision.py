import pytest

from tests.conftest import make_layout
from zcut.collision import check_dust_shoe_collisions, format_collision_warnings, shoe_radius
from zcut.models import StockSheet
from zcut.settings import ClampZone, Settings
from zcut.toolpaths import plan_toolpaths


@pytest.fixture
def layout():
    return make_layout(StockSheet(label="MDF", width=1200, height=600), [(10, 10, 100, 50)])


def shoe_settings(*clamps):
    return Settings(kerf_width=6.0, edge_trim=0.0, dust_shoe_enabled=True, clamp_zones=tuple(clamps))


def test_shoe_radius_includes_clearance():
    assert shoe_radius(Settings(dust_shoe_width=100, dust_shoe_clearance=5)) == 55


def test_low_clamp_hit_while_cutting(layout):
    clamp = ClampZone(label="C1", x=150, y=10, width=50, height=50, z_height=3)
    planned = plan_toolpaths(layout, shoe_settings(clamp))
    assert not planned.collision_free
    assert len(planned.collisions) == 1  # one report per cut and clamp
    hit = planned.collisions[0]
    assert hit.clamp_label == "C1"
    assert hit.part_label == "P1"
    assert hit.sheet_label == "MDF"
    assert hit.cut_number == 1
    assert hit.during_cut
    assert hit.distance == pytest.approx(37)


def test_tall_clamp_hit_on_rapid(layout):
    clamp = ClampZone(label="Corner", x=0, y=40, width=20, height=20, z_height=10)
    collisions = check_dust_shoe_collisions(plan_toolpaths(layout, Settings(kerf_width=6.0, edge_trim=0.0)), shoe_settings(clamp))
    assert len(collisions) == 1
    assert not collisions[0].during_cut


def test_distant_clamp_is_clear(layout):
    clamp = ClampZone(label="Far", x=800, y=400, width=50, height=50, z_height=30)
    assert plan_toolpaths(layout, shoe_settings(clamp)).collision_free


def test_flush_clamp_is_ignored(layout):
    clamp = ClampZone(label="Flush", x=150, y=10, width=50, height=50, z_height=0)
    assert plan_toolpaths(layout, shoe_settings(clamp)).collisions == []


def test_collisions_sorted_by_cut_then_clamp():
    layout = make_layout(StockSheet(label="MDF", width=1200, height=600), [(10, 10, 100, 50), (600, 300, 100, 50)])
    clamps = [
        ClampZone(label="B", x=150, y=10, width=50, height=50, z_height=3),
        ClampZone(label="A", x=150, y=60, width=50, height=50, z_height=3),
        ClampZone(label="C", x=750, y=300, width=50, height=50, z_height=3),
    ]
    collisions = plan_toolpaths(layout, shoe_settings(*clamps)).collisions
    assert [(c.cut_number, c.clamp_label) for c in collisions] == [(1, "A"), (1, "B"), (2, "C")]


def test_format_collision_warnings(layout):
    assert format_collision_warnings([]) == "No dust shoe collisions detected."
    clamp = ClampZone(label="C1", x=150, y=10, width=50, height=50, z_height=3)
    text = format_collision_warnings(plan_toolpaths(layout, shoe_settings(clamp)).collisions)
    lines = text.splitlines()
    assert lines[0] == "1 dust shoe collision(s) detected:"
    assert "clamp 'C1'" in lines[1]
    assert "cutting part 'P1'" in lines[1]
