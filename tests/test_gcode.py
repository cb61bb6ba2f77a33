import re

import pytest

from tests.conftest import make_layout
from zcut.errors import ProfileMismatchError
from zcut.gcode import GCodeBuilder, MoveType, generate_all_code, generate_program, generate_sheet_code, parse_gcode
from zcut.models import OptimizationResult, StockSheet
from zcut.profiles import GENERIC, GRBL, MACH3, customize_profile
from zcut.settings import PlungeStrategy, Settings
from zcut.toolpaths import plan_all, plan_toolpaths


@pytest.fixture
def cnc():
    return Settings(kerf_width=6.0, edge_trim=0.0)


@pytest.fixture
def stock():
    return StockSheet(label="MDF", width=1200, height=600)


@pytest.fixture
def planned(cnc, stock):
    return plan_toolpaths(make_layout(stock, [(10, 10, 100, 50)]), cnc)


def code_lines(text):
    return [line for line in text.splitlines() if line and not line.startswith(";")]


@pytest.mark.parametrize("value, expected", [
    (2.0005, "2.001"),
    (-2.0005, "-2.001"),
    (-0.0001, "0.000"),
    (12.5, "12.500"),
    (-18, "-18.000"),
])
def test_format_number_rounds_half_away_from_zero(cnc, value, expected):
    assert GCodeBuilder(GENERIC, cnc).format_number(value) == expected


def test_format_number_without_leading_zeros(cnc):
    builder = GCodeBuilder(customize_profile(GENERIC, leading_zeros=False), cnc)
    assert builder.format_number(0.5) == ".500"
    assert builder.format_number(-0.5) == "-.500"
    assert builder.format_number(1.5) == "1.500"


def test_inch_output_converts_from_mm(cnc):
    builder = GCodeBuilder(customize_profile(GENERIC, units="inch"), cnc)
    assert builder.format_number(25.4) == "1.000"
    assert builder.format_number(5) == "0.197"


def test_sheet_program_start_and_end(planned):
    lines = code_lines(generate_sheet_code(planned, GENERIC))
    assert lines[:6] == ["G90", "G21", "G94", "M3 S18000", "G0 Z5.000", "G0 X0.000 Y0.000"]
    assert lines[-3:] == ["G0 Z5.000", "M5", "M2"]


def test_coordinates_use_profile_decimals(planned):
    for line in code_lines(generate_sheet_code(planned, GENERIC)):
        if line.startswith(("G0 ", "G1 ")):
            for word in line.split()[1:]:
                assert re.fullmatch(r"[XYZF]-?\d+\.\d{3}", word), line


def test_feed_rate_is_modal(planned):
    feed_lines = [line for line in code_lines(generate_sheet_code(planned, GENERIC)) if line.startswith("G1")]
    with_feed = [line for line in feed_lines if " F" in line]
    assert feed_lines[0] == "G1 Z-6.000 F500.000"
    assert feed_lines[1].endswith("F1500.000")
    # Plunge and cutting feed alternate once per pass
    assert len(with_feed) == 6
    assert len(feed_lines) > len(with_feed)


def test_only_changed_axes_are_written(planned):
    lines = code_lines(generate_sheet_code(planned, GENERIC))
    assert "G0 X7.000 Y7.000" in lines
    assert "G1 Y63.000 F1500.000" in lines
    assert "G1 X113.000" in lines
    assert "G1 Y7.000" in lines


def test_header_comments(planned):
    text = generate_sheet_code(planned, GENERIC)
    assert text.startswith("; Sheet 1: MDF 1200 x 600 mm\n")
    assert "; Part 1: P1 100 x 50" in text
    assert "; Profile: Generic (mm)" in text


def test_mach3_comments_and_precision(planned):
    text = generate_sheet_code(planned, MACH3)
    assert text.startswith("(Sheet 1: MDF 1200 x 600 mm)\n")
    lines = code_lines(text)
    assert "G0 Z5.0000" in lines
    assert lines[-2:] == ["G28", "M30"]


def test_grbl_home_xy_in_end_code(planned):
    lines = code_lines(generate_sheet_code(planned, GRBL))
    assert lines[0:3] == ["G90", "G21", "G17"]
    assert lines[-4:] == ["G0 Z5.000", "G0 X0 Y0", "M5", "M2"]


def test_home_on_start(planned):
    profile = customize_profile(GRBL, home_on_start=True)
    assert "$H" in code_lines(generate_sheet_code(planned, profile))


@pytest.mark.parametrize("changes", [
    {"feed_move": ""},
    {"rapid_move": "rapid"},
    {"spindle_start": "M3"},
    {"units": "furlong"},
])
def test_malformed_profile_rejected(planned, changes):
    with pytest.raises(ProfileMismatchError):
        generate_sheet_code(planned, customize_profile(GENERIC, **changes))


def test_helix_arcs_carry_centre_offsets(cnc, stock):
    settings = cnc.replace(plunge_strategy=PlungeStrategy.HELIX)
    planned = plan_toolpaths(make_layout(stock, [(10, 10, 100, 50)]), settings)
    lines = code_lines(generate_sheet_code(planned, GENERIC))
    arcs = [line for line in lines if line.split()[0] == "G2"]
    assert len(arcs) == 6
    assert arcs[0] == "G2 X7.000 Y7.000 Z-3.000 I-3.000 J0.000 F1500.000"
    assert all(" I" in line and " J" in line for line in arcs)


def test_rapid_skips_redundant_moves(cnc):
    builder = GCodeBuilder(GENERIC, cnc)
    builder.rapid(z=5).rapid(z=5).rapid(x=0, y=0).rapid(x=0, y=0)
    assert builder.get_gcode() == "G0 Z5.000\nG0 X0.000 Y0.000\n"
    builder.reset()
    assert builder.get_gcode() == ""


def test_save_writes_program(tmp_path, cnc):
    builder = GCodeBuilder(GENERIC, cnc).start()
    path = tmp_path / "sheet.nc"
    builder.save(path)
    assert path.read_text() == "G90\nG21\nG94\n"


def test_end_without_spindle_stop_turns_spindle_off(cnc):
    profile = customize_profile(GENERIC, end_code=("M2",))
    builder = GCodeBuilder(profile, cnc).spindle_on(12000).end()
    assert builder.get_gcode() == "M3 S12000\nM5\nM2\n"


def test_generate_all_code_one_program_per_sheet(cnc, stock):
    result = OptimizationResult(sheets=[
        make_layout(stock, [(10, 10, 100, 50)], index=0),
        make_layout(stock, [(10, 10, 200, 80)], index=1),
    ])
    programs = generate_all_code(result, GENERIC, cnc)
    assert len(programs) == 2
    assert programs[0].startswith("; Sheet 1:")
    assert programs[1].startswith("; Sheet 2:")


def test_program_pauses_between_sheets(cnc, stock):
    result = OptimizationResult(sheets=[
        make_layout(stock, [(10, 10, 100, 50)], index=0),
        make_layout(stock, [(10, 10, 200, 80)], index=1),
    ])
    text = generate_program(plan_all(result, cnc), GENERIC, cnc)
    lines = code_lines(text)
    assert lines.count("M0") == 1
    assert lines.count("M3 S18000") == 2
    assert "; Load sheet 2" in text
    assert lines.index("M5") < lines.index("M0")


def test_parse_gcode_classifies_moves():
    text = "\n".join([
        "G90 G21",
        "G0 Z5",
        "G0 X10 Y10 ; to start",
        "G1 Z-6 F500",
        "G1 X20 F1500",
        "Y30",
        "G2 X30 Y20 I10 J0",
        "(retract)",
        "G0 Z5",
        "G28",
    ])
    moves = parse_gcode(text)
    assert [m.type for m in moves] == [
        MoveType.RETRACT,
        MoveType.RAPID,
        MoveType.PLUNGE,
        MoveType.FEED,
        MoveType.FEED,
        MoveType.ARC,
        MoveType.RETRACT,
    ]
    assert moves[2].feed == 500
    assert moves[4].start == (20, 10, -6)
    assert moves[4].end == (20, 30, -6)
    assert moves[4].feed == 1500
    assert moves[1].feed is None


def test_generated_program_parses_back(planned):
    moves = parse_gcode(generate_sheet_code(planned, GENERIC))
    assert min(m.end[2] for m in moves) == pytest.approx(-18)
    assert sum(m.type == MoveType.PLUNGE for m in moves) == 3
    cut = sum(
        ((m.end[0] - m.start[0]) ** 2 + (m.end[1] - m.start[1]) ** 2) ** 0.5
        for m in moves if m.type == MoveType.FEED
    )
    assert cut == pytest.approx(planned.cut_length)
