"""G-code generation driven by machine profiles."""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from io import StringIO
from pathlib import Path
from typing import Optional, Sequence

from .models import OptimizationResult
from .profiles import GCodeProfile
from .settings import Settings
from .toolpaths import PlannedSheet, Toolpath, plan_all

MM_PER_INCH = 25.4


class GCodeBuilder:
    """Builds G-code for one machine profile."""

    def __init__(self, profile: GCodeProfile, settings: Settings):
        profile.validate()
        self.profile = profile
        self.settings = settings
        self.buffer = StringIO()
        self._spindle_running: bool = False
        # Position tracking to avoid redundant moves
        self._pos_x: Optional[float] = None
        self._pos_y: Optional[float] = None
        self._pos_z: Optional[float] = None
        self._feed: Optional[float] = None

    def _coords_equal(self, a: Optional[float], b: float) -> bool:
        """Check if coordinates are equal within tolerance."""
        if a is None:
            return False
        return abs(a - b) < 0.0001

    def _write(self, line: str) -> None:
        """Write a line of G-code."""
        self.buffer.write(line + "\n")

    def add_line(self, line: str) -> "GCodeBuilder":
        """Add a raw G-code line."""
        self._write(line)
        return self

    def format_number(self, value: float) -> str:
        """Format a value in mm for the profile's units and decimal places.

        Rounds half away from zero on the shortest decimal form of the value,
        so 2.675 becomes 2.68 with two places. Negative zero prints as zero.
        """
        value = float(value)
        if self.profile.units == "inch":
            value /= MM_PER_INCH
        quantum = Decimal(1).scaleb(-self.profile.decimal_places)
        rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
        if rounded == 0:
            rounded = abs(rounded)
        text = f"{rounded:f}"
        if not self.profile.leading_zeros:
            if text.startswith("0.") and len(text) > 2:
                text = text[1:]
            elif text.startswith("-0."):
                text = "-" + text[2:]
        return text

    def comment(self, text: str) -> "GCodeBuilder":
        """Add a comment."""
        self._write(self.profile.comment(text))
        return self

    def start(self) -> "GCodeBuilder":
        """Write the profile's start boilerplate and modal setup."""
        lines = list(self.profile.start_code)
        if self.profile.home_on_start and self.profile.home_all:
            lines.append(self.profile.home_all)
        for modal in (self.profile.absolute_mode, self.profile.feed_mode):
            if modal and modal not in lines:
                lines.append(modal)
        for line in lines:
            self.add_line(line)
        return self

    def end(self) -> "GCodeBuilder":
        """Write the profile's end boilerplate."""
        safe_z = self.format_number(self.settings.safe_z)
        if self._spindle_running and not any(
            line.strip() == self.profile.spindle_stop for line in self.profile.end_code
        ):
            self.spindle_off()
        if self.profile.home_xy_on_end and self.profile.home_xy:
            self.rapid(z=self.settings.safe_z)
            self.add_line(self.profile.home_xy)
        for line in self.profile.end_code:
            self.add_line(line.replace("[SafeZ]", safe_z))
            if line.strip() == self.profile.spindle_stop:
                self._spindle_running = False
        return self

    def spindle_on(self, rpm: int) -> "GCodeBuilder":
        """Turn spindle on at specified RPM."""
        self._write(self.profile.spindle_command(rpm))
        self._spindle_running = True
        return self

    def spindle_off(self) -> "GCodeBuilder":
        """Turn spindle off."""
        if self._spindle_running:
            self._write(self.profile.spindle_stop)
            self._spindle_running = False
        return self

    def pause(self, message: str = "") -> "GCodeBuilder":
        if message:
            self.comment(message)
        self._write(self.profile.pause_command)
        return self

    def _axes(self, x: Optional[float], y: Optional[float], z: Optional[float], force_xy: bool = False) -> list[str]:
        words = []
        if x is not None and (force_xy or not self._coords_equal(self._pos_x, x)):
            words.append(f"X{self.format_number(x)}")
            self._pos_x = x
        if y is not None and (force_xy or not self._coords_equal(self._pos_y, y)):
            words.append(f"Y{self.format_number(y)}")
            self._pos_y = y
        if z is not None and not self._coords_equal(self._pos_z, z):
            words.append(f"Z{self.format_number(z)}")
            self._pos_z = z
        return words

    def _feed_word(self, feed: float) -> list[str]:
        # Feed rate is modal
        if self._coords_equal(self._feed, feed):
            return []
        self._feed = feed
        return [f"F{self.format_number(feed)}"]

    def rapid(self, x: Optional[float] = None, y: Optional[float] = None, z: Optional[float] = None) -> "GCodeBuilder":
        """Rapid move; axes already in position are left out."""
        words = self._axes(x, y, z)
        if words:  # Skip redundant move
            self._write(" ".join([self.profile.rapid_move] + words))
        return self

    def linear(self, x: Optional[float], y: Optional[float], z: Optional[float], feed: float) -> "GCodeBuilder":
        """Linear move at the given feed rate."""
        words = self._axes(x, y, z)
        if words:
            self._write(" ".join([self.profile.feed_move] + words + self._feed_word(feed)))
        return self

    def arc(
        self,
        x: float, y: float, z: Optional[float],
        center: tuple[float, float],
        clockwise: bool,
        feed: float,
    ) -> "GCodeBuilder":
        """Arc move with I/J offsets from the current position to the centre."""
        i = center[0] - (self._pos_x or 0.0)
        j = center[1] - (self._pos_y or 0.0)
        command = self.profile.arc_cw if clockwise else self.profile.arc_ccw
        words = self._axes(x, y, z, force_xy=True)
        words += [f"I{self.format_number(i)}", f"J{self.format_number(j)}"]
        self._write(" ".join([command] + words + self._feed_word(feed)))
        return self

    def toolpath(self, tp: Toolpath) -> "GCodeBuilder":
        """Emit one planned toolpath segment."""
        if tp.is_arc and tp.arc_center is not None:
            x, y, z = tp.end
            self.arc(x, y, z, tp.arc_center, tp.clockwise, tp.feed or self.settings.feed_rate)
            return self
        for point in tp.points[1:]:
            x, y, z = (float(v) for v in point)
            if tp.is_rapid:
                self.rapid(x, y, z)
            else:
                self.linear(x, y, z, tp.feed or self.settings.feed_rate)
        return self

    def get_gcode(self) -> str:
        """Get the generated G-code as a string."""
        return self.buffer.getvalue()

    def save(self, path: Path) -> None:
        """Save G-code to a file."""
        with open(path, "w") as f:
            f.write(self.get_gcode())

    def reset(self) -> None:
        """Reset the builder for new G-code."""
        self.buffer = StringIO()
        self._spindle_running = False
        self._pos_x = None
        self._pos_y = None
        self._pos_z = None
        self._feed = None


def _header(builder: GCodeBuilder, planned: PlannedSheet) -> None:
    layout = planned.layout
    settings = planned.settings
    profile = builder.profile
    builder.comment(f"Sheet {planned.sheet_number}: {layout.label} {layout.stock.width:g} x {layout.stock.height:g} mm")
    builder.comment(f"Parts: {len(layout.placements)}, efficiency {layout.efficiency:.1f}%")
    builder.comment(
        f"Tool: {settings.tool_diameter:g} mm, feed {settings.feed_rate:g}, plunge {settings.plunge_rate:g}, "
        f"spindle {settings.spindle_speed} RPM"
    )
    builder.comment(f"Depth: {settings.cut_depth:g} mm in {settings.pass_depth:g} mm passes")
    builder.comment(f"Profile: {profile.name} ({profile.units})")
    for collision in planned.collisions:
        builder.comment(
            f"WARNING: dust shoe hits clamp {collision.clamp_label} near part {collision.part_label}"
        )


def _body(builder: GCodeBuilder, planned: PlannedSheet) -> None:
    for cut in planned.cuts:
        p = cut.placement
        if cut.is_cleanup:
            builder.comment(f"Cleanup {cut.label}: full depth")
        else:
            rotation = f", rotated {p.angle:g} deg" if p.angle else ""
            builder.comment(f"Part {cut.number}: {cut.label} {p.part.width:g} x {p.part.height:g}{rotation}")
        for tp in cut.toolpaths:
            builder.toolpath(tp)


def generate_sheet_code(planned: PlannedSheet, profile: GCodeProfile) -> str:
    """Complete program for one planned sheet.

    Raises:
        ProfileMismatchError: The profile has an empty or malformed template
    """
    settings = planned.settings
    builder = GCodeBuilder(profile, settings)
    _header(builder, planned)
    builder.start()
    builder.spindle_on(settings.spindle_speed)
    builder.rapid(z=settings.safe_z)
    builder.rapid(x=0.0, y=0.0)
    _body(builder, planned)
    builder.rapid(z=settings.safe_z)
    builder.end()
    return builder.get_gcode()


def generate_all_code(result: OptimizationResult, profile: GCodeProfile, settings: Settings) -> list[str]:
    """One program per sheet of the result."""
    return [generate_sheet_code(planned, profile) for planned in plan_all(result, settings)]


def generate_program(planned_sheets: Sequence[PlannedSheet], profile: GCodeProfile, settings: Settings) -> str:
    """Single program cutting all sheets, pausing for a sheet change in between."""
    builder = GCodeBuilder(profile, settings)
    builder.comment(f"{len(planned_sheets)} sheets")
    builder.start()
    for index, planned in enumerate(planned_sheets):
        if index > 0:
            builder.rapid(z=settings.safe_z)
            builder.spindle_off()
            builder.pause(f"Load sheet {planned.sheet_number}")
        _header(builder, planned)
        builder.spindle_on(settings.spindle_speed)
        builder.rapid(z=settings.safe_z)
        builder.rapid(x=0.0, y=0.0)
        _body(builder, planned)
    builder.rapid(z=settings.safe_z)
    builder.end()
    return builder.get_gcode()


class MoveType(Enum):
    RAPID = "rapid"
    FEED = "feed"
    PLUNGE = "plunge"
    RETRACT = "retract"
    ARC = "arc"


@dataclass(frozen=True)
class GCodeMove:
    type: MoveType
    start: tuple[float, float, float]
    end: tuple[float, float, float]
    feed: Optional[float] = None
    line_number: int = 0


_WORD = re.compile(r"([A-Z])\s*([-+]?(?:\d+\.?\d*|\.\d+))")
_COMMENT = re.compile(r"\(.*?\)|;.*$")
_NON_MOTION = {28, 30, 53, 92}  # Axis words on these lines are not moves


def parse_gcode(text: str) -> list[GCodeMove]:
    """Parse a command stream into classified moves.

    Positions start at the origin; motion mode and feed are modal.
    """
    moves = []
    pos = (0.0, 0.0, 0.0)
    mode = None
    feed = None

    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = _COMMENT.sub("", raw.upper()).strip()
        if not line or line.startswith("$"):
            continue
        words = [(letter, float(value)) for letter, value in _WORD.findall(line)]
        g_codes = {int(v) for letter, v in words if letter == "G"}
        if g_codes & _NON_MOTION:
            continue
        for code in (0, 1, 2, 3):
            if code in g_codes:
                mode = code
        for letter, value in words:
            if letter == "F":
                feed = value

        axes = {letter: value for letter, value in words if letter in "XYZ"}
        if not axes or mode is None:
            continue
        end = (axes.get("X", pos[0]), axes.get("Y", pos[1]), axes.get("Z", pos[2]))

        z_only = abs(end[0] - pos[0]) < 1e-9 and abs(end[1] - pos[1]) < 1e-9
        if mode in (2, 3):
            kind = MoveType.ARC
        elif z_only and end[2] > pos[2]:
            kind = MoveType.RETRACT
        elif mode == 1 and z_only and end[2] < pos[2]:
            kind = MoveType.PLUNGE
        elif mode == 0:
            kind = MoveType.RAPID
        else:
            kind = MoveType.FEED

        moves.append(GCodeMove(
            type=kind,
            start=pos,
            end=end,
            feed=None if mode == 0 else feed,
            line_number=line_number,
        ))
        pos = end
    return moves
