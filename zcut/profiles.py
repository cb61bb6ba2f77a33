"""Machine profiles controlling the emitted command vocabulary and formatting."""

import dataclasses
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from .errors import InvalidInputError, ProfileMismatchError


@dataclass(frozen=True)
class GCodeProfile:
    """Command templates and number formatting for one controller dialect."""
    name: str
    description: str = ""
    units: str = "mm"  # "mm" or "inch"; coordinates are converted from mm

    start_code: tuple[str, ...] = ("G90", "G21")
    spindle_start: str = "M3 S%d"  # %d or {rpm} receives the spindle speed
    spindle_stop: str = "M5"
    home_all: str = ""
    home_xy: str = ""
    home_on_start: bool = False
    home_xy_on_end: bool = False
    end_code: tuple[str, ...] = ("G0 Z[SafeZ]", "M5", "M2")  # [SafeZ] is replaced

    absolute_mode: str = "G90"
    feed_mode: str = "G94"  # Units per minute
    rapid_move: str = "G0"
    feed_move: str = "G1"
    arc_cw: str = "G2"
    arc_ccw: str = "G3"
    pause_command: str = "M0"

    comment_prefix: str = ";"
    comment_suffix: str = ""
    decimal_places: int = 3
    leading_zeros: bool = True  # False writes 0.5 as .5

    def validate(self) -> None:
        """Raise ProfileMismatchError if a required template is empty or malformed."""
        commands = {
            "rapid_move": self.rapid_move,
            "feed_move": self.feed_move,
            "arc_cw": self.arc_cw,
            "arc_ccw": self.arc_ccw,
        }
        for field_name, template in commands.items():
            if not template or not re.fullmatch(r"[A-Z][0-9]+(\.[0-9]+)?", template):
                raise ProfileMismatchError(f"Profile {self.name!r}: {field_name} template {template!r} is not a command word")
        if not self.spindle_start or ("%d" not in self.spindle_start and "{rpm}" not in self.spindle_start):
            raise ProfileMismatchError(f"Profile {self.name!r}: spindle_start needs a %d or {{rpm}} slot")
        if self.units not in ("mm", "inch"):
            raise ProfileMismatchError(f"Profile {self.name!r}: unknown units {self.units!r}")
        if not 0 <= self.decimal_places <= 6:
            raise ProfileMismatchError(f"Profile {self.name!r}: decimal_places must be 0-6")

    def comment(self, text: str) -> str:
        if self.comment_suffix:
            return f"{self.comment_prefix}{text}{self.comment_suffix}"
        return f"{self.comment_prefix} {text}"

    def spindle_command(self, rpm: int) -> str:
        if "{rpm}" in self.spindle_start:
            return self.spindle_start.replace("{rpm}", str(rpm))
        return self.spindle_start % rpm


GRBL = GCodeProfile(
    name="Grbl",
    description="Grbl 1.1 and compatible controllers",
    start_code=("G90", "G21", "G17"),
    home_all="$H",
    home_xy="G0 X0 Y0",
    end_code=("G0 Z[SafeZ]", "G0 X0 Y0", "M5", "M2"),
    decimal_places=3,
)

MACH3 = GCodeProfile(
    name="Mach3",
    description="Mach3 / Mach4",
    start_code=("G90", "G21", "G17", "G40", "G49"),
    home_all="G28",
    home_xy="G28 X0 Y0",
    end_code=("G0 Z[SafeZ]", "M5", "G28", "M30"),
    comment_prefix="(",
    comment_suffix=")",
    decimal_places=4,
)

LINUXCNC = GCodeProfile(
    name="LinuxCNC",
    description="LinuxCNC",
    start_code=("G90", "G21", "G17", "G40", "G49", "G64 P0.01"),
    home_all="G28",
    home_xy="G28 X0 Y0",
    end_code=("G0 Z[SafeZ]", "M5", "M2"),
    decimal_places=4,
)

GENERIC = GCodeProfile(
    name="Generic",
    description="Plain RS-274 output",
    start_code=("G90", "G21"),
    end_code=("G0 Z[SafeZ]", "M5", "M2"),
    decimal_places=3,
)

BUILTIN_PROFILES: dict[str, GCodeProfile] = {p.name: p for p in (GRBL, MACH3, LINUXCNC, GENERIC)}


def customize_profile(profile: GCodeProfile, **changes) -> GCodeProfile:
    """Copy a profile with changes; the original is never modified."""
    if "name" not in changes:
        changes["name"] = f"{profile.name} (custom)"
    for key in ("start_code", "end_code"):
        if key in changes:
            changes[key] = tuple(changes[key])
    return dataclasses.replace(profile, **changes)


class ProfileStore:
    """Caller-owned registry of profiles, seeded with the built-ins."""

    def __init__(self, custom: Optional[list[GCodeProfile]] = None):
        self._custom: dict[str, GCodeProfile] = {}
        for profile in custom or []:
            self.add(profile)

    def __iter__(self) -> Iterator[GCodeProfile]:
        yield from BUILTIN_PROFILES.values()
        yield from self._custom.values()

    def __len__(self) -> int:
        return len(BUILTIN_PROFILES) + len(self._custom)

    def __contains__(self, name: str) -> bool:
        return name in BUILTIN_PROFILES or name in self._custom

    def names(self) -> list[str]:
        return [p.name for p in self]

    def get(self, name: str) -> GCodeProfile:
        """Look up a profile by name, falling back to Generic."""
        if name in BUILTIN_PROFILES:
            return BUILTIN_PROFILES[name]
        return self._custom.get(name, GENERIC)

    def add(self, profile: GCodeProfile) -> None:
        """Add or replace a custom profile."""
        if profile.name in BUILTIN_PROFILES:
            raise InvalidInputError(f"Cannot replace built-in profile {profile.name!r}")
        profile.validate()
        self._custom[profile.name] = profile

    def remove(self, name: str) -> None:
        if name in BUILTIN_PROFILES:
            raise InvalidInputError(f"Cannot remove built-in profile {name!r}")
        self._custom.pop(name, None)

    @staticmethod
    def is_builtin(name: str) -> bool:
        return name in BUILTIN_PROFILES
