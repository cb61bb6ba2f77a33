"""Dust shoe versus clamp collision checks."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from shapely.geometry import LineString, Point
from shapely.ops import nearest_points

from .settings import Settings

if TYPE_CHECKING:
    from .toolpaths import PlannedSheet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Collision:
    """The dust shoe footprint reaches a clamp that stands taller than the shoe."""
    sheet_index: int
    sheet_label: str
    clamp_label: str
    part_label: str
    cut_number: int
    x: float  # Tool position closest to the clamp
    y: float
    distance: float  # Tool centre to clamp edge, mm
    during_cut: bool  # False if the contact happens on a rapid move


def shoe_radius(settings: Settings) -> float:
    return settings.dust_shoe_width / 2 + settings.dust_shoe_clearance


def check_dust_shoe_collisions(planned: "PlannedSheet", settings: Settings) -> list[Collision]:
    """Compare the dust shoe footprint along every toolpath with every clamp zone.

    The shoe rides at the tool height but never below the stock surface.
    A clamp is hit when it is taller than the shoe's underside and its
    rectangle comes within the shoe radius of the tool centre. Only the
    first contact per cut and clamp is reported.
    """
    if not settings.clamp_zones:
        return []

    radius = shoe_radius(settings)
    clamps = [(clamp, clamp.rect.to_shapely()) for clamp in settings.clamp_zones]
    found: dict[tuple[int, str], Collision] = {}

    for cut in planned.cuts:
        for toolpath in cut.toolpaths:
            points = []
            for p in toolpath.xy_points():
                if not points or abs(p[0] - points[-1][0]) > 1e-6 or abs(p[1] - points[-1][1]) > 1e-6:
                    points.append(p)
            shoe_z = max(float(toolpath.points[:, 2].min()), 0.0)
            path = LineString(points) if len(points) > 1 else Point(points[0])
            footprint = path.buffer(radius)

            for clamp, shape in clamps:
                key = (cut.number, clamp.label)
                if key in found or clamp.z_height <= shoe_z:
                    continue
                if not footprint.intersects(shape):
                    continue
                near, _ = nearest_points(path, shape)
                found[key] = Collision(
                    sheet_index=planned.layout.index,
                    sheet_label=planned.layout.label,
                    clamp_label=clamp.label,
                    part_label=cut.label,
                    cut_number=cut.number,
                    x=near.x,
                    y=near.y,
                    distance=path.distance(shape),
                    during_cut=not toolpath.is_rapid,
                )

    collisions = sorted(found.values(), key=lambda c: (c.cut_number, c.clamp_label))
    for collision in collisions:
        logger.warning(
            "Dust shoe hits clamp %s near (%.1f, %.1f) while cutting %s on sheet %d",
            collision.clamp_label, collision.x, collision.y, collision.part_label, collision.sheet_index + 1,
        )
    return collisions


def format_collision_warnings(collisions: Sequence[Collision]) -> str:
    """Human readable summary of collisions, one line per contact."""
    if not collisions:
        return "No dust shoe collisions detected."
    lines = [f"{len(collisions)} dust shoe collision(s) detected:"]
    for c in collisions:
        phase = "cutting" if c.during_cut else "moving to"
        lines.append(
            f"  Sheet {c.sheet_index + 1} ({c.sheet_label}): clamp '{c.clamp_label}' "
            f"while {phase} part '{c.part_label}' (cut {c.cut_number}) at X{c.x:.1f} Y{c.y:.1f}, "
            f"{c.distance:.1f} mm from the tool"
        )
    return "\n".join(lines)
