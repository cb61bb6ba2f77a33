"""Toolpath planning for cutting a finished layout.

Each placed part is cut with an outside profile: the part outline offset
by the tool radius. Cutouts are cut first as inside profiles, and parts
nested in a cutout are cut before the part holding them. The planner
orders the parts, picks an entry point on every contour and builds the
depth passes with plunge entries, lead arcs, corner relief and holding
tabs. All coordinates are sheet coordinates in mm with Z = 0 at the
stock surface.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from shapely.geometry import LineString

from .geometry import Rect, mitre_point, offset_outline, orient_ccw, reflex_vertices, tessellate_arc
from .models import OptimizationResult, PlacedPart, SheetLayout
from .settings import CornerOvercut, PlungeStrategy, Settings

logger = logging.getLogger(__name__)

_TOL = 0.0001  # mm, positions closer than this are the same


@dataclass
class Toolpath:
    """A single toolpath segment."""
    points: np.ndarray  # Nx3 array of (x, y, z); the first row is the start position
    is_rapid: bool = False  # True if this is a rapid move
    is_arc: bool = False  # True for a G2/G3 move from points[0] to points[1]
    arc_center: tuple[float, float] | None = None  # Absolute (x, y) of the arc centre
    clockwise: bool = True  # True for G2, False for G3
    feed: float | None = None  # mm/min, None for rapids

    @property
    def start(self) -> tuple[float, float, float]:
        return tuple(float(v) for v in self.points[0])

    @property
    def end(self) -> tuple[float, float, float]:
        return tuple(float(v) for v in self.points[-1])

    def arc_sweep(self) -> float:
        """Signed sweep angle in radians; a closed arc is a full circle."""
        cx, cy = self.arc_center
        sx, sy = self.points[0, 0] - cx, self.points[0, 1] - cy
        ex, ey = self.points[-1, 0] - cx, self.points[-1, 1] - cy
        a0, a1 = math.atan2(sy, sx), math.atan2(ey, ex)
        if self.clockwise:
            sweep = (a0 - a1) % (2 * math.pi)
            return -(sweep if sweep > 1e-9 else 2 * math.pi)
        sweep = (a1 - a0) % (2 * math.pi)
        return sweep if sweep > 1e-9 else 2 * math.pi

    def xy_points(self, segments: int = 16) -> list[tuple[float, float]]:
        """Points in the XY plane, with arcs tessellated."""
        if self.is_arc and self.arc_center is not None:
            cx, cy = self.arc_center
            radius = math.hypot(self.points[0, 0] - cx, self.points[0, 1] - cy)
            start = math.atan2(self.points[0, 1] - cy, self.points[0, 0] - cx)
            return tessellate_arc(cx, cy, radius, start, start + self.arc_sweep(), segments)
        return [(float(p[0]), float(p[1])) for p in self.points]

    def xy_length(self) -> float:
        if self.is_arc and self.arc_center is not None:
            cx, cy = self.arc_center
            radius = math.hypot(self.points[0, 0] - cx, self.points[0, 1] - cy)
            return abs(self.arc_sweep()) * radius
        deltas = np.diff(self.points[:, :2], axis=0)
        return float(np.hypot(deltas[:, 0], deltas[:, 1]).sum())


@dataclass
class PlannedCut:
    """All motion for cutting one part."""
    placement: PlacedPart
    number: int  # 1-based position in the cut sequence
    toolpaths: list[Toolpath]
    contour: np.ndarray  # Mx2 tool-centre ring, starting at the entry vertex
    entry: tuple[float, float]  # Where the tool first reaches the stock
    depths: list[float]
    is_cleanup: bool = False
    holes: list[np.ndarray] = field(default_factory=list)  # Inside profiles, cut before the contour

    @property
    def label(self) -> str:
        return self.placement.instance.label


@dataclass
class PlannedSheet:
    layout: SheetLayout
    settings: Settings
    sheet_number: int
    cuts: list[PlannedCut] = field(default_factory=list)
    stock_tab_zones: list[Rect] = field(default_factory=list)
    collisions: list = field(default_factory=list)

    @property
    def collision_free(self) -> bool:
        return not self.collisions

    @property
    def toolpaths(self) -> list[Toolpath]:
        return [tp for cut in self.cuts for tp in cut.toolpaths]

    @property
    def cut_length(self) -> float:
        return sum(tp.xy_length() for tp in self.toolpaths if not tp.is_rapid)

    @property
    def rapid_distance(self) -> float:
        return sum(tp.xy_length() for tp in self.toolpaths if tp.is_rapid)


def _calculate_depth_passes(target_depth: float, max_per_pass: float) -> list[float]:
    """Calculate the Z depths for each pass.

    Returns list of negative Z values, shallowest to deepest.
    """
    if target_depth <= 0:
        return []

    passes = []
    remaining = target_depth
    current_depth = 0.0

    while remaining > 0.001:  # Small epsilon for float comparison
        cut = min(remaining, max_per_pass)
        current_depth += cut
        passes.append(-current_depth)
        remaining -= cut

    return passes


def _unit(dx: float, dy: float) -> tuple[float, float]:
    length = math.hypot(dx, dy)
    if length < 1e-12:
        return 0.0, 0.0
    return dx / length, dy / length


def _rotate(vx: float, vy: float, angle: float) -> tuple[float, float]:
    c, s = math.cos(angle), math.sin(angle)
    return vx * c - vy * s, vx * s + vy * c


class _PathBuilder:
    """Accumulates toolpath segments while tracking the tool position."""

    def __init__(self, x: float, y: float, z: float):
        self.pos = (x, y, z)
        self.toolpaths: list[Toolpath] = []

    @staticmethod
    def _same(a, b) -> bool:
        return all(abs(p - q) < _TOL for p, q in zip(a, b))

    def take(self) -> list[Toolpath]:
        toolpaths, self.toolpaths = self.toolpaths, []
        return toolpaths

    def rapid(self, x: float | None = None, y: float | None = None, z: float | None = None) -> None:
        target = (
            self.pos[0] if x is None else x,
            self.pos[1] if y is None else y,
            self.pos[2] if z is None else z,
        )
        if self._same(target, self.pos):
            return
        self.toolpaths.append(Toolpath(np.array([self.pos, target]), is_rapid=True))
        self.pos = target

    def feed(self, points: Sequence[tuple[float, float, float]], rate: float) -> None:
        path = [self.pos]
        for p in points:
            if not self._same(p, path[-1]):
                path.append(tuple(p))
        if len(path) < 2:
            return
        self.toolpaths.append(Toolpath(np.array(path), feed=rate))
        self.pos = path[-1]

    def arc(self, end: tuple[float, float, float], center: tuple[float, float], clockwise: bool, rate: float) -> None:
        self.toolpaths.append(Toolpath(
            np.array([self.pos, end]),
            is_arc=True,
            arc_center=center,
            clockwise=clockwise,
            feed=rate,
        ))
        self.pos = end


@dataclass
class _Contour:
    """Tool-centre ring of one profile with its corner relief targets."""
    ring: list[tuple[float, float]]
    overcuts: dict[int, tuple[float, float]]  # ring index -> relief target
    clockwise: bool
    inside: bool = False  # Inside profile of a cutout; the waste is within the ring

    def waste_normal(self, tx: float, ty: float) -> tuple[float, float]:
        # Left of travel on a clockwise outside ring or a counter-clockwise inside ring
        return (-ty, tx) if self.clockwise != self.inside else (ty, -tx)

    def start_at(self, index: int) -> "_Contour":
        m = len(self.ring)
        ring = self.ring[index:] + self.ring[:index]
        overcuts = {(k - index) % m: p for k, p in self.overcuts.items()}
        return _Contour(ring, overcuts, self.clockwise, self.inside)

    def split_edge(self, index: int) -> "_Contour":
        """Insert the midpoint of the edge leaving ring[index] as a new vertex."""
        m = len(self.ring)
        a, b = self.ring[index], self.ring[(index + 1) % m]
        ring = self.ring[:index + 1] + [((a[0] + b[0]) / 2, (a[1] + b[1]) / 2)] + self.ring[index + 1:]
        overcuts = {(k + 1 if k > index else k): p for k, p in self.overcuts.items()}
        return _Contour(ring, overcuts, self.clockwise, self.inside)

    def perimeter(self) -> float:
        m = len(self.ring)
        return sum(math.dist(self.ring[k], self.ring[(k + 1) % m]) for k in range(m))


def _build_contour(
    outline: Sequence[tuple[float, float]],
    settings: Settings,
    inside: bool = False,
) -> Optional[_Contour]:
    """Offset an outline by the tool radius, outward for parts and inward for cutouts.

    Climb milling runs clockwise around an outside profile and
    counter-clockwise around an inside one.
    """
    r = settings.tool_radius
    offset = -r if inside else r
    outline = orient_ccw(outline)
    ring = list(orient_ccw(offset_outline(outline, offset)))
    if len(ring) < 3:
        return None
    clockwise = settings.use_climb != inside

    overcuts = {}
    if settings.corner_overcut != CornerOvercut.NONE:
        n = len(outline)
        reflex = reflex_vertices(outline)
        # The tool leaves material in the part's inside corners
        corners = [i for i in range(n) if i not in reflex] if inside else reflex
        for i in corners:
            prev_pt, corner, next_pt = outline[i - 1], outline[i], outline[(i + 1) % n]
            q = mitre_point(prev_pt, corner, next_pt, offset)
            k = min(range(len(ring)), key=lambda j: math.dist(ring[j], q))
            if math.dist(ring[k], q) > 0.01:
                continue
            if settings.corner_overcut == CornerOvercut.DOGBONE:
                ux, uy = _unit(corner[0] - q[0], corner[1] - q[1])
                reach = math.dist(corner, q) - r
            else:
                # Along the edge the cutter arrives on
                origin = next_pt if clockwise else prev_pt
                ux, uy = _unit(corner[0] - origin[0], corner[1] - origin[1])
                reach = (corner[0] - q[0]) * ux + (corner[1] - q[1]) * uy
            if reach > _TOL:
                overcuts[k] = (q[0] + ux * reach, q[1] + uy * reach)

    if not clockwise:
        return _Contour(ring, overcuts, clockwise=False, inside=inside)
    m = len(ring)
    return _Contour(
        [ring[0]] + ring[:0:-1],
        {(m - k) % m: p for k, p in overcuts.items()},
        clockwise=True,
        inside=inside,
    )


def _tab_intervals(contour: _Contour, settings: Settings) -> list[tuple[float, float]]:
    """Arc-length intervals along the ring where the tool lifts over a tab."""
    per_side = settings.part_tabs_per_side
    if per_side <= 0 or settings.part_tab_height <= 0 or settings.part_tab_height >= settings.cut_depth:
        return []

    span = settings.part_tab_width + settings.tool_diameter
    ring = contour.ring
    m = len(ring)
    intervals = []
    s = 0.0
    for k in range(m):
        length = math.dist(ring[k], ring[(k + 1) % m])
        if length >= 3 * settings.part_tab_width and length / (per_side + 1) > span:
            for j in range(per_side):
                center = s + length * (j + 1) / (per_side + 1)
                intervals.append((center - span / 2, center + span / 2))
        s += length

    if not intervals:
        # No side long enough: spread the tabs evenly around the outline
        count = 4 * per_side
        spacing = s / count
        if spacing > span:
            for j in range(count):
                center = (j + 0.5) * spacing
                intervals.append((center - span / 2, center + span / 2))
    return intervals


def _contour_pass(
    contour: _Contour,
    tabs: list[tuple[float, float]],
    z: float,
    tab_z: float,
) -> list[tuple[float, float, float]]:
    """One lap of the ring at depth z, lifting to tab_z over the tabs."""
    ring = contour.ring
    m = len(ring)
    lifted = bool(tabs) and z < tab_z - 1e-9

    def z_at(s: float) -> float:
        if lifted and any(a < s < b for a, b in tabs):
            return tab_z
        return z

    points = []
    s = 0.0
    for k in range(m):
        a, b = ring[k], ring[(k + 1) % m]
        length = math.dist(a, b)
        if lifted and length > 0:
            events = []
            for start, end in tabs:
                if s < start < s + length:
                    events.append((start, True))
                if s < end < s + length:
                    events.append((end, False))
            for boundary, entering in sorted(events):
                t = (boundary - s) / length
                px, py = a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t
                low, high = (px, py, z), (px, py, tab_z)
                points.extend([low, high] if entering else [high, low])
        s += length
        end_z = z_at(s) if k < m - 1 else z
        points.append((b[0], b[1], end_z))
        target = contour.overcuts.get((k + 1) % m)
        if target is not None:
            points.append((target[0], target[1], end_z))
            points.append((b[0], b[1], end_z))
    return points


@dataclass
class _Lead:
    point: tuple[float, float]  # Off-edge end of the arc
    center: tuple[float, float]
    clockwise: bool


def _lead_arc(
    contour_point: tuple[float, float],
    tangent: tuple[float, float],
    normal: tuple[float, float],
    radius: float,
    angle_deg: float,
    leaving: bool,
) -> _Lead:
    """Tangent arc touching the contour at contour_point, on the waste side."""
    px, py = contour_point
    cx, cy = px + normal[0] * radius, py + normal[1] * radius
    vx, vy = px - cx, py - cy
    ccw = (-vy * tangent[0] + vx * tangent[1]) > 0
    theta = math.radians(min(max(angle_deg, 1.0), 180.0))
    # Lead-in starts behind the contour point, lead-out ends past it
    sign = 1.0 if ccw == leaving else -1.0
    rx, ry = _rotate(vx, vy, sign * theta)
    return _Lead((cx + rx, cy + ry), (cx, cy), clockwise=not ccw)


def _plunge(
    builder: _PathBuilder,
    settings: Settings,
    entry: tuple[float, float],
    toward: tuple[float, float],
    max_run: float,
    outward: tuple[float, float],
    clockwise: bool,
    floor: float,
    z: float,
) -> None:
    """Descend at the entry point from the previous floor to depth z."""
    ex, ey = entry
    step = floor - z
    strategy = settings.plunge_strategy

    if strategy == PlungeStrategy.RAMP and step > 0:
        angle = min(settings.ramp_angle if settings.ramp_angle > 0 else 3.0, 45.0)
        run = step / math.tan(math.radians(angle))
        leg = min(run, max_run)
        if leg > 0.01:
            builder.feed([(ex, ey, floor)], settings.plunge_rate)
            legs = math.ceil(run / leg - 1e-9)
            legs += legs % 2
            dz = step / legs
            dx, dy = toward
            points = []
            for i in range(1, legs + 1):
                at_far_end = i % 2 == 1
                x = ex + dx * leg if at_far_end else ex
                y = ey + dy * leg if at_far_end else ey
                points.append((x, y, floor - dz * i))
            builder.feed(points, settings.feed_rate)
            return

    if strategy == PlungeStrategy.HELIX and step > 0:
        radius = (settings.helix_diameter or settings.tool_diameter) / 2
        per_rev = settings.helix_depth_per_rev or settings.pass_depth / 2
        if radius > 0 and per_rev > 0:
            builder.feed([(ex, ey, floor)], settings.plunge_rate)
            center = (ex + outward[0] * radius, ey + outward[1] * radius)
            revolutions = max(1, math.ceil(step / per_rev - 1e-9))
            dz = step / revolutions
            for i in range(1, revolutions + 1):
                builder.arc((ex, ey, floor - dz * i), center, clockwise, settings.feed_rate)
            return

    builder.feed([(ex, ey, z)], settings.plunge_rate)


def _cut_part(
    builder: _PathBuilder,
    contour: _Contour,
    settings: Settings,
    passes: list[tuple[float, float]],
) -> tuple[float, float]:
    """Emit the passes for one part; returns the entry point."""
    ring = contour.ring
    p = ring[0]
    t_out = _unit(ring[1][0] - p[0], ring[1][1] - p[1])
    t_in = _unit(p[0] - ring[-1][0], p[1] - ring[-1][1])
    n_out = contour.waste_normal(*t_out)
    n_in = contour.waste_normal(*t_in)

    lead_in = None
    if settings.lead_in_radius > 0:
        lead_in = _lead_arc(p, t_out, n_out, settings.lead_in_radius, settings.lead_in_angle, leaving=False)
    lead_out = None
    if settings.lead_out_radius > 0:
        lead_out = _lead_arc(p, t_in, n_in, settings.lead_out_radius, settings.lead_out_angle, leaving=True)

    if lead_in is not None:
        entry = lead_in.point
        toward = _unit(p[0] - entry[0], p[1] - entry[1])
        max_run = math.dist(entry, p)
        outward = _unit(entry[0] - lead_in.center[0], entry[1] - lead_in.center[1])
    else:
        entry = p
        toward = t_out
        max_run = math.dist(p, ring[1])
        outward = n_out

    tabs = _tab_intervals(contour, settings)
    tab_z = -(settings.cut_depth - settings.part_tab_height)
    safe_z = settings.safe_z

    for floor, z in passes:
        builder.rapid(z=safe_z)
        builder.rapid(x=entry[0], y=entry[1])
        _plunge(builder, settings, entry, toward, max_run, outward, contour.clockwise, floor, z)
        if lead_in is not None:
            builder.arc((p[0], p[1], z), lead_in.center, lead_in.clockwise, settings.feed_rate)
        builder.feed(_contour_pass(contour, tabs, z, tab_z), settings.feed_rate)
        if lead_out is not None:
            builder.arc((lead_out.point[0], lead_out.point[1], z), lead_out.center, lead_out.clockwise, settings.feed_rate)
        builder.rapid(z=safe_z)
    return entry


def _rect_gap(a: Rect, b: Rect) -> float:
    dx = max(b.x - a.right, a.x - b.right, 0.0)
    dy = max(b.y - a.top, a.y - b.top, 0.0)
    return math.hypot(dx, dy)


def _structural_order(layout: SheetLayout, settings: Settings) -> list[PlacedPart]:
    """Parts anchored near sheet edges or clamps first, interior parts last."""
    width, height = layout.stock.width, layout.stock.height
    cx, cy = width / 2, height / 2

    def key(item):
        index, placement = item
        b = placement.bounds
        anchor = min(b.x, b.y, width - b.right, height - b.top)
        for clamp in settings.clamp_zones:
            anchor = min(anchor, _rect_gap(b, clamp.rect))
        bx, by = b.center
        return (round(anchor, 6), -round(math.hypot(bx - cx, by - cy), 6), index)

    return [p for _, p in sorted(enumerate(layout.placements), key=key)]


def _nearest_index(ring: list[tuple[float, float]], x: float, y: float) -> int:
    return min(range(len(ring)), key=lambda k: (round(math.dist(ring[k], (x, y)), 9), k))


def _nearest_edge(ring: list[tuple[float, float]], x: float, y: float) -> int:
    """Index of the edge whose midpoint is closest to (x, y)."""
    m = len(ring)

    def distance(k):
        a, b = ring[k], ring[(k + 1) % m]
        return round(math.dist(((a[0] + b[0]) / 2, (a[1] + b[1]) / 2), (x, y)), 9), k

    return min(range(m), key=distance)


def _stock_tab_zones(layout: SheetLayout, settings: Settings) -> list[Rect]:
    tabs = layout.stock.tabs if layout.stock.tabs is not None else settings.stock_tabs
    return tabs.exclusion_zones(layout.stock.width, layout.stock.height)


def plan_toolpaths(layout: SheetLayout, settings: Settings, sheet_number: Optional[int] = None) -> PlannedSheet:
    """Plan every cut on one sheet.

    Args:
        layout: Sheet with its placed parts
        settings: Tooling, entry, tab and ordering settings
        sheet_number: 1-based number for comments, defaults to the layout index + 1

    Returns:
        PlannedSheet with one PlannedCut per part, followed by the
        full-depth cleanup cuts when onion skin cleanup is enabled.
    """
    planned = PlannedSheet(
        layout=layout,
        settings=settings,
        sheet_number=sheet_number if sheet_number is not None else layout.index + 1,
        stock_tab_zones=_stock_tab_zones(layout, settings),
    )

    contours = {}
    for placement in layout.placements:
        contour = _build_contour(placement.sheet_outline(), settings)
        if contour is None:
            logger.warning("Skipping %s: degenerate outline", placement.instance.label)
            continue
        holes = []
        for cutout in placement.sheet_cutouts():
            hole = _build_contour(cutout, settings, inside=True)
            if hole is None:
                logger.warning("Skipping a cutout of %s: narrower than the tool", placement.instance.label)
                continue
            holes.append(hole)
        contours[id(placement)] = (placement, contour, holes)

    skin = settings.onion_skin_depth if settings.onion_skin_enabled else 0.0
    depths = _calculate_depth_passes(settings.cut_depth - skin, settings.pass_depth)
    if not depths:
        logger.warning("Nothing to cut: cut depth %.3f leaves no passes", settings.cut_depth)
    passes = list(zip([0.0] + depths[:-1], depths))

    if settings.structural_ordering:
        sequence = [p for p in _structural_order(layout, settings) if id(p) in contours]
        choose_nearest = False
    else:
        sequence = [p for p in layout.placements if id(p) in contours]
        choose_nearest = settings.optimize_toolpath
    nested = {id(p): [q for q in sequence if p.holds(q)] for p in sequence}

    def start_index(ring, x, y):
        if settings.optimize_toolpath or settings.structural_ordering:
            return _nearest_index(ring, x, y)
        return min(range(len(ring)), key=lambda k: (ring[k][1], ring[k][0]))

    builder = _PathBuilder(0.0, 0.0, settings.safe_z)
    remaining = list(sequence)
    started = []
    while remaining:
        x, y = builder.pos[0], builder.pos[1]
        # Parts nested in a cutout are cut before the cutout frees its slug
        ready = [p for p in remaining if not any(q in remaining for q in nested[id(p)])]
        if choose_nearest:
            placement = min(
                ready,
                key=lambda p: min(math.dist(v, (x, y)) for v in contours[id(p)][1].ring),
            )
        else:
            placement = ready[0]
        remaining.remove(placement)

        _, contour, holes = contours[id(placement)]
        entry = None
        cut_holes = []
        for hole in holes:
            # Enter mid-edge so lead arcs stay clear of the hole's corners
            k = _nearest_edge(hole.ring, *builder.pos[:2])
            hole = hole.split_edge(k).start_at(k + 1)
            hole_entry = _cut_part(builder, hole, settings, passes)
            entry = entry or hole_entry
            cut_holes.append(hole)
        contour = contour.start_at(start_index(contour.ring, *builder.pos[:2]))
        outer_entry = _cut_part(builder, contour, settings, passes)
        started.append((placement, contour, cut_holes))
        planned.cuts.append(PlannedCut(
            placement=placement,
            number=len(planned.cuts) + 1,
            toolpaths=builder.take(),
            contour=np.array(contour.ring),
            entry=entry or outer_entry,
            depths=depths,
            holes=[np.array(h.ring) for h in cut_holes],
        ))

    if skin > 0 and settings.onion_skin_cleanup and depths:
        cleanup = [(depths[-1], -settings.cut_depth)]
        for placement, contour, holes in started:
            entry = None
            for hole in holes:
                hole_entry = _cut_part(builder, hole, settings, cleanup)
                entry = entry or hole_entry
            outer_entry = _cut_part(builder, contour, settings, cleanup)
            planned.cuts.append(PlannedCut(
                placement=placement,
                number=len(planned.cuts) + 1,
                toolpaths=builder.take(),
                contour=np.array(contour.ring),
                entry=entry or outer_entry,
                depths=[-settings.cut_depth],
                is_cleanup=True,
                holes=[np.array(h.ring) for h in holes],
            ))

    for zone in planned.stock_tab_zones:
        shape = zone.to_shapely()
        for cut in planned.cuts:
            path = LineString(np.vstack([cut.contour, cut.contour[:1]])).buffer(settings.tool_radius)
            if path.intersection(shape).area > 1e-6:
                logger.warning("Cut %d (%s) enters a stock tab zone", cut.number, cut.label)

    if settings.dust_shoe_enabled:
        from .collision import check_dust_shoe_collisions

        planned.collisions = check_dust_shoe_collisions(planned, settings)

    logger.debug(
        "Sheet %d: %d cuts, %.0f mm cutting, %.0f mm rapid travel",
        planned.sheet_number, len(planned.cuts), planned.cut_length, planned.rapid_distance,
    )
    return planned


def plan_all(result: OptimizationResult, settings: Settings) -> list[PlannedSheet]:
    return [plan_toolpaths(sheet, settings, i + 1) for i, sheet in enumerate(result.sheets)]


def total_rapid_distance(planned: Sequence[PlannedSheet]) -> float:
    """Rapid travel over several sheets, each starting from the origin."""
    return sum(sheet.rapid_distance for sheet in planned)
