"""Geometry kernel: rectangles, outlines, arcs and segment chaining."""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np
from shapely.geometry import LineString, MultiPolygon, Point, Polygon, box
from shapely.geometry.polygon import orient

EPS = 1e-3  # mm, tolerance for rectangle comparisons

Point2D = tuple[float, float]
Outline = tuple[Point2D, ...]


@dataclass
class BoundingBox:
    """Axis-aligned bounding box."""
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return (
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2,
        )


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle anchored at its lower-left corner."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def intersects(self, other: "Rect") -> bool:
        """True if the rectangles overlap by more than the tolerance (touching is not overlap)."""
        return (
            self.x < other.right - EPS and self.right > other.x + EPS
            and self.y < other.top - EPS and self.top > other.y + EPS
        )

    def contains(self, other: "Rect") -> bool:
        return (
            self.x <= other.x + EPS and self.y <= other.y + EPS
            and self.right >= other.right - EPS and self.top >= other.top - EPS
        )

    def inflate(self, margin: float) -> "Rect":
        return Rect(self.x - margin, self.y - margin, self.width + 2 * margin, self.height + 2 * margin)

    def clip(self, bounds: "Rect") -> Optional["Rect"]:
        """Intersection with bounds, or None when nothing is left."""
        x0 = max(self.x, bounds.x)
        y0 = max(self.y, bounds.y)
        x1 = min(self.right, bounds.right)
        y1 = min(self.top, bounds.top)
        if x1 - x0 <= EPS or y1 - y0 <= EPS:
            return None
        return Rect(x0, y0, x1 - x0, y1 - y0)

    def subtract(self, other: "Rect", maximal: bool = False) -> list["Rect"]:
        """Return the parts of this rectangle not covered by other.

        With maximal=False the pieces are disjoint (left and right strips at
        full height, bottom and top strips between them). With maximal=True
        every piece spans the full extent of this rectangle along one axis,
        so pieces may overlap each other.
        """
        if not self.intersects(other):
            return [self]

        pieces = []
        if other.x > self.x + EPS:
            pieces.append(Rect(self.x, self.y, other.x - self.x, self.height))
        if other.right < self.right - EPS:
            pieces.append(Rect(other.right, self.y, self.right - other.right, self.height))

        if maximal:
            left, right = self.x, self.right
        else:
            left, right = max(self.x, other.x), min(self.right, other.right)
        if other.y > self.y + EPS:
            pieces.append(Rect(left, self.y, right - left, other.y - self.y))
        if other.top < self.top - EPS:
            pieces.append(Rect(left, other.top, right - left, self.top - other.top))
        return [p for p in pieces if p.width > EPS and p.height > EPS]

    def to_shapely(self) -> Polygon:
        return box(self.x, self.y, self.right, self.top)


def prune_contained(rects: Sequence[Rect]) -> list[Rect]:
    """Drop every rectangle fully contained in another (first of equal duplicates is kept)."""
    kept = []
    for i, a in enumerate(rects):
        contained = False
        for j, b in enumerate(rects):
            if i == j or not b.contains(a):
                continue
            # Equal rectangles contain each other; keep the earliest one
            if a.contains(b) and j > i:
                continue
            contained = True
            break
        if not contained:
            kept.append(a)
    return kept


def split_maximal(free: Iterable[Rect], obstacle: Rect) -> list[Rect]:
    """Split every free rectangle overlapping obstacle into maximal pieces and prune."""
    result = []
    for rect in free:
        result.extend(rect.subtract(obstacle, maximal=True))
    return prune_contained(result)


# --- Outlines ---------------------------------------------------------------

def as_outline(points: Iterable[Sequence[float]]) -> Outline:
    """Convert any point sequence to an immutable outline, dropping a repeated closing point."""
    pts = [(float(p[0]), float(p[1])) for p in points]
    if len(pts) > 1 and math.isclose(pts[0][0], pts[-1][0]) and math.isclose(pts[0][1], pts[-1][1]):
        pts = pts[:-1]
    return tuple(pts)


def outline_area(outline: Sequence[Point2D]) -> float:
    """Absolute polygon area by the shoelace formula."""
    if len(outline) < 3:
        return 0.0
    pts = np.asarray(outline, dtype=float)
    x, y = pts[:, 0], pts[:, 1]
    return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) / 2.0)


def outline_perimeter(outline: Sequence[Point2D]) -> float:
    """Length of the closed outline."""
    if len(outline) < 2:
        return 0.0
    pts = np.asarray(outline, dtype=float)
    deltas = np.roll(pts, -1, axis=0) - pts
    return float(np.hypot(deltas[:, 0], deltas[:, 1]).sum())


def outline_bounds(outline: Sequence[Point2D]) -> BoundingBox:
    if not outline:
        return BoundingBox(0.0, 0.0, 0.0, 0.0)
    pts = np.asarray(outline, dtype=float)
    return BoundingBox(
        min_x=float(pts[:, 0].min()),
        min_y=float(pts[:, 1].min()),
        max_x=float(pts[:, 0].max()),
        max_y=float(pts[:, 1].max()),
    )


def translate_outline(outline: Sequence[Point2D], dx: float, dy: float) -> Outline:
    return tuple((x + dx, y + dy) for x, y in outline)


def normalize_outline(outline: Sequence[Point2D]) -> Outline:
    """Shift the outline so its bounding box starts at the origin."""
    bounds = outline_bounds(outline)
    return translate_outline(outline, -bounds.min_x, -bounds.min_y)


def _rotate_points(outline: Sequence[Point2D], angle_deg: float) -> np.ndarray:
    theta = math.radians(angle_deg)
    rotation = np.array([
        [math.cos(theta), -math.sin(theta)],
        [math.sin(theta), math.cos(theta)],
    ])
    return np.asarray(outline, dtype=float) @ rotation.T


def rotate_outline(outline: Sequence[Point2D], angle_deg: float) -> Outline:
    """Rotate counter-clockwise about the origin and re-normalise to the origin."""
    if not outline:
        return ()
    return normalize_outline(as_outline(_rotate_points(outline, angle_deg)))


def rotate_with_holes(
    outline: Sequence[Point2D],
    holes: Sequence[Sequence[Point2D]],
    angle_deg: float,
) -> tuple[Outline, tuple[Outline, ...]]:
    """Rotate an outline and its holes together, normalising on the outline's bounds."""
    if not outline:
        return (), ()
    shell = as_outline(_rotate_points(outline, angle_deg))
    bounds = outline_bounds(shell)
    rotated_holes = tuple(
        translate_outline(as_outline(_rotate_points(hole, angle_deg)), -bounds.min_x, -bounds.min_y)
        for hole in holes
    )
    return translate_outline(shell, -bounds.min_x, -bounds.min_y), rotated_holes


def orient_ccw(outline: Sequence[Point2D]) -> Outline:
    """Return the outline with counter-clockwise winding."""
    pts = np.asarray(outline, dtype=float)
    x, y = pts[:, 0], pts[:, 1]
    signed = np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))
    if signed < 0:
        return tuple(reversed(as_outline(pts)))
    return as_outline(pts)


def point_in_outline(outline: Sequence[Point2D], x: float, y: float) -> bool:
    """True if (x, y) is strictly inside the outline."""
    if len(outline) < 3:
        return False
    return Polygon(outline).contains(Point(x, y))


def segments_intersect(p1: Point2D, p2: Point2D, q1: Point2D, q2: Point2D) -> bool:
    """True if segment p1-p2 touches or crosses segment q1-q2."""
    return LineString([p1, p2]).intersects(LineString([q1, q2]))


def outlines_overlap(a: Sequence[Point2D], b: Sequence[Point2D]) -> bool:
    """True if the two outlines share interior area (touching edges do not count)."""
    if len(a) < 3 or len(b) < 3:
        return False
    pa = Polygon(a).buffer(0)
    pb = Polygon(b).buffer(0)
    return pa.intersection(pb).area > EPS * EPS


def reflex_vertices(outline: Sequence[Point2D]) -> list[int]:
    """Indices of vertices where the interior angle exceeds 180 degrees."""
    ccw = orient_ccw(outline)
    reversed_winding = ccw != as_outline(outline)
    n = len(ccw)
    result = []
    for i in range(n):
        ax, ay = ccw[i - 1]
        bx, by = ccw[i]
        cx, cy = ccw[(i + 1) % n]
        cross = (bx - ax) * (cy - by) - (by - ay) * (cx - bx)
        if cross < -1e-9:
            result.append(n - 1 - i if reversed_winding else i)
    return sorted(result)


def offset_outline(outline: Sequence[Point2D], distance: float) -> Outline:
    """Offset a closed outline outward (positive) or inward (negative) with mitred corners."""
    if len(outline) < 3:
        return as_outline(outline)
    polygon = Polygon(outline).buffer(0)
    offset = polygon.buffer(distance, join_style=2)  # mitre join
    if offset.is_empty:
        return ()
    if isinstance(offset, MultiPolygon):
        offset = max(offset.geoms, key=lambda g: g.area)
    return as_outline(offset.exterior.coords)


def mitre_point(prev: Point2D, vertex: Point2D, nxt: Point2D, distance: float) -> Point2D:
    """Offset of a CCW polygon vertex by distance along the mitre of its two edge normals."""
    e1 = np.subtract(vertex, prev)
    e2 = np.subtract(nxt, vertex)
    e1 = e1 / np.linalg.norm(e1)
    e2 = e2 / np.linalg.norm(e2)
    # Outward normals of a CCW polygon point to the right of travel
    n1 = np.array([e1[1], -e1[0]])
    n2 = np.array([e2[1], -e2[0]])
    denom = 1.0 + float(np.dot(n1, n2))
    if denom < 1e-9:
        return (vertex[0] + n1[0] * distance, vertex[1] + n1[1] * distance)
    m = (n1 + n2) * (distance / denom)
    return (vertex[0] + float(m[0]), vertex[1] + float(m[1]))


# --- Arcs -------------------------------------------------------------------

def tessellate_arc(
    cx: float, cy: float, radius: float,
    start_angle: float, end_angle: float,
    segments: int = 32,
) -> list[Point2D]:
    """Points along an arc from start_angle to end_angle (radians), endpoints included."""
    segments = max(1, segments)
    angles = np.linspace(start_angle, end_angle, segments + 1)
    return [(cx + radius * math.cos(a), cy + radius * math.sin(a)) for a in angles]


def bulge_arc_points(p1: Point2D, p2: Point2D, bulge: float, segments: int = 32) -> list[Point2D]:
    """Points along a bulged polyline segment (bulge = tan of a quarter of the included angle).

    Positive bulge turns counter-clockwise. The end point p2 is included, p1 is not.
    """
    if abs(bulge) < 1e-9:
        return [p2]
    chord = math.dist(p1, p2)
    if chord < 1e-12:
        return [p2]
    included = 4 * math.atan(abs(bulge))
    radius = chord / (2 * math.sin(included / 2))
    mx, my = (p1[0] + p2[0]) / 2, (p1[1] + p2[1]) / 2
    # Distance from chord midpoint to the centre
    apothem = radius * math.cos(included / 2)
    ux, uy = (p2[0] - p1[0]) / chord, (p2[1] - p1[1]) / chord
    side = 1.0 if bulge > 0 else -1.0
    cx = mx - uy * apothem * side
    cy = my + ux * apothem * side
    start = math.atan2(p1[1] - cy, p1[0] - cx)
    sweep = included * side
    points = tessellate_arc(cx, cy, radius, start, start + sweep, segments)
    points[-1] = p2
    return points[1:]


# --- Segment chaining -------------------------------------------------------

class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


def chain_segments(
    segments: Sequence[tuple[Point2D, Point2D]],
    tolerance: float = 0.01,
) -> list[Outline]:
    """Join loose line segments into closed outlines.

    Endpoints closer than tolerance are merged into one node with a
    union-find over a spatial grid, then each connected loop is walked
    through an adjacency list. Chains that do not close are discarded.
    """
    n = len(segments)
    if n == 0:
        return []

    coords = []
    for start, end in segments:
        coords.append((float(start[0]), float(start[1])))
        coords.append((float(end[0]), float(end[1])))

    nodes = _DisjointSet(len(coords))
    cell = max(tolerance, 1e-9)
    grid: dict[tuple[int, int], list[int]] = {}
    for idx, (x, y) in enumerate(coords):
        gx, gy = math.floor(x / cell), math.floor(y / cell)
        for ix in (gx - 1, gx, gx + 1):
            for iy in (gy - 1, gy, gy + 1):
                for other in grid.get((ix, iy), ()):
                    if math.dist(coords[other], (x, y)) <= tolerance:
                        nodes.union(idx, other)
        grid.setdefault((gx, gy), []).append(idx)

    adjacency: dict[int, list[int]] = {}
    ends = []
    for seg in range(n):
        a, b = nodes.find(2 * seg), nodes.find(2 * seg + 1)
        ends.append((a, b))
        if a == b:
            continue
        adjacency.setdefault(a, []).append(seg)
        adjacency.setdefault(b, []).append(seg)

    used = [a == b for a, b in ends]
    outlines = []
    for seg in range(n):
        if used[seg]:
            continue
        used[seg] = True
        start_node, current = ends[seg]
        chain = [start_node, current]
        closed = False
        while True:
            if current == start_node:
                closed = True
                break
            nxt = next((s for s in adjacency.get(current, ()) if not used[s]), None)
            if nxt is None:
                break
            used[nxt] = True
            a, b = ends[nxt]
            current = b if a == current else a
            chain.append(current)
        if closed and len(chain) >= 4:
            outlines.append(tuple(coords[node] for node in chain[:-1]))
    return outlines
