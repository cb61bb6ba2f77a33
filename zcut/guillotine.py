"""Free-rectangle packing shared by all layout strategies.

The guillotine packer places part instances largest first. Each stock
sheet keeps a list of free rectangles; a part goes into the free rectangle
it fits best (smallest leftover area) and that rectangle is split in two
by a full-length cut. The kerf is reserved along the right and top edges
of every placement unless the part reaches the edge of the usable area.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from .geometry import EPS, Outline, Rect, prune_contained, rotate_with_holes, split_maximal
from .models import (
    Grain,
    PartInstance,
    PlacedPart,
    SheetLayout,
    StockInstance,
    can_place_with_grain,
)
from .settings import Settings

logger = logging.getLogger(__name__)

MIN_CUTOUT_SPACE = 1.0  # mm


class CancelEvent(Protocol):
    def is_set(self) -> bool: ...


ProgressCallback = Callable[[int, float], None]


class RotationRule(Enum):
    """Orientation preference used while filling one sheet."""
    BEST_FIT = "best_fit"  # Whichever orientation leaves the least waste
    NORMAL_FIRST = "normal_first"
    ROTATED_FIRST = "rotated_first"


ALL_RULES = (RotationRule.BEST_FIT, RotationRule.NORMAL_FIRST, RotationRule.ROTATED_FIRST)


@dataclass(frozen=True)
class Orientation:
    """One way a part can be laid on a sheet."""
    width: float
    height: float
    rotated: bool = False
    angle: float = 0.0
    outline: Optional[Outline] = None
    cutouts: tuple[Outline, ...] = ()


class FreeRectPacker:
    """Tracks free space on one sheet and places rectangles into it.

    Args:
        free_rects: Initial free space (usable area minus exclusions)
        kerf: Saw or bit width reserved next to every placement
        bounds: Usable area; no kerf is reserved past its edges
        guillotine: Split with full-length cuts if True, maximal rectangles otherwise
    """

    def __init__(self, free_rects: Sequence[Rect], kerf: float, bounds: Rect, guillotine: bool = True):
        self.free = list(free_rects)
        self.kerf = kerf
        self.bounds = bounds
        self.guillotine = guillotine

    def _reserved_size(self, rect: Rect, width: float, height: float) -> tuple[float, float]:
        rw = min(width + self.kerf, self.bounds.right - rect.x)
        rh = min(height + self.kerf, self.bounds.top - rect.y)
        return max(rw, width), max(rh, height)

    def find(self, width: float, height: float) -> Optional[tuple[tuple, int]]:
        """Best-area-fit search.

        Returns (score, free rect index) or None. Lower scores are better:
        leftover area, then leftover short side, then lowest y, lowest x.
        """
        best = None
        for index, rect in enumerate(self.free):
            if width > rect.width + EPS or height > rect.height + EPS:
                continue
            rw, rh = self._reserved_size(rect, width, height)
            if rw > rect.width + EPS or rh > rect.height + EPS:
                continue
            leftover = rect.area - rw * rh
            short_side = min(rect.width - rw, rect.height - rh)
            score = (round(leftover, 6), round(short_side, 6), rect.y, rect.x, index)
            if best is None or score < best[0]:
                best = (score, index)
        return best

    def place(self, index: int, width: float, height: float) -> Rect:
        """Occupy the free rect at index; returns the reserved rectangle."""
        rect = self.free[index]
        rw, rh = self._reserved_size(rect, width, height)
        reserved = Rect(rect.x, rect.y, min(rw, rect.width), min(rh, rect.height))

        if self.guillotine:
            del self.free[index]
            self.free.extend(self._split(rect, reserved))
        else:
            self.free = split_maximal(self.free, reserved)
        return reserved

    def open_cutout(self, hole: Rect) -> None:
        """Offer the inside of a placed part's cutout as free space.

        The hole is shrunk by the kerf on every side; slivers of 1 mm or
        less are not worth nesting into.
        """
        space = hole.inflate(-self.kerf)
        if space.width > MIN_CUTOUT_SPACE and space.height > MIN_CUTOUT_SPACE:
            self.free.append(space)

    @staticmethod
    def _split(rect: Rect, used: Rect) -> list[Rect]:
        """Split rect around used (at its lower-left) with one full-length cut.

        Chooses the cut whose smaller child is smallest, which keeps the
        larger remainder as big as possible. Ties go to the horizontal cut.
        """
        right_w = rect.width - used.width
        top_h = rect.height - used.height

        # Horizontal cut: right child as tall as the part, top child full width
        horizontal = [
            Rect(rect.x + used.width, rect.y, right_w, used.height),
            Rect(rect.x, rect.y + used.height, rect.width, top_h),
        ]
        # Vertical cut: right child full height, top child as wide as the part
        vertical = [
            Rect(rect.x + used.width, rect.y, right_w, rect.height),
            Rect(rect.x, rect.y + used.height, used.width, top_h),
        ]

        def smaller_child(children):
            return min(c.area if c.width > EPS and c.height > EPS else 0.0 for c in children)

        chosen = vertical if smaller_child(vertical) < smaller_child(horizontal) - EPS else horizontal
        return [c for c in chosen if c.width > EPS and c.height > EPS]


def usable_area(stock_width: float, stock_height: float, edge_trim: float) -> Rect:
    return Rect(edge_trim, edge_trim, stock_width - 2 * edge_trim, stock_height - 2 * edge_trim)


def exclusion_zones(stock: StockInstance, settings: Settings) -> list[Rect]:
    """Stock tab padding and clamp zones that must stay free on this sheet."""
    tabs = stock.stock.tabs if stock.stock.tabs is not None else settings.stock_tabs
    zones = tabs.exclusion_zones(stock.stock.width, stock.stock.height)
    zones.extend(clamp.rect for clamp in settings.clamp_zones)
    return zones


def initial_free_rects(stock: StockInstance, settings: Settings) -> tuple[Rect, list[Rect]]:
    """Return (usable bounds, free rectangles) for an empty sheet."""
    bounds = usable_area(stock.stock.width, stock.stock.height, settings.edge_trim)
    if bounds.width <= EPS or bounds.height <= EPS:
        return bounds, []

    free = [bounds]
    for zone in exclusion_zones(stock, settings):
        zone = zone.inflate(settings.kerf_width)
        if settings.guillotine_only:
            pieces = []
            for rect in free:
                pieces.extend(rect.subtract(zone))
            free = pieces
        else:
            free = split_maximal(free, zone)
    if not settings.guillotine_only:
        free = prune_contained(free)
    return bounds, free


def new_packer(stock: StockInstance, settings: Settings) -> FreeRectPacker:
    bounds, free = initial_free_rects(stock, settings)
    return FreeRectPacker(free, settings.kerf_width, bounds, guillotine=settings.guillotine_only)


def orientations(instance: PartInstance, stock_grain: Grain, settings: Settings) -> list[Orientation]:
    """Allowed orientations of a part on a sheet with the given grain, normal first."""
    part = instance.part
    allow_normal, allow_rotated = can_place_with_grain(part.grain, stock_grain)

    if part.outline and part.grain == Grain.NONE and settings.nesting_rotations > 2:
        candidates = []
        step = 180.0 / settings.nesting_rotations
        for i in range(settings.nesting_rotations):
            angle = i * step
            if angle:
                outline, cutouts = rotate_with_holes(part.outline, part.cutouts, angle)
            else:
                outline, cutouts = part.outline, part.cutouts
            xs = [p[0] for p in outline]
            ys = [p[1] for p in outline]
            width, height = max(xs) - min(xs), max(ys) - min(ys)
            candidates.append(Orientation(
                width, height, rotated=abs(angle - 90.0) < 1e-9, angle=angle, outline=outline, cutouts=cutouts,
            ))
        # Tightest bounding box first; sort is stable for equal areas
        candidates.sort(key=lambda o: round(o.width * o.height, 6))
        return candidates

    result = []
    if allow_normal:
        result.append(Orientation(part.width, part.height, outline=part.outline, cutouts=part.cutouts))
    square = abs(part.width - part.height) < EPS and not part.outline
    if allow_rotated and not (square and allow_normal):
        shell = part.outline or ((0.0, 0.0), (part.width, 0.0), (part.width, part.height), (0.0, part.height))
        outline, cutouts = rotate_with_holes(shell, part.cutouts, 90.0)
        result.append(Orientation(
            part.height, part.width, rotated=True, angle=90.0,
            outline=outline if part.outline else None, cutouts=cutouts,
        ))
    return result


def _choose(
    packer: FreeRectPacker,
    options: list[Orientation],
    rule: RotationRule,
    preferred: Optional[bool],
) -> Optional[tuple[Orientation, int]]:
    if not options:
        return None

    if preferred is not None:
        ordered = sorted(options, key=lambda o: o.rotated != preferred)
        rule = RotationRule.NORMAL_FIRST
    elif rule == RotationRule.ROTATED_FIRST:
        ordered = sorted(options, key=lambda o: not o.rotated)
    else:
        ordered = options

    if rule == RotationRule.BEST_FIT:
        best = None
        for rank, option in enumerate(ordered):
            found = packer.find(option.width, option.height)
            if found is None:
                continue
            key = (found[0], rank)
            if best is None or key < best[0]:
                best = (key, option, found[1])
        return (best[1], best[2]) if best else None

    for option in ordered:
        found = packer.find(option.width, option.height)
        if found is not None:
            return option, found[1]
    return None


@dataclass
class SheetFill:
    stock: StockInstance
    placements: list[PlacedPart] = field(default_factory=list)
    rule: RotationRule = RotationRule.BEST_FIT

    @property
    def used_area(self) -> float:
        return sum(p.area for p in self.placements)

    @property
    def efficiency(self) -> float:
        return self.used_area / self.stock.stock.area if self.stock.stock.area > 0 else 0.0


def fill_sheet(
    stock: StockInstance,
    instances: Sequence[PartInstance],
    settings: Settings,
    rule: RotationRule = RotationRule.BEST_FIT,
    hints: Optional[dict[int, bool]] = None,
) -> SheetFill:
    """Place as many instances as fit on one sheet, in the given order."""
    packer = new_packer(stock, settings)
    fill = SheetFill(stock=stock, rule=rule)
    for instance in instances:
        options = orientations(instance, stock.stock.grain, settings)
        preferred = hints.get(instance.order) if hints else None
        chosen = _choose(packer, options, rule, preferred)
        if chosen is None:
            continue
        option, index = chosen
        x, y = packer.free[index].x, packer.free[index].y
        reserved = packer.place(index, option.width, option.height)
        placed = PlacedPart(
            instance=instance,
            sheet_index=0,
            x=x,
            y=y,
            width=option.width,
            height=option.height,
            rotated=option.rotated,
            angle=option.angle,
            outline=option.outline,
            reserved=reserved,
            cutouts=option.cutouts,
        )
        fill.placements.append(placed)
        for hole in placed.cutout_rects():
            packer.open_cutout(hole)
    return fill


def best_fill(
    stock: StockInstance,
    instances: Sequence[PartInstance],
    settings: Settings,
    rules: Sequence[RotationRule] = ALL_RULES,
    hints: Optional[dict[int, bool]] = None,
) -> SheetFill:
    """Fill a sheet with every rule and keep the one placing the most parts."""
    best = None
    for rule in rules:
        fill = fill_sheet(stock, instances, settings, rule, hints)
        key = (len(fill.placements), round(fill.efficiency, 9))
        if best is None or key > best[0]:
            best = (key, fill)
    return best[1]


def fits_alone(instance: PartInstance, stock: StockInstance, settings: Settings) -> bool:
    packer = new_packer(stock, settings)
    for option in orientations(instance, stock.stock.grain, settings):
        if packer.find(option.width, option.height) is not None:
            return True
    return False


def select_best_stock(
    remaining: Sequence[PartInstance],
    pool: Sequence[StockInstance],
    settings: Settings,
    rules: Sequence[RotationRule] = ALL_RULES,
    hints: Optional[dict[int, bool]] = None,
) -> Optional[SheetFill]:
    """Open the stock size that packs the remaining parts most efficiently.

    Only stock sizes able to hold the first placeable remaining part are
    considered. Each distinct stock is trial-packed once; ties keep the
    earliest in supply order.
    """
    distinct: list[StockInstance] = []
    seen = set()
    for stock in pool:
        if stock.stock.id not in seen:
            seen.add(stock.stock.id)
            distinct.append(stock)

    for lead in remaining:
        holders = [s for s in distinct if fits_alone(lead, s, settings)]
        if not holders:
            continue
        best = None
        for stock in holders:
            fill = best_fill(stock, remaining, settings, rules, hints)
            if best is None or fill.efficiency > best.efficiency + 1e-12:
                best = fill
        return best
    return None


@dataclass
class PackOutcome:
    """Result of packing one group of instances."""
    layouts: list[SheetLayout] = field(default_factory=list)
    unplaced: list[PartInstance] = field(default_factory=list)
    used: list[StockInstance] = field(default_factory=list)
    cancelled: bool = False
    generations: int = 0


def pack_sequence(
    instances: Sequence[PartInstance],
    pool: Sequence[StockInstance],
    settings: Settings,
    hints: Optional[dict[int, bool]] = None,
    rules: Sequence[RotationRule] = ALL_RULES,
) -> PackOutcome:
    """Pack instances in the given order onto sheets drawn from pool."""
    outcome = PackOutcome()
    available = list(pool)

    remaining = []
    for instance in instances:
        if any(fits_alone(instance, s, settings) for s in available):
            remaining.append(instance)
        else:
            outcome.unplaced.append(instance)

    while remaining and available:
        fill = select_best_stock(remaining, available, settings, rules, hints)
        if fill is None or not fill.placements:
            break
        available.remove(fill.stock)
        outcome.used.append(fill.stock)
        layout = SheetLayout(stock=fill.stock.stock, copy=fill.stock.copy, placements=fill.placements)
        outcome.layouts.append(layout)
        placed = {p.instance.order for p in fill.placements}
        remaining = [i for i in remaining if i.order not in placed]
        logger.debug(
            "Sheet %s #%d: %d parts, %.1f%% used (%s)",
            fill.stock.stock.label, fill.stock.copy + 1, len(fill.placements),
            fill.efficiency * 100, fill.rule.value,
        )

    outcome.unplaced.extend(remaining)
    outcome.unplaced.sort(key=lambda i: i.order)
    return outcome


class Packer(ABC):
    """A layout strategy for one group of part instances."""

    name: str = ""

    @abstractmethod
    def pack(
        self,
        instances: Sequence[PartInstance],
        pool: Sequence[StockInstance],
        settings: Settings,
        cancel_event: Optional[CancelEvent] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> PackOutcome:
        ...


def area_order(instances: Sequence[PartInstance]) -> list[PartInstance]:
    """Largest area first, stable on the original order."""
    return sorted(instances, key=lambda i: (-i.part.area, i.order))


class GuillotinePacker(Packer):
    """Deterministic largest-first best-area-fit packing."""

    name = "guillotine"

    def pack(self, instances, pool, settings, cancel_event=None, progress=None):
        return pack_sequence(area_order(instances), pool, settings)
