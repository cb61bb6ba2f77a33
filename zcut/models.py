"""Data model for parts, stock sheets and finished layouts."""

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from shapely.geometry import Polygon

from .geometry import (
    Outline,
    Rect,
    as_outline,
    normalize_outline,
    outline_area,
    outline_bounds,
    outline_perimeter,
    translate_outline,
)

if TYPE_CHECKING:
    from .settings import Settings, StockTabConfig


def new_id() -> str:
    """Short random identifier."""
    return uuid.uuid4().hex[:8]


class Grain(Enum):
    NONE = "none"
    HORIZONTAL = "horizontal"  # Fibres run along the width
    VERTICAL = "vertical"  # Fibres run along the height


def can_place_with_grain(part_grain: Grain, stock_grain: Grain) -> tuple[bool, bool]:
    """Return which orientations are allowed as (normal, rotated).

    A part without grain may go either way. A grained part on a grain-free
    sheet keeps its declared orientation. On a grained sheet the part is
    rotated exactly when its grain differs from the sheet's.
    """
    if part_grain == Grain.NONE:
        return True, True
    if stock_grain == Grain.NONE:
        return True, False
    if part_grain == stock_grain:
        return True, False
    return False, True


@dataclass(frozen=True)
class EdgeBanding:
    """Which part edges receive edge banding."""
    top: bool = False
    bottom: bool = False
    left: bool = False
    right: bool = False

    def has_any(self) -> bool:
        return self.top or self.bottom or self.left or self.right

    def edge_count(self) -> int:
        return sum((self.top, self.bottom, self.left, self.right))

    def linear_length(self, width: float, height: float) -> float:
        """Banding length for one piece; top and bottom run along the width."""
        length = 0.0
        if self.top:
            length += width
        if self.bottom:
            length += width
        if self.left:
            length += height
        if self.right:
            length += height
        return length

    def __str__(self) -> str:
        sides = [name for name, on in (("T", self.top), ("B", self.bottom), ("L", self.left), ("R", self.right)) if on]
        return "+".join(sides) if sides else "none"


@dataclass(frozen=True)
class Part:
    """A required part. Outline parts carry their shape normalised to the origin.

    cutouts are interior holes in part coordinates. Their bounding boxes
    become free space that smaller parts may be nested into.
    """
    label: str
    width: float
    height: float
    quantity: int = 1
    grain: Grain = Grain.NONE
    material: str = ""
    edge_banding: EdgeBanding = field(default_factory=EdgeBanding)
    outline: Optional[Outline] = None
    cutouts: tuple[Outline, ...] = ()
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        object.__setattr__(self, "cutouts", tuple(as_outline(c) for c in self.cutouts))

    @classmethod
    def from_outline(
        cls,
        label: str,
        points: Sequence[Sequence[float]],
        cutouts: Sequence[Sequence[Sequence[float]]] = (),
        **kwargs,
    ) -> "Part":
        """Create a part whose bounding box is derived from an arbitrary closed outline.

        Cutouts are given in the same coordinates as points and shifted with it.
        """
        raw = as_outline(points)
        bounds = outline_bounds(raw)
        holes = tuple(translate_outline(as_outline(c), -bounds.min_x, -bounds.min_y) for c in cutouts)
        return cls(
            label=label,
            width=bounds.width,
            height=bounds.height,
            outline=normalize_outline(raw),
            cutouts=holes,
            **kwargs,
        )

    @property
    def area(self) -> float:
        """Material area, net of cutouts."""
        gross = outline_area(self.outline) if self.outline else self.width * self.height
        return gross - sum(outline_area(c) for c in self.cutouts)

    @property
    def perimeter(self) -> float:
        outer = outline_perimeter(self.outline) if self.outline else 2 * (self.width + self.height)
        return outer + sum(outline_perimeter(c) for c in self.cutouts)

    def cutout_bounds(self) -> list[Rect]:
        """Bounding rectangles of the cutouts in part coordinates."""
        result = []
        for cutout in self.cutouts:
            b = outline_bounds(cutout)
            result.append(Rect(b.min_x, b.min_y, b.width, b.height))
        return result


@dataclass(frozen=True)
class StockSheet:
    label: str
    width: float
    height: float
    quantity: int = 1
    grain: Grain = Grain.NONE
    material: str = ""
    price: float = 0.0  # per sheet
    tabs: Optional["StockTabConfig"] = None  # Overrides the global stock tab setting
    id: str = field(default_factory=new_id)

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class PartInstance:
    """One copy of a part; order is the stable position in the expanded input."""
    part: Part
    copy: int
    order: int

    @property
    def label(self) -> str:
        if self.part.quantity > 1:
            return f"{self.part.label} #{self.copy + 1}"
        return self.part.label


@dataclass(frozen=True)
class StockInstance:
    stock: StockSheet
    copy: int
    order: int


@dataclass(frozen=True)
class PlacedPart:
    """A part instance positioned on a sheet.

    width and height are the placed (possibly rotated) bounding box size.
    reserved is the region claimed on the sheet including the kerf.
    """
    instance: PartInstance
    sheet_index: int
    x: float
    y: float
    width: float
    height: float
    rotated: bool = False
    angle: float = 0.0  # degrees, for outline parts nested at arbitrary angles
    outline: Optional[Outline] = None  # Placed shape relative to (x, y)
    reserved: Optional[Rect] = None
    cutouts: tuple[Outline, ...] = ()  # Placed holes relative to (x, y)

    @property
    def part(self) -> Part:
        return self.instance.part

    @property
    def bounds(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)

    @property
    def area(self) -> float:
        return self.part.area

    def sheet_outline(self) -> Outline:
        """Closed outline in sheet coordinates."""
        if self.outline:
            return translate_outline(self.outline, self.x, self.y)
        return (
            (self.x, self.y),
            (self.x + self.width, self.y),
            (self.x + self.width, self.y + self.height),
            (self.x, self.y + self.height),
        )

    def sheet_cutouts(self) -> list[Outline]:
        return [translate_outline(c, self.x, self.y) for c in self.cutouts]

    def cutout_rects(self) -> list[Rect]:
        """Bounding rectangles of the placed cutouts in sheet coordinates."""
        result = []
        for cutout in self.sheet_cutouts():
            b = outline_bounds(cutout)
            result.append(Rect(b.min_x, b.min_y, b.width, b.height))
        return result

    def holds(self, other: "PlacedPart") -> bool:
        """True if other sits inside one of this part's cutouts."""
        return other is not self and any(r.contains(other.bounds) for r in self.cutout_rects())

    def polygon(self) -> Polygon:
        return Polygon(self.sheet_outline(), self.sheet_cutouts())


@dataclass
class SheetLayout:
    """One stock sheet instance and the parts placed on it."""
    stock: StockSheet
    copy: int = 0
    placements: list[PlacedPart] = field(default_factory=list)
    index: int = 0

    @property
    def label(self) -> str:
        return self.stock.label

    @property
    def total_area(self) -> float:
        return self.stock.width * self.stock.height

    @property
    def used_area(self) -> float:
        return sum(p.area for p in self.placements)

    @property
    def kerf_area(self) -> float:
        """Area lost to kerf strips separating neighbouring parts.

        A strip is counted where one part's right or top edge faces another
        part across a gap no wider than its reserved kerf.
        """
        total = 0.0
        for a in self.placements:
            if a.reserved is None:
                continue
            kerf_x = a.reserved.right - a.bounds.right
            kerf_y = a.reserved.top - a.bounds.top
            for b in self.placements:
                if b is a:
                    continue
                gap_x = b.x - a.bounds.right
                if kerf_x > 0 and -1e-6 <= gap_x <= kerf_x + 1e-6:
                    overlap = min(a.bounds.top, b.bounds.top) - max(a.y, b.y)
                    if overlap > 0:
                        total += overlap * gap_x
                gap_y = b.y - a.bounds.top
                if kerf_y > 0 and -1e-6 <= gap_y <= kerf_y + 1e-6:
                    overlap = min(a.bounds.right, b.bounds.right) - max(a.x, b.x)
                    if overlap > 0:
                        total += overlap * gap_y
        return total

    @property
    def waste_area(self) -> float:
        return self.total_area - self.used_area - self.kerf_area

    @property
    def efficiency(self) -> float:
        """Used area as a percentage of the sheet area."""
        if self.total_area <= 0:
            return 0.0
        return self.used_area / self.total_area * 100.0

    @property
    def cut_length(self) -> float:
        return sum(p.part.perimeter for p in self.placements)


@dataclass
class OptimizationResult:
    sheets: list[SheetLayout] = field(default_factory=list)
    unplaced: list[PartInstance] = field(default_factory=list)
    algorithm: str = "guillotine"
    cancelled: bool = False
    generations: int = 0  # Completed search generations, 0 for the guillotine packer

    @property
    def placed_count(self) -> int:
        return sum(len(s.placements) for s in self.sheets)

    @property
    def total_area(self) -> float:
        return sum(s.total_area for s in self.sheets)

    @property
    def used_area(self) -> float:
        return sum(s.used_area for s in self.sheets)

    @property
    def waste_area(self) -> float:
        return sum(s.waste_area for s in self.sheets)

    @property
    def total_efficiency(self) -> float:
        total = self.total_area
        if total <= 0:
            return 0.0
        return self.used_area / total * 100.0

    @property
    def total_cut_length(self) -> float:
        return sum(s.cut_length for s in self.sheets)

    def estimated_job_time(self, settings: "Settings") -> float:
        """Rough machining time in minutes.

        Cutting runs at the feed rate for every depth pass, travel between
        parts at the rapid rate, plus a fixed setup time per sheet.
        """
        passes = max(1, math.ceil(settings.cut_depth / settings.pass_depth - 1e-9))
        cutting = self.total_cut_length * passes / settings.feed_rate
        travel = 0.0
        for sheet in self.sheets:
            x, y = 0.0, 0.0
            for p in sheet.placements:
                travel += math.hypot(p.x - x, p.y - y)
                x, y = p.x, p.y
            travel += math.hypot(x, y)
        return cutting + travel / settings.rapid_rate + settings.setup_time * len(self.sheets)


@dataclass(frozen=True)
class Offcut:
    """A usable remnant left on a sheet after cutting."""
    sheet_index: int
    sheet_label: str
    x: float
    y: float
    width: float
    height: float
    price: float = 0.0
    id: str = field(default_factory=new_id)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)

    def to_stock_sheet(self, grain: Grain = Grain.NONE, material: str = "") -> StockSheet:
        """Convert the offcut into a stock sheet for a later job."""
        return StockSheet(
            label=f"Offcut {self.sheet_label}",
            width=self.width,
            height=self.height,
            quantity=1,
            grain=grain,
            material=material,
            price=self.price,
        )
