"""Detection of reusable remnants in a finished layout."""

import logging
from typing import Sequence

from .geometry import Rect, split_maximal
from .models import Offcut, OptimizationResult, SheetLayout

logger = logging.getLogger(__name__)

MIN_OFFCUT_DIMENSION = 50.0  # mm
MIN_OFFCUT_AREA = 10000.0  # mm^2


def free_rectangles(sheet: SheetLayout, kerf: float, edge_trim: float = 0.0) -> list[Rect]:
    """Maximal free rectangles on a sheet, keeping a kerf clear of every part."""
    bounds = Rect(
        edge_trim, edge_trim,
        sheet.stock.width - 2 * edge_trim,
        sheet.stock.height - 2 * edge_trim,
    )
    if bounds.width <= 0 or bounds.height <= 0:
        return []

    free = [bounds]
    for placement in sheet.placements:
        blocked = placement.bounds.inflate(kerf).clip(bounds)
        if blocked is not None:
            free = split_maximal(free, blocked)
    return free


def detect_sheet_offcuts(
    sheet: SheetLayout,
    kerf: float,
    edge_trim: float = 0.0,
    min_dimension: float = MIN_OFFCUT_DIMENSION,
    min_area: float = MIN_OFFCUT_AREA,
) -> list[Offcut]:
    """Disjoint usable remnants on one sheet, largest first.

    The largest qualifying free rectangle is taken first; the remaining
    candidates are cut around it and the search repeats.
    """
    def usable(rect: Rect) -> bool:
        return (
            rect.width >= min_dimension and rect.height >= min_dimension
            and rect.area >= min_area
        )

    candidates = [r for r in free_rectangles(sheet, kerf, edge_trim) if usable(r)]
    chosen: list[Rect] = []
    while candidates:
        best = min(candidates, key=lambda r: (-r.area, r.y, r.x))
        chosen.append(best)
        candidates = [r for r in split_maximal(candidates, best) if usable(r)]

    sheet_area = sheet.total_area
    offcuts = []
    for rect in chosen:
        price = sheet.stock.price * rect.area / sheet_area if sheet_area > 0 else 0.0
        offcuts.append(Offcut(
            sheet_index=sheet.index,
            sheet_label=sheet.label,
            x=rect.x,
            y=rect.y,
            width=rect.width,
            height=rect.height,
            price=price,
        ))
    return offcuts


def detect_offcuts(
    result: OptimizationResult,
    kerf: float,
    edge_trim: float = 0.0,
    min_dimension: float = MIN_OFFCUT_DIMENSION,
    min_area: float = MIN_OFFCUT_AREA,
) -> list[Offcut]:
    """Usable remnants across all sheets of a result, in sheet order."""
    offcuts = []
    for sheet in result.sheets:
        found = detect_sheet_offcuts(sheet, kerf, edge_trim, min_dimension, min_area)
        logger.debug("Sheet %d: %d offcuts", sheet.index + 1, len(found))
        offcuts.extend(found)
    return offcuts


def total_offcut_area(offcuts: Sequence[Offcut]) -> float:
    return sum(o.area for o in offcuts)
