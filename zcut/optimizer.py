"""Entry point for layout optimisation."""

import dataclasses
import logging
import time
from typing import Optional, Sequence

from .errors import InvalidInputError
from .genetic import GeneticPacker
from .geometry import Rect
from .guillotine import CancelEvent, GuillotinePacker, Packer, ProgressCallback
from .models import (
    OptimizationResult,
    Part,
    PartInstance,
    SheetLayout,
    StockInstance,
    StockSheet,
)
from .settings import Algorithm, Settings

logger = logging.getLogger(__name__)

STRATEGIES: dict[Algorithm, Packer] = {
    Algorithm.GUILLOTINE: GuillotinePacker(),
    Algorithm.GENETIC: GeneticPacker(),
}


def register_strategy(algorithm: Algorithm, packer: Packer) -> None:
    """Install a packer for an algorithm, replacing any existing one."""
    STRATEGIES[algorithm] = packer


def validate_inputs(parts: Sequence[Part], stocks: Sequence[StockSheet]) -> None:
    """Reject inputs no algorithm can work with."""
    if not parts:
        raise InvalidInputError("No parts to place")
    if not stocks:
        raise InvalidInputError("No stock sheets available")
    for part in parts:
        if part.width <= 0 or part.height <= 0:
            raise InvalidInputError(f"Part {part.label!r} has non-positive dimensions {part.width}x{part.height}")
        if part.quantity <= 0:
            raise InvalidInputError(f"Part {part.label!r} has non-positive quantity {part.quantity}")
        if part.outline is not None and len(part.outline) < 3:
            raise InvalidInputError(f"Part {part.label!r} outline needs at least 3 points")
        frame = Rect(0, 0, part.width, part.height)
        for hole, bounds in zip(part.cutouts, part.cutout_bounds()):
            if len(hole) < 3:
                raise InvalidInputError(f"Part {part.label!r} cutout needs at least 3 points")
            if not frame.contains(bounds):
                raise InvalidInputError(f"Part {part.label!r} has a cutout outside its bounds")
    for stock in stocks:
        if stock.width <= 0 or stock.height <= 0:
            raise InvalidInputError(f"Stock {stock.label!r} has non-positive dimensions {stock.width}x{stock.height}")
        if stock.quantity <= 0:
            raise InvalidInputError(f"Stock {stock.label!r} has non-positive quantity {stock.quantity}")


def expand_parts(parts: Sequence[Part]) -> list[PartInstance]:
    instances = []
    for part in parts:
        for copy in range(part.quantity):
            instances.append(PartInstance(part=part, copy=copy, order=len(instances)))
    return instances


def expand_stocks(stocks: Sequence[StockSheet]) -> list[StockInstance]:
    instances = []
    for stock in stocks:
        for copy in range(stock.quantity):
            instances.append(StockInstance(stock=stock, copy=copy, order=len(instances)))
    return instances


def group_by_material(instances: Sequence[PartInstance]) -> list[tuple[str, list[PartInstance]]]:
    """Split instances by material tag: tagged groups sorted by name, untagged last."""
    groups: dict[str, list[PartInstance]] = {}
    for instance in instances:
        groups.setdefault(instance.part.material, []).append(instance)
    ordered = [(m, groups[m]) for m in sorted(groups) if m]
    if "" in groups:
        ordered.append(("", groups[""]))
    return ordered


def stocks_for_material(pool: Sequence[StockInstance], material: str) -> list[StockInstance]:
    """Stock usable by a material group; untagged parts may use any stock."""
    if not material:
        return list(pool)
    return [s for s in pool if s.stock.material in (material, "")]


def optimize(
    parts: Sequence[Part],
    stocks: Sequence[StockSheet],
    settings: Optional[Settings] = None,
    *,
    cancel_event: Optional[CancelEvent] = None,
    progress: Optional[ProgressCallback] = None,
) -> OptimizationResult:
    """Lay out parts on stock sheets.

    Args:
        parts: Required parts; quantities are expanded into instances
        stocks: Available stock sheets; quantities are expanded likewise
        settings: Packing settings, defaults if omitted
        cancel_event: Object with is_set(); stops a population search early
        progress: Called with (generation, best fitness) during a search

    Returns:
        Sheets in the order they were opened plus every instance that
        could not be placed.

    Raises:
        InvalidInputError: Empty lists, non-positive sizes or quantities, or
            cutouts reaching outside their part
    """
    settings = settings or Settings()
    validate_inputs(parts, stocks)
    try:
        packer = STRATEGIES[settings.algorithm]
    except KeyError:
        raise InvalidInputError(f"No packer registered for {settings.algorithm}") from None

    started = time.perf_counter()
    pool = expand_stocks(stocks)
    result = OptimizationResult(algorithm=packer.name or settings.algorithm.value)

    for material, instances in group_by_material(expand_parts(parts)):
        candidates = stocks_for_material(pool, material)
        outcome = packer.pack(instances, candidates, settings, cancel_event=cancel_event, progress=progress)
        used = {s.order for s in outcome.used}
        pool = [s for s in pool if s.order not in used]

        result.sheets.extend(outcome.layouts)
        result.unplaced.extend(outcome.unplaced)
        result.cancelled = result.cancelled or outcome.cancelled
        result.generations += outcome.generations
        for instance in outcome.unplaced:
            logger.warning(
                "Part %s (%gx%g) could not be placed%s",
                instance.label, instance.part.width, instance.part.height,
                f" on {material} stock" if material else "",
            )

    result.sheets = [_reindex(sheet, index) for index, sheet in enumerate(result.sheets)]
    result.unplaced.sort(key=lambda i: i.order)

    logger.info(
        "Optimised %d parts onto %d sheets (%d unplaced, %.1f%% used) in %.2fs",
        result.placed_count, len(result.sheets), len(result.unplaced),
        result.total_efficiency, time.perf_counter() - started,
    )
    return result


def _reindex(sheet: SheetLayout, index: int) -> SheetLayout:
    placements = [dataclasses.replace(p, sheet_index=index) for p in sheet.placements]
    return SheetLayout(stock=sheet.stock, copy=sheet.copy, placements=placements, index=index)
