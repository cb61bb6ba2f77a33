"""Material purchase and edge banding estimates."""

import math
from dataclasses import dataclass
from typing import Sequence

from .models import Part

MM2_PER_BOARD_FOOT = 92903.04  # 144 square inches


@dataclass(frozen=True)
class PurchaseEstimate:
    total_part_area: float  # mm^2, including a kerf allowance per part
    total_board_feet: float
    sheet_area: float
    sheets_needed_exact: float
    sheets_needed_min: int
    sheets_with_waste: int
    waste_percent: float
    estimated_cost: float
    price_per_sheet: float
    kerf_width: float


def calculate_purchase_estimate(
    parts: Sequence[Part],
    sheet_width: float,
    sheet_height: float,
    kerf: float,
    waste_percent: float,
    price_per_sheet: float = 0.0,
) -> PurchaseEstimate:
    """How many sheets to buy for a cut list.

    Every part is grown by one kerf in each direction, the total is divided
    by the sheet area, and waste_percent is added on top before rounding up.
    """
    total = sum((p.width + kerf) * (p.height + kerf) * p.quantity for p in parts)
    sheet_area = sheet_width * sheet_height
    if sheet_area <= 0:
        return PurchaseEstimate(
            total_part_area=total,
            total_board_feet=total / MM2_PER_BOARD_FOOT,
            sheet_area=0.0,
            sheets_needed_exact=0.0,
            sheets_needed_min=0,
            sheets_with_waste=0,
            waste_percent=waste_percent,
            estimated_cost=0.0,
            price_per_sheet=price_per_sheet,
            kerf_width=kerf,
        )

    exact = total / sheet_area
    minimum = math.ceil(exact)
    with_waste = max(minimum, math.ceil(round(exact * (1 + waste_percent / 100), 9)))
    return PurchaseEstimate(
        total_part_area=total,
        total_board_feet=total / MM2_PER_BOARD_FOOT,
        sheet_area=sheet_area,
        sheets_needed_exact=exact,
        sheets_needed_min=minimum,
        sheets_with_waste=with_waste,
        waste_percent=waste_percent,
        estimated_cost=with_waste * price_per_sheet,
        price_per_sheet=price_per_sheet,
        kerf_width=kerf,
    )


@dataclass(frozen=True)
class EdgeBandingSummary:
    total_linear_mm: float
    total_linear_m: float
    waste_percent: float
    total_with_waste_mm: float  # Rounded up to whole mm
    total_with_waste_m: float
    part_count: int
    edge_count: int


@dataclass(frozen=True)
class PartEdgeBanding:
    label: str
    width: float
    height: float
    quantity: int
    edges: str  # e.g. "T+B+L+R"
    length_per_unit: float
    total_length: float


def calculate_edge_banding(parts: Sequence[Part], waste_percent: float = 0.0) -> EdgeBandingSummary:
    total = 0.0
    part_count = 0
    edge_count = 0
    for part in parts:
        if not part.edge_banding.has_any():
            continue
        total += part.edge_banding.linear_length(part.width, part.height) * part.quantity
        part_count += part.quantity
        edge_count += part.edge_banding.edge_count() * part.quantity

    with_waste = math.ceil(round(total * (1 + waste_percent / 100), 6))
    return EdgeBandingSummary(
        total_linear_mm=total,
        total_linear_m=total / 1000,
        waste_percent=waste_percent,
        total_with_waste_mm=float(with_waste),
        total_with_waste_m=with_waste / 1000,
        part_count=part_count,
        edge_count=edge_count,
    )


def per_part_edge_banding(parts: Sequence[Part]) -> list[PartEdgeBanding]:
    result = []
    for part in parts:
        if not part.edge_banding.has_any():
            continue
        per_unit = part.edge_banding.linear_length(part.width, part.height)
        result.append(PartEdgeBanding(
            label=part.label,
            width=part.width,
            height=part.height,
            quantity=part.quantity,
            edges=str(part.edge_banding),
            length_per_unit=per_unit,
            total_length=per_unit * part.quantity,
        ))
    return result
