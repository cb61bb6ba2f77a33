"""Side-by-side comparison of optimisation settings."""

import dataclasses
from dataclasses import dataclass
from typing import Sequence

from .models import OptimizationResult, Part, StockSheet
from .optimizer import optimize
from .settings import Algorithm, Settings


@dataclass(frozen=True)
class Scenario:
    name: str
    settings: Settings


@dataclass
class ScenarioResult:
    scenario: Scenario
    result: OptimizationResult
    sheets_used: int
    total_cuts: int
    waste_percent: float
    unplaced_count: int


def build_default_scenarios(settings: Settings) -> list[Scenario]:
    """What-if variations of the current settings."""
    scenarios = [Scenario("Current Settings", settings)]

    if settings.algorithm == Algorithm.GUILLOTINE:
        scenarios.append(Scenario("Genetic Algorithm", dataclasses.replace(settings, algorithm=Algorithm.GENETIC)))
    else:
        scenarios.append(Scenario("Guillotine Algorithm", dataclasses.replace(settings, algorithm=Algorithm.GUILLOTINE)))

    if settings.kerf_width > 1.0:
        half = settings.kerf_width * 0.5
        scenarios.append(Scenario(f"Kerf {half:.1f}mm (half)", dataclasses.replace(settings, kerf_width=half)))

    if settings.edge_trim > 0:
        scenarios.append(Scenario("No Edge Trim", dataclasses.replace(settings, edge_trim=0.0)))

    return scenarios


def compare_scenarios(
    scenarios: Sequence[Scenario],
    parts: Sequence[Part],
    stocks: Sequence[StockSheet],
) -> list[ScenarioResult]:
    """Optimise once per scenario, in scenario order."""
    results = []
    for scenario in scenarios:
        result = optimize(parts, stocks, scenario.settings)
        results.append(ScenarioResult(
            scenario=scenario,
            result=result,
            sheets_used=len(result.sheets),
            total_cuts=result.placed_count,
            waste_percent=100.0 - result.total_efficiency,
            unplaced_count=len(result.unplaced),
        ))
    return results
