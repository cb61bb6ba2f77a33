import pytest

from zcut.compare import Scenario, build_default_scenarios, compare_scenarios
from zcut.models import Part, StockSheet
from zcut.settings import Algorithm, GeneticConfig, Settings


@pytest.fixture
def base():
    return Settings(genetic=GeneticConfig(population_size=8, generations=3, seed=1, workers=1))


def test_default_scenarios(base):
    names = [s.name for s in build_default_scenarios(base)]
    assert names == ["Current Settings", "Genetic Algorithm", "Kerf 1.6mm (half)", "No Edge Trim"]


def test_default_scenarios_from_genetic_settings(base):
    scenarios = build_default_scenarios(base.replace(algorithm=Algorithm.GENETIC, kerf_width=1.0, edge_trim=0))
    assert [s.name for s in scenarios] == ["Current Settings", "Guillotine Algorithm"]
    assert scenarios[1].settings.algorithm == Algorithm.GUILLOTINE


def test_compare_scenarios(base):
    parts = [Part(label="Panel", width=500, height=280, quantity=4)]
    stocks = [StockSheet(label="Ply", width=1200, height=600, quantity=4)]
    results = compare_scenarios(build_default_scenarios(base), parts, stocks)
    assert [r.scenario.name for r in results][0] == "Current Settings"
    for r in results:
        assert r.unplaced_count == 0
        assert r.total_cuts == 4
        assert r.sheets_used == len(r.result.sheets)
        assert r.waste_percent == pytest.approx(100 - r.result.total_efficiency)


def test_tighter_kerf_never_needs_more_sheets():
    parts = [Part(label="Strip", width=1200, height=97, quantity=12)]
    stocks = [StockSheet(label="Ply", width=1200, height=600, quantity=6)]
    scenarios = [
        Scenario("Wide", Settings(kerf_width=6, edge_trim=0)),
        Scenario("Thin", Settings(kerf_width=3, edge_trim=0)),
    ]
    wide, thin = compare_scenarios(scenarios, parts, stocks)
    assert thin.sheets_used <= wide.sheets_used
    assert thin.sheets_used == 2
