"""Population search over part order and rotation.

A genome is a permutation of the part instances plus one rotation bit per
instance. Decoding replays the free-rectangle packer in genome order with
the rotation bits as orientation preferences. Fitness is a weighted sum of
waste, sheet count, cut length and job time, each relative to the
deterministic guillotine layout, so lower is better and the guillotine
layout itself scores exactly 1.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .guillotine import (
    PackOutcome,
    Packer,
    RotationRule,
    area_order,
    pack_sequence,
)
from .models import Grain, OptimizationResult, PartInstance, StockInstance
from .settings import Settings

logger = logging.getLogger(__name__)

UNPLACED_PENALTY = 10.0  # Added to the fitness for every part left unplaced


@dataclass
class Genome:
    order: np.ndarray  # Permutation of instance indices
    rotated: np.ndarray  # Rotation preference per instance index
    fitness: Optional[float] = None
    outcome: Optional[PackOutcome] = None

    def copy(self) -> "Genome":
        return Genome(self.order.copy(), self.rotated.copy(), self.fitness, self.outcome)


@dataclass(frozen=True)
class LayoutMetrics:
    waste: float
    sheets: float
    cut_length: float
    job_time: float


def measure(outcome: PackOutcome, settings: Settings) -> LayoutMetrics:
    result = OptimizationResult(sheets=outcome.layouts)
    return LayoutMetrics(
        waste=result.total_area - result.used_area,
        sheets=float(len(outcome.layouts)),
        cut_length=result.total_cut_length,
        job_time=result.estimated_job_time(settings),
    )


def score(metrics: LayoutMetrics, baseline: LayoutMetrics, unplaced: int, settings: Settings) -> float:
    """Weighted fitness relative to a baseline layout; lower is better."""
    weights = settings.weights.normalized()
    values = np.array([metrics.waste, metrics.sheets, metrics.cut_length, metrics.job_time])
    base = np.array([baseline.waste, baseline.sheets, baseline.cut_length, baseline.job_time])
    base = np.where(base > 1e-9, base, 1.0)
    w = np.array([weights.waste, weights.sheets, weights.cut_length, weights.job_time])
    return float(np.dot(w, values / base)) + UNPLACED_PENALTY * unplaced


def order_crossover(parent_a: np.ndarray, parent_b: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """OX1: keep a slice of parent_a, fill the rest in parent_b's order."""
    n = len(parent_a)
    start, end = sorted(rng.choice(n + 1, size=2, replace=False))
    child = np.full(n, -1, dtype=parent_a.dtype)
    child[start:end] = parent_a[start:end]
    kept = set(parent_a[start:end].tolist())
    fill = [gene for gene in np.roll(parent_b, -end).tolist() if gene not in kept]
    positions = [(end + k) % n for k in range(n - (end - start))]
    for pos, gene in zip(positions, fill):
        child[pos] = gene
    return child


class GeneticSearch:
    """One run of the population search for a group of instances."""

    def __init__(
        self,
        instances: Sequence[PartInstance],
        pool: Sequence[StockInstance],
        settings: Settings,
        baseline: PackOutcome,
    ):
        self.instances = list(instances)
        self.pool = list(pool)
        self.settings = settings
        self.config = settings.genetic
        self.rng = np.random.default_rng(self.config.seed)
        self.baseline = baseline
        self.baseline_metrics = measure(baseline, settings)
        self.rotatable = np.array([i.part.grain == Grain.NONE for i in self.instances], dtype=bool)
        self.population_size, self.generations = self.config.scaled(len(self.instances))
        self.population_size = max(2, self.population_size)

    def decode(self, genome: Genome) -> PackOutcome:
        sequence = [self.instances[i] for i in genome.order]
        hints = {
            self.instances[i].order: bool(genome.rotated[i])
            for i in range(len(self.instances))
            if self.rotatable[i]
        }
        return pack_sequence(sequence, self.pool, self.settings, hints, rules=(RotationRule.NORMAL_FIRST,))

    def evaluate(self, genome: Genome) -> tuple[float, PackOutcome]:
        outcome = self.decode(genome)
        fitness = score(measure(outcome, self.settings), self.baseline_metrics, len(outcome.unplaced), self.settings)
        return fitness, outcome

    def _random_genome(self) -> Genome:
        n = len(self.instances)
        order = self.rng.permutation(n)
        rotated = (self.rng.random(n) < 0.5) & self.rotatable
        return Genome(order, rotated)

    def _tournament(self, population: list[Genome]) -> Genome:
        size = min(self.config.tournament_size, len(population))
        picks = self.rng.choice(len(population), size=size, replace=False)
        return min((population[i] for i in picks), key=lambda g: g.fitness)

    def _mutate(self, genome: Genome) -> None:
        n = len(genome.order)
        rate = self.config.mutation_rate
        if self.rng.random() < rate:
            a, b = self.rng.choice(n, size=2, replace=False)
            genome.order[a], genome.order[b] = genome.order[b], genome.order[a]
        if self.rng.random() < rate and self.rotatable.any():
            index = self.rng.choice(np.flatnonzero(self.rotatable))
            genome.rotated[index] = not genome.rotated[index]
        if self.rng.random() < rate / 2:
            start, end = sorted(self.rng.choice(n + 1, size=2, replace=False))
            genome.order[start:end] = genome.order[start:end][::-1].copy()

    def _breed(self, population: list[Genome]) -> Genome:
        parent_a = self._tournament(population)
        parent_b = self._tournament(population)
        order = order_crossover(parent_a.order, parent_b.order, self.rng)
        inherit = self.rng.random(len(order)) < 0.5
        rotated = np.where(inherit, parent_a.rotated, parent_b.rotated) & self.rotatable
        child = Genome(order, rotated)
        self._mutate(child)
        return child

    def _evaluate_all(self, executor: ThreadPoolExecutor, genomes: list[Genome]) -> None:
        pending = [g for g in genomes if g.fitness is None]
        # map() yields in submission order and re-raises worker exceptions here
        for genome, (fitness, outcome) in zip(pending, executor.map(self.evaluate, pending)):
            genome.fitness = fitness
            genome.outcome = outcome

    def run(self, cancel_event=None, progress=None) -> PackOutcome:
        n = len(self.instances)
        workers = self.config.workers or os.cpu_count() or 1
        deadline = None
        if self.config.time_limit is not None:
            deadline = time.monotonic() + self.config.time_limit

        seed = Genome(np.arange(n), np.zeros(n, dtype=bool))
        population = [seed] + [self._random_genome() for _ in range(self.population_size - 1)]

        cancelled = False
        completed = 0
        reason = "generation limit"
        with ThreadPoolExecutor(max_workers=workers) as executor:
            self._evaluate_all(executor, population)
            best = min(population, key=lambda g: g.fitness).copy()
            stale = 0

            for generation in range(1, self.generations + 1):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    reason = "cancelled"
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    reason = "time limit"
                    break

                population.sort(key=lambda g: g.fitness)
                elite = [g.copy() for g in population[:self.config.elite_count]]
                children = [self._breed(population) for _ in range(self.population_size - len(elite))]
                self._evaluate_all(executor, children)
                population = elite + children
                completed = generation

                leader = min(population, key=lambda g: g.fitness)
                if leader.fitness < best.fitness - self.config.plateau_tolerance:
                    best = leader.copy()
                    stale = 0
                else:
                    stale += 1

                logger.debug("Generation %d: best fitness %.6f", generation, best.fitness)
                if progress is not None:
                    progress(generation, best.fitness)

                if stale >= self.config.plateau_window:
                    reason = "plateau"
                    break

        if cancelled:
            logger.warning("Population search cancelled after %d generations", completed)
        logger.info(
            "Population search stopped (%s) after %d generations, best fitness %.6f",
            reason, completed, best.fitness,
        )

        baseline_fitness = score(
            self.baseline_metrics, self.baseline_metrics, len(self.baseline.unplaced), self.settings,
        )
        if best.fitness < baseline_fitness - self.config.plateau_tolerance:
            outcome = best.outcome
        else:
            outcome = self.baseline
        return PackOutcome(
            layouts=outcome.layouts,
            unplaced=outcome.unplaced,
            used=outcome.used,
            cancelled=cancelled,
            generations=completed,
        )


class GeneticPacker(Packer):
    """Population search seeded with the guillotine ordering."""

    name = "genetic"

    def pack(self, instances, pool, settings, cancel_event=None, progress=None):
        ordered = area_order(instances)
        baseline = pack_sequence(ordered, pool, settings)
        if len(ordered) < 2:
            return baseline
        search = GeneticSearch(ordered, pool, settings, baseline)
        return search.run(cancel_event, progress)
