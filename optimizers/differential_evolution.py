"""
differential_evolution.py - DE/rand/1/bin heuristic.

Each candidate is a mutant ``x_r1 + F * (x_r2 - x_r3)`` of three distinct
other individuals, crossed with its parent coordinate-wise (probability CR,
with one forced coordinate). A candidate replaces its parent when it is at
least as fit (greedy one-to-one selection), so the population never loses
its best individual.

Reference: Storn & Price, "Differential Evolution - A Simple and Efficient
Heuristic for Global Optimization over Continuous Spaces" (1997).
"""
from __future__ import annotations

import numpy as np

from optimizers.heuristic import Heuristic


class DifferentialEvolution(Heuristic):
    name = 'de'

    def propose(self, population: np.ndarray, fitness: np.ndarray, out: np.ndarray) -> None:
        n, d = population.shape
        # Three distinct donors per individual, none equal to the individual itself
        donors = np.array([self.rng.choice(n - 1, 3, replace=False) for _ in range(n)])
        donors += donors >= np.arange(n)[:, None]
        r1, r2, r3 = donors[:, 0], donors[:, 1], donors[:, 2]
        mutant = population[r1] + self.config.mutation_factor * (population[r2] - population[r3])

        cross = self.rng.random((n, d)) < self.config.crossover_rate
        cross[np.arange(n), self.rng.integers(d, size=n)] = True
        out[:] = np.where(cross, mutant, population)

        # Out-of-bounds coordinates land halfway between the parent and the bound
        low = out < self.lower
        high = out > self.upper
        out[low] = ((population + self.lower) / 2.0)[low]
        out[high] = ((population + self.upper) / 2.0)[high]

    def select(self, population, fitness, candidates, candidate_fitness):
        better = candidate_fitness <= fitness
        population[better] = candidates[better]
        fitness[better] = candidate_fitness[better]
        return population, fitness, candidates, candidate_fitness
