"""
pso.py - Particle swarm heuristic.

Standard global-best PSO:

    v <- w * v + c1 * r1 * (pbest - x) + c2 * r2 * (gbest - x)
    x <- x + v

Velocity clamping and bound handling go through the pyswarms backend
handlers: velocities are clipped to ``max_velocity`` times each bound's
width, and a particle leaving the box is reflected back into it. The
stored velocity is the displacement actually taken after reflection.
"""
from __future__ import annotations

import numpy as np
from pyswarms.backend.handlers import BoundaryHandler
from pyswarms.backend.handlers import VelocityHandler

from optimizers.heuristic import Heuristic


class ParticleSwarm(Heuristic):
    name = 'pso'

    def initialize(self, population: np.ndarray, fitness: np.ndarray) -> None:
        self.v_max = (self.upper - self.lower) * self.config.max_velocity
        self.vh = VelocityHandler(strategy='unmodified')
        self.bh = BoundaryHandler(strategy='reflective')
        self.velocities = self.rng.uniform(-self.v_max, self.v_max, population.shape)
        self.personal_best = population.copy()
        self.personal_best_fitness = fitness.copy()
        self._update_global_best()

    def _update_global_best(self) -> None:
        best = int(np.argmin(self.personal_best_fitness))
        self.global_best = self.personal_best[best].copy()

    def propose(self, population: np.ndarray, fitness: np.ndarray, out: np.ndarray) -> None:
        n, d = population.shape
        # Drawn from the solver's generator so seeded runs repeat exactly
        r1, r2 = self.rng.random((n, d)), self.rng.random((n, d))

        cognitive = self.config.cognitive * r1 * (self.personal_best - population)
        social = self.config.social * r2 * (self.global_best - population)
        velocities = self.config.inertia * self.velocities + cognitive + social
        bounds = (self.lower, self.upper)
        velocities = self.vh(velocities, (-self.v_max, self.v_max), position=population, bounds=bounds)

        out[:] = self.bh(population + velocities, bounds)
        self.velocities = out - population

    def select(self, population, fitness, candidates, candidate_fitness):
        improved = candidate_fitness < self.personal_best_fitness
        self.personal_best[improved] = candidates[improved]
        self.personal_best_fitness[improved] = candidate_fitness[improved]
        self._update_global_best()
        # Particles always move; the old positions become the spare buffer
        return candidates, candidate_fitness, population, fitness

    def on_replaced(self, index: int) -> None:
        self.velocities[index] = 0.0
