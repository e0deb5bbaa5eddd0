"""
heuristic.py - Interface between the generic population loop and a search heuristic.

The loop in ``population.solve`` owns the buffers, evaluation, elitism and
stopping rules. A heuristic only decides how the next candidate buffer is
built from the current, already evaluated, one and which individuals
survive.

Every random draw a heuristic makes must come from ``self.rng`` inside
``initialize``/``propose``; both run on the calling thread, so a seeded run
draws the same numbers no matter how evaluation is scheduled.
"""
from __future__ import annotations

from abc import ABC
from abc import abstractmethod

import numpy as np

from optimizers.solver_types import SolverConfig


class Heuristic(ABC):
    """Base class for population heuristics."""

    name: str = ''

    def __init__(self, config: SolverConfig, bounds: np.ndarray, rng: np.random.Generator):
        self.config = config
        self.lower = bounds[:, 0]
        self.upper = bounds[:, 1]
        self.rng = rng

    def initialize(self, population: np.ndarray, fitness: np.ndarray) -> None:
        """Called once after the initial population has been evaluated."""

    @abstractmethod
    def propose(self, population: np.ndarray, fitness: np.ndarray, out: np.ndarray) -> None:
        """Fill ``out`` with the next candidates; must not modify the inputs."""

    @abstractmethod
    def select(
        self,
        population: np.ndarray,
        fitness: np.ndarray,
        candidates: np.ndarray,
        candidate_fitness: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Merge evaluated candidates into the population.

        Returns:
            (population, fitness, spare, spare_fitness): the surviving
            generation and the buffers free for the next proposal
        """

    def on_replaced(self, index: int) -> None:
        """Individual ``index`` was overwritten by the elite carried over."""
