"""
solver_types.py - Configuration and result types for population optimizers.

Contains the types shared by the generic loop and the heuristics:
  - SolverConfig: validated optimizer settings (pydantic model)
  - GenerationSnapshot: frozen progress record handed to callbacks
  - SolveResult: outcome of one ``solve`` run

=============================================================================
STOPPING RULES
=============================================================================

A run stops at the first of:
  - max_generations generations completed after the initial population
  - best fitness <= target_fitness
  - time_budget seconds elapsed
  - the caller's cancel event is set (result.cancelled = True)

At least one of the first three must be configured; ``solve`` raises
NoStoppingRule otherwise.

=============================================================================
"""
from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Literal

import numpy as np
from pydantic import BaseModel
from pydantic import Field
from pydantic import model_validator
from typing_extensions import Annotated


class SolverConfig(BaseModel):
    """
    Settings of a population-based optimizer run.

    Attributes:
        method: Heuristic name ('de' differential evolution, 'pso' particle swarm)
        population_size: Individuals per generation
        max_generations: Generation limit (None disables the rule)
        target_fitness: Stop once the best fitness reaches this value
        time_budget: Wall-clock limit in seconds
        seed: Seed of the run's random generator (None draws fresh entropy)
        parallel: Evaluate individuals on a thread pool
        n_workers: Thread pool size (None lets the executor decide)
        elitism: Carry the best-so-far individual into every generation
        mutation_factor: DE differential weight F
        crossover_rate: DE binomial crossover probability CR
        inertia: PSO inertia weight w (particle momentum)
        cognitive: PSO cognitive coefficient c1 (personal best attraction)
        social: PSO social coefficient c2 (global best attraction)
        max_velocity: PSO velocity clamp as a fraction of each bound's width
        log_interval: Log progress every N generations (0 disables)
    """
    method: Literal['de', 'pso'] = Field(default='de', description='Population heuristic')
    population_size: Annotated[int, Field(ge=4, le=100_000, description='Individuals per generation')] = 64
    max_generations: Annotated[int, Field(ge=0, description='Generation limit')] | None = 200
    target_fitness: float | None = Field(default=None, description='Stop when best fitness <= this')
    time_budget: Annotated[float, Field(gt=0, description='Wall-clock limit in seconds')] | None = None
    seed: int | None = Field(default=None, description='Random generator seed')
    parallel: bool = Field(default=False, description='Evaluate on a thread pool')
    n_workers: Annotated[int, Field(ge=1, description='Thread pool size')] | None = None
    elitism: bool = Field(default=True, description='Keep the best individual each generation')
    mutation_factor: Annotated[float, Field(gt=0, le=2, description='DE differential weight')] = 0.6
    crossover_rate: Annotated[float, Field(ge=0, le=1, description='DE crossover probability')] = 0.9
    inertia: Annotated[float, Field(ge=0, le=1, description='PSO inertia weight')] = 0.7
    cognitive: Annotated[float, Field(ge=0, description='PSO cognitive coefficient')] = 1.5
    social: Annotated[float, Field(ge=0, description='PSO social coefficient')] = 1.5
    max_velocity: Annotated[float, Field(gt=0, le=1, description='PSO velocity clamp (fraction of range)')] = 0.2
    log_interval: Annotated[int, Field(ge=0, description='Log every N generations')] = 10

    model_config = {
        'validate_assignment': True,
        'extra': 'forbid',
    }

    @model_validator(mode='after')
    def check_heuristic_rates(self) -> SolverConfig:
        if self.method == 'pso' and self.cognitive + self.social == 0:
            raise ValueError('PSO needs a positive cognitive or social coefficient')
        if self.method == 'de' and self.crossover_rate == 0 and self.mutation_factor == 0:
            raise ValueError('DE needs a positive mutation factor or crossover rate')
        return self

    @property
    def has_stopping_rule(self) -> bool:
        return (
            self.max_generations is not None
            or self.target_fitness is not None
            or self.time_budget is not None
        )

    def to_dict(self) -> dict:
        return self.model_dump()


@dataclass(frozen=True)
class GenerationSnapshot:
    """
    Progress record of one generation.

    ``best_vector`` is a read-only copy; callbacks cannot reach the
    optimizer's buffers through it.
    """
    generation: int
    best_fitness: float
    best_vector: np.ndarray
    elapsed: float

    def __post_init__(self):
        vector = np.array(self.best_vector, dtype=np.float64)
        vector.flags.writeable = False
        object.__setattr__(self, 'best_vector', vector)


@dataclass
class SolveResult:
    """
    Result of a ``solve`` run.

    Attributes:
        best_vector: Best individual found (may be infeasible if nothing was)
        best_fitness: Its fitness
        generations: Generations completed after the initial population
        history: Best-so-far fitness per generation, starting with generation 0
        cancelled: Stopped by the caller's cancel event
        stop_reason: 'max_generations', 'target_fitness', 'time_budget' or 'cancelled'
        evaluations: Objective calls made
        elapsed: Wall-clock seconds
    """
    best_vector: np.ndarray
    best_fitness: float
    generations: int
    history: list[float] = field(default_factory=list)
    cancelled: bool = False
    stop_reason: str = ''
    evaluations: int = 0
    elapsed: float = 0.0

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON collaborators."""
        return {
            'best_vector': self.best_vector.tolist(),
            'best_fitness': self.best_fitness,
            'generations': self.generations,
            'history': self.history,
            'cancelled': self.cancelled,
            'stop_reason': self.stop_reason,
            'evaluations': self.evaluations,
            'elapsed': self.elapsed,
        }
