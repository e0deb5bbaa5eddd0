"""
optimization_types.py - Data structures for four-bar synthesis runs.

Contains dataclasses used by the synthesis entry points:
  - SynthesisConfig: everything a ``synthesize`` call can be tuned with
  - SynthesisResult: fitted mechanism, its curve, fitness and run history
  - ConvergenceStats: summary of a fitness history
"""
from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field

import numpy as np

from fourbar_tools.curve_utils import Curve
from fourbar_tools.curve_utils import MIN_TARGET_POINTS
from fourbar_tools.geometry import Similarity
from fourbar_tools.variants import ParameterVector
from optimizers.scipy_optimizer import ScipyConfig
from optimizers.solver_types import SolverConfig


@dataclass
class SynthesisConfig:
    """
    Configuration of a synthesis run.

    Attributes:
        solver: Population optimizer settings (method, population, stopping rules, seed)
        res: Input angle samples per candidate curve
        harmonic: Descriptor harmonics; chosen from the target's Fourier power when None
        weights: Per-harmonic descriptor distance weights
        refine: Polish the population best with a local scipy search
        refine_config: Settings of that local search
        origin: Required ground pivot position (sphere centre for spherical linkages)
        scale: Required driver length (sphere radius for spherical linkages)
        partial_resolution: Coarse window grid size for PARTIAL targets
        partial_refine_steps: Window refinement rounds for PARTIAL targets
        smooth_window: Savitzky-Golay window applied to noisy targets before fitting
        resample: Resample the target to this many points, uniform in arc length
        atlas_k: Atlas matches used to seed the initial population
        on_generation: Progress callback ``(generation, best_fitness)``
        cancel: Cooperative cancellation event (checked once per generation)

    Example:
        >>> config = SynthesisConfig(
        ...     solver=SolverConfig(population_size=200, max_generations=100, seed=0),
        ...     on_generation=lambda gen, best: print(gen, best),
        ... )
    """
    solver: SolverConfig = field(default_factory=SolverConfig)
    res: int = 180
    harmonic: int | None = None
    weights: list[float] | None = None
    refine: bool = True
    refine_config: ScipyConfig = field(default_factory=ScipyConfig)
    origin: tuple[float, ...] | None = None
    scale: float | None = None
    partial_resolution: int = 16
    partial_refine_steps: int = 4
    smooth_window: int | None = None
    resample: int | None = None
    atlas_k: int = 10
    on_generation: Callable[[int, float], object] | None = None
    cancel: threading.Event | None = None

    def __post_init__(self):
        if self.res < 2:
            raise ValueError(f'res must be at least 2, got {self.res}')
        if self.harmonic is not None and self.harmonic < 1:
            raise ValueError(f'harmonic must be positive, got {self.harmonic}')
        if self.scale is not None and self.scale <= 0:
            raise ValueError(f'scale must be positive, got {self.scale}')
        if self.smooth_window is not None and self.smooth_window < 3:
            raise ValueError(f'smooth_window must be at least 3, got {self.smooth_window}')
        if self.resample is not None and self.resample < MIN_TARGET_POINTS:
            raise ValueError(f'resample must be at least {MIN_TARGET_POINTS}, got {self.resample}')
        if self.atlas_k < 0:
            raise ValueError(f'atlas_k must be non-negative, got {self.atlas_k}')

    def to_dict(self) -> dict:
        """Serialize to dictionary (callbacks and events are omitted)."""
        return {
            'solver': self.solver.to_dict(),
            'res': self.res,
            'harmonic': self.harmonic,
            'weights': self.weights,
            'refine': self.refine,
            'refine_config': self.refine_config.to_dict(),
            'origin': list(self.origin) if self.origin is not None else None,
            'scale': self.scale,
            'partial_resolution': self.partial_resolution,
            'partial_refine_steps': self.partial_refine_steps,
            'smooth_window': self.smooth_window,
            'resample': self.resample,
            'atlas_k': self.atlas_k,
        }


@dataclass
class SynthesisResult:
    """
    Result of a synthesis run.

    Unpacks as ``params, curve, fitness = result``.

    Attributes:
        params: Fitted mechanism in the full layout (target coordinates)
        curve: Its coupler curve in target coordinates (empty if nothing feasible was found)
        fitness: Final fitness (INFEASIBLE_FITNESS when nothing feasible was found)
        normalized: The optimized normalized vector with its assembly state
        transform: Similarity mapping the normalized linkage onto the target
        generations: Generations completed by the population optimizer
        history: Best-so-far fitness per generation
        cancelled: Run stopped by the cancel event
        seeded_from_atlas: Number of atlas matches used as initial individuals
        refined: Local refinement improved the population result
        evaluations: Objective calls
        elapsed: Wall-clock seconds
        vectors: Motion-line unit vectors along ``curve`` (motion synthesis only)
    """
    params: ParameterVector
    curve: Curve
    fitness: float
    normalized: ParameterVector | None = None
    transform: Similarity | None = None
    generations: int = 0
    history: list[float] = field(default_factory=list)
    cancelled: bool = False
    seeded_from_atlas: int = 0
    refined: bool = False
    evaluations: int = 0
    elapsed: float = 0.0
    vectors: np.ndarray | None = None

    def __iter__(self):
        yield self.params
        yield self.curve
        yield self.fitness

    @property
    def is_feasible(self) -> bool:
        return len(self.curve) > 0

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON collaborators."""
        return {
            'params': self.params.to_dict(),
            'curve': np.asarray(self.curve).tolist(),
            'fitness': self.fitness,
            'normalized': self.normalized.to_dict() if self.normalized is not None else None,
            'transform': self.transform.to_dict() if self.transform is not None else None,
            'generations': self.generations,
            'history': self.history,
            'cancelled': self.cancelled,
            'seeded_from_atlas': self.seeded_from_atlas,
            'refined': self.refined,
            'evaluations': self.evaluations,
            'elapsed': self.elapsed,
            'vectors': np.asarray(self.vectors).tolist() if self.vectors is not None else None,
        }


@dataclass
class ConvergenceStats:
    """
    Statistics about optimization convergence.

    Attributes:
        initial_fitness: Best fitness of the initial population
        final_fitness: Best fitness at the end
        improvement_pct: Percentage improvement from initial to final
        n_generations: Generations after the initial population
        stalled_generations: Trailing generations without improvement
        converged: Last change below tolerance
        improvement_per_generation: Decrease of the best fitness per generation
    """
    initial_fitness: float
    final_fitness: float
    improvement_pct: float
    n_generations: int
    stalled_generations: int
    converged: bool
    improvement_per_generation: list[float] = field(default_factory=list)
