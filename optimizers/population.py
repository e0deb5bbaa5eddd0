"""
population.py - Generic population optimizer loop.

Key functions:
  - solve(): minimize an objective over a box with a population heuristic
  - log_generation_progress(): one-line progress format

Run states:

    INITIALIZE -> EVALUATE -> (stop?) -> PROPOSE -> EVALUATE -> SELECT -> (stop?) -> ...

Only EVALUATE may run in parallel. It maps the objective over the
individuals of one buffer with a thread pool and writes the results back in
index order; there is no shared mutable reduction. Proposals, selection and
all random draws happen on the calling thread, so a seeded run produces the
same generation sequence with 1 or N workers.

Buffers are allocated once per run and swapped between generations:
``population``/``fitness`` hold the current generation and
``spare``/``spare_fitness`` receive the next candidates.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from collections.abc import Sequence
from concurrent.futures import Executor
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from configs.logging_config import get_logger
from fourbar_tools.errors import NoStoppingRule
from optimizers.differential_evolution import DifferentialEvolution
from optimizers.heuristic import Heuristic
from optimizers.pso import ParticleSwarm
from optimizers.solver_types import GenerationSnapshot
from optimizers.solver_types import SolverConfig
from optimizers.solver_types import SolveResult

logger = get_logger(__name__)

Objective = Callable[[np.ndarray], float]
GenerationCallback = Callable[[GenerationSnapshot], object]

HEURISTICS: dict[str, type[Heuristic]] = {
    DifferentialEvolution.name: DifferentialEvolution,
    ParticleSwarm.name: ParticleSwarm,
}


def get_heuristic(method: str) -> type[Heuristic]:
    try:
        return HEURISTICS[method]
    except KeyError as e:
        raise ValueError(f'Unknown method: {method}. Use one of {sorted(HEURISTICS)}') from e


def log_generation_progress(
    generation: int,
    best_fitness: float,
    generation_best: float,
    elapsed: float,
    vector: np.ndarray | None = None,
) -> str:
    """
    Format a single generation's progress for logging.

    Example:
        >>> log_generation_progress(10, 0.25, 0.31, 1.5)
        '[  10] | best=0.250000 | gen_best=0.310000 | t=1.5s'
    """
    parts = [f'[{generation:4d}]', f'best={best_fitness:.6f}', f'gen_best={generation_best:.6f}', f't={elapsed:.1f}s']
    if vector is not None:
        vec_str = ', '.join(f'{v:.3f}' for v in vector[:3])
        if len(vector) > 3:
            vec_str += '...'
        parts.append(f'x=({vec_str})')
    return ' | '.join(parts)


def _check_bounds(bounds) -> np.ndarray:
    bounds = np.array(bounds, dtype=np.float64)
    if bounds.ndim != 2 or bounds.shape[1] != 2 or len(bounds) == 0:
        raise ValueError(f'bounds must have shape (n, 2), got {bounds.shape}')
    if not np.all(np.isfinite(bounds)) or np.any(bounds[:, 0] > bounds[:, 1]):
        raise ValueError('bounds must be finite with lower <= upper')
    return bounds


def _evaluate(
    objective: Objective,
    population: np.ndarray,
    out: np.ndarray,
    executor: Executor | None,
) -> None:
    rows = [row.copy() for row in population]
    if executor is None:
        values = [objective(row) for row in rows]
    else:
        values = list(executor.map(objective, rows))
    out[:] = values
    out[~np.isfinite(out)] = np.inf


def solve(
    objective: Objective,
    bounds: Sequence[tuple[float, float]] | np.ndarray,
    config: SolverConfig | None = None,
    *,
    seeds: np.ndarray | None = None,
    callback: GenerationCallback | None = None,
    cancel: threading.Event | None = None,
) -> SolveResult:
    """
    Minimize ``objective`` over the box ``bounds``.

    Args:
        objective: Callable mapping a parameter vector to a fitness (lower is
            better). Must be thread safe when ``config.parallel`` is set.
        bounds: (n, 2) lower/upper bounds per parameter
        config: Solver settings (defaults to SolverConfig())
        seeds: Optional (k, n) vectors replacing the first k random
            individuals (clipped to bounds)
        callback: Called with a GenerationSnapshot after every generation
            (including generation 0); the return value is ignored
        cancel: Event checked once per generation; when set, the run stops
            and returns the best-so-far with ``cancelled=True``

    Returns:
        SolveResult

    Raises:
        NoStoppingRule: no max_generations, target_fitness or time_budget
        ValueError: malformed bounds or seeds

    Example:
        >>> config = SolverConfig(population_size=20, max_generations=50, seed=1)
        >>> result = solve(lambda x: float(np.sum(x ** 2)), [(-5, 5)] * 3, config)
        >>> result.best_fitness < 1e-2
        True
    """
    config = config or SolverConfig()
    if not config.has_stopping_rule:
        raise NoStoppingRule('set at least one of max_generations, target_fitness or time_budget')
    bounds = _check_bounds(bounds)
    n_dims = len(bounds)
    n_pop = config.population_size
    if seeds is not None:
        seeds = np.atleast_2d(np.asarray(seeds, dtype=np.float64))
        if seeds.size and seeds.shape[1] != n_dims:
            raise ValueError(f'seeds must have {n_dims} columns, got shape {seeds.shape}')

    start = time.perf_counter()
    rng = np.random.default_rng(config.seed)
    heuristic = get_heuristic(config.method)(config, bounds, rng)

    # INITIALIZE
    population = rng.uniform(bounds[:, 0], bounds[:, 1], (n_pop, n_dims))
    if seeds is not None and seeds.size:
        n_seed = min(len(seeds), n_pop)
        population[:n_seed] = np.clip(seeds[:n_seed], bounds[:, 0], bounds[:, 1])
    fitness = np.empty(n_pop)
    spare = np.empty_like(population)
    spare_fitness = np.empty_like(fitness)

    logger.info(
        f'Starting {config.method.upper()} optimization: {n_dims} parameters, population {n_pop}, '
        f'max_generations={config.max_generations}, target={config.target_fitness}, '
        f'time_budget={config.time_budget}',
    )

    executor = None
    if config.parallel:
        executor = ThreadPoolExecutor(max_workers=config.n_workers, thread_name_prefix='fitness')
    try:
        _evaluate(objective, population, fitness, executor)
        evaluations = n_pop
        heuristic.initialize(population, fitness)

        best_idx = int(np.argmin(fitness))
        best_vector = population[best_idx].copy()
        best_fitness = float(fitness[best_idx])
        history = [best_fitness]
        generation = 0
        if callback is not None:
            callback(GenerationSnapshot(generation, best_fitness, best_vector, time.perf_counter() - start))

        stop_reason = ''
        cancelled = False
        while True:
            elapsed = time.perf_counter() - start
            if config.target_fitness is not None and best_fitness <= config.target_fitness:
                stop_reason = 'target_fitness'
            elif config.max_generations is not None and generation >= config.max_generations:
                stop_reason = 'max_generations'
            elif config.time_budget is not None and elapsed >= config.time_budget:
                stop_reason = 'time_budget'
            elif cancel is not None and cancel.is_set():
                stop_reason = 'cancelled'
                cancelled = True
            if stop_reason:
                break

            # PROPOSE -> EVALUATE -> SELECT
            heuristic.propose(population, fitness, spare)
            _evaluate(objective, spare, spare_fitness, executor)
            evaluations += n_pop
            population, fitness, spare, spare_fitness = heuristic.select(population, fitness, spare, spare_fitness)
            generation += 1

            gen_idx = int(np.argmin(fitness))
            generation_best = float(fitness[gen_idx])
            if generation_best < best_fitness:
                best_fitness = generation_best
                best_vector = population[gen_idx].copy()
            elif config.elitism and generation_best > best_fitness:
                worst = int(np.argmax(fitness))
                population[worst] = best_vector
                fitness[worst] = best_fitness
                heuristic.on_replaced(worst)
            history.append(best_fitness)

            elapsed = time.perf_counter() - start
            if config.log_interval and generation % config.log_interval == 0:
                logger.info(log_generation_progress(generation, best_fitness, generation_best, elapsed, best_vector))
            if callback is not None:
                callback(GenerationSnapshot(generation, best_fitness, best_vector, elapsed))
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    elapsed = time.perf_counter() - start
    logger.info(
        f'{config.method.upper()} finished ({stop_reason}): best={best_fitness:.6f} '
        f'after {generation} generations, {evaluations} evaluations, {elapsed:.2f}s',
    )
    return SolveResult(
        best_vector=best_vector,
        best_fitness=best_fitness,
        generations=generation,
        history=history,
        cancelled=cancelled,
        stop_reason=stop_reason,
        evaluations=evaluations,
        elapsed=elapsed,
    )
