"""
synthesize.py - Four-bar curve-fitting synthesis entry points.

Key functions:
  - synthesize(): target curve -> fitted mechanism, its curve and fitness
  - simulate(): mechanism -> coupler curve
  - target_from_params(): target curve generated by a known mechanism
  - motion_target_from_params(): target points and motion vectors of a PLANAR_MOTION mechanism
  - analyze_convergence() / format_synthesis_report(): run summaries

Flow of ``synthesize``:

    target points (+ motion vectors) -> validate (smooth, resample) -> descriptor
                  -> (atlas query -> seed individuals)
                  -> population optimizer over the normalized layout
                  -> (scipy refinement)
                  -> best normalized vector + alignment transform -> full mechanism

Target validation errors (EmptyTargetCurve, DegenerateCurve) are raised
before the optimizer allocates anything.
"""
from __future__ import annotations

import logging
import time

import numpy as np

from fourbar_tools.curve_utils import Curve
from fourbar_tools.kinematics import curve as coupler_curve
from fourbar_tools.kinematics import poses
from fourbar_tools.objective import CurveObjective
from fourbar_tools.objective import INFEASIBLE_FITNESS
from fourbar_tools.objective import TargetCurve
from fourbar_tools.optimization_types import ConvergenceStats
from fourbar_tools.optimization_types import SynthesisConfig
from fourbar_tools.optimization_types import SynthesisResult
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import normalized_bounds
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Variant
from optimizers import refine
from optimizers import solve
from optimizers.solver_types import GenerationSnapshot

logger = logging.getLogger(__name__)


def simulate(
    params: ParameterVector,
    variant: Variant | None = None,
    n_samples: int = 180,
    *,
    mode: CurveMode = CurveMode.CLOSED,
    interval: tuple[float, float] | None = None,
) -> Curve:
    """
    Coupler curve of a mechanism.

    Args:
        params: Mechanism parameters (full or normalized)
        variant: Expected variant; a mismatch with ``params.variant`` raises ValueError
        n_samples: Input angle samples
        mode: CLOSED (full turn) or OPEN/PARTIAL (``interval`` or the angle bound)
        interval: Driver angle range for OPEN/PARTIAL

    Raises:
        InfeasibleMechanism: the linkage cannot produce the requested motion
    """
    if variant is not None and Variant(variant) is not params.variant:
        raise ValueError(f'expected a {Variant(variant).value} linkage, got {params.variant.value}')
    return coupler_curve(params, mode, n_samples, interval=interval)


def target_from_params(
    params: ParameterVector,
    mode: CurveMode = CurveMode.CLOSED,
    n_samples: int = 180,
    *,
    interval: tuple[float, float] | None = None,
) -> Curve:
    """
    Target curve traced by a known mechanism.

    Example:
        >>> pv = ParameterVector(Variant.PLANAR, [0, 0, 0, 3, 5, 4, 6, 2.236, 0.4636])
        >>> target = target_from_params(pv, CurveMode.CLOSED, 360)
    """
    return simulate(params, None, n_samples, mode=mode, interval=interval)


def motion_target_from_params(
    params: ParameterVector,
    mode: CurveMode = CurveMode.CLOSED,
    n_samples: int = 180,
    *,
    interval: tuple[float, float] | None = None,
) -> tuple[Curve, np.ndarray]:
    """
    Target points and unit motion vectors traced by a known PLANAR_MOTION mechanism.

    Example:
        >>> pv = ParameterVector(Variant.PLANAR_MOTION, [0, 0, 0, 4, 1, 3, 3.5, 2, 0.5, 0.7])
        >>> points, vectors = motion_target_from_params(pv, CurveMode.CLOSED, 90)
        >>> result = synthesize(points, CurveMode.CLOSED, Variant.PLANAR_MOTION, vectors=vectors)
    """
    return poses(params, mode, n_samples, interval=interval)


def _initial_seeds(atlas, target: TargetCurve, variant: Variant, config: SynthesisConfig) -> np.ndarray | None:
    if atlas is None or config.atlas_k == 0:
        return None
    if atlas.variant is not variant:
        raise ValueError(f'atlas holds {atlas.variant.value} linkages, synthesizing {variant.value}')
    if target.mode is CurveMode.PARTIAL:
        logger.warning('Atlas seeding skipped: PARTIAL targets have no whole-curve descriptor to query')
        return None
    if atlas.mode is not target.mode:
        raise ValueError(f'atlas was built for {atlas.mode.value} curves, target is {target.mode.value}')
    matches = atlas.query(target.descriptor, config.atlas_k, config.weights)
    if not matches:
        logger.info('Atlas is empty; starting from a random population')
        return None
    logger.info(f'Seeding {len(matches)} individuals from atlas (nearest distance {matches[0].distance:.6f})')
    return np.array([m.params.values for m in matches])


def synthesize(
    target_curve,
    mode: CurveMode,
    variant: Variant,
    config: SynthesisConfig | None = None,
    atlas=None,
    *,
    vectors=None,
) -> SynthesisResult:
    """
    Fit a four-bar linkage to a target curve.

    Args:
        target_curve: (n, 2) or (n, 3) points
        mode: How the target is interpreted (CLOSED, OPEN or PARTIAL)
        variant: Mechanism variant to synthesize
        config: Synthesis configuration (defaults to SynthesisConfig())
        atlas: Optional AtlasStore of the same variant/mode; its nearest
            entries seed the initial population
        vectors: Motion-line directions paired with the target points
            (PLANAR_MOTION only); the fitted poses must then follow them

    Returns:
        SynthesisResult; unpacks as ``params, curve, fitness``

    Raises:
        EmptyTargetCurve: fewer than MIN_TARGET_POINTS usable points
        DegenerateCurve: target points all coincide
        NoStoppingRule: solver configured without a stopping rule
        ValueError: target dimension, motion vectors or atlas do not match the variant

    Example:
        >>> config = SynthesisConfig(solver=SolverConfig(population_size=200, max_generations=100, seed=0))
        >>> params, curve, fitness = synthesize(points, CurveMode.CLOSED, Variant.PLANAR, config)
    """
    config = config or SynthesisConfig()
    mode = CurveMode(mode)
    variant = Variant(variant)
    start = time.perf_counter()

    target = TargetCurve.prepare(
        target_curve,
        mode,
        variant.dim,
        config.harmonic,
        vectors=vectors,
        smooth_window=config.smooth_window,
        resample=config.resample,
    )
    objective = CurveObjective(
        target,
        variant,
        res=config.res,
        weights=config.weights,
        origin=config.origin,
        scale=config.scale,
        partial_resolution=config.partial_resolution,
        partial_refine_steps=config.partial_refine_steps,
    )
    if variant is Variant.PLANAR_MOTION and not target.is_motion:
        logger.warning('No motion vectors given: fitting the coupler path only, the motion angle is left free')
    bounds = normalized_bounds(variant)
    seeds = _initial_seeds(atlas, target, variant, config)
    logger.info(
        f'Synthesizing {variant.value} linkage for a {mode.value} target: '
        f'{len(target.points)} points, harmonic {target.harmonic}',
    )

    callback = None
    if config.on_generation is not None:
        on_generation = config.on_generation

        def callback(snapshot: GenerationSnapshot) -> None:
            on_generation(snapshot.generation, snapshot.best_fitness)

    result = solve(objective, bounds, config.solver, seeds=seeds, callback=callback, cancel=config.cancel)
    x, fitness = result.best_vector, result.best_fitness
    evaluations = result.evaluations

    refined = False
    if config.refine and not result.cancelled and fitness < INFEASIBLE_FITNESS:
        polished = refine(objective, x, bounds, config.refine_config)
        evaluations += polished.evaluations
        if polished.improved:
            x, fitness, refined = polished.x, polished.fitness, True

    evaluation = objective.evaluate(x)
    if evaluation is None:
        logger.warning('No feasible linkage found; returning the best infeasible vector')
        normalized = ParameterVector(variant, x, normalized=True)
        params = normalized.to_full()
        points = np.empty((0, variant.dim))
        fitted_vectors = None
        transform = None
        fitness = INFEASIBLE_FITNESS
    else:
        normalized = evaluation.params
        params = evaluation.full_params
        points = evaluation.fitted_curve
        fitted_vectors = evaluation.fitted_vectors
        transform = evaluation.transform
        fitness = evaluation.fitness

    elapsed = time.perf_counter() - start
    logger.info(f'Synthesis finished: fitness={fitness:.6f}, generations={result.generations}, {elapsed:.2f}s')
    return SynthesisResult(
        params=params,
        curve=points,
        fitness=float(fitness),
        normalized=normalized,
        transform=transform,
        generations=result.generations,
        history=result.history,
        cancelled=result.cancelled,
        seeded_from_atlas=0 if seeds is None else len(seeds),
        refined=refined,
        evaluations=evaluations,
        elapsed=elapsed,
        vectors=fitted_vectors,
    )


# =============================================================================
# Reporting
# =============================================================================


def analyze_convergence(
    history: list[float],
    tolerance: float = 1e-6,
) -> ConvergenceStats:
    """
    Analyze the best-so-far fitness history of a run.

    Args:
        history: Best fitness per generation (first entry: initial population)
        tolerance: Change below which the last generation counts as converged

    Returns:
        ConvergenceStats with analysis results
    """
    if not history:
        return ConvergenceStats(
            initial_fitness=0.0,
            final_fitness=0.0,
            improvement_pct=0.0,
            n_generations=0,
            stalled_generations=0,
            converged=False,
        )

    initial = history[0]
    final = history[-1]
    if not np.isfinite(initial) or initial == 0:
        improvement_pct = 0.0
    else:
        improvement_pct = (1 - final / initial) * 100

    improvements = [prev - curr for prev, curr in zip(history[:-1], history[1:])]

    stalled = 0
    for change in reversed(improvements):
        if change > tolerance:
            break
        stalled += 1

    converged = len(history) >= 2 and abs(history[-1] - history[-2]) < tolerance

    return ConvergenceStats(
        initial_fitness=initial,
        final_fitness=final,
        improvement_pct=improvement_pct,
        n_generations=len(history) - 1,  # First entry is initial state
        stalled_generations=stalled,
        converged=converged,
        improvement_per_generation=improvements,
    )


def format_synthesis_report(result: SynthesisResult, include_history: bool = False) -> str:
    """
    Format a synthesis result as a human-readable report.

    Args:
        result: SynthesisResult from ``synthesize``
        include_history: Include the full generation history

    Returns:
        Formatted string report
    """
    stats = analyze_convergence(result.history)
    lines = [
        '=' * 50,
        'FOUR-BAR SYNTHESIS REPORT',
        '=' * 50,
        f"Status:      {'CANCELLED' if result.cancelled else 'FEASIBLE' if result.is_feasible else 'INFEASIBLE'}",
        f'Variant:     {result.params.variant.value} ({result.params.stat.name})',
        f'Fitness:     {result.fitness:.6f}',
        f'Generations: {result.generations}',
        f'Evaluations: {result.evaluations}',
    ]
    if stats.n_generations:
        lines.append(f'Improvement: {stats.improvement_pct:.1f}%')
    if result.seeded_from_atlas:
        lines.append(f'Atlas seeds: {result.seeded_from_atlas}')
    if result.refined:
        lines.append('Refined:     yes')

    lines.append('')
    lines.append('Parameters:')
    for name, value in result.params.as_dict().items():
        lines.append(f'  {name}: {value:.4f}')

    if result.history and include_history:
        lines.append('')
        lines.append('Convergence History:')
        for i, fitness in enumerate(result.history):
            lines.append(f'  [{i:3d}] {fitness:.6f}')

    lines.append('=' * 50)
    return '\n'.join(lines)
