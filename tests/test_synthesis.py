"""
test_synthesis.py - End-to-end tests for four-bar curve synthesis.

Tests cover:
  1. Recovering a known planar linkage from its coupler curve
  2. Target validation before any optimizer work
  3. Configuration errors surfacing synchronously
  4. The curve objective (feasibility, constraints, alignment)
  5. Atlas seeding, cancellation and progress callbacks
  6. Convergence analysis and report formatting
"""
from __future__ import annotations

import threading

import numpy as np
import pytest

from atlas import AtlasStore
from fourbar_tools.descriptor import distance
from fourbar_tools.descriptor import normalize
from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.errors import EmptyTargetCurve
from fourbar_tools.errors import NoStoppingRule
from fourbar_tools.kinematics import curve
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.objective import CurveObjective
from fourbar_tools.objective import INFEASIBLE_FITNESS
from fourbar_tools.objective import TargetCurve
from fourbar_tools.optimization_types import SynthesisConfig
from fourbar_tools.optimization_types import SynthesisResult
from fourbar_tools.synthesize import analyze_convergence
from fourbar_tools.synthesize import format_synthesis_report
from fourbar_tools.synthesize import motion_target_from_params
from fourbar_tools.synthesize import simulate
from fourbar_tools.synthesize import synthesize
from fourbar_tools.synthesize import target_from_params
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import normalized_bounds
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Stat
from fourbar_tools.variants import TAU
from fourbar_tools.variants import Variant
from optimizers import SolverConfig


def quick_config(**kwargs) -> SynthesisConfig:
    """Small, fast synthesis configuration for behavioural tests."""
    solver = kwargs.pop('solver', SolverConfig(population_size=12, max_generations=2, seed=0, log_interval=0))
    kwargs.setdefault('refine', False)
    kwargs.setdefault('res', 60)
    return SynthesisConfig(solver=solver, **kwargs)


def single_entry_atlas(pv: ParameterVector, harmonic: int = 10) -> AtlasStore:
    points = curve(pv, CurveMode.CLOSED, 90)
    efd = normalize(points, CurveMode.CLOSED, harmonic).vector
    return AtlasStore(Variant.PLANAR, CurveMode.CLOSED, harmonic, pv.values[None, :], [int(pv.stat)], efd[None, :])


class TestEndToEnd:
    """Full synthesis runs."""

    def test_recovers_known_linkage(self, reference_linkage):
        """Closed target from links [3, 5, 4, 6] with coupler offset (2, 1)."""
        target = target_from_params(reference_linkage, CurveMode.CLOSED, 180)
        config = SynthesisConfig(solver=SolverConfig(population_size=200, max_generations=100, seed=0))
        result = synthesize(target, CurveMode.CLOSED, Variant.PLANAR, config)

        assert result.is_feasible
        assert not result.cancelled
        harmonic = normalize(target, CurveMode.CLOSED).harmonic
        fitted = normalize(simulate(result.params), CurveMode.CLOSED, harmonic)
        assert distance(fitted, normalize(target, CurveMode.CLOSED, harmonic)) < 0.01
        assert result.fitness < 0.01
        assert result.generations == 100
        assert result.history[-1] >= result.fitness

    def test_too_few_points(self):
        """A three point target fails before the first generation."""
        generations = []
        config = quick_config(on_generation=lambda gen, best: generations.append(gen))
        with pytest.raises(EmptyTargetCurve):
            synthesize([(0, 0), (1, 0), (0, 1)], CurveMode.CLOSED, Variant.PLANAR, config)
        assert generations == []

    def test_coincident_points(self):
        with pytest.raises(DegenerateCurve):
            synthesize(np.ones((20, 2)), CurveMode.CLOSED, Variant.PLANAR, quick_config())

    def test_no_stopping_rule(self, crank_rocker):
        generations = []
        config = quick_config(
            solver=SolverConfig(max_generations=None),
            on_generation=lambda gen, best: generations.append(gen),
        )
        with pytest.raises(NoStoppingRule):
            synthesize(curve(crank_rocker), CurveMode.CLOSED, Variant.PLANAR, config)
        assert generations == []

    def test_dimension_mismatch(self, spherical_linkage):
        points = curve(spherical_linkage, CurveMode.CLOSED, 60)
        with pytest.raises(ValueError):
            synthesize(points, CurveMode.CLOSED, Variant.PLANAR, quick_config())

    def test_result_unpacks(self, crank_rocker):
        result = synthesize(curve(crank_rocker, CurveMode.CLOSED, 90), CurveMode.CLOSED, Variant.PLANAR, quick_config())
        params, points, fitness = result
        assert params is result.params
        assert not params.normalized
        assert params.variant is Variant.PLANAR
        assert fitness == result.fitness
        if result.is_feasible:
            assert points.shape[1] == 2
            assert fitness < INFEASIBLE_FITNESS
            assert result.transform is not None
        data = result.to_dict()
        assert data['params']['variant'] == 'planar'
        assert data['generations'] == 2

    def test_progress_callback(self, crank_rocker):
        seen = []
        config = quick_config(on_generation=lambda gen, best: seen.append((gen, best)))
        result = synthesize(curve(crank_rocker, CurveMode.CLOSED, 90), CurveMode.CLOSED, Variant.PLANAR, config)
        assert [gen for gen, _ in seen] == [0, 1, 2]
        assert [best for _, best in seen] == result.history

    def test_cancelled(self, crank_rocker):
        cancel = threading.Event()
        cancel.set()
        config = quick_config(refine=True, cancel=cancel)
        result = synthesize(curve(crank_rocker, CurveMode.CLOSED, 90), CurveMode.CLOSED, Variant.PLANAR, config)
        assert result.cancelled
        assert result.generations == 0
        assert not result.refined

    def test_open_target(self, double_rocker):
        points = curve(double_rocker, CurveMode.OPEN, 60)
        config = quick_config(solver=SolverConfig(population_size=24, max_generations=3, seed=1, log_interval=0))
        result = synthesize(points, CurveMode.OPEN, Variant.PLANAR, config)
        if result.is_feasible:
            assert AngleBound.of(result.params).is_open

    def test_spherical_target(self, spherical_linkage):
        points = curve(spherical_linkage, CurveMode.CLOSED, 60)
        result = synthesize(points, CurveMode.CLOSED, Variant.SPHERICAL, quick_config())
        assert result.params.variant is Variant.SPHERICAL
        assert len(result.params) == 13
        if result.is_feasible:
            assert result.curve.shape[1] == 3

    def test_partial_target_skips_atlas(self, crank_rocker, caplog):
        full_turn = curve(crank_rocker, CurveMode.CLOSED, 90)
        atlas = single_entry_atlas(crank_rocker.to_normalized()[0])
        config = quick_config(
            solver=SolverConfig(population_size=8, max_generations=0, seed=0, log_interval=0),
            partial_resolution=6,
            partial_refine_steps=1,
        )
        with caplog.at_level('WARNING', logger='fourbar_tools'):
            result = synthesize(full_turn[10:50], CurveMode.PARTIAL, Variant.PLANAR, config, atlas=atlas)
        assert result.seeded_from_atlas == 0
        assert 'PARTIAL' in caplog.text


class TestAtlasSeeding:
    """An atlas holding the answer puts it into the first generation."""

    def test_seeded_solution(self, crank_rocker):
        normalized, _ = crank_rocker.to_normalized()
        atlas = single_entry_atlas(normalized)
        target = curve(crank_rocker, CurveMode.CLOSED, 60)
        config = quick_config(solver=SolverConfig(population_size=10, max_generations=0, seed=0, log_interval=0))
        result = synthesize(target, CurveMode.CLOSED, Variant.PLANAR, config, atlas=atlas)
        assert result.seeded_from_atlas == 1
        assert result.fitness < 1e-9
        np.testing.assert_allclose(result.params.values, crank_rocker.values, atol=1e-6)

    def test_variant_mismatch(self, crank_rocker, spherical_linkage):
        atlas = single_entry_atlas(crank_rocker.to_normalized()[0])
        with pytest.raises(ValueError):
            synthesize(curve(spherical_linkage, CurveMode.CLOSED, 60), CurveMode.CLOSED, Variant.SPHERICAL, quick_config(), atlas=atlas)

    def test_mode_mismatch(self, crank_rocker, double_rocker):
        atlas = single_entry_atlas(crank_rocker.to_normalized()[0])
        with pytest.raises(ValueError):
            synthesize(curve(double_rocker, CurveMode.OPEN, 60), CurveMode.OPEN, Variant.PLANAR, quick_config(), atlas=atlas)

    def test_empty_atlas_ignored(self, crank_rocker):
        atlas = AtlasStore.empty(Variant.PLANAR, CurveMode.CLOSED, 10)
        result = synthesize(curve(crank_rocker, CurveMode.CLOSED, 60), CurveMode.CLOSED, Variant.PLANAR, quick_config(), atlas=atlas)
        assert result.seeded_from_atlas == 0


class TestObjective:
    """Fitness of normalized candidates."""

    @pytest.fixture
    def target(self, crank_rocker):
        return TargetCurve.prepare(curve(crank_rocker, CurveMode.CLOSED, 120), CurveMode.CLOSED)

    @pytest.fixture
    def solution(self, crank_rocker):
        return crank_rocker.to_normalized()[0].values

    def test_exact_solution_scores_zero(self, target, solution, crank_rocker):
        objective = CurveObjective(target, Variant.PLANAR, res=120)
        assert objective(solution) < 1e-9
        evaluation = objective.evaluate(solution)
        np.testing.assert_allclose(evaluation.full_params.values, crank_rocker.values, atol=1e-6)
        np.testing.assert_allclose(evaluation.fitted_curve, target.points, atol=1e-6)

    def test_infeasible_penalty(self, target):
        objective = CurveObjective(target, Variant.PLANAR)
        assert objective(np.array([6.0, 1 / 6, 1 / 6, 1.0, 0.0])) == INFEASIBLE_FITNESS

    def test_never_raises(self, target):
        objective = CurveObjective(target, Variant.PLANAR, res=36)
        bounds = normalized_bounds(Variant.PLANAR)
        rng = np.random.default_rng(0)
        for row in rng.uniform(bounds[:, 0], bounds[:, 1], (100, len(bounds))):
            value = objective(row)
            assert np.isfinite(value)
            assert 0.0 <= value <= INFEASIBLE_FITNESS

    def test_origin_and_scale(self, target, solution):
        exact = ParameterVector(Variant.PLANAR, solution, normalized=True).with_stat(Stat.C1B1)
        satisfied = CurveObjective(target, Variant.PLANAR, res=120, origin=(0.5, -1.0), scale=1.0)
        assert satisfied(solution) < 1e-6
        # The other assembly state may trade shape error for constraint error,
        # so the fitness is at most the exact state's constraint violation
        moved = CurveObjective(target, Variant.PLANAR, res=120, origin=(10.5, -1.0))
        assert moved._evaluate_state(exact).fitness == pytest.approx(10.0, abs=1e-6)
        assert moved(solution) <= 10.0 + 1e-6
        resized = CurveObjective(target, Variant.PLANAR, res=120, scale=3.0)
        assert resized._evaluate_state(exact).fitness == pytest.approx(2.0, abs=1e-6)
        assert resized(solution) <= 2.0 + 1e-6

    def test_origin_shape_checked(self, target):
        with pytest.raises(ValueError):
            CurveObjective(target, Variant.PLANAR, origin=(0.0, 0.0, 0.0))

    def test_variant_dimension_checked(self, target):
        with pytest.raises(ValueError):
            CurveObjective(target, Variant.SPHERICAL)

    def test_open_target_rejects_full_turn(self, crank_rocker, solution):
        arc = curve(crank_rocker, CurveMode.CLOSED, 120)[:40]
        objective = CurveObjective(TargetCurve.prepare(arc, CurveMode.OPEN), Variant.PLANAR, res=60)
        assert objective(solution) == INFEASIBLE_FITNESS

    def test_partial_target_matches_sub_arc(self, crank_rocker, solution):
        full_turn = curve(crank_rocker, CurveMode.CLOSED, 128)
        # start 32 and span 64 lie on a 32 x 32 window grid over 128 samples
        target = TargetCurve.prepare(full_turn[32:96], CurveMode.PARTIAL)
        objective = CurveObjective(target, Variant.PLANAR, res=128, partial_resolution=32, partial_refine_steps=0)
        evaluation = objective.evaluate(solution)
        assert evaluation.distance < 1e-6
        assert len(evaluation.curve) == 64


class TestMotionTarget:
    """Motion targets score the coupler motion line as well as the path."""

    @pytest.fixture
    def motion_target(self, motion_linkage):
        return motion_target_from_params(motion_linkage, CurveMode.CLOSED, 120)

    @pytest.fixture
    def solution(self, motion_linkage):
        return motion_linkage.to_normalized()[0].values

    def test_vectors_are_unit(self, motion_target):
        points, vectors = motion_target
        target = TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors * 3.0)
        assert target.is_motion
        np.testing.assert_allclose(np.linalg.norm(target.vectors, axis=1), 1.0)

    def test_exact_solution_scores_zero(self, motion_target, solution):
        points, vectors = motion_target
        objective = CurveObjective(TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors), Variant.PLANAR_MOTION, res=120)
        assert objective(solution) < 1e-6
        evaluation = objective.evaluate(solution)
        np.testing.assert_allclose(evaluation.fitted_curve, points, atol=1e-6)
        np.testing.assert_allclose(evaluation.fitted_vectors, vectors, atol=1e-6)

    def test_motion_angle_scored(self, motion_target, solution):
        points, vectors = motion_target
        turned = solution.copy()
        turned[-1] += 0.5
        motion = CurveObjective(TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors), Variant.PLANAR_MOTION, res=120)
        # On the traced branch every pose is off by 0.5 rad: |u - R(0.5) u| = 2 sin(0.25)
        traced = ParameterVector(Variant.PLANAR_MOTION, turned, normalized=True).with_stat(Stat.C1B1)
        assert motion._evaluate_state(traced).fitness == pytest.approx(2 * np.sin(0.25), abs=1e-3)
        assert motion(turned) > 0.1
        path_only = CurveObjective(TargetCurve.prepare(points, CurveMode.CLOSED), Variant.PLANAR_MOTION, res=120)
        assert path_only(turned) < 1e-6

    def test_pose_between_samples_interpolated(self, motion_linkage, solution):
        """Target poses halfway between candidate samples still score near zero."""
        half_step = np.pi / 120
        points, vectors = motion_target_from_params(
            motion_linkage, CurveMode.OPEN, 120, interval=(half_step, half_step + TAU),
        )
        objective = CurveObjective(TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors), Variant.PLANAR_MOTION, res=120)
        assert objective(solution) < 0.01

    def test_partial_window_carries_vectors(self, motion_linkage, solution):
        points, vectors = motion_target_from_params(motion_linkage, CurveMode.CLOSED, 128)
        target = TargetCurve.prepare(points[32:96], CurveMode.PARTIAL, vectors=vectors[32:96])
        objective = CurveObjective(target, Variant.PLANAR_MOTION, res=128, partial_resolution=32, partial_refine_steps=0)
        evaluation = objective.evaluate(solution)
        assert evaluation.fitness < 1e-6
        assert evaluation.vectors.shape == (64, 2)

    def test_vector_shape_checked(self, motion_target):
        points, vectors = motion_target
        with pytest.raises(ValueError):
            TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors[:-1])

    def test_zero_vector_rejected(self, motion_target):
        points, vectors = motion_target
        vectors = vectors.copy()
        vectors[5] = 0.0
        with pytest.raises(ValueError):
            TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors)

    def test_non_finite_pose_dropped(self, motion_target):
        points, vectors = motion_target
        vectors = vectors.copy()
        vectors[-1] = np.nan
        target = TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors)
        assert len(target.points) == len(target.vectors) == len(points) - 1

    def test_motion_target_needs_motion_variant(self, motion_target):
        points, vectors = motion_target
        target = TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors)
        with pytest.raises(ValueError):
            CurveObjective(target, Variant.PLANAR)

    def test_motion_target_not_resampled(self, motion_target):
        points, vectors = motion_target
        with pytest.raises(ValueError):
            TargetCurve.prepare(points, CurveMode.CLOSED, vectors=vectors, resample=60)

    def test_synthesize_returns_poses(self, motion_target):
        points, vectors = motion_target
        result = synthesize(points, CurveMode.CLOSED, Variant.PLANAR_MOTION, quick_config(), vectors=vectors)
        assert result.params.variant is Variant.PLANAR_MOTION
        if result.is_feasible:
            assert result.vectors.shape == result.curve.shape
            np.testing.assert_allclose(np.linalg.norm(result.vectors, axis=1), 1.0)
            assert len(result.to_dict()['vectors']) == len(result.curve)
        else:
            assert result.vectors is None

    def test_path_only_motion_synthesis_warns(self, motion_target, caplog):
        points, _ = motion_target
        with caplog.at_level('WARNING', logger='fourbar_tools'):
            result = synthesize(points, CurveMode.CLOSED, Variant.PLANAR_MOTION, quick_config())
        assert result.vectors is None
        assert 'No motion vectors' in caplog.text


class TestTargetPreparation:
    """Optional smoothing and resampling of captured targets."""

    def test_resampled_sparse_target(self, crank_rocker):
        sparse = curve(crank_rocker, CurveMode.CLOSED, 30)
        target = TargetCurve.prepare(sparse, CurveMode.CLOSED, resample=90)
        assert target.points.shape == (90, 2)
        objective = CurveObjective(target, Variant.PLANAR, res=120)
        assert objective(crank_rocker.to_normalized()[0].values) < 0.05

    def test_smoothing_noisy_target(self, crank_rocker):
        clean = curve(crank_rocker, CurveMode.CLOSED, 120)
        noisy = clean + np.random.default_rng(3).normal(0.0, 0.02, clean.shape)
        solution = crank_rocker.to_normalized()[0].values
        raw = CurveObjective(TargetCurve.prepare(noisy, CurveMode.CLOSED, harmonic=12), Variant.PLANAR, res=120)
        smoothed = CurveObjective(
            TargetCurve.prepare(noisy, CurveMode.CLOSED, harmonic=12, smooth_window=11),
            Variant.PLANAR,
            res=120,
        )
        assert smoothed(solution) < raw(solution)

    def test_config_resample_reaches_target(self, crank_rocker, caplog):
        sparse = curve(crank_rocker, CurveMode.CLOSED, 24)
        with caplog.at_level('INFO', logger='fourbar_tools'):
            synthesize(sparse, CurveMode.CLOSED, Variant.PLANAR, quick_config(resample=72, smooth_window=5))
        assert '72 points' in caplog.text


class TestSimulate:

    def test_target_from_params(self, reference_linkage):
        assert target_from_params(reference_linkage, CurveMode.CLOSED, 90).shape == (90, 2)

    def test_variant_checked(self, reference_linkage):
        with pytest.raises(ValueError):
            simulate(reference_linkage, Variant.SPHERICAL)

    def test_open_interval(self, crank_rocker):
        points = simulate(crank_rocker, Variant.PLANAR, 20, mode=CurveMode.OPEN, interval=(0.0, 1.0))
        assert points.shape == (20, 2)


class TestReporting:
    """Convergence statistics and text reports."""

    def test_analyze_convergence(self):
        stats = analyze_convergence([4.0, 2.0, 1.0, 1.0, 1.0])
        assert stats.initial_fitness == 4.0
        assert stats.final_fitness == 1.0
        assert stats.improvement_pct == pytest.approx(75.0)
        assert stats.n_generations == 4
        assert stats.stalled_generations == 2
        assert stats.converged
        assert stats.improvement_per_generation == [2.0, 1.0, 0.0, 0.0]

    def test_analyze_empty(self):
        stats = analyze_convergence([])
        assert stats.n_generations == 0
        assert not stats.converged

    def test_report(self, reference_linkage):
        result = SynthesisResult(
            params=reference_linkage,
            curve=np.zeros((10, 2)),
            fitness=0.01,
            generations=2,
            history=[1.0, 0.5, 0.01],
            refined=True,
        )
        report = format_synthesis_report(result, include_history=True)
        assert 'FOUR-BAR SYNTHESIS REPORT' in report
        assert 'Status:      FEASIBLE' in report
        assert 'Fitness:     0.010000' in report
        assert 'l3: 4.0000' in report
        assert '[  2] 0.010000' in report
        assert 'Refined:     yes' in report

    def test_report_infeasible(self, reference_linkage):
        result = SynthesisResult(params=reference_linkage, curve=np.empty((0, 2)), fitness=INFEASIBLE_FITNESS)
        assert 'INFEASIBLE' in format_synthesis_report(result)


class TestSynthesisConfig:

    @pytest.mark.parametrize(
        'kwargs', [
            {'res': 1},
            {'harmonic': 0},
            {'scale': -1.0},
            {'atlas_k': -1},
            {'smooth_window': 1},
            {'resample': 3},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SynthesisConfig(**kwargs)

    def test_to_dict(self):
        data = SynthesisConfig().to_dict()
        assert data['solver']['method'] == 'de'
        assert data['refine_config']['method'] == 'Nelder-Mead'
        assert 'on_generation' not in data
