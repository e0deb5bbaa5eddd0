"""Tests for fourbar_tools/kinematics.py - coupler curves, assembly states and parameter layouts."""
from __future__ import annotations

import numpy as np
import pytest

from fourbar_tools.errors import InfeasibleMechanism
from fourbar_tools.errors import InvalidParameterVector
from fourbar_tools.geometry import Similarity
from fourbar_tools.kinematics import curve
from fourbar_tools.kinematics import joint_positions
from fourbar_tools.kinematics import poses
from fourbar_tools.kinematics import sweep_interval
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.linkage_states import BoundKind
from fourbar_tools.linkage_states import classify
from fourbar_tools.linkage_states import FourBarType
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import normalized_bounds
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Stat
from fourbar_tools.variants import TAU
from fourbar_tools.variants import Variant


class TestParameterVector:
    """Layouts, validation and the normalized/full split."""

    def test_wrong_length_rejected(self):
        with pytest.raises(InvalidParameterVector):
            ParameterVector(Variant.PLANAR, [1.0, 2.0, 3.0])

    def test_normalized_length_checked(self):
        with pytest.raises(InvalidParameterVector):
            ParameterVector(Variant.SPHERICAL, [0.5] * 5, normalized=True)

    def test_non_numeric_rejected(self):
        with pytest.raises(InvalidParameterVector):
            ParameterVector(Variant.PLANAR, ['a'] * 9)

    def test_values_read_only(self, reference_linkage):
        with pytest.raises(ValueError):
            reference_linkage.values[0] = 1.0

    def test_named_access(self, reference_linkage):
        assert reference_linkage['l3'] == 4.0
        assert reference_linkage.planar_loop == (3.0, 5.0, 4.0, 6.0)
        with pytest.raises(KeyError):
            reference_linkage['nope']

    def test_normalized_driver_is_unit(self):
        pv = ParameterVector(Variant.PLANAR, [0.6, 0.8, 1.2, 0.45, 0.46], normalized=True)
        assert pv['l2'] == 1.0

    def test_planar_round_trip(self, crank_rocker):
        normalized, transform = crank_rocker.to_normalized()
        assert normalized.normalized
        assert transform.scale == pytest.approx(1.0)
        np.testing.assert_allclose(normalized.to_full(transform).values, crank_rocker.values, atol=1e-12)

    def test_planar_motion_round_trip(self):
        pv = ParameterVector(Variant.PLANAR_MOTION, [1.0, 2.0, 0.4, 8.0, 2.0, 6.0, 7.0, 3.0, 0.5, 1.2])
        normalized, transform = pv.to_normalized()
        assert normalized.values[-1] == pytest.approx(1.2)
        np.testing.assert_allclose(normalized.to_full(transform).values, pv.values, atol=1e-12)

    def test_spherical_round_trip(self, spherical_linkage):
        normalized, transform = spherical_linkage.to_normalized()
        np.testing.assert_allclose(normalized.to_full(transform).values, spherical_linkage.values, atol=1e-9)

    def test_dict_round_trip(self, reference_linkage):
        data = reference_linkage.to_dict()
        assert data['variant'] == 'planar'
        rebuilt = ParameterVector.from_dict(Variant.PLANAR, data['values'])
        np.testing.assert_array_equal(rebuilt.values, reference_linkage.values)

    def test_from_dict_missing_name(self):
        with pytest.raises(InvalidParameterVector):
            ParameterVector.from_dict(Variant.PLANAR, {'l1': 1.0})


class TestAngleBound:
    """Driver ranges and the assembly states they allow."""

    def test_reference_linkage_turns_fully(self, reference_linkage):
        bound = AngleBound.of(reference_linkage)
        assert bound.kind is BoundKind.CLOSED
        assert bound.to_value() == (0.0, TAU)
        assert bound.states() == [Stat.C1B1, Stat.C2B1]

    def test_double_rocker_is_open(self, double_rocker):
        bound = AngleBound.of(double_rocker)
        assert bound.kind is BoundKind.OPEN_C1B2
        start, end = bound.to_value()
        assert start < 0 < end
        assert bound.states() == [Stat.C1B1, Stat.C1B2]

    def test_impossible_loop_invalid(self):
        bound = AngleBound.from_planar_loop((10.0, 1.0, 1.0, 1.0))
        assert bound.kind is BoundKind.INVALID
        assert bound.to_value() is None
        assert not bound.check_mode(False).is_valid

    def test_two_circuits(self):
        # l1 + l2 > l3 + l4 and |l1 - l2| < |l3 - l4|
        bound = AngleBound.from_planar_loop((2.0, 2.5, 0.5, 3.5))
        assert bound.kind is BoundKind.OPEN_C2B2
        assert len(bound.states()) == 4

    def test_classify(self, crank_rocker):
        assert classify(crank_rocker) is FourBarType.GCRR
        assert FourBarType.GCRR.is_closed_curve
        assert FourBarType.from_loop((10.0, 1.0, 1.0, 1.0)) is FourBarType.INVALID


class TestCurve:
    """Coupler curve generation."""

    def test_shape(self, crank_rocker):
        points = curve(crank_rocker, CurveMode.CLOSED, 90)
        assert points.shape == (90, 2)
        assert np.all(np.isfinite(points))

    def test_reference_linkage_samples_every_angle(self, reference_linkage):
        assert curve(reference_linkage, CurveMode.CLOSED, 90).shape == (90, 2)

    def test_too_few_samples(self, crank_rocker):
        with pytest.raises(ValueError):
            curve(crank_rocker, CurveMode.CLOSED, 1)

    def test_closed_mode_needs_full_turn(self, double_rocker):
        with pytest.raises(InfeasibleMechanism) as exc_info:
            curve(double_rocker, CurveMode.CLOSED, 60)
        assert exc_info.value.reason == 'not_closed'

    def test_closed_mode_rejects_interval(self, crank_rocker):
        with pytest.raises(ValueError):
            curve(crank_rocker, CurveMode.CLOSED, 60, interval=(0.0, 1.0))

    def test_open_curve_inside_bound(self, double_rocker):
        points = curve(double_rocker, CurveMode.OPEN, 60)
        assert 50 <= len(points) <= 60
        assert np.all(np.isfinite(points))

    def test_open_curve_with_interval(self, crank_rocker):
        points = curve(crank_rocker, CurveMode.OPEN, 30, interval=(0.0, np.pi))
        assert points.shape == (30, 2)

    def test_dropped_samples_logged(self, double_rocker, caplog):
        with caplog.at_level('DEBUG', logger='fourbar_tools.kinematics'):
            points = curve(double_rocker, CurveMode.OPEN, 80, interval=(0.0, TAU))
        assert len(points) < 80
        assert f'kept {len(points)} of 80 samples' in caplog.text

    def test_invalid_loop_infeasible(self):
        pv = ParameterVector(Variant.PLANAR, [0, 0, 0, 10.0, 1.0, 1.0, 1.0, 1.0, 0.0])
        with pytest.raises(InfeasibleMechanism):
            curve(pv, CurveMode.CLOSED, 30)

    def test_coupler_point_at_l5_from_driver(self, crank_rocker):
        joints = joint_positions(crank_rocker, np.linspace(0, TAU, 12, endpoint=False))
        assert joints.shape == (12, 5, 2)
        np.testing.assert_allclose(np.linalg.norm(joints[:, 4] - joints[:, 2], axis=1), 2.0)
        np.testing.assert_allclose(np.linalg.norm(joints[:, 3] - joints[:, 2], axis=1), 3.0)
        np.testing.assert_allclose(np.linalg.norm(joints[:, 3] - joints[:, 1], axis=1), 3.5)

    def test_curve_moves_with_similarity(self, crank_rocker):
        normalized, transform = crank_rocker.to_normalized()
        np.testing.assert_allclose(
            transform.apply(curve(normalized, CurveMode.CLOSED, 40)),
            curve(crank_rocker, CurveMode.CLOSED, 40),
            atol=1e-9,
        )

    def test_branches_differ(self, crank_rocker):
        a = curve(crank_rocker.with_stat(Stat.C1B1), CurveMode.CLOSED, 40)
        b = curve(crank_rocker.with_stat(Stat.C2B1), CurveMode.CLOSED, 40)
        assert not np.allclose(a, b)

    def test_random_vectors_never_crash(self):
        """Every finite vector gives a curve or InfeasibleMechanism, nothing else."""
        rng = np.random.default_rng(7)
        bounds = normalized_bounds(Variant.PLANAR)
        produced = 0
        for row in rng.uniform(bounds[:, 0], bounds[:, 1], (200, len(bounds))):
            pv = ParameterVector(Variant.PLANAR, row, normalized=True)
            try:
                points = curve(pv, CurveMode.CLOSED, 36)
            except InfeasibleMechanism:
                continue
            produced += 1
            assert np.all(np.isfinite(points))
            assert len(points) >= 2
        assert produced > 0


class TestSpherical:
    """Spherical linkages trace curves on their sphere."""

    def test_points_on_sphere(self, spherical_linkage):
        points = curve(spherical_linkage, CurveMode.CLOSED, 72)
        assert points.shape[1] == 3
        assert len(points) == 72
        np.testing.assert_allclose(np.linalg.norm(points - np.array([1.0, 2.0, 3.0]), axis=1), 2.0, atol=1e-9)

    def test_normalized_on_unit_sphere(self, spherical_linkage):
        normalized, _ = spherical_linkage.to_normalized()
        points = curve(normalized, CurveMode.CLOSED, 36)
        np.testing.assert_allclose(np.linalg.norm(points, axis=1), 1.0, atol=1e-9)

    def test_link_arcs_held(self, spherical_linkage):
        joints = joint_positions(spherical_linkage, np.linspace(0.0, TAU, 36, endpoint=False))
        unit = (joints - np.array([1.0, 2.0, 3.0])) / 2.0

        def arc(a, b):
            return np.arccos(np.clip(np.sum(unit[:, a] * unit[:, b], axis=1), -1.0, 1.0))

        for (a, b), length in {(0, 1): 0.8, (0, 2): 0.2, (2, 3): 0.6, (1, 3): 0.7, (2, 4): 0.4}.items():
            np.testing.assert_allclose(arc(a, b), length, atol=1e-9)

    def test_transform_dimension_checked(self, spherical_linkage):
        normalized, _ = spherical_linkage.to_normalized()
        with pytest.raises(ValueError):
            normalized.to_full(Similarity.identity(2))


class TestPoses:
    """Coupler motion lines of PLANAR_MOTION linkages."""

    def test_unit_vectors(self):
        pv = ParameterVector(Variant.PLANAR_MOTION, [0, 0, 0, 4.0, 1.0, 3.0, 3.5, 2.0, 0.5, 0.7])
        points, directions = poses(pv, CurveMode.CLOSED, 48)
        assert points.shape == directions.shape == (48, 2)
        np.testing.assert_allclose(np.linalg.norm(directions, axis=1), 1.0)

    def test_requires_motion_variant(self, crank_rocker):
        with pytest.raises(ValueError):
            poses(crank_rocker)

    def test_sweep_interval_open_default(self, double_rocker):
        start, end = sweep_interval(double_rocker, CurveMode.OPEN)
        assert (start, end) == AngleBound.of(double_rocker).to_value()
