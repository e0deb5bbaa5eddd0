"""
kinematics.py - Closed-form forward kinematics of four-bar linkages.

Maps a ParameterVector to joint positions and coupler curves. All variants are
dispatched on their tag; the sweep over input angles is vectorized with numpy.

Joint order in ``joint_positions`` output:
  0. ground pivot of the driver
  1. ground pivot of the follower
  2. driver / coupler joint
  3. coupler / follower joint
  4. coupler point (traces the output curve)

Key functions:
  - joint_positions(): (n, 5, dim) positions, NaN where the loop cannot close
  - sweep_interval(): the input angle range sampled for a curve mode
  - curve(): feasible coupler curve or InfeasibleMechanism
  - poses(): coupler curve plus motion-line unit vectors (PLANAR_MOTION)
"""
from __future__ import annotations

import logging

import numpy as np
from scipy.spatial.transform import Rotation

from fourbar_tools.curve_utils import angle_space
from fourbar_tools.curve_utils import Curve
from fourbar_tools.curve_utils import valid_part
from fourbar_tools.errors import InfeasibleMechanism
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.linkage_states import BoundKind
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import sphere_orientation
from fourbar_tools.variants import TAU
from fourbar_tools.variants import Variant

logger = logging.getLogger(__name__)

COUPLER_POINT = 4
# Link lengths closer than this are treated as equal (parallelogram shortcut)
LENGTH_EPS = np.finfo(np.float64).eps


def joint_positions(
    params: ParameterVector,
    angles: np.ndarray,
    inverted: bool | None = None,
) -> np.ndarray:
    """
    Joint positions for each input angle.

    Args:
        params: Mechanism parameters (normalized vectors are embedded at the canonical pose)
        angles: Driver angles in radians, relative to the ground link
        inverted: Assembly branch; defaults to the one selected by ``params.stat``

    Returns:
        (n, 5, dim) array. Rows for unassemblable angles are NaN.
    """
    angles = np.atleast_1d(np.asarray(angles, dtype=np.float64))
    full = params.to_full()
    if inverted is None:
        inverted = AngleBound.of(params).is_inverted(params.stat)
    values = full.as_dict()
    if full.variant in (Variant.PLANAR, Variant.PLANAR_MOTION):
        return _planar_joints(values, angles, inverted)
    if full.variant is Variant.SPHERICAL:
        return _spherical_joints(values, angles, inverted)
    raise ValueError(f'unsupported variant {full.variant!r}')


def _planar_joints(v: dict[str, float], b: np.ndarray, inverted: bool) -> np.ndarray:
    l1, l2, l3, l4, l5, g, a = v['l1'], v['l2'], v['l3'], v['l4'], v['l5'], v['g'], v['a']
    n = len(b)
    p0 = np.array([v['p0x'], v['p0y']])
    ground = np.broadcast_to(p0, (n, 2))
    pivot = np.broadcast_to(p0 + l1 * np.array([np.cos(a), np.sin(a)]), (n, 2))
    driver = p0 + l2 * np.column_stack([np.cos(a + b), np.sin(a + b)])

    if abs(l1 - l3) < LENGTH_EPS and abs(l2 - l4) < LENGTH_EPS:
        # Parallelogram: the circle intersection is tangent-free but ambiguous
        follower = pivot + (driver - p0)
    else:
        d = pivot - driver
        r = np.hypot(d[:, 0], d[:, 1])
        with np.errstate(invalid='ignore', divide='ignore'):
            c = (l3 * l3 - l4 * l4 + r * r) / (2.0 * r)
            s = np.sqrt(l3 * l3 - c * c)
            u = d / r[:, None]
        if inverted:
            s = -s
        follower = driver + np.column_stack([c * u[:, 0] - s * u[:, 1], s * u[:, 0] + c * u[:, 1]])
        unassembled = (r > l3 + l4) | (r < abs(l3 - l4)) | (r < LENGTH_EPS)
        follower[unassembled] = np.nan

    coupler = follower - driver
    phi = np.arctan2(coupler[:, 1], coupler[:, 0]) + g
    point = driver + l5 * np.column_stack([np.cos(phi), np.sin(phi)])
    return np.stack([ground, pivot, driver, follower, point], axis=1)


def _unit_rows(vectors: np.ndarray) -> np.ndarray:
    with np.errstate(invalid='ignore', divide='ignore'):
        return vectors / np.linalg.norm(vectors, axis=-1, keepdims=True)


def _spherical_joints(v: dict[str, float], b: np.ndarray, inverted: bool) -> np.ndarray:
    l1, l2, l3, l4, l5, g = v['l1'], v['l2'], v['l3'], v['l4'], v['l5'], v['g']
    n = len(b)
    cos_b, sin_b = np.cos(b), np.sin(b)

    # Follower angle about its ground pivot from the spherical loop equation
    h1 = np.cos(l2) * np.cos(l4) * np.cos(l1) - np.cos(l3) + np.sin(l2) * np.cos(l4) * np.sin(l1) * cos_b
    h2 = -np.cos(l2) * np.sin(l4) * np.sin(l1) + np.sin(l2) * np.sin(l4) * np.cos(l1) * cos_b
    h3 = np.sin(l2) * np.sin(l4) * sin_b
    with np.errstate(invalid='ignore'):
        h = np.sqrt(h3 * h3 - h1 * h1 + h2 * h2)
    if inverted:
        h = -h
    delta = 2.0 * np.arctan2(-h3 + h, h1 - h2)

    # Unit sphere, ground pivot of the driver at the north pole
    ground = np.broadcast_to(np.array([0.0, 0.0, 1.0]), (n, 3))
    axis = np.array([np.sin(l1), 0.0, np.cos(l1)])
    pivot = np.broadcast_to(axis, (n, 3))
    driver = _unit_rows(np.column_stack([np.sin(l2) * cos_b, np.sin(l2) * sin_b, np.full(n, np.cos(l2))]))
    # Arc l4 away from the follower pivot, then turned by delta about it
    start = np.array([np.sin(l1 + l4), 0.0, np.cos(l1 + l4)])
    feasible = np.isfinite(delta)
    turns = Rotation.from_rotvec(np.outer(np.where(feasible, delta, 0.0), axis))
    follower = _unit_rows(turns.apply(start).reshape(n, 3))
    follower[~feasible] = np.nan

    # Coupler frame: i at the driver joint, k normal to the coupler great circle
    i = driver
    k = _unit_rows(np.cross(driver, follower))
    j = np.cross(k, i)
    local = np.array([np.cos(l5), np.sin(l5) * np.cos(g), np.sin(l5) * np.sin(g)])
    point = _unit_rows(local[0] * i + local[1] * j + local[2] * k)

    joints = np.stack([ground, pivot, driver, follower, point], axis=1)
    rotation = sphere_orientation(v['p0i'], v['p0j'], v['a'])
    centre = np.array([v['ox'], v['oy'], v['oz']])
    return v['r'] * joints @ rotation.T + centre


def sweep_interval(
    params: ParameterVector,
    mode: CurveMode,
    interval: tuple[float, float] | None = None,
) -> tuple[float, float]:
    """
    Input angle range sampled for ``mode``.

    CLOSED always sweeps a full turn and requires a driver that can turn
    fully. OPEN and PARTIAL use the caller's interval, or the linkage's own
    angle bound when none is given.

    Raises:
        InfeasibleMechanism: the loop cannot be assembled, or cannot turn fully in CLOSED mode
    """
    mode = CurveMode(mode)
    bound = AngleBound.of(params)
    if not bound.is_valid:
        raise InfeasibleMechanism('link lengths violate the assembly inequality', reason='invalid_loop')
    if mode is CurveMode.CLOSED:
        if interval is not None:
            raise ValueError('CLOSED curves always sweep a full turn; do not pass an interval')
        if bound.kind is not BoundKind.CLOSED:
            raise InfeasibleMechanism('driver cannot make a full turn', reason='not_closed')
        return (0.0, TAU)
    if interval is not None:
        return (float(interval[0]), float(interval[1]))
    return bound.to_value()


def curve(
    params: ParameterVector,
    mode: CurveMode = CurveMode.CLOSED,
    n_samples: int = 180,
    *,
    interval: tuple[float, float] | None = None,
) -> Curve:
    """
    Coupler curve sampled at ``n_samples`` equally spaced input angles.

    Args:
        params: Mechanism parameters (full or normalized)
        mode: CLOSED sweeps a full turn; OPEN/PARTIAL sweep ``interval``
        n_samples: Number of input angles (>= 2)
        interval: (start, end) driver angles for OPEN/PARTIAL

    Returns:
        (m, dim) array with m <= n_samples; the longest run of assemblable samples

    Raises:
        ValueError: n_samples < 2
        InvalidParameterVector: raised by ParameterVector construction
        InfeasibleMechanism: nothing (or a single point) could be assembled

    Example:
        >>> pv = ParameterVector(Variant.PLANAR, [0, 0, 0, 3, 5, 4, 6, 2.236, 0.4636])
        >>> curve(pv, CurveMode.CLOSED, 90).shape
        (90, 2)
    """
    if n_samples < 2:
        raise ValueError(f'n_samples must be at least 2, got {n_samples}')
    mode = CurveMode(mode)
    start, end = sweep_interval(params, mode, interval)
    joints = joint_positions(params, angle_space(start, end, n_samples))
    points = valid_part(joints[:, COUPLER_POINT, :], cyclic=mode is CurveMode.CLOSED)
    if len(points) < n_samples:
        logger.debug(f'{params.variant.value} curve: kept {len(points)} of {n_samples} samples ({mode.value})')
    if len(points) < 2:
        raise InfeasibleMechanism('fewer than two assemblable positions in the sweep', reason='no_motion')
    return points


def poses(
    params: ParameterVector,
    mode: CurveMode = CurveMode.CLOSED,
    n_samples: int = 180,
    *,
    interval: tuple[float, float] | None = None,
) -> tuple[Curve, np.ndarray]:
    """
    Coupler curve and the unit vectors of the coupler motion line.

    The motion line is attached to the coupler at angle ``e`` from the
    coupler link (PLANAR_MOTION only).

    Returns:
        (curve, unit_vectors), both (m, 2)
    """
    if params.variant is not Variant.PLANAR_MOTION:
        raise ValueError(f'poses need a {Variant.PLANAR_MOTION.value} linkage, got {params.variant.value}')
    if n_samples < 2:
        raise ValueError(f'n_samples must be at least 2, got {n_samples}')
    mode = CurveMode(mode)
    start, end = sweep_interval(params, mode, interval)
    joints = joint_positions(params, angle_space(start, end, n_samples))
    coupler = joints[:, 3, :] - joints[:, 2, :]
    angle = params['e'] + np.arctan2(coupler[:, 1], coupler[:, 0])
    stacked = np.concatenate([joints[:, COUPLER_POINT, :], np.column_stack([np.cos(angle), np.sin(angle)])], axis=1)
    stacked = valid_part(stacked, cyclic=mode is CurveMode.CLOSED)
    if len(stacked) < 2:
        raise InfeasibleMechanism('fewer than two assemblable positions in the sweep', reason='no_motion')
    return stacked[:, :2], stacked[:, 2:]
