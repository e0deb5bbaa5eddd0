"""
curve_utils.py - Curve manipulation utilities.

This module provides the point-sequence tools shared by the kinematics, the
shape descriptor and target preparation:
  - Validation: reject targets too short or collapsed to a point
  - Regularization: close a curve with a line, or trace an open arc forward and back
  - Valid part: keep the longest run of finite samples
  - Resampling / smoothing: clean up captured or hand-drawn targets

=============================================================================
CRITICAL PARAMETERS - Understanding Their Impact
=============================================================================

MIN_TARGET_POINTS:
    Minimum number of finite points a target must keep after cleaning.
    Fewer points cannot define more than a single ellipse harmonic.

SMOOTHING_WINDOW / SMOOTHING_POLYORDER:
    Savitzky-Golay filter parameters used by ``smooth_curve``.
    Larger windows remove more noise but round off sharp features.

=============================================================================
"""
from __future__ import annotations

from typing import Literal

import numpy as np
from scipy.interpolate import interp1d
from scipy.signal import savgol_filter

from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.errors import EmptyTargetCurve
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import TAU

Curve = np.ndarray  # Shape: (n_points, dim), dim in {2, 3}

MIN_TARGET_POINTS = 4
# Perimeter below this (relative to the coordinate magnitude) counts as a single point
DEGENERATE_TOL = 1e-12


def as_curve(points, dim: int | None = None) -> Curve:
    """Convert a point sequence into a float (n, dim) array, checking its shape."""
    curve = np.array(points, dtype=np.float64)
    if curve.ndim != 2 or curve.shape[1] not in (2, 3):
        raise ValueError(f'curve must have shape (n, 2) or (n, 3), got {curve.shape}')
    if dim is not None and curve.shape[1] != dim:
        raise ValueError(f'expected {dim}D points, got {curve.shape[1]}D')
    return curve


def is_closed(curve: Curve) -> bool:
    """True when the first and last points coincide exactly."""
    return len(curve) > 1 and bool(np.array_equal(curve[0], curve[-1]))


def valid_part(curve: Curve, cyclic: bool = False) -> Curve:
    """
    Longest run of consecutive finite points.

    Kinematic sampling marks unassemblable input angles with NaN; only one
    contiguous piece of the trace is kept. With ``cyclic`` the run may wrap
    around the end of a full-turn sweep.
    """
    finite = np.all(np.isfinite(curve), axis=1)
    if finite.all():
        return curve
    if not finite.any():
        return curve[:0]
    if cyclic:
        shift = int(np.flatnonzero(~finite)[-1]) + 1
        curve = np.roll(curve, -shift, axis=0)
        finite = np.roll(finite, -shift)
    # Boundaries of runs of True values
    padded = np.concatenate(([False], finite, [False]))
    edges = np.flatnonzero(np.diff(padded.astype(np.int8)))
    starts, stops = edges[::2], edges[1::2]
    best = int(np.argmax(stops - starts))
    return curve[starts[best]:stops[best]]


def close_line(curve: Curve) -> Curve:
    """Append the first point so the curve closes with a straight segment."""
    if is_closed(curve):
        return curve
    return np.vstack([curve, curve[:1]])


def close_reverse(curve: Curve) -> Curve:
    """
    Trace an open curve forward and then back to its start.

    The result is a closed curve that is identical (up to start phase) for
    both traversal directions of the original arc.
    """
    if len(curve) < 2:
        return curve
    return np.vstack([curve, curve[-2::-1]])


def regularize(curve: Curve, mode: CurveMode) -> Curve:
    """Make a curve periodic in the way its mode requires."""
    mode = CurveMode(mode)
    if mode is CurveMode.CLOSED:
        return close_line(curve)
    return close_reverse(curve)


def perimeter(curve: Curve) -> float:
    """Polyline length, without the closing segment."""
    if len(curve) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.diff(curve, axis=0), axis=1)))


def validate_target(points, mode: CurveMode, dim: int | None = None) -> Curve:
    """
    Clean and validate a target curve before any synthesis work starts.

    Non-finite points are dropped (the longest finite run is kept).

    Raises:
        EmptyTargetCurve: fewer than MIN_TARGET_POINTS usable points
        DegenerateCurve: all points coincide
    """
    try:
        curve = as_curve(points, dim)
    except ValueError as e:
        raise EmptyTargetCurve(f'target curve is not a point sequence: {e}') from e
    curve = valid_part(curve)
    if len(curve) < MIN_TARGET_POINTS:
        raise EmptyTargetCurve(
            f'target curve needs at least {MIN_TARGET_POINTS} finite points, got {len(curve)}',
        )
    extent = float(np.max(np.abs(curve))) or 1.0
    if perimeter(curve) <= DEGENERATE_TOL * extent or np.ptp(curve, axis=0).max() <= DEGENERATE_TOL * extent:
        raise DegenerateCurve('target curve points are all coincident')
    if CurveMode(mode) is CurveMode.CLOSED and is_closed(curve):
        # An explicit closing point carries no information
        curve = curve[:-1]
    return curve


def angle_space(start: float, end: float, n: int) -> np.ndarray:
    """
    ``n`` equally spaced input angles from ``start`` towards ``end`` (end exclusive).

    An ``end`` at or before ``start`` wraps around by a full turn.
    """
    if end <= start:
        end += TAU
    return start + (end - start) * np.arange(n) / n


# =============================================================================
# Resampling / smoothing
# =============================================================================


def resample_curve(
    curve: Curve,
    target_n_points: int,
    method: Literal['linear', 'parametric'] = 'parametric',
    closed: bool = True,
) -> Curve:
    """
    Resample a curve to a specific number of points.

    Args:
        curve: (n, dim) array
        target_n_points: Desired number of output points
        method: Interpolation method
            - "linear": uniform in sample index
            - "parametric": uniform in arc length (recommended)
        closed: Treat the curve as a loop; the closing segment is included
            and the first point is not repeated at the end.

    Returns:
        (target_n_points, dim) array

    Example:
        >>> square = np.array([(0, 0), (1, 0), (1, 1), (0, 1)], dtype=float)
        >>> resample_curve(square, 8).shape
        (8, 2)
    """
    curve = as_curve(curve)
    if len(curve) < 2:
        raise ValueError('Curve must have at least 2 points')
    if target_n_points < 2:
        raise ValueError('target_n_points must be at least 2')
    if len(curve) == target_n_points:
        return curve.copy()

    points = np.vstack([curve, curve[:1]]) if closed else curve
    if method == 'linear':
        t = np.linspace(0.0, 1.0, len(points))
    elif method == 'parametric':
        seg = np.linalg.norm(np.diff(points, axis=0), axis=1)
        t = np.concatenate(([0.0], np.cumsum(seg)))
        if t[-1] == 0.0:
            raise DegenerateCurve('cannot resample a curve of zero length')
        t /= t[-1]
        # Drop repeated points, interp1d requires strictly increasing x
        keep = np.concatenate(([True], np.diff(t) > 0))
        t, points = t[keep], points[keep]
    else:
        raise ValueError(f"Unknown method: {method}. Use 'linear' or 'parametric'")

    if closed:
        t_new = np.linspace(0.0, 1.0, target_n_points, endpoint=False)
    else:
        t_new = np.linspace(0.0, 1.0, target_n_points)
    interpolator = interp1d(t, points, axis=0, kind='linear')
    return interpolator(t_new)


def smooth_curve(
    curve: Curve,
    window_size: int = 5,
    polyorder: int = 3,
    closed: bool = True,
) -> Curve:
    """
    Savitzky-Golay smoothing for noisy captured targets.

    Closed curves are filtered with periodic wrap-around so the seam is not
    distorted; open curves use the filter's interpolation mode at the ends.
    """
    curve = as_curve(curve)
    if window_size % 2 == 0:
        window_size += 1
    if window_size > len(curve):
        window_size = len(curve) if len(curve) % 2 == 1 else len(curve) - 1
    if polyorder >= window_size:
        polyorder = window_size - 1
    if window_size < 3:
        return curve.copy()
    filter_mode = 'wrap' if closed else 'interp'
    return savgol_filter(curve, window_size, polyorder, axis=0, mode=filter_mode)
