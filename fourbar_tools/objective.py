"""
objective.py - Fitness of a normalized linkage against a target curve.

The optimizer searches the normalized parameter layout of a variant. For
each candidate the objective:

  1. tries every assembly state worth sampling for the linkage's angle bound
  2. generates the coupler curve for the target's mode
  3. computes its descriptor at the target's harmonic count
  4. takes the descriptor distance to the target (minimum over states)

CLOSED targets need a linkage whose driver turns fully; OPEN targets need a
rocking driver and are compared with its open trace; PARTIAL targets are
matched against the best sub-arc of a full-turn curve (``match_partial``).

Motion targets (PLANAR_MOTION with paired unit vectors) also score the
coupler motion line: each target pose is compared with the fitted pose
at the nearest point of the candidate curve, and the fitness is the larger
of the shape distance and the worst pose error.

Key items:
  - TargetCurve: validated target points (and motion vectors) plus their descriptor
  - CurveObjective: callable fitness, thread safe, never raises for finite input
  - Evaluation: best state of one candidate with its alignment transform
  - INFEASIBLE_FITNESS: finite penalty for candidates that cannot be assembled
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from fourbar_tools.curve_utils import Curve
from fourbar_tools.curve_utils import resample_curve
from fourbar_tools.curve_utils import smooth_curve
from fourbar_tools.curve_utils import valid_part
from fourbar_tools.curve_utils import validate_target
from fourbar_tools.descriptor import align
from fourbar_tools.descriptor import Descriptor
from fourbar_tools.descriptor import match_partial
from fourbar_tools.descriptor import normalize
from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.errors import InfeasibleMechanism
from fourbar_tools.geometry import Similarity
from fourbar_tools.kinematics import curve
from fourbar_tools.kinematics import poses
from fourbar_tools.linkage_states import AngleBound
from fourbar_tools.linkage_states import BoundKind
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Variant

logger = logging.getLogger(__name__)

INFEASIBLE_FITNESS = 1e10


@dataclass(frozen=True)
class TargetCurve:
    """
    Target points prepared for synthesis.

    Attributes:
        points: Cleaned (n, dim) points (closing duplicate removed for CLOSED)
        mode: How the points are interpreted
        descriptor: Normalized descriptor of the points
        vectors: Unit (n, 2) motion-line directions for motion targets, else None
    """
    points: Curve
    mode: CurveMode
    descriptor: Descriptor
    vectors: np.ndarray | None = None

    @classmethod
    def prepare(
        cls,
        points,
        mode: CurveMode,
        dim: int | None = None,
        harmonic: int | None = None,
        *,
        vectors=None,
        smooth_window: int | None = None,
        resample: int | None = None,
    ) -> TargetCurve:
        """
        Validate target points and compute their descriptor.

        Args:
            points: (n, dim) target points
            mode: How the points are interpreted
            dim: Required point dimension
            harmonic: Descriptor harmonics (automatic when None)
            vectors: Optional (n, 2) directions paired with the points; the
                target then describes a motion and is normalized to unit vectors
            smooth_window: Savitzky-Golay window applied to the cleaned points
            resample: Resample the cleaned points to this many, uniform in arc length

        Raises:
            EmptyTargetCurve: fewer than MIN_TARGET_POINTS usable points
            DegenerateCurve: all points coincident
            ValueError: vectors do not pair with the points, or have zero length
        """
        mode = CurveMode(mode)
        if vectors is None:
            cleaned = validate_target(points, mode, dim)
            unit = None
        else:
            if smooth_window is not None or resample is not None:
                raise ValueError('motion targets cannot be smoothed or resampled')
            cleaned, unit = _paired_vectors(points, vectors, mode, dim)
        closed = mode is CurveMode.CLOSED
        if smooth_window is not None:
            cleaned = smooth_curve(cleaned, smooth_window, closed=closed)
        if resample is not None:
            cleaned = resample_curve(cleaned, resample, closed=closed)
        cleaned.flags.writeable = False
        return cls(cleaned, mode, normalize(cleaned, mode, harmonic), unit)

    @property
    def harmonic(self) -> int:
        return self.descriptor.harmonic

    @property
    def dim(self) -> int:
        return self.points.shape[1]

    @property
    def is_motion(self) -> bool:
        return self.vectors is not None


def _paired_vectors(points, vectors, mode: CurveMode, dim: int | None) -> tuple[Curve, np.ndarray]:
    points = np.asarray(points, dtype=np.float64)
    vectors = np.asarray(vectors, dtype=np.float64)
    if vectors.ndim != 2 or vectors.shape[1] != 2 or vectors.shape != points.shape:
        raise ValueError(f'motion vectors must pair with (n, 2) points, got {vectors.shape} for {points.shape}')
    # Keep rows where both the point and its direction are usable
    stacked = valid_part(np.concatenate([points, vectors], axis=1))
    cleaned = validate_target(stacked[:, :2], mode, dim)
    directions = stacked[:len(cleaned), 2:]
    norms = np.linalg.norm(directions, axis=1)
    if np.any(norms <= 0.0):
        raise ValueError('motion vectors must have non-zero length')
    unit = directions / norms[:, None]
    unit.flags.writeable = False
    return cleaned, unit


@dataclass(frozen=True)
class Evaluation:
    """
    Best assembly state of one candidate.

    ``transform`` maps the candidate's normalized linkage onto the target, so
    ``params.to_full(transform)`` is the fitted mechanism and
    ``transform.apply(curve)`` its curve in target coordinates. Motion
    candidates also carry their motion-line ``vectors`` in the normalized frame.
    """
    params: ParameterVector
    distance: float
    fitness: float
    transform: Similarity
    curve: Curve
    vectors: np.ndarray | None = None

    @property
    def full_params(self) -> ParameterVector:
        return self.params.to_full(self.transform)

    @property
    def fitted_curve(self) -> Curve:
        return self.transform.apply(self.curve)

    @property
    def fitted_vectors(self) -> np.ndarray | None:
        if self.vectors is None:
            return None
        return self.vectors @ self.transform.rotation.T


class CurveObjective:
    """
    Callable fitness ``normalized values -> float`` for one target.

    Args:
        target: Prepared target curve
        variant: Mechanism variant being synthesized
        res: Input angle samples per candidate curve
        weights: Per-harmonic descriptor distance weights
        origin: Required position of the ground pivot (sphere centre for SPHERICAL)
        scale: Required driver length (sphere radius for SPHERICAL)
        partial_resolution: Coarse window grid size for PARTIAL targets
        partial_refine_steps: Window refinement rounds for PARTIAL targets

    Raises:
        ValueError: target dimension does not match the variant, or a motion
            target is paired with a variant without a motion line

    Example:
        >>> target = TargetCurve.prepare(points, CurveMode.CLOSED)
        >>> objective = CurveObjective(target, Variant.PLANAR)
        >>> fitness = objective(np.array([0.6, 0.8, 1.2, 0.447, 0.4636]))
    """

    def __init__(
        self,
        target: TargetCurve,
        variant: Variant,
        res: int = 180,
        weights=None,
        origin=None,
        scale: float | None = None,
        partial_resolution: int = 16,
        partial_refine_steps: int = 4,
    ):
        self.target = target
        self.variant = Variant(variant)
        if self.variant.dim != target.dim:
            raise ValueError(f'{self.variant.value} linkages trace {self.variant.dim}D curves, target is {target.dim}D')
        if target.is_motion and self.variant is not Variant.PLANAR_MOTION:
            raise ValueError(f'motion targets need a {Variant.PLANAR_MOTION.value} linkage, got {self.variant.value}')
        self.res = res
        self.weights = weights
        self.origin = None if origin is None else np.asarray(origin, dtype=np.float64)
        if self.origin is not None and self.origin.shape != (self.variant.dim,):
            raise ValueError(f'origin must have {self.variant.dim} coordinates, got {self.origin.shape}')
        self.scale = scale
        self.partial_resolution = partial_resolution
        self.partial_refine_steps = partial_refine_steps

    def __call__(self, values: np.ndarray) -> float:
        evaluation = self.evaluate(values)
        if evaluation is None:
            return INFEASIBLE_FITNESS
        return evaluation.fitness

    def evaluate(self, values: np.ndarray) -> Evaluation | None:
        """Best state of a normalized vector, or None when no state is feasible."""
        params = ParameterVector(self.variant, values, normalized=True)
        best: Evaluation | None = None
        for stat in AngleBound.of(params).states():
            candidate = params.with_stat(stat)
            try:
                evaluation = self._evaluate_state(candidate)
            except (InfeasibleMechanism, DegenerateCurve) as e:
                logger.debug(f'{stat.name} infeasible: {e}')
                continue
            if not np.isfinite(evaluation.fitness):
                continue
            if best is None or evaluation.fitness < best.fitness:
                best = evaluation
        return best

    def _sample(self, params: ParameterVector, mode: CurveMode) -> tuple[Curve, np.ndarray | None]:
        if self.target.is_motion:
            return poses(params, mode, self.res)
        return curve(params, mode, self.res), None

    def _evaluate_state(self, params: ParameterVector) -> Evaluation:
        mode = self.target.mode
        bound = AngleBound.of(params)
        if mode is CurveMode.OPEN:
            if not bound.is_open:
                raise InfeasibleMechanism('driver turns fully; OPEN targets need a rocking driver', reason='not_open')
            points, vectors = self._sample(params, CurveMode.OPEN)
            dist, transform = align(normalize(points, CurveMode.OPEN, self.target.harmonic), self.target.descriptor, self.weights)
        elif mode is CurveMode.CLOSED:
            points, vectors = self._sample(params, CurveMode.CLOSED)
            dist, transform = align(normalize(points, CurveMode.CLOSED, self.target.harmonic), self.target.descriptor, self.weights)
        elif mode is CurveMode.PARTIAL:
            if bound.kind is not BoundKind.CLOSED:
                raise InfeasibleMechanism('PARTIAL targets are matched on a full-turn curve', reason='not_closed')
            full_turn, full_vectors = self._sample(params, CurveMode.CLOSED)
            window = match_partial(
                self.target.descriptor,
                full_turn,
                resolution=self.partial_resolution,
                refine_steps=self.partial_refine_steps,
                weights=self.weights,
            )
            if window.descriptor is None:
                raise InfeasibleMechanism('no usable sub-arc in the coupler curve', reason='no_window')
            dist, transform = align(window.descriptor, self.target.descriptor, self.weights)
            points = window.window(full_turn)
            vectors = None if full_vectors is None else window.window(full_vectors)
        else:
            raise ValueError(f'unsupported curve mode {mode!r}')
        error = dist
        if vectors is not None:
            cyclic = mode is CurveMode.CLOSED
            error = max(dist, self._pose_error(transform.apply(points), vectors @ transform.rotation.T, cyclic))
        return Evaluation(params, dist, self._constrained(error, params, transform), transform, points, vectors)

    def _pose_error(self, points: Curve, vectors: np.ndarray, cyclic: bool) -> float:
        """
        Largest motion-line error over the target poses.

        Each target point is projected onto the nearest segment of the fitted
        curve; the fitted direction is interpolated along that segment and
        compared with the target's unit vector (Euclidean distance, so 2 is
        the largest possible error).
        """
        if cyclic:
            points = np.vstack([points, points[:1]])
            vectors = np.vstack([vectors, vectors[:1]])
        starts, segments = points[:-1], np.diff(points, axis=0)
        length_sq = np.sum(segments ** 2, axis=1)
        offsets = self.target.points[:, None, :] - starts[None, :, :]
        along = np.divide(
            np.sum(offsets * segments[None, :, :], axis=2),
            length_sq[None, :],
            out=np.zeros(offsets.shape[:2]),
            where=length_sq[None, :] > 0.0,
        )
        along = np.clip(along, 0.0, 1.0)
        gaps = np.linalg.norm(offsets - along[:, :, None] * segments[None, :, :], axis=2)
        nearest = np.argmin(gaps, axis=1)
        t = along[np.arange(len(nearest)), nearest][:, None]
        fitted = (1.0 - t) * vectors[nearest] + t * vectors[nearest + 1]
        norms = np.linalg.norm(fitted, axis=1, keepdims=True)
        # Opposite directions on one segment interpolate through zero
        fitted = np.divide(fitted, norms, out=vectors[nearest].copy(), where=norms > 0.0)
        return float(np.max(np.linalg.norm(fitted - self.target.vectors, axis=1)))

    def _constrained(self, dist: float, params: ParameterVector, transform: Similarity) -> float:
        """Fold the optional origin/scale requirements into the fitness."""
        if self.origin is None and self.scale is None:
            return dist
        full = params.to_full(transform)
        errors = [dist]
        if self.variant.is_planar:
            position = np.array([full['p0x'], full['p0y']])
            size = full['l2']
        else:
            position = np.array([full['ox'], full['oy'], full['oz']])
            size = full['r']
        if self.origin is not None:
            errors.append(float(np.linalg.norm(position - self.origin)))
        if self.scale is not None:
            errors.append(abs(size - self.scale))
        return max(errors)
