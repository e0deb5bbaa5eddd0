"""
descriptor.py - Elliptical Fourier descriptors (EFD) for curve matching.

Turns a sampled curve into a fixed-length coefficient array that no longer
depends on where the curve sits, how it is turned, how large it is, or at
which point its sampling starts. Two curves related by a similarity transform
and a phase shift get the same descriptor (up to rounding).

Key functions:
  - normalize(): curve -> Descriptor (regularizes by mode first)
  - distance(): weighted L2 distance between two descriptors
  - align(): distance plus the similarity transform mapping one curve onto the other
  - reconstruct(): descriptor -> sampled curve (for rendering)
  - match_partial(): coarse-to-fine sub-arc window search for PARTIAL targets

Normalization follows Kuhl & Giardina: the start phase comes from the first
harmonic ellipse, the rotation aligns its major axis with +x, and its semi-major
axis length becomes the unit of scale. That recipe leaves the start phase
ambiguous by half a turn, and a linkage traces its curve either way round
depending on the driver direction. Each descriptor therefore carries four
canonical forms (phase theta or theta + pi, forward or reversed traversal)
and ``distance`` takes the best pairing instead of picking one by a sign rule.

=============================================================================
PARTIAL-MODE WINDOW SEARCH - Accuracy / Cost Trade-off
=============================================================================

``match_partial`` evaluates ``resolution ** 2`` windows on a coarse
(start, span) grid, then ``refine_steps`` rounds of 9 windows around the best
one with the grid step halved each round. Each window costs one EFD.

    resolution=8,  refine_steps=3  ->  64 + 27 EFDs   (fast, coarse)
    resolution=16, refine_steps=4  -> 256 + 36 EFDs   (default)
    resolution=32, refine_steps=5  -> 1024 + 45 EFDs  (slow, accurate)

The windowed distance is a minimum over windows, so it is not a metric: the
triangle inequality can fail near window boundaries.

=============================================================================
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from fourbar_tools.curve_utils import as_curve
from fourbar_tools.curve_utils import Curve
from fourbar_tools.curve_utils import regularize
from fourbar_tools.curve_utils import valid_part
from fourbar_tools.errors import DegenerateCurve
from fourbar_tools.geometry import Similarity
from fourbar_tools.variants import CurveMode
from fourbar_tools.variants import TAU

# Fraction of cumulative Fourier power kept by automatic harmonic selection
POWER_THRESHOLD = 0.9999
MAX_AUTO_HARMONIC = 64
MIN_HARMONIC = 2
# Smallest sub-arc (as an angle of the full cycle) considered by match_partial
MIN_ANGLE = np.pi / 16
# Segments shorter than this relative to the perimeter are dropped
SEGMENT_TOL = 1e-14


def _frozen(array) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.flags.writeable = False
    return array


@dataclass(frozen=True)
class Descriptor:
    """
    Normalized elliptical Fourier descriptor.

    Attributes:
        coeffs: (harmonic, 2, dim) array; ``coeffs[k, 0]`` is the cosine vector
            and ``coeffs[k, 1]`` the sine vector of harmonic k + 1
        pose: Transform mapping the normalized curve back onto the input curve
        is_open: Built from an open arc traced forward and back
        alternates: The other canonical forms (half-turn phase shift and/or
            reversed traversal), each with its own pose
    """
    coeffs: np.ndarray
    pose: Similarity
    is_open: bool
    alternates: tuple[tuple[np.ndarray, Similarity], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'coeffs', _frozen(self.coeffs))
        object.__setattr__(self, 'alternates', tuple((_frozen(c), p) for c, p in self.alternates))

    @property
    def harmonic(self) -> int:
        return self.coeffs.shape[0]

    @property
    def dim(self) -> int:
        return self.coeffs.shape[2]

    @property
    def vector(self) -> np.ndarray:
        """Flattened fixed-length coefficient vector."""
        return self.coeffs.reshape(-1)

    def forms(self) -> tuple[tuple[np.ndarray, Similarity], ...]:
        """Primary canonical form first, then the alternates."""
        return ((self.coeffs, self.pose),) + self.alternates


@dataclass(frozen=True)
class WindowMatch:
    """Best sub-arc of a reference curve found by ``match_partial``."""
    distance: float
    start: int
    span: int
    descriptor: Descriptor | None
    evaluations: int

    def window(self, reference: Curve) -> Curve:
        """Points of the matched window."""
        idx = (self.start + np.arange(self.span)) % len(reference)
        return reference[idx]


# =============================================================================
# Harmonic expansion
# =============================================================================


def _polygon(points: Curve) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Segments of the closed polygon through ``points`` with zero-length ones removed."""
    closed = np.vstack([points, points[:1]])
    diffs = np.diff(closed, axis=0)
    lengths = np.linalg.norm(diffs, axis=1)
    total = lengths.sum()
    keep = lengths > SEGMENT_TOL * max(total, 1.0)
    if keep.sum() < 2 or total <= 0.0:
        raise DegenerateCurve('curve has fewer than two non-degenerate segments')
    return closed[:-1][keep], closed[1:][keep], diffs[keep], lengths[keep]


def harmonic_coefficients(points: Curve, harmonic: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Kuhl-Giardina coefficients of the closed polygon through ``points``.

    The polygon is parameterized by chord length; a straight closing segment
    from the last point to the first is implied.

    Returns:
        (cos_coeffs, sin_coeffs, centre): two (harmonic, dim) arrays and the
        arc-length centroid (the DC term)
    """
    starts, ends, diffs, dt = _polygon(points)
    t = np.concatenate(([0.0], np.cumsum(dt)))
    period = t[-1]
    k = np.arange(1, harmonic + 1, dtype=np.float64)[:, None]
    phi = TAU * k * t[None, :] / period
    cos_phi, sin_phi = np.cos(phi), np.sin(phi)
    slope = diffs / dt[:, None]
    const = period / (2.0 * np.pi * np.pi * k * k)
    cos_coeffs = const * (np.diff(cos_phi, axis=1) @ slope)
    sin_coeffs = const * (np.diff(sin_phi, axis=1) @ slope)
    centre = (dt[:, None] * (starts + ends)).sum(axis=0) / (2.0 * period)
    return cos_coeffs, sin_coeffs, centre


def select_harmonic(points: Curve, threshold: float = POWER_THRESHOLD) -> int:
    """
    Smallest harmonic count keeping ``threshold`` of the cumulative Fourier power.

    Bounded by the Nyquist limit of the sample count.
    """
    nyquist = max(MIN_HARMONIC, min(MAX_AUTO_HARMONIC, len(points) // 2))
    cos_c, sin_c, _ = harmonic_coefficients(points, nyquist)
    power = (cos_c ** 2).sum(axis=1) + (sin_c ** 2).sum(axis=1)
    cumulative = np.cumsum(power)
    if cumulative[-1] <= 0.0:
        raise DegenerateCurve('curve has no shape information')
    harmonic = int(np.searchsorted(cumulative / cumulative[-1], threshold) + 1)
    return int(np.clip(harmonic, MIN_HARMONIC, nyquist))


def _shift_phase(cos_c: np.ndarray, sin_c: np.ndarray, theta: float) -> tuple[np.ndarray, np.ndarray]:
    k = np.arange(1, len(cos_c) + 1, dtype=np.float64)[:, None]
    c, s = np.cos(k * theta), np.sin(k * theta)
    return cos_c * c + sin_c * s, -cos_c * s + sin_c * c


def _frame(cos_c: np.ndarray, sin_c: np.ndarray) -> np.ndarray:
    """Rows are the orthonormal axes of the normalized frame."""
    u = cos_c[0]
    e1 = u / np.linalg.norm(u)
    if len(u) == 2:
        return np.array([e1, [-e1[1], e1[0]]])
    # 3D: second axis from the minor axis, or the next harmonic that leaves the line
    scale = np.linalg.norm(u)
    candidates = [sin_c[0]] + [vec for pair in zip(cos_c[1:], sin_c[1:]) for vec in pair]
    e2 = None
    for w in candidates:
        ortho = w - np.dot(w, e1) * e1
        norm = np.linalg.norm(ortho)
        if norm > 1e-9 * scale:
            e2 = ortho / norm
            break
    if e2 is None:
        # Straight line: any perpendicular direction will do
        helper = np.array([1.0, 0.0, 0.0]) if abs(e1[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        e2 = helper - np.dot(helper, e1) * e1
        e2 /= np.linalg.norm(e2)
    return np.array([e1, e2, np.cross(e1, e2)])


def _canonical(
    cos_c: np.ndarray,
    sin_c: np.ndarray,
    centre: np.ndarray,
    extra_phase: float,
) -> tuple[np.ndarray, Similarity]:
    a1, b1 = cos_c[0], sin_c[0]
    theta = 0.5 * np.arctan2(2.0 * np.dot(a1, b1), np.dot(a1, a1) - np.dot(b1, b1)) + extra_phase
    cos_c, sin_c = _shift_phase(cos_c, sin_c, theta)
    scale = float(np.linalg.norm(cos_c[0]))
    if scale <= 0.0 or not np.isfinite(scale):
        raise DegenerateCurve('first harmonic vanishes; curve has no size')
    frame = _frame(cos_c, sin_c)
    coeffs = np.stack([cos_c @ frame.T, sin_c @ frame.T], axis=1) / scale
    return coeffs, Similarity(frame.T, scale, centre)


def normalize(
    curve: Curve,
    mode: CurveMode = CurveMode.CLOSED,
    harmonic: int | None = None,
) -> Descriptor:
    """
    Descriptor of a curve with pose, scale, translation and start phase removed.

    Non-finite samples are dropped first (the longest finite run is kept). The
    curve is then made periodic for its mode: CLOSED curves get a closing
    segment, OPEN and PARTIAL arcs are traced forward and back. For PARTIAL
    targets the window search against a reference curve is ``match_partial``.

    Args:
        curve: (n, 2) or (n, 3) points
        mode: Curve mode of ``curve``
        harmonic: Number of harmonics; chosen from the Fourier power when None

    Returns:
        Descriptor

    Raises:
        DegenerateCurve: too few distinct points, or zero extent

    Example:
        >>> t = np.linspace(0, 2 * np.pi, 64, endpoint=False)
        >>> ellipse = np.column_stack([3 * np.cos(t), np.sin(t)])
        >>> d = normalize(ellipse, CurveMode.CLOSED, harmonic=8)
        >>> d.coeffs.shape
        (8, 2, 2)
    """
    mode = CurveMode(mode)
    points = valid_part(as_curve(curve))
    if len(points) < 3:
        raise DegenerateCurve(f'need at least 3 finite points, got {len(points)}')
    points = regularize(points, mode)
    if harmonic is None:
        harmonic = select_harmonic(points)
    if harmonic < 1:
        raise ValueError(f'harmonic must be positive, got {harmonic}')
    cos_c, sin_c, centre = harmonic_coefficients(points, harmonic)
    coeffs, pose = _canonical(cos_c, sin_c, centre, 0.0)
    # Reversed traversal flips the sign of the sine terms
    alternates = (
        _canonical(cos_c, sin_c, centre, np.pi),
        _canonical(cos_c, -sin_c, centre, 0.0),
        _canonical(cos_c, -sin_c, centre, np.pi),
    )
    return Descriptor(coeffs, pose, mode.is_target_open, alternates)


# =============================================================================
# Distance / alignment
# =============================================================================


def _pad(coeffs: np.ndarray, harmonic: int) -> np.ndarray:
    if coeffs.shape[0] >= harmonic:
        return coeffs
    pad = np.zeros((harmonic - coeffs.shape[0],) + coeffs.shape[1:])
    return np.concatenate([coeffs, pad], axis=0)


def harmonic_weights(weights, harmonic: int) -> np.ndarray:
    """Per-harmonic weights as a (harmonic,) array; uniform when None."""
    if weights is None:
        return np.ones(harmonic)
    w = np.asarray(weights, dtype=np.float64)
    if w.ndim != 1 or len(w) < harmonic:
        raise ValueError(f'need {harmonic} per-harmonic weights, got shape {w.shape}')
    return w[:harmonic]


def coefficient_distance(a: np.ndarray, b: np.ndarray, weights=None) -> float:
    """Weighted L2 distance between two (harmonic, 2, dim) arrays (zero padded)."""
    harmonic = max(a.shape[0], b.shape[0])
    diff = _pad(a, harmonic) - _pad(b, harmonic)
    w = harmonic_weights(weights, harmonic)
    return float(np.sqrt(np.sum(w * np.sum(diff * diff, axis=(1, 2)))))


def align(a: Descriptor, b: Descriptor, weights=None) -> tuple[float, Similarity]:
    """
    Distance between ``a`` and ``b`` and the transform carrying curve ``a`` onto curve ``b``.

    The primary form of ``a`` is compared with every canonical form of ``b``;
    the forms are sign flips of one another, so this covers every pairing.
    The best one decides both the distance and the transform.
    """
    if a.dim != b.dim:
        raise ValueError(f'cannot compare {a.dim}D and {b.dim}D descriptors')
    back = a.pose.inverse()
    best: tuple[float, Similarity] | None = None
    for coeffs_b, pose_b in b.forms():
        dist = coefficient_distance(a.coeffs, coeffs_b, weights)
        if best is None or dist < best[0]:
            best = (dist, back.then(pose_b))
    return best


def distance(a: Descriptor, b: Descriptor, weights=None) -> float:
    """
    Weighted L2 distance between two descriptors.

    Symmetric, zero for curves related by a similarity transform and a phase
    shift. ``weights`` scales the squared error of each harmonic.
    """
    return align(a, b, weights)[0]


# =============================================================================
# Reconstruction
# =============================================================================


def reconstruct(descriptor: Descriptor, n_samples: int, denormalize: bool = False) -> Curve:
    """
    Sample the Fourier series of a descriptor.

    Closed descriptors are sampled over a full period; open ones over the
    forward half of their forward-and-back trace.

    Args:
        descriptor: Descriptor to render
        n_samples: Number of output points
        denormalize: Put the removed pose back (original position/size)

    Returns:
        (n_samples, dim) array
    """
    if n_samples < 2:
        raise ValueError(f'n_samples must be at least 2, got {n_samples}')
    if descriptor.is_open:
        t = np.linspace(0.0, np.pi, n_samples)
    else:
        t = np.linspace(0.0, TAU, n_samples, endpoint=False)
    k = np.arange(1, descriptor.harmonic + 1, dtype=np.float64)
    kt = np.outer(t, k)
    points = np.cos(kt) @ descriptor.coeffs[:, 0, :] + np.sin(kt) @ descriptor.coeffs[:, 1, :]
    if denormalize:
        return descriptor.pose.apply(points)
    return points


# =============================================================================
# Partial window search
# =============================================================================


def match_partial(
    target: Descriptor,
    reference: Curve,
    resolution: int = 16,
    refine_steps: int = 4,
    min_span: float = MIN_ANGLE,
    weights=None,
) -> WindowMatch:
    """
    Find the sub-arc of a closed reference curve that best matches an open target.

    Windows are index ranges ``(start, span)`` over the reference samples,
    wrapping around its end. A ``resolution x resolution`` grid of starts and
    spans is evaluated first, then ``refine_steps`` rounds search the 3x3
    neighbourhood of the best window with the grid step halved each round.

    Args:
        target: Descriptor of the partial target (open)
        reference: (m, dim) samples of one full cycle
        resolution: Coarse grid size per axis
        refine_steps: Number of halving refinement rounds
        min_span: Smallest window, as an angle of the full cycle
        weights: Per-harmonic distance weights

    Returns:
        WindowMatch; distance is inf when no window yields a usable curve
    """
    reference = as_curve(reference, target.dim)
    m = len(reference)
    if resolution < 2:
        raise ValueError(f'resolution must be at least 2, got {resolution}')
    min_len = min(m, max(3, int(np.ceil(m * min_span / TAU))))
    cache: dict[tuple[int, int], tuple[float, Descriptor | None]] = {}

    def evaluate(start: int, span: int) -> float:
        key = (start % m, span)
        if key not in cache:
            window = reference[(key[0] + np.arange(span)) % m]
            try:
                desc = normalize(window, CurveMode.OPEN, harmonic=target.harmonic)
                cache[key] = (distance(desc, target, weights), desc)
            except DegenerateCurve:
                cache[key] = (np.inf, None)
        return cache[key][0]

    starts = np.unique(np.round(np.linspace(0, m, resolution, endpoint=False)).astype(int))
    spans = np.unique(np.round(np.linspace(min_len, m, resolution)).astype(int))
    best = min(((evaluate(s, L), s % m, L) for s in starts for L in spans), key=lambda x: x[0])

    step_start = m / resolution
    step_span = (m - min_len) / max(resolution - 1, 1)
    for _ in range(refine_steps):
        step_start /= 2.0
        step_span /= 2.0
        ds, dl = max(1, round(step_start)), max(1, round(step_span))
        _, s0, l0 = best
        for s in (s0 - ds, s0, s0 + ds):
            for L in (l0 - dl, l0, l0 + dl):
                if min_len <= L <= m:
                    dist = evaluate(s, L)
                    if dist < best[0]:
                        best = (dist, s % m, L)
        if ds == 1 and dl == 1 and step_start < 1.0 and step_span < 1.0:
            break

    dist, start, span = best
    return WindowMatch(float(dist), int(start), int(span), cache[(start, span)][1], len(cache))
