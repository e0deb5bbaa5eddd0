"""
variants.py - Mechanism variant tags and parameter vectors.

A four-bar linkage comes in three mutually exclusive forms, identified by a
closed set of tags rather than a class hierarchy:

  - PLANAR: planar four-bar, coupler point path generation
  - PLANAR_MOTION: planar four-bar with a coupler motion line (pose angle e)
  - SPHERICAL: spherical four-bar whose joints live on a sphere

Every variant has a *full* parameter layout and a *normalized* layout that
omits the global similarity degrees of freedom. The optimizer searches the
normalized layout; ``ParameterVector.to_full`` puts the removed transform back.

Link naming follows the loop ``[l1, l2, l3, l4]`` = ground, driver, coupler,
follower. ``l5``/``g`` place the coupler point relative to the coupler link.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from enum import IntEnum

import numpy as np

from fourbar_tools.errors import InvalidParameterVector
from fourbar_tools.geometry import axis_angle
from fourbar_tools.geometry import from_spherical
from fourbar_tools.geometry import shortest_arc
from fourbar_tools.geometry import Similarity
from fourbar_tools.geometry import to_spherical
from fourbar_tools.geometry import X_AXIS
from fourbar_tools.geometry import Z_AXIS

TAU = 2.0 * np.pi


class Variant(str, Enum):
    """Mechanism variant tag."""
    PLANAR = 'planar'
    PLANAR_MOTION = 'planar_motion'
    SPHERICAL = 'spherical'

    @property
    def dim(self) -> int:
        """Dimensionality of the generated curve points."""
        if self is Variant.SPHERICAL:
            return 3
        return 2

    @property
    def is_planar(self) -> bool:
        return self is not Variant.SPHERICAL


class CurveMode(str, Enum):
    """Interpretation of a target curve. Always supplied by the caller."""
    CLOSED = 'closed'
    OPEN = 'open'
    PARTIAL = 'partial'

    @property
    def is_target_open(self) -> bool:
        """Target curve is an open arc (compared with the forward/back trace)."""
        return self is not CurveMode.CLOSED

    @property
    def is_result_open(self) -> bool:
        """Synthesized linkage must generate an open curve."""
        return self is CurveMode.OPEN


class Stat(IntEnum):
    """Assembly state: circuit 1/2, branch 1/2."""
    C1B1 = 1
    C1B2 = 2
    C2B1 = 3
    C2B2 = 4

    @property
    def is_c1(self) -> bool:
        return self in (Stat.C1B1, Stat.C1B2)

    @property
    def is_b1(self) -> bool:
        return self in (Stat.C1B1, Stat.C2B1)


# =============================================================================
# Layouts
# =============================================================================

NORMALIZED_NAMES: dict[Variant, tuple[str, ...]] = {
    Variant.PLANAR: ('l1', 'l3', 'l4', 'l5', 'g'),
    Variant.PLANAR_MOTION: ('l1', 'l3', 'l4', 'l5', 'g', 'e'),
    Variant.SPHERICAL: ('l1', 'l2', 'l3', 'l4', 'l5', 'g'),
}

FULL_NAMES: dict[Variant, tuple[str, ...]] = {
    Variant.PLANAR: ('p0x', 'p0y', 'a', 'l1', 'l2', 'l3', 'l4', 'l5', 'g'),
    Variant.PLANAR_MOTION: ('p0x', 'p0y', 'a', 'l1', 'l2', 'l3', 'l4', 'l5', 'g', 'e'),
    Variant.SPHERICAL: ('ox', 'oy', 'oz', 'r', 'p0i', 'p0j', 'a', 'l1', 'l2', 'l3', 'l4', 'l5', 'g'),
}

# Planar length ratios relative to the driver (l2 = 1)
PLANAR_LENGTH_BOUND = (1.0 / 6.0, 6.0)
# Spherical arc lengths (radians on the unit sphere)
SPHERICAL_ARC_BOUND = (1e-4, np.pi)
ANGLE_BOUND = (0.0, TAU)

NORMALIZED_BOUNDS: dict[Variant, tuple[tuple[float, float], ...]] = {
    Variant.PLANAR: (PLANAR_LENGTH_BOUND,) * 4 + (ANGLE_BOUND,),
    Variant.PLANAR_MOTION: (PLANAR_LENGTH_BOUND,) * 4 + (ANGLE_BOUND, ANGLE_BOUND),
    Variant.SPHERICAL: (SPHERICAL_ARC_BOUND,) * 5 + (ANGLE_BOUND,),
}


def layout(variant: Variant, normalized: bool) -> tuple[str, ...]:
    """Parameter names in order for a variant/form."""
    if normalized:
        return NORMALIZED_NAMES[Variant(variant)]
    return FULL_NAMES[Variant(variant)]


def normalized_bounds(variant: Variant) -> np.ndarray:
    """(n, 2) array of optimizer bounds over the normalized layout."""
    return np.array(NORMALIZED_BOUNDS[Variant(variant)], dtype=np.float64)


# =============================================================================
# Parameter vector
# =============================================================================


@dataclass(frozen=True)
class ParameterVector:
    """
    Ordered mechanism parameters tagged with their variant.

    Attributes:
        variant: Which mechanism the values describe
        values: Float array laid out as ``layout(variant, normalized)``
        normalized: True for the reduced layout (no global similarity DOF)
        stat: Assembly state (circuit/branch) used by the kinematics

    Example:
        >>> pv = ParameterVector(Variant.PLANAR, [0, 0, 0, 3, 5, 4, 6, 2.2, 0.46])
        >>> pv['l3']
        4.0
    """
    variant: Variant
    values: np.ndarray
    normalized: bool = False
    stat: Stat = Stat.C1B1

    def __post_init__(self):
        try:
            variant = Variant(self.variant)
        except ValueError as e:
            raise InvalidParameterVector(f'unknown variant {self.variant!r}') from e
        try:
            values = np.array(self.values, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidParameterVector(f'parameter values are not numeric: {e}') from e
        expected = len(layout(variant, self.normalized))
        if values.ndim != 1 or len(values) != expected:
            form = 'normalized' if self.normalized else 'full'
            raise InvalidParameterVector(
                f'{variant.value} ({form}) expects {expected} values, got shape {values.shape}',
            )
        values.flags.writeable = False
        object.__setattr__(self, 'variant', variant)
        object.__setattr__(self, 'values', values)
        object.__setattr__(self, 'stat', Stat(self.stat))

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, name: str) -> float:
        if name == 'l2' and self.normalized and self.variant.is_planar:
            return 1.0
        try:
            return float(self.values[self.names.index(name)])
        except ValueError as e:
            raise KeyError(name) from e

    @property
    def names(self) -> tuple[str, ...]:
        return layout(self.variant, self.normalized)

    @property
    def planar_loop(self) -> tuple[float, float, float, float]:
        """Link lengths ``(l1, l2, l3, l4)`` (arc lengths for spherical)."""
        return (self['l1'], self['l2'], self['l3'], self['l4'])

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.values.tolist()))

    def with_stat(self, stat: Stat) -> ParameterVector:
        return ParameterVector(self.variant, self.values, self.normalized, stat)

    @classmethod
    def from_dict(
        cls,
        variant: Variant,
        values: dict[str, float],
        normalized: bool = False,
        stat: Stat = Stat.C1B1,
    ) -> ParameterVector:
        """Build from a ``{name: value}`` mapping; missing names raise."""
        names = layout(variant, normalized)
        missing = [n for n in names if n not in values]
        if missing:
            raise InvalidParameterVector(f'missing parameters for {Variant(variant).value}: {missing}')
        return cls(variant, [values[n] for n in names], normalized, stat)

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON / file collaborators."""
        return {
            'variant': self.variant.value,
            'normalized': self.normalized,
            'stat': self.stat.name,
            'values': self.as_dict(),
        }

    # -------------------------------------------------------------------------
    # Normalization
    # -------------------------------------------------------------------------

    def to_full(self, transform: Similarity | None = None) -> ParameterVector:
        """
        Full-layout vector, optionally moved by a similarity transform.

        A normalized vector is first embedded at the canonical pose (planar:
        ground pivot at the origin, ground link along +x, driver length 1;
        spherical: unit sphere at the origin, ground pivot at the north pole).
        """
        if self.normalized:
            full = self._embed()
        else:
            full = self
        if transform is None:
            return full
        return full._transformed(transform)

    def to_normalized(self) -> tuple[ParameterVector, Similarity]:
        """
        Split into ``(normalized vector, transform)``.

        ``normalized.to_full(transform)`` reproduces this vector.
        """
        if self.normalized:
            return self, Similarity.identity(self.variant.dim)
        v = self.as_dict()
        if self.variant.is_planar:
            scale = v['l2']
            if scale <= 0:
                raise InvalidParameterVector(f'driver length must be positive, got {scale}')
            values = [v['l1'] / scale, v['l3'] / scale, v['l4'] / scale, v['l5'] / scale, v['g']]
            if self.variant is Variant.PLANAR_MOTION:
                values.append(v['e'])
            transform = Similarity.planar(v['a'], scale, (v['p0x'], v['p0y']))
        else:
            if v['r'] <= 0:
                raise InvalidParameterVector(f'sphere radius must be positive, got {v["r"]}')
            values = [v['l1'], v['l2'], v['l3'], v['l4'], v['l5'], v['g']]
            rotation = sphere_orientation(v['p0i'], v['p0j'], v['a'])
            transform = Similarity(rotation, v['r'], (v['ox'], v['oy'], v['oz']))
        return ParameterVector(self.variant, values, True, self.stat), transform

    def _embed(self) -> ParameterVector:
        v = self.as_dict()
        if self.variant.is_planar:
            values = [0.0, 0.0, 0.0, v['l1'], 1.0, v['l3'], v['l4'], v['l5'], v['g']]
            if self.variant is Variant.PLANAR_MOTION:
                values.append(v['e'])
        else:
            values = [0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, v['l1'], v['l2'], v['l3'], v['l4'], v['l5'], v['g']]
        return ParameterVector(self.variant, values, False, self.stat)

    def _transformed(self, transform: Similarity) -> ParameterVector:
        if transform.dim != self.variant.dim:
            raise ValueError(f'{transform.dim}D transform cannot move a {self.variant.value} linkage')
        v = self.as_dict()
        s = transform.scale
        if self.variant.is_planar:
            p0 = transform.apply(np.array([v['p0x'], v['p0y']]))
            v['p0x'], v['p0y'] = float(p0[0]), float(p0[1])
            v['a'] = float(np.mod(v['a'] + transform.angle, TAU))
            for name in ('l1', 'l2', 'l3', 'l4', 'l5'):
                v[name] *= s
        else:
            centre = transform.apply(np.array([v['ox'], v['oy'], v['oz']]))
            v['ox'], v['oy'], v['oz'] = (float(c) for c in centre)
            v['r'] *= s
            rotation = transform.rotation @ sphere_orientation(v['p0i'], v['p0j'], v['a'])
            v['p0i'], v['p0j'], v['a'] = decompose_sphere_orientation(rotation)
        return ParameterVector.from_dict(self.variant, v, False, self.stat)


def sphere_orientation(p0i: float, p0j: float, a: float) -> np.ndarray:
    """Rotation taking the canonical sphere frame to the one with ground pivot at (p0i, p0j), turned by a."""
    axis = from_spherical(p0i, p0j)
    return axis_angle(axis, a) @ shortest_arc(Z_AXIS, axis)


def decompose_sphere_orientation(rotation: np.ndarray) -> tuple[float, float, float]:
    """Inverse of ``sphere_orientation``: recover ``(p0i, p0j, a)``."""
    axis = rotation @ Z_AXIS
    p0i, p0j = to_spherical(axis)
    reference = shortest_arc(Z_AXIS, from_spherical(p0i, p0j)) @ X_AXIS
    turned = rotation @ X_AXIS
    a = np.arctan2(np.dot(axis, np.cross(reference, turned)), np.dot(reference, turned))
    return p0i, p0j, float(np.mod(a, TAU))
