"""
linkage_states.py - Grashof classification and input angle bounds.

Everything here works on the planar loop ``[l1, l2, l3, l4]`` (ground,
driver, coupler, follower). Spherical linkages are first reduced to an
equivalent planar loop with ``spherical_planar_loop``.

Key items:
  - AngleBound: the range the driver can sweep, and whether it is a full turn
  - FourBarType: Grashof / non-Grashof type name
  - spherical_planar_loop: arc lengths -> equivalent planar loop
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from fourbar_tools.variants import ParameterVector
from fourbar_tools.variants import Stat
from fourbar_tools.variants import TAU


class BoundKind(str, Enum):
    CLOSED = 'closed'
    OPEN_C1B2 = 'open_c1b2'
    OPEN_C2B2 = 'open_c2b2'
    INVALID = 'invalid'


@dataclass(frozen=True)
class AngleBound:
    """
    Driver angle range of a linkage.

    CLOSED linkages turn the driver a full revolution. OPEN_C1B2 linkages
    rock inside one interval whose two assembly branches meet at the limits.
    OPEN_C2B2 linkages have two disjoint intervals (circuits), each with two
    branches. INVALID loops cannot be assembled at all.
    """
    kind: BoundKind
    interval: tuple[float, float] | None = None

    @classmethod
    def from_planar_loop(cls, planar_loop, stat: Stat = Stat.C1B1) -> AngleBound:
        l1, l2, l3, l4 = (float(x) for x in planar_loop)
        ordered = sorted((l1, l2, l3, l4))
        if not all(np.isfinite(ordered)) or ordered[0] <= 0.0 or ordered[3] > sum(ordered[:3]):
            return cls(BoundKind.INVALID)
        sum_short = l1 + l2 <= l3 + l4
        diff_long = abs(l1 - l2) >= abs(l3 - l4)
        denominator = 2.0 * l1 * l2
        if sum_short and diff_long:
            return cls(BoundKind.CLOSED)
        if sum_short:
            d = _clipped_cos((l1 * l1 + l2 * l2 - (l3 - l4) ** 2) / denominator)
            return cls(BoundKind.OPEN_C1B2, (np.arccos(d), TAU - np.arccos(d)))
        if diff_long:
            d = _clipped_cos((l1 * l1 + l2 * l2 - (l3 + l4) ** 2) / denominator)
            return cls(BoundKind.OPEN_C1B2, (-np.arccos(d), np.arccos(d)))
        d1 = _clipped_cos((l1 * l1 + l2 * l2 - (l3 - l4) ** 2) / denominator)
        d2 = _clipped_cos((l1 * l1 + l2 * l2 - (l3 + l4) ** 2) / denominator)
        if stat.is_c1:
            return cls(BoundKind.OPEN_C2B2, (np.arccos(d1), np.arccos(d2)))
        return cls(BoundKind.OPEN_C2B2, (TAU - np.arccos(d2), TAU - np.arccos(d1)))

    @classmethod
    def of(cls, params: ParameterVector) -> AngleBound:
        """Angle bound of a parameter vector (either layout, any variant)."""
        loop = params.planar_loop
        if not params.variant.is_planar:
            loop = spherical_planar_loop(loop)
        return cls.from_planar_loop(loop, params.stat)

    @property
    def is_valid(self) -> bool:
        return self.kind is not BoundKind.INVALID

    @property
    def is_open(self) -> bool:
        return self.kind in (BoundKind.OPEN_C1B2, BoundKind.OPEN_C2B2)

    def check_mode(self, is_open: bool) -> AngleBound:
        """Return self when valid and matching the requested openness, else INVALID."""
        if self.is_valid and self.is_open == is_open:
            return self
        return AngleBound(BoundKind.INVALID)

    def to_value(self) -> tuple[float, float] | None:
        """Driver sweep ``(start, end)``; None when invalid."""
        if self.kind is BoundKind.CLOSED:
            return (0.0, TAU)
        if self.kind is BoundKind.INVALID:
            return None
        return self.interval

    def states(self) -> list[Stat]:
        """Distinct assembly states worth sampling for this bound."""
        if self.kind is BoundKind.CLOSED:
            return [Stat.C1B1, Stat.C2B1]
        if self.kind is BoundKind.OPEN_C1B2:
            return [Stat.C1B1, Stat.C1B2]
        if self.kind is BoundKind.OPEN_C2B2:
            return [Stat.C1B1, Stat.C1B2, Stat.C2B1, Stat.C2B2]
        return [Stat.C1B1]

    def is_inverted(self, stat: Stat) -> bool:
        """Whether ``stat`` selects the second circle-intersection solution."""
        if self.is_open:
            return not stat.is_b1
        return not stat.is_c1


def _clipped_cos(value: float) -> float:
    return float(np.clip(value, -1.0, 1.0))


class FourBarType(str, Enum):
    """Grashof classification of a planar loop."""
    GCCC = 'Grashof double crank (drag-link)'
    GCRR = 'Grashof crank rocker'
    GRCR = 'Grashof double rocker'
    GRRC = 'Grashof rocker crank'
    RRR1 = 'Non-Grashof triple rocker (ground longest)'
    RRR2 = 'Non-Grashof triple rocker (driver longest)'
    RRR3 = 'Non-Grashof triple rocker (coupler longest)'
    RRR4 = 'Non-Grashof triple rocker (follower longest)'
    INVALID = 'Invalid'

    @classmethod
    def from_loop(cls, planar_loop) -> FourBarType:
        loop = [float(x) for x in planar_loop]
        s, p, q, l = sorted(loop)
        if not all(np.isfinite(loop)) or l > s + p + q:
            return cls.INVALID
        if s + l < p + q:
            return (cls.GCCC, cls.GCRR, cls.GRCR, cls.GRRC)[loop.index(s)]
        return (cls.RRR1, cls.RRR2, cls.RRR3, cls.RRR4)[loop.index(l)]

    @property
    def is_valid(self) -> bool:
        return self is not FourBarType.INVALID

    @property
    def is_grashof(self) -> bool:
        return self in (FourBarType.GCCC, FourBarType.GCRR, FourBarType.GRCR, FourBarType.GRRC)

    @property
    def is_closed_curve(self) -> bool:
        """Driver turns fully, so the coupler curve is closed."""
        return self in (FourBarType.GCCC, FourBarType.GCRR)

    @property
    def is_open_curve(self) -> bool:
        return self.is_valid and not self.is_closed_curve


def spherical_planar_loop(arcs) -> tuple[float, float, float, float]:
    """
    Reduce spherical arc lengths to an equivalent planar loop.

    Arcs are wrapped into ``[0, pi]``; arcs longer than a quarter turn are
    replaced by their supplements so that the Grashof inequalities of the
    planar loop describe the spherical mobility.
    """
    ls = [float(np.mod(d, TAU)) for d in arcs]
    ls = [TAU - d if d > np.pi else d for d in ls]
    longer = [i for i, d in enumerate(ls) if d > np.pi / 2]
    shorter = [i for i, d in enumerate(ls) if d <= np.pi / 2]
    if len(longer) == 1:
        longest = longer[0]
        idx = max(shorter, key=lambda i: ls[i])
        changed = np.pi - ls[idx]
        if changed < ls[longest]:
            ls[idx] = changed
            ls[longest] = np.pi - ls[longest]
    elif len(longer) == 3 and ls[shorter[0]] != np.pi / 2:
        for i in sorted(longer, key=lambda i: ls[i])[1:]:
            ls[i] = np.pi - ls[i]
    else:
        for i in longer:
            ls[i] = np.pi - ls[i]
    return tuple(ls)


def classify(params: ParameterVector) -> FourBarType:
    """Grashof type of a parameter vector."""
    loop = params.planar_loop
    if not params.variant.is_planar:
        loop = spherical_planar_loop(loop)
    return FourBarType.from_loop(loop)
