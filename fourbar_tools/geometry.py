"""
geometry.py - Similarity transforms and rotation helpers.

The shape descriptor strips a similarity transform (rotation, uniform scale,
translation) from every curve; synthesis re-applies the transform that maps a
normalized linkage onto the target. Both directions go through ``Similarity``.

Key items:
  - Similarity: rotation matrix + scale + translation, 2D or 3D
  - rotation_2d / axis_angle / shortest_arc: rotation matrix constructors
  - to_spherical / from_spherical: polar/azimuth <-> unit vector
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation

X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])


def rotation_2d(angle: float) -> np.ndarray:
    """Counter-clockwise rotation matrix for a planar angle (radians)."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s], [s, c]])


def axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation matrix of ``angle`` radians about ``axis`` (need not be unit length)."""
    axis = np.asarray(axis, dtype=np.float64)
    norm = np.linalg.norm(axis)
    if norm == 0.0:
        return np.eye(3)
    return Rotation.from_rotvec(axis / norm * angle).as_matrix()


def shortest_arc(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """
    Smallest rotation taking direction ``src`` onto direction ``dst``.

    Antiparallel directions rotate half a turn about an axis perpendicular to
    ``src``.
    """
    u = np.asarray(src, dtype=np.float64)
    v = np.asarray(dst, dtype=np.float64)
    u = u / np.linalg.norm(u)
    v = v / np.linalg.norm(v)
    axis = np.cross(u, v)
    sin_t = np.linalg.norm(axis)
    cos_t = float(np.dot(u, v))
    if sin_t < 1e-12:
        if cos_t > 0.0:
            return np.eye(3)
        # Any perpendicular axis works for a half turn
        perp = np.cross(u, X_AXIS)
        if np.linalg.norm(perp) < 1e-12:
            perp = np.cross(u, Y_AXIS)
        return axis_angle(perp, np.pi)
    return Rotation.from_rotvec(axis / sin_t * np.arctan2(sin_t, cos_t)).as_matrix()


def to_spherical(vector: np.ndarray) -> tuple[float, float]:
    """Return ``(polar, azimuth)`` of a 3D vector, ignoring its length."""
    x, y, z = vector
    return float(np.arctan2(np.hypot(x, y), z)), float(np.arctan2(y, x))


def from_spherical(polar: float, azimuth: float, radius: float = 1.0) -> np.ndarray:
    """Cartesian point from polar angle, azimuth and radius."""
    return radius * np.array([
        np.sin(polar) * np.cos(azimuth),
        np.sin(polar) * np.sin(azimuth),
        np.cos(polar),
    ])


@dataclass(frozen=True)
class Similarity:
    """
    Similarity transform ``p' = scale * rotation @ p + translation``.

    Attributes:
        rotation: (dim, dim) proper rotation matrix
        scale: Uniform scale factor (> 0)
        translation: (dim,) offset applied after rotation and scaling
    """
    rotation: np.ndarray
    scale: float
    translation: np.ndarray

    def __post_init__(self):
        rotation = np.array(self.rotation, dtype=np.float64)
        translation = np.array(self.translation, dtype=np.float64)
        if rotation.shape != (len(translation), len(translation)):
            raise ValueError(f'rotation shape {rotation.shape} does not match translation of length {len(translation)}')
        rotation.flags.writeable = False
        translation.flags.writeable = False
        object.__setattr__(self, 'rotation', rotation)
        object.__setattr__(self, 'translation', translation)
        object.__setattr__(self, 'scale', float(self.scale))

    @classmethod
    def identity(cls, dim: int) -> Similarity:
        return cls(np.eye(dim), 1.0, np.zeros(dim))

    @classmethod
    def planar(cls, angle: float = 0.0, scale: float = 1.0, translation=(0.0, 0.0)) -> Similarity:
        """Build a 2D transform from a rotation angle."""
        return cls(rotation_2d(angle), scale, np.asarray(translation, dtype=np.float64))

    @property
    def dim(self) -> int:
        return len(self.translation)

    @property
    def angle(self) -> float:
        """Rotation angle of a 2D transform."""
        if self.dim != 2:
            raise ValueError('angle is only defined for planar transforms')
        return float(np.arctan2(self.rotation[1, 0], self.rotation[0, 0]))

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform an (n, dim) array of points (or a single point)."""
        points = np.asarray(points, dtype=np.float64)
        return self.scale * points @ self.rotation.T + self.translation

    def inverse(self) -> Similarity:
        rot_t = self.rotation.T
        return Similarity(rot_t, 1.0 / self.scale, -(rot_t @ self.translation) / self.scale)

    def then(self, other: Similarity) -> Similarity:
        """Composition: apply ``self`` first, then ``other``."""
        return Similarity(
            other.rotation @ self.rotation,
            other.scale * self.scale,
            other.scale * (other.rotation @ self.translation) + other.translation,
        )

    def to_dict(self) -> dict:
        return {
            'rotation': self.rotation.tolist(),
            'scale': self.scale,
            'translation': self.translation.tolist(),
        }
