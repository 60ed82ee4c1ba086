"""
Spatial (6D) vector algebra.

Conventions follow Featherstone's Plücker notation:

- Motion vectors are ordered ``[angular(3), linear(3)]``.
- Force vectors are ordered ``[moment(3), force(3)]``.
- A :class:`SpatialTransform` ``X = (E, r)`` maps motion vectors from frame A
  to frame B, where ``E`` rotates A coordinates into B coordinates and ``r`` is
  the position of B's origin expressed in A.

All quantities are plain ``numpy`` arrays of dtype float64.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation as ScR

Array = NDArray[np.float64]

AXIS_EPSILON = 1e-12


def skew(v: Array) -> Array:
    """
    Skew-symmetric matrix S(v) s.t. S(v) @ w = v × w.
    v: (3,) -> (3,3)
    """
    vx, vy, vz = v
    return np.array([
        [0.0, -vz,  vy],
        [vz,  0.0, -vx],
        [-vy, vx,  0.0]
    ], dtype=np.float64)


def unskew(S: Array) -> Array:
    """Inverse of :func:`skew` for the antisymmetric part of S."""
    return 0.5 * np.array([
        S[2, 1] - S[1, 2],
        S[0, 2] - S[2, 0],
        S[1, 0] - S[0, 1],
    ], dtype=np.float64)


def crossm(v: Array) -> Array:
    """Spatial motion cross product operator ``v×`` as a 6x6 matrix."""
    wx = skew(v[:3])
    M = np.zeros((6, 6), dtype=np.float64)
    M[:3, :3] = wx
    M[3:, :3] = skew(v[3:])
    M[3:, 3:] = wx
    return M


def crossf(v: Array) -> Array:
    """Spatial force cross product operator ``v×*`` (= -crossm(v)^T)."""
    wx = skew(v[:3])
    M = np.zeros((6, 6), dtype=np.float64)
    M[:3, :3] = wx
    M[:3, 3:] = skew(v[3:])
    M[3:, 3:] = wx
    return M


def spatial_inertia(mass: float, com: Array, inertia_com: Array) -> Array:
    """
    Build the 6x6 spatial inertia of a rigid body about its frame origin.

    Parameters
    ----------
    mass : float
        Body mass [kg]
    com : Array
        Centre of mass in body coordinates (3,) [m]
    inertia_com : Array
        Rotational inertia about the centre of mass (3, 3) [kg·m²]

    Returns
    -------
    Array
        ``[[Ic + m c× c×^T, m c×], [m c×^T, m 1]]`` (6, 6)
    """
    cx = skew(np.asarray(com, dtype=np.float64))
    I = np.zeros((6, 6), dtype=np.float64)
    I[:3, :3] = inertia_com + mass * cx @ cx.T
    I[:3, 3:] = mass * cx
    I[3:, :3] = mass * cx.T
    I[3:, 3:] = mass * np.eye(3)
    return I


def spatial_inertia_parameters(I: Array) -> tuple[float, Array, Array]:
    """
    Recover ``(mass, com, inertia_com)`` from a spatial inertia matrix.

    A massless inertia yields a zero centre of mass.
    """
    mass = float(I[3, 3])
    if mass <= 0.0:
        return 0.0, np.zeros(3), np.array(I[:3, :3], dtype=np.float64)
    com = unskew(I[:3, 3:]) / mass
    cx = skew(com)
    inertia_com = I[:3, :3] - mass * cx @ cx.T
    return mass, com, inertia_com


class SpatialTransform:
    """
    Compact Plücker transform ``X = (E, r)``.

    The 6x6 motion transform is ``[[E, 0], [-E r×, E]]``. Composition follows
    the matrix product, so ``(X2 * X1).apply(v) == X2.apply(X1.apply(v))``.
    """

    __slots__ = ("E", "r")

    def __init__(self, E: Array | None = None, r: Array | None = None) -> None:
        self.E = np.eye(3) if E is None else np.asarray(E, dtype=np.float64)
        self.r = np.zeros(3) if r is None else np.asarray(r, dtype=np.float64)

    def apply(self, v: Array) -> Array:
        """Transform a motion vector: ``X v``."""
        w = v[:3]
        return np.concatenate((self.E @ w, self.E @ (v[3:] - np.cross(self.r, w))))

    def apply_transpose(self, f: Array) -> Array:
        """Transform a force vector back to the source frame: ``X^T f``."""
        Et_f = self.E.T @ f[3:]
        return np.concatenate((self.E.T @ f[:3] + np.cross(self.r, Et_f), Et_f))

    def apply_adjoint(self, f: Array) -> Array:
        """Transform a force vector to the target frame: ``X^* f = X^-T f``."""
        return np.concatenate((self.E @ (f[:3] - np.cross(self.r, f[3:])), self.E @ f[3:]))

    def to_matrix(self) -> Array:
        X = np.zeros((6, 6), dtype=np.float64)
        X[:3, :3] = self.E
        X[3:, :3] = -self.E @ skew(self.r)
        X[3:, 3:] = self.E
        return X

    def to_matrix_adjoint(self) -> Array:
        X = np.zeros((6, 6), dtype=np.float64)
        X[:3, :3] = self.E
        X[:3, 3:] = -self.E @ skew(self.r)
        X[3:, 3:] = self.E
        return X

    def inverse(self) -> SpatialTransform:
        return SpatialTransform(self.E.T, -self.E @ self.r)

    def __mul__(self, other: SpatialTransform) -> SpatialTransform:
        return SpatialTransform(self.E @ other.E, other.r + other.E.T @ self.r)

    def __repr__(self) -> str:
        return f"SpatialTransform(E={self.E.tolist()}, r={self.r.tolist()})"


def xrot(angle: float, axis: Array) -> SpatialTransform:
    """
    Coordinate transform into a frame rotated by ``angle`` about ``axis``.

    ``E`` is the transpose of the active rotation matrix, so a rotation of
    +90° about z maps the parent x-axis onto the child's -y axis.
    """
    axis = np.asarray(axis, dtype=np.float64)
    n = np.linalg.norm(axis)
    if n < AXIS_EPSILON:
        raise ValueError("Rotation axis must be non-zero")
    R = ScR.from_rotvec(axis / n * angle).as_matrix()
    return SpatialTransform(R.T, np.zeros(3))


def xrotx(angle: float) -> SpatialTransform:
    return xrot(angle, np.array([1.0, 0.0, 0.0]))


def xroty(angle: float) -> SpatialTransform:
    return xrot(angle, np.array([0.0, 1.0, 0.0]))


def xrotz(angle: float) -> SpatialTransform:
    return xrot(angle, np.array([0.0, 0.0, 1.0]))


def xtrans(r: Array) -> SpatialTransform:
    """Pure translation to a frame whose origin is at ``r``."""
    return SpatialTransform(np.eye(3), np.asarray(r, dtype=np.float64).copy())
