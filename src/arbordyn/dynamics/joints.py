"""
Joint descriptions.

A joint is a list of spatial motion axes ``[angular, linear]``. Each axis must
be a pure rotation or a pure translation. Joints with more than one axis are
expanded by :class:`~arbordyn.dynamics.model.Model` into a chain of massless
virtual bodies, so every movable body in a model has exactly one degree of
freedom.
"""
from __future__ import annotations

from enum import Enum, auto

import numpy as np
from numpy.typing import NDArray

AXIS_EPSILON = 1e-12
MAX_JOINT_AXES = 6


class JointType(Enum):
    """Kinds of single degree-of-freedom joint axes."""

    REVOLUTE = auto()
    PRISMATIC = auto()
    FIXED = auto()


def classify_axis(axis: NDArray[np.float64]) -> JointType:
    """Return whether a unit motion axis is a rotation or a translation."""
    angular = np.linalg.norm(axis[:3])
    linear = np.linalg.norm(axis[3:])
    if angular > AXIS_EPSILON and linear <= AXIS_EPSILON:
        return JointType.REVOLUTE
    if linear > AXIS_EPSILON and angular <= AXIS_EPSILON:
        return JointType.PRISMATIC
    raise ValueError(
        f"Joint axis must be a pure rotation or a pure translation, got {axis}"
    )


class Joint:
    """
    Joint connecting a body to its parent.

    Parameters
    ----------
    *axes : array-like
        Spatial motion axes (6,) in joint coordinates. No axis means a fixed
        joint.

    Examples
    --------
    >>> Joint.revolute([0, 0, 1])
    >>> Joint([0, 0, 1, 0, 0, 0], [0, 1, 0, 0, 0, 0])  # two rotations, z then y
    """

    def __init__(self, *axes) -> None:
        if len(axes) > MAX_JOINT_AXES:
            raise ValueError(f"A joint has at most {MAX_JOINT_AXES} axes, got {len(axes)}")
        self.axes: list[NDArray[np.float64]] = []
        self.types: list[JointType] = []
        for axis in axes:
            s = np.asarray(axis, dtype=np.float64)
            if s.shape != (6,):
                raise ValueError(f"Joint axis must have shape (6,), got {s.shape}")
            kind = classify_axis(s)
            s = s / np.linalg.norm(s[:3] if kind is JointType.REVOLUTE else s[3:])
            self.axes.append(s)
            self.types.append(kind)
        self.is_spherical = False

    @classmethod
    def revolute(cls, axis) -> Joint:
        return cls(np.concatenate((np.asarray(axis, dtype=np.float64), np.zeros(3))))

    @classmethod
    def prismatic(cls, axis) -> Joint:
        return cls(np.concatenate((np.zeros(3), np.asarray(axis, dtype=np.float64))))

    @classmethod
    def fixed(cls) -> Joint:
        return cls()

    @classmethod
    def spherical(cls) -> Joint:
        """
        Ball joint as three rotations z, y, x about a common point.

        The three joint coordinates are intrinsic ZYX Euler angles. Use
        :meth:`Model.get_quaternion` and :meth:`Model.set_quaternion` to
        read or write the orientation as a quaternion. The parametrization
        is singular at a pitch of +-90°.
        """
        joint = cls([0, 0, 1, 0, 0, 0], [0, 1, 0, 0, 0, 0], [1, 0, 0, 0, 0, 0])
        joint.is_spherical = True
        return joint

    @classmethod
    def floating_base(cls) -> Joint:
        """Six-axis joint: translations x, y, z followed by rotations z, y, x."""
        return cls(
            [0, 0, 0, 1, 0, 0],
            [0, 0, 0, 0, 1, 0],
            [0, 0, 0, 0, 0, 1],
            [0, 0, 1, 0, 0, 0],
            [0, 1, 0, 0, 0, 0],
            [1, 0, 0, 0, 0, 0],
        )

    @property
    def dof_count(self) -> int:
        return len(self.axes)

    @property
    def is_fixed(self) -> bool:
        return not self.axes

    def __repr__(self) -> str:
        if self.is_spherical:
            return "Joint(spherical)"
        kinds = ", ".join(t.name.lower() for t in self.types) or "fixed"
        return f"Joint({kinds})"
