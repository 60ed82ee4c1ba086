"""
Rigid body inertial parameters.

All physical quantities use SI units:
- Mass: kilograms [kg]
- Centre of mass: meters [m], expressed in the body frame
- Inertia: kilogram-meter-squared [kg·m²], about the centre of mass
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from arbordyn.utils.spatial import (
    SpatialTransform,
    spatial_inertia,
    spatial_inertia_parameters,
)
from arbordyn.utils.validation import (
    validate_inertia_tensor,
    validate_non_negative,
    validate_vector3,
)

MIN_MASS = 1e-10  # Below this a body is treated as massless


class Body:
    """
    Inertial description of a rigid body.

    Parameters
    ----------
    mass : float
        Body mass [kg]. Zero is allowed for virtual (massless) bodies.
    com : NDArray[np.float64] | None
        Centre of mass in body coordinates (3,). Defaults to the origin.
    inertia : NDArray[np.float64] | None
        Inertia about the centre of mass, either (3, 3) or its diagonal (3,).
        Defaults to zero.

    Raises
    ------
    ValueError
        If mass is negative or the inertia tensor is not positive semi-definite.
    """

    def __init__(
        self,
        mass: float,
        com: NDArray[np.float64] | None = None,
        inertia: NDArray[np.float64] | None = None,
    ) -> None:
        validate_non_negative(mass, "Mass")
        if 0.0 < mass < MIN_MASS:
            warnings.warn(
                f"Very small mass ({mass} kg) detected. Consider using a larger value.",
                RuntimeWarning, stacklevel=2
            )
        self.mass = float(mass)
        self.com = np.zeros(3) if com is None else validate_vector3(com, "Centre of mass")
        self.inertia = (np.zeros((3, 3)) if inertia is None
                        else validate_inertia_tensor(inertia))

    @classmethod
    def from_spatial_inertia(cls, I: NDArray[np.float64]) -> Body:
        mass, com, inertia = spatial_inertia_parameters(I)
        body = cls.__new__(cls)
        body.mass = mass
        body.com = com
        body.inertia = 0.5 * (inertia + inertia.T)
        return body

    @property
    def is_virtual(self) -> bool:
        """True for massless bodies used to emulate multi-axis joints."""
        return self.mass < MIN_MASS and not np.any(self.inertia)

    def spatial_inertia(self) -> NDArray[np.float64]:
        """6x6 spatial inertia about the body frame origin."""
        return spatial_inertia(self.mass, self.com, self.inertia)

    def join(self, transform: SpatialTransform, other: Body) -> Body:
        """
        Merge ``other`` rigidly into this body.

        ``transform`` maps this body's frame to the frame of ``other``.
        """
        X = transform.to_matrix()
        return Body.from_spatial_inertia(
            self.spatial_inertia() + X.T @ other.spatial_inertia() @ X
        )

    def __repr__(self) -> str:
        return f"Body(mass={self.mass}, com={self.com.tolist()})"


@dataclass
class FixedBody:
    """
    A body rigidly attached to a movable parent.

    Fixed bodies carry no degree of freedom. Their inertia is merged into the
    movable parent; queries on them resolve through ``parent_transform``.
    """

    body: Body
    movable_parent: int
    parent_transform: SpatialTransform  # movable parent frame -> fixed body frame
