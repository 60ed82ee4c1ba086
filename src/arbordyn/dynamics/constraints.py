"""
Point contact constraint sets.

A :class:`ConstraintSet` collects scalar constraints on the acceleration (or
velocity) of body points along world-frame directions, and owns every scratch
buffer the contact solvers in :mod:`arbordyn.core.contacts` need.

Lifecycle::

    cs = ConstraintSet()
    cs.add_constraint(body_id, point, normal)   # only while unbound
    cs.bind(model)                              # allocate buffers, once
    forward_dynamics_contacts(model, q, qdot, tau, cs, qddot)
    cs.clear()                                  # reuse for the next step
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from arbordyn.exceptions import ContractViolationError
from arbordyn.utils.linalg import DEFAULT_PIVOT_TOLERANCE, LinearSolver
from arbordyn.utils.validation import (
    validate_direction,
    validate_positive,
    validate_vector3,
)

if TYPE_CHECKING:
    from arbordyn.dynamics.model import Model

logger = logging.getLogger(__name__)

Array = NDArray[np.float64]


class ConstraintSet:
    """
    Ordered set of point contact constraints and their solve-time buffers.

    Parameters
    ----------
    linear_solver : LinearSolver
        Default dense strategy used by the contact solvers. Each solver call
        may override it.
    pivot_tolerance : float
        Relative pivot threshold below which a system counts as singular.
        The default ``1e-10`` is far above the machine-precision rank
        threshold (about ``n * eps``) of a rank-revealing factorization, so
        regular but badly scaled systems, e.g. bodies whose masses differ by
        ten orders of magnitude, are rejected. Lower it for such models.

    Attributes
    ----------
    body : list[int]
        Body id of each constraint
    point : list[Array]
        Contact point of each constraint in body coordinates (3,)
    normal : list[Array]
        Unit constraint direction of each constraint in base coordinates (3,)
    name : list[str | None]
        Optional labels
    acceleration : Array
        Target normal acceleration of each contact point
    force : Array
        Solved constraint forces (positive = pushing along the normal)
    impulse : Array
        Solved constraint impulses
    v_plus : Array
        Target post-impact normal velocity of each contact point
    bound : bool
        True once :meth:`bind` has allocated the buffers

    Notes
    -----
    Buffers allocated by :meth:`bind` (n = dof_count, m = constraints,
    nb = bodies including the root):

    - Lagrangian: ``H (n,n)``, ``C (n)``, ``G (m,n)``, ``gamma (m)``,
      ``A (n+m,n+m)``, ``b (n+m)``, ``x (n+m)``, ``Gi (3,n)``, ``Y (n,m)``
    - Test forces: ``K (m,m)``, ``a (m)``, ``QDDot_0 (n)``, ``QDDot_t (n)``,
      ``f_t (m,6)``, ``f_ext_constraints (nb,6)``, ``point_accel_0 (m,3)``,
      ``d_pA (nb,6)``, ``d_a (nb,6)``, ``d_u (nb)``
    """

    def __init__(
        self,
        linear_solver: LinearSolver = LinearSolver.COL_PIV_HOUSEHOLDER_QR,
        pivot_tolerance: float = DEFAULT_PIVOT_TOLERANCE,
    ) -> None:
        if not isinstance(linear_solver, LinearSolver):
            raise ValueError(f"linear_solver must be a LinearSolver, got {linear_solver!r}")
        validate_positive(pivot_tolerance, "Pivot tolerance")
        self.linear_solver = linear_solver
        self.pivot_tolerance = float(pivot_tolerance)
        self.bound = False

        self.name: list[str | None] = []
        self.body: list[int] = []
        self.point: list[Array] = []
        self.normal: list[Array] = []

        self.acceleration = np.zeros(0)
        self.force = np.zeros(0)
        self.impulse = np.zeros(0)
        self.v_plus = np.zeros(0)

        self._dof_count = 0
        self._body_count = 0

    def __len__(self) -> int:
        return len(self.body)

    def size(self) -> int:
        return len(self.body)

    @property
    def dof_count(self) -> int:
        """Degrees of freedom of the bound model."""
        return self._dof_count

    @property
    def body_count(self) -> int:
        """Number of bodies (including the root) of the bound model."""
        return self._body_count

    def add_constraint(
        self,
        body_id: int,
        body_point,
        world_normal,
        name: str | None = None,
        normal_acceleration: float = 0.0,
    ) -> int:
        """
        Append a constraint on the acceleration of ``body_point`` along
        ``world_normal``.

        Returns
        -------
        int
            Index of the new constraint

        Raises
        ------
        ContractViolationError
            If the set is already bound
        """
        if self.bound:
            raise ContractViolationError("Cannot add a constraint to a bound constraint set")

        self.name.append(name)
        self.body.append(int(body_id))
        self.point.append(validate_vector3(body_point, "Contact point"))
        self.normal.append(validate_direction(world_normal, "Contact normal"))

        self.acceleration = np.append(self.acceleration, float(normal_acceleration))
        self.force = np.append(self.force, 0.0)
        self.impulse = np.append(self.impulse, 0.0)
        self.v_plus = np.append(self.v_plus, 0.0)

        return len(self.body) - 1

    def bind(self, model: Model) -> bool:
        """
        Allocate all solve-time buffers for ``model``.

        Dimensions are fixed from the model's degrees of freedom, its body
        count and the current number of constraints.

        Raises
        ------
        ContractViolationError
            If the set is already bound or refers to unknown bodies
        """
        if self.bound:
            raise ContractViolationError("Binding an already bound constraint set")
        for body_id in self.body:
            if not model.is_body_id(body_id):
                raise ContractViolationError(f"Constraint refers to unknown body id {body_id}")

        n = model.dof_count
        m = self.size()
        nb = model.body_count
        self._dof_count = n
        self._body_count = nb

        self.H = np.zeros((n, n))
        self.C = np.zeros(n)
        self.gamma = np.zeros(m)
        self.G = np.zeros((m, n))
        self.Gi = np.zeros((3, n))
        self.A = np.zeros((n + m, n + m))
        self.b = np.zeros(n + m)
        self.x = np.zeros(n + m)
        self.Y = np.zeros((n, m))

        self.K = np.zeros((m, m))
        self.a = np.zeros(m)
        self.QDDot_t = np.zeros(n)
        self.QDDot_0 = np.zeros(n)
        self.f_t = np.zeros((m, 6))
        self.f_ext_constraints = np.zeros((nb, 6))
        self.point_accel_0 = np.zeros((m, 3))

        self.d_pA = np.zeros((nb, 6))
        self.d_a = np.zeros((nb, 6))
        self.d_u = np.zeros(nb)

        self.bound = True
        logger.info("Bound constraint set: %d constraints, %d dofs, %d bodies", m, n, nb)
        return self.bound

    def clear(self) -> None:
        """
        Zero solved values and every scratch buffer.

        Dimensions and constraint definitions (bodies, points, normals,
        names, target accelerations and post-impact velocities) are kept.
        """
        self.force.fill(0.0)
        self.impulse.fill(0.0)
        if not self.bound:
            return
        for buffer in (
            self.H, self.C, self.gamma, self.G, self.Gi, self.A, self.b, self.x, self.Y,
            self.K, self.a, self.QDDot_t, self.QDDot_0, self.f_t,
            self.f_ext_constraints, self.point_accel_0,
            self.d_pA, self.d_a, self.d_u,
        ):
            buffer.fill(0.0)

    def check_bound_to(self, model: Model) -> None:
        """
        Raise ContractViolationError unless bound to a model shaped like ``model``.
        """
        if not self.bound:
            raise ContractViolationError("Constraint set must be bound before solving")
        if self._dof_count != model.dof_count or self._body_count != model.body_count:
            raise ContractViolationError(
                f"Constraint set was bound to a model with {self._dof_count} dofs and "
                f"{self._body_count} bodies, got {model.dof_count} dofs and "
                f"{model.body_count} bodies"
            )

    def __repr__(self) -> str:
        state = "bound" if self.bound else "unbound"
        return f"ConstraintSet({self.size()} constraints, {state})"
