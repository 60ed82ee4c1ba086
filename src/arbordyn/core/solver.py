"""
Fixed-step integration of a model under contact constraints.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
from numpy.typing import NDArray

from arbordyn.core.contacts import (
    compute_contact_impulses_lagrangian,
    forward_dynamics_contacts,
    forward_dynamics_contacts_lagrangian,
    forward_dynamics_contacts_lagrangian_sparse,
)
from arbordyn.dynamics.constraints import ConstraintSet
from arbordyn.dynamics.model import Model
from arbordyn.logger import CSVLogger
from arbordyn.utils.io import save_simulation_history
from arbordyn.utils.linalg import LinearSolver
from arbordyn.utils.validation import check_vector_size, validate_positive, validate_timestep

logger = logging.getLogger(__name__)

Array = NDArray[np.float64]

_SOLVERS = {
    "lagrangian": forward_dynamics_contacts_lagrangian,
    "lagrangian_sparse": forward_dynamics_contacts_lagrangian_sparse,
    "test_forces": forward_dynamics_contacts,
}


class ContactStepper:
    """
    Fixed-step semi-implicit Euler integrator with contact constraints.

    Each step clears the constraint set, optionally resolves an impact with
    the impulse solver, solves for constrained accelerations and integrates::

        qdot <- qdot + dt * qddot
        q    <- q + dt * qdot

    Parameters
    ----------
    model : Model
        Kinematic tree
    constraint_set : ConstraintSet
        Constraints to enforce. Bound to ``model`` here if not yet bound.
    method : str
        "lagrangian", "lagrangian_sparse" or "test_forces"
    linear_solver : LinearSolver | None
        Overrides the set's strategy for every solve
    csv_logger : CSVLogger | None
        Receives one row per step
    record_history : bool
        Keep a list of per-step records for :meth:`save_history`

    Attributes
    ----------
    t : float
        Simulation time [s]
    q, qdot, qddot : Array
        State after the most recent step
    history : list[dict]
        Per-step records ``{"t", "q", "qdot", "force", "impulse"}``

    Notes
    -----
    After a step with ``impact=True`` the set holds both the impulses of the
    impact and the forces of the acceleration solve that followed it. Steps
    without an impact leave the impulses at zero.
    """

    METHODS = tuple(_SOLVERS)

    def __init__(
        self,
        model: Model,
        constraint_set: ConstraintSet,
        method: str = "lagrangian",
        linear_solver: LinearSolver | None = None,
        csv_logger: CSVLogger | None = None,
        record_history: bool = True,
    ) -> None:
        if method not in _SOLVERS:
            raise ValueError(f"Method must be one of {self.METHODS}, got '{method}'")
        self.model = model
        self.constraint_set = constraint_set
        self.method = method
        self.linear_solver = linear_solver
        self.csv_logger = csv_logger
        self.record_history = record_history

        if not constraint_set.bound:
            constraint_set.bind(model)
        constraint_set.check_bound_to(model)

        n = model.dof_count
        self.t = 0.0
        self.q = np.zeros(n)
        self.qdot = np.zeros(n)
        self.qddot = np.zeros(n)
        self.history: list[dict[str, Any]] = []

    def accelerations(self, q: Array, qdot: Array, tau: Array) -> Array:
        """Constrained joint accelerations at ``(q, qdot)``; forces land in the set."""
        cs = self.constraint_set
        cs.clear()
        qddot = np.zeros(self.model.dof_count)
        _SOLVERS[self.method](self.model, q, qdot, tau, cs, qddot, self.linear_solver)
        return qddot

    def resolve_impact(self, q: Array, qdot_minus: Array) -> Array:
        """
        Post-impact joint velocities.

        The contact points leave with the normal velocities
        ``constraint_set.v_plus``; impulses land in ``constraint_set.impulse``.
        """
        cs = self.constraint_set
        cs.clear()
        qdot_plus = np.zeros(self.model.dof_count)
        compute_contact_impulses_lagrangian(
            self.model, q, qdot_minus, cs, qdot_plus, self.linear_solver
        )
        logger.debug("Impact at t=%.6f: impulses %s", self.t, cs.impulse)
        return qdot_plus

    def step(
        self,
        q: Array,
        qdot: Array,
        tau: Array,
        dt: float,
        impact: bool = False,
    ) -> tuple[Array, Array]:
        """
        Advance the state by one time step.

        Parameters
        ----------
        q, qdot, tau : Array
            Joint positions, velocities and forces (dof_count,)
        dt : float
            Time step [s]
        impact : bool
            Apply :meth:`resolve_impact` to ``qdot`` before solving. The
            impulses stay in ``constraint_set.impulse`` for logging.

        Returns
        -------
        tuple[Array, Array]
            New ``(q, qdot)``
        """
        validate_timestep(dt)
        n = self.model.dof_count
        check_vector_size(q, n, "q")
        check_vector_size(qdot, n, "qdot")
        check_vector_size(tau, n, "tau")

        qdot = np.array(qdot, dtype=np.float64)
        impulse = None
        if impact:
            qdot = self.resolve_impact(q, qdot)
            impulse = self.constraint_set.impulse.copy()

        qddot = self.accelerations(q, qdot, tau)
        if impulse is not None:
            # the acceleration solve clears the set; keep the step's impulses
            self.constraint_set.impulse[:] = impulse
        qdot_next = qdot + dt * qddot
        q_next = np.asarray(q, dtype=np.float64) + dt * qdot_next

        self.t += dt
        self.q = q_next
        self.qdot = qdot_next
        self.qddot = qddot

        if self.record_history:
            self.history.append({
                "t": self.t,
                "q": q_next.copy(),
                "qdot": qdot_next.copy(),
                "force": self.constraint_set.force.copy(),
                "impulse": self.constraint_set.impulse.copy(),
            })
        if self.csv_logger is not None:
            self.csv_logger.log(self)
        return q_next, qdot_next

    def run(
        self,
        q: Array,
        qdot: Array,
        tau: Array,
        duration: float,
        dt: float,
    ) -> tuple[Array, Array]:
        """Step with constant ``tau`` until ``duration`` has elapsed."""
        validate_positive(duration, "Duration")
        validate_timestep(dt)
        steps = int(np.ceil(duration / dt - 1e-9))
        logger.info("Running %d steps of %.3e s with method '%s'", steps, dt, self.method)
        for _ in range(steps):
            q, qdot = self.step(q, qdot, tau, dt)
        return q, qdot

    def save_history(self, filepath: str | Path) -> Path:
        """Write the recorded history to CSV."""
        return save_simulation_history(self.history, filepath)
