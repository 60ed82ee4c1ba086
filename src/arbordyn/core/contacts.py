"""
Contact constraint solvers.

All solvers take a model, the current state and a bound
:class:`~arbordyn.dynamics.constraints.ConstraintSet`, and write

- joint accelerations (or post-impact velocities) into ``qddot``
  (``qdot_plus``), allocated when not given, and
- constraint forces into ``cs.force`` (impulses into ``cs.impulse``).

Forces are positive when they push the contact point along its normal.

Solvers
-------
forward_dynamics_contacts_lagrangian
    Dense KKT system ``[[H, G^T], [G, 0]]``.
forward_dynamics_contacts_lagrangian_sparse
    Range-space method on the branch-sparse factorization ``H = L^T L``.
forward_dynamics_contacts
    Test forces: assembles the constraint-space compliance (Delassus)
    operator from the articulated-body recursion without forming H or G.
compute_contact_impulses_lagrangian
    Velocity-level KKT system for impacts.
"""
from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from arbordyn.dynamics.algorithms import (
    composite_rigid_body_algorithm,
    forward_dynamics,
    inverse_dynamics,
    sparse_factorize_ltl,
    sparse_solve_ltx,
    sparse_solve_lx,
)
from arbordyn.dynamics.constraints import ConstraintSet
from arbordyn.dynamics.kinematics import (
    calc_body_to_base_coordinates,
    calc_point_acceleration,
    calc_point_jacobian,
    update_kinematics_custom,
)
from arbordyn.dynamics.model import Model
from arbordyn.utils.linalg import LinearSolver, solve_linear_system
from arbordyn.utils.spatial import crossf
from arbordyn.utils.validation import check_vector_size

logger = logging.getLogger(__name__)

Array = NDArray[np.float64]

SPARSE_LINEAR_SOLVERS = frozenset({
    LinearSolver.PARTIAL_PIV_LU,
    LinearSolver.COL_PIV_HOUSEHOLDER_QR,
    LinearSolver.GAUSS_ELIM_PIVOT,
})
TEST_FORCE_LINEAR_SOLVERS = frozenset({
    LinearSolver.PARTIAL_PIV_LU,
    LinearSolver.COL_PIV_HOUSEHOLDER_QR,
    LinearSolver.HOUSEHOLDER_QR,
    LinearSolver.GAUSS_ELIM_PIVOT,
})


def _select_linear_solver(
    cs: ConstraintSet,
    linear_solver: LinearSolver | None,
    allowed: frozenset[LinearSolver] | None = None,
) -> LinearSolver:
    method = cs.linear_solver if linear_solver is None else linear_solver
    if not isinstance(method, LinearSolver):
        raise ValueError(f"Invalid linear solver {method!r}")
    if allowed is not None and method not in allowed:
        raise ValueError(
            f"Linear solver {method.name} is not supported here. "
            f"Must be one of {sorted(m.name for m in allowed)}"
        )
    return method


def _output(out: Array | None, size: int, name: str) -> Array:
    if out is None:
        return np.zeros(size)
    check_vector_size(out, size, name)
    return out


def _check_state(model: Model, cs: ConstraintSet, **arrays: Array) -> None:
    cs.check_bound_to(model)
    for name, value in arrays.items():
        check_vector_size(value, model.dof_count, name)


def calc_contact_jacobian(
    model: Model,
    q: Array,
    cs: ConstraintSet,
    G: Array,
    update_kinematics: bool = True,
) -> Array:
    """
    Constraint Jacobian (m, dof_count), row i = ``normal_i^T J_i``.

    Consecutive constraints on the same body point share one point Jacobian
    evaluation. Uses ``cs.Gi`` as scratch.
    """
    if update_kinematics:
        update_kinematics_custom(model, q)

    prev_body_id = None
    prev_body_point = None
    Gi = cs.Gi

    for i in range(cs.size()):
        body_id = cs.body[i]
        point = cs.point[i]
        if prev_body_id != body_id or not np.array_equal(prev_body_point, point):
            calc_point_jacobian(model, q, body_id, point, Gi, False)
            prev_body_id = body_id
            prev_body_point = point
        G[i, :] = cs.normal[i] @ Gi

    return G


def _calc_constraint_bias(model: Model, q: Array, qdot: Array, cs: ConstraintSet) -> None:
    """
    Fill ``cs.gamma`` with the normal point accelerations at zero joint
    acceleration minus the target accelerations.

    Requires transforms and velocities of the current state in ``model``.
    """
    cs.QDDot_0.fill(0.0)
    update_kinematics_custom(model, None, None, cs.QDDot_0)

    prev_body_id = None
    prev_body_point = None
    gamma_i = np.zeros(3)

    for i in range(cs.size()):
        body_id = cs.body[i]
        point = cs.point[i]
        if prev_body_id != body_id or not np.array_equal(prev_body_point, point):
            gamma_i = calc_point_acceleration(model, q, qdot, cs.QDDot_0, body_id, point, False)
            prev_body_id = body_id
            prev_body_point = point
        cs.gamma[i] = cs.normal[i] @ gamma_i - cs.acceleration[i]


def _assemble_kkt_matrix(model: Model, cs: ConstraintSet) -> None:
    n = model.dof_count
    cs.A[:n, :n] = cs.H
    cs.A[:n, n:] = cs.G.T
    cs.A[n:, :n] = cs.G
    cs.A[n:, n:] = 0.0


def forward_dynamics_contacts_lagrangian(
    model: Model,
    q: Array,
    qdot: Array,
    tau: Array,
    cs: ConstraintSet,
    qddot: Array | None = None,
    linear_solver: LinearSolver | None = None,
) -> Array:
    """
    Constrained forward dynamics through the dense KKT system.

    Solves::

        [ H  G^T ] [ qddot  ]   [ tau - C ]
        [ G   0  ] [ lambda ] = [ -gamma  ]

    and stores ``cs.force = -lambda``.

    Parameters
    ----------
    model : Model
        Model the set is bound to
    q, qdot, tau : Array
        Joint positions, velocities and forces (dof_count,)
    cs : ConstraintSet
        Bound constraint set; ``H``, ``C``, ``G``, ``gamma``, ``A``, ``b``,
        ``x`` and ``force`` are overwritten
    qddot : Array | None
        Output array for joint accelerations
    linear_solver : LinearSolver | None
        Overrides ``cs.linear_solver`` for this call. All strategies are
        accepted; ``LLT`` fails on any system with constraints because the
        KKT matrix is indefinite.

    Returns
    -------
    Array
        Constrained joint accelerations

    Raises
    ------
    SingularSystemError
        For redundant or contradictory constraints
    """
    logger.debug("-------- forward_dynamics_contacts_lagrangian --------")
    _check_state(model, cs, q=q, qdot=qdot, tau=tau)
    method = _select_linear_solver(cs, linear_solver)
    qddot = _output(qddot, model.dof_count, "qddot")
    n = model.dof_count

    # C
    cs.QDDot_0.fill(0.0)
    inverse_dynamics(model, q, qdot, cs.QDDot_0, cs.C)
    # H
    composite_rigid_body_algorithm(model, q, cs.H, False)
    # G
    calc_contact_jacobian(model, q, cs, cs.G, False)
    # gamma
    _calc_constraint_bias(model, q, qdot, cs)

    _assemble_kkt_matrix(model, cs)
    cs.b[:n] = tau - cs.C
    cs.b[n:] = -cs.gamma

    logger.debug("A = \n%s", cs.A)
    logger.debug("b = %s", cs.b)

    solve_linear_system(cs.A, cs.b, method, cs.pivot_tolerance, out=cs.x)

    logger.debug("x = %s", cs.x)

    qddot[:] = cs.x[:n]
    cs.force[:] = -cs.x[n:]
    return qddot


def forward_dynamics_contacts_lagrangian_sparse(
    model: Model,
    q: Array,
    qdot: Array,
    tau: Array,
    cs: ConstraintSet,
    qddot: Array | None = None,
    linear_solver: LinearSolver | None = None,
) -> Array:
    """
    Constrained forward dynamics with the range-space method on ``H = L^T L``.

    With ``Y = L^-T G^T`` and ``z = L^-T (tau - C)`` the constraint forces
    solve ``(Y^T Y) force = -gamma - Y^T z``; then
    ``qddot = L^-1 L^-T (tau - C + G^T force)``.

    ``cs.H`` holds the factor L after the call. Only ``PARTIAL_PIV_LU``,
    ``COL_PIV_HOUSEHOLDER_QR`` and ``GAUSS_ELIM_PIVOT`` are accepted for the
    reduced system.
    """
    logger.debug("-------- forward_dynamics_contacts_lagrangian_sparse --------")
    _check_state(model, cs, q=q, qdot=qdot, tau=tau)
    method = _select_linear_solver(cs, linear_solver, SPARSE_LINEAR_SOLVERS)
    qddot = _output(qddot, model.dof_count, "qddot")

    cs.QDDot_0.fill(0.0)
    inverse_dynamics(model, q, qdot, cs.QDDot_0, cs.C)
    composite_rigid_body_algorithm(model, q, cs.H, False)
    calc_contact_jacobian(model, q, cs, cs.G, False)
    _calc_constraint_bias(model, q, qdot, cs)

    sparse_factorize_ltl(model, cs.H)

    tau_dash = tau - cs.C

    cs.Y[:, :] = cs.G.T
    for i in range(cs.size()):
        # column views write through to cs.Y
        sparse_solve_ltx(model, cs.H, cs.Y[:, i])

    z = tau_dash.copy()
    sparse_solve_ltx(model, cs.H, z)

    cs.K[:, :] = cs.Y.T @ cs.Y
    cs.a[:] = -cs.gamma - cs.Y.T @ z

    logger.debug("K = \n%s", cs.K)
    logger.debug("a = %s", cs.a)

    solve_linear_system(cs.K, cs.a, method, cs.pivot_tolerance, out=cs.force)

    qddot[:] = tau_dash + cs.G.T @ cs.force
    sparse_solve_ltx(model, cs.H, qddot)
    sparse_solve_lx(model, cs.H, qddot)
    return qddot


def compute_contact_impulses_lagrangian(
    model: Model,
    q: Array,
    qdot_minus: Array,
    cs: ConstraintSet,
    qdot_plus: Array | None = None,
    linear_solver: LinearSolver | None = None,
) -> Array:
    """
    Post-impact velocities from the velocity-level KKT system::

        [ H  G^T ] [ qdot_plus ]   [ H qdot_minus ]
        [ G   0  ] [ lambda    ] = [ v_plus       ]

    Stores ``cs.impulse = -lambda``. The contact points leave with normal
    velocities ``cs.v_plus``.
    """
    logger.debug("-------- compute_contact_impulses_lagrangian --------")
    _check_state(model, cs, q=q, qdot_minus=qdot_minus)
    method = _select_linear_solver(cs, linear_solver)
    qdot_plus = _output(qdot_plus, model.dof_count, "qdot_plus")
    n = model.dof_count

    update_kinematics_custom(model, q)
    composite_rigid_body_algorithm(model, q, cs.H, False)

    cs.G.fill(0.0)
    calc_contact_jacobian(model, q, cs, cs.G, False)

    cs.A.fill(0.0)
    cs.b.fill(0.0)
    cs.x.fill(0.0)

    _assemble_kkt_matrix(model, cs)
    cs.b[:n] = cs.H @ qdot_minus
    cs.b[n:] = cs.v_plus

    solve_linear_system(cs.A, cs.b, method, cs.pivot_tolerance, out=cs.x)

    qdot_plus[:] = cs.x[:n]
    cs.impulse[:] = -cs.x[n:]
    return qdot_plus


# -----------------------------------------------------------------------------
# Test-force method
# -----------------------------------------------------------------------------

def forward_dynamics_apply_constraint_forces(
    model: Model,
    tau: Array,
    cs: ConstraintSet,
    qddot: Array,
) -> Array:
    """
    Accelerations under the external forces ``cs.f_ext_constraints``.

    A reduced articulated-body pass: the articulated inertias ``IA``, ``U``
    and ``d`` from the preceding :func:`forward_dynamics` call are reused,
    only the bias forces are recomputed.

    Reads ``X_lambda``, ``X_base``, ``v``, ``c``, ``IA``, ``U``, ``d``;
    writes ``pA``, ``u``, ``a``.
    """
    logger.debug("-------- forward_dynamics_apply_constraint_forces --------")
    check_vector_size(qddot, model.dof_count, "qddot")

    for i in range(1, model.body_count):
        model.pA[i] = crossf(model.v[i]) @ (model.I[i] @ model.v[i])
        if np.any(cs.f_ext_constraints[i]):
            logger.debug("External force (%d) = %s", i, cs.f_ext_constraints[i])
            model.pA[i] -= model.X_base[i].apply_adjoint(cs.f_ext_constraints[i])

    for i in range(model.body_count - 1, 0, -1):
        model.u[i] = tau[i - 1] - model.S[i] @ model.pA[i]
        lam = model.parent[i]
        if lam != 0:
            U = model.U[i]
            Ia = model.IA[i] - np.outer(U, U) / model.d[i]
            pa = model.pA[i] + Ia @ model.c[i] + U * model.u[i] / model.d[i]
            model.pA[lam] += model.X_lambda[i].apply_transpose(pa)

    model.a[0] = np.concatenate((np.zeros(3), -model.gravity))
    for i in range(1, model.body_count):
        lam = model.parent[i]
        model.a[i] = model.X_lambda[i].apply(model.a[lam]) + model.c[i]
        qddot[i - 1] = (model.u[i] - model.U[i] @ model.a[i]) / model.d[i]
        model.a[i] += model.S[i] * qddot[i - 1]

    logger.debug("QDDot = %s", qddot)
    return qddot


def forward_dynamics_acceleration_deltas(
    model: Model,
    cs: ConstraintSet,
    qddot_t: Array,
    body_id: int,
    f_t: Array,
) -> Array:
    """
    Change of joint accelerations caused by the external force ``f_t[body_id]``.

    Only the ancestors of ``body_id`` receive a bias change, so the backward
    pass walks that chain. The forward pass propagates the resulting
    acceleration change to every body.

    Reads ``X_lambda``, ``X_base``, ``U``, ``d`` from the preceding
    :func:`forward_dynamics` call; writes ``cs.d_pA``, ``cs.d_u``, ``cs.d_a``
    and ``qddot_t``.
    """
    cs.d_pA.fill(0.0)
    cs.d_a.fill(0.0)
    cs.d_u.fill(0.0)

    cs.d_pA[body_id] = -model.X_base[body_id].apply_adjoint(f_t[body_id])
    i = body_id
    while i != 0:
        cs.d_u[i] = -model.S[i] @ cs.d_pA[i]
        lam = model.parent[i]
        if lam != 0:
            cs.d_pA[lam] += model.X_lambda[i].apply_transpose(
                cs.d_pA[i] + model.U[i] * cs.d_u[i] / model.d[i]
            )
        i = lam

    for i in range(1, model.body_count):
        Xa = model.X_lambda[i].apply(cs.d_a[model.parent[i]])
        qddot_t[i - 1] = (cs.d_u[i] - model.U[i] @ Xa) / model.d[i]
        cs.d_a[i] = Xa + model.S[i] * qddot_t[i - 1]

    return qddot_t


def forward_dynamics_contacts(
    model: Model,
    q: Array,
    qdot: Array,
    tau: Array,
    cs: ConstraintSet,
    qddot: Array | None = None,
    linear_solver: LinearSolver | None = None,
) -> Array:
    """
    Constrained forward dynamics with test forces.

    1. Unconstrained accelerations ``QDDot_0`` by the articulated-body
       algorithm; baseline contact point accelerations ``point_accel_0``.
    2. For each constraint a unit test force along ``-normal`` is applied at
       its contact point; its acceleration change fills one row of the
       compliance operator ``K``.
    3. ``K force = a`` with ``a_i = normal_i . point_accel_0_i - target_i``.
    4. The scaled test forces are applied in one reduced articulated-body
       pass.

    Only ``PARTIAL_PIV_LU``, ``COL_PIV_HOUSEHOLDER_QR``, ``HOUSEHOLDER_QR``
    and ``GAUSS_ELIM_PIVOT`` are accepted for ``K``.
    """
    logger.debug("-------- forward_dynamics_contacts --------")
    _check_state(model, cs, q=q, qdot=qdot, tau=tau)
    method = _select_linear_solver(cs, linear_solver, TEST_FORCE_LINEAR_SOLVERS)
    qddot = _output(qddot, model.dof_count, "qddot")

    # The default acceleration only needs to be computed once
    forward_dynamics(model, q, qdot, tau, cs.QDDot_0)
    update_kinematics_custom(model, None, None, cs.QDDot_0)

    for ci in range(cs.size()):
        cs.point_accel_0[ci] = calc_point_acceleration(
            model, q, qdot, cs.QDDot_0, cs.body[ci], cs.point[ci], False
        )
        cs.a[ci] = cs.normal[ci] @ cs.point_accel_0[ci] - cs.acceleration[ci]

    for ci in range(cs.size()):
        normal = cs.normal[ci]
        movable_body_id = model.movable_body_id(cs.body[ci])
        point_global = calc_body_to_base_coordinates(model, q, cs.body[ci], cs.point[ci], False)

        # unit force along -normal at the contact point, expressed at the base origin
        cs.f_t[ci, :3] = np.cross(point_global, -normal)
        cs.f_t[ci, 3:] = -normal
        cs.f_ext_constraints[movable_body_id] = cs.f_t[ci]

        forward_dynamics_acceleration_deltas(
            model, cs, cs.QDDot_t, movable_body_id, cs.f_ext_constraints
        )
        logger.debug("QDDot_t - QDDot_0 = %s", cs.QDDot_t)

        cs.f_ext_constraints[movable_body_id] = 0.0
        cs.QDDot_t += cs.QDDot_0

        update_kinematics_custom(model, None, None, cs.QDDot_t)
        for cj in range(cs.size()):
            point_accel_t = calc_point_acceleration(
                model, q, qdot, cs.QDDot_t, cs.body[cj], cs.point[cj], False
            )
            cs.K[ci, cj] = cs.normal[cj] @ (point_accel_t - cs.point_accel_0[cj])

    logger.debug("K = \n%s", cs.K)
    logger.debug("a = %s", cs.a)

    solve_linear_system(cs.K, cs.a, method, cs.pivot_tolerance, out=cs.force)

    logger.debug("f = %s", cs.force)

    for ci in range(cs.size()):
        movable_body_id = model.movable_body_id(cs.body[ci])
        cs.f_ext_constraints[movable_body_id] -= cs.f_t[ci] * cs.force[ci]

    forward_dynamics_apply_constraint_forces(model, tau, cs, qddot)
    return qddot
