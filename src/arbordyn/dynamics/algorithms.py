"""
Unconstrained rigid-body dynamics recursions.

- :func:`inverse_dynamics` - recursive Newton-Euler algorithm (RNEA)
- :func:`composite_rigid_body_algorithm` - joint-space inertia H (CRBA)
- :func:`forward_dynamics` - articulated-body algorithm (ABA)
- :func:`forward_dynamics_lagrangian` - dense solve of ``H qddot = tau - C``
- sparse ``H = L^T L`` factorization and triangular solves exploiting the
  branch structure ``parent[i] < i``

External forces ``f_ext`` are per-body spatial forces in base coordinates,
indexed like the bodies (entry 0 is ignored).

References
----------
.. [1] Featherstone, R. (2008). Rigid Body Dynamics Algorithms. Springer.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from arbordyn.dynamics.kinematics import update_kinematics_custom
from arbordyn.dynamics.model import Model
from arbordyn.utils.linalg import LinearSolver, solve_linear_system
from arbordyn.utils.spatial import crossf
from arbordyn.utils.validation import check_vector_size

Array = NDArray[np.float64]


def _spatial_gravity_acceleration(model: Model) -> Array:
    """Fictitious base acceleration that reproduces gravity."""
    return np.concatenate((np.zeros(3), -model.gravity))


def _has_force(f_ext, i: int) -> bool:
    return f_ext is not None and np.any(f_ext[i])


def inverse_dynamics(
    model: Model,
    q: Array,
    qdot: Array,
    qddot: Array,
    tau: Array | None = None,
    f_ext=None,
) -> Array:
    """
    Joint forces required to produce ``qddot``.

    Writes ``X_J``, ``X_lambda``, ``X_base``, ``v``, ``c``, ``a`` (with the
    gravity term) and ``f``.
    """
    n = model.dof_count
    check_vector_size(q, n, "q")
    check_vector_size(qdot, n, "qdot")
    check_vector_size(qddot, n, "qddot")
    if tau is None:
        tau = np.zeros(n)
    check_vector_size(tau, n, "tau")

    update_kinematics_custom(model, q, qdot)
    model.a[0] = _spatial_gravity_acceleration(model)

    for i in range(1, model.body_count):
        lam = model.parent[i]
        X = model.X_lambda[i]
        model.a[i] = X.apply(model.a[lam]) + model.c[i] + model.S[i] * qddot[i - 1]
        Iv = model.I[i] @ model.v[i]
        model.f[i] = model.I[i] @ model.a[i] + crossf(model.v[i]) @ Iv
        if _has_force(f_ext, i):
            model.f[i] -= model.X_base[i].apply_adjoint(f_ext[i])

    for i in range(model.body_count - 1, 0, -1):
        tau[i - 1] = model.S[i] @ model.f[i]
        lam = model.parent[i]
        if lam != 0:
            model.f[lam] += model.X_lambda[i].apply_transpose(model.f[i])

    return tau


def composite_rigid_body_algorithm(
    model: Model,
    q: Array,
    H: Array | None = None,
    update_kinematics: bool = True,
) -> Array:
    """
    Joint-space inertia matrix H (dof_count, dof_count).

    Reads ``X_lambda`` (refreshed first when ``update_kinematics``), writes
    ``Ic``. ``H`` is zeroed and filled in place when given.
    """
    n = model.dof_count
    if update_kinematics:
        check_vector_size(q, n, "q")
        update_kinematics_custom(model, q)
    if H is None:
        H = np.zeros((n, n))
    else:
        H.fill(0.0)

    for i in range(1, model.body_count):
        model.Ic[i] = model.I[i].copy()

    for i in range(model.body_count - 1, 0, -1):
        lam = model.parent[i]
        X = model.X_lambda[i]
        if lam != 0:
            Xm = X.to_matrix()
            model.Ic[lam] += Xm.T @ model.Ic[i] @ Xm

        F = model.Ic[i] @ model.S[i]
        H[i - 1, i - 1] = model.S[i] @ F

        j = i
        while model.parent[j] != 0:
            F = model.X_lambda[j].apply_transpose(F)
            j = model.parent[j]
            H[i - 1, j - 1] = F @ model.S[j]
            H[j - 1, i - 1] = H[i - 1, j - 1]

    return H


def forward_dynamics(
    model: Model,
    q: Array,
    qdot: Array,
    tau: Array,
    qddot: Array | None = None,
    f_ext=None,
) -> Array:
    """
    Articulated-body algorithm.

    Writes ``X_J``, ``X_lambda``, ``X_base``, ``v``, ``c``, ``IA``, ``pA``,
    ``U``, ``d``, ``u`` and ``a`` (with the gravity term). After the call
    ``IA[i]`` holds the articulated inertia of the subtree rooted at ``i``,
    which the test-force contact solver reuses.
    """
    n = model.dof_count
    check_vector_size(q, n, "q")
    check_vector_size(qdot, n, "qdot")
    check_vector_size(tau, n, "tau")
    if qddot is None:
        qddot = np.zeros(n)
    check_vector_size(qddot, n, "qddot")

    update_kinematics_custom(model, q, qdot)

    for i in range(1, model.body_count):
        model.IA[i] = model.I[i].copy()
        model.pA[i] = crossf(model.v[i]) @ (model.I[i] @ model.v[i])
        if _has_force(f_ext, i):
            model.pA[i] -= model.X_base[i].apply_adjoint(f_ext[i])

    for i in range(model.body_count - 1, 0, -1):
        S = model.S[i]
        model.U[i] = model.IA[i] @ S
        model.d[i] = S @ model.U[i]
        model.u[i] = tau[i - 1] - S @ model.pA[i]

        lam = model.parent[i]
        if lam != 0:
            U = model.U[i]
            Ia = model.IA[i] - np.outer(U, U) / model.d[i]
            pa = model.pA[i] + Ia @ model.c[i] + U * model.u[i] / model.d[i]
            Xm = model.X_lambda[i].to_matrix()
            model.IA[lam] += Xm.T @ Ia @ Xm
            model.pA[lam] += model.X_lambda[i].apply_transpose(pa)

    model.a[0] = _spatial_gravity_acceleration(model)
    for i in range(1, model.body_count):
        lam = model.parent[i]
        model.a[i] = model.X_lambda[i].apply(model.a[lam]) + model.c[i]
        qddot[i - 1] = (model.u[i] - model.U[i] @ model.a[i]) / model.d[i]
        model.a[i] += model.S[i] * qddot[i - 1]

    return qddot


def forward_dynamics_lagrangian(
    model: Model,
    q: Array,
    qdot: Array,
    tau: Array,
    qddot: Array | None = None,
    linear_solver: LinearSolver = LinearSolver.COL_PIV_HOUSEHOLDER_QR,
    f_ext=None,
) -> Array:
    """Forward dynamics by solving ``H qddot = tau - C`` densely."""
    n = model.dof_count
    check_vector_size(tau, n, "tau")
    C = inverse_dynamics(model, q, qdot, np.zeros(n), f_ext=f_ext)
    H = composite_rigid_body_algorithm(model, q, update_kinematics=False)
    result = solve_linear_system(H, tau - C, linear_solver)
    if qddot is None:
        return result
    check_vector_size(qddot, n, "qddot")
    qddot[:] = result
    return qddot


# -----------------------------------------------------------------------------
# Branch-induced sparse factorization H = L^T L
# -----------------------------------------------------------------------------

def sparse_factorize_ltl(model: Model, H: Array) -> Array:
    """
    Factorize H in place into ``L^T L`` with L lower triangular.

    Only the lower triangle of the result is meaningful. The fill pattern of
    L equals the pattern of H, because row ``k`` of H is non-zero only at
    ``k`` and its ancestors.
    """
    parent = model.parent
    for k in range(model.dof_count, 0, -1):
        H[k - 1, k - 1] = np.sqrt(H[k - 1, k - 1])
        i = parent[k]
        while i != 0:
            H[k - 1, i - 1] /= H[k - 1, k - 1]
            i = parent[i]
        i = parent[k]
        while i != 0:
            j = i
            while j != 0:
                H[i - 1, j - 1] -= H[k - 1, i - 1] * H[k - 1, j - 1]
                j = parent[j]
            i = parent[i]
    return H


def sparse_solve_ltx(model: Model, L: Array, x: Array) -> Array:
    """Solve ``L^T x = b`` in place (``x`` holds b on entry)."""
    parent = model.parent
    for i in range(model.dof_count, 0, -1):
        x[i - 1] /= L[i - 1, i - 1]
        j = parent[i]
        while j != 0:
            x[j - 1] -= L[i - 1, j - 1] * x[i - 1]
            j = parent[j]
    return x


def sparse_solve_lx(model: Model, L: Array, x: Array) -> Array:
    """Solve ``L x = b`` in place (``x`` holds b on entry)."""
    parent = model.parent
    for i in range(1, model.dof_count + 1):
        j = parent[i]
        while j != 0:
            x[i - 1] -= L[i - 1, j - 1] * x[j - 1]
            j = parent[j]
        x[i - 1] /= L[i - 1, i - 1]
    return x


def sparse_multiply_hx(model: Model, L: Array, x: Array) -> Array:
    """Return ``L^T L x`` using only the branch structure of L."""
    parent = model.parent
    n = model.dof_count
    y = np.zeros(n)
    # y = L x
    for i in range(1, n + 1):
        y[i - 1] = L[i - 1, i - 1] * x[i - 1]
        j = parent[i]
        while j != 0:
            y[i - 1] += L[i - 1, j - 1] * x[j - 1]
            j = parent[j]
    # result = L^T y
    result = np.zeros(n)
    for i in range(1, n + 1):
        result[i - 1] += L[i - 1, i - 1] * y[i - 1]
        j = parent[i]
        while j != 0:
            result[j - 1] += L[i - 1, j - 1] * y[i - 1]
            j = parent[j]
    return result
