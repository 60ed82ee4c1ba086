"""
Kinematic queries on a :class:`~arbordyn.dynamics.model.Model`.

Every query accepts an ``update_kinematics`` flag. Pass ``False`` when the
model's transforms (and velocities/accelerations, where used) were already
refreshed for the same state earlier in the step.

Point accelerations are classical (not spatial) accelerations. They require
``model.a`` to hold accelerations computed by :func:`update_kinematics_custom`
with a non-accelerating base, i.e. without the fictitious gravity term the
forward and inverse dynamics passes place in ``model.a``.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from arbordyn.dynamics.joints import JointType
from arbordyn.dynamics.model import Model
from arbordyn.utils.spatial import SpatialTransform, crossm, xrot, xtrans

Array = NDArray[np.float64]


def jcalc_transform(model: Model, body_id: int, q: Array) -> SpatialTransform:
    """Joint transform ``X_J`` of a single-axis joint at position ``q``."""
    S = model.S[body_id]
    qi = q[body_id - 1]
    if model.joint_types[body_id] is JointType.REVOLUTE:
        return xrot(qi, S[:3])
    return xtrans(S[3:] * qi)


def update_kinematics_custom(
    model: Model,
    q: Array | None = None,
    qdot: Array | None = None,
    qddot: Array | None = None,
) -> None:
    """
    Refresh selected kinematic quantities.

    Writes ``X_J``, ``X_lambda``, ``X_base`` when ``q`` is given, ``v`` and
    ``c`` when ``qdot`` is given and ``a`` when ``qddot`` is given. Reads the
    quantities of the lower levels, so ``qddot`` alone relies on ``v``, ``c``
    and the transforms from an earlier call.
    """
    n = model.body_count
    if q is not None:
        for i in range(1, n):
            lam = model.parent[i]
            model.X_J[i] = jcalc_transform(model, i, q)
            model.X_lambda[i] = model.X_J[i] * model.X_T[i]
            if lam != 0:
                model.X_base[i] = model.X_lambda[i] * model.X_base[lam]
            else:
                model.X_base[i] = model.X_lambda[i]

    if qdot is not None:
        for i in range(1, n):
            lam = model.parent[i]
            v_J = model.S[i] * qdot[i - 1]
            if lam != 0:
                model.v[i] = model.X_lambda[i].apply(model.v[lam]) + v_J
            else:
                model.v[i] = v_J
            model.c[i] = crossm(model.v[i]) @ v_J

    if qddot is not None:
        for i in range(1, n):
            lam = model.parent[i]
            if lam != 0:
                model.a[i] = model.X_lambda[i].apply(model.a[lam]) + model.c[i]
            else:
                model.a[i] = model.c[i].copy()
            model.a[i] += model.S[i] * qddot[i - 1]


def update_kinematics(model: Model, q: Array, qdot: Array, qddot: Array) -> None:
    """Refresh transforms, velocities and accelerations."""
    update_kinematics_custom(model, q, qdot, qddot)


def _resolve_point(model: Model, body_id: int, point: Array) -> tuple[int, Array]:
    """Return the movable body and the point expressed in its frame."""
    if model.is_fixed_body_id(body_id):
        fixed = model.fixed_body(body_id)
        X = fixed.parent_transform
        return fixed.movable_parent, X.E.T @ point + X.r
    return body_id, np.asarray(point, dtype=np.float64)


def _body_base_transform(model: Model, body_id: int) -> SpatialTransform:
    if model.is_fixed_body_id(body_id):
        fixed = model.fixed_body(body_id)
        return fixed.parent_transform * model.X_base[fixed.movable_parent]
    return model.X_base[body_id]


def calc_body_world_orientation(
    model: Model, q: Array, body_id: int, update_kinematics: bool = True
) -> Array:
    """Rotation matrix mapping base coordinates into body coordinates."""
    if update_kinematics:
        update_kinematics_custom(model, q)
    return _body_base_transform(model, body_id).E.copy()


def calc_body_to_base_coordinates(
    model: Model,
    q: Array,
    body_id: int,
    point: Array,
    update_kinematics: bool = True,
) -> Array:
    """Position of a body-local point in base coordinates."""
    if update_kinematics:
        update_kinematics_custom(model, q)
    X = _body_base_transform(model, body_id)
    return X.E.T @ np.asarray(point, dtype=np.float64) + X.r


def calc_base_to_body_coordinates(
    model: Model,
    q: Array,
    body_id: int,
    point: Array,
    update_kinematics: bool = True,
) -> Array:
    """Position of a base point in body-local coordinates."""
    if update_kinematics:
        update_kinematics_custom(model, q)
    X = _body_base_transform(model, body_id)
    return X.E @ (np.asarray(point, dtype=np.float64) - X.r)


def calc_point_jacobian(
    model: Model,
    q: Array,
    body_id: int,
    point: Array,
    G: Array | None = None,
    update_kinematics: bool = True,
) -> Array:
    """
    Linear velocity Jacobian (3, dof_count) of a body-local point.

    Column ``j`` holds the base-frame velocity of the point for a unit rate of
    joint ``j``. Only ancestors of the body have non-zero columns. If ``G`` is
    given it is zeroed and filled in place.
    """
    if update_kinematics:
        update_kinematics_custom(model, q)
    if G is None:
        G = np.zeros((3, model.dof_count))
    else:
        G.fill(0.0)

    movable_id, local_point = _resolve_point(model, body_id, point)
    X = model.X_base[movable_id]
    point_base = X.E.T @ local_point + X.r

    for j in model.ancestors(movable_id):
        S_base = model.X_base[j].inverse().apply(model.S[j])
        # velocity of the point = linear part at base origin + omega x point
        G[:, j - 1] = S_base[3:] + np.cross(S_base[:3], point_base)
    return G


def calc_point_velocity(
    model: Model,
    q: Array,
    qdot: Array,
    body_id: int,
    point: Array,
    update_kinematics: bool = True,
) -> Array:
    """Base-frame linear velocity of a body-local point."""
    if update_kinematics:
        update_kinematics_custom(model, q, qdot)
    movable_id, p = _resolve_point(model, body_id, point)
    v = model.v[movable_id]
    E = model.X_base[movable_id].E
    return E.T @ (v[3:] + np.cross(v[:3], p))


def calc_point_acceleration(
    model: Model,
    q: Array,
    qdot: Array,
    qddot: Array,
    body_id: int,
    point: Array,
    update_kinematics: bool = True,
) -> Array:
    """
    Base-frame classical acceleration of a body-local point.

    With ``update_kinematics=False`` the caller must have run
    :func:`update_kinematics_custom` with ``qddot`` beforehand.
    """
    if update_kinematics:
        update_kinematics_custom(model, q, qdot, qddot)
    movable_id, p = _resolve_point(model, body_id, point)
    v = model.v[movable_id]
    a = model.a[movable_id]
    E = model.X_base[movable_id].E

    omega = v[:3]
    point_velocity = v[3:] + np.cross(omega, p)
    spatial_point_accel = a[3:] + np.cross(a[:3], p)
    return E.T @ (spatial_point_accel + np.cross(omega, point_velocity))
