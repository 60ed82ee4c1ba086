"""
Energy, centre of mass and momentum of a model state.

Useful as conservation checks: a constrained system whose contacts do no
work keeps ``calc_kinetic_energy + calc_potential_energy`` constant.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from arbordyn.dynamics.kinematics import update_kinematics_custom
from arbordyn.dynamics.model import Model

Array = NDArray[np.float64]


def calc_kinetic_energy(
    model: Model, q: Array, qdot: Array, update_kinematics: bool = True
) -> float:
    """Kinetic energy ``0.5 * sum(v_i . I_i v_i)`` [J]."""
    if update_kinematics:
        update_kinematics_custom(model, q, qdot)
    energy = 0.0
    for i in range(1, model.body_count):
        energy += 0.5 * model.v[i] @ (model.I[i] @ model.v[i])
    return float(energy)


def calc_center_of_mass(
    model: Model,
    q: Array,
    qdot: Array | None = None,
    update_kinematics: bool = True,
):
    """
    Total mass and centre of mass in base coordinates.

    Parameters
    ----------
    model : Model
        Kinematic tree
    q : Array
        Joint positions (dof_count,)
    qdot : Array | None
        Joint velocities. When given, the centre of mass velocity is
        returned as well.
    update_kinematics : bool
        Refresh transforms (and velocities if ``qdot`` is given) first

    Returns
    -------
    tuple
        ``(mass [kg], com (3,) [m])``, or
        ``(mass, com, com_velocity (3,) [m/s])`` when ``qdot`` is given.
        A massless model has its com at the origin and a zero com velocity.
    """
    if update_kinematics:
        update_kinematics_custom(model, q, qdot)
    total_mass = 0.0
    weighted = np.zeros(3)
    weighted_velocity = np.zeros(3)
    for i in range(1, model.body_count):
        body = model.bodies[i]
        if body.mass == 0.0:
            continue
        X = model.X_base[i]
        weighted += body.mass * (X.E.T @ body.com + X.r)
        if qdot is not None:
            v = model.v[i]
            weighted_velocity += body.mass * (X.E.T @ (v[3:] + np.cross(v[:3], body.com)))
        total_mass += body.mass

    if total_mass == 0.0:
        com = np.zeros(3)
        com_velocity = np.zeros(3)
    else:
        com = weighted / total_mass
        com_velocity = weighted_velocity / total_mass

    if qdot is None:
        return total_mass, com
    return total_mass, com, com_velocity


def calc_potential_energy(
    model: Model, q: Array, update_kinematics: bool = True
) -> float:
    """Gravitational potential energy ``-M g . com`` [J], zero at the base origin."""
    mass, com = calc_center_of_mass(model, q, update_kinematics=update_kinematics)
    return float(-mass * model.gravity @ com)


def calc_angular_momentum(
    model: Model, q: Array, qdot: Array, update_kinematics: bool = True
) -> Array:
    """
    Angular momentum about the centre of mass, in base coordinates [kg·m²/s].

    The spatial momenta ``I_i v_i`` of all bodies are summed in base
    coordinates at the base origin and then moved to the centre of mass.
    """
    if update_kinematics:
        update_kinematics_custom(model, q, qdot)
    h = np.zeros(6)
    for i in range(1, model.body_count):
        h += model.X_base[i].apply_transpose(model.I[i] @ model.v[i])
    _, com = calc_center_of_mass(model, q, update_kinematics=False)
    return h[:3] - np.cross(com, h[3:])
