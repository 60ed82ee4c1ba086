"""
arbordyn - Constrained rigid-body dynamics for kinematic trees.

Core Components
---------------
Model : Tree of rigid bodies with single-axis joints
ConstraintSet : Point contact constraints and solver workspace
ContactStepper : Fixed-step integrator with contact constraints

Contact Solvers
---------------
forward_dynamics_contacts_lagrangian : Dense KKT system
forward_dynamics_contacts_lagrangian_sparse : Range-space method on H = L^T L
forward_dynamics_contacts : Test forces through the articulated-body recursion
compute_contact_impulses_lagrangian : Impact velocities

Examples
--------
>>> import numpy as np
>>> from arbordyn import Body, ConstraintSet, Joint, Model, xtrans
>>> from arbordyn import forward_dynamics_contacts_lagrangian
>>> model = Model()
>>> box = model.add_body(0, xtrans([0, 0, 0]), Joint.floating_base(),
...                      Body(1.0, inertia=[0.1, 0.1, 0.1]))
>>> cs = ConstraintSet()
>>> cs.add_constraint(box, [0, 0, 0], [0, 0, 1])
0
>>> cs.bind(model)
True
"""

__version__ = "0.1.0"

from arbordyn.core.contacts import (
    calc_contact_jacobian,
    compute_contact_impulses_lagrangian,
    forward_dynamics_contacts,
    forward_dynamics_contacts_lagrangian,
    forward_dynamics_contacts_lagrangian_sparse,
)
from arbordyn.core.solver import ContactStepper
from arbordyn.dynamics.algorithms import (
    composite_rigid_body_algorithm,
    forward_dynamics,
    forward_dynamics_lagrangian,
    inverse_dynamics,
)
from arbordyn.dynamics.body import Body
from arbordyn.dynamics.constraints import ConstraintSet
from arbordyn.dynamics.joints import Joint
from arbordyn.dynamics.model import Model

# Errors
from arbordyn.exceptions import ContractViolationError, SingularSystemError

# Logging
from arbordyn.logger import CSVLogger
from arbordyn.utils.linalg import LinearSolver, solve_linear_system
from arbordyn.utils.spatial import SpatialTransform, xrotx, xroty, xrotz, xtrans

__all__ = [
    # Version
    "__version__",
    # Model
    "Model",
    "Body",
    "Joint",
    "SpatialTransform",
    "xtrans",
    "xrotx",
    "xroty",
    "xrotz",
    # Dynamics
    "inverse_dynamics",
    "forward_dynamics",
    "forward_dynamics_lagrangian",
    "composite_rigid_body_algorithm",
    # Contacts
    "ConstraintSet",
    "calc_contact_jacobian",
    "forward_dynamics_contacts_lagrangian",
    "forward_dynamics_contacts_lagrangian_sparse",
    "forward_dynamics_contacts",
    "compute_contact_impulses_lagrangian",
    "ContactStepper",
    # Linear algebra
    "LinearSolver",
    "solve_linear_system",
    # Errors
    "ContractViolationError",
    "SingularSystemError",
    # Logging
    "CSVLogger",
]
