from .contacts import (
    calc_contact_jacobian,
    compute_contact_impulses_lagrangian,
    forward_dynamics_acceleration_deltas,
    forward_dynamics_apply_constraint_forces,
    forward_dynamics_contacts,
    forward_dynamics_contacts_lagrangian,
    forward_dynamics_contacts_lagrangian_sparse,
)
from .solver import ContactStepper
