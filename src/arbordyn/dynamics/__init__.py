from .body import Body, FixedBody
from .joints import Joint, JointType
from .model import FIXED_BODY_DISCRIMINATOR, Model
from .kinematics import (
    calc_base_to_body_coordinates,
    calc_body_to_base_coordinates,
    calc_body_world_orientation,
    calc_point_acceleration,
    calc_point_jacobian,
    calc_point_velocity,
    update_kinematics,
    update_kinematics_custom,
)
from .algorithms import (
    composite_rigid_body_algorithm,
    forward_dynamics,
    forward_dynamics_lagrangian,
    inverse_dynamics,
)
from .constraints import ConstraintSet
from .energy import (
    calc_angular_momentum,
    calc_center_of_mass,
    calc_kinetic_energy,
    calc_potential_energy,
)
