"""Utility functions for arbordyn."""

from .io import save_simulation_history
from .spatial import (
    SpatialTransform,
    crossf,
    crossm,
    skew,
    spatial_inertia,
    spatial_inertia_parameters,
    xrot,
    xrotx,
    xroty,
    xrotz,
    xtrans,
)
from .validation import (
    check_vector_size,
    validate_direction,
    validate_inertia_tensor,
    validate_non_negative,
    validate_positive,
    validate_timestep,
    validate_vector3,
)

__all__ = [
    "save_simulation_history",
    "SpatialTransform",
    "crossf",
    "crossm",
    "skew",
    "spatial_inertia",
    "spatial_inertia_parameters",
    "xrot",
    "xrotx",
    "xroty",
    "xrotz",
    "xtrans",
    "check_vector_size",
    "validate_direction",
    "validate_inertia_tensor",
    "validate_non_negative",
    "validate_positive",
    "validate_timestep",
    "validate_vector3",
]
