"""
Validation utilities for physical parameters and solver inputs.

Provides functions to validate inputs for rigid-body dynamics,
ensuring physical consistency and matching array dimensions.
"""
from __future__ import annotations
import numpy as np
from numpy.typing import NDArray
import warnings

from arbordyn.exceptions import ContractViolationError

UNIT_NORM_TOLERANCE = 1e-9
MIN_DIRECTION_NORM = 1e-12


def validate_positive(value: float, name: str, strict: bool = True) -> None:
    """
    Validate that a scalar value is positive.

    Parameters
    ----------
    value : float
        Value to validate
    name : str
        Parameter name for error messages
    strict : bool
        If True, raise ValueError. If False, issue warning.

    Raises
    ------
    ValueError
        If strict=True and value <= 0
    """
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        if strict:
            raise ValueError(msg)
        else:
            warnings.warn(msg, RuntimeWarning, stacklevel=2)


def validate_non_negative(value: float, name: str) -> None:
    """Validate that a value is non-negative."""
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def validate_vector3(v, name: str) -> NDArray[np.float64]:
    """Return ``v`` as a float64 array of shape (3,) or raise ValueError."""
    arr = np.asarray(v, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must be finite, got {arr}")
    return arr.copy()


def validate_direction(v, name: str = "direction") -> NDArray[np.float64]:
    """
    Validate a direction vector and return it with unit length.

    Raises
    ------
    ValueError
        If the vector has the wrong shape or zero length.

    Notes
    -----
    A non-unit vector is normalized and a RuntimeWarning is issued.
    """
    d = validate_vector3(v, name)
    norm = np.linalg.norm(d)
    if norm < MIN_DIRECTION_NORM:
        raise ValueError(f"{name} must be non-zero, got {d}")
    if abs(norm - 1.0) > UNIT_NORM_TOLERANCE:
        warnings.warn(
            f"{name} not normalized: |n| = {norm:.6f}. Normalizing.",
            RuntimeWarning,
            stacklevel=3
        )
        d = d / norm
    return d


def validate_inertia_tensor(I: NDArray[np.float64], tol: float = 1e-12) -> NDArray[np.float64]:
    """
    Validate inertia tensor is 3x3, symmetric and positive semi-definite.

    A diagonal given as shape (3,) is expanded to a matrix.

    Parameters
    ----------
    I : NDArray[np.float64]
        Inertia tensor (3, 3) or its diagonal (3,)
    tol : float
        Tolerance on negative eigenvalues

    Returns
    -------
    NDArray[np.float64]
        Symmetric inertia tensor (3, 3)

    Raises
    ------
    ValueError
        If shape is wrong or matrix is not positive semi-definite
    """
    I = np.asarray(I, dtype=np.float64)
    if I.shape == (3,):
        I = np.diag(I)
    if I.shape != (3, 3):
        raise ValueError(f"Inertia tensor must be 3x3, got shape {I.shape}")

    # Check symmetry
    if not np.allclose(I, I.T):
        warnings.warn(
            "Inertia tensor is not symmetric. Using (I + I^T)/2.",
            RuntimeWarning,
            stacklevel=2
        )
    I = 0.5 * (I + I.T)

    eigenvalues = np.linalg.eigvalsh(I)
    if np.any(eigenvalues < -tol):
        raise ValueError(
            f"Inertia tensor must be positive semi-definite. "
            f"Got eigenvalues: {eigenvalues}"
        )
    return I


def validate_timestep(dt: float, max_dt: float = 1.0) -> None:
    """
    Validate timestep is positive and reasonable.

    Parameters
    ----------
    dt : float
        Time step [s]
    max_dt : float
        Maximum reasonable timestep [s]

    Raises
    ------
    ValueError
        If timestep is invalid
    """
    if dt <= 0:
        raise ValueError(f"Timestep must be positive, got {dt}")
    if dt > max_dt:
        warnings.warn(
            f"Large timestep {dt}s may cause instability. "
            f"Consider using dt < {max_dt}s.",
            RuntimeWarning,
            stacklevel=2
        )


def check_vector_size(v: NDArray[np.float64], size: int, name: str) -> None:
    """
    Check that a solver input or output array has shape (size,).

    Raises
    ------
    ContractViolationError
        On any mismatch. A wrongly sized array is a calling-sequence error,
        not a data condition.
    """
    shape = np.shape(v)
    if shape != (size,):
        raise ContractViolationError(f"{name} must have shape ({size},), got {shape}")
