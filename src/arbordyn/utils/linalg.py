"""
Dense linear solve strategies.

Every strategy has the same contract: ``(A, b) -> x`` with ``A x = b``, or a
:class:`~arbordyn.exceptions.SingularSystemError` when the factorization
reveals a (numerically) singular matrix. Singularity is judged by the ratio
of the smallest to the largest pivot magnitude against ``tol``. The default
``DEFAULT_PIVOT_TOLERANCE`` is a fixed relative threshold, not scaled with
the matrix size, and rejects matrices whose pivots span more than ten
orders of magnitude even when they are regular.

Available strategies (:class:`LinearSolver`):

- ``PARTIAL_PIV_LU`` - LU with partial (row) pivoting
- ``COL_PIV_HOUSEHOLDER_QR`` - Householder QR with column pivoting
- ``HOUSEHOLDER_QR`` - Householder QR without pivoting
- ``LLT`` - Cholesky, only for symmetric positive definite matrices
- ``GAUSS_ELIM_PIVOT`` - hand-written Gaussian elimination with row pivoting,
  independent of LAPACK
"""
from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from enum import Enum, auto

import numpy as np
import scipy.linalg
from numpy.typing import NDArray

from arbordyn.exceptions import SingularSystemError

logger = logging.getLogger(__name__)

Array = NDArray[np.float64]

DEFAULT_PIVOT_TOLERANCE = 1e-10


class LinearSolver(Enum):
    """Dense linear solve strategy selector."""

    PARTIAL_PIV_LU = auto()
    COL_PIV_HOUSEHOLDER_QR = auto()
    HOUSEHOLDER_QR = auto()
    LLT = auto()
    GAUSS_ELIM_PIVOT = auto()


def _check_pivots(pivots: Array, tol: float, method: LinearSolver) -> None:
    magnitudes = np.abs(pivots)
    scale = magnitudes.max()
    if scale == 0.0 or not np.isfinite(scale):
        raise SingularSystemError(f"{method.name}: matrix is zero or not finite")
    smallest = magnitudes.min()
    if smallest <= tol * scale:
        raise SingularSystemError(
            f"{method.name}: matrix is singular or ill-conditioned "
            f"(pivot ratio {smallest / scale:.3e} <= {tol:.1e})"
        )


def _solve_partial_piv_lu(A: Array, b: Array, tol: float) -> Array:
    with warnings.catch_warnings():
        # exact zero pivots are reported below as SingularSystemError
        warnings.simplefilter("ignore", scipy.linalg.LinAlgWarning)
        lu, piv = scipy.linalg.lu_factor(A)
    _check_pivots(np.diag(lu), tol, LinearSolver.PARTIAL_PIV_LU)
    return scipy.linalg.lu_solve((lu, piv), b)


def _solve_col_piv_householder_qr(A: Array, b: Array, tol: float) -> Array:
    Q, R, P = scipy.linalg.qr(A, pivoting=True)
    _check_pivots(np.diag(R), tol, LinearSolver.COL_PIV_HOUSEHOLDER_QR)
    x = np.empty_like(b)
    x[P] = scipy.linalg.solve_triangular(R, Q.T @ b)
    return x


def _solve_householder_qr(A: Array, b: Array, tol: float) -> Array:
    Q, R = scipy.linalg.qr(A)
    _check_pivots(np.diag(R), tol, LinearSolver.HOUSEHOLDER_QR)
    return scipy.linalg.solve_triangular(R, Q.T @ b)


def _solve_llt(A: Array, b: Array, tol: float) -> Array:
    try:
        factor = scipy.linalg.cho_factor(A, lower=True)
    except np.linalg.LinAlgError as e:
        raise SingularSystemError(f"LLT: matrix is not positive definite: {e}") from e
    # pivots of the equivalent LDL^T are the squared diagonal of L
    _check_pivots(np.diag(factor[0]) ** 2, tol, LinearSolver.LLT)
    return scipy.linalg.cho_solve(factor, b)


def _solve_gauss_elim_pivot(A: Array, b: Array, tol: float) -> Array:
    M = np.array(A, dtype=np.float64)
    x = np.array(b, dtype=np.float64)
    n = M.shape[0]
    scale = np.abs(M).max()
    if scale == 0.0 or not np.isfinite(scale):
        raise SingularSystemError("GAUSS_ELIM_PIVOT: matrix is zero or not finite")

    for k in range(n):
        p = k + int(np.argmax(np.abs(M[k:, k])))
        if abs(M[p, k]) <= tol * scale:
            raise SingularSystemError(
                f"GAUSS_ELIM_PIVOT: no usable pivot in column {k}, matrix is singular"
            )
        if p != k:
            M[[k, p]] = M[[p, k]]
            x[[k, p]] = x[[p, k]]
        factors = M[k + 1:, k] / M[k, k]
        M[k + 1:, k:] -= np.outer(factors, M[k, k:])
        x[k + 1:] -= factors * x[k]

    for k in range(n - 1, -1, -1):
        x[k] = (x[k] - M[k, k + 1:] @ x[k + 1:]) / M[k, k]
    return x


_STRATEGIES: dict[LinearSolver, Callable[[Array, Array, float], Array]] = {
    LinearSolver.PARTIAL_PIV_LU: _solve_partial_piv_lu,
    LinearSolver.COL_PIV_HOUSEHOLDER_QR: _solve_col_piv_householder_qr,
    LinearSolver.HOUSEHOLDER_QR: _solve_householder_qr,
    LinearSolver.LLT: _solve_llt,
    LinearSolver.GAUSS_ELIM_PIVOT: _solve_gauss_elim_pivot,
}


def solve_linear_system(
    A: Array,
    b: Array,
    method: LinearSolver = LinearSolver.COL_PIV_HOUSEHOLDER_QR,
    tol: float = DEFAULT_PIVOT_TOLERANCE,
    out: Array | None = None,
) -> Array:
    """
    Solve the square system ``A x = b`` with the selected strategy.

    Parameters
    ----------
    A : Array
        Square matrix (n, n). Not modified.
    b : Array
        Right-hand side (n,)
    method : LinearSolver
        Factorization to use
    tol : float
        Relative pivot threshold below which the matrix counts as singular
    out : Array | None
        Optional array (n,) receiving the solution

    Returns
    -------
    Array
        Solution x (``out`` when given)

    Raises
    ------
    SingularSystemError
        If the strategy detects a singular or ill-conditioned matrix
    ValueError
        If ``method`` is not a :class:`LinearSolver` or shapes do not match
    """
    try:
        strategy = _STRATEGIES[method]
    except (KeyError, TypeError):
        raise ValueError(
            f"Invalid linear solver {method!r}. Must be one of {[m.name for m in LinearSolver]}"
        ) from None

    A = np.asarray(A, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if A.ndim != 2 or A.shape[0] != A.shape[1] or b.shape != (A.shape[0],):
        raise ValueError(f"Expected square A and matching b, got {A.shape} and {b.shape}")

    logger.debug("Solving %dx%d system with %s", A.shape[0], A.shape[1], method.name)
    if A.shape[0] == 0:
        x = np.zeros(0)
    else:
        x = strategy(A, b, tol)

    if out is None:
        return x
    out[:] = x
    return out
