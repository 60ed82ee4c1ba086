"""
Exception types raised by arbordyn.

Two failure families are kept apart:

- :class:`ContractViolationError` signals a broken calling sequence
  (binding a constraint set twice, appending constraints after binding,
  passing arrays whose dimensions do not match the bound model). These are
  programming errors. The library never catches them; left unhandled they
  terminate the program.
- :class:`SingularSystemError` signals a numerical failure of a linear solve
  (singular or ill-conditioned KKT or constraint-space operator). Recovery,
  e.g. removing a redundant constraint, is up to the caller.
"""
from __future__ import annotations

import numpy as np


class ContractViolationError(RuntimeError):
    """Raised when the API is called out of sequence or with mismatched sizes."""


class SingularSystemError(np.linalg.LinAlgError):
    """Raised when a linear solve strategy detects a singular matrix."""
