from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.linalg import LinAlgError as _ScipyLinAlgError
from scipy.linalg import cho_factor, cho_solve

__all__ = ["SingularSystemError", "normal_equations", "damp", "solve_damped"]


class SingularSystemError(np.linalg.LinAlgError):
    """The damped normal equations could not be solved reliably."""


def normal_equations(J: np.ndarray, r: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (H, g) with H = J^T J and g = -J^T r."""
    J = np.asarray(J, dtype=float)
    r = np.asarray(r, dtype=float)
    return J.T @ J, -(J.T @ r)


def damp(H: np.ndarray, lam: float) -> np.ndarray:
    """Copy of H with lam * (1 + |H_ii|) added to the diagonal."""
    Hd = np.array(H, dtype=float, copy=True)
    idx = np.diag_indices_from(Hd)
    Hd[idx] += float(lam) * (1.0 + np.abs(Hd[idx]))
    return Hd


def solve_damped(H: np.ndarray, g: np.ndarray) -> np.ndarray:
    """Solve H delta = g for symmetric positive definite H (Cholesky)."""
    H = np.asarray(H, dtype=float)
    g = np.asarray(g, dtype=float)
    if H.ndim != 2 or H.shape[0] != H.shape[1] or H.shape[0] != g.size:
        raise ValueError(f"Shape mismatch: H {H.shape}, g {g.shape}.")
    if not (np.all(np.isfinite(H)) and np.all(np.isfinite(g))):
        raise SingularSystemError("Non-finite entries in the normal equations.")
    try:
        c, lower = cho_factor(H, check_finite=False)
    except (_ScipyLinAlgError, ValueError) as e:
        raise SingularSystemError(str(e)) from e

    d = np.abs(np.diag(c))
    if d.size and (d.min() == 0.0 or (d.min() / d.max()) ** 2 < np.finfo(float).eps):
        raise SingularSystemError("Normal equations are ill-conditioned.")

    delta = cho_solve((c, lower), g, check_finite=False)
    if not np.all(np.isfinite(delta)):
        raise SingularSystemError("Non-finite step.")
    return delta
