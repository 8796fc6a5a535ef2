from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from .params import ParamsView
from .util import uncertainty_to_string

__all__ = ["FitResults", "covariance_from_jacobian"]


def covariance_from_jacobian(
    J: np.ndarray,
    residuals: np.ndarray,
    values: Sequence[float],
    log_columns: Sequence[bool],
) -> Optional[np.ndarray]:
    """Parameter covariance pinv(J^T J) * SSE/(n - p) in value space.

    Columns taken with respect to log10(value) are rescaled by value*ln(10).
    Returns None when there are no degrees of freedom left.
    """
    J = np.asarray(J, dtype=float)
    r = np.asarray(residuals, dtype=float)
    n, p = J.shape
    if p == 0 or n <= p:
        return None
    s2 = float(np.dot(r, r)) / (n - p)
    cov = np.linalg.pinv(J.T @ J) * s2
    scale = np.array(
        [float(v) * math.log(10.0) if lg else 1.0 for v, lg in zip(values, log_columns)],
        dtype=float,
    )
    return cov * np.outer(scale, scale)


@dataclass(frozen=True)
class FitResults:
    """Outcome of one Levenberg-Marquardt run."""

    model: str
    termination: Any  # lm.FitState
    params: ParamsView
    values: Dict[str, float]
    active: Tuple[str, ...] = ()
    iterations: int = 0
    accepted_steps: int = 0
    sse: float = float("nan")
    normalized_error: float = float("nan")
    lam: float = float("nan")
    cov: Optional[np.ndarray] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str):
        return self.params[key]

    @property
    def success(self) -> bool:
        from .lm import FitState

        return self.termination in (FitState.CONVERGED, FitState.NO_ACTIVE_PARAMETERS)

    def summary(self, digits: int = 4) -> str:
        """Return a human-readable summary string for the results."""
        term = getattr(self.termination, "value", self.termination)
        lines = [
            f"FitResults(model={self.model!r}, termination={term!r}, "
            f"iterations={self.iterations}, accepted={self.accepted_steps})",
            f"  {'SSE':>12s}: {self.sse:.{digits}g}",
            f"  {'SSE/n':>12s}: {self.normalized_error:.{digits}g}",
        ]
        for name, pv in self.params.items():
            tag = " (derived)" if pv.derived else (" (fixed)" if pv.fixed else "")
            if pv.stderr is None or not np.isfinite(pv.stderr):
                lines.append(f"  {name:>12s}: {float(pv.value):.{digits}g}{tag}")
            else:
                lines.append(
                    f"  {name:>12s}: {uncertainty_to_string(pv.value, pv.stderr, 'auto')}{tag}"
                )
        return "\n".join(lines)
