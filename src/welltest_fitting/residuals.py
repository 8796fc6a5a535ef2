from __future__ import annotations

from typing import Mapping, Optional

import numpy as np

from .data import ObservedData
from .forward import ForwardModel

__all__ = ["RESIDUAL_EPS", "ResidualEvaluator", "log_residuals", "sse", "check_weight"]

# Observed or computed values at or below this give a zero residual.
RESIDUAL_EPS = 1e-10


def check_weight(weight: float) -> float:
    w = float(weight)
    if not (0.0 <= w <= 1.0):
        raise ValueError(f"weight must be in [0, 1], got {weight!r}.")
    return w


def log_residuals(obs: np.ndarray, calc: np.ndarray, scale: float) -> np.ndarray:
    """(ln obs - ln calc) * scale, zero where either side is not positive."""
    ok = (obs > RESIDUAL_EPS) & (calc > RESIDUAL_EPS)
    out = np.zeros(obs.shape, dtype=float)
    out[ok] = (np.log(obs[ok]) - np.log(calc[ok])) * scale
    return out


def sse(residuals: np.ndarray) -> float:
    r = np.asarray(residuals, dtype=float)
    return float(np.dot(r, r))


class ResidualEvaluator:
    """Weighted log-residuals of a forward model against observed data.

    The vector holds the pressure residuals followed by the derivative
    residuals, scaled by `weight` and `1 - weight` respectively.
    """

    def __init__(self, model: ForwardModel, data: ObservedData, weight: float = 0.5):
        self.model = model
        self.data = data
        self.weight = check_weight(weight)

    def evaluate(
        self, params: Mapping[str, float], weight: Optional[float] = None
    ) -> np.ndarray:
        w = self.weight if weight is None else check_weight(weight)
        res = self.model.evaluate(params, self.data.time)

        n_p = min(self.data.pressure.size, res.pressure.size)
        rp = log_residuals(self.data.pressure[:n_p], res.pressure[:n_p], w)

        n_d = min(self.data.derivative.size, res.derivative.size, n_p)
        rd = log_residuals(self.data.derivative[:n_d], res.derivative[:n_d], 1.0 - w)
        return np.concatenate([rp, rd])

    def sse(self, params: Mapping[str, float], weight: Optional[float] = None) -> float:
        return sse(self.evaluate(params, weight))

    def normalized_error(
        self, params: Mapping[str, float], weight: Optional[float] = None
    ) -> float:
        """SSE divided by the residual count (0 for an empty vector)."""
        r = self.evaluate(params, weight)
        return sse(r) / r.size if r.size else 0.0
