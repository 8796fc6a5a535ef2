from __future__ import annotations

from typing import AbstractSet, Mapping, Optional, Sequence

import numpy as np

from .catalog import LINEAR_ONLY
from .forward import ForwardModelError
from .params import feeds_derived, recompute_derived
from .residuals import ResidualEvaluator

__all__ = ["LOG_FLOOR", "uses_log_scale", "build_jacobian"]

# Values at or below this are perturbed linearly.
LOG_FLOOR = 1e-12


def uses_log_scale(
    name: str, value: float, linear_only: AbstractSet[str] = LINEAR_ONLY
) -> bool:
    """True if `name` is stepped in log10 space (positive and not linear-only)."""
    return float(value) > LOG_FLOOR and str(name) not in linear_only


def build_jacobian(
    evaluator: ResidualEvaluator,
    params: Mapping[str, float],
    base_residuals: np.ndarray,
    active: Sequence[str],
    weight: Optional[float] = None,
    log_step: float = 0.01,
    linear_step: float = 1e-4,
    linear_only: AbstractSet[str] = LINEAR_ONLY,
) -> np.ndarray:
    """Central-difference Jacobian of the residual vector.

    Columns are derivatives with respect to log10(value) for log-scaled
    parameters and to the value itself otherwise. A column is left at zero
    when a perturbed residual vector changes length or the forward model
    fails on a perturbed map.
    """
    base_residuals = np.asarray(base_residuals, dtype=float)
    m = base_residuals.size
    J = np.zeros((m, len(active)), dtype=float)
    params = {str(k): float(v) for k, v in params.items()}

    for j, name in enumerate(active):
        value = params[name]
        log_mode = uses_log_scale(name, value, linear_only)
        if log_mode:
            h = float(log_step)
            lv = np.log10(value)
            plus, minus = 10.0 ** (lv + h), 10.0 ** (lv - h)
        else:
            h = float(linear_step)
            plus, minus = value + h, value - h

        p_plus = dict(params)
        p_plus[name] = plus
        p_minus = dict(params)
        p_minus[name] = minus
        if feeds_derived(name):
            p_plus = recompute_derived(p_plus)
            p_minus = recompute_derived(p_minus)

        try:
            r_plus = evaluator.evaluate(p_plus, weight)
            r_minus = evaluator.evaluate(p_minus, weight)
        except ForwardModelError:
            continue
        if r_plus.size != m or r_minus.size != m:
            continue
        J[:, j] = (r_plus - r_minus) / (2.0 * h)
    return J
