from __future__ import annotations

import math
from functools import lru_cache
from typing import Callable

import numpy as np


def log_time_grid(start: float = -4.0, stop: float = 4.0, step: float = 0.1) -> np.ndarray:
    """Times 10**e for e from `start` to `stop` (inclusive) in `step` decades."""
    n = int(round((stop - start) / step)) + 1
    return 10.0 ** (start + step * np.arange(n))


@lru_cache(maxsize=8)
def stehfest_coefficients(n: int) -> np.ndarray:
    """Gaver-Stehfest weights V_1..V_n (n even)."""
    if n <= 0 or n % 2:
        raise ValueError("Stehfest order must be a positive even integer.")
    half = n // 2
    v = np.zeros(n, dtype=float)
    for i in range(1, n + 1):
        total = 0.0
        for k in range((i + 1) // 2, min(i, half) + 1):
            total += (
                k ** half
                * math.factorial(2 * k)
                / (
                    math.factorial(half - k)
                    * math.factorial(k)
                    * math.factorial(k - 1)
                    * math.factorial(i - k)
                    * math.factorial(2 * k - i)
                )
            )
        v[i - 1] = (-1) ** (i + half) * total
    v.setflags(write=False)
    return v


def stehfest_invert(
    func: Callable[[np.ndarray], np.ndarray], t: np.ndarray, n: int = 12
) -> np.ndarray:
    """Numerically invert a Laplace transform F(s) at times `t`.

    `func` is called once with an array of shape (n, len(t)) of Laplace
    variables and must be vectorised over it.
    """
    t = np.asarray(t, dtype=float)
    v = stehfest_coefficients(n)
    ln2_t = math.log(2.0) / t
    s = np.arange(1, n + 1, dtype=float)[:, None] * ln2_t[None, :]
    return ln2_t * np.sum(v[:, None] * func(s), axis=0)


def uncertainty_to_string(
    x: float, err: float, precision: int | str | None = 1
) -> str:
    """Format a value with uncertainty as a compact string.

    Returns the shortest string representation of x +/- err as either
    x.xx(ee)e+xx or xxx.xx(ee). Use precision="auto" to follow the
    common 1-or-2 significant-digit rule for the uncertainty.
    """
    auto = precision is None or (
        isinstance(precision, str) and precision.lower() == "auto"
    )
    x = float(x)
    err = float(err)

    if math.isnan(x) or math.isnan(err):
        return "NaN"
    if math.isinf(x) or math.isinf(err):
        return "inf"

    err = abs(err)
    if err == 0.0:
        if auto:
            precision = 1
        precision = max(1, int(precision))  # type: ignore[arg-type]
        return f"{x:.{precision}g}(0)"

    err_exp = int(math.floor(math.log10(err)))
    if auto:
        leading = int(err / (10 ** err_exp) + 1e-12)
        precision = 2 if leading == 1 else 1
    precision = max(1, int(precision))  # type: ignore[arg-type]

    if x == 0.0 or abs(x) < err:
        x_exp = err_exp
    else:
        x_exp = int(math.floor(math.log10(abs(x))))

    un_exp = err_exp - precision + 1
    un_int = round(err * 10 ** (-un_exp))

    no_exp = un_exp
    no_int = round(x * 10 ** (-no_exp))

    fieldw = x_exp - no_exp
    fmt = f"%.{fieldw}f"
    result1 = (fmt + "(%.0f)e%d") % (no_int * 10 ** (-fieldw), un_int, x_exp)

    fieldw = max(0, -no_exp)
    fmt = f"%.{fieldw}f"
    result2 = (fmt + "(%.0f)") % (no_int * 10 ** no_exp, un_int * 10 ** max(0, un_exp))

    return result2 if len(result2) <= len(result1) else result1
