from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np

__all__ = [
    "TestType",
    "ObservedData",
    "pressure_change",
    "bourdet_derivative",
    "smooth",
]

ArrayLike = Union[Sequence[float], np.ndarray]


class TestType(str, Enum):
    __test__ = False

    DRAWDOWN = "drawdown"
    BUILDUP = "buildup"


def _as_1d(x: Any) -> np.ndarray:
    if x is None:
        return np.zeros(0, dtype=float)
    return np.asarray(x, dtype=float).reshape((-1,))


def _fit_length(d: np.ndarray, n: int) -> np.ndarray:
    # zero-pad or truncate to n
    if d.size == n:
        return d
    if d.size > n:
        return d[:n].copy()
    out = np.zeros(n, dtype=float)
    out[: d.size] = d
    return out


def pressure_change(
    pressure: ArrayLike,
    test_type: Union[TestType, str] = TestType.DRAWDOWN,
    initial_pressure: Optional[float] = None,
) -> np.ndarray:
    """Pressure change from raw gauge pressure.

    Drawdown: |p_i - p| against `initial_pressure`.
    Build-up: |p - p[0]| against the shut-in (first) pressure.
    """
    p = _as_1d(pressure)
    test_type = TestType(test_type)
    if test_type is TestType.DRAWDOWN:
        if initial_pressure is None:
            raise ValueError("Drawdown tests need an initial_pressure.")
        return np.abs(float(initial_pressure) - p)
    if p.size == 0:
        return p
    return np.abs(p - p[0])


def bourdet_derivative(
    time: ArrayLike, dp: ArrayLike, l_spacing: float = 0.1
) -> np.ndarray:
    """Bourdet log-derivative t*d(dp)/dt.

    For each point the left/right neighbours are the closest points at least
    `l_spacing` away in ln(t) (the outermost point when none is far enough);
    the two slopes are weighted by the opposite spacing. End points use the
    one-sided slope.
    """
    t = _as_1d(time)
    p = _as_1d(dp)
    if t.size != p.size:
        raise ValueError("time and dp must have the same length.")
    n = t.size
    out = np.zeros(n, dtype=float)
    if n < 2:
        return out
    with np.errstate(divide="ignore", invalid="ignore"):
        x = np.log(t)
    l_spacing = max(float(l_spacing), 0.0)

    for i in range(n):
        # walk outwards until l_spacing is reached, stopping at the ends
        j = i - 1
        while j > 0 and x[i] - x[j] < l_spacing:
            j -= 1
        k = i + 1
        while k < n - 1 and x[k] - x[i] < l_spacing:
            k += 1

        left = None
        right = None
        if j >= 0 and x[i] != x[j]:
            dxl = x[i] - x[j]
            left = (p[i] - p[j]) / dxl
        if k < n and x[k] != x[i]:
            dxr = x[k] - x[i]
            right = (p[k] - p[i]) / dxr

        if left is not None and right is not None:
            out[i] = (left * dxr + right * dxl) / (dxl + dxr)
        elif left is not None:
            out[i] = left
        elif right is not None:
            out[i] = right
    return out


def smooth(values: ArrayLike, span: int = 5) -> np.ndarray:
    """Centred moving average with an odd window of `span` points (shrinks at the ends)."""
    v = _as_1d(values)
    span = int(span)
    if span <= 1 or v.size == 0:
        return v.copy()
    half = span // 2
    csum = np.concatenate([[0.0], np.cumsum(v)])
    idx = np.arange(v.size)
    lo = np.clip(idx - half, 0, v.size)
    hi = np.clip(idx + half + 1, 0, v.size)
    return (csum[hi] - csum[lo]) / (hi - lo)


@dataclass(frozen=True)
class ObservedData:
    """Aligned observed curves; every time is strictly positive."""

    time: np.ndarray
    pressure: np.ndarray
    derivative: np.ndarray

    @classmethod
    def from_arrays(
        cls,
        time: ArrayLike,
        pressure: ArrayLike,
        derivative: Optional[ArrayLike] = None,
    ) -> "ObservedData":
        t = _as_1d(time)
        p = _as_1d(pressure)
        if t.size != p.size:
            raise ValueError(
                f"time and pressure lengths differ ({t.size} != {p.size})."
            )
        d = _fit_length(_as_1d(derivative), t.size)
        keep = t > 0
        return cls(time=t[keep], pressure=p[keep], derivative=d[keep])

    @classmethod
    def from_measurements(
        cls,
        time: ArrayLike,
        pressure: ArrayLike,
        *,
        test_type: Union[TestType, str] = TestType.DRAWDOWN,
        initial_pressure: Optional[float] = None,
        derivative: Optional[ArrayLike] = None,
        l_spacing: float = 0.1,
        smoothing_span: Optional[int] = None,
    ) -> "ObservedData":
        """Build the dataset from raw gauge readings.

        Rows with non-positive time are dropped first; the pressure change is
        then taken against the initial (drawdown) or first (build-up)
        pressure. Without a derivative column the Bourdet derivative is
        computed, optionally followed by a moving-average smoothing.
        """
        t = _as_1d(time)
        p = _as_1d(pressure)
        if t.size != p.size:
            raise ValueError(
                f"time and pressure lengths differ ({t.size} != {p.size})."
            )
        keep = t > 0
        d_in = None if derivative is None else _fit_length(_as_1d(derivative), t.size)[keep]
        t = t[keep]
        dp = pressure_change(p[keep], test_type, initial_pressure)
        if d_in is None:
            d = bourdet_derivative(t, dp, l_spacing)
        else:
            d = d_in
        if smoothing_span:
            d = smooth(d, smoothing_span)
        return cls.from_arrays(t, dp, d)

    @classmethod
    def empty(cls) -> "ObservedData":
        z = np.zeros(0, dtype=float)
        return cls(time=z, pressure=z.copy(), derivative=z.copy())

    def __len__(self) -> int:
        return int(self.time.size)

    @property
    def is_empty(self) -> bool:
        return self.time.size == 0

    def to_dict(self) -> Dict[str, list]:
        return {
            "time": [float(v) for v in self.time],
            "pressure": [float(v) for v in self.pressure],
            "derivative": [float(v) for v in self.derivative],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ObservedData":
        return cls.from_arrays(
            payload.get("time", ()),
            payload.get("pressure", ()),
            payload.get("derivative"),
        )
