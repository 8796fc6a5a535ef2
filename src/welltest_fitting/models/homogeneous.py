from __future__ import annotations

import math
from typing import Mapping, Tuple

import numpy as np
from scipy.special import k0e, k1e

from ..forward import ForwardModel, register_model
from ..util import stehfest_invert

# Metric field units: k mD, h m, mu mPa.s, Ct 1/MPa, rw m, q m3/d, C m3/MPa,
# t in hours, pressure in MPa.
TIME_CONST = 3.6e-3
PRESSURE_CONST = 1.842

# Half-width (in ln t) of the central difference used for the derivative.
_LN_DELTA = 0.02


def _laplace_pwd(s: np.ndarray, cd: float, skin: float) -> np.ndarray:
    """Wellbore pressure with storage and skin in Laplace space.

    Exponentially scaled Bessel functions are used throughout; every term is
    linear in K0/K1 so the scaling cancels.
    """
    u = np.sqrt(s)
    kk0 = k0e(u)
    kk1 = k1e(u)
    num = kk0 + skin * u * kk1
    return num / (s * (u * kk1 + cd * s * num))


def homogeneous_curves(
    params: Mapping[str, float], t: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Pressure change and log-derivative for a vertical well in an
    infinite-acting homogeneous reservoir with wellbore storage and skin."""
    k = float(params["k"])
    h = float(params["h"])
    phi = float(params["phi"])
    mu = float(params["mu"])
    b = float(params["B"])
    ct = float(params["Ct"])
    rw = float(params["rw"])
    q = float(params["q"])
    c = float(params["C"])
    skin = float(params["S"])

    td_per_hour = TIME_CONST * k / (phi * mu * ct * rw * rw)
    cd = c / (2.0 * math.pi * phi * ct * h * rw * rw)
    scale = PRESSURE_CONST * q * mu * b / (k * h)

    td = td_per_hour * np.asarray(t, dtype=float)
    grid = np.concatenate([td, td * math.exp(_LN_DELTA), td * math.exp(-_LN_DELTA)])
    pwd = stehfest_invert(lambda s: _laplace_pwd(s, cd, skin), grid)
    n = td.size
    p = pwd[:n]
    dp = (pwd[n : 2 * n] - pwd[2 * n :]) / (2.0 * _LN_DELTA)
    return scale * p, scale * dp


HOMOGENEOUS = register_model(
    ForwardModel(
        name="homogeneous",
        func=homogeneous_curves,
        defaults={
            "k": 10.0,
            "S": 1.0,
            "C": 0.1,
            "h": 10.0,
            "phi": 0.1,
            "mu": 1.0,
            "B": 1.2,
            "Ct": 1e-3,
            "rw": 0.1,
            "q": 50.0,
        },
        display_name="Vertical well, homogeneous reservoir, storage + skin",
    )
)
