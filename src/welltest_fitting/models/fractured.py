from __future__ import annotations

import math
from typing import Mapping, Tuple

import numpy as np
from scipy.special import erf, exp1

from ..forward import ForwardModel, register_model
from .homogeneous import PRESSURE_CONST, TIME_CONST


def _fracture_self(td: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Uniform-flux vertical fracture (Gringarten), pressure and log-derivative."""
    root = np.sqrt(math.pi * td)
    e = erf(1.0 / (2.0 * np.sqrt(td)))
    p = root * e + 0.5 * exp1(1.0 / (4.0 * td))
    return p, 0.5 * root * e


def _line_source(dd: float, td: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Line-source pressure and log-derivative at distance `dd`."""
    x = dd * dd / (4.0 * td)
    return 0.5 * exp1(x), 0.5 * np.exp(-x)


def fractured_horizontal_curves(
    params: Mapping[str, float], t: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Horizontal well with `nf` equally spaced transverse fractures.

    Each fracture carries q/nf; fractures interfere through line sources at
    the fracture spacing, which in fracture half-lengths is 1/(nf*LfD).
    """
    k = float(params["k"])
    h = float(params["h"])
    phi = float(params["phi"])
    mu = float(params["mu"])
    b = float(params["B"])
    ct = float(params["Ct"])
    q = float(params["q"])
    lf = float(params["Lf"])
    skin = float(params["S"])
    nf = max(1, int(round(float(params["nf"]))))
    lfd = float(params.get("LfD", 0.0))
    if lfd <= 0.0 and float(params.get("L", 0.0)) > 0.0:
        lfd = lf / float(params["L"])

    td = TIME_CONST * k * np.asarray(t, dtype=float) / (phi * mu * ct * lf * lf)
    scale = PRESSURE_CONST * q * mu * b / (k * h)

    p_self, d_self = _fracture_self(td)
    p = nf * p_self
    d = nf * d_self
    if nf > 1 and lfd > 0.0:
        spacing = 1.0 / (nf * lfd)
        for m in range(1, nf):
            pm, dm = _line_source(m * spacing, td)
            p = p + 2.0 * (nf - m) * pm
            d = d + 2.0 * (nf - m) * dm
    p = p / (nf * nf) + skin
    d = d / (nf * nf)
    return scale * p, scale * d


FRACTURED_HORIZONTAL = register_model(
    ForwardModel(
        name="fractured_horizontal",
        func=fractured_horizontal_curves,
        defaults={
            "k": 1.0,
            "S": 0.1,
            "h": 10.0,
            "phi": 0.1,
            "mu": 1.0,
            "B": 1.2,
            "Ct": 1e-3,
            "q": 50.0,
            "L": 1000.0,
            "Lf": 50.0,
            "nf": 5.0,
            "LfD": 0.05,
        },
        display_name="Multi-fractured horizontal well",
    )
)
