from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Tuple


__all__ = [
    "ParamId",
    "ParamInfo",
    "LINEAR_ONLY",
    "param_info",
    "default_bounds",
    "default_step",
]


class ParamId(str, Enum):
    """Known forward-model parameter names."""

    K = "k"
    H = "h"
    PHI = "phi"
    MU = "mu"
    B = "B"
    CT = "Ct"
    RW = "rw"
    Q = "q"
    C = "C"
    CD = "cD"
    S = "S"
    L = "L"
    LF = "Lf"
    NF = "nf"
    KF = "kf"
    KM = "km"
    RED = "reD"
    LAMBDA1 = "lambda1"
    OMEGA1 = "omega1"
    OMEGA2 = "omega2"
    GAMAD = "gamaD"
    RMD = "rmD"
    LFD = "LfD"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ParamInfo:
    display_name: str
    symbol: str
    unit: str = ""  # empty for dimensionless quantities


_INFO: Dict[ParamId, ParamInfo] = {
    ParamId.K: ParamInfo("Permeability", "k", "mD"),
    ParamId.H: ParamInfo("Net thickness", "h", "m"),
    ParamId.PHI: ParamInfo("Porosity", "φ"),
    ParamId.MU: ParamInfo("Fluid viscosity", "μ", "mPa·s"),
    ParamId.B: ParamInfo("Formation volume factor", "B"),
    ParamId.CT: ParamInfo("Total compressibility", "Ct", "MPa⁻¹"),
    ParamId.RW: ParamInfo("Wellbore radius", "rw", "m"),
    ParamId.Q: ParamInfo("Test rate", "q", "m³/d"),
    ParamId.C: ParamInfo("Wellbore storage", "C", "m³/MPa"),
    ParamId.CD: ParamInfo("Dimensionless wellbore storage", "CD"),
    ParamId.S: ParamInfo("Skin factor", "S"),
    ParamId.L: ParamInfo("Horizontal length", "L", "m"),
    ParamId.LF: ParamInfo("Fracture half-length", "Lf", "m"),
    ParamId.NF: ParamInfo("Fracture count", "nf"),
    ParamId.KF: ParamInfo("Fracture permeability", "kf", "mD"),
    ParamId.KM: ParamInfo("Matrix permeability", "km", "mD"),
    ParamId.RED: ParamInfo("Dimensionless drainage radius", "reD"),
    ParamId.LAMBDA1: ParamInfo("Interporosity flow coefficient", "λ"),
    ParamId.OMEGA1: ParamInfo("Storativity ratio 1", "ω1"),
    ParamId.OMEGA2: ParamInfo("Storativity ratio 2", "ω2"),
    ParamId.GAMAD: ParamInfo("Permeability modulus", "γD"),
    ParamId.RMD: ParamInfo("Dimensionless inner radius", "rmD"),
    ParamId.LFD: ParamInfo("Dimensionless fracture length", "LfD"),
}

# Parameters that may cross zero or are counts: never perturbed in log space.
LINEAR_ONLY: FrozenSet[str] = frozenset({ParamId.S.value, ParamId.NF.value})

_STEP_BY_NAME: Dict[ParamId, float] = {
    ParamId.K: 1.0,
    ParamId.KF: 1.0,
    ParamId.KM: 1.0,
    ParamId.S: 0.1,
    ParamId.C: 0.01,
    ParamId.CD: 0.01,
    ParamId.PHI: 0.01,
}

# Enum members hash by member name, so lookups go through plain strings.
_INFO_BY_NAME: Dict[str, ParamInfo] = {k.value: v for k, v in _INFO.items()}
_STEP_BY_VALUE: Dict[str, float] = {k.value: v for k, v in _STEP_BY_NAME.items()}


def param_info(name: str) -> ParamInfo:
    """Return display metadata for a parameter name (falls back to the name)."""
    info = _INFO_BY_NAME.get(str(name))
    if info is None:
        return ParamInfo(str(name), str(name), "")
    return info


def default_bounds(value: float) -> Tuple[float, float]:
    """Bounds given to a freshly created parameter."""
    value = float(value)
    if value > 0:
        return (value * 0.01, value * 100.0)
    return (0.0, 100.0)


def default_step(name: str, value: float) -> float:
    """UI increment for a freshly created parameter."""
    step = _STEP_BY_VALUE.get(str(name))
    if step is not None:
        return step
    value = float(value)
    return abs(value * 0.1) if value != 0 else 0.1
