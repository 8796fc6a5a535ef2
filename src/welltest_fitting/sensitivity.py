"""Multi-valued parameter texts and sensitivity sweeps.

A parameter text such as ``"0.5, 1, 2"`` (ASCII or full-width commas) turns
the model-curve refresh into a sweep: one forward evaluation per value with
every other parameter held at its first value. Fitting is disabled while a
sweep is present.
"""

from __future__ import annotations

import itertools
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from warnings import warn

import numpy as np

from .forward import ForwardModel
from .params import feeds_derived, recompute_derived

__all__ = [
    "SweepParseWarning",
    "parse_values",
    "ParsedParameters",
    "parse_parameter_texts",
    "SweepSpec",
    "SweepCurve",
    "SWEEP_PALETTE",
    "generate_sweep",
    "sweep_from_texts",
]

_SPLIT_RE = re.compile("[,\\uff0c]")

# red, blue, green, magenta, orange, cyan, dark red, dark blue
SWEEP_PALETTE: Tuple[str, ...] = (
    "#ff0000",
    "#0000ff",
    "#00b400",
    "#ff00ff",
    "#ff8c00",
    "#00ffff",
    "#800000",
    "#000080",
)


class SweepParseWarning(UserWarning):
    """A parameter text held no usable number and was read as 0.0."""


def parse_values(text: object) -> List[float]:
    """Split on ',' / U+FF0C and keep the fragments that are finite numbers."""
    out: List[float] = []
    for frag in _SPLIT_RE.split(str(text)):
        frag = frag.strip()
        if not frag:
            continue
        try:
            v = float(frag)
        except ValueError:
            continue
        if math.isfinite(v):
            out.append(v)
    return out


@dataclass(frozen=True)
class SweepSpec:
    name: str
    values: Tuple[float, ...]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ParsedParameters:
    base: Dict[str, float]
    sweep: Optional[SweepSpec] = None
    empty: Tuple[str, ...] = ()

    @property
    def fit_enabled(self) -> bool:
        return self.sweep is None


def parse_parameter_texts(raw: Mapping[str, object]) -> ParsedParameters:
    """Parse every parameter text into a base map and at most one sweep.

    The sweep is the first parameter, in sorted-name order, with more than
    one value; later multi-valued parameters only contribute their first value.
    """
    base: Dict[str, float] = {}
    sweep: Optional[SweepSpec] = None
    empty: List[str] = []
    for name in sorted(raw, key=str):
        text = raw[name]
        name = str(name)
        vals = parse_values(text)
        if not vals:
            empty.append(name)
            base[name] = 0.0
            continue
        base[name] = vals[0]
        if sweep is None and len(vals) > 1:
            sweep = SweepSpec(name=name, values=tuple(vals))
    if empty:
        warn(
            f"No numeric value for {', '.join(empty)}; using 0.0.",
            SweepParseWarning,
        )
    return ParsedParameters(base=recompute_derived(base), sweep=sweep, empty=tuple(empty))


@dataclass(frozen=True)
class SweepCurve:
    """One sweep member; `handle` identifies it to whoever draws it."""

    handle: int
    name: str
    value: float
    label: str
    color: str
    time: np.ndarray = field(repr=False)
    pressure: np.ndarray = field(repr=False)
    derivative: np.ndarray = field(repr=False)

    @property
    def pressure_label(self) -> str:
        return f"P: {self.label}"

    @property
    def derivative_label(self) -> str:
        return f"P': {self.label}"


def generate_sweep(
    model: ForwardModel,
    sweep: SweepSpec,
    base: Mapping[str, float],
    time: Optional[np.ndarray] = None,
    handles: Optional[Iterator[int]] = None,
) -> List[SweepCurve]:
    """Evaluate `model` once per sweep value; no fitting is involved.

    `handles` is the caller's id counter; a fresh one starting at 0 is used
    when omitted.
    """
    if handles is None:
        handles = itertools.count()
    base = {str(k): float(v) for k, v in base.items()}
    rederive = feeds_derived(sweep.name)
    curves: List[SweepCurve] = []
    for i, value in enumerate(sweep.values):
        params = dict(base)
        params[sweep.name] = float(value)
        if rederive:
            params = recompute_derived(params)
        res = model.evaluate(params, time)
        curves.append(
            SweepCurve(
                handle=int(next(handles)),
                name=sweep.name,
                value=float(value),
                label=f"{sweep.name}={value:g}",
                color=SWEEP_PALETTE[i % len(SWEEP_PALETTE)],
                time=res.time,
                pressure=res.pressure,
                derivative=res.derivative,
            )
        )
    return curves


def sweep_from_texts(
    model: ForwardModel,
    raw: Mapping[str, object],
    time: Optional[np.ndarray] = None,
    handles: Optional[Iterator[int]] = None,
) -> Tuple[ParsedParameters, List[SweepCurve]]:
    """Parse texts and, if a sweep is present, generate its curves."""
    parsed = parse_parameter_texts(raw)
    if parsed.sweep is None:
        return parsed, []
    return parsed, generate_sweep(model, parsed.sweep, parsed.base, time, handles)
