from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)
from warnings import warn

import numpy as np

try:
    import uncertainties
except Exception:  # pragma: no cover - optional at import time
    uncertainties = None

from .catalog import ParamId, default_bounds, default_step, param_info


__all__ = [
    "FitParameter",
    "DerivedRule",
    "DERIVED_RULES",
    "is_derived",
    "feeds_derived",
    "recompute_derived",
    "ParameterStore",
    "ParamView",
    "ParamsView",
    "build_params_view",
]

# Primary lengths at or below this are treated as absent.
LENGTH_EPS = 1e-9


@dataclass
class FitParameter:
    """One named forward-model parameter plus its fit metadata."""

    name: str
    display_name: str = ""
    value: float = 0.0
    is_fit: bool = False
    min: float = 0.0
    max: float = 100.0
    step: float = 0.1  # UI increment only
    is_visible: bool = True

    @property
    def bounds(self) -> Tuple[float, float]:
        return (float(self.min), float(self.max))

    def contains(self, value: float) -> bool:
        return float(self.min) <= float(value) <= float(self.max)

    def clip(self, value: float) -> float:
        return max(float(self.min), min(float(value), float(self.max)))


# ---- derived parameters ------------------------------------------------------


@dataclass(frozen=True)
class DerivedRule:
    """A parameter computed from other parameters.

    `func` receives the full value map and returns the derived value, or None
    when the inputs do not allow it (the current value is then left alone).
    """

    name: str
    inputs: Tuple[str, ...]
    func: Callable[[Mapping[str, float]], Optional[float]]
    doc: str = ""


def _fracture_length_ratio(p: Mapping[str, float]) -> Optional[float]:
    length = float(p[ParamId.L.value])
    if length <= LENGTH_EPS:
        return None
    return float(p[ParamId.LF.value]) / length


DERIVED_RULES: Tuple[DerivedRule, ...] = (
    DerivedRule(
        name=ParamId.LFD.value,
        inputs=(ParamId.L.value, ParamId.LF.value),
        func=_fracture_length_ratio,
        doc="Fracture half-length over horizontal length",
    ),
)

_DERIVED_NAMES = frozenset(r.name for r in DERIVED_RULES)


def is_derived(name: str) -> bool:
    """True if `name` is computed by a derived rule."""
    return str(name) in _DERIVED_NAMES


def feeds_derived(name: str) -> bool:
    """True if `name` is an input of any derived rule."""
    name = str(name)
    return any(name in r.inputs for r in DERIVED_RULES)


def recompute_derived(
    values: Mapping[str, float], rules: Sequence[DerivedRule] = DERIVED_RULES
) -> Dict[str, float]:
    """Return a copy of `values` with every applicable derived rule re-evaluated.

    A rule applies when all of its inputs are present in the map.
    """
    out = {str(k): float(v) for k, v in values.items()}
    for rule in rules:
        if not all(n in out for n in rule.inputs):
            continue
        dv = rule.func(out)
        if dv is not None:
            out[rule.name] = float(dv)
    return out


# ---- parameter store ---------------------------------------------------------


def _parameter_from_default(name: str, value: float) -> FitParameter:
    lo, hi = default_bounds(value)
    return FitParameter(
        name=name,
        display_name=param_info(name).display_name,
        value=float(value),
        is_fit=False,
        min=lo,
        max=hi,
        step=default_step(name, value),
        is_visible=True,
    )


class ParameterStore:
    """Ordered set of FitParameters for the selected forward model.

    The store also keeps the raw text typed for each parameter, which may hold
    several comma-separated values (see `sensitivity.parse_parameter_texts`).
    """

    def __init__(self, parameters: Iterable[FitParameter] = ()):
        self._params: List[FitParameter] = []
        self._texts: Dict[str, str] = {}
        for p in parameters:
            if p.name in self._texts:
                raise ValueError(f"Duplicate parameter name {p.name!r}.")
            if float(p.min) > float(p.max):
                raise ValueError(
                    f"Parameter {p.name!r} has min > max ({p.min} > {p.max})."
                )
            self._params.append(replace(p))
            self._texts[p.name] = _format_value(p.value)
        self._refresh_derived()

    # ---- constructors ----
    @classmethod
    def from_defaults(cls, defaults: Mapping[str, float]) -> "ParameterStore":
        """Build fresh parameters (not fit, default bounds/steps) from a default map."""
        return cls(_parameter_from_default(str(n), float(v)) for n, v in defaults.items())

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "ParameterStore":
        """Rebuild a store from `to_rows()` output."""
        params = []
        for row in rows:
            name = str(row["name"])
            params.append(
                FitParameter(
                    name=name,
                    display_name=str(row.get("display_name") or param_info(name).display_name),
                    value=float(row["value"]),
                    is_fit=bool(row.get("is_fit", False)),
                    min=float(row["min"]),
                    max=float(row["max"]),
                    step=float(row.get("step", 0.1)),
                    is_visible=bool(row.get("is_visible", True)),
                )
            )
        return cls(params)

    # ---- mapping-ish access ----
    def __iter__(self) -> Iterator[FitParameter]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __contains__(self, name: object) -> bool:
        return any(p.name == str(name) for p in self._params)

    def __getitem__(self, name: str) -> FitParameter:
        for p in self._params:
            if p.name == str(name):
                return p
        raise KeyError(name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self._params)

    def parameters(self) -> List[FitParameter]:
        """Independent copies of every parameter."""
        return [replace(p) for p in self._params]

    def values(self) -> Dict[str, float]:
        """name -> value, with derived parameters recomputed."""
        return recompute_derived({p.name: p.value for p in self._params})

    def active_names(self) -> Tuple[str, ...]:
        """Names of fit-enabled, non-derived parameters in store order."""
        return tuple(p.name for p in self._params if p.is_fit and not is_derived(p.name))

    def raw_texts(self) -> Dict[str, str]:
        return {p.name: self._texts.get(p.name, _format_value(p.value)) for p in self._params}

    # ---- mutation ----
    def set_value(self, name: str, value: float) -> None:
        """Assign a value; it must lie within the parameter's bounds."""
        p = self[name]
        if is_derived(p.name):
            raise ValueError(f"{p.name!r} is derived and cannot be set directly.")
        value = float(value)
        if not p.contains(value):
            raise ValueError(
                f"Value {value!r} for {p.name!r} is outside [{p.min}, {p.max}]."
            )
        p.value = value
        self._texts[p.name] = _format_value(value)
        self._refresh_derived()

    def set_text(self, name: str, text: str) -> None:
        """Store raw (possibly multi-valued) text; the first value becomes `value`."""
        from .sensitivity import parse_values

        p = self[name]
        self._texts[p.name] = str(text)
        vals = parse_values(text)
        if not vals or is_derived(p.name):
            return
        v = vals[0]
        if not p.contains(v):
            warn(
                f"Clipped value for {p.name!r} into bounds [{p.min}, {p.max}].",
                UserWarning,
            )
            v = p.clip(v)
        p.value = v
        self._refresh_derived()

    def set_fit(self, name: str, is_fit: bool = True) -> None:
        self[name].is_fit = bool(is_fit)

    def set_bounds(self, name: str, lo: float, hi: float) -> None:
        lo = float(lo)
        hi = float(hi)
        if lo > hi:
            raise ValueError(f"min > max for {name!r} ({lo} > {hi}).")
        p = self[name]
        p.min = lo
        p.max = hi
        if not p.contains(p.value):
            p.value = p.clip(p.value)
            self._texts[p.name] = _format_value(p.value)
            self._refresh_derived()

    def set_step(self, name: str, step: float) -> None:
        self[name].step = float(step)

    def set_visible(self, name: str, is_visible: bool = True) -> None:
        self[name].is_visible = bool(is_visible)

    def update_values(self, values: Mapping[str, float]) -> None:
        """Apply optimizer output (already clipped) to matching parameters."""
        for p in self._params:
            if p.name in values and not is_derived(p.name):
                p.value = p.clip(values[p.name])
                self._texts[p.name] = _format_value(p.value)
        self._refresh_derived()

    def switch_model(self, defaults: Mapping[str, float]) -> "ParameterStore":
        """Return a store for new model defaults, keeping values of shared names."""
        old = {p.name: p.value for p in self._params}
        fresh = ParameterStore.from_defaults(defaults)
        for p in fresh._params:
            if p.name in old and not is_derived(p.name):
                p.value = p.clip(old[p.name])
                fresh._texts[p.name] = _format_value(p.value)
        fresh._refresh_derived()
        return fresh

    def _refresh_derived(self) -> None:
        # derived values are never clipped, only reported
        derived = recompute_derived({p.name: p.value for p in self._params})
        for p in self._params:
            if is_derived(p.name) and p.name in derived:
                p.value = derived[p.name]
                self._texts[p.name] = _format_value(p.value)
                if not p.contains(p.value):
                    warn(
                        f"Derived value {p.name}={p.value:g} is outside its bounds [{p.min}, {p.max}].",
                        UserWarning,
                    )

    # ---- export ----
    def to_rows(self) -> List[Dict[str, Any]]:
        """Structured rows for export; `from_rows` reverses this exactly."""
        rows = []
        for p in self._params:
            info = param_info(p.name)
            rows.append(
                {
                    "name": p.name,
                    "display_name": p.display_name,
                    "symbol": info.symbol,
                    "value": float(p.value),
                    "unit": info.unit,
                    "is_fit": bool(p.is_fit),
                    "min": float(p.min),
                    "max": float(p.max),
                    "step": float(p.step),
                    "is_visible": bool(p.is_visible),
                }
            )
        return rows

    def report_rows(self) -> List[Dict[str, Any]]:
        """Fitted-parameter table: display name, symbol, value, unit."""
        return [
            {k: r[k] for k in ("display_name", "symbol", "value", "unit")}
            for r in self.to_rows()
        ]


def _format_value(v: float) -> str:
    # shortest text that parses back to the same float
    return repr(float(v))


# ---- result views ------------------------------------------------------------


@dataclass
class _UncContext:
    values: Mapping[str, float]
    cov: Optional[np.ndarray]
    free_names: Tuple[str, ...]
    _cache: Optional[Dict[str, Any]] = field(default=None, init=False, repr=False)

    def _build_cache(self) -> None:
        if self._cache is not None or uncertainties is None or self.cov is None:
            return
        cov_arr = np.asarray(self.cov, dtype=float)
        n = len(self.free_names)
        if cov_arr.shape != (n, n):
            return
        vals = [float(self.values[name]) for name in self.free_names]
        try:
            corr = uncertainties.correlated_values(vals, cov_arr)
        except Exception:
            return
        self._cache = dict(zip(self.free_names, corr))

    def u_for(self, name: str) -> Optional[Any]:
        if uncertainties is None or name not in self.free_names:
            return None
        self._build_cache()
        if self._cache is None:
            return None
        return self._cache.get(name)


@dataclass(frozen=True)
class ParamView:
    """A single fitted parameter view."""

    name: str
    value: float
    stderr: Optional[float] = None
    fixed: bool = False
    bounds: Optional[Tuple[float, float]] = None
    derived: bool = False
    _context: Optional[_UncContext] = field(default=None, repr=False, compare=False)

    @property
    def u(self):
        """Return an uncertainties ufloat, correlated with the other fitted parameters."""
        if self.stderr is None:
            raise ValueError(f"No stderr available for parameter {self.name!r}.")
        if uncertainties is None:
            raise RuntimeError("uncertainties package is not available.")
        if not np.isfinite(self.stderr):
            raise ValueError(f"stderr for {self.name!r} is not finite.")
        if self._context is not None:
            correlated = self._context.u_for(self.name)
            if correlated is not None:
                return correlated
        return uncertainties.ufloat(self.value, self.stderr)

    def __getitem__(self, key: str) -> Any:
        if key == "value":
            return self.value
        if key in ("error", "stderr"):
            return self.stderr
        if key == "fixed":
            return self.fixed
        if key == "bounds":
            return self.bounds
        if key == "derived":
            return self.derived
        raise KeyError(key)


class ParamsView(Mapping[str, ParamView]):
    """Mapping name -> ParamView."""

    def __init__(
        self,
        items: Mapping[str, ParamView],
        *,
        _context: Optional[_UncContext] = None,
    ):
        self._items = dict(items)
        self._names = tuple(self._items.keys())
        self._context = _context

    def __getitem__(self, key):  # type: ignore[override]
        if isinstance(key, str):
            return self._items[key]
        if isinstance(key, int):
            return self._items[self._names[key]]
        raise KeyError(key)

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def items(self):
        return self._items.items()

    def as_dict(self) -> Dict[str, float]:
        """Return name->value (extracting .value)."""
        return {k: v.value for k, v in self._items.items()}


def build_params_view(
    parameters: Sequence[FitParameter],
    values: Mapping[str, float],
    active: Sequence[str],
    cov: Optional[np.ndarray],
) -> ParamsView:
    """Assemble result views; stderr comes from `cov` for active parameters."""
    active = tuple(active)
    stderr: Dict[str, float] = {}
    if cov is not None:
        diag = np.sqrt(np.clip(np.diag(np.asarray(cov, dtype=float)), 0.0, np.inf))
        stderr = {n: float(diag[j]) for j, n in enumerate(active)}

    ctx = _UncContext(values=dict(values), cov=cov, free_names=active)
    items: Dict[str, ParamView] = {}
    for p in parameters:
        items[p.name] = ParamView(
            name=p.name,
            value=float(values.get(p.name, p.value)),
            stderr=stderr.get(p.name),
            fixed=p.name not in active,
            bounds=p.bounds,
            derived=is_derived(p.name),
            _context=ctx,
        )
    # Derived values that have no FitParameter of their own.
    for name, v in values.items():
        if name not in items and is_derived(name):
            items[name] = ParamView(name=name, value=float(v), fixed=True, derived=True)
    return ParamsView(items, _context=ctx)
