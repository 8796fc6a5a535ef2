"""Forward-model collaborator interface and registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from .util import log_time_grid

__all__ = [
    "ForwardResult",
    "ForwardModel",
    "ForwardModelError",
    "register_model",
    "get_model",
    "available_models",
    "evaluate",
    "default_time_grid",
]

# f(params, t) -> (pressure, derivative)
ForwardFunc = Callable[[Mapping[str, float], np.ndarray], Tuple[np.ndarray, np.ndarray]]


class ForwardModelError(RuntimeError):
    """Raised when a forward model fails to produce curves."""


def default_time_grid() -> np.ndarray:
    """Time grid used when no observed times are supplied (1e-4 .. 1e4)."""
    return log_time_grid(-4.0, 4.0, 0.1)


@dataclass(frozen=True)
class ForwardResult:
    time: np.ndarray
    pressure: np.ndarray
    derivative: np.ndarray

    def __iter__(self):
        # allows `t, p, dp = result`
        return iter((self.time, self.pressure, self.derivative))


@dataclass(frozen=True)
class ForwardModel:
    """A deterministic forward model plus its default parameter map."""

    name: str
    func: ForwardFunc
    defaults: Mapping[str, float] = field(default_factory=dict)
    display_name: str = ""

    def default_parameters(self) -> Dict[str, float]:
        return {str(k): float(v) for k, v in self.defaults.items()}

    def evaluate(
        self, params: Mapping[str, float], time: Optional[np.ndarray] = None
    ) -> ForwardResult:
        """Evaluate pressure change and derivative at `time` (default grid if None).

        Any failure inside the model function is re-raised as ForwardModelError.
        """
        t = default_time_grid() if time is None else np.asarray(time, dtype=float).reshape((-1,))
        try:
            with np.errstate(all="ignore"):
                p, dp = self.func(params, t)
            p = np.asarray(p, dtype=float).reshape((-1,))
            dp = np.asarray(dp, dtype=float).reshape((-1,))
        except ForwardModelError:
            raise
        except Exception as e:
            raise ForwardModelError(f"{self.name}: {e}") from e
        return ForwardResult(time=t, pressure=p, derivative=dp)


_MODELS: Dict[str, ForwardModel] = {}


def register_model(model: ForwardModel, *, replace: bool = False) -> ForwardModel:
    """Add a model to the registry under `model.name`."""
    if model.name in _MODELS and not replace:
        raise ValueError(f"Model {model.name!r} is already registered.")
    _MODELS[model.name] = model
    return model


def get_model(name: str) -> ForwardModel:
    """Return a registered forward model by name."""
    try:
        return _MODELS[name]
    except KeyError as e:
        raise ValueError(
            f"Unknown model {name!r}. Available: {available_models()}"
        ) from e


def available_models() -> Tuple[str, ...]:
    return tuple(_MODELS.keys())


def evaluate(
    model_type: str, params: Mapping[str, float], time: Optional[np.ndarray] = None
) -> ForwardResult:
    """Evaluate a registered model by name."""
    return get_model(model_type).evaluate(params, time)
