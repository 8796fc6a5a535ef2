"""welltest_fitting public API."""
from .data import ObservedData, TestType
from .forward import ForwardModel, ForwardModelError, available_models, get_model, register_model
from .lm import FitState, LevenbergMarquardt, LMOptions, Snapshot, fit
from .params import FitParameter, ParameterStore
from .results import FitResults
from .session import FittingSession, FitTask
from . import models

__all__ = [
    "ObservedData",
    "TestType",
    "ForwardModel",
    "ForwardModelError",
    "available_models",
    "get_model",
    "register_model",
    "FitState",
    "LevenbergMarquardt",
    "LMOptions",
    "Snapshot",
    "fit",
    "FitParameter",
    "ParameterStore",
    "FitResults",
    "FittingSession",
    "FitTask",
    "models",
]
