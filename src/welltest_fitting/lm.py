"""Levenberg-Marquardt controller for well-test curve matching.

Parameters are stepped in log10 space when positive (linear for skin, counts
and non-positive values), the residual is the weighted log misfit of the
pressure change and its derivative, and the damping follows

    (J^T J + lam * (I + |diag(J^T J)|)) delta = -J^T r

with lam divided by 10 after an accepted step and multiplied by 10 after a
rejected trial.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import (
    AbstractSet,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import numpy as np

from .catalog import LINEAR_ONLY
from .data import ObservedData
from .forward import ForwardModel, ForwardModelError, get_model
from .jacobian import build_jacobian, uses_log_scale
from .params import FitParameter, build_params_view, is_derived, recompute_derived
from .residuals import ResidualEvaluator, check_weight, sse
from .results import FitResults, covariance_from_jacobian
from .solver import SingularSystemError, damp, normal_equations, solve_damped

__all__ = ["FitState", "LMOptions", "Snapshot", "LevenbergMarquardt", "fit"]

logger = logging.getLogger(__name__)


class FitState(str, Enum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"
    CANCELLED = "cancelled"
    STALLED = "stalled"
    NO_ACTIVE_PARAMETERS = "no_active_parameters"
    DONE = "done"


@dataclass(frozen=True)
class LMOptions:
    initial_lambda: float = 0.01
    max_iter: int = 50
    max_trials: int = 5
    tolerance: float = 3e-3  # on SSE / residual count
    lambda_factor: float = 10.0
    lambda_max: float = 1e10
    log_step: float = 0.01  # decades
    linear_step: float = 1e-4
    linear_only: AbstractSet[str] = LINEAR_ONLY
    compute_covariance: bool = True

    def __post_init__(self) -> None:
        if self.max_iter < 1 or self.max_trials < 1:
            raise ValueError("max_iter and max_trials must be >= 1.")
        if self.initial_lambda <= 0 or self.lambda_factor <= 1:
            raise ValueError("initial_lambda must be > 0 and lambda_factor > 1.")
        if self.log_step <= 0 or self.linear_step <= 0:
            raise ValueError("Perturbation steps must be > 0.")
        object.__setattr__(self, "linear_only", frozenset(self.linear_only))

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None) -> "LMOptions":
        """Build options from a plain dict; unknown keys are rejected."""
        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(
                f"Unknown LM option(s) {unknown}. Available: {sorted(known)}"
            )
        return cls(**options)


@dataclass(frozen=True)
class Snapshot:
    """Parameter map and model curve after init, each accepted step, and at the end."""

    iteration: int
    normalized_error: float
    sse: float
    params: Dict[str, float]
    time: np.ndarray = field(repr=False)
    pressure: np.ndarray = field(repr=False)
    derivative: np.ndarray = field(repr=False)
    final: bool = False


SnapshotCallback = Callable[[Snapshot], None]
ProgressCallback = Callable[[int], None]


class LevenbergMarquardt:
    """One fit of `model` to `data` starting from `parameters`.

    The controller works on copies; the caller's parameters are never touched.
    `cancel` in `run` is any object with `is_set()` (e.g. threading.Event) and
    is polled once per iteration.
    """

    def __init__(
        self,
        model: Union[ForwardModel, str],
        data: ObservedData,
        parameters: Iterable[FitParameter],
        weight: float = 0.5,
        options: Optional[Union[LMOptions, Mapping[str, Any]]] = None,
    ):
        self.model = get_model(model) if isinstance(model, str) else model
        self.data = data
        self.parameters: List[FitParameter] = [replace(p) for p in parameters]
        self.weight = check_weight(weight)
        if options is None:
            options = LMOptions()
        elif not isinstance(options, LMOptions):
            options = LMOptions.from_mapping(options)
        self.options = options
        self.evaluator = ResidualEvaluator(self.model, data, self.weight)
        self.state = FitState.INIT
        self.termination: Optional[FitState] = None

        self._by_name = {p.name: p for p in self.parameters}
        self.active: Tuple[str, ...] = tuple(
            p.name for p in self.parameters if p.is_fit and not is_derived(p.name)
        )

    # ---- helpers ----
    def _normalized(self, sse_value: float, n: int) -> float:
        return sse_value / n if n else 0.0

    def _snapshot(
        self, iteration: int, values: Mapping[str, float], sse_value: float, n: int, final: bool
    ) -> Snapshot:
        try:
            curve = self.model.evaluate(values)
            time = np.array(curve.time, dtype=float)
            pressure = np.array(curve.pressure, dtype=float)
            derivative = np.array(curve.derivative, dtype=float)
        except ForwardModelError as e:
            # display curve only; the fit itself goes on
            logger.debug("snapshot %d has no curve (%s)", iteration, e)
            time = np.zeros(0, dtype=float)
            pressure = time.copy()
            derivative = time.copy()
        return Snapshot(
            iteration=iteration,
            normalized_error=self._normalized(sse_value, n),
            sse=sse_value,
            params=dict(values),
            time=time,
            pressure=pressure,
            derivative=derivative,
            final=final,
        )

    def _trial_values(
        self, values: Mapping[str, float], delta: np.ndarray
    ) -> Dict[str, float]:
        trial = dict(values)
        for name, d in zip(self.active, delta):
            old = values[name]
            if uses_log_scale(name, old, self.options.linear_only):
                new = 10.0 ** (np.log10(old) + d)
            else:
                new = old + d
            trial[name] = self._by_name[name].clip(float(new))
        return recompute_derived(trial)

    # ---- main loop ----
    def run(
        self,
        cancel: Optional[Any] = None,
        on_snapshot: Optional[SnapshotCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FitResults:
        opts = self.options

        def emit(snap: Snapshot) -> None:
            if on_snapshot is not None:
                on_snapshot(snap)

        def progress(pct: int) -> None:
            if on_progress is not None:
                on_progress(int(pct))

        values = recompute_derived({p.name: p.value for p in self.parameters})

        if not self.active:
            self.termination = FitState.NO_ACTIVE_PARAMETERS
            self.state = FitState.DONE
            logger.debug("No active parameters; nothing to fit")
            return self._results(values, None, 0, 0, float("nan"), opts.initial_lambda)

        residuals = self.evaluator.evaluate(values)
        current = sse(residuals)
        n = residuals.size
        emit(self._snapshot(0, values, current, n, final=False))

        lam = float(opts.initial_lambda)
        iterations = 0
        accepted = 0
        termination = FitState.MAX_ITER_REACHED
        self.state = FitState.ITERATING

        for it in range(opts.max_iter):
            if cancel is not None and cancel.is_set():
                termination = FitState.CANCELLED
                break
            if n and self._normalized(current, n) < opts.tolerance:
                termination = FitState.CONVERGED
                break

            progress(it * 100 // opts.max_iter)
            iterations += 1

            J = build_jacobian(
                self.evaluator,
                values,
                residuals,
                self.active,
                log_step=opts.log_step,
                linear_step=opts.linear_step,
                linear_only=opts.linear_only,
            )
            H, g = normal_equations(J, residuals)

            step_accepted = False
            for trial in range(opts.max_trials):
                try:
                    delta = solve_damped(damp(H, lam), g)
                    trial_values = self._trial_values(values, delta)
                    trial_res = self.evaluator.evaluate(trial_values)
                except (SingularSystemError, ForwardModelError) as e:
                    logger.debug("iter %d trial %d rejected (%s), lambda=%g", it, trial, e, lam)
                    lam *= opts.lambda_factor
                    continue

                trial_sse = sse(trial_res)
                if trial_sse < current:
                    values = trial_values
                    residuals = trial_res
                    current = trial_sse
                    lam /= opts.lambda_factor
                    accepted += 1
                    step_accepted = True
                    logger.debug("iter %d accepted: SSE=%g lambda=%g", it, current, lam)
                    emit(self._snapshot(it + 1, values, current, n, final=False))
                    break

                logger.debug(
                    "iter %d trial %d rejected: SSE %g >= %g, lambda=%g",
                    it, trial, trial_sse, current, lam,
                )
                lam *= opts.lambda_factor

            if not step_accepted and lam > opts.lambda_max:
                termination = FitState.STALLED
                break

        self.termination = termination
        values = recompute_derived(values)
        emit(self._snapshot(iterations, values, current, n, final=True))
        progress(100)
        self.state = FitState.DONE
        logger.debug(
            "LM finished: %s after %d iterations, SSE=%g", termination.value, iterations, current
        )
        return self._results(values, residuals, iterations, accepted, current, lam)

    def _results(
        self,
        values: Mapping[str, float],
        residuals: Optional[np.ndarray],
        iterations: int,
        accepted: int,
        sse_value: float,
        lam: float,
    ) -> FitResults:
        cov = None
        if self.options.compute_covariance and self.active and residuals is not None:
            cov = self._covariance(values, residuals)
        n = 0 if residuals is None else residuals.size
        return FitResults(
            model=self.model.name,
            termination=self.termination,
            params=build_params_view(self.parameters, values, self.active, cov),
            values=dict(values),
            active=self.active,
            iterations=iterations,
            accepted_steps=accepted,
            sse=sse_value,
            normalized_error=self._normalized(sse_value, n) if residuals is not None else float("nan"),
            lam=lam,
            cov=cov,
            stats={"n_residuals": n, "weight": self.weight},
        )

    def _covariance(
        self, values: Mapping[str, float], residuals: np.ndarray
    ) -> Optional[np.ndarray]:
        opts = self.options
        J = build_jacobian(
            self.evaluator,
            values,
            residuals,
            self.active,
            log_step=opts.log_step,
            linear_step=opts.linear_step,
            linear_only=opts.linear_only,
        )
        log_cols = [uses_log_scale(n, values[n], opts.linear_only) for n in self.active]
        try:
            return covariance_from_jacobian(
                J, residuals, [values[n] for n in self.active], log_cols
            )
        except np.linalg.LinAlgError:
            return None


def fit(
    model: Union[ForwardModel, str],
    data: ObservedData,
    parameters: Iterable[FitParameter],
    weight: float = 0.5,
    options: Optional[Union[LMOptions, Mapping[str, Any]]] = None,
    *,
    cancel: Optional[Any] = None,
    on_snapshot: Optional[SnapshotCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> FitResults:
    """Run a Levenberg-Marquardt fit synchronously."""
    lm = LevenbergMarquardt(model, data, parameters, weight=weight, options=options)
    return lm.run(cancel=cancel, on_snapshot=on_snapshot, on_progress=on_progress)
