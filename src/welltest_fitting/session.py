"""Fitting session: parameter store, observed data and a background fit.

A session owns at most one running `FitTask`. The task runs the
Levenberg-Marquardt controller on a single worker thread, on copies of the
parameters, and reports through a message queue that the owner drains with
`FittingSession.poll()` (which also applies snapshots to the store).
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union
from warnings import warn

import numpy as np

from .data import ObservedData
from .forward import ForwardModel, get_model
from .lm import LevenbergMarquardt, LMOptions, Snapshot
from .params import ParameterStore, is_derived
from .residuals import ResidualEvaluator, check_weight
from .results import FitResults
from .sensitivity import ParsedParameters, SweepCurve, generate_sweep, parse_parameter_texts

__all__ = [
    "FitInProgressError",
    "EmptyDatasetWarning",
    "SensitivityModeWarning",
    "CurveUpdate",
    "FitTask",
    "FittingSession",
]

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "homogeneous"


class FitInProgressError(RuntimeError):
    """A fit is already running for this session."""


class EmptyDatasetWarning(UserWarning):
    """A fit was requested without observed data."""


class SensitivityModeWarning(UserWarning):
    """A fit was requested while a parameter holds several values."""


Message = Tuple[str, Any]


class FitTask:
    """Handle for one background fit.

    Messages put on `messages`: ("progress", int), ("snapshot", Snapshot),
    ("finished", FitResults) or ("error", Exception). Callbacks, when given,
    are called on the worker thread with the same payloads.
    """

    def __init__(
        self,
        lm: LevenbergMarquardt,
        *,
        on_snapshot: Optional[Callable[[Snapshot], None]] = None,
        on_progress: Optional[Callable[[int], None]] = None,
        on_finished: Optional[Callable[[FitResults], None]] = None,
    ):
        self.lm = lm
        self.cancel_event = threading.Event()
        self.messages: "queue.Queue[Message]" = queue.Queue()
        self._on_snapshot = on_snapshot
        self._on_progress = on_progress
        self._on_finished = on_finished
        self._last_progress = -1
        self._future: Optional[Future] = None

    def start(self) -> "FitTask":
        if self._future is not None:
            raise RuntimeError("FitTask already started.")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="welltest-fit")
        self._future = executor.submit(self._run)
        # worker thread exits once the job is done
        executor.shutdown(wait=False)
        return self

    def _progress(self, pct: int) -> None:
        if pct <= self._last_progress:
            return
        self._last_progress = pct
        self.messages.put(("progress", pct))
        if self._on_progress is not None:
            self._on_progress(pct)

    def _snapshot(self, snap: Snapshot) -> None:
        self.messages.put(("snapshot", snap))
        if self._on_snapshot is not None:
            self._on_snapshot(snap)

    def _run(self) -> FitResults:
        try:
            result = self.lm.run(
                cancel=self.cancel_event,
                on_snapshot=self._snapshot,
                on_progress=self._progress,
            )
        except Exception as e:
            logger.debug("Background fit failed: %s", e)
            self.messages.put(("error", e))
            raise
        self.messages.put(("finished", result))
        if self._on_finished is not None:
            self._on_finished(result)
        return result

    def cancel(self) -> None:
        """Ask the controller to stop at the next iteration boundary."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def running(self) -> bool:
        return self._future is not None and not self._future.done()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> FitResults:
        if self._future is None:
            raise RuntimeError("FitTask was never started.")
        return self._future.result(timeout)

    def drain(self) -> List[Message]:
        """Pop every queued message without blocking."""
        out: List[Message] = []
        while True:
            try:
                out.append(self.messages.get_nowait())
            except queue.Empty:
                return out


@dataclass(frozen=True)
class CurveUpdate:
    """Result of refreshing the model curve.

    In sensitivity mode `curves` holds the sweep and fitting is disabled;
    otherwise the single model curve is returned with its normalized error
    (None without observed data).
    """

    fit_enabled: bool
    curves: Tuple[SweepCurve, ...] = ()
    time: Optional[np.ndarray] = field(default=None, repr=False)
    pressure: Optional[np.ndarray] = field(default=None, repr=False)
    derivative: Optional[np.ndarray] = field(default=None, repr=False)
    normalized_error: Optional[float] = None


class FittingSession:
    def __init__(
        self,
        model: Union[ForwardModel, str] = DEFAULT_MODEL,
        data: Optional[ObservedData] = None,
        weight: float = 0.5,
        options: Optional[Union[LMOptions, Mapping[str, Any]]] = None,
    ):
        self.model = get_model(model) if isinstance(model, str) else model
        self.store = ParameterStore.from_defaults(self.model.defaults)
        self.data = data if data is not None else ObservedData.empty()
        self._weight = check_weight(weight)
        if options is not None and not isinstance(options, LMOptions):
            options = LMOptions.from_mapping(options)
        self.options = options or LMOptions()
        self.sweep_curves: List[SweepCurve] = []
        self.last_results: Optional[FitResults] = None
        self._task: Optional[FitTask] = None
        self._handles = itertools.count(1)

    # ---- inputs ----
    @property
    def model_type(self) -> str:
        return self.model.name

    @property
    def weight(self) -> float:
        """Pressure weight in [0, 1]; the derivative gets 1 - weight."""
        return self._weight

    @weight.setter
    def weight(self, value: float) -> None:
        self._weight = check_weight(value)

    @property
    def fit_weight(self) -> int:
        """Weight as the 0-100 slider value."""
        return int(round(self._weight * 100))

    @fit_weight.setter
    def fit_weight(self, value: int) -> None:
        v = int(value)
        if not 0 <= v <= 100:
            raise ValueError(f"fit_weight must be in [0, 100], got {value!r}.")
        self._weight = v / 100.0

    def select_model(self, model: Union[ForwardModel, str]) -> None:
        """Switch forward model, keeping values of parameters both models share."""
        self._require_idle()
        self.model = get_model(model) if isinstance(model, str) else model
        self.store = self.store.switch_model(self.model.defaults)
        self.sweep_curves = []

    def reset_parameters(self) -> None:
        self._require_idle()
        self.store = ParameterStore.from_defaults(self.model.defaults)

    def set_observed_data(self, data: ObservedData) -> None:
        self._require_idle()
        self.data = data

    def set_parameter_text(self, name: str, text: str) -> None:
        self.store.set_text(name, text)

    def parse_parameters(self) -> ParsedParameters:
        return parse_parameter_texts(self.store.raw_texts())

    @property
    def is_sensitivity_mode(self) -> bool:
        return self.parse_parameters().sweep is not None

    # ---- outputs ----
    def update_model_curve(self) -> CurveUpdate:
        """Recompute the sweep curves or the single model curve.

        Curves are evaluated at the observed times when data is loaded and on
        the model's default grid otherwise.
        """
        parsed = self.parse_parameters()
        time = None if self.data.is_empty else self.data.time
        if parsed.sweep is not None:
            self.sweep_curves = generate_sweep(
                self.model, parsed.sweep, parsed.base, time, handles=self._handles
            )
            return CurveUpdate(fit_enabled=False, curves=tuple(self.sweep_curves))

        self.sweep_curves = []
        res = self.model.evaluate(parsed.base, time)
        err = None
        if not self.data.is_empty:
            err = ResidualEvaluator(self.model, self.data, self._weight).normalized_error(
                parsed.base
            )
        return CurveUpdate(
            fit_enabled=True,
            time=res.time,
            pressure=res.pressure,
            derivative=res.derivative,
            normalized_error=err,
        )

    def report_rows(self) -> List[Dict[str, Any]]:
        return self.store.report_rows()

    # ---- fitting ----
    @property
    def task(self) -> Optional[FitTask]:
        return self._task

    @property
    def is_fitting(self) -> bool:
        return self._task is not None and self._task.running()

    def _require_idle(self) -> None:
        if self.is_fitting:
            raise FitInProgressError("A fit is already running.")

    def start_fit(
        self,
        *,
        on_snapshot: Optional[Callable[[Snapshot], None]] = None,
        on_progress: Optional[Callable[[int], None]] = None,
        on_finished: Optional[Callable[[FitResults], None]] = None,
    ) -> Optional[FitTask]:
        """Start a background fit; returns None (with a warning) when it cannot run."""
        self._require_idle()
        if self.data.is_empty:
            warn("No observed data loaded; fit not started.", EmptyDatasetWarning)
            return None
        if self.is_sensitivity_mode:
            warn(
                "A parameter holds several values (sensitivity mode); fit not started.",
                SensitivityModeWarning,
            )
            return None

        lm = LevenbergMarquardt(
            self.model,
            self.data,
            self.store.parameters(),
            weight=self._weight,
            options=self.options,
        )
        self._task = FitTask(
            lm, on_snapshot=on_snapshot, on_progress=on_progress, on_finished=on_finished
        ).start()
        logger.debug("Started fit of %s on %d points", self.model.name, len(self.data))
        return self._task

    def stop_fit(self) -> None:
        if self._task is not None:
            self._task.cancel()

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        self.store.update_values(snapshot.params)

    def poll(self) -> List[Message]:
        """Drain task messages, applying snapshots and results to the session."""
        if self._task is None:
            return []
        messages = self._task.drain()
        for kind, payload in messages:
            if kind == "snapshot":
                self.apply_snapshot(payload)
            elif kind == "finished":
                self.last_results = payload
        return messages

    def wait(self, timeout: Optional[float] = None) -> FitResults:
        """Block until the running fit ends, then apply its messages."""
        if self._task is None:
            raise RuntimeError("No fit has been started.")
        result = self._task.result(timeout)
        self.poll()
        return result

    # ---- persisted state ----
    def to_state(self) -> Dict[str, Any]:
        """JSON-compatible snapshot of model, weight, parameters and data."""
        return {
            "modelType": self.model.name,
            "fitWeightVal": self.fit_weight,
            "parameters": [
                {
                    "name": p.name,
                    "value": float(p.value),
                    "isFit": bool(p.is_fit),
                    "min": float(p.min),
                    "max": float(p.max),
                    "step": float(p.step),
                    "isVisible": bool(p.is_visible),
                }
                for p in self.store
            ],
            "observedData": self.data.to_dict(),
        }

    @classmethod
    def from_state(
        cls,
        state: Mapping[str, Any],
        options: Optional[Union[LMOptions, Mapping[str, Any]]] = None,
    ) -> "FittingSession":
        """Rebuild a session; parameters start from the model defaults.

        Stored entries are applied by name (unknown names are ignored) and
        derived values are recomputed rather than read back.
        """
        session = cls(state.get("modelType", DEFAULT_MODEL), options=options)
        store = session.store
        for entry in state.get("parameters", ()):
            name = str(entry.get("name", ""))
            if name not in store:
                continue
            lo = float(entry.get("min", store[name].min))
            hi = float(entry.get("max", store[name].max))
            store.set_bounds(name, lo, hi)
            store.set_fit(name, bool(entry.get("isFit", False)))
            store.set_visible(name, bool(entry.get("isVisible", True)))
            if "step" in entry:
                store.set_step(name, float(entry["step"]))
            if "value" in entry and not is_derived(name):
                store.update_values({name: float(entry["value"])})

        if "fitWeightVal" in state:
            session.fit_weight = int(state["fitWeightVal"])
        elif "fitWeight" in state:
            session.fit_weight = int(float(state["fitWeight"]) * 100)

        if "observedData" in state:
            session.data = ObservedData.from_dict(state["observedData"])
        return session
