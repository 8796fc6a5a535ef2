import json
import threading
import warnings

import numpy as np
import pytest

from welltest_fitting.data import ObservedData
from welltest_fitting.forward import ForwardModel
from welltest_fitting.lm import FitState
from welltest_fitting.session import (
    EmptyDatasetWarning,
    FitInProgressError,
    FittingSession,
    SensitivityModeWarning,
)


def _power_model(gate=None):
    def power(params, t):
        if gate is not None:
            gate.wait(10.0)
        p = params["a"] * t ** params["n"]
        return p, params["n"] * p

    return ForwardModel(name="power", func=power, defaults={"a": 1.0, "n": 0.3})


def _power_data(a=3.0, n=0.5):
    t = np.logspace(-2, 2, 30)
    p = a * t**n
    return ObservedData.from_arrays(t, p, n * p)


def test_empty_dataset_does_not_start():
    session = FittingSession(_power_model())
    session.store.set_fit("a")
    with pytest.warns(EmptyDatasetWarning):
        task = session.start_fit()
    assert task is None
    assert session.task is None
    assert not session.is_fitting


def test_sweep_mode_disables_fit():
    session = FittingSession("homogeneous", data=_power_data())
    session.set_parameter_text("S", "1,2,4")

    update = session.update_model_curve()
    assert not update.fit_enabled
    assert len(update.curves) == 3
    assert [c.value for c in update.curves] == [1.0, 2.0, 4.0]
    assert len({c.handle for c in update.curves}) == 3
    assert all(c.time.size == 30 for c in update.curves)
    assert session.is_sensitivity_mode

    with pytest.warns(SensitivityModeWarning):
        assert session.start_fit() is None
    assert session.task is None


def test_sweep_handles_are_unique_across_refreshes():
    session = FittingSession("homogeneous")
    session.set_parameter_text("k", "5, 10")
    first = {c.handle for c in session.update_model_curve().curves}
    second = {c.handle for c in session.update_model_curve().curves}
    assert not first & second


def test_single_curve_update_reports_error():
    session = FittingSession(_power_model(), data=_power_data())
    update = session.update_model_curve()
    assert update.fit_enabled
    assert update.curves == ()
    assert update.time.size == 30
    np.testing.assert_allclose(update.time, session.data.time)
    assert update.normalized_error > 0

    bare = FittingSession(_power_model()).update_model_curve()
    assert bare.normalized_error is None
    assert bare.time.size == 81


def test_sweep_parameter_follows_sorted_names():
    session = FittingSession("homogeneous")
    session.set_parameter_text("k", "5, 10")
    session.set_parameter_text("S", "1, 2, 4")

    update = session.update_model_curve()
    assert {c.name for c in update.curves} == {"S"}
    assert [c.value for c in update.curves] == [1.0, 2.0, 4.0]


def test_background_fit_applies_snapshots():
    session = FittingSession(_power_model(), data=_power_data(), options={"tolerance": 1e-10})
    session.store.set_fit("a")
    session.store.set_fit("n")

    finished = []
    task = session.start_fit(on_finished=finished.append)
    assert task is not None
    result = session.wait(timeout=30.0)

    assert finished == [result]
    assert session.last_results is result
    assert session.store["a"].value == pytest.approx(3.0, rel=1e-3)
    assert session.store["n"].value == pytest.approx(0.5, rel=1e-3)
    assert not session.is_fitting


def test_progress_messages_are_monotonic():
    session = FittingSession(_power_model(), data=_power_data(), options={"tolerance": 0.0})
    session.store.set_fit("a")
    task = session.start_fit()
    task.result(timeout=30.0)

    messages = task.drain()
    progress = [v for kind, v in messages if kind == "progress"]
    assert progress == sorted(set(progress))
    assert progress[-1] == 100
    kinds = [kind for kind, _ in messages]
    assert kinds[-1] == "finished"
    assert kinds.count("snapshot") >= 2


def test_only_one_fit_in_flight():
    gate = threading.Event()
    session = FittingSession(_power_model(gate), data=_power_data())
    session.store.set_fit("a")

    task = session.start_fit()
    try:
        assert session.is_fitting
        with pytest.raises(FitInProgressError):
            session.start_fit()
        with pytest.raises(FitInProgressError):
            session.select_model("homogeneous")
    finally:
        gate.set()
    task.result(timeout=30.0)
    assert not session.is_fitting


def test_stop_fit_cancels():
    gate = threading.Event()
    session = FittingSession(_power_model(gate), data=_power_data(), options={"tolerance": 0.0})
    session.store.set_fit("a")
    session.store.set_fit("n")

    task = session.start_fit()
    session.stop_fit()
    gate.set()
    result = session.wait(timeout=30.0)
    assert task.cancelled
    assert result.termination is FitState.CANCELLED


def test_worker_error_is_reported():
    def broken(params, t):
        raise ValueError("bad model")

    session = FittingSession(ForwardModel("broken", broken, {"a": 1.0}), data=_power_data())
    session.store.set_fit("a")
    task = session.start_fit()
    with pytest.raises(Exception):
        task.result(timeout=30.0)
    kinds = [kind for kind, _ in task.drain()]
    assert kinds == ["error"]


def test_weight_inputs():
    session = FittingSession("homogeneous")
    session.fit_weight = 30
    assert session.weight == pytest.approx(0.3)
    with pytest.raises(ValueError):
        session.fit_weight = 101
    with pytest.raises(ValueError):
        session.weight = -0.5


def test_select_model_keeps_shared_values():
    session = FittingSession("homogeneous")
    session.store.set_value("k", 25.0)
    session.select_model("fractured_horizontal")
    assert session.model_type == "fractured_horizontal"
    assert session.store["k"].value == 25.0
    assert "rw" not in session.store
    with pytest.raises(ValueError):
        session.select_model("unknown")


def test_state_round_trip():
    session = FittingSession("fractured_horizontal", data=_power_data())
    session.fit_weight = 70
    session.store.set_value("Lf", 80.0)
    session.store.set_fit("Lf")
    session.store.set_bounds("S", -2.0, 2.0)
    session.store.set_step("S", 0.5)
    session.store.set_visible("h", False)

    state = json.loads(json.dumps(session.to_state()))
    restored = FittingSession.from_state(state)

    assert restored.to_state() == state
    assert restored.store["LfD"].value == pytest.approx(0.08)
    np.testing.assert_allclose(restored.data.time, session.data.time)


def test_state_loading_rederives_and_accepts_legacy_weight():
    state = {
        "modelType": "fractured_horizontal",
        "fitWeight": 0.25,
        "parameters": [
            {"name": "L", "value": 400.0, "isFit": False, "min": 1.0, "max": 1e5},
            {"name": "LfD", "value": 0.9, "isFit": True, "min": 0.0, "max": 1.0},
            {"name": "gone", "value": 1.0, "isFit": True, "min": 0.0, "max": 2.0},
        ],
    }
    restored = FittingSession.from_state(state)

    assert restored.fit_weight == 25
    assert restored.store["LfD"].value == pytest.approx(50.0 / 400.0)
    assert restored.store["L"].is_visible
    assert restored.store.active_names() == ()
    assert "gone" not in restored.store
    assert restored.data.is_empty


def test_report_rows():
    rows = FittingSession("homogeneous").report_rows()
    assert rows[0]["display_name"] == "Permeability"
    assert {"display_name", "symbol", "value", "unit"} == set(rows[0])


def test_parse_warning_for_empty_text():
    session = FittingSession("homogeneous")
    session.set_parameter_text("S", "n/a")
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        session.parse_parameters()
    assert any("S" in str(w.message) for w in caught)
