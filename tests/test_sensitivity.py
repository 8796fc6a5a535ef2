import itertools

import numpy as np
import pytest

from welltest_fitting.forward import ForwardModel
from welltest_fitting.sensitivity import (
    SWEEP_PALETTE,
    SweepParseWarning,
    SweepSpec,
    generate_sweep,
    parse_parameter_texts,
    parse_values,
    sweep_from_texts,
)


def _echo_model():
    # pressure encodes the parameters so tests can see what was evaluated
    def func(params, t):
        p = params["a"] * np.ones_like(t)
        return p, params.get("LfD", 0.0) * np.ones_like(t)

    return ForwardModel(name="echo", func=func, defaults={"a": 1.0})


def test_parse_values_delimiters_and_junk():
    assert parse_values("1,2，3") == [1.0, 2.0, 3.0]
    assert parse_values(" 1 , , abc, 4e-1 ,") == [1.0, 0.4]
    assert parse_values("nan, inf, 5") == [5.0]
    assert parse_values("") == []
    assert parse_values(2.5) == [2.5]


def test_parse_is_idempotent():
    vals = parse_values("0.5, x, 1e3，7")
    again = parse_values(",".join(repr(v) for v in vals))
    assert again == vals


def test_first_multi_valued_parameter_is_the_sweep():
    # names are visited in sorted order, so C comes before S
    parsed = parse_parameter_texts({"k": "10", "S": "1,2,4", "C": "0.1, 0.2"})
    assert parsed.sweep == SweepSpec("C", (0.1, 0.2))
    assert parsed.base == {"k": 10.0, "S": 1.0, "C": 0.1}
    assert not parsed.fit_enabled


def test_single_values_enable_fit():
    parsed = parse_parameter_texts({"k": "10", "S": "1"})
    assert parsed.sweep is None
    assert parsed.fit_enabled


def test_empty_parameter_collapses_to_zero():
    with pytest.warns(SweepParseWarning, match="S"):
        parsed = parse_parameter_texts({"k": "10", "S": "abc"})
    assert parsed.base["S"] == 0.0
    assert parsed.empty == ("S",)


def test_parse_recomputes_derived():
    parsed = parse_parameter_texts({"L": "500", "Lf": "50", "LfD": "0.9"})
    assert parsed.base["LfD"] == pytest.approx(0.1)


def test_generate_sweep_curves():
    model = _echo_model()
    counter = itertools.count(100)
    curves = generate_sweep(model, SweepSpec("a", (1.0, 2.0, 4.0)), {"a": 9.0}, handles=counter)

    assert [c.handle for c in curves] == [100, 101, 102]
    assert [c.label for c in curves] == ["a=1", "a=2", "a=4"]
    assert [c.color for c in curves] == list(SWEEP_PALETTE[:3])
    assert curves[2].pressure_label == "P: a=4"
    assert curves[2].derivative_label == "P': a=4"
    for c, v in zip(curves, (1.0, 2.0, 4.0)):
        assert c.value == v
        np.testing.assert_allclose(c.pressure, v)
        assert c.time.size == 81

    # handles keep counting across sweeps
    more = generate_sweep(model, SweepSpec("a", (1.0, 2.0)), {"a": 9.0}, handles=counter)
    assert [c.handle for c in more] == [103, 104]


def test_palette_cycles():
    model = _echo_model()
    values = tuple(float(i + 1) for i in range(10))
    curves = generate_sweep(model, SweepSpec("a", values), {"a": 1.0})
    assert curves[8].color == SWEEP_PALETTE[0]
    assert curves[9].color == SWEEP_PALETTE[1]


def test_sweep_recomputes_derived_for_inputs():
    model = _echo_model()
    base = {"a": 1.0, "L": 1000.0, "Lf": 50.0, "LfD": 0.05}
    curves = generate_sweep(model, SweepSpec("L", (100.0, 500.0)), base)
    np.testing.assert_allclose(curves[0].derivative, 0.5)
    np.testing.assert_allclose(curves[1].derivative, 0.1)


def test_sweep_from_texts():
    parsed, curves = sweep_from_texts(_echo_model(), {"a": "3"})
    assert parsed.fit_enabled and curves == []

    parsed, curves = sweep_from_texts(_echo_model(), {"a": "3, 5"})
    assert len(curves) == 2
