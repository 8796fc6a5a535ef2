import math

import numpy as np
import pytest

from welltest_fitting import models
from welltest_fitting.forward import (
    ForwardModel,
    ForwardModelError,
    available_models,
    default_time_grid,
    evaluate,
    get_model,
    register_model,
)
from welltest_fitting.util import stehfest_invert


def test_registry_lists_builtin_models():
    assert {"homogeneous", "fractured_horizontal"} <= set(available_models())
    assert get_model("homogeneous") is models.HOMOGENEOUS
    with pytest.raises(ValueError, match="Available"):
        get_model("no_such_model")
    with pytest.raises(ValueError):
        register_model(models.HOMOGENEOUS)


def test_default_grid():
    t = default_time_grid()
    assert t.size == 81
    assert t[0] == pytest.approx(1e-4)
    assert t[-1] == pytest.approx(1e4)


def test_stehfest_inverts_exponential():
    t = np.array([0.1, 1.0, 3.0])
    np.testing.assert_allclose(stehfest_invert(lambda s: 1.0 / s**2, t), t, rtol=1e-6)
    f = stehfest_invert(lambda s: 1.0 / (s + 1.0), t)
    np.testing.assert_allclose(f, np.exp(-t), rtol=1e-2)


def test_model_errors_are_wrapped():
    def broken(params, t):
        raise KeyError("k")

    model = ForwardModel(name="broken", func=broken)
    with pytest.raises(ForwardModelError, match="broken"):
        model.evaluate({})


def test_homogeneous_storage_and_radial_flow():
    model = get_model("homogeneous")
    params = model.default_parameters()
    scale = 1.842 * params["q"] * params["mu"] * params["B"] / (params["k"] * params["h"])

    res = model.evaluate(params, np.array([1e-4, 1e3]))
    p, d = res.pressure, res.derivative

    # unit slope: derivative equals pressure during wellbore storage
    assert d[0] == pytest.approx(p[0], rel=5e-2)
    # infinite-acting radial flow: derivative stabilises at 0.5 (dimensionless)
    assert d[1] == pytest.approx(0.5 * scale, rel=2e-2)
    assert p[1] > d[1]


def test_homogeneous_default_grid():
    res = evaluate("homogeneous", get_model("homogeneous").default_parameters())
    assert res.time.size == 81
    assert np.all(np.isfinite(res.pressure))
    assert np.all(np.diff(res.pressure) > 0)


def test_fractured_linear_then_radial():
    model = get_model("fractured_horizontal")
    params = model.default_parameters()
    scale = 1.842 * params["q"] * params["mu"] * params["B"] / (params["k"] * params["h"])

    res = model.evaluate(params, np.array([1e-3, 1e8]))
    p, d = res.pressure, res.derivative

    # early linear flow: half slope once skin is removed
    assert d[0] == pytest.approx(0.5 * (p[0] - params["S"] * scale), rel=1e-6)
    assert d[1] == pytest.approx(0.5 * scale, rel=1e-2)


def test_fractured_count_is_rounded():
    model = get_model("fractured_horizontal")
    params = model.default_parameters()
    t = np.logspace(-2, 3, 11)
    a = model.evaluate(dict(params, nf=3.0), t)
    b = model.evaluate(dict(params, nf=3.2), t)
    np.testing.assert_allclose(a.pressure, b.pressure)


def test_single_fracture_has_no_interference():
    model = get_model("fractured_horizontal")
    params = dict(model.default_parameters(), nf=1.0, S=0.0)
    scale = 1.842 * params["q"] * params["mu"] * params["B"] / (params["k"] * params["h"])
    td = 3.6e-3 * params["k"] * 10.0 / (params["phi"] * params["mu"] * params["Ct"] * params["Lf"] ** 2)
    expected = math.sqrt(math.pi * td) * math.erf(1.0 / (2.0 * math.sqrt(td)))

    res = model.evaluate(params, np.array([10.0]))
    assert res.derivative[0] == pytest.approx(0.5 * expected * scale, rel=1e-9)
