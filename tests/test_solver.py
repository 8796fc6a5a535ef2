import numpy as np
import pytest

from welltest_fitting.solver import SingularSystemError, damp, normal_equations, solve_damped


def test_normal_equations():
    J = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
    r = np.array([1.0, -1.0, 0.5])
    H, g = normal_equations(J, r)
    np.testing.assert_allclose(H, J.T @ J)
    np.testing.assert_allclose(g, -(J.T @ r))


def test_damp_scales_with_diagonal():
    H = np.array([[4.0, 1.0], [1.0, -2.0]])
    Hd = damp(H, 0.1)
    np.testing.assert_allclose(Hd, [[4.5, 1.0], [1.0, -1.7]])
    # input untouched
    assert H[0, 0] == 4.0


def test_solve_matches_dense_solver():
    rng = np.random.default_rng(1)
    A = rng.normal(size=(6, 3))
    H = A.T @ A + np.eye(3)
    g = rng.normal(size=3)
    np.testing.assert_allclose(solve_damped(H, g), np.linalg.solve(H, g), rtol=1e-10)


def test_singular_and_indefinite_systems():
    with pytest.raises(SingularSystemError):
        solve_damped(np.zeros((2, 2)), np.ones(2))
    with pytest.raises(SingularSystemError):
        solve_damped(np.array([[1.0, 0.0], [0.0, -1.0]]), np.ones(2))
    with pytest.raises(SingularSystemError):
        solve_damped(np.array([[1.0, 0.0], [0.0, 1e-20]]), np.ones(2))
    with pytest.raises(SingularSystemError):
        solve_damped(np.array([[np.nan, 0.0], [0.0, 1.0]]), np.ones(2))


def test_singular_error_is_linalg_error():
    assert issubclass(SingularSystemError, np.linalg.LinAlgError)


def test_damping_regularises_zero_column():
    J = np.array([[1.0, 0.0], [2.0, 0.0]])
    H, g = normal_equations(J, np.array([1.0, 1.0]))
    delta = solve_damped(damp(H, 0.01), g)
    assert delta[1] == 0.0
    assert delta[0] < 0.0


def test_shape_mismatch():
    with pytest.raises(ValueError):
        solve_damped(np.eye(2), np.ones(3))
