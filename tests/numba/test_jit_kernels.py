import numpy as np
import pytest
from inspect import getmembers, isfunction
from numba import njit
from snowyland.core import benchmark, column_operators, configuration, integrator


@pytest.fixture
def restore_kernels(monkeypatch):
    """Undo jit_modules after the test, so other tests see the NumPy kernels."""
    for name, function in getmembers(column_operators, isfunction):
        monkeypatch.setattr(column_operators, name, function)


def test_thomas_solve_compiles():
    rng = np.random.default_rng(0)
    ncol, nlev = 6, 9
    lower = rng.uniform(-1, 0, size=(ncol, nlev))
    upper = rng.uniform(-1, 0, size=(ncol, nlev))
    diag = 3.0 + rng.uniform(0, 1, size=(ncol, nlev))
    rhs = rng.normal(size=(ncol, nlev))
    jitted = njit(column_operators.thomas_solve)
    assert np.allclose(jitted(lower, diag, upper, rhs), column_operators.thomas_solve(lower, diag, upper, rhs))


def test_diffusion_kernels_compile():
    rng = np.random.default_rng(1)
    ncol, nlev = 4, 6
    dz = rng.uniform(0.1, 1.0, size=(ncol, nlev))
    dz_faces = 0.5 * (dz[:, 1:] + dz[:, :-1])
    coefficient = rng.uniform(0.5, 1.5, size=(ncol, nlev - 1))
    potential = rng.normal(size=(ncol, nlev))
    bottom, top = rng.normal(size=ncol), rng.normal(size=ncol)

    flux = njit(column_operators.diffusive_flux)(coefficient, potential, dz_faces)
    assert np.allclose(flux, column_operators.diffusive_flux(coefficient, potential, dz_faces))
    assert np.allclose(
        njit(column_operators.flux_divergence)(flux, bottom, top, dz),
        column_operators.flux_divergence(flux, bottom, top, dz),
    )
    assert np.allclose(
        njit(column_operators.face_mean)(potential), column_operators.face_mean(potential)
    )
    for jitted, expected in zip(
        njit(column_operators.diffusion_bands)(coefficient, np.ones((ncol, nlev)), dz_faces, dz),
        column_operators.diffusion_bands(coefficient, np.ones((ncol, nlev)), dz_faces, dz),
    ):
        assert np.allclose(jitted, expected)


def test_jitted_model_matches_numpy(tiny_model_setup, restore_kernels):
    """
    Run the tiny model with the NumPy kernels, then again after jit_modules
    has replaced them, and check that both runs agree.
    """
    context = configuration.get_context(tiny_model_setup)
    prob, ode_algo, dt, cb = benchmark.setup_simulation(tiny_model_setup, context)
    expected = integrator.solve(prob, ode_algo, dt, callback=cb).u

    configuration.jit_modules()
    assert hasattr(column_operators.thomas_solve, "__wrapped__")
    prob, ode_algo, dt, cb = benchmark.setup_simulation(tiny_model_setup, context)
    result = integrator.solve(prob, ode_algo, dt, callback=cb).u
    for (path, a), (_, b) in zip(result.leaves(), expected.leaves()):
        assert np.allclose(a, b, rtol=1e-8, atol=1e-12), path
