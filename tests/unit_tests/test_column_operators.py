import numpy as np
import pytest
from snowyland.core import column_operators


def random_tridiagonal(ncol, nlev, seed=0):
    rng = np.random.default_rng(seed)
    lower = rng.uniform(-1, 0, size=(ncol, nlev))
    upper = rng.uniform(-1, 0, size=(ncol, nlev))
    # diagonally dominant, so the systems are well conditioned
    diag = 3.0 + rng.uniform(0, 1, size=(ncol, nlev))
    rhs = rng.normal(size=(ncol, nlev))
    return lower, diag, upper, rhs


def dense(lower, diag, upper):
    nlev = len(diag)
    A = np.diag(diag)
    A += np.diag(lower[1:], k=-1)
    A += np.diag(upper[: nlev - 1], k=1)
    return A


def test_thomas_matches_dense_solve():
    lower, diag, upper, rhs = random_tridiagonal(5, 7)
    x = column_operators.thomas_solve(lower, diag, upper, rhs)
    for col in range(5):
        expected = np.linalg.solve(dense(lower[col], diag[col], upper[col]), rhs[col])
        assert np.allclose(x[col], expected)


def test_thomas_single_level():
    x = column_operators.thomas_solve(
        np.zeros((3, 1)), np.full((3, 1), 2.0), np.zeros((3, 1)), np.ones((3, 1))
    )
    assert np.allclose(x, 0.5)


def test_flux_divergence_conserves_column_total():
    rng = np.random.default_rng(2)
    dz = np.tile(np.array([2.0, 1.0, 0.5, 0.25]), (3, 1))
    interior = rng.normal(size=(3, 3))
    bottom = rng.normal(size=3)
    top = rng.normal(size=3)
    tendency = column_operators.flux_divergence(interior, bottom, top, dz)
    # only the boundary fluxes change the column integral
    assert np.allclose(np.sum(tendency * dz, axis=1), -(top - bottom))


def test_diffusive_flux_is_down_gradient():
    potential = np.array([[0.0, 1.0, 2.0]])
    flux = column_operators.diffusive_flux(np.ones((1, 2)), potential, np.ones((1, 2)))
    # potential increases upward, so the flux is downward
    assert np.all(flux < 0)
    assert np.allclose(column_operators.face_mean(potential), [[0.5, 1.5]])


def test_diffusion_bands_match_finite_differences():
    rng = np.random.default_rng(3)
    nlev = 5
    dz = np.tile(rng.uniform(0.5, 2.0, size=nlev), (1, 1))
    dz_faces = 0.5 * (dz[:, 1:] + dz[:, :-1])
    coefficient = rng.uniform(0.5, 1.5, size=(1, nlev - 1))
    x = rng.normal(size=(1, nlev))

    def tendency(values):
        flux = column_operators.diffusive_flux(coefficient, values, dz_faces)
        return column_operators.flux_divergence(flux, np.zeros(1), np.zeros(1), dz)

    lower, diag, upper = column_operators.diffusion_bands(
        coefficient, np.ones((1, nlev)), dz_faces, dz
    )
    jac = dense(lower[0], diag[0], upper[0])
    h = 1e-6
    for k in range(nlev):
        bump = np.zeros((1, nlev))
        bump[0, k] = h
        column = (tendency(x + bump) - tendency(x - bump))[0] / (2 * h)
        assert column == pytest.approx(jac[:, k], abs=1e-6)
