"""
Vertical column kernels used by the implicit tendencies and the Jacobian
solve. Every function works on arrays of shape (ncolumns, nlevels) and loops
only over levels, so they vectorise across columns under NumPy and compile
under Numba (see ``snowyland.core.configuration.jit_modules``).
"""

import numpy as np


def thomas_solve(lower, diag, upper, rhs):
    """
    Solve a batch of tridiagonal systems, one per column.

    Parameters
    ----------
    lower : array_like, float, dimension(ncolumns, nlevels)
        Sub-diagonal; ``lower[:, k]`` couples level k to level k - 1.
        ``lower[:, 0]`` is ignored.
    diag : array_like, float, dimension(ncolumns, nlevels)
        Main diagonal.
    upper : array_like, float, dimension(ncolumns, nlevels)
        Super-diagonal; ``upper[:, k]`` couples level k to level k + 1.
        ``upper[:, -1]`` is ignored.
    rhs : array_like, float, dimension(ncolumns, nlevels)
        Right-hand side.

    Returns
    -------
    x : np.ndarray, float, dimension(ncolumns, nlevels)
    """
    nlev = diag.shape[1]
    c_prime = np.zeros_like(diag)
    d_prime = np.zeros_like(diag)
    c_prime[:, 0] = upper[:, 0] / diag[:, 0]
    d_prime[:, 0] = rhs[:, 0] / diag[:, 0]
    for k in range(1, nlev):
        denom = diag[:, k] - lower[:, k] * c_prime[:, k - 1]
        c_prime[:, k] = upper[:, k] / denom
        d_prime[:, k] = (rhs[:, k] - lower[:, k] * d_prime[:, k - 1]) / denom
    x = np.zeros_like(diag)
    x[:, nlev - 1] = d_prime[:, nlev - 1]
    for k in range(nlev - 2, -1, -1):
        x[:, k] = d_prime[:, k] - c_prime[:, k] * x[:, k + 1]
    return x


def face_mean(values):
    """Arithmetic mean onto the nlevels - 1 interior faces."""
    return 0.5 * (values[:, 1:] + values[:, :-1])


def diffusive_flux(coefficient, potential, dz_faces):
    """
    Upward flux ``-D * d(potential)/dz`` at interior faces, with ``D`` given
    at the faces and ``dz_faces`` the distance between adjacent centres.
    """
    return -coefficient * (potential[:, 1:] - potential[:, :-1]) / dz_faces


def flux_divergence(interior_flux, bottom_flux, top_flux, dz):
    """
    ``-dF/dz`` at layer centres from upward fluxes on every face.
    ``bottom_flux`` and ``top_flux`` have shape (ncolumns,).
    """
    ncol, nlev = dz.shape[0], dz.shape[1]
    faces = np.zeros((ncol, nlev + 1))
    faces[:, 0] = bottom_flux
    faces[:, nlev] = top_flux
    faces[:, 1:nlev] = interior_flux
    return -(faces[:, 1:] - faces[:, :-1]) / dz


def diffusion_bands(coefficient, dpotential, dz_faces, dz):
    """
    Tridiagonal derivative of ``flux_divergence(diffusive_flux(...))`` with
    respect to the prognostic variable, given ``dpotential`` (the derivative
    of the potential with respect to that variable) at layer centres.

    Returns
    -------
    lower, diag, upper : np.ndarray, dimension(ncolumns, nlevels)
    """
    ncol, nlev = dz.shape[0], dz.shape[1]
    conductance = coefficient / dz_faces
    lower = np.zeros((ncol, nlev))
    diag = np.zeros((ncol, nlev))
    upper = np.zeros((ncol, nlev))
    # face k + 1/2 sits between level k and level k + 1
    upper[:, : nlev - 1] = conductance * dpotential[:, 1:] / dz[:, : nlev - 1]
    lower[:, 1:] = conductance * dpotential[:, : nlev - 1] / dz[:, 1:]
    diag[:, : nlev - 1] -= conductance * dpotential[:, : nlev - 1] / dz[:, : nlev - 1]
    diag[:, 1:] -= conductance * dpotential[:, 1:] / dz[:, 1:]
    return lower, diag, upper
