"""
IMEX time stepping for the coupled land model.

The model hands the integrator a ``ClimaODEFunction`` holding its explicit
tendency, its implicit tendency (wrapped in an ``ODEFunction`` together with
a Jacobian prototype and the function that fills it), and a grid
synchronisation (DSS) function. All tendencies follow the in-place calling
convention ``T(dY, Y, p, t)``; the Jacobian is filled by
``Wfact(W, Y, p, dtgamma, t)``.

Only the ARS111 tableau (forward/backward Euler) is provided, with a
fixed-iteration Newton solve for the implicit stage.
"""

import numpy as np
from snowyland.core import column_operators
from snowyland.core.errors import ConfigurationError

MODULE_NAME = "snowyland.core.integrator"


class ODEFunction:
    """Implicit part of the right-hand side, with its Jacobian."""

    def __init__(self, T_imp, jac_prototype, Wfact):
        self.T_imp = T_imp
        self.jac_prototype = jac_prototype
        self.Wfact = Wfact

    def __call__(self, dY, Y, p, t):
        return self.T_imp(dY, Y, p, t)


class ClimaODEFunction:
    def __init__(self, T_exp, T_imp, dss):
        self.T_exp = T_exp
        self.T_imp = T_imp
        self.dss = dss


class ODEProblem:
    """
    A (right-hand side, initial state, time span, cache) bundle.

    Parameters
    ----------
    f : ClimaODEFunction
    u0 : StateVector
        Initial state. It is copied by ``init``, so the problem can be reused.
    tspan : tuple of float
        (t0, tf) [s].
    p : Cache
    """

    def __init__(self, f, u0, tspan, p):
        self.f = f
        self.u0 = u0
        self.tspan = (float(tspan[0]), float(tspan[1]))
        self.p = p


class ARS111:
    """
    Single-stage IMEX tableau: forward Euler for the explicit tendency,
    backward Euler for the implicit one.
    """

    a_explicit = np.array([[0.0, 0.0], [1.0, 0.0]])
    a_implicit = np.array([[0.0, 0.0], [0.0, 1.0]])
    b_explicit = np.array([1.0, 0.0])
    b_implicit = np.array([0.0, 1.0])

    @property
    def gamma(self):
        return self.a_implicit[1, 1]


class NewNewtonIteration:
    """Recompute the Jacobian at every Newton iteration."""


class NewTimeStep:
    """Recompute the Jacobian once per time step."""


class UpdateEvery:
    def __init__(self, event):
        self.event = event


class NewtonsMethod:
    """
    Newton's method with a fixed number of iterations. There is no
    convergence check; ``max_iters`` iterations are always performed.
    """

    def __init__(self, max_iters=3, update_j=None):
        if max_iters < 1:
            raise ConfigurationError(
                f"{MODULE_NAME}.NewtonsMethod: max_iters must be at least 1,"
                f" not {max_iters}"
            )
        self.max_iters = int(max_iters)
        self.update_j = update_j or UpdateEvery(NewNewtonIteration)

    def recompute_jacobian(self, iteration):
        if self.update_j.event is NewNewtonIteration:
            return True
        return iteration == 0


class IMEXAlgorithm:
    def __init__(self, tableau, newtons_method):
        self.tableau = tableau
        self.newtons_method = newtons_method


class FieldMatrixWithSolver:
    """
    Jacobian of the implicit tendency, stored as one block per state leaf.
    Subsurface leaves carry a tridiagonal block (coupling only within a
    column); all other leaves carry a diagonal block. Off-leaf couplings are
    not represented.

    ``ldiv`` solves ``(I - dtgamma * J) x = b``.
    """

    def __init__(self, Y):
        self.dtgamma = 0.0
        self.blocks = {}
        for path, array in Y.leaves():
            if array.ndim == 2:
                self.blocks[path] = [
                    np.zeros(array.shape),
                    np.zeros(array.shape),
                    np.zeros(array.shape),
                ]
            else:
                self.blocks[path] = [None, np.zeros(array.shape), None]

    def reset(self, dtgamma):
        self.dtgamma = float(dtgamma)
        for block in self.blocks.values():
            for band in block:
                if band is not None:
                    band[...] = 0.0

    def set_block(self, path, diag, lower=None, upper=None):
        block = self.blocks[path]
        block[1][...] = diag
        if lower is not None:
            block[0][...] = lower
        if upper is not None:
            block[2][...] = upper

    def ldiv(self, x, b):
        """Solve into the leaves of ``x`` from the leaves of ``b``."""
        dtgamma = self.dtgamma
        for (path, dst), (_, src) in zip(x.leaves(), b.leaves()):
            lower, diag, upper = self.blocks[path]
            if lower is None:
                dst[...] = src / (1.0 - dtgamma * diag)
            else:
                dst[...] = column_operators.thomas_solve(
                    -dtgamma * lower,
                    1.0 - dtgamma * diag,
                    -dtgamma * upper,
                    np.asarray(src),
                )
        return x


def driver_update_times(t0, tf, interval):
    """
    The absolute simulated times at which the forcing is refreshed:
    ``t0, t0 + interval, ...`` up to and including ``tf``.
    """
    if interval <= 0:
        raise ConfigurationError(
            f"{MODULE_NAME}.driver_update_times: interval must be positive,"
            f" not {interval}"
        )
    n = int(np.floor((tf - t0) / interval + 1e-9))
    return [t0 + i * interval for i in range(n + 1)]


class DriverUpdateCallback:
    """
    Calls ``updatefunc(p, t)`` at each time in ``updateat``. The schedule is
    fixed in advance, so the update times do not depend on the step size;
    after a step, every scheduled time that has been reached is fired with
    its own scheduled time.
    """

    def __init__(self, updateat, updatefunc):
        self.updateat = sorted(float(t) for t in updateat)
        self.updatefunc = updatefunc
        self.fired = []
        self._next = 0

    def initialize(self, integrator):
        self.fired = []
        self._next = 0
        self.affect(integrator)

    def affect(self, integrator):
        tol = 1e-9 * max(1.0, abs(integrator.dt))
        while (
            self._next < len(self.updateat)
            and self.updateat[self._next] <= integrator.t + tol
        ):
            t_update = self.updateat[self._next]
            self.updatefunc(integrator.p, t_update)
            self.fired.append(t_update)
            self._next += 1


class ODESolution:
    def __init__(self, t, u, p, nsteps):
        self.t = t
        self.u = u
        self.p = p
        self.nsteps = nsteps


class Integrator:
    """Stepping state for one solve of an ODEProblem."""

    def __init__(self, prob, alg, dt, callback=None):
        func_name = f"{MODULE_NAME}.Integrator"
        if dt <= 0:
            raise ConfigurationError(f"{func_name}: dt must be positive, not {dt}")
        self.prob = prob
        self.alg = alg
        self.dt = float(dt)
        self.t, self.tf = prob.tspan
        self.u = prob.u0.copy()
        self.p = prob.p
        self.callback = callback
        self.nsteps = 0
        f = prob.f
        self._T_exp = f.T_exp
        self._T_imp = f.T_imp
        self._dss = f.dss
        self._W = f.T_imp.jac_prototype
        if self._W is None:
            self._W = FieldMatrixWithSolver(self.u)
        # work arrays reused across steps
        self._U_hat = self.u.copy()
        self._tendency = self.u.zeros_like()
        self._residual = self.u.zeros_like()
        self._delta = self.u.zeros_like()
        if callback is not None:
            callback.initialize(self)

    @property
    def done(self):
        return self.t >= self.tf - 1e-9 * self.dt

    def step(self):
        """Advance by one step (shortened if needed to land on tf)."""
        dt = min(self.dt, self.tf - self.t)
        t, u, p = self.t, self.u, self.p
        gamma = self.alg.tableau.gamma
        newton = self.alg.newtons_method
        T_imp = self._T_imp

        # explicit stage
        self._T_exp(self._tendency, u, p, t)
        self._U_hat.assign(u).axpy(dt, self._tendency)
        self._dss(self._U_hat, p, t + dt)

        # implicit stage, starting from the explicit prediction
        u.assign(self._U_hat)
        for iteration in range(newton.max_iters):
            if newton.recompute_jacobian(iteration):
                T_imp.Wfact(self._W, u, p, gamma * dt, t + dt)
            T_imp(self._tendency, u, p, t + dt)
            self._residual.assign(u).axpy(-1.0, self._U_hat).axpy(-gamma * dt, self._tendency)
            self._W.ldiv(self._delta, self._residual)
            u.axpy(-1.0, self._delta)
            self._dss(u, p, t + dt)

        self.t = t + dt
        self.nsteps += 1
        if self.callback is not None:
            self.callback.affect(self)

    def solve(self):
        while not self.done:
            self.step()
        return ODESolution(self.t, self.u, self.p, self.nsteps)


def init(prob, alg, dt, callback=None, adaptive=False):
    if adaptive:
        raise ConfigurationError(
            f"{MODULE_NAME}.init: adaptive time stepping is not supported"
        )
    return Integrator(prob, alg, dt, callback=callback)


def solve(prob, alg, dt, callback=None, adaptive=False):
    """Integrate ``prob`` from t0 to tf with fixed step ``dt``."""
    return init(prob, alg, dt, callback=callback, adaptive=adaptive).solve()
