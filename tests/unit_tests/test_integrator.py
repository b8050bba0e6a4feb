import numpy as np
import pytest
from snowyland.core import integrator
from snowyland.core.domain import full
from snowyland.core.errors import ConfigurationError
from snowyland.core.state import Cache, FieldTree, StateVector


def test_driver_update_times_are_absolute():
    times = integrator.driver_update_times(0.0, 21600.0, 10800.0)
    assert times == [0.0, 10800.0, 21600.0]
    times = integrator.driver_update_times(100.0, 7300.0, 3600.0)
    assert times == [100.0, 3700.0, 7300.0]
    # the next slot would fall after tf
    times = integrator.driver_update_times(100.0, 7000.0, 3600.0)
    assert times == [100.0, 3700.0]


def test_driver_update_times_needs_positive_interval():
    with pytest.raises(ConfigurationError):
        integrator.driver_update_times(0.0, 10.0, 0.0)


def decay_problem(space, rate, t_end):
    """dy/dt = -rate * y, solved entirely by the implicit stage."""
    Y = StateVector(x=FieldTree(y=full(space, 1.0)))
    p = Cache()

    def exp_tendency(dY, Y, p, t):
        dY.x.y[...] = 0.0

    def imp_tendency(dY, Y, p, t):
        dY.x.y[...] = -rate * Y.x.y

    def jacobian(W, Y, p, dtgamma, t):
        W.reset(dtgamma)
        W.set_block(("x", "y"), np.full(space.shape, -rate))

    f = integrator.ClimaODEFunction(
        T_exp=exp_tendency,
        T_imp=integrator.ODEFunction(
            imp_tendency, jac_prototype=integrator.FieldMatrixWithSolver(Y), Wfact=jacobian
        ),
        dss=lambda Y, p, t: None,
    )
    return integrator.ODEProblem(f, Y, (0.0, t_end), p)


def ars111(max_iters=3):
    return integrator.IMEXAlgorithm(
        integrator.ARS111(),
        integrator.NewtonsMethod(
            max_iters=max_iters, update_j=integrator.UpdateEvery(integrator.NewNewtonIteration)
        ),
    )


def test_backward_euler_decay(tiny_domain):
    space = tiny_domain.space.surface
    rate, dt, nsteps = 1e-3, 100.0, 10
    prob = decay_problem(space, rate, dt * nsteps)
    sol = integrator.solve(prob, ars111(), dt)
    assert sol.t == pytest.approx(dt * nsteps)
    assert sol.nsteps == nsteps
    assert np.allclose(sol.u.x.y, (1 / (1 + rate * dt)) ** nsteps)
    # the problem's initial state is not modified
    assert np.all(prob.u0.x.y == 1.0)


def test_last_step_lands_on_tf(tiny_domain):
    prob = decay_problem(tiny_domain.space.surface, 1e-3, 250.0)
    sol = integrator.solve(prob, ars111(), 100.0)
    assert sol.t == pytest.approx(250.0)
    assert sol.nsteps == 3


def test_callback_fires_on_schedule_regardless_of_step(tiny_domain):
    space = tiny_domain.space.surface
    tf = 6 * 3600.0
    updateat = integrator.driver_update_times(0.0, tf, 3 * 3600.0)
    for dt in (450.0, 700.0, 3600.0):
        fired = []
        cb = integrator.DriverUpdateCallback(updateat, lambda p, t: fired.append(t))
        integrator.solve(decay_problem(space, 1e-5, tf), ars111(), dt, callback=cb)
        assert fired == [0.0, 10800.0, 21600.0]
        assert cb.fired == fired


def test_step_by_step(tiny_domain):
    prob = decay_problem(tiny_domain.space.surface, 1e-3, 1000.0)
    stepper = integrator.init(prob, ars111(), 100.0)
    for _ in range(4):
        stepper.step()
    assert stepper.t == pytest.approx(400.0)
    assert stepper.nsteps == 4
    assert not stepper.done


def test_tridiagonal_ldiv(tiny_domain):
    space = tiny_domain.space.subsurface
    Y = StateVector(x=FieldTree(y=full(space, 0.0)))
    W = integrator.FieldMatrixWithSolver(Y)
    W.reset(2.0)
    ncol, nlev = space.shape
    diag = np.full((ncol, nlev), -1.0)
    off = np.full((ncol, nlev), 0.25)
    W.set_block(("x", "y"), diag, lower=off, upper=off)
    b = StateVector(x=FieldTree(y=full(space, 1.0)))
    x = Y.zeros_like()
    W.ldiv(x, b)
    # (I - 2 J) x = b, with J tridiagonal (0.25, -1, 0.25)
    A = np.eye(nlev) * 3.0 - 0.5 * (np.eye(nlev, k=1) + np.eye(nlev, k=-1))
    assert np.allclose(x.x.y[0], np.linalg.solve(A, np.ones(nlev)))


def test_adaptive_is_not_supported(tiny_domain):
    prob = decay_problem(tiny_domain.space.surface, 1e-3, 10.0)
    with pytest.raises(ConfigurationError):
        integrator.init(prob, ars111(), 1.0, adaptive=True)


def test_newton_needs_an_iteration():
    with pytest.raises(ConfigurationError):
        integrator.NewtonsMethod(max_iters=0)


@pytest.mark.parametrize(
    "event, expected_calls", [(integrator.NewNewtonIteration, 12), (integrator.NewTimeStep, 4)]
)
def test_jacobian_update_frequency(tiny_domain, event, expected_calls):
    prob = decay_problem(tiny_domain.space.surface, 1e-3, 400.0)
    wfact = prob.f.T_imp.Wfact
    calls = []

    def counting_wfact(W, Y, p, dtgamma, t):
        calls.append(t)
        wfact(W, Y, p, dtgamma, t)

    prob.f.T_imp.Wfact = counting_wfact
    alg = integrator.IMEXAlgorithm(
        integrator.ARS111(),
        integrator.NewtonsMethod(max_iters=3, update_j=integrator.UpdateEvery(event)),
    )
    sol = integrator.solve(prob, alg, 100.0)
    assert len(calls) == expected_calls
    # the Jacobian of a linear problem is constant, so both schedules agree
    assert np.allclose(sol.u.x.y, (1 / (1 + 1e-3 * 100.0)) ** 4)
