import os
import numpy as np
import pytest
from snowyland.core import benchmark, integrator
from snowyland.core.configuration import create_defaults_for_missing_flags
from snowyland.core.domain import full, global_domain
from snowyland.core.driver import snowy_land
from snowyland.core.errors import InvalidModeError, RegressionAssertionFailure
from snowyland.core.load_model_setup import ModelSetup
from snowyland.core.state import Cache, FieldTree, StateVector


class CountingSimulation:
    """
    Stands in for setup_simulation: a one-variable decay problem on a small
    surface, counting how often it is built.
    """

    def __init__(self):
        self.calls = 0

    def __call__(self, model_setup, context=None, greet=False):
        self.calls += 1
        space = global_domain(nelements=(2, 2)).space.surface
        Y = StateVector(x=FieldTree(y=full(space, 1.0)))

        def exp_tendency(dY, Y, p, t):
            dY.x.y[...] = 0.0

        def imp_tendency(dY, Y, p, t):
            dY.x.y[...] = -1e-4 * Y.x.y

        def jacobian(W, Y, p, dtgamma, t):
            W.reset(dtgamma)
            W.set_block(("x", "y"), np.full(space.shape, -1e-4))

        prob = integrator.ODEProblem(
            integrator.ClimaODEFunction(
                T_exp=exp_tendency,
                T_imp=integrator.ODEFunction(
                    imp_tendency, jac_prototype=integrator.FieldMatrixWithSolver(Y), Wfact=jacobian
                ),
                dss=lambda Y, p, t: None,
            ),
            Y,
            (model_setup.t0, model_setup.tf),
            Cache(),
        )
        cb = integrator.DriverUpdateCallback(
            integrator.driver_update_times(
                model_setup.t0, model_setup.tf, model_setup.driver_update_interval
            ),
            lambda p, t: None,
        )
        algo = integrator.IMEXAlgorithm(integrator.ARS111(), integrator.NewtonsMethod(max_iters=1))
        return prob, algo, model_setup.dt, cb


@pytest.fixture
def fake_setup(tmp_path, monkeypatch):
    monkeypatch.delenv("BUILDKITE_PIPELINE_SLUG", raising=False)
    model_setup = ModelSetup()
    model_setup.tf = 3600.0
    model_setup.dt = 600.0
    model_setup.device = "cpu"
    model_setup.cores = 1
    model_setup.max_profiling_samples = 3
    model_setup.output_root = str(tmp_path)
    create_defaults_for_missing_flags(model_setup)
    return model_setup


def test_round_sigdigits():
    assert benchmark.round_sigdigits(0.123456) == pytest.approx(0.123)
    assert benchmark.round_sigdigits(1234.5) == pytest.approx(1230.0)
    assert benchmark.round_sigdigits(0.0) == 0.0


def test_timing_statistics():
    stats = benchmark.timing_statistics([1.0, 2.0, 3.0, 4.0])
    assert stats["num_samples"] == 4
    assert stats["average"] == pytest.approx(2.5)
    assert stats["max"] == pytest.approx(4.0)
    assert stats["min"] == pytest.approx(1.0)
    # population standard deviation
    assert stats["std"] == pytest.approx(1.12)


def test_timing_statistics_without_samples(capsys):
    assert benchmark.timing_statistics([]) is None
    benchmark.report_timing(None)
    assert "Num samples: 0" in capsys.readouterr().out


def test_check_performance_within_two_std(capsys):
    benchmark.check_performance(0.70, 0.02, 0.67)
    out = capsys.readouterr().out
    assert "Possible performance regression" in out
    assert "Performance test passed" in out


def test_check_performance_regression():
    with pytest.raises(RegressionAssertionFailure):
        benchmark.check_performance(0.80, 0.02, 0.67)


def test_check_performance_large_improvement_also_fails():
    with pytest.raises(RegressionAssertionFailure):
        benchmark.check_performance(0.50, 0.02, 0.67)


def test_invalid_mode_runs_nothing(fake_setup):
    simulation = CountingSimulation()
    with pytest.raises(InvalidModeError, match="invalid_value"):
        benchmark.run_benchmark("invalid_value", fake_setup, simulation=simulation)
    assert simulation.calls == 0
    assert not os.path.exists(os.path.join(fake_setup.output_root, "snowy_land_benchmark_cpu"))


def test_driver_reports_invalid_mode(capsys):
    simulation = CountingSimulation()
    assert snowy_land(["--profiler", "invalid_value"], simulation=simulation) == 1
    assert simulation.calls == 0
    assert "not supported" in capsys.readouterr().err


def test_flamegraph_writes_both_graphs(fake_setup):
    simulation = CountingSimulation()
    stats = benchmark.run_benchmark("flamegraph", fake_setup, simulation=simulation)
    assert stats["num_samples"] == 3
    # warm-up, samples, then one solve per flame graph
    assert simulation.calls == 1 + 3 + 2
    outdir = os.path.join(fake_setup.output_root, "snowy_land_benchmark_cpu")
    for name in ("flame_cpu.html", "alloc_flame_cpu.html"):
        with open(os.path.join(outdir, name), encoding="utf-8") as f:
            assert f.read().startswith("<!DOCTYPE html>")


def test_flamegraph_without_samples(fake_setup, monkeypatch):
    fake_setup.max_profiling_time = 0
    monkeypatch.setenv("BUILDKITE_PIPELINE_SLUG", fake_setup.benchmark_pipeline_slug)
    stats = benchmark.run_benchmark("flamegraph", fake_setup, simulation=CountingSimulation())
    assert stats is None
    outdir = os.path.join(fake_setup.output_root, "snowy_land_benchmark_cpu")
    assert os.path.exists(os.path.join(outdir, "flame_cpu.html"))


def test_performance_gate_only_in_the_benchmark_pipeline(fake_setup, monkeypatch):
    fake_setup.previous_best_time = 1e6
    benchmark.run_benchmark("flamegraph", fake_setup, simulation=CountingSimulation())
    monkeypatch.setenv("BUILDKITE_PIPELINE_SLUG", fake_setup.benchmark_pipeline_slug)
    with pytest.raises(RegressionAssertionFailure):
        benchmark.run_benchmark("flamegraph", fake_setup, simulation=CountingSimulation())


def test_nsight_steps_a_fresh_problem_four_times(fake_setup):
    simulation = CountingSimulation()
    stepper = benchmark.run_benchmark("nsight", fake_setup, simulation=simulation)
    assert simulation.calls == 2
    assert stepper.nsteps == 4
    assert stepper.t == pytest.approx(4 * fake_setup.dt)
