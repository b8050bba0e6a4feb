"""
End-to-end runs of the coupled land model on a tiny global domain, forced by
the synthetic datasets.
"""

import dataclasses
import os
import numpy as np
import pytest
from snowyland.core import benchmark, integrator, land_model
from snowyland.core.configuration import get_context
from snowyland.core.domain import full, global_domain, obtain_surface_domain
from snowyland.core.errors import ConfigurationError
from snowyland.core.state import Cache
from snowyland.snow.snow_model import SnowParameters
from snowyland.soil.parameters import VanGenuchten, energy_hydrology_parameters


@pytest.fixture
def context(tiny_model_setup):
    return get_context(tiny_model_setup)


def test_short_run_stays_finite(tiny_model_setup, context):
    prob, ode_algo, dt, cb = benchmark.setup_simulation(tiny_model_setup, context)
    assert set(prob.u0.keys()) == {"soil", "soilco2", "canopy", "snow"}
    assert prob.u0.soil.theta_l.shape == (24, 4)
    assert prob.p.initialized

    sol = integrator.solve(prob, ode_algo, dt, callback=cb)
    assert sol.t == pytest.approx(tiny_model_setup.tf)
    assert sol.nsteps == 4
    assert sol.u.all_finite()
    assert not sol.u.array_equal(prob.u0)
    assert np.all(sol.u.soil.theta_l > 0)
    assert cb.fired == [0.0, 900.0, 1800.0]


def test_setup_is_deterministic(tiny_model_setup, context):
    prob_a, algo_a, dt, cb_a = benchmark.setup_simulation(tiny_model_setup, context)
    prob_b, algo_b, _, cb_b = benchmark.setup_simulation(tiny_model_setup, context)
    assert prob_a.u0 is not prob_b.u0
    assert prob_a.u0.array_equal(prob_b.u0)

    sol_a = integrator.solve(prob_a, algo_a, dt, callback=cb_a)
    sol_b = integrator.solve(prob_b, algo_b, dt, callback=cb_b)
    assert sol_a.u.array_equal(sol_b.u)


def test_tendencies_need_the_initial_cache(tiny_model_setup, context):
    prob, _, _, _ = benchmark.setup_simulation(tiny_model_setup, context)
    fresh = Cache(**dict(prob.p.items()))
    dY = prob.u0.zeros_like()
    with pytest.raises(RuntimeError, match="not been initialized"):
        prob.f.T_exp(dY, prob.u0, fresh, 0.0)
    with pytest.raises(RuntimeError, match="not been initialized"):
        prob.f.T_imp(dY, prob.u0, fresh, 0.0)


def test_land_model_needs_a_shell(tiny_domain):
    with pytest.raises(ConfigurationError, match="SphericalShell"):
        land_model.LandModel(obtain_surface_domain(tiny_domain), None, None, None, None, None, None)


@pytest.fixture
def land_arguments(tiny_model_setup, context):
    return benchmark.land_model_arguments(
        tiny_model_setup.t0,
        tiny_model_setup.dt,
        nelements=tuple(tiny_model_setup.nelements),
        context=context,
        start_year=tiny_model_setup.start_year,
        lowres_forcing=tiny_model_setup.lowres_forcing,
    )


def soil_fields(space):
    return {
        "nu": full(space, 0.45),
        "nu_ss_om": full(space, 0.05),
        "nu_ss_quartz": full(space, 0.4),
        "nu_ss_gravel": full(space, 0.1),
        "hydrology_cm": VanGenuchten(alpha=full(space, 2.0), n=full(space, 1.5)),
        "K_sat": full(space, 1e-6),
        "S_s": full(space, 1e-3),
        "theta_r": full(space, 0.05),
    }


def test_land_model_accepts_its_own_bundles(land_arguments):
    land = land_model.LandModel(**land_arguments)
    assert land.subsurface_space is land_arguments["domain"].space.subsurface


def test_soil_from_another_domain_is_rejected(land_arguments):
    other = global_domain(nelements=(2, 4)).space.subsurface
    land_arguments["soil_parameters"] = energy_hydrology_parameters(
        **soil_fields(other), subsurface_space=other
    )
    with pytest.raises(ConfigurationError, match="EnergyHydrologyParameters"):
        land_model.LandModel(**land_arguments)


def test_soil_property_on_the_surface_is_rejected(land_arguments):
    surface = land_arguments["domain"].space.surface
    with pytest.raises(ConfigurationError, match="subsurface space"):
        energy_hydrology_parameters(**soil_fields(surface))
    land_arguments["soil_parameters"] = dataclasses.replace(
        land_arguments["soil_parameters"], K_sat=full(surface, 1e-6)
    )
    with pytest.raises(ConfigurationError, match="K_sat"):
        land_model.LandModel(**land_arguments)


def test_soil_emissivity_on_the_subsurface_is_rejected(land_arguments):
    subsurface = land_arguments["domain"].space.subsurface
    land_arguments["soil_parameters"] = dataclasses.replace(
        land_arguments["soil_parameters"], emissivity=full(subsurface, 0.96)
    )
    with pytest.raises(ConfigurationError, match="emissivity"):
        land_model.LandModel(**land_arguments)


def test_snow_field_on_the_subsurface_is_rejected(land_arguments):
    subsurface = land_arguments["domain"].space.subsurface
    land_arguments["snow_parameters"] = SnowParameters(
        450.0, albedo=full(subsurface, 0.8)
    )
    with pytest.raises(ConfigurationError, match="albedo"):
        land_model.LandModel(**land_arguments)


def test_canopy_field_on_the_subsurface_is_rejected(land_arguments):
    subsurface = land_arguments["domain"].space.subsurface
    land_arguments["canopy_parameters"] = dataclasses.replace(
        land_arguments["canopy_parameters"], z0_m=full(subsurface, 0.13)
    )
    with pytest.raises(ConfigurationError, match="z0_m"):
        land_model.LandModel(**land_arguments)


def test_flamegraph_mode(tiny_model_setup):
    stats = benchmark.run_benchmark("flamegraph", tiny_model_setup)
    assert stats["num_samples"] == tiny_model_setup.max_profiling_samples
    assert stats["min"] <= stats["average"] <= stats["max"]
    outdir = os.path.join(tiny_model_setup.output_root, "snowy_land_benchmark_cpu")
    assert os.path.isfile(os.path.join(outdir, "flame_cpu.html"))
    assert os.path.isfile(os.path.join(outdir, "alloc_flame_cpu.html"))


def test_nsight_mode(tiny_model_setup):
    stepper = benchmark.run_benchmark("nsight", tiny_model_setup)
    assert stepper.nsteps == 4
    assert stepper.t == pytest.approx(4 * tiny_model_setup.dt)
    assert stepper.u.all_finite()
