"""
Global run of the coupled soil, canopy and snow land model, forced by ERA5,
and its performance benchmark.

Simulation setup (defaults, see ``snowyland.core.configuration.DEFAULTS``):

* 101 horizontal elements per cubed-sphere panel edge, 15 soil layers
* soil depth 50 m
* 6 hours simulated with a 450 s step
* ARS111 IMEX stepper, Newton's method with 3 fixed iterations and a new
  Jacobian every iteration
* atmospheric and radiative forcing refreshed every 3 hours

Lateral flow is not modelled.

Two benchmark modes are supported. ``flamegraph`` times repeated independent
solves and writes a compute and an allocation flame graph (or, on a GPU,
records a CUDA profiler trace). ``nsight`` steps a fresh problem four times,
for an external profiler to capture. When the ``BUILDKITE_PIPELINE_SLUG``
environment variable matches the benchmark pipeline, the mean time is also
checked against the previous best time.
"""

import datetime
import math
import os
import time
import numpy as np
from snowyland.canopy.canopy_model import (
    AutotrophicRespirationModel,
    BigLeafEnergyModel,
    CanopyComponents,
    FarquharModel,
    MedlynConductanceModel,
    PlantHydraulicsModel,
    TwoStreamModel,
)
from snowyland.canopy.parameters import (
    AutotrophicRespirationParameters,
    BigLeafEnergyParameters,
    FarquharParameters,
    LinearRetentionCurve,
    MedlynConductanceParameters,
    PlantHydraulicsParameters,
    PrescribedSiteAreaIndex,
    SharedCanopyParameters,
    TwoStreamParameters,
    Weibull,
    clm_canopy_radiation_parameters,
    clm_medlyn_g1,
    clm_photosynthesis_parameters,
    clm_rooting_depth,
)
from snowyland.core import integrator, land_model, profiling
from snowyland.core.configuration import (
    Device,
    create_output_folders,
    get_context,
    jit_modules,
    output_directory,
)
from snowyland.core.domain import full, global_domain
from snowyland.core.errors import InvalidModeError, RegressionAssertionFailure
from snowyland.core.initial_conditions import set_initial_conditions
from snowyland.core.parameters import LandParameters
from snowyland.met_data import artifacts
from snowyland.met_data.forcing import prescribed_forcing_era5, prescribed_lai_modis
from snowyland.met_data.time_varying_input import (
    LinearInterpolation,
    PeriodicCalendar,
    TimeVaryingInput,
)
from snowyland.snow.snow_model import SnowParameters
from snowyland.soil.parameters import (
    CLMTwoBandSoilAlbedo,
    PrescribedSoilOrganicCarbon,
    SoilCO2ModelParameters,
    TOPMODELRunoff,
    clm_soil_albedo_parameters,
    energy_hydrology_parameters,
    soil_composition_parameters,
    soil_vangenuchten_parameters,
    topmodel_fmax,
)

MODULE_NAME = "snowyland.core.benchmark"
PROFILER_MODES = ("flamegraph", "nsight")
PIPELINE_ENV_VAR = "BUILDKITE_PIPELINE_SLUG"
NSIGHT_STEPS = 4

# Soil
SPECIFIC_STORAGE = 1e-3  # 1/m
TOPMODEL_F_OVER = 3.28  # 1/m
TOPMODEL_R_SB = 1.484e-4 / 1000  # m/s
SOIL_ORGANIC_CARBON = 5.0  # kg C/m3

# Canopy energy balance and plant hydraulics
AC_CANOPY = 2.5e3  # J/m2/K
SAI = 0.0  # m2/m2
RAI = 1.0  # m2/m2
K_SAT_PLANT = 5e-9  # m/s
PSI63 = -4 / 0.0098  # -4 MPa, in m
WEIBULL_C = 4.0
RETENTION_A = 0.05 * 0.0098  # bulk modulus of elasticity, per m
PLANT_NU = 1.44e-4  # m3/m3
PLANT_S_S = 1e-2 * 0.0098  # m3/m3/MPa to m3/m3/m
N_STEM = 0
N_LEAF = 1
H_STEM = 0.0  # m
H_LEAF = 1.0  # m
ZMAX = 0.0  # m


def land_model_arguments(t0, dt, nelements=(101, 15), npolynomial=0, context=None,
                         start_year=2008, lowres_forcing=True, registry=None):
    """
    Read the datasets and build the domain, forcing and parameter bundles of
    the land model.

    Returns
    -------
    dict
        Keyword arguments of ``land_model.LandModel``.
    """
    earth_param_set = LandParameters(registry)
    domain = global_domain(nelements=nelements, npolynomial=npolynomial)
    surface_space = domain.space.surface
    subsurface_space = domain.space.subsurface
    start_date = datetime.datetime(start_year, 1, 1)
    time_interpolation_method = LinearInterpolation(PeriodicCalendar())

    # Forcing data
    era5_ncdata_path = artifacts.era5_land_forcing_data2008_path(context, lowres=lowres_forcing)
    atmos, radiation = prescribed_forcing_era5(
        era5_ncdata_path,
        surface_space,
        start_date,
        earth_param_set,
        time_interpolation_method=time_interpolation_method,
    )

    # Soil
    composition = soil_composition_parameters(subsurface_space, context)
    vangenuchten = soil_vangenuchten_parameters(subsurface_space, context)
    soil_albedo = CLMTwoBandSoilAlbedo(**clm_soil_albedo_parameters(surface_space, context))
    soil_params = energy_hydrology_parameters(
        **composition,
        **vangenuchten,
        S_s=full(subsurface_space, SPECIFIC_STORAGE),
        albedo=soil_albedo,
        subsurface_space=subsurface_space,
        registry=registry,
        earth_param_set=earth_param_set,
    )
    runoff_model = TOPMODELRunoff(
        f_over=TOPMODEL_F_OVER,
        f_max=topmodel_fmax(surface_space, context),
        R_sb=TOPMODEL_R_SB,
    )

    # Soil microbes
    soilco2_ps = SoilCO2ModelParameters(registry=registry)
    Csom = PrescribedSoilOrganicCarbon(TimeVaryingInput.from_function(lambda t: SOIL_ORGANIC_CARBON))

    # Spatially varying canopy parameters from CLM
    g1 = clm_medlyn_g1(surface_space, context)
    rooting_depth = clm_rooting_depth(surface_space, context)
    photosynthesis = clm_photosynthesis_parameters(surface_space, context)
    radiation_params = clm_canopy_radiation_parameters(surface_space, context)

    year = (start_date + datetime.timedelta(seconds=t0)).year
    modis_lai_ncdata_path = artifacts.modis_lai_single_year_path(context, year=year)
    LAIfunction = prescribed_lai_modis(
        modis_lai_ncdata_path,
        surface_space,
        start_date,
        time_interpolation_method=time_interpolation_method,
    )
    plant_hydraulics_ps = PlantHydraulicsParameters(
        ai_parameterization=PrescribedSiteAreaIndex(LAIfunction, SAI, RAI),
        nu=PLANT_NU,
        S_s=PLANT_S_S,
        rooting_depth=rooting_depth,
        conductivity_model=Weibull(K_SAT_PLANT, PSI63, WEIBULL_C),
        retention_model=LinearRetentionCurve(RETENTION_A),
    )
    h_canopy = H_STEM + H_LEAF
    if N_STEM > 0:
        compartment_midpoints = [H_STEM / 2, H_STEM + H_LEAF / 2]
        compartment_surfaces = [ZMAX, H_STEM, h_canopy]
    else:
        compartment_midpoints = [H_LEAF / 2]
        compartment_surfaces = [ZMAX, H_LEAF]
    components = CanopyComponents(
        autotrophic_respiration=AutotrophicRespirationModel(
            AutotrophicRespirationParameters(registry=registry)
        ),
        radiative_transfer=TwoStreamModel(TwoStreamParameters(**radiation_params, registry=registry)),
        photosynthesis=FarquharModel(
            FarquharParameters(photosynthesis["is_c3"], Vcmax25=photosynthesis["Vcmax25"], registry=registry)
        ),
        conductance=MedlynConductanceModel(MedlynConductanceParameters(g1=g1, registry=registry)),
        hydraulics=PlantHydraulicsModel(
            plant_hydraulics_ps, N_STEM, N_LEAF, compartment_midpoints, compartment_surfaces
        ),
        energy=BigLeafEnergyModel(BigLeafEnergyParameters(AC_CANOPY)),
    )
    z0_m = 0.13 * h_canopy
    shared_params = SharedCanopyParameters(z0_m, 0.1 * z0_m, earth_param_set)

    # Snow
    snow_parameters = SnowParameters(dt, earth_param_set=earth_param_set, registry=registry)

    return {
        "domain": domain,
        "inputs": land_model.LandInputs(atmos, radiation, runoff_model, Csom),
        "soil_parameters": soil_params,
        "soilco2_parameters": soilco2_ps,
        "canopy_components": components,
        "canopy_parameters": shared_params,
        "snow_parameters": snow_parameters,
    }


def setup_prob(t0, tf, dt, nelements=(101, 15), npolynomial=0, context=None,
               start_year=2008, lowres_forcing=True, driver_update_interval=3600 * 3,
               registry=None):
    """
    Build the land model and the ODE problem for one run.

    Every call reads the datasets again and builds a fresh domain, model,
    state and cache, so that problems from separate calls share nothing.

    Parameters
    ----------
    t0, tf : float
        Start and end of the simulation [s since 1 January of ``start_year``].
    dt : float
        Time step [s]; also sets the snow model's runoff timescale.
    nelements : tuple of int
        (horizontal elements per panel edge, soil layers).
    context : CommsContext, optional
        Used to locate the datasets.
    driver_update_interval : float
        Interval between forcing updates [s].
    registry : ParameterRegistry, optional
        Parameter defaults; the built-in table if not given.

    Returns
    -------
    prob : ODEProblem
    cb : DriverUpdateCallback
    """
    land = land_model.LandModel(
        **land_model_arguments(
            t0,
            dt,
            nelements=nelements,
            npolynomial=npolynomial,
            context=context,
            start_year=start_year,
            lowres_forcing=lowres_forcing,
            registry=registry,
        )
    )
    Y, p, _ = land.initialize()
    set_initial_conditions(Y, land, t0)

    set_initial_cache = land.make_set_initial_cache()
    exp_tendency = land.make_exp_tendency()
    imp_tendency = land.make_imp_tendency()
    jacobian = land.make_jacobian()
    set_initial_cache(p, Y, t0)

    prob = integrator.ODEProblem(
        integrator.ClimaODEFunction(
            T_exp=exp_tendency,
            T_imp=integrator.ODEFunction(
                imp_tendency,
                jac_prototype=integrator.FieldMatrixWithSolver(Y),
                Wfact=jacobian,
            ),
            dss=land_model.dss,
        ),
        Y,
        (t0, tf),
        p,
    )
    updateat = integrator.driver_update_times(t0, tf, driver_update_interval)
    updatefunc = land_model.make_update_drivers(land.get_drivers())
    cb = integrator.DriverUpdateCallback(updateat, updatefunc)
    return prob, cb


def setup_simulation(model_setup, context=None, greet=False):
    """
    Returns
    -------
    prob : ODEProblem
    ode_algo : IMEXAlgorithm
    dt : float
    cb : DriverUpdateCallback
    """
    t0, tf, dt = model_setup.t0, model_setup.tf, model_setup.dt
    nelements = tuple(model_setup.nelements)
    if greet:
        print(f"{MODULE_NAME}.setup_simulation: Run: Global Soil-Canopy-Snow Model")
        print(f"{MODULE_NAME}.setup_simulation: Resolution: {nelements}")
        print(f"{MODULE_NAME}.setup_simulation: Timestep: {dt} s")
        print(f"{MODULE_NAME}.setup_simulation: Duration: {tf - t0} s")

    prob, cb = setup_prob(
        t0,
        tf,
        dt,
        nelements=nelements,
        npolynomial=model_setup.npolynomial,
        context=context,
        start_year=model_setup.start_year,
        lowres_forcing=model_setup.lowres_forcing,
        driver_update_interval=model_setup.driver_update_interval,
    )
    ode_algo = integrator.IMEXAlgorithm(
        integrator.ARS111(),
        integrator.NewtonsMethod(
            max_iters=model_setup.newton_max_iters,
            update_j=integrator.UpdateEvery(integrator.NewNewtonIteration),
        ),
    )
    return prob, ode_algo, dt, cb


def round_sigdigits(x, sigdigits=3):
    """Round to a number of significant digits (not decimal places)."""
    if x == 0 or not np.isfinite(x):
        return x
    return round(x, sigdigits - 1 - int(math.floor(math.log10(abs(x)))))


def timing_statistics(timings_s):
    """
    Summary statistics of a set of timing samples [s], each rounded to three
    significant digits. The standard deviation is the population standard
    deviation about the rounded mean.

    Returns
    -------
    dict or None
        ``num_samples``, ``average``, ``max``, ``min`` and ``std``; None if
        there are no samples.
    """
    num_samples = len(timings_s)
    if num_samples == 0:
        return None
    timings = np.asarray(timings_s, dtype=np.float64)
    average = round_sigdigits(float(np.sum(timings) / num_samples))
    std = round_sigdigits(float(np.sqrt(np.sum((timings - average) ** 2) / num_samples)))
    return {
        "num_samples": num_samples,
        "average": average,
        "max": round_sigdigits(float(np.max(timings))),
        "min": round_sigdigits(float(np.min(timings))),
        "std": std,
    }


def report_timing(stats):
    func_name = f"{MODULE_NAME}.report_timing"
    if stats is None:
        print(f"{func_name}: Num samples: 0 (no samples completed within the time budget)")
        return
    print(f"{func_name}: Num samples: {stats['num_samples']}")
    print(f"{func_name}: Average time: {stats['average']} s")
    print(f"{func_name}: Max time: {stats['max']} s")
    print(f"{func_name}: Min time: {stats['min']} s")
    print(f"{func_name}: Standard deviation time: {stats['std']} s")


def check_performance(average_timing_s, std_timing_s, previous_best_time):
    """
    Compare the mean time of this run with the previous best.

    Prints a notice if the mean is more than one standard deviation away from
    the previous best.

    Raises
    ------
    RegressionAssertionFailure
        If the mean is more than two standard deviations away.
    """
    func_name = f"{MODULE_NAME}.check_performance"
    if average_timing_s > previous_best_time + std_timing_s:
        print(
            f"{func_name}: Possible performance regression, previous average"
            f" time was {previous_best_time}"
        )
    elif average_timing_s < previous_best_time - std_timing_s:
        print(
            f"{func_name}: Possible significant performance improvement, please"
            " update previous_best_time in the benchmark setup"
        )
    lower = previous_best_time - 2 * std_timing_s
    upper = previous_best_time + 2 * std_timing_s
    if not lower <= average_timing_s <= upper:
        raise RegressionAssertionFailure(
            f"{func_name}: Average time {average_timing_s} s is outside"
            f" [{lower:.3g}, {upper:.3g}] s (previous best {previous_best_time} s,"
            f" standard deviation {std_timing_s} s)"
        )
    print(f"{func_name}: Performance test passed")


def synchronize(device):
    if device is Device.GPU:
        import cupy

        cupy.cuda.get_current_stream().synchronize()


def elapsed(device, func, *args, **kwargs):
    """Wall-clock time [s] of ``func``, including any queued device work."""
    tic = time.perf_counter()
    func(*args, **kwargs)
    synchronize(device)
    return time.perf_counter() - tic


def run_flamegraph(model_setup, context, outdir, simulation=setup_simulation):
    """
    Warm-up solve, then timed solves until ``max_profiling_samples`` are
    collected or ``max_profiling_time`` seconds have passed, then one profiled
    solve per flame graph. On a GPU the last step is one CUDA profiled solve
    instead; the model arrays are NumPy arrays, so the trace only brackets
    host work.

    Returns
    -------
    dict or None
        The timing statistics (see ``timing_statistics``).
    """
    func_name = f"{MODULE_NAME}.run_flamegraph"
    device = context.device
    prob, ode_algo, dt, cb = simulation(model_setup, context, greet=True)
    print(f"{func_name}: Starting profiling")
    profiling.memory_tracker("warm-up solve")(integrator.solve)(prob, ode_algo, dt, callback=cb)

    time_now = time.time()
    timings_s = []
    while (
        time.time() - time_now < model_setup.max_profiling_time
        and len(timings_s) < model_setup.max_profiling_samples
    ):
        lprob, lode_algo, ldt, lcb = simulation(model_setup, context)
        timings_s.append(elapsed(device, integrator.solve, lprob, lode_algo, ldt, callback=lcb))
    stats = timing_statistics(timings_s)
    report_timing(stats)
    print(f"{func_name}: Done profiling")

    if device is Device.GPU:
        lprob, lode_algo, ldt, lcb = simulation(model_setup, context)
        profiling.profile_gpu(integrator.solve, lprob, lode_algo, ldt, callback=lcb)
        print(f"{func_name}: Recorded a CUDA profile of one solve")
    else:
        # flame graphs can be misleading on GPUs, so only make them on the CPU
        prob, ode_algo, dt, cb = simulation(model_setup, context)
        _, tree = profiling.profile_compute(integrator.solve, prob, ode_algo, dt, callback=cb)
        flame_file = os.path.join(outdir, f"flame_{device.suffix}.html")
        profiling.write_flame_html(flame_file, tree, "Compute flame graph", unit="s")
        print(f"{func_name}: Saved compute flame to {flame_file}")

        prob, ode_algo, dt, cb = simulation(model_setup, context)
        _, tree = profiling.profile_allocations(integrator.solve, prob, ode_algo, dt, callback=cb)
        alloc_flame_file = os.path.join(outdir, f"alloc_flame_{device.suffix}.html")
        profiling.write_flame_html(alloc_flame_file, tree, "Allocation flame graph", unit="bytes")
        print(f"{func_name}: Saved allocation flame to {alloc_flame_file}")

    if os.environ.get(PIPELINE_ENV_VAR) == model_setup.benchmark_pipeline_slug:
        if stats is None:
            print(f"{func_name}: No timing samples, skipping the performance check")
        else:
            check_performance(stats["average"], stats["std"], model_setup.previous_best_time)
    return stats


def run_nsight(model_setup, context, simulation=setup_simulation):
    """
    One full solve to warm up, then four steps of a fresh problem for an
    external profiler to record. Nothing is timed here.

    Returns
    -------
    Integrator
        The integrator after the four steps.
    """
    prob, ode_algo, dt, cb = simulation(model_setup, context, greet=True)
    integrator.solve(prob, ode_algo, dt, callback=cb)
    prob, ode_algo, dt, cb = simulation(model_setup, context)
    stepper = integrator.init(prob, ode_algo, dt, callback=cb)
    for _ in range(NSIGHT_STEPS):
        stepper.step()
    return stepper


def run_benchmark(profiler, model_setup, simulation=setup_simulation):
    """
    Run the benchmark in the requested mode.

    Parameters
    ----------
    profiler : str
        ``"flamegraph"`` or ``"nsight"``.
    model_setup : ModelSetup
        With every setup value present (see
        ``create_defaults_for_missing_flags``).
    simulation : callable, optional
        ``simulation(model_setup, context, greet=False)`` returning
        ``(prob, ode_algo, dt, cb)``; ``setup_simulation`` by default.

    Raises
    ------
    InvalidModeError
        If ``profiler`` is not a supported mode. Nothing is run.
    """
    func_name = f"{MODULE_NAME}.run_benchmark"
    if profiler not in PROFILER_MODES:
        raise InvalidModeError(
            f"{func_name}: Profiler choice <{profiler}> not supported. Choose one"
            f" of {', '.join(PROFILER_MODES)}."
        )
    print(f"{func_name}: Starting profiling with {profiler}")
    context = get_context(model_setup)
    if model_setup.use_numba:
        jit_modules()
    outdir = create_output_folders(output_directory(model_setup.output_root, context.device))
    if profiler == "flamegraph":
        return run_flamegraph(model_setup, context, outdir, simulation=simulation)
    return run_nsight(model_setup, context, simulation=simulation)
