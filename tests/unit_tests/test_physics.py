import numpy as np
import pytest
from snowyland.canopy.canopy_model import PlantHydraulicsModel, root_fractions
from snowyland.canopy.parameters import LinearRetentionCurve, Weibull
from snowyland.core.errors import ConfigurationError
from snowyland.core.parameters import LandParameters
from snowyland.core.surface_fluxes import (
    bulk_fluxes,
    exchange_coefficient,
    net_radiation,
    saturation_specific_humidity,
)
from snowyland.met_data.forcing import solar_zenith_angle, specific_humidity_from_dewpoint
from snowyland.snow.snow_model import (
    SnowParameters,
    liquid_water_equilibrium,
    snow_cover_fraction,
    snow_temperature,
    specific_heat_capacity,
)
from snowyland.soil.energy_hydrology import (
    effective_saturation,
    temperature_from_rho_e_int,
    volumetric_internal_energy,
)

EPS = LandParameters()


def test_net_radiation_of_a_black_body():
    T = np.array([273.15])
    R_n = net_radiation(100.0, 300.0, 0.2, 1.0, T, EPS)
    assert R_n == pytest.approx(80.0 + 300.0 - EPS.Stefan * 273.15**4)


def test_sensible_heat_follows_the_temperature_difference():
    wind = np.full(3, 3.0)
    T_air = np.full(3, 280.0)
    T_sfc = np.array([275.0, 280.0, 285.0])
    P = np.full(3, 1e5)
    q = np.full(3, 0.003)
    shf, lhf, vapor = bulk_fluxes(wind, T_air, T_sfc, P, q, 0.01, 0.001, 1.0, EPS)
    assert shf[0] < 0
    assert shf[1] == 0.0
    assert shf[2] > 0
    assert np.allclose(lhf, EPS.LH_v0 * vapor * EPS.rho_l)
    _, _, dry = bulk_fluxes(wind, T_air, T_sfc, P, q, 0.01, 0.001, 0.0, EPS)
    assert np.all(dry == 0.0)


def test_stability_correction():
    T_sfc = np.array([270.0, 280.0, 290.0])
    CT = exchange_coefficient(3.0, 280.0, T_sfc, 0.01, 0.001, 10.0, EPS.karman, EPS.grav)
    neutral = EPS.karman**2 / (np.log(10.0 / 0.01) * np.log(10.0 / 0.001))
    # stable (cold surface) < neutral < unstable (warm surface)
    assert CT[0] < CT[1] < CT[2]
    assert CT[1] == pytest.approx(neutral)


def test_humidity():
    q_sat = saturation_specific_humidity(np.array([260.0, 280.0, 300.0]), 1e5)
    assert np.all(np.diff(q_sat) > 0)
    assert specific_humidity_from_dewpoint(280.0, 1e5) < specific_humidity_from_dewpoint(290.0, 1e5)


def test_solar_zenith_angle():
    equinox = 79 * 86400.0
    noon = solar_zenith_angle(0.0, 0.0, equinox, 12 * 3600.0)
    midnight = solar_zenith_angle(0.0, 0.0, equinox, 0.0)
    assert noon < 0.1
    assert midnight > np.pi / 2


def test_snow_temperature_and_melt():
    S = np.array([0.1, 0.1, 0.1])
    latent = EPS.rho_l * S * EPS.LH_f0
    cold = -latent - specific_heat_capacity(S, 0.0, EPS) * 10.0
    U = np.array([cold[0], -0.5 * latent[1], 0.0])
    S_l = np.array([0.0, 0.05, 0.1])
    T = snow_temperature(U, S, S_l, EPS)
    assert T[0] == pytest.approx(EPS.T_freeze - 10.0)
    assert T[1] == pytest.approx(EPS.T_freeze)
    assert T[2] == pytest.approx(EPS.T_freeze)
    assert np.allclose(liquid_water_equilibrium(U, S, EPS), [0.0, 0.05, 0.1])


def test_snow_cover_fraction():
    params = SnowParameters(450.0, earth_param_set=EPS)
    assert params.density == pytest.approx(200.0)
    sigma = snow_cover_fraction(np.array([0.0, 1e-4, 10.0]), params)
    assert sigma[0] == 0.0
    assert 0.0 < sigma[1] < 1.0
    assert sigma[2] == 1.0


def test_xylem_conductivity():
    weibull = Weibull(K_sat=5e-9, psi63=-400.0, c=4.0)
    assert weibull.conductivity(np.array([0.0, 1.0])) == pytest.approx([5e-9, 5e-9])
    assert weibull.conductivity(-400.0) == pytest.approx(5e-9 * np.exp(-1.0))
    retention = LinearRetentionCurve(0.05 * 0.0098)
    S = np.array([0.5, 0.9, 1.0])
    assert np.allclose(retention.inverse_potential(retention.potential(S)), S)
    assert retention.potential(1.0) == 0.0


def test_root_fractions():
    z = np.tile(np.array([-3.0, -1.0, -0.25]), (2, 1))
    dz = np.tile(np.array([2.0, 1.5, 0.5]), (2, 1))
    fractions = root_fractions(z, dz, np.array([0.5, 2.0]))
    assert np.allclose(fractions.sum(axis=1), 1.0)
    # shallow roots put relatively more of their mass in the top layer
    assert fractions[0, -1] > fractions[1, -1]


def test_compartment_geometry_is_checked():
    with pytest.raises(ConfigurationError):
        PlantHydraulicsModel(None, 1, 1, [0.5], [0.0, 1.0])
    model = PlantHydraulicsModel(None, 0, 1, [0.5], [0.0, 1.0])
    assert model.n_compartments == 1
    assert model.thickness(0) == 1.0


def test_soil_energy_and_saturation():
    rho_c_s = np.array([2e6, 2.5e6])
    theta_i = np.array([0.0, 0.1])
    T = np.array([270.0, 280.0])
    rho_e_int = volumetric_internal_energy(theta_i, rho_c_s, T, EPS)
    assert np.allclose(temperature_from_rho_e_int(rho_e_int, theta_i, rho_c_s, EPS), T)
    assert effective_saturation(0.45, 0.0, 0.45, 0.05) == pytest.approx(1.0)
    assert effective_saturation(0.05, 0.0, 0.45, 0.05) == pytest.approx(0.0)
