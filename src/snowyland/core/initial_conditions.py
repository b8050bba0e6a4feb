"""
Initial state of the land model used by the snowy land benchmark.

The values are fixed so that every benchmark sample starts from a
bit-identical state; they are not an equilibrium of the model.
"""

from snowyland.met_data.time_varying_input import evaluate
from snowyland.soil.energy_hydrology import volumetric_heat_capacity, volumetric_internal_energy

INITIAL_SOIL_TEMPERATURE = 276.85
INITIAL_SOIL_CO2 = 0.000412


def set_initial_conditions(Y, land, t0):
    """
    Write the initial state into ``Y`` in place.

    * soil liquid water halfway between residual content and porosity, no ice
    * soil internal energy of that water content at 276.85 K
    * soil CO2 at the atmospheric mixing ratio (mol CO2 per mol air)
    * plant compartments at the plant porosity
    * canopy temperature from the forcing air temperature at ``t0``
    * no snow

    Parameters
    ----------
    Y : StateVector
        As returned by ``LandModel.initialize``.
    land : LandModel
    t0 : float
        Start time of the simulation [s].

    Returns
    -------
    Y : StateVector
    """
    soil_params = land.soil.parameters
    eps = soil_params.earth_param_set
    nu, theta_r = soil_params.nu, soil_params.theta_r

    Y.soil.theta_l[...] = theta_r + (nu - theta_r) / 2
    Y.soil.theta_i[...] = 0.0
    rho_c_s = volumetric_heat_capacity(Y.soil.theta_l, Y.soil.theta_i, soil_params.rho_c_ds, eps)
    Y.soil.rho_e_int[...] = volumetric_internal_energy(
        Y.soil.theta_i, rho_c_s, INITIAL_SOIL_TEMPERATURE, eps
    )

    Y.soilco2.C[...] = INITIAL_SOIL_CO2

    plant_nu = land.canopy.components.hydraulics.parameters.nu
    for theta in Y.canopy.hydraulics.theta_l:
        theta[...] = plant_nu
    atmos, _ = land.get_drivers()
    evaluate(Y.canopy.energy.T, atmos.T, t0)

    Y.snow.S[...] = 0.0
    Y.snow.S_l[...] = 0.0
    Y.snow.U[...] = 0.0
    return Y
