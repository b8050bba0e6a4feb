"""
Bulk turbulent and radiative surface fluxes, shared by the bare soil, snow and
canopy surfaces. All functions are vectorised over columns.

Sign convention: every flux returned here is positive upward (from the
surface into the atmosphere).
"""

import numpy as np


def saturation_specific_humidity(T, P):
    """
    Specific humidity at saturation over a liquid/ice surface [kg kg-1].

    Parameters
    ----------
    T : array_like
        Surface temperature [K].
    P : array_like
        Air pressure [Pa].
    """
    p_v = 2.53e8 * np.exp(-5420 / T) * 1000
    return 0.622 * p_v / (P - 0.378 * p_v)


def exchange_coefficient(wind, T_air, T_sfc, z_0m, z_0b, h, karman, grav):
    """
    Bulk transfer coefficient for heat and moisture, with a Louis-type
    Richardson number stability correction applied to the neutral value.

    Parameters
    ----------
    wind : array_like
        Wind speed at height ``h`` [m s-1].
    T_air, T_sfc : array_like
        Air and surface temperature [K].
    z_0m, z_0b : float or array_like
        Roughness lengths for momentum and scalars [m].
    h : float
        Reference height of the forcing [m].
    """
    b = 20
    CT0 = karman**2 / (np.log(h / z_0m) * np.log(h / z_0b))
    c = 1961 * b * CT0
    Ri = grav * (T_air - T_sfc) * h / (T_air * wind**2)
    unstable = CT0 * (1 - 2 * b * Ri / (1 + c * np.abs(Ri) ** 0.5))
    stable = CT0 * (1 + b * np.maximum(Ri, 0.0)) ** -2
    return np.where(Ri < 0, unstable, stable)


def bulk_fluxes(wind, T_air, T_sfc, P, q_air, z_0m, z_0b, beta, earth_param_set):
    """
    Sensible heat, latent heat and vapour fluxes.

    Parameters
    ----------
    wind : array_like
        Wind speed [m s-1]. Clamped below at the minimum wind speed.
    T_air, T_sfc : array_like
        Air and surface temperature [K].
    P : array_like
        Air pressure [Pa].
    q_air : array_like
        Air specific humidity [kg kg-1].
    z_0m, z_0b : float or array_like
        Roughness lengths [m].
    beta : float or array_like
        Evaporation efficiency [-], 1 for a saturated surface.
    earth_param_set : LandParameters

    Returns
    -------
    shf : np.ndarray
        Sensible heat flux [W m-2].
    lhf : np.ndarray
        Latent heat flux [W m-2].
    E : np.ndarray
        Vapour flux as a volume flux of liquid water [m s-1].
    """
    eps = earth_param_set
    wind = np.maximum(wind, eps.min_wind_speed)
    rho_air = P / (eps.R_d * T_air)
    CT = exchange_coefficient(wind, T_air, T_sfc, z_0m, z_0b, eps.atmos_h, eps.karman, eps.grav)
    q_sfc = saturation_specific_humidity(T_sfc, P)
    shf = rho_air * eps.cp_d * CT * wind * (T_sfc - T_air)
    vapor = rho_air * CT * wind * beta * (q_sfc - q_air)
    lhf = eps.LH_v0 * vapor
    return shf, lhf, vapor / eps.rho_l


def net_radiation(SW_d, LW_d, albedo, emissivity, T_sfc, earth_param_set):
    """Net radiation absorbed by a surface [W m-2], positive downward."""
    LW_u = emissivity * earth_param_set.Stefan * T_sfc**4 + (1 - emissivity) * LW_d
    return (1 - albedo) * SW_d + LW_d - LW_u
