"""
Bulk single-layer snow model.

Prognostic variables (surface space):

* ``S``: snow water equivalent [m]
* ``S_l``: liquid water equivalent held in the snowpack [m]
* ``U``: snowpack internal energy per unit area [J m-2], relative to liquid
  water at the freezing point

The energy balance uses a diagnosed surface temperature, so all snow
tendencies are explicit.
"""

from dataclasses import dataclass
import numpy as np
from snowyland.core.domain import zeros
from snowyland.core.parameters import LandParameters, ParameterRegistry, resolve_defaults
from snowyland.core.state import FieldTree
from snowyland.core.surface_fluxes import bulk_fluxes, net_radiation

MODULE_NAME = "snowyland.snow.snow_model"
MIN_SNOW = 1e-8


@dataclass(frozen=True, eq=False)
class SnowParameters:
    """
    Parameters of the snow model.

    Parameters
    ----------
    dt : float
        Time step of the simulation [s]; the snowpack sheds its excess
        liquid water over one step.
    earth_param_set : LandParameters, optional
    Other values default to the registry.
    """

    dt: float
    density: float = None
    z_0m: float = None
    z_0b: float = None
    albedo: float = None
    emissivity: float = None
    theta_r: float = None
    z_crit: float = None
    kappa: float = None
    earth_param_set: LandParameters = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "density": "snow_density",
                "z_0m": "snow_momentum_roughness_length",
                "z_0b": "snow_scalar_roughness_length",
                "albedo": "snow_albedo",
                "emissivity": "snow_emissivity",
                "theta_r": "holding_capacity_of_water_in_snow",
                "z_crit": "snow_cover_fraction_crit_threshold",
                "kappa": "thermal_conductivity_of_snow",
            },
        )
        if self.earth_param_set is None:
            object.__setattr__(self, "earth_param_set", LandParameters(self.registry))


def snow_depth(S, parameters):
    return S * parameters.earth_param_set.rho_l / parameters.density


def snow_cover_fraction(S, parameters):
    return np.clip(snow_depth(S, parameters) / parameters.z_crit, 0.0, 1.0)


def specific_heat_capacity(S, S_l, earth_param_set):
    """Heat capacity of the snowpack per unit area [J m-2 K-1]."""
    eps = earth_param_set
    return eps.rho_l * ((S - S_l) * eps.cp_i + S_l * eps.cp_l)


def snow_temperature(U, S, S_l, earth_param_set):
    """Bulk temperature; the freezing point while the pack is melting."""
    eps = earth_param_set
    ice = np.maximum(S - S_l, 0.0)
    c = np.maximum(specific_heat_capacity(S, S_l, eps), 1e-6)
    T = eps.T_freeze + (U + eps.rho_l * ice * eps.LH_f0) / c
    melting = (U > -eps.rho_l * ice * eps.LH_f0) & (U <= 0)
    return np.where(melting, eps.T_freeze, T)


def liquid_water_equilibrium(U, S, earth_param_set):
    """Liquid content consistent with the energy of a pack at or above freezing."""
    eps = earth_param_set
    S_l = (U + eps.rho_l * S * eps.LH_f0) / (eps.rho_l * eps.LH_f0)
    return np.clip(S_l, 0.0, np.maximum(S, 0.0))


class SnowModel:
    """
    Parameters
    ----------
    parameters : SnowParameters
    domain : SphericalSurface
    """

    name = "snow"

    def __init__(self, parameters, domain):
        self.parameters = parameters
        self.domain = domain
        self.space = domain.space.surface

    def prognostic_vars(self):
        return FieldTree(S=zeros(self.space), S_l=zeros(self.space), U=zeros(self.space))

    def auxiliary_vars(self):
        names = (
            "T", "T_sfc", "snow_cover_fraction", "R_n", "shf", "lhf", "sublimation",
            "runoff", "ground_heat_flux", "water_runoff_to_soil",
        )
        return FieldTree(**{name: zeros(self.space) for name in names})

    def update_aux(self, Y, p, t):
        eps = self.parameters.earth_param_set
        snow, aux = Y.snow, p.snow
        aux.snow_cover_fraction[...] = snow_cover_fraction(snow.S, self.parameters)
        aux.T[...] = np.where(
            snow.S > MIN_SNOW,
            snow_temperature(snow.U, snow.S, snow.S_l, eps),
            np.minimum(p.drivers.T, eps.T_freeze),
        )
        aux.T_sfc[...] = np.minimum(aux.T, eps.T_freeze)

    def update_boundary_fluxes(self, Y, p, soil_T_top, soil_dz_top):
        """Surface energy balance, sublimation, meltwater and ground heat flux."""
        params = self.parameters
        eps = params.earth_param_set
        snow, aux, drivers = Y.snow, p.snow, p.drivers
        sigma = aux.snow_cover_fraction
        R_n = net_radiation(drivers.SW_d, drivers.LW_d, params.albedo, params.emissivity,
                            aux.T_sfc, eps)
        shf, lhf, vapor = bulk_fluxes(drivers.u, drivers.T, aux.T_sfc, drivers.P, drivers.q,
                                      params.z_0m, params.z_0b, 1.0, eps)
        aux.R_n[...] = sigma * R_n
        aux.shf[...] = sigma * shf
        aux.lhf[...] = sigma * lhf
        # cannot sublimate more than the pack holds
        aux.sublimation[...] = np.minimum(sigma * vapor, np.maximum(snow.S, 0.0) / params.dt)
        excess = np.maximum(snow.S_l - params.theta_r * snow.S, 0.0)
        aux.runoff[...] = excess / params.dt
        # melt water reaching the soil, as a downward (negative) flux
        aux.water_runoff_to_soil[...] = -aux.runoff
        depth = np.maximum(snow_depth(snow.S, params), MIN_SNOW)
        aux.ground_heat_flux[...] = np.where(
            snow.S > MIN_SNOW,
            sigma * params.kappa * (aux.T - soil_T_top) / (0.5 * depth + 0.5 * soil_dz_top),
            0.0,
        )

    def explicit_tendency(self, dY, Y, p, t):
        params = self.parameters
        eps = params.earth_param_set
        snow, aux, drivers = Y.snow, p.snow, p.drivers
        sigma = aux.snow_cover_fraction
        snowfall = -drivers.P_snow
        rain_on_snow = -drivers.P_liq * sigma
        S_l_eq = liquid_water_equilibrium(snow.U, snow.S, eps)
        dY.snow.S[...] = snowfall + rain_on_snow - aux.sublimation - aux.runoff
        dY.snow.S_l[...] = (
            (S_l_eq - snow.S_l) / params.dt + rain_on_snow - aux.runoff
        )
        # fresh snow arrives at the air temperature (capped at freezing)
        T_snowfall = np.minimum(drivers.T, eps.T_freeze)
        snowfall_energy = snowfall * eps.rho_l * (
            eps.cp_i * (T_snowfall - eps.T_freeze) - eps.LH_f0
        )
        dY.snow.U[...] = (
            aux.R_n - aux.shf - aux.lhf - aux.ground_heat_flux + snowfall_energy
        )

    def implicit_tendency(self, dY, Y, p, t):
        dY.snow.S[...] = 0.0
        dY.snow.S_l[...] = 0.0
        dY.snow.U[...] = 0.0
