"""
Big-leaf canopy model, assembled from six components: autotrophic
respiration, radiative transfer, photosynthesis, stomatal conductance, plant
hydraulics and energy balance.

Prognostic variables (surface space):

* ``hydraulics.theta_l``: tuple of volumetric water contents, one per plant
  compartment (stems first, then leaves)
* ``energy.T``: canopy temperature [K]

Radiation, photosynthesis and conductance are diagnosed explicitly once per
step. Plant water flow and the canopy energy balance are stiff and are
treated implicitly, with a diagonal Jacobian. The physics is deliberately
simplified.
"""

from dataclasses import dataclass
import numpy as np
from snowyland.core.domain import zeros
from snowyland.core.errors import ConfigurationError
from snowyland.core.state import FieldTree
from snowyland.core.surface_fluxes import (
    bulk_fluxes,
    exchange_coefficient,
    saturation_specific_humidity,
)
from snowyland.met_data.forcing import saturation_vapor_pressure
from snowyland.met_data.time_varying_input import evaluate

MODULE_NAME = "snowyland.canopy.canopy_model"
T_REF_25C = 298.15
GAMMA_STAR_ACTIVATION = 37830.0
KC_ACTIVATION = 79430.0
KO_ACTIVATION = 36380.0


class AutotrophicRespirationModel:
    def __init__(self, parameters):
        self.parameters = parameters


class TwoStreamModel:
    def __init__(self, parameters):
        self.parameters = parameters


class FarquharModel:
    def __init__(self, parameters):
        self.parameters = parameters


class MedlynConductanceModel:
    def __init__(self, parameters):
        self.parameters = parameters


class PlantHydraulicsModel:
    """
    Parameters
    ----------
    parameters : PlantHydraulicsParameters
    n_stem, n_leaf : int
        Number of stem and leaf compartments.
    compartment_midpoints : list of float
        Height of the centre of each compartment [m].
    compartment_surfaces : list of float
        Heights of the compartment boundaries [m], ``n_stem + n_leaf + 1``
        values.
    """

    def __init__(self, parameters, n_stem, n_leaf, compartment_midpoints,
                 compartment_surfaces):
        n = n_stem + n_leaf
        if n_leaf < 1 or len(compartment_midpoints) != n or len(compartment_surfaces) != n + 1:
            raise ConfigurationError(
                f"{MODULE_NAME}.PlantHydraulicsModel: expected {n} compartment"
                f" midpoints and {n + 1} surfaces for n_stem={n_stem},"
                f" n_leaf={n_leaf}"
            )
        self.parameters = parameters
        self.n_stem = n_stem
        self.n_leaf = n_leaf
        self.compartment_midpoints = [float(z) for z in compartment_midpoints]
        self.compartment_surfaces = [float(z) for z in compartment_surfaces]

    @property
    def n_compartments(self):
        return self.n_stem + self.n_leaf

    def thickness(self, i):
        return self.compartment_surfaces[i + 1] - self.compartment_surfaces[i]


class BigLeafEnergyModel:
    def __init__(self, parameters):
        self.parameters = parameters


@dataclass(frozen=True, eq=False)
class CanopyComponents:
    autotrophic_respiration: AutotrophicRespirationModel
    radiative_transfer: TwoStreamModel
    photosynthesis: FarquharModel
    conductance: MedlynConductanceModel
    hydraulics: PlantHydraulicsModel
    energy: BigLeafEnergyModel


def arrhenius(value_25, activation_energy, T, R):
    return value_25 * np.exp(activation_energy / R * (1 / T_REF_25C - 1 / T))


def root_fractions(z, dz, rooting_depth):
    """Exponential root distribution over soil layers, normalised per column."""
    rooting_depth = np.asarray(rooting_depth, dtype=np.float64)
    if rooting_depth.ndim == 1:
        rooting_depth = rooting_depth[:, None]
    weights = np.exp(z / rooting_depth) * dz / rooting_depth
    return weights / np.sum(weights, axis=1, keepdims=True)


class CanopyModel:
    """
    Parameters
    ----------
    components : CanopyComponents
    parameters : SharedCanopyParameters
    domain : SphericalSurface
    """

    name = "canopy"

    def __init__(self, components, parameters, domain):
        self.components = components
        self.parameters = parameters
        self.domain = domain
        self.space = domain.space.surface
        self.earth_param_set = parameters.earth_param_set

    def prognostic_vars(self):
        n = self.components.hydraulics.n_compartments
        return FieldTree(
            hydraulics=FieldTree(theta_l=tuple(zeros(self.space) for _ in range(n))),
            energy=FieldTree(T=zeros(self.space)),
        )

    def auxiliary_vars(self):
        space = self.space
        n = self.components.hydraulics.n_compartments
        names = (
            "LAI", "f_canopy", "transmitted_SW", "SW_absorbed", "APAR", "ANIR",
            "An", "GPP", "Rd", "Ra", "gs", "beta_transpiration", "beta_moisture",
            "R_n", "shf", "lhf", "transpiration", "root_uptake", "CT",
        )
        entries = {name: zeros(space) for name in names}
        entries["psi"] = tuple(zeros(space) for _ in range(n))
        return FieldTree(**entries)

    def radiative_transfer(self, p, SAI):
        """Beer-Lambert interception and absorption of PAR and NIR."""
        params = self.components.radiative_transfer.parameters
        aux, drivers = p.canopy, p.drivers
        mu = np.maximum(drivers.cos_zenith, 0.01)
        K = params.Omega * params.G_Function(mu) / mu
        area = aux.LAI + SAI
        interception = 1 - np.exp(-K * area)
        SW = np.maximum(drivers.SW_d, 0.0)
        # shortwave split evenly between PAR and NIR
        PAR = 0.5 * SW
        NIR = 0.5 * SW
        aux.APAR[...] = PAR * interception * (1 - params.alpha_PAR_leaf - params.tau_PAR_leaf)
        aux.ANIR[...] = NIR * interception * (1 - params.alpha_NIR_leaf - params.tau_NIR_leaf)
        aux.SW_absorbed[...] = aux.APAR + aux.ANIR
        aux.transmitted_SW[...] = (
            PAR * (1 - interception + interception * params.tau_PAR_leaf)
            + NIR * (1 - interception + interception * params.tau_NIR_leaf)
        )
        aux.f_canopy[...] = 1 - np.exp(-area)
        return K

    def photosynthesis(self, p, K, T):
        """Farquhar model for C3 and C4 leaves, scaled to the canopy."""
        params = self.components.photosynthesis.parameters
        eps = self.earth_param_set
        aux, drivers = p.canopy, p.drivers
        R = eps.R
        Vcmax = arrhenius(params.Vcmax25, params.dH_Vcmax, T, R)
        Gamma_star = arrhenius(params.Gamma_star25, GAMMA_STAR_ACTIVATION, T, R)
        Kc = arrhenius(params.Kc25, KC_ACTIVATION, T, R)
        Ko = arrhenius(params.Ko25, KO_ACTIVATION, T, R)
        ci = params.ci_ratio * drivers.c_co2
        # mol photons per m2 of leaf
        sunlit_area = np.maximum((1 - np.exp(-K * aux.LAI)) / K, 1e-6)
        APAR = aux.APAR * eps.J_to_mol_photons / sunlit_area
        Jmax = 2.0 * Vcmax
        b = params.phi * APAR + Jmax
        J = (b - np.sqrt(np.maximum(b**2 - 4 * params.theta_j * params.phi * APAR * Jmax, 0.0))) / (
            2 * params.theta_j
        )
        Aj_c3 = J * (ci - Gamma_star) / (4 * (ci + 2 * Gamma_star))
        Ac_c3 = Vcmax * (ci - Gamma_star) / (ci + Kc * (1 + params.oi / Ko))
        A_c3 = np.minimum(Aj_c3, Ac_c3)
        A_c4 = np.minimum(Vcmax, params.alpha_C4 * APAR)
        A = params.is_c3 * A_c3 + (1 - params.is_c3) * A_c4
        Rd = params.f_Rd * Vcmax
        leaf_An = (A * aux.beta_moisture - Rd)
        aux.An[...] = leaf_An * sunlit_area
        aux.Rd[...] = Rd * sunlit_area
        aux.GPP[...] = A * aux.beta_moisture * sunlit_area
        return leaf_An

    def conductance(self, p, leaf_An, T_canopy):
        """Medlyn stomatal conductance, converted to a bulk surface resistance."""
        params = self.components.conductance.parameters
        eps = self.earth_param_set
        aux, drivers = p.canopy, p.drivers
        e_air = drivers.q * drivers.P / (0.622 + 0.378 * drivers.q)
        vpd = np.maximum(saturation_vapor_pressure(drivers.T) - e_air, 1.0)
        gs_leaf = params.g0 + params.Drel * (1 + params.g1 / np.sqrt(vpd)) * np.maximum(
            leaf_An, 0.0
        ) / drivers.c_co2
        aux.gs[...] = gs_leaf * aux.LAI
        # mol m-2 s-1 to m s-1
        g_ms = np.maximum(aux.gs * eps.R * drivers.T / drivers.P, 1e-12)
        shared = self.parameters
        wind = np.maximum(drivers.u, eps.min_wind_speed)
        aux.CT[...] = exchange_coefficient(
            wind, drivers.T, T_canopy, shared.z0_m, shared.z0_b,
            eps.atmos_h, eps.karman, eps.grav,
        )
        r_ae = 1 / (aux.CT * wind)
        aux.beta_transpiration[...] = r_ae / (r_ae + 1 / g_ms)

    def autotrophic_respiration(self, p):
        params = self.components.autotrophic_respiration.parameters
        aux = p.canopy
        maintenance = params.maintenance_scaling * aux.Rd
        growth = params.growth_fraction * np.maximum(aux.GPP - maintenance, 0.0)
        aux.Ra[...] = maintenance + growth

    def update_explicit_aux(self, Y, p, t):
        """Diagnose everything that is held fixed over the implicit solve."""
        hydraulics = self.components.hydraulics
        hp = hydraulics.parameters
        ai = hp.ai_parameterization
        aux = p.canopy
        evaluate(aux.LAI, ai.LAIfunction, t)
        self.update_potentials(Y, p)
        leaf_psi = aux.psi[-1]
        aux.beta_moisture[...] = hp.conductivity_model.conductivity(leaf_psi) / hp.conductivity_model.K_sat
        K = self.radiative_transfer(p, ai.SAI)
        leaf_An = self.photosynthesis(p, K, Y.canopy.energy.T)
        self.conductance(p, leaf_An, Y.canopy.energy.T)
        self.autotrophic_respiration(p)

    def update_potentials(self, Y, p):
        hp = self.components.hydraulics.parameters
        for i, theta in enumerate(Y.canopy.hydraulics.theta_l):
            p.canopy.psi[i][...] = hp.retention_model.potential(theta / hp.nu)

    def explicit_tendency(self, dY, Y, p, t):
        for dtheta in dY.canopy.hydraulics.theta_l:
            dtheta[...] = 0.0
        dY.canopy.energy.T[...] = 0.0

    def energy_fluxes(self, Y, p, T_ground):
        eps = self.earth_param_set
        shared = self.parameters
        rt = self.components.radiative_transfer.parameters
        aux, drivers = p.canopy, p.drivers
        T = Y.canopy.energy.T
        f_c = aux.f_canopy
        emissivity = rt.emissivity * f_c
        LW_absorbed = emissivity * (drivers.LW_d + eps.Stefan * T_ground**4)
        LW_emitted = 2 * emissivity * eps.Stefan * T**4
        aux.R_n[...] = aux.SW_absorbed + LW_absorbed - LW_emitted
        shf, lhf, vapor = bulk_fluxes(
            drivers.u, drivers.T, T, drivers.P, drivers.q,
            shared.z0_m, shared.z0_b, aux.beta_transpiration, eps,
        )
        aux.shf[...] = f_c * shf
        aux.lhf[...] = f_c * lhf
        aux.transpiration[...] = f_c * vapor

    def hydraulic_fluxes(self, Y, p, soil_model):
        """
        Water flow from the soil into the first compartment, between
        compartments, and out of the leaves by transpiration.
        Returns the net inflow [m s-1] for each compartment.
        """
        hydraulics = self.components.hydraulics
        hp = hydraulics.parameters
        ai = hp.ai_parameterization
        cond = hp.conductivity_model
        aux = p.canopy
        self.update_potentials(Y, p)
        psi = aux.psi
        z_mid = hydraulics.compartment_midpoints
        soil_z = soil_model.z
        psi_soil = p.soil.psi
        fractions = root_fractions(soil_z, soil_model.dz, hp.rooting_depth)
        K_root = 0.5 * (cond.conductivity(psi_soil) + cond.conductivity(psi[0])[:, None])
        per_layer = (
            K_root
            * ((psi_soil + soil_z) - (psi[0] + z_mid[0])[:, None])
            / (z_mid[0] - soil_z)
            * ai.RAI
            * fractions
        )
        aux.root_uptake[...] = np.sum(per_layer, axis=1)
        p.soil.root_extraction[...] = per_layer / soil_model.dz

        inflow = [np.array(aux.root_uptake)]
        for i in range(1, hydraulics.n_compartments):
            K = 0.5 * (cond.conductivity(psi[i - 1]) + cond.conductivity(psi[i]))
            flux = K * ((psi[i - 1] + z_mid[i - 1]) - (psi[i] + z_mid[i])) / (z_mid[i] - z_mid[i - 1])
            inflow[i - 1] = inflow[i - 1] - flux
            inflow.append(np.array(flux))
        inflow[-1] = inflow[-1] - aux.transpiration
        return inflow, K_root, fractions

    def implicit_tendency(self, dY, Y, p, t, soil_model, T_ground):
        hydraulics = self.components.hydraulics
        # transpiration leaves the last compartment, so the energy balance
        # goes first
        self.energy_fluxes(Y, p, T_ground)
        inflow, _, _ = self.hydraulic_fluxes(Y, p, soil_model)
        for i, dtheta in enumerate(dY.canopy.hydraulics.theta_l):
            dtheta[...] = inflow[i] / hydraulics.thickness(i)
        ac = self.components.energy.parameters.ac_canopy
        dY.canopy.energy.T[...] = (p.canopy.R_n - p.canopy.shf - p.canopy.lhf) / ac

    def jacobian(self, W, Y, p, dtgamma, t, soil_model):
        eps = self.earth_param_set
        hydraulics = self.components.hydraulics
        hp = hydraulics.parameters
        cond = hp.conductivity_model
        aux, drivers = p.canopy, p.drivers
        self.update_potentials(Y, p)
        dpsi = 1.0 / (hp.retention_model.a * hp.nu)
        z_mid = hydraulics.compartment_midpoints
        n = hydraulics.n_compartments
        fractions = root_fractions(soil_model.z, soil_model.dz, hp.rooting_depth)
        K_root = 0.5 * (cond.conductivity(p.soil.psi) + cond.conductivity(aux.psi[0])[:, None])
        conductance = [
            np.sum(K_root * fractions / (z_mid[0] - soil_model.z), axis=1)
            * hp.ai_parameterization.RAI
        ]
        for i in range(1, n):
            K = 0.5 * (cond.conductivity(aux.psi[i - 1]) + cond.conductivity(aux.psi[i]))
            conductance.append(K / (z_mid[i] - z_mid[i - 1]))
        for i in range(n):
            total = conductance[i] + (conductance[i + 1] if i + 1 < n else 0.0)
            W.set_block(
                ("canopy", "hydraulics", "theta_l", i),
                -total * dpsi / hydraulics.thickness(i),
            )

        T = Y.canopy.energy.T
        rt = self.components.radiative_transfer.parameters
        wind = np.maximum(drivers.u, eps.min_wind_speed)
        rho_air = drivers.P / (eps.R_d * drivers.T)
        q_sat = saturation_specific_humidity(T, drivers.P)
        dq_dT = q_sat * 5420.0 / T**2
        dflux = aux.f_canopy * (
            8 * rt.emissivity * eps.Stefan * T**3
            + rho_air * aux.CT * wind * (eps.cp_d + eps.LH_v0 * aux.beta_transpiration * dq_dT)
        )
        ac = self.components.energy.parameters.ac_canopy
        W.set_block(("canopy", "energy", "T"), -dflux / ac)
