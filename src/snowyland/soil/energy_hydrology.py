"""
Soil energy and hydrology model.

Prognostic variables (all on the subsurface space):

* ``theta_l``: volumetric liquid water content, which may exceed porosity
  slightly, in which case the excess is stored elastically (``S_s``)
* ``theta_i``: volumetric ice content
* ``rho_e_int``: volumetric internal energy [J m-3]

Vertical water flow (Richards equation with a van Genuchten closure) and heat
conduction are treated implicitly; freeze/thaw, root extraction and runoff
are explicit. The physics is deliberately simplified.
"""

import numpy as np
from snowyland.core import column_operators
from snowyland.core.domain import zeros
from snowyland.core.state import FieldTree

MODULE_NAME = "snowyland.soil.energy_hydrology"


def volumetric_heat_capacity(theta_l, theta_i, rho_c_ds, earth_param_set):
    """Volumetric heat capacity of the soil [J m-3 K-1]."""
    return rho_c_ds + theta_l * earth_param_set.rho_cp_l + theta_i * earth_param_set.rho_cp_i


def volumetric_internal_energy(theta_i, rho_c_s, T, earth_param_set):
    """
    Volumetric internal energy [J m-3] relative to liquid water at the
    freezing point.
    """
    eps = earth_param_set
    return rho_c_s * (T - eps.T_freeze) - theta_i * eps.rho_i * eps.LH_f0


def temperature_from_rho_e_int(rho_e_int, theta_i, rho_c_s, earth_param_set):
    eps = earth_param_set
    return eps.T_freeze + (rho_e_int + theta_i * eps.rho_i * eps.LH_f0) / rho_c_s


def effective_saturation(theta_l, theta_i, nu, theta_r):
    nu_eff = nu - theta_i
    return (theta_l - theta_r) / (nu_eff - theta_r)


def impedance_factor(theta_l, theta_i, Omega):
    f_i = theta_i / np.maximum(theta_i + theta_l, 1e-12)
    return 10.0 ** (-Omega * f_i)


def thermal_conductivity(theta_l, theta_i, params):
    """Johansen interpolation between dry and saturated conductivity."""
    total = np.maximum(theta_l + theta_i, 1e-12)
    kappa_sat = params.kappa_sat_unfrozen ** (theta_l / total) * params.kappa_sat_frozen ** (theta_i / total)
    kersten = np.clip(total / params.nu, 0.0, 1.0)
    return kersten * kappa_sat + (1 - kersten) * params.kappa_dry


class SoilEnergyHydrology:
    """
    Parameters
    ----------
    domain : SphericalShell
    parameters : EnergyHydrologyParameters
    runoff : TOPMODELRunoff
    """

    name = "soil"

    def __init__(self, domain, parameters, runoff):
        self.domain = domain
        self.parameters = parameters
        self.runoff = runoff
        self.space = domain.space.subsurface
        self.surface_space = domain.space.surface
        dz = self.space.dz
        ncol = self.space.ncolumns
        self.dz = np.broadcast_to(dz[None, :], self.space.shape).copy()
        self.dz_faces = np.broadcast_to(
            (0.5 * (dz[1:] + dz[:-1]))[None, :], (ncol, len(dz) - 1)
        ).copy()
        self.z = np.broadcast_to(self.space.z[None, :], self.space.shape).copy()

    def prognostic_vars(self):
        return FieldTree(
            theta_l=zeros(self.space),
            theta_i=zeros(self.space),
            rho_e_int=zeros(self.space),
        )

    def auxiliary_vars(self):
        surface = self.surface_space
        return FieldTree(
            T=zeros(self.space),
            rho_c_s=zeros(self.space),
            S_eff=zeros(self.space),
            psi=zeros(self.space),
            dpsi=zeros(self.space),
            K=zeros(self.space),
            kappa=zeros(self.space),
            phase_change=zeros(self.space),
            root_extraction=zeros(self.space),
            top_water_flux=zeros(surface),
            top_heat_flux=zeros(surface),
            infiltration=zeros(surface),
            surface_runoff=zeros(surface),
            subsurface_runoff=zeros(surface),
            T_sfc=zeros(surface),
            evaporation=zeros(surface),
            turbulent_energy_flux=zeros(surface),
            R_n=zeros(surface),
            PAR_albedo=zeros(surface),
            NIR_albedo=zeros(surface),
        )

    def update_aux(self, Y, p, t):
        """Recompute the diagnostic soil quantities from the state."""
        params = self.parameters
        eps = params.earth_param_set
        soil, aux = Y.soil, p.soil
        theta_l, theta_i = soil.theta_l, soil.theta_i
        aux.rho_c_s[...] = volumetric_heat_capacity(theta_l, theta_i, params.rho_c_ds, eps)
        aux.T[...] = temperature_from_rho_e_int(soil.rho_e_int, theta_i, aux.rho_c_s, eps)
        S = effective_saturation(theta_l, theta_i, params.nu, params.theta_r)
        aux.S_eff[...] = S
        cm = params.hydrology_cm
        nu_eff = params.nu - theta_i
        saturated = S >= 1.0
        aux.psi[...] = np.where(
            saturated, (theta_l - nu_eff) / params.S_s, cm.matric_potential(S)
        )
        aux.dpsi[...] = np.where(
            saturated, 1.0 / params.S_s, cm.dpsi_dS(S) / (nu_eff - params.theta_r)
        )
        aux.K[...] = (
            params.K_sat
            * impedance_factor(theta_l, theta_i, params.Omega)
            * cm.conductivity_factor(S)
        )
        aux.kappa[...] = thermal_conductivity(theta_l, theta_i, params)
        PAR, NIR = params.albedo.albedo(S[:, -1])
        aux.PAR_albedo[...] = PAR
        aux.NIR_albedo[...] = NIR

    def surface_temperature(self, p):
        return p.soil.T[:, -1]

    def update_runoff(self, Y, p, water_input):
        """
        Partition the water reaching the surface (``water_input``, m s-1,
        negative downward) into infiltration and TOPMODEL runoff.
        """
        params = self.parameters
        runoff = self.runoff
        aux = p.soil
        depth = self.domain.depth
        # water table depth estimated from the column mean saturation
        mean_saturation = np.clip(
            np.sum(np.clip(aux.S_eff, 0.0, 1.0) * self.dz, axis=1) / depth, 0.0, 1.0
        )
        water_table = depth * (1.0 - mean_saturation)
        f_sat = runoff.f_max * np.exp(-0.5 * runoff.f_over * water_table)
        K_top = params.K_sat if np.ndim(params.K_sat) == 0 else params.K_sat[:, -1]
        incoming = np.minimum(water_input, 0.0)
        # saturation excess over f_sat, infiltration excess elsewhere
        infiltration = (1 - f_sat) * np.maximum(incoming, -K_top)
        aux.surface_runoff[...] = -(incoming - infiltration)
        aux.infiltration[...] = infiltration + np.maximum(water_input, 0.0)
        aux.subsurface_runoff[...] = runoff.R_sb * np.exp(-runoff.f_over * water_table)

    def update_phase_change(self, Y, p):
        params = self.parameters
        eps = params.earth_param_set
        theta_l, theta_i = Y.soil.theta_l, Y.soil.theta_i
        T = p.soil.T
        freeze = np.where(
            T < eps.T_freeze, np.maximum(theta_l - params.theta_r, 0.0), 0.0
        )
        melt = np.where(T > eps.T_freeze, np.maximum(theta_i, 0.0), 0.0)
        # liquid volume frozen per unit time
        p.soil.phase_change[...] = (freeze - melt * eps.rho_i / eps.rho_l) / params.tau

    def explicit_tendency(self, dY, Y, p, t):
        params = self.parameters
        eps = params.earth_param_set
        aux = p.soil
        self.update_phase_change(Y, p)
        dY.soil.theta_l[...] = -aux.phase_change - aux.root_extraction
        dY.soil.theta_i[...] = aux.phase_change * eps.rho_l / eps.rho_i
        dY.soil.theta_l[:, 0] -= aux.subsurface_runoff / self.dz[:, 0]
        dY.soil.rho_e_int[...] = (
            -aux.root_extraction * eps.rho_cp_l * (aux.T - eps.T_freeze)
        )
        dY.soil.rho_e_int[:, 0] -= (
            aux.subsurface_runoff / self.dz[:, 0] * eps.rho_cp_l * (aux.T[:, 0] - eps.T_freeze)
        )

    def implicit_tendency(self, dY, Y, p, t):
        """Vertical water flow and heat conduction."""
        self.update_aux(Y, p, t)
        aux = p.soil
        K_face = column_operators.face_mean(aux.K)
        head = aux.psi + self.z
        water_flux = column_operators.diffusive_flux(K_face, head, self.dz_faces)
        # free drainage at the bottom
        bottom_water = -aux.K[:, 0]
        dY.soil.theta_l[...] = column_operators.flux_divergence(
            water_flux, bottom_water, aux.top_water_flux, self.dz
        )
        dY.soil.theta_i[...] = 0.0
        kappa_face = column_operators.face_mean(aux.kappa)
        heat_flux = column_operators.diffusive_flux(kappa_face, aux.T, self.dz_faces)
        eps = self.parameters.earth_param_set
        # heat carried by the drainage water
        bottom_heat = bottom_water * eps.rho_cp_l * (aux.T[:, 0] - eps.T_freeze)
        dY.soil.rho_e_int[...] = column_operators.flux_divergence(
            heat_flux, bottom_heat, aux.top_heat_flux, self.dz
        )

    def jacobian(self, W, Y, p, dtgamma, t):
        self.update_aux(Y, p, t)
        aux = p.soil
        K_face = column_operators.face_mean(aux.K)
        lower, diag, upper = column_operators.diffusion_bands(
            K_face, aux.dpsi, self.dz_faces, self.dz
        )
        W.set_block(("soil", "theta_l"), diag, lower=lower, upper=upper)
        kappa_face = column_operators.face_mean(aux.kappa)
        lower, diag, upper = column_operators.diffusion_bands(
            kappa_face, 1.0 / aux.rho_c_s, self.dz_faces, self.dz
        )
        W.set_block(("soil", "rho_e_int"), diag, lower=lower, upper=upper)

    def total_water(self, Y):
        """Column water content [m]."""
        eps = self.parameters.earth_param_set
        return np.sum((Y.soil.theta_l + Y.soil.theta_i * eps.rho_i / eps.rho_l) * self.dz, axis=1)
