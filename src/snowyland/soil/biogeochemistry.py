"""
Soil CO2 model: microbial production and vertical diffusion of CO2 through
the air-filled pore space, with the atmospheric mixing ratio imposed at the
top of the soil.
"""

import numpy as np
from snowyland.core import column_operators
from snowyland.core.domain import zeros
from snowyland.core.state import FieldTree
from snowyland.met_data.time_varying_input import evaluate


class SoilCO2Model:
    """
    Parameters
    ----------
    domain : SphericalShell
    parameters : SoilCO2ModelParameters
    soil_organic_carbon : PrescribedSoilOrganicCarbon
    soil_parameters : EnergyHydrologyParameters
        Porosity, used for the air-filled pore space.
    """

    name = "soilco2"

    def __init__(self, domain, parameters, soil_organic_carbon, soil_parameters):
        self.domain = domain
        self.parameters = parameters
        self.soil_organic_carbon = soil_organic_carbon
        self.soil_parameters = soil_parameters
        self.space = domain.space.subsurface
        dz = self.space.dz
        self.dz = np.broadcast_to(dz[None, :], self.space.shape).copy()
        self.dz_faces = np.broadcast_to(
            (0.5 * (dz[1:] + dz[:-1]))[None, :], (self.space.ncolumns, len(dz) - 1)
        ).copy()

    def prognostic_vars(self):
        return FieldTree(C=zeros(self.space))

    def auxiliary_vars(self):
        return FieldTree(
            D=zeros(self.space),
            Sm=zeros(self.space),
            Csom=zeros(self.space),
            top_flux=zeros(self.space.surface),
        )

    def diffusivity(self, Y, p):
        """Millington-Quirk diffusivity in the air-filled pore space."""
        params = self.parameters
        nu = self.soil_parameters.nu
        theta_a = np.maximum(nu - Y.soil.theta_l - Y.soil.theta_i, 1e-6)
        T = p.soil.T
        return params.D_ref * (T / 273.15) ** 1.75 * theta_a ** (10.0 / 3.0) / nu**2

    def explicit_tendency(self, dY, Y, p, t):
        params = self.parameters
        aux = p.soilco2
        evaluate(aux.Csom, self.soil_organic_carbon.func, t)
        moisture = np.clip(p.soil.S_eff, 0.0, 1.0)
        aux.Sm[...] = (
            params.respiration_rate
            * aux.Csom
            * params.q10 ** ((p.soil.T - params.T_ref) / 10.0)
            * moisture
        )
        dY.soilco2.C[...] = aux.Sm

    def _top_conductance(self, aux):
        return aux.D[:, -1] / (0.5 * self.dz[:, -1])

    def implicit_tendency(self, dY, Y, p, t):
        aux = p.soilco2
        aux.D[...] = self.diffusivity(Y, p)
        C = Y.soilco2.C
        D_face = column_operators.face_mean(aux.D)
        flux = column_operators.diffusive_flux(D_face, C, self.dz_faces)
        c_atm = p.drivers.c_co2
        aux.top_flux[...] = -self._top_conductance(aux) * (c_atm - C[:, -1])
        dY.soilco2.C[...] = column_operators.flux_divergence(
            flux, 0.0, aux.top_flux, self.dz
        )

    def jacobian(self, W, Y, p, dtgamma, t):
        aux = p.soilco2
        aux.D[...] = self.diffusivity(Y, p)
        D_face = column_operators.face_mean(aux.D)
        lower, diag, upper = column_operators.diffusion_bands(
            D_face, np.ones(self.space.shape), self.dz_faces, self.dz
        )
        diag[:, -1] -= self._top_conductance(aux) / self.dz[:, -1]
        W.set_block(("soilco2", "C"), diag, lower=lower, upper=upper)
