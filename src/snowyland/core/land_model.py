"""
The coupled soil/soil CO2/canopy/snow land model.

``LandModel`` validates the parameter bundles against the domain, builds the
four submodels, allocates the state (Y) and cache (p), and produces the
closures handed to the integrator: the initial-cache step, the explicit and
implicit tendencies, the Jacobian, and the driver update function.

Coupling between the submodels happens here, in the explicit tendency: the
bare soil and snow surface energy balances and the partitioning of
precipitation and snowmelt into infiltration and runoff. The soil top
boundary fluxes computed this way are held fixed over the implicit solve.
"""

from dataclasses import dataclass
import numpy as np
from snowyland.canopy.canopy_model import CanopyModel
from snowyland.core.domain import SphericalShell, dss_field, obtain_surface_domain, zeros
from snowyland.core.errors import ConfigurationError
from snowyland.core.parameters import space_of, validate_bundle
from snowyland.core.state import Cache, FieldTree, StateVector
from snowyland.core.surface_fluxes import bulk_fluxes, net_radiation
from snowyland.met_data.forcing import PrescribedAtmosphere, PrescribedRadiativeFluxes, evaluate_forcing
from snowyland.snow.snow_model import SnowModel
from snowyland.soil.biogeochemistry import SoilCO2Model
from snowyland.soil.energy_hydrology import SoilEnergyHydrology

MODULE_NAME = "snowyland.core.land_model"
DRIVER_NAMES = PrescribedAtmosphere.driver_names + ("SW_d", "LW_d", "cos_zenith")


@dataclass(frozen=True, eq=False)
class LandInputs:
    """
    Forcing and boundary inputs shared by the submodels.

    Parameters
    ----------
    atmos : PrescribedAtmosphere
    radiation : PrescribedRadiativeFluxes
    runoff : TOPMODELRunoff
    soil_organic_carbon : PrescribedSoilOrganicCarbon
    """

    atmos: PrescribedAtmosphere
    radiation: PrescribedRadiativeFluxes
    runoff: object
    soil_organic_carbon: object


class LandModel:
    """
    Parameters
    ----------
    domain : SphericalShell
    inputs : LandInputs
    soil_parameters : EnergyHydrologyParameters
    soilco2_parameters : SoilCO2ModelParameters
    canopy_components : CanopyComponents
    canopy_parameters : SharedCanopyParameters
    snow_parameters : SnowParameters

    Raises
    ------
    ConfigurationError
        If the domain is not a SphericalShell, or if any parameter bundle or
        forcing input holds a field defined on a space that is not the
        partition its submodel runs on.
    """

    def __init__(self, domain, inputs, soil_parameters, soilco2_parameters,
                 canopy_components, canopy_parameters, snow_parameters):
        func_name = f"{MODULE_NAME}.LandModel"
        if not isinstance(domain, SphericalShell):
            raise ConfigurationError(
                f"{func_name}: the land model needs a SphericalShell domain with"
                f" both a surface and a subsurface space, not {type(domain).__name__}"
            )
        self.domain = domain
        self.inputs = inputs
        surface = domain.space.surface
        subsurface = domain.space.subsurface
        self.surface_space = surface
        self.subsurface_space = subsurface

        validate_bundle(
            soil_parameters, [subsurface], func_name, fields=soil_parameters.subsurface_fields()
        )
        validate_bundle(
            soil_parameters, [surface], func_name, fields=soil_parameters.SURFACE_FIELDS
        )
        validate_bundle(soilco2_parameters, [subsurface], func_name)
        validate_bundle(inputs.runoff, [surface], func_name)
        validate_bundle(canopy_parameters, [surface], func_name)
        for component in vars(canopy_components).values():
            validate_bundle(component.parameters, [surface], func_name)
        validate_bundle(snow_parameters, [surface], func_name)
        lai = canopy_components.hydraulics.parameters.ai_parameterization.LAIfunction
        self._check_inputs(lai, func_name)

        surface_domain = obtain_surface_domain(domain)
        self.soil = SoilEnergyHydrology(domain, soil_parameters, inputs.runoff)
        self.soilco2 = SoilCO2Model(
            domain, soilco2_parameters, inputs.soil_organic_carbon, soil_parameters
        )
        self.canopy = CanopyModel(canopy_components, canopy_parameters, surface_domain)
        self.snow = SnowModel(snow_parameters, surface_domain)
        self.earth_param_set = soil_parameters.earth_param_set

    @property
    def submodels(self):
        return (self.soil, self.soilco2, self.canopy, self.snow)

    def _check_inputs(self, lai, func_name):
        """Gridded forcing must be regridded onto the surface space."""
        atmos, radiation = self.inputs.atmos, self.inputs.radiation
        inputs = dict(atmos.inputs())
        inputs.update(radiation.inputs())
        inputs["LAI"] = lai
        for name, tv_input in inputs.items():
            input_space = space_of(tv_input)
            if input_space is not None and input_space is not self.surface_space:
                raise ConfigurationError(
                    f"{func_name}: forcing input <{name}> is defined on a"
                    f" {input_space.kind} space that is not the surface space"
                    " of the model domain."
                )

    def initialize(self):
        """
        Allocate the prognostic state and the cache, both zero filled.

        Returns
        -------
        Y : StateVector
        p : Cache
            Auxiliary fields of every submodel, plus ``p.drivers``.
        coords : dict
            Node coordinates of the surface and subsurface spaces.
        """
        Y = StateVector(**{model.name: model.prognostic_vars() for model in self.submodels})
        p = Cache(**{model.name: model.auxiliary_vars() for model in self.submodels})
        p.drivers = FieldTree(**{name: zeros(self.surface_space) for name in DRIVER_NAMES})
        return Y, p, self.domain.coordinates()

    def get_drivers(self):
        return (self.inputs.atmos, self.inputs.radiation)

    def update_surface_fluxes(self, Y, p, t):
        """
        Bare soil and snow surface energy balances, and the water and heat
        fluxes through the top of the soil. Must follow the diagnostic updates
        of all submodels.
        """
        soil_params = self.soil.parameters
        eps = self.earth_param_set
        soil_aux, canopy_aux, snow_aux, drivers = p.soil, p.canopy, p.snow, p.drivers
        T_top = soil_aux.T[:, -1]
        S_top = np.clip(soil_aux.S_eff[:, -1], 0.0, 1.0)
        sigma = snow_aux.snow_cover_fraction

        # ground below the canopy sees transmitted shortwave and canopy longwave
        f_c = canopy_aux.f_canopy
        canopy_emissivity = self.canopy.components.radiative_transfer.parameters.emissivity
        LW_ground = (1 - f_c) * drivers.LW_d + f_c * canopy_emissivity * eps.Stefan * Y.canopy.energy.T**4
        albedo = 0.5 * (soil_aux.PAR_albedo + soil_aux.NIR_albedo)
        soil_aux.T_sfc[...] = T_top
        soil_aux.R_n[...] = net_radiation(
            canopy_aux.transmitted_SW, LW_ground, albedo, soil_params.emissivity, T_top, eps
        )
        shf, lhf, vapor = bulk_fluxes(
            drivers.u, drivers.T, T_top, drivers.P, drivers.q,
            soil_params.z_0m, soil_params.z_0b, S_top, eps,
        )
        soil_aux.turbulent_energy_flux[...] = (1 - sigma) * (shf + lhf)
        soil_aux.evaporation[...] = (1 - sigma) * vapor

        self.snow.update_boundary_fluxes(Y, p, T_top, self.soil.dz[:, -1])

        water_input = (1 - sigma) * drivers.P_liq + snow_aux.water_runoff_to_soil
        self.soil.update_runoff(Y, p, water_input)
        soil_aux.top_water_flux[...] = soil_aux.infiltration + soil_aux.evaporation
        soil_aux.top_heat_flux[...] = (
            soil_aux.turbulent_energy_flux - (1 - sigma) * soil_aux.R_n
            - snow_aux.ground_heat_flux
        )

    def update_explicit_aux(self, Y, p, t):
        self.soil.update_aux(Y, p, t)
        self.snow.update_aux(Y, p, t)
        self.canopy.update_explicit_aux(Y, p, t)
        self.update_surface_fluxes(Y, p, t)

    def make_set_initial_cache(self):
        """
        Returns ``set_initial_cache(p, Y, t0)``, which evaluates the drivers at
        ``t0``, fills every auxiliary field from the state and marks the cache
        as initialized. It must run before any tendency is evaluated.
        """
        update_drivers = make_update_drivers(self.get_drivers())

        def set_initial_cache(p, Y, t0):
            update_drivers(p, t0)
            self.update_explicit_aux(Y, p, t0)
            p.mark_initialized()

        return set_initial_cache

    def _require_initialized(self, p, func_name):
        if not p.initialized:
            raise RuntimeError(
                f"{func_name}: the cache has not been initialized. Call the"
                " function returned by make_set_initial_cache before evaluating"
                " tendencies."
            )

    def make_exp_tendency(self):
        func_name = f"{MODULE_NAME}.LandModel.exp_tendency"

        def exp_tendency(dY, Y, p, t):
            self._require_initialized(p, func_name)
            self.update_explicit_aux(Y, p, t)
            for model in self.submodels:
                model.explicit_tendency(dY, Y, p, t)

        return exp_tendency

    def make_imp_tendency(self):
        func_name = f"{MODULE_NAME}.LandModel.imp_tendency"

        def imp_tendency(dY, Y, p, t):
            self._require_initialized(p, func_name)
            self.soil.implicit_tendency(dY, Y, p, t)
            self.soilco2.implicit_tendency(dY, Y, p, t)
            self.canopy.implicit_tendency(
                dY, Y, p, t, self.soil, self.soil.surface_temperature(p)
            )
            self.snow.implicit_tendency(dY, Y, p, t)

        return imp_tendency

    def make_jacobian(self):
        """
        Returns ``jacobian(W, Y, p, dtgamma, t)``, which refills every block of
        ``W`` (a FieldMatrixWithSolver) at the current state.
        """
        func_name = f"{MODULE_NAME}.LandModel.jacobian"

        def jacobian(W, Y, p, dtgamma, t):
            self._require_initialized(p, func_name)
            W.reset(dtgamma)
            self.soil.jacobian(W, Y, p, dtgamma, t)
            self.soilco2.jacobian(W, Y, p, dtgamma, t)
            self.canopy.jacobian(W, Y, p, dtgamma, t, self.soil)

        return jacobian


def make_update_drivers(drivers):
    """
    Returns ``update_drivers(p, t)``, which writes the atmospheric and
    radiative forcing at time ``t`` into ``p.drivers``.
    """
    atmos, radiation = drivers

    def update_drivers(p, t):
        evaluate_forcing(atmos, radiation, p.drivers.T.space, t, out=p.drivers)

    return update_drivers


def dss(Y, p, t):
    """Grid synchronisation of every prognostic field, in place."""
    for _, field in Y.leaves():
        dss_field(field)
