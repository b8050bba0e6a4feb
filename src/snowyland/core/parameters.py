"""
Default parameter table, earth constants and the partition checks shared by
all of the parameter builders.

The defaults live in a ``ParameterRegistry`` instance rather than in a global
lookup, so that a builder can be handed a registry with overridden values
(e.g. in tests) without affecting anything else.
"""

import dataclasses
import re
import numpy as np
from snowyland.core.errors import ConfigurationError

MODULE_NAME = "snowyland.core.parameters"

DEFAULT_PARAMETERS = {
    # Bare soil surface
    "emissivity_bare_soil": 0.96,
    "soil_momentum_roughness_length": 0.01,
    "soil_scalar_roughness_length": 0.001,
    "soil_PAR_albedo": 0.2,
    "soil_NIR_albedo": 0.4,
    # Soil solids
    "rho_c_organic_matter": 2.5e6,
    "rho_c_quartz": 2.0e6,
    "rho_c_minerals": 2.0e6,
    "kappa_organic_matter": 0.25,
    "kappa_quartz": 8.0,
    "kappa_minerals": 2.5,
    "kappa_air": 0.025,
    "kappa_ice": 2.21,
    "kappa_liq": 0.57,
    "ice_impedance_omega": 7.0,
    "phase_change_timescale": 86400.0,
    "soil_particle_density": 2700.0,
    # Soil CO2
    "soilco2_diffusion_coefficient": 1.39e-5,
    "soilco2_respiration_rate": 2.0e-9,
    "soilco2_q10": 2.0,
    "soilco2_reference_temperature": 283.15,
    # Canopy radiative transfer
    "canopy_emissivity": 0.97,
    "canopy_clumping_index": 1.0,
    "leaf_angle_distribution": 0.0,
    "canopy_PAR_leaf_reflectance": 0.1,
    "canopy_PAR_leaf_transmittance": 0.05,
    "canopy_NIR_leaf_reflectance": 0.45,
    "canopy_NIR_leaf_transmittance": 0.25,
    # Conductance and photosynthesis
    "min_stomatal_conductance": 1e-4,
    "relative_diffusivity_of_water_vapor": 1.6,
    "medlyn_g1": 141.0,
    "photosynthesis_Vcmax25": 5e-5,
    "CO2_compensation_point_25c": 4.275e-5,
    "Kc_25c": 4.049e-4,
    "Ko_25c": 0.2874,
    "intercellular_O2_concentration": 0.209,
    "Vcmax_activation_energy": 58520.0,
    "quantum_yield_of_photosystem_II": 0.6,
    "curvature_of_light_response": 0.7,
    "dark_respiration_factor": 0.015,
    "C4_quantum_efficiency": 0.05,
    "intercellular_CO2_ratio_C3": 0.7,
    # Autotrophic respiration
    "growth_respiration_fraction": 0.25,
    "maintenance_respiration_scaling": 1.0,
    # Snow
    "snow_density": 200.0,
    "snow_momentum_roughness_length": 0.0024,
    "snow_scalar_roughness_length": 0.00024,
    "snow_albedo": 0.8,
    "snow_emissivity": 0.99,
    "holding_capacity_of_water_in_snow": 0.08,
    "snow_cover_fraction_crit_threshold": 0.106,
    "thermal_conductivity_of_snow": 0.3,
    # Surface layer
    "atmos_reference_height": 10.0,
    "minimum_wind_speed": 0.5,
    # Earth and water constants
    "temperature_water_freeze": 273.16,
    "latent_heat_fusion": 3.34e5,
    "latent_heat_vaporization": 2.5008e6,
    "density_liquid_water": 1000.0,
    "density_ice_water": 916.7,
    "isobaric_specific_heat_liquid": 4181.0,
    "isobaric_specific_heat_ice": 2100.0,
    "isobaric_specific_heat_dry_air": 1004.5,
    "gas_constant_dry_air": 287.05,
    "universal_gas_constant": 8.314,
    "gravitational_acceleration": 9.81,
    "stefan_boltzmann_constant": 5.67e-8,
    "von_karman_const": 0.4,
    "molar_mass_water": 0.018,
    "joules_to_mol_photons": 4.6e-6,
}


class ParameterRegistry:
    """
    Lookup table of named default parameter values.

    Parameters
    ----------
    overrides : dict, optional
        Values that replace (or extend) ``DEFAULT_PARAMETERS`` for this
        registry only.
    """

    def __init__(self, overrides=None):
        self._table = dict(DEFAULT_PARAMETERS)
        if overrides:
            self._table.update(overrides)

    def __contains__(self, name):
        return name in self._table

    def get_default_parameter(self, name):
        func_name = f"{MODULE_NAME}.ParameterRegistry.get_default_parameter"
        try:
            return float(self._table[name])
        except KeyError:
            raise ConfigurationError(
                f"{func_name}: No default is registered for <{name}>. Either "
                "pass a value explicitly or add it to the registry."
            ) from None

    def resolve(self, value, name):
        """Return ``value`` if it was supplied, else the registered default."""
        if value is None:
            return self.get_default_parameter(name)
        return value


class LandParameters:
    """
    Earth and water constants shared by all of the submodels.
    Built once per setup from a registry.
    """

    def __init__(self, registry=None):
        registry = registry or ParameterRegistry()
        self.registry = registry
        get = registry.get_default_parameter
        self.T_freeze = get("temperature_water_freeze")
        self.LH_f0 = get("latent_heat_fusion")
        self.LH_v0 = get("latent_heat_vaporization")
        self.rho_l = get("density_liquid_water")
        self.rho_i = get("density_ice_water")
        self.cp_l = get("isobaric_specific_heat_liquid")
        self.cp_i = get("isobaric_specific_heat_ice")
        self.cp_d = get("isobaric_specific_heat_dry_air")
        self.R_d = get("gas_constant_dry_air")
        self.R = get("universal_gas_constant")
        self.grav = get("gravitational_acceleration")
        self.Stefan = get("stefan_boltzmann_constant")
        self.karman = get("von_karman_const")
        self.M_w = get("molar_mass_water")
        self.J_to_mol_photons = get("joules_to_mol_photons")
        self.atmos_h = get("atmos_reference_height")
        self.min_wind_speed = get("minimum_wind_speed")

    @property
    def rho_cp_l(self):
        return self.rho_l * self.cp_l

    @property
    def rho_cp_i(self):
        return self.rho_i * self.cp_i


def space_of(value):
    """The grid partition a value is defined on, or None for scalars."""
    return getattr(value, "space", None)


def check_partition(name, value, space, func_name):
    """
    Raise ConfigurationError if ``value`` is spatially varying but does not
    live on ``space``. Scalars are accepted everywhere.
    """
    value_space = space_of(value)
    if value_space is not None and value_space is not space:
        raise ConfigurationError(
            f"{func_name}: <{name}> is defined on a {value_space.kind} space"
            f" that does not match the target {space.kind} space."
        )


def infer_space(values, func_name):
    """
    Find the single space shared by all spatially varying ``values``.
    Returns None if every value is a scalar.
    """
    spaces = {}
    for name, value in values.items():
        value_space = space_of(value)
        if value_space is not None:
            spaces.setdefault(id(value_space), (name, value_space))
    if len(spaces) > 1:
        names = ", ".join(f"<{name}>" for name, _ in spaces.values())
        raise ConfigurationError(
            f"{func_name}: Fields {names} are defined on different spaces."
        )
    if not spaces:
        return None
    return next(iter(spaces.values()))[1]


def _bundle_values(bundle, prefix=""):
    """Yield (name, value) for every attribute of a (nested) bundle."""
    if dataclasses.is_dataclass(bundle) and not isinstance(bundle, type):
        for item in dataclasses.fields(bundle):
            value = getattr(bundle, item.name)
            name = f"{prefix}{item.name}"
            if space_of(value) is not None:
                yield name, value
            elif dataclasses.is_dataclass(value):
                yield from _bundle_values(value, prefix=f"{name}.")
            elif isinstance(value, (tuple, list)):
                for i, element in enumerate(value):
                    if space_of(element) is not None:
                        yield f"{name}[{i}]", element


def validate_bundle(bundle, allowed_spaces, func_name, fields=None):
    """
    Check that every spatially varying entry of ``bundle`` lives on one of
    ``allowed_spaces``. If ``fields`` is given, only those top level fields
    of the bundle (and everything nested inside them) are checked.

    Raises
    ------
    ConfigurationError
        If any field is defined on some other space.
    """
    allowed = {id(space) for space in allowed_spaces}
    expected = " or ".join(space.kind for space in allowed_spaces)
    for name, value in _bundle_values(bundle):
        if fields is not None and re.split(r"[.\[]", name)[0] not in fields:
            continue
        if id(space_of(value)) not in allowed:
            raise ConfigurationError(
                f"{func_name}: <{name}> of {type(bundle).__name__} is defined"
                f" on a {space_of(value).kind} space that is not the {expected}"
                " space of the model domain."
            )


def as_float_or_field(value):
    """Leave Fields untouched, convert plain numbers to float."""
    if space_of(value) is not None or isinstance(value, np.ndarray):
        return value
    return float(value)


def resolve_defaults(bundle, defaults):
    """
    Fill the unset (None) fields of a frozen dataclass bundle from its
    ``registry`` field, for every ``field -> registry name`` in ``defaults``.
    Intended to be called from ``__post_init__``.
    """
    registry = bundle.registry or ParameterRegistry()
    object.__setattr__(bundle, "registry", registry)
    for field_name, parameter_name in defaults.items():
        value = registry.resolve(getattr(bundle, field_name), parameter_name)
        object.__setattr__(bundle, field_name, as_float_or_field(value))
