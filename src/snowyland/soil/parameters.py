"""
Parameter bundles for the soil energy/hydrology model, the soil CO2 model and
surface runoff, plus loaders for their spatially varying values.

Every bundle is a frozen dataclass. Values may be plain floats or Fields; a
bundle is only valid if all of its Fields live on the space the model
expects (subsurface for soil properties, surface for surface properties).
"""

from dataclasses import dataclass, field, fields
import numpy as np
from snowyland.core.errors import ConfigurationError
from snowyland.core.parameters import (
    LandParameters,
    ParameterRegistry,
    check_partition,
    infer_space,
    resolve_defaults,
    space_of,
)
from snowyland.met_data import artifacts
from snowyland.met_data.regridder import DEFAULT_EXTRAPOLATION_BC, read_spatial_field

MODULE_NAME = "snowyland.soil.parameters"
# Johansen (1975) dry conductivity constant
DRY_CONDUCTIVITY_A = 0.053


@dataclass(frozen=True, eq=False)
class VanGenuchten:
    """
    van Genuchten retention curve and Mualem conductivity.

    Parameters
    ----------
    alpha : float or Field
        Inverse air entry potential [m-1].
    n : float or Field
        Pore size distribution index [-], > 1.

    Attributes
    ----------
    m : float or Field
        ``1 - 1/n``.
    S_c : float or Field
        Critical effective saturation, at which the capillary capacity of the
        soil peaks. Derived from ``n`` only.
    """

    alpha: object
    n: object
    m: object = field(init=False)
    S_c: object = field(init=False)

    def __post_init__(self):
        m = 1 - 1 / self.n
        object.__setattr__(self, "m", m)
        object.__setattr__(
            self, "S_c", (1 + ((self.n - 1) / self.n) ** (1 - 2 * self.n)) ** (-m)
        )

    @property
    def space(self):
        return space_of(self.alpha) or space_of(self.n)

    def matric_potential(self, S):
        """Matric potential [m] at effective saturation S in (0, 1]."""
        S = np.clip(S, 1e-8, 1.0)
        return -(1 / self.alpha) * (S ** (-1 / self.m) - 1) ** (1 / self.n)

    def dpsi_dS(self, S):
        """Derivative of the matric potential with respect to S."""
        S = np.clip(S, 1e-8, 1.0 - 1e-8)
        x = S ** (-1 / self.m) - 1
        return (1 / (self.alpha * self.n * self.m)) * x ** (1 / self.n - 1) * S ** (-1 / self.m - 1)

    def conductivity_factor(self, S):
        """Mualem relative conductivity at effective saturation S."""
        S = np.clip(S, 0.0, 1.0)
        return np.sqrt(S) * (1 - (1 - S ** (1 / self.m)) ** self.m) ** 2


@dataclass(frozen=True, eq=False)
class ConstantTwoBandSoilAlbedo:
    PAR_albedo: object = None
    NIR_albedo: object = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self, {"PAR_albedo": "soil_PAR_albedo", "NIR_albedo": "soil_NIR_albedo"}
        )

    def albedo(self, S_top):
        return self.PAR_albedo, self.NIR_albedo


@dataclass(frozen=True, eq=False)
class CLMTwoBandSoilAlbedo:
    """
    Soil albedo interpolated between its saturated ("wet") and dry values
    using the effective saturation of the top layer.
    """

    PAR_albedo_dry: object
    NIR_albedo_dry: object
    PAR_albedo_wet: object
    NIR_albedo_wet: object

    def albedo(self, S_top):
        S = np.clip(S_top, 0.0, 1.0)
        PAR = self.PAR_albedo_wet + (self.PAR_albedo_dry - self.PAR_albedo_wet) * (1 - S)
        NIR = self.NIR_albedo_wet + (self.NIR_albedo_dry - self.NIR_albedo_wet) * (1 - S)
        return PAR, NIR


@dataclass(frozen=True, eq=False)
class EnergyHydrologyParameters:
    """
    Parameters of the soil energy and hydrology model. Build with
    ``energy_hydrology_parameters``, which fills in the defaults and the
    derived thermal properties.

    The albedo, emissivity and roughness lengths belong to the surface space;
    every other spatially varying field is a soil property on the subsurface.
    """

    SURFACE_FIELDS = ("albedo", "emissivity", "z_0m", "z_0b")

    nu: object
    nu_ss_om: object
    nu_ss_quartz: object
    nu_ss_gravel: object
    hydrology_cm: VanGenuchten
    K_sat: object
    S_s: object
    theta_r: object
    albedo: object
    emissivity: object
    z_0m: object
    z_0b: object
    rho_c_ds: object
    kappa_solid: object
    kappa_sat_frozen: object
    kappa_sat_unfrozen: object
    kappa_dry: object
    Omega: float
    tau: float
    kappa_ice: float
    kappa_liq: float
    earth_param_set: LandParameters

    @classmethod
    def subsurface_fields(cls):
        return tuple(f.name for f in fields(cls) if f.name not in cls.SURFACE_FIELDS)


def _check_required(values, func_name):
    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise ConfigurationError(
            f"{func_name}: Required parameter(s) {', '.join(f'<{m}>' for m in missing)}"
            " were not given and have no default."
        )


def energy_hydrology_parameters(*, nu=None, nu_ss_om=None, nu_ss_quartz=None,
                                nu_ss_gravel=None, hydrology_cm=None, K_sat=None,
                                S_s=None, theta_r=None, albedo=None, emissivity=None,
                                z_0m=None, z_0b=None, subsurface_space=None,
                                registry=None, earth_param_set=None):
    """
    Build an EnergyHydrologyParameters bundle.

    The eight soil properties (porosity ``nu``, the volumetric fractions of
    organic matter, quartz and gravel in the solids, the retention curve,
    ``K_sat``, specific storage ``S_s`` and residual water ``theta_r``) are
    required. ``albedo``, ``emissivity``, ``z_0m`` and ``z_0b`` default to the
    registry values when omitted.

    Parameters
    ----------
    subsurface_space : Space, optional
        If given, every spatially varying soil property must be defined on
        it. Otherwise they must all share a single space.
    registry : ParameterRegistry, optional
        Source of the default values.
    earth_param_set : LandParameters, optional

    Raises
    ------
    ConfigurationError
        If a required value is missing, or a Field lives on the wrong space.
    """
    func_name = f"{MODULE_NAME}.energy_hydrology_parameters"
    registry = registry or ParameterRegistry()
    earth_param_set = earth_param_set or LandParameters(registry)
    soil_values = {
        "nu": nu,
        "nu_ss_om": nu_ss_om,
        "nu_ss_quartz": nu_ss_quartz,
        "nu_ss_gravel": nu_ss_gravel,
        "hydrology_cm": hydrology_cm,
        "K_sat": K_sat,
        "S_s": S_s,
        "theta_r": theta_r,
    }
    _check_required(soil_values, func_name)
    if subsurface_space is not None:
        for name, value in soil_values.items():
            check_partition(name, value, subsurface_space, func_name)
    else:
        subsurface_space = infer_space(soil_values, func_name)
    if subsurface_space is not None and subsurface_space.kind != "subsurface":
        raise ConfigurationError(
            f"{func_name}: Soil properties must be defined on a subsurface space,"
            f" not on a {subsurface_space.kind} space."
        )

    surface_space = None if subsurface_space is None else subsurface_space.surface
    emissivity = registry.resolve(emissivity, "emissivity_bare_soil")
    z_0m = registry.resolve(z_0m, "soil_momentum_roughness_length")
    z_0b = registry.resolve(z_0b, "soil_scalar_roughness_length")
    if albedo is None:
        albedo = ConstantTwoBandSoilAlbedo(registry=registry)
    surface_values = {"emissivity": emissivity, "z_0m": z_0m, "z_0b": z_0b}
    for name in ("PAR_albedo_dry", "NIR_albedo_dry", "PAR_albedo_wet", "NIR_albedo_wet",
                 "PAR_albedo", "NIR_albedo"):
        if hasattr(albedo, name):
            surface_values[f"albedo.{name}"] = getattr(albedo, name)
    if surface_space is not None:
        for name, value in surface_values.items():
            check_partition(name, value, surface_space, func_name)
    else:
        infer_space(surface_values, func_name)

    get = registry.get_default_parameter
    nu_ss_minerals = 1 - nu_ss_om - nu_ss_quartz
    rho_c_ds = (1 - nu) * (
        nu_ss_om * get("rho_c_organic_matter")
        + nu_ss_quartz * get("rho_c_quartz")
        + nu_ss_minerals * get("rho_c_minerals")
    )
    kappa_solid = (
        get("kappa_organic_matter") ** nu_ss_om
        * get("kappa_quartz") ** nu_ss_quartz
        * get("kappa_minerals") ** nu_ss_minerals
    )
    kappa_ice = get("kappa_ice")
    kappa_liq = get("kappa_liq")
    kappa_sat_frozen = kappa_solid ** (1 - nu) * kappa_ice**nu
    kappa_sat_unfrozen = kappa_solid ** (1 - nu) * kappa_liq**nu
    rho_p = get("soil_particle_density")
    rho_bulk = (1 - nu) * rho_p
    kappa_air = get("kappa_air")
    kappa_dry = (
        (DRY_CONDUCTIVITY_A * kappa_solid - kappa_air) * rho_bulk + kappa_air * rho_p
    ) / (rho_p - (1 - DRY_CONDUCTIVITY_A) * rho_bulk)

    return EnergyHydrologyParameters(
        nu=nu,
        nu_ss_om=nu_ss_om,
        nu_ss_quartz=nu_ss_quartz,
        nu_ss_gravel=nu_ss_gravel,
        hydrology_cm=hydrology_cm,
        K_sat=K_sat,
        S_s=S_s,
        theta_r=theta_r,
        albedo=albedo,
        emissivity=emissivity,
        z_0m=z_0m,
        z_0b=z_0b,
        rho_c_ds=rho_c_ds,
        kappa_solid=kappa_solid,
        kappa_sat_frozen=kappa_sat_frozen,
        kappa_sat_unfrozen=kappa_sat_unfrozen,
        kappa_dry=kappa_dry,
        Omega=get("ice_impedance_omega"),
        tau=get("phase_change_timescale"),
        kappa_ice=kappa_ice,
        kappa_liq=kappa_liq,
        earth_param_set=earth_param_set,
    )


@dataclass(frozen=True, eq=False)
class TOPMODELRunoff:
    """
    TOPMODEL runoff: saturation-excess surface runoff over the saturated
    fraction of the grid cell, plus a subsurface (baseflow) sink.

    Parameters
    ----------
    f_over : float
        Decay parameter of the water table [m-1].
    f_max : float or Field
        Maximum saturated fraction [-], on the surface space.
    R_sb : float
        Maximum subsurface runoff [m s-1].
    """

    f_over: float
    f_max: object
    R_sb: float


@dataclass(frozen=True, eq=False)
class SoilCO2ModelParameters:
    """Soil CO2 production and diffusion parameters, defaulted from a registry."""

    D_ref: float = None
    respiration_rate: float = None
    q10: float = None
    T_ref: float = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "D_ref": "soilco2_diffusion_coefficient",
                "respiration_rate": "soilco2_respiration_rate",
                "q10": "soilco2_q10",
                "T_ref": "soilco2_reference_temperature",
            },
        )


class PrescribedSoilOrganicCarbon:
    """Soil organic carbon [kg C m-3], as a TimeVaryingInput."""

    def __init__(self, func):
        self.func = func


def topmodel_fmax(surface_space, context=None, regridder_type="InterpolationsRegridder",
                  extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Maximum saturated fraction for TOPMODEL, on ``surface_space``."""
    path = artifacts.topmodel_data_path(context)
    fmax = read_spatial_field(path, "fmax", surface_space, regridder_type, extrapolation_bc)
    return np.clip(fmax, 0.0, 1.0)


def soil_vangenuchten_parameters(subsurface_space, context=None,
                                 regridder_type="InterpolationsRegridder",
                                 extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """
    Read porosity, residual water, saturated conductivity and the
    van Genuchten parameters, regridded onto ``subsurface_space``.

    Returns
    -------
    dict with keys ``nu``, ``hydrology_cm``, ``K_sat`` and ``theta_r``.
    """
    path = artifacts.soil_params_artifact_path(context)

    def read(varname):
        return read_spatial_field(path, varname, subsurface_space, regridder_type, extrapolation_bc)

    return {
        "nu": read("nu"),
        "hydrology_cm": VanGenuchten(alpha=read("alpha"), n=read("n")),
        "K_sat": read("Ksat"),
        "theta_r": read("theta_r"),
    }


def soil_composition_parameters(subsurface_space, context=None,
                                regridder_type="InterpolationsRegridder",
                                extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """
    Read the volumetric fractions of organic matter, quartz and gravel in the
    soil solids, regridded onto ``subsurface_space``.
    """
    path = artifacts.soil_grids_params_artifact_path(context)
    return {
        name: read_spatial_field(path, name, subsurface_space, regridder_type, extrapolation_bc)
        for name in ("nu_ss_om", "nu_ss_quartz", "nu_ss_gravel")
    }


def clm_soil_albedo_parameters(surface_space, context=None,
                               regridder_type="InterpolationsRegridder",
                               extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Dry and saturated PAR/NIR soil albedo from CLM, on ``surface_space``."""
    path = artifacts.clm_soil_properties_path(context)
    return {
        name: read_spatial_field(path, name, surface_space, regridder_type, extrapolation_bc)
        for name in ("PAR_albedo_dry", "NIR_albedo_dry", "PAR_albedo_wet", "NIR_albedo_wet")
    }
