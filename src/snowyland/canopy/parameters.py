"""
Parameter bundles for the canopy components, and loaders for the spatially
varying CLM vegetation properties.

Optional values left as ``None`` are filled from the parameter registry in
``__post_init__``; everything else must be passed explicitly.
"""

from dataclasses import dataclass
import numpy as np
from snowyland.core.parameters import LandParameters, ParameterRegistry, resolve_defaults
from snowyland.met_data import artifacts
from snowyland.met_data.regridder import DEFAULT_EXTRAPOLATION_BC, read_spatial_field

MODULE_NAME = "snowyland.canopy.parameters"


@dataclass(frozen=True, eq=False)
class AutotrophicRespirationParameters:
    growth_fraction: float = None
    maintenance_scaling: float = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "growth_fraction": "growth_respiration_fraction",
                "maintenance_scaling": "maintenance_respiration_scaling",
            },
        )


@dataclass(frozen=True, eq=False)
class ConstantGFunction:
    """Leaf angle distribution with a fixed projection ``G``."""

    value: float = 0.5

    def __call__(self, mu):
        return self.value + 0.0 * mu


@dataclass(frozen=True, eq=False)
class CLMGFunction:
    """
    Ross-Goudriaan leaf angle distribution, from the departure ``chi_l`` of
    the leaf angles from a spherical distribution.
    """

    chi_l: object

    def __call__(self, mu):
        chi_l = np.clip(self.chi_l, -0.4, 0.6)
        phi_1 = 0.5 - 0.633 * chi_l - 0.33 * chi_l**2
        phi_2 = 0.877 * (1 - 2 * phi_1)
        return phi_1 + phi_2 * mu


@dataclass(frozen=True, eq=False)
class TwoStreamParameters:
    Omega: object = None
    alpha_PAR_leaf: object = None
    tau_PAR_leaf: object = None
    alpha_NIR_leaf: object = None
    tau_NIR_leaf: object = None
    G_Function: object = None
    emissivity: object = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "Omega": "canopy_clumping_index",
                "alpha_PAR_leaf": "canopy_PAR_leaf_reflectance",
                "tau_PAR_leaf": "canopy_PAR_leaf_transmittance",
                "alpha_NIR_leaf": "canopy_NIR_leaf_reflectance",
                "tau_NIR_leaf": "canopy_NIR_leaf_transmittance",
                "emissivity": "canopy_emissivity",
            },
        )
        if self.G_Function is None:
            object.__setattr__(
                self,
                "G_Function",
                CLMGFunction(self.registry.get_default_parameter("leaf_angle_distribution")),
            )


@dataclass(frozen=True, eq=False)
class MedlynConductanceParameters:
    """
    Medlyn stomatal conductance. ``g1`` is in Pa^0.5, ``g0`` in mol m-2 s-1.
    """

    g1: object = None
    g0: float = None
    Drel: float = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "g1": "medlyn_g1",
                "g0": "min_stomatal_conductance",
                "Drel": "relative_diffusivity_of_water_vapor",
            },
        )


@dataclass(frozen=True, eq=False)
class FarquharParameters:
    """
    Farquhar photosynthesis. ``is_c3`` is 1 for C3 and 0 for C4 vegetation
    (float or Field).
    """

    is_c3: object
    Vcmax25: object = None
    Gamma_star25: float = None
    Kc25: float = None
    Ko25: float = None
    oi: float = None
    dH_Vcmax: float = None
    phi: float = None
    theta_j: float = None
    f_Rd: float = None
    alpha_C4: float = None
    ci_ratio: float = None
    registry: ParameterRegistry = None

    def __post_init__(self):
        resolve_defaults(
            self,
            {
                "Vcmax25": "photosynthesis_Vcmax25",
                "Gamma_star25": "CO2_compensation_point_25c",
                "Kc25": "Kc_25c",
                "Ko25": "Ko_25c",
                "oi": "intercellular_O2_concentration",
                "dH_Vcmax": "Vcmax_activation_energy",
                "phi": "quantum_yield_of_photosystem_II",
                "theta_j": "curvature_of_light_response",
                "f_Rd": "dark_respiration_factor",
                "alpha_C4": "C4_quantum_efficiency",
                "ci_ratio": "intercellular_CO2_ratio_C3",
            },
        )


@dataclass(frozen=True, eq=False)
class Weibull:
    """
    Weibull xylem conductivity: ``K_sat * exp(-(psi / psi63) ** c)``.

    Parameters
    ----------
    K_sat : float
        Maximum conductivity [m s-1].
    psi63 : float
        Potential at which conductivity has dropped by 63% [m].
    c : float
        Shape parameter [-].
    """

    K_sat: float
    psi63: float
    c: float

    def conductivity(self, psi):
        # psi and psi63 are both negative under tension
        return self.K_sat * np.exp(-np.maximum(psi / self.psi63, 0.0) ** self.c)


@dataclass(frozen=True, eq=False)
class LinearRetentionCurve:
    """Plant water potential linear in relative water content: ``(S - 1) / a``."""

    a: float

    def potential(self, S):
        return (S - 1) / self.a

    def inverse_potential(self, psi):
        return psi * self.a + 1


@dataclass(frozen=True, eq=False)
class PrescribedSiteAreaIndex:
    """
    Leaf area index (a TimeVaryingInput), and constant stem and root area
    indices [m2 m-2].
    """

    LAIfunction: object
    SAI: float
    RAI: float


@dataclass(frozen=True, eq=False)
class PlantHydraulicsParameters:
    ai_parameterization: PrescribedSiteAreaIndex
    nu: float
    S_s: float
    rooting_depth: object
    conductivity_model: Weibull
    retention_model: LinearRetentionCurve


@dataclass(frozen=True, eq=False)
class BigLeafEnergyParameters:
    """``ac_canopy``: areal heat capacity of the canopy [J m-2 K-1]."""

    ac_canopy: float


@dataclass(frozen=True, eq=False)
class SharedCanopyParameters:
    z0_m: float
    z0_b: float
    earth_param_set: LandParameters


def _read(path, varname, surface_space, regridder_type, extrapolation_bc):
    return read_spatial_field(path, varname, surface_space, regridder_type, extrapolation_bc)


def clm_medlyn_g1(surface_space, context=None, regridder_type="InterpolationsRegridder",
                  extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Medlyn slope from CLM, converted from kPa^0.5 to Pa^0.5."""
    path = artifacts.clm_vegetation_properties_path(context)
    medlynslope = _read(path, "medlynslope", surface_space, regridder_type, extrapolation_bc)
    return medlynslope * np.sqrt(1000.0)


def clm_rooting_depth(surface_space, context=None, regridder_type="InterpolationsRegridder",
                      extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """e-folding depth of the root distribution [m]."""
    path = artifacts.clm_vegetation_properties_path(context)
    return _read(path, "rooting_depth", surface_space, regridder_type, extrapolation_bc)


def clm_photosynthesis_parameters(surface_space, context=None,
                                  regridder_type="InterpolationsRegridder",
                                  extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """
    Returns
    -------
    dict with ``is_c3`` (1 where C3 vegetation dominates, else 0) and
    ``Vcmax25`` [mol m-2 s-1].
    """
    path = artifacts.clm_vegetation_properties_path(context)
    c3_fraction = _read(path, "c3_dominant", surface_space, regridder_type, extrapolation_bc)
    is_c3 = c3_fraction.copy()
    is_c3[...] = np.where(c3_fraction >= 0.5, 1.0, 0.0)
    return {
        "is_c3": is_c3,
        "Vcmax25": _read(path, "vcmx25", surface_space, regridder_type, extrapolation_bc),
    }


def clm_canopy_radiation_parameters(surface_space, context=None,
                                    regridder_type="InterpolationsRegridder",
                                    extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Clumping index, leaf angle distribution and leaf optical properties."""
    path = artifacts.clm_vegetation_properties_path(context)

    def read(varname):
        return _read(path, varname, surface_space, regridder_type, extrapolation_bc)

    return {
        "Omega": read("Omega"),
        "G_Function": CLMGFunction(read("xl")),
        "alpha_PAR_leaf": read("rholvis"),
        "tau_PAR_leaf": read("taulvis"),
        "alpha_NIR_leaf": read("rholnir"),
        "tau_NIR_leaf": read("taulnir"),
    }
