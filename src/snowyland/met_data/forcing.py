"""
Prescribed atmospheric and radiative forcing built from ERA5 reanalysis
data, and prescribed leaf area index from MODIS.

ERA5 accumulations are read as mean rates: ``mtpr`` (total precipitation)
and ``msr`` (snowfall) in kg m-2 s-1, ``msdwswrf`` / ``msdwlwrf`` (downwelling
short/longwave) in W m-2. Precipitation is converted to a volume flux of
liquid water, negative downward.
"""

import datetime
import numpy as np
from snowyland.core.domain import zeros
from snowyland.met_data.regridder import DEFAULT_EXTRAPOLATION_BC
from snowyland.met_data.time_varying_input import (
    LinearInterpolation,
    TimeVaryingInput,
    evaluate,
)

MODULE_NAME = "snowyland.met_data.forcing"
DEG_TO_RAD = np.pi / 180.0
# ratio of the molar masses of water and dry air
EPSILON = 0.622
CO2_MIXING_RATIO = 4.2e-4


def saturation_vapor_pressure(T):
    """Magnus formula over liquid water [Pa], for T in K."""
    T_c = T - 273.15
    return 610.94 * np.exp(17.625 * T_c / (T_c + 243.04))


def specific_humidity_from_dewpoint(T_dew, P):
    """Specific humidity [kg kg-1] from dew point [K] and pressure [Pa]."""
    e = saturation_vapor_pressure(T_dew)
    return EPSILON * e / (P - (1 - EPSILON) * e)


def solar_zenith_angle(lat, lon, seconds_of_year, seconds_of_day):
    """
    Zenith angle [rad] at UTC for the given location(s), following the NOAA
    solar calculator equations.

    Parameters
    ----------
    lat, lon : float or np.ndarray
        [degrees]
    seconds_of_year : float
        Seconds since 1 January 00:00 UTC.
    seconds_of_day : float
        Seconds since 00:00 UTC.
    """
    y = 2 * np.pi / 365.0 * (seconds_of_year / 86400.0)
    decl = (
        6.918e-3
        - 0.399912 * np.cos(y)
        + 7.0257e-2 * np.sin(y)
        - 6.758e-3 * np.cos(2.0 * y)
        + 9.07e-4 * np.sin(2.0 * y)
        - 2.697e-3 * np.cos(3.0 * y)
        + 1.48e-3 * np.sin(3.0 * y)
    )
    # equation of time (min)
    et = 229.18 * (
        7.5e-5
        + 1.868e-3 * np.cos(y)
        - 3.2077e-2 * np.sin(y)
        - 1.4615e-2 * np.cos(2.0 * y)
        - 4.0849e-2 * np.sin(2.0 * y)
    )
    minutes = seconds_of_day / 60.0 + et + 4.0 * lon
    ha = DEG_TO_RAD * (minutes / 4.0 - 180.0)
    lat0 = lat * DEG_TO_RAD
    cos_zen = np.sin(lat0) * np.sin(decl) + np.cos(lat0) * np.cos(decl) * np.cos(ha)
    return np.arccos(np.clip(cos_zen, -1.0, 1.0))


class PrescribedAtmosphere:
    """
    Near-surface atmospheric state, as TimeVaryingInputs.

    Attributes
    ----------
    liquid_precip, snow_precip : TimeVaryingInput
        Volume fluxes [m s-1], negative downward.
    T : TimeVaryingInput
        Air temperature [K].
    u : TimeVaryingInput
        Wind speed [m s-1].
    q : TimeVaryingInput
        Specific humidity [kg kg-1].
    P : TimeVaryingInput
        Surface pressure [Pa].
    c_co2 : TimeVaryingInput
        CO2 mixing ratio [mol mol-1].
    start_date : datetime.datetime
    h : float
        Reference height [m].
    """

    def __init__(self, liquid_precip, snow_precip, T, u, q, P, start_date, h,
                 earth_param_set, c_co2=None):
        self.liquid_precip = liquid_precip
        self.snow_precip = snow_precip
        self.T = T
        self.u = u
        self.q = q
        self.P = P
        self.c_co2 = c_co2 or TimeVaryingInput.from_function(lambda t: CO2_MIXING_RATIO)
        self.start_date = start_date
        self.h = h
        self.earth_param_set = earth_param_set

    driver_names = ("P_liq", "P_snow", "T", "P", "u", "q", "c_co2")

    def inputs(self):
        return {
            "P_liq": self.liquid_precip,
            "P_snow": self.snow_precip,
            "T": self.T,
            "P": self.P,
            "u": self.u,
            "q": self.q,
            "c_co2": self.c_co2,
        }


class PrescribedRadiativeFluxes:
    """
    Downwelling short and longwave radiation [W m-2], plus the solar zenith
    angle computed from the simulation time.
    """

    def __init__(self, SW_d, LW_d, start_date):
        self.SW_d = SW_d
        self.LW_d = LW_d
        self.start_date = start_date

    driver_names = ("SW_d", "LW_d", "cos_zenith")

    def inputs(self):
        return {"SW_d": self.SW_d, "LW_d": self.LW_d}

    def cos_zenith(self, space, t):
        date = self.start_date + datetime.timedelta(seconds=float(t))
        start_of_year = datetime.datetime(date.year, 1, 1, tzinfo=date.tzinfo)
        seconds_of_year = (date - start_of_year).total_seconds()
        seconds_of_day = date.hour * 3600.0 + date.minute * 60.0 + date.second
        return np.cos(solar_zenith_angle(space.lat, space.lon, seconds_of_year, seconds_of_day))


def prescribed_forcing_era5(era5_ncdata_path, surface_space, start_date, earth_param_set,
                            time_interpolation_method=None,
                            regridder_type="InterpolationsRegridder",
                            extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """
    Build the atmospheric and radiative forcing from an ERA5 file.

    Returns
    -------
    atmos : PrescribedAtmosphere
    radiation : PrescribedRadiativeFluxes
    """
    method = time_interpolation_method or LinearInterpolation()
    rho_l = earth_param_set.rho_l

    def from_file(varnames, compose_function=None):
        return TimeVaryingInput.from_file(
            era5_ncdata_path,
            varnames,
            surface_space,
            start_date,
            method=method,
            compose_function=compose_function,
            regridder_type=regridder_type,
            extrapolation_bc=extrapolation_bc,
        )

    liquid_precip = from_file(
        ("mtpr", "msr"),
        compose_function=lambda mtpr, msr: -np.maximum(mtpr - msr, 0.0) / rho_l,
    )
    snow_precip = from_file(("msr",), compose_function=lambda msr: -np.maximum(msr, 0.0) / rho_l)
    T = from_file("t2m")
    P = from_file("sp")
    u = from_file(("u10", "v10"), compose_function=lambda u10, v10: np.sqrt(u10**2 + v10**2))
    q = from_file(("d2m", "sp"), compose_function=specific_humidity_from_dewpoint)
    atmos = PrescribedAtmosphere(
        liquid_precip,
        snow_precip,
        T,
        u,
        q,
        P,
        start_date,
        earth_param_set.atmos_h,
        earth_param_set,
    )
    radiation = PrescribedRadiativeFluxes(
        from_file("msdwswrf"),
        from_file("msdwlwrf"),
        start_date,
    )
    return atmos, radiation


def prescribed_lai_modis(modis_lai_ncdata_path, surface_space, start_date,
                         time_interpolation_method=None,
                         regridder_type="InterpolationsRegridder",
                         extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Leaf area index [m2 m-2] as a TimeVaryingInput on the surface space."""
    return TimeVaryingInput.from_file(
        modis_lai_ncdata_path,
        "lai",
        surface_space,
        start_date,
        method=time_interpolation_method or LinearInterpolation(),
        compose_function=lambda lai: np.maximum(lai, 0.0),
        regridder_type=regridder_type,
        extrapolation_bc=extrapolation_bc,
    )


def evaluate_forcing(atmos, radiation, surface_space, t, out=None):
    """
    Evaluate every forcing driver at time ``t`` into the dict ``out``
    (allocated on the surface space if not given).
    """
    if out is None:
        out = {}
    for source in (atmos, radiation):
        for name, tv_input in source.inputs().items():
            if name not in out:
                out[name] = zeros(surface_space)
            evaluate(out[name], tv_input, t)
    if "cos_zenith" not in out:
        out["cos_zenith"] = zeros(surface_space)
    out["cos_zenith"][...] = radiation.cos_zenith(surface_space, t)
    return out
