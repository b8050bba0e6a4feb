"""
Write a complete tree of synthetic datasets, with the file names, variable
names, units and dimensions that the land model reads, below an artifact
root.

The fields are smooth analytic functions of latitude, longitude, depth and
time, so a run on them is deterministic. They are meant for testing and for
benchmarking where the real datasets are not available, not for science.

Usage::

    python -m snowyland.met_data.create_synthetic_artifacts <root> [--resolution 5] [--ndays 2]
"""

import argparse
import datetime
import os
from netCDF4 import Dataset  # pylint: disable=no-name-in-module
import numpy as np
from snowyland.met_data import artifacts

MODULE_NAME = "snowyland.met_data.create_synthetic_artifacts"
SOIL_DEPTHS = np.array([-50.0, -10.0, -2.0, -1.0, -0.5, -0.2, -0.05, 0.0])


def grid(resolution):
    """Cell-centred latitudes and longitudes [degrees] at ``resolution``."""
    lat = np.arange(-90 + resolution / 2, 90, resolution)
    lon = np.arange(resolution / 2, 360, resolution)
    return lat, lon


def _create_coordinates(f, lat, lon, z=None, time=None, time_units=None):
    if time is not None:
        f.createDimension("time", None)
        var = f.createVariable("time", np.dtype("float64").char, ("time",))
        var.units = time_units
        var.calendar = "standard"
        var[:] = time
    if z is not None:
        f.createDimension("z", len(z))
        var = f.createVariable("z", np.dtype("float64").char, ("z",))
        var.units = "m"
        var.long_name = "Depth below the surface (negative downward)"
        var[:] = z
    f.createDimension("lat", len(lat))
    f.createDimension("lon", len(lon))
    var = f.createVariable("lat", np.dtype("float64").char, ("lat",))
    var.units = "degrees_north"
    var[:] = lat
    var = f.createVariable("lon", np.dtype("float64").char, ("lon",))
    var.units = "degrees_east"
    var[:] = lon


def write_fields(path, fields, lat, lon, z=None, time=None, time_units=None, units=None):
    """
    Write ``fields`` (a dict of variable name to array) to a new netCDF file.
    Arrays are dimensioned (lat, lon), (z, lat, lon) or (time, lat, lon),
    matching the coordinates given.
    """
    units = units or {}
    if time is not None:
        dims = ("time", "lat", "lon")
    elif z is not None:
        dims = ("z", "lat", "lon")
    else:
        dims = ("lat", "lon")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with Dataset(path, "w") as f:
        _create_coordinates(f, lat, lon, z=z, time=time, time_units=time_units)
        for key, value in fields.items():
            var = f.createVariable(key, np.dtype("float64").char, dims)
            var.long_name = key
            if key in units:
                var.units = units[key]
            var[:] = value
    return path


def era5_fields(lat, lon, hours):
    """Hourly near-surface weather with a diurnal cycle and polar snow."""
    hours = np.asarray(hours, dtype=np.float64)[:, None, None]
    phi = np.deg2rad(lat)[None, :, None]
    lam = np.deg2rad(lon)[None, None, :]
    local_hour = np.mod(hours + np.rad2deg(lam) / 15.0, 24.0)
    diurnal = np.cos(2 * np.pi * (local_hour - 14.0) / 24.0)
    cos_sun = np.maximum(np.cos(phi) * np.cos(2 * np.pi * (local_hour - 12.0) / 24.0), 0.0)

    t2m = 300.0 - 45.0 * np.sin(phi) ** 2 + 5.0 * diurnal
    d2m = t2m - 4.0 - 2.0 * np.cos(lam) ** 2
    mtpr = 5e-5 * np.maximum(np.sin(3 * phi) * np.cos(2 * lam + 0.3 * hours), 0.0)
    msr = np.where(t2m < 273.15, mtpr, 0.0)
    shape = np.broadcast_shapes(t2m.shape, mtpr.shape)
    return {
        "mtpr": np.broadcast_to(mtpr, shape),
        "msr": np.broadcast_to(msr, shape),
        "t2m": np.broadcast_to(t2m, shape),
        "sp": np.broadcast_to(101325.0 - 2000.0 * np.sin(phi) ** 2 + 0.0 * lam, shape),
        "u10": np.broadcast_to(3.0 + 2.0 * np.cos(phi) * np.sin(lam) + 0.0 * hours, shape),
        "v10": np.broadcast_to(1.0 + np.sin(2 * phi) + 0.0 * lam + 0.0 * hours, shape),
        "d2m": np.broadcast_to(d2m, shape),
        "msdwswrf": np.broadcast_to(1000.0 * cos_sun, shape),
        "msdwlwrf": np.broadcast_to(250.0 + 100.0 * np.cos(phi) ** 2 + 0.0 * lam + 0.0 * hours, shape),
    }


ERA5_UNITS = {
    "mtpr": "kg m**-2 s**-1",
    "msr": "kg m**-2 s**-1",
    "t2m": "K",
    "sp": "Pa",
    "u10": "m s**-1",
    "v10": "m s**-1",
    "d2m": "K",
    "msdwswrf": "W m**-2",
    "msdwlwrf": "W m**-2",
}


def write_era5(root, year, resolution, ndays, lowres):
    lat, lon = grid(resolution)
    hours = np.arange(24 * ndays, dtype=np.float64)
    filename = "era5_2008_1.0x1.0_lowres.nc" if lowres else "era5_2008_0.25x0.25.nc"
    path = os.path.join(root, artifacts.ERA5_DIR, filename)
    return write_fields(
        path,
        era5_fields(lat, lon, hours),
        lat,
        lon,
        time=hours,
        time_units=f"hours since {year}-01-01 00:00:00",
        units=ERA5_UNITS,
    )


def write_modis_lai(root, year, resolution):
    """Monthly leaf area index, mid-month samples, peaking in local summer."""
    lat, lon = grid(resolution)
    start = datetime.datetime(year, 1, 1)
    days = np.array(
        [(datetime.datetime(year, month, 15) - start).days for month in range(1, 13)],
        dtype=np.float64,
    )
    phi = np.deg2rad(lat)[None, :, None]
    season = np.cos(2 * np.pi * (days[:, None, None] - 196.0) / 366.0) * np.sign(phi)
    lai = np.maximum(2.0 * np.cos(phi) ** 2 * (1.0 + 0.5 * season), 0.0) + 0.0 * lon[None, None, :]
    path = os.path.join(root, artifacts.MODIS_LAI_DIR, f"Yuan_et_al_{year}_1x1.nc")
    return write_fields(
        path,
        {"lai": lai},
        lat,
        lon,
        time=days,
        time_units=f"days since {year}-01-01 00:00:00",
        units={"lai": "m2 m-2"},
    )


def write_soil(root, resolution):
    lat, lon = grid(resolution)
    z = SOIL_DEPTHS
    phi = np.deg2rad(lat)[None, :, None]
    lam = np.deg2rad(lon)[None, None, :]
    depth = -z[:, None, None]
    texture = 0.5 + 0.5 * np.sin(2 * phi) * np.cos(lam)
    shape = (len(z), len(lat), len(lon))

    def as_3d(value):
        return np.broadcast_to(value, shape)

    hydrology = {
        "nu": as_3d(0.45 + 0.05 * texture - 0.002 * depth),
        "alpha": as_3d(1.0 + 2.0 * texture),
        "n": as_3d(1.4 + 0.3 * texture),
        "Ksat": as_3d(1e-6 * (1.0 + 4.0 * texture) * np.exp(-depth / 20.0)),
        "theta_r": as_3d(0.04 + 0.02 * texture),
    }
    write_fields(
        os.path.join(root, artifacts.SOIL_PARAMS_DIR, "soil_params_Gupta2020_2022.nc"),
        hydrology,
        lat,
        lon,
        z=z,
        units={"nu": "m3 m-3", "alpha": "m-1", "n": "1", "Ksat": "m s-1", "theta_r": "m3 m-3"},
    )
    composition = {
        "nu_ss_om": as_3d(0.08 * np.exp(-depth) + 0.01),
        "nu_ss_quartz": as_3d(0.3 + 0.2 * texture),
        "nu_ss_gravel": as_3d(0.05 + 0.05 * texture),
    }
    write_fields(
        os.path.join(root, artifacts.SOIL_PARAMS_DIR, "soil_solid_vol_fractions_soilgrids.nc"),
        composition,
        lat,
        lon,
        z=z,
    )
    flat = np.ones((len(lat), len(lon)))
    albedo = {
        "PAR_albedo_dry": 0.2 * flat + 0.05 * texture[0],
        "NIR_albedo_dry": 0.3 * flat + 0.05 * texture[0],
        "PAR_albedo_wet": 0.1 * flat + 0.05 * texture[0],
        "NIR_albedo_wet": 0.2 * flat + 0.05 * texture[0],
    }
    write_fields(os.path.join(root, artifacts.CLM_DIR, "soil_properties_map.nc"), albedo, lat, lon)
    write_fields(
        os.path.join(root, artifacts.TOPMODEL_DIR, "maxsat.nc"),
        {"fmax": 0.2 * flat + 0.2 * texture[0]},
        lat,
        lon,
    )


def write_vegetation(root, resolution):
    lat, lon = grid(resolution)
    phi = np.deg2rad(lat)[:, None]
    lam = np.deg2rad(lon)[None, :]
    tropical = np.cos(phi) ** 2 + 0.0 * lam
    fields = {
        "medlynslope": 3.0 + 2.0 * tropical,
        "rooting_depth": 0.3 + 0.7 * tropical,
        "c3_dominant": np.where(np.abs(phi) > np.deg2rad(25.0), 1.0, 0.3) + 0.0 * lam,
        "vcmx25": 4e-5 + 3e-5 * tropical,
        "Omega": 0.6 + 0.2 * tropical,
        "xl": 0.1 * np.sin(lam) + 0.0 * phi,
        "rholvis": 0.08 + 0.02 * tropical,
        "taulvis": 0.05 + 0.0 * tropical,
        "rholnir": 0.35 + 0.1 * tropical,
        "taulnir": 0.25 + 0.1 * tropical,
    }
    units = {"medlynslope": "kPa^0.5", "rooting_depth": "m", "vcmx25": "mol m-2 s-1"}
    return write_fields(
        os.path.join(root, artifacts.CLM_DIR, "vegetation_properties_map.nc"),
        fields,
        lat,
        lon,
        units=units,
    )


def create_synthetic_artifacts(root, resolution=5.0, ndays=2, year=2008):
    """
    Write every dataset the land model reads below ``root``.

    Parameters
    ----------
    root : str
        Artifact root; use it as ``artifacts_dir`` in the model setup, or set
        the ``SNOWYLAND_ARTIFACTS`` environment variable to it.
    resolution : float
        Grid spacing of all datasets [degrees].
    ndays : int
        Length of the hourly forcing record [days]. The forcing repeats with
        this period.
    year : int
        Year of the forcing and leaf area index time axes.

    Returns
    -------
    str
        ``root``.
    """
    root = os.path.expanduser(root)
    for lowres in (True, False):
        write_era5(root, year, resolution, ndays, lowres)
    write_modis_lai(root, year, resolution)
    write_soil(root, resolution)
    write_vegetation(root, resolution)
    print(f"{MODULE_NAME}.create_synthetic_artifacts: Wrote synthetic datasets to {root}")
    return root


def main(argv=None):
    parser = argparse.ArgumentParser(description="Write synthetic land model datasets.")
    parser.add_argument("root", help="Directory to write the datasets into")
    parser.add_argument("--resolution", type=float, default=5.0, help="Grid spacing [degrees]")
    parser.add_argument("--ndays", type=int, default=2, help="Days of hourly forcing")
    parser.add_argument("--year", type=int, default=2008)
    args = parser.parse_args(argv)
    create_synthetic_artifacts(args.root, resolution=args.resolution, ndays=args.ndays, year=args.year)


if __name__ == "__main__":
    main()
