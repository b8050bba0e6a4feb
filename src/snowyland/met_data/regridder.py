"""
Regridding of gridded (latitude/longitude, optionally depth) netCDF data onto
the model spaces.

Source data are expected with dimensions ``(lat, lon)`` or ``(z, lat, lon)``
(leading ``time`` dimensions are handled by the time-varying input layer).
Interpolation is linear, using scipy's ``RegularGridInterpolator``; the
boundary condition along each of (lon, lat, z) is either "periodic" or
"flat" (nearest value beyond the end points).
"""

import numpy as np
from netCDF4 import Dataset  # pylint: disable=no-name-in-module
from scipy.interpolate import RegularGridInterpolator
from snowyland.core.domain import Field
from snowyland.core.errors import ConfigurationError, DataAccessError

MODULE_NAME = "snowyland.met_data.regridder"
DEFAULT_EXTRAPOLATION_BC = ("periodic", "flat", "flat")
REGRIDDER_TYPES = ("InterpolationsRegridder",)

LAT_NAMES = ("lat", "latitude")
LON_NAMES = ("lon", "long", "longitude")
Z_NAMES = ("z", "depth")


def _coordinate(dataset, names, func_name, path):
    for name in names:
        if name in dataset.variables:
            return np.asarray(np.ma.getdata(dataset.variables[name][:]), dtype=np.float64)
    raise DataAccessError(
        f"{func_name}: None of the coordinate variables {names} were found in"
        f" {path}."
    )


class InterpolationsRegridder:
    """
    Linear regridder onto a target space.

    Parameters
    ----------
    target_space : Space
        Surface or subsurface space to regrid onto.
    extrapolation_bc : tuple of str, optional
        Boundary condition along (lon, lat, z). Default
        ("periodic", "flat", "flat").
    """

    def __init__(self, target_space, extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
        func_name = f"{MODULE_NAME}.InterpolationsRegridder"
        for bc in extrapolation_bc:
            if bc not in ("periodic", "flat"):
                raise ConfigurationError(
                    f"{func_name}: extrapolation_bc entries must be 'periodic'"
                    f" or 'flat', not {bc!r}"
                )
        self.target_space = target_space
        self.extrapolation_bc = tuple(extrapolation_bc)

    def _prepare_axis(self, coord, data, axis, bc, period=None):
        """Sort an axis ascending and, if periodic, pad it by one wrapped point."""
        order = np.argsort(coord)
        coord = coord[order]
        data = np.take(data, order, axis=axis)
        if bc == "periodic" and period is not None and len(coord) > 1:
            coord = np.concatenate(([coord[-1] - period], coord, [coord[0] + period]))
            data = np.concatenate(
                (
                    np.take(data, [-1], axis=axis),
                    data,
                    np.take(data, [0], axis=axis),
                ),
                axis=axis,
            )
        return coord, data

    @staticmethod
    def _bound(target, coord, bc, period=None):
        if bc == "periodic" and period is not None:
            # coord[1] is the first original point after padding
            origin = coord[1] if len(coord) > 2 else coord[0]
            return origin + np.mod(target - origin, period)
        return np.clip(target, coord[0], coord[-1])

    def regrid(self, data, lat, lon, z=None):
        """
        Interpolate ``data`` onto the target space.

        Parameters
        ----------
        data : array_like, dimension(lat, lon) or (z, lat, lon)
        lat, lon : array_like
            Source coordinates [degrees].
        z : array_like, optional
            Source depths [m, negative downward], required for 3D data.

        Returns
        -------
        Field on ``target_space``.
        """
        func_name = f"{MODULE_NAME}.InterpolationsRegridder.regrid"
        space = self.target_space
        data = np.asarray(data, dtype=np.float64)
        lon_bc, lat_bc, z_bc = self.extrapolation_bc
        if data.ndim == 3 and space.kind != "subsurface":
            raise ConfigurationError(
                f"{func_name}: 3D data cannot be regridded onto a {space.kind}"
                " space."
            )
        if data.ndim == 2:
            lat_axis, lon_axis = 0, 1
        elif data.ndim == 3:
            if z is None:
                raise ConfigurationError(f"{func_name}: 3D data requires z")
            lat_axis, lon_axis = 1, 2
        else:
            raise ConfigurationError(
                f"{func_name}: data must be 2D or 3D, not {data.ndim}D"
            )
        lon, data = self._prepare_axis(np.asarray(lon, dtype=np.float64), data, lon_axis, lon_bc, 360.0)
        lat, data = self._prepare_axis(np.asarray(lat, dtype=np.float64), data, lat_axis, lat_bc)
        target_lat = self._bound(space.lat, lat, lat_bc)
        target_lon = self._bound(space.lon, lon, lon_bc, 360.0)

        if data.ndim == 2:
            interp = RegularGridInterpolator((lat, lon), data, method="linear", bounds_error=False, fill_value=None)
            values = interp(np.stack((target_lat, target_lon), axis=-1))
            if space.kind == "subsurface":
                values = np.repeat(values[:, None], space.nlevels, axis=1)
            return Field(values, space)

        z, data = self._prepare_axis(np.asarray(z, dtype=np.float64), data, 0, z_bc)
        target_z = self._bound(space.z, z, z_bc)
        ncol, nlev = space.shape
        points = np.stack(
            (
                np.broadcast_to(target_z[None, :], (ncol, nlev)).ravel(),
                np.broadcast_to(target_lat[:, None], (ncol, nlev)).ravel(),
                np.broadcast_to(target_lon[:, None], (ncol, nlev)).ravel(),
            ),
            axis=-1,
        )
        interp = RegularGridInterpolator((z, lat, lon), data, method="linear", bounds_error=False, fill_value=None)
        return Field(interp(points).reshape(ncol, nlev), space)


def make_regridder(space, regridder_type="InterpolationsRegridder",
                   extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    if regridder_type not in REGRIDDER_TYPES:
        raise ConfigurationError(
            f"{MODULE_NAME}.make_regridder: regridder_type must be one of"
            f" {REGRIDDER_TYPES}, not {regridder_type}"
        )
    return InterpolationsRegridder(space, extrapolation_bc=extrapolation_bc)


def read_gridded_variable(path, varname, index=None):
    """
    Read one variable (optionally one time index of it) and its coordinates
    from a netCDF file.

    Returns
    -------
    data, lat, lon, z : np.ndarray (z is None for 2D data)
    """
    func_name = f"{MODULE_NAME}.read_gridded_variable"
    try:
        with Dataset(path) as ds:
            if varname not in ds.variables:
                raise DataAccessError(
                    f"{func_name}: Variable <{varname}> not found in {path}."
                )
            var = ds.variables[varname]
            raw = var[index] if index is not None else var[:]
            data = np.ma.filled(np.ma.asarray(raw, dtype=np.float64), np.nan)
            lat = _coordinate(ds, LAT_NAMES, func_name, path)
            lon = _coordinate(ds, LON_NAMES, func_name, path)
            z = None
            if data.ndim == 3:
                z = _coordinate(ds, Z_NAMES, func_name, path)
    except DataAccessError:
        raise
    except OSError as err:
        raise DataAccessError(f"{func_name}: Could not read {path}: {err}") from err
    return data, lat, lon, z


def read_spatial_field(path, varname, space, regridder_type="InterpolationsRegridder",
                       extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
    """Read a static map from ``path`` and regrid it onto ``space``."""
    regridder = make_regridder(space, regridder_type, extrapolation_bc)
    data, lat, lon, z = read_gridded_variable(path, varname)
    return regridder.regrid(data, lat, lon, z)
