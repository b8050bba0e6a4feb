"""
Inputs that vary in time: either an analytic function of the simulation time
or a gridded netCDF time series, regridded onto a model space and linearly
interpolated in time.

Simulation time is measured in seconds since a ``start_date``; the time axis
of a file is decoded with ``netCDF4.num2date`` and converted to the same
reference.
"""

import datetime
from collections import OrderedDict
import numpy as np
from netCDF4 import Dataset, num2date  # pylint: disable=no-name-in-module
from snowyland.core.domain import Field
from snowyland.core.errors import ConfigurationError, DataAccessError
from snowyland.met_data.regridder import (
    DEFAULT_EXTRAPOLATION_BC,
    make_regridder,
    read_gridded_variable,
)

MODULE_NAME = "snowyland.met_data.time_varying_input"
TIME_NAMES = ("time", "valid_time", "date")


class PeriodicCalendar:
    """
    Treat the data as periodic in time. If ``period`` is not given, the
    period is the span of the data plus one sampling interval, so that the
    last sample is followed by the first one again (for a full year of data,
    this is one calendar year).
    """

    def __init__(self, period=None):
        if isinstance(period, datetime.timedelta):
            period = period.total_seconds()
        self.period = period

    def bound(self, t, times):
        period = self.period
        if period is None:
            period = times[-1] - times[0] + (times[1] - times[0] if len(times) > 1 else 1.0)
        return times[0] + np.mod(t - times[0], period), period


class Flat:
    """Hold the first/last value outside of the data's time span."""

    def bound(self, t, times):
        return min(max(t, times[0]), times[-1]), None


class LinearInterpolation:
    def __init__(self, extrapolation_bc=None):
        self.extrapolation_bc = extrapolation_bc or PeriodicCalendar()

    def weights(self, t, times):
        """
        Return ``(i0, i1, w1)`` such that the interpolated value is
        ``(1 - w1) * x[i0] + w1 * x[i1]``.
        """
        t, period = self.extrapolation_bc.bound(t, times)
        n = len(times)
        if n == 1:
            return 0, 0, 0.0
        i1 = int(np.searchsorted(times, t, side="right"))
        if i1 == 0:
            return 0, 0, 0.0
        if i1 == n:
            if period is None or t == times[-1]:
                return n - 1, n - 1, 0.0
            # between the last sample and the wrapped first one
            t_next = times[0] + period
            return n - 1, 0, (t - times[-1]) / (t_next - times[-1])
        i0 = i1 - 1
        return i0, i1, (t - times[i0]) / (times[i1] - times[i0])


def seconds_since(dates, start_date):
    return np.array([(date - start_date).total_seconds() for date in dates])


def read_time_axis(path, start_date):
    """Decode the time axis of ``path`` into seconds since ``start_date``."""
    func_name = f"{MODULE_NAME}.read_time_axis"
    try:
        with Dataset(path) as ds:
            for name in TIME_NAMES:
                if name in ds.variables:
                    var = ds.variables[name]
                    dates = num2date(
                        var[:],
                        var.units,
                        calendar=getattr(var, "calendar", "standard"),
                        only_use_cftime_datetimes=False,
                        only_use_python_datetimes=True,
                    )
                    break
            else:
                raise DataAccessError(
                    f"{func_name}: None of the time variables {TIME_NAMES}"
                    f" were found in {path}."
                )
    except DataAccessError:
        raise
    except OSError as err:
        raise DataAccessError(f"{func_name}: Could not read {path}: {err}") from err
    return seconds_since(np.atleast_1d(dates), start_date)


class DataHandler:
    """
    Provides regridded snapshots of one or more variables of a netCDF time
    series. Snapshots are read on demand and the most recent ones are kept,
    so that stepping through time reads each file record only once.

    Parameters
    ----------
    path : str
    varnames : tuple of str
    space : Space
        Target space of the regridded snapshots.
    start_date : datetime.datetime
    compose_function : callable, optional
        Combines the variables (in ``varnames`` order) into one array.
        Required when more than one variable is given.
    """

    def __init__(self, path, varnames, space, start_date, compose_function=None,
                 regridder_type="InterpolationsRegridder",
                 extrapolation_bc=DEFAULT_EXTRAPOLATION_BC, cache_size=4):
        func_name = f"{MODULE_NAME}.DataHandler"
        if isinstance(varnames, str):
            varnames = (varnames,)
        if len(varnames) > 1 and compose_function is None:
            raise ConfigurationError(
                f"{func_name}: compose_function is required to combine the"
                f" variables {varnames}"
            )
        self.path = path
        self.varnames = tuple(varnames)
        self.space = space
        self.start_date = start_date
        self.compose_function = compose_function
        self.regridder = make_regridder(space, regridder_type, extrapolation_bc)
        self.times = read_time_axis(path, start_date)
        self.cache_size = cache_size
        self._cache = OrderedDict()

    def regridded_snapshot(self, index):
        if index in self._cache:
            self._cache.move_to_end(index)
            return self._cache[index]
        arrays = []
        for varname in self.varnames:
            data, lat, lon, z = read_gridded_variable(self.path, varname, index=index)
            arrays.append(data)
        if self.compose_function is not None:
            data = self.compose_function(*arrays)
        else:
            data = arrays[0]
        snapshot = self.regridder.regrid(data, lat, lon, z)
        self._cache[index] = snapshot
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return snapshot


class TimeVaryingInput:
    """
    Base class. Use ``TimeVaryingInput.from_function`` or
    ``TimeVaryingInput.from_file`` to build one, and ``evaluate`` to write
    its value at a given time into a Field.
    """

    @staticmethod
    def from_function(func):
        return AnalyticTimeVaryingInput(func)

    @staticmethod
    def from_file(path, varnames, space, start_date, method=None, compose_function=None,
                  regridder_type="InterpolationsRegridder",
                  extrapolation_bc=DEFAULT_EXTRAPOLATION_BC):
        handler = DataHandler(
            path,
            varnames,
            space,
            start_date,
            compose_function=compose_function,
            regridder_type=regridder_type,
            extrapolation_bc=extrapolation_bc,
        )
        return InterpolatingTimeVaryingInput(handler, method or LinearInterpolation())

    def evaluate(self, dest, t):
        raise NotImplementedError


class AnalyticTimeVaryingInput(TimeVaryingInput):
    def __init__(self, func):
        self.func = func

    def evaluate(self, dest, t):
        dest[...] = self.func(t)
        return dest


class InterpolatingTimeVaryingInput(TimeVaryingInput):
    def __init__(self, data_handler, method):
        self.data_handler = data_handler
        self.method = method

    @property
    def space(self):
        return self.data_handler.space

    def evaluate(self, dest, t):
        i0, i1, w1 = self.method.weights(float(t), self.data_handler.times)
        first = self.data_handler.regridded_snapshot(i0)
        if w1 == 0.0:
            dest[...] = first
        else:
            second = self.data_handler.regridded_snapshot(i1)
            dest[...] = (1.0 - w1) * first + w1 * second
        return dest


def evaluate(dest, tv_input, t):
    """Write the value of ``tv_input`` at time ``t`` [s] into ``dest``."""
    return tv_input.evaluate(dest, t)


def evaluate_new(tv_input, space, t):
    """As ``evaluate``, but into a new Field on ``space``."""
    dest = Field(np.zeros(space.shape), space)
    return tv_input.evaluate(dest, t)
