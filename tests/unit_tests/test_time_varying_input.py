import datetime
import numpy as np
import pytest
from snowyland.core.domain import zeros
from snowyland.met_data import artifacts
from snowyland.met_data.forcing import prescribed_lai_modis
from snowyland.met_data.time_varying_input import (
    Flat,
    LinearInterpolation,
    PeriodicCalendar,
    TimeVaryingInput,
    evaluate,
    evaluate_new,
    read_time_axis,
)

HOURLY = np.arange(24) * 3600.0


def test_linear_weights_inside_the_data():
    i0, i1, w1 = LinearInterpolation().weights(5400.0, HOURLY)
    assert (i0, i1) == (1, 2)
    assert w1 == pytest.approx(0.5)


def test_periodic_wrap_between_last_and_first_sample():
    # period is 24 h: after the 23:00 sample comes 00:00 again
    i0, i1, w1 = LinearInterpolation(PeriodicCalendar()).weights(23.25 * 3600.0, HOURLY)
    assert (i0, i1) == (23, 0)
    assert w1 == pytest.approx(0.25)
    # one full period later gives the same answer as inside the data
    assert LinearInterpolation(PeriodicCalendar()).weights(86400.0 + 5400.0, HOURLY) == (
        1,
        2,
        pytest.approx(0.5),
    )


def test_explicit_period():
    calendar = PeriodicCalendar(period=datetime.timedelta(days=2))
    t, period = calendar.bound(2 * 86400.0 + 60.0, HOURLY)
    assert period == 2 * 86400.0
    assert t == pytest.approx(60.0)


def test_flat_holds_the_end_values():
    method = LinearInterpolation(Flat())
    i0, _, w1 = method.weights(-100.0, HOURLY)
    assert (i0, w1) == (0, 0.0)
    assert method.weights(1e7, HOURLY) == (23, 23, 0.0)


def test_analytic_input(tiny_domain):
    tv_input = TimeVaryingInput.from_function(lambda t: 2.0 * t)
    dest = zeros(tiny_domain.space.surface)
    evaluate(dest, tv_input, 3.0)
    assert np.all(dest == 6.0)


def test_lai_time_axis_and_periodic_year(synthetic_artifacts, tiny_domain):
    path = artifacts.modis_lai_single_year_path(artifacts_context(synthetic_artifacts), year=2008)
    start = datetime.datetime(2008, 1, 1)
    times = read_time_axis(path, start)
    assert len(times) == 12
    assert times[0] == 14 * 86400.0
    surface = tiny_domain.space.surface
    lai = prescribed_lai_modis(path, surface, start, LinearInterpolation(PeriodicCalendar()))
    assert lai.space is surface
    january = evaluate_new(lai, surface, times[0])
    a_year_later = evaluate_new(lai, surface, times[0] + 366 * 86400.0)
    assert np.all(january >= 0)
    assert np.allclose(january, a_year_later)
    # just after New Year sits between December and January
    new_year = evaluate_new(lai, surface, 0.0)
    december = evaluate_new(lai, surface, times[-1])
    lower = np.minimum(january, december) - 1e-12
    upper = np.maximum(january, december) + 1e-12
    assert np.all((new_year >= lower) & (new_year <= upper))


def artifacts_context(root):
    class Context:
        artifacts_dir = root

    return Context()
