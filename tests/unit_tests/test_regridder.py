import os
import numpy as np
import pytest
from snowyland.core.errors import ConfigurationError, DataAccessError
from snowyland.met_data import artifacts
from snowyland.met_data.create_synthetic_artifacts import grid, write_fields
from snowyland.met_data.regridder import InterpolationsRegridder, read_spatial_field
from snowyland.soil.parameters import soil_vangenuchten_parameters, topmodel_fmax


def test_constant_data_regrids_to_a_constant(tiny_domain):
    lat, lon = grid(30.0)
    regridder = InterpolationsRegridder(tiny_domain.space.surface)
    field = regridder.regrid(np.full((len(lat), len(lon)), 3.5), lat, lon)
    assert field.space is tiny_domain.space.surface
    assert np.allclose(field, 3.5)


def test_linear_in_latitude_is_reproduced(tiny_domain):
    lat, lon = grid(10.0)
    data = np.repeat(lat[:, None], len(lon), axis=1)
    surface = tiny_domain.space.surface
    field = InterpolationsRegridder(surface).regrid(data, lat, lon)
    expected = np.clip(surface.lat, lat[0], lat[-1])
    assert np.allclose(field, expected)


def test_longitude_is_periodic(tiny_domain):
    lat, lon = grid(30.0)
    # only varies in longitude, and wraps smoothly across 0/360
    data = np.repeat(np.cos(np.deg2rad(lon))[None, :], len(lat), axis=0)
    surface = tiny_domain.space.surface
    field = InterpolationsRegridder(surface).regrid(data, lat, lon)
    assert np.all(np.abs(field) <= 1.0 + 1e-12)


def test_surface_data_is_broadcast_over_depth(tiny_domain):
    lat, lon = grid(30.0)
    subsurface = tiny_domain.space.subsurface
    field = InterpolationsRegridder(subsurface).regrid(np.ones((len(lat), len(lon))), lat, lon)
    assert field.shape == subsurface.shape
    assert field.space is subsurface


def test_3d_data_on_a_surface_space_is_rejected(tiny_domain):
    lat, lon = grid(30.0)
    with pytest.raises(ConfigurationError):
        InterpolationsRegridder(tiny_domain.space.surface).regrid(
            np.ones((2, len(lat), len(lon))), lat, lon, z=np.array([-1.0, 0.0])
        )


def test_bad_boundary_condition(tiny_domain):
    with pytest.raises(ConfigurationError):
        InterpolationsRegridder(tiny_domain.space.surface, extrapolation_bc=("mirror", "flat", "flat"))


def test_depth_profile(tmp_path, tiny_domain):
    lat, lon = grid(30.0)
    z = np.array([-60.0, 0.0])
    data = np.broadcast_to(z[:, None, None], (2, len(lat), len(lon)))
    path = write_fields(os.path.join(tmp_path, "maps", "depth.nc"), {"depth": data}, lat, lon, z=z)
    subsurface = tiny_domain.space.subsurface
    field = read_spatial_field(path, "depth", subsurface)
    assert np.allclose(field, np.broadcast_to(subsurface.z[None, :], subsurface.shape))


def test_loaders_put_fields_on_the_requested_space(synthetic_artifacts, tiny_domain):
    class Context:
        artifacts_dir = synthetic_artifacts

    subsurface = tiny_domain.space.subsurface
    params = soil_vangenuchten_parameters(subsurface, Context())
    for name in ("nu", "K_sat", "theta_r"):
        assert params[name].space is subsurface
    assert params["hydrology_cm"].space is subsurface
    fmax = topmodel_fmax(tiny_domain.space.surface, Context())
    assert fmax.space is tiny_domain.space.surface
    assert np.all((fmax >= 0) & (fmax <= 1))


def test_missing_dataset(tmp_path):
    class Context:
        artifacts_dir = str(tmp_path)

    with pytest.raises(DataAccessError, match="maxsat.nc"):
        artifacts.topmodel_data_path(Context())


def test_missing_variable(synthetic_artifacts, tiny_domain):
    class Context:
        artifacts_dir = synthetic_artifacts

    path = artifacts.topmodel_data_path(Context())
    with pytest.raises(DataAccessError, match="not_there"):
        read_spatial_field(path, "not_there", tiny_domain.space.surface)
