import numpy as np
import pytest
from snowyland.core.domain import (
    Field,
    dss_field,
    global_domain,
    obtain_surface_domain,
    stretched_layers,
    zeros,
)
from snowyland.core.errors import ConfigurationError


def test_spaces_and_shapes(tiny_domain):
    surface = tiny_domain.space.surface
    subsurface = tiny_domain.space.subsurface
    assert surface.shape == (6 * 2 * 2,)
    assert subsurface.shape == (6 * 2 * 2, 4)
    assert subsurface.surface is surface
    assert zeros(subsurface).space is subsurface


def test_layers_fill_the_depth(tiny_domain):
    subsurface = tiny_domain.space.subsurface
    assert np.sum(subsurface.dz) == pytest.approx(50.0)
    # thinnest layer at the top
    assert subsurface.dz[-1] == np.min(subsurface.dz)
    assert subsurface.z_faces[-1] == pytest.approx(0.0)
    assert subsurface.z_faces[0] == pytest.approx(-50.0)


def test_stretched_layers_ratio():
    dz = stretched_layers(10.0, 5, dz_tuple=(4.0, 0.25))
    assert np.sum(dz) == pytest.approx(10.0)
    assert dz[0] / dz[-1] == pytest.approx(16.0)


def test_nodes_lie_on_the_sphere(tiny_domain):
    surface = tiny_domain.space.surface
    assert np.all(np.abs(surface.lat) <= 90.0)
    assert np.all(np.abs(surface.lon) <= 180.0)


def test_dss_averages_coincident_nodes():
    domain = global_domain(nelements=(2, 3), npolynomial=2)
    surface = domain.space.surface
    assert surface.num_unique_nodes < surface.ncolumns
    rng = np.random.default_rng(0)
    field = Field(rng.normal(size=surface.shape), surface)
    expected = {}
    for node in np.unique(surface.node_ids):
        mask = surface.node_ids == node
        expected[node] = np.sum(field[mask] * surface.weights[mask]) / np.sum(surface.weights[mask])
    dss_field(field)
    for node, value in expected.items():
        assert np.allclose(field[surface.node_ids == node], value)


def test_dss_subsurface_matches_levelwise():
    domain = global_domain(nelements=(2, 3), npolynomial=1)
    subsurface = domain.space.subsurface
    rng = np.random.default_rng(1)
    field = Field(rng.normal(size=subsurface.shape), subsurface)
    level = Field(np.array(field[:, 1]), domain.space.surface)
    dss_field(field)
    dss_field(level)
    assert np.allclose(field[:, 1], level)


def test_dss_is_a_no_op_without_duplicates(tiny_domain):
    surface = tiny_domain.space.surface
    field = Field(np.arange(surface.ncolumns, dtype=float), surface)
    dss_field(field)
    assert np.array_equal(field, np.arange(surface.ncolumns))


def test_surface_domain_shares_the_space(tiny_domain):
    surface_domain = obtain_surface_domain(tiny_domain)
    assert surface_domain.space.surface is tiny_domain.space.surface
    assert surface_domain.space.subsurface is None
    assert obtain_surface_domain(surface_domain) is surface_domain


def test_bad_nelements():
    with pytest.raises(ConfigurationError):
        global_domain(nelements=(0, 3))
