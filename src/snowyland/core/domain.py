"""
Spherical shell domain, grid partitions (spaces) and fields.

The horizontal grid is an equiangular cubed sphere: 6 panels, each split into
``nh x nh`` elements, each element holding ``(npolynomial + 1)^2``
Gauss-Lobatto-Legendre nodes (or a single centre node for
``npolynomial = 0``). Nodes on shared element edges are duplicated, and
``dss`` averages the duplicates so that fields stay continuous.

Surface fields have shape ``(ncolumns,)``; subsurface fields have shape
``(ncolumns, nlevels)``, with the level index increasing upward, so the last
level is the top soil layer.
"""

import numpy as np
from numpy.polynomial import legendre
from snowyland.core.errors import ConfigurationError

MODULE_NAME = "snowyland.core.domain"

# Rotation of the reference panel onto each of the six cube faces.
# Each entry maps gnomonic (1, x, y) onto Cartesian coordinates.
PANEL_AXES = (
    ((1, 0, 0), (0, 1, 0), (0, 0, 1)),
    ((0, 1, 0), (-1, 0, 0), (0, 0, 1)),
    ((-1, 0, 0), (0, -1, 0), (0, 0, 1)),
    ((0, -1, 0), (1, 0, 0), (0, 0, 1)),
    ((0, 0, 1), (0, 1, 0), (-1, 0, 0)),
    ((0, 0, -1), (0, 1, 0), (1, 0, 0)),
)


class Space:
    """
    A grid partition over which fields are defined.

    Attributes
    ----------
    kind : str
        Either "surface" or "subsurface".
    lat, lon : np.ndarray, dimension(ncolumns)
        Node latitude and longitude [degrees].
    z : np.ndarray, dimension(nlevels), or None
        Layer centres [m], negative below the surface (subsurface only).
    dz : np.ndarray, dimension(nlevels), or None
        Layer thicknesses [m] (subsurface only).
    surface : Space or None
        For a subsurface space, the companion surface space.
    """

    def __init__(self, kind, lat, lon, node_ids, weights, z=None, dz=None,
                 surface=None):
        self.kind = kind
        self.lat = lat
        self.lon = lon
        self.node_ids = node_ids
        self.weights = weights
        self.z = z
        self.dz = dz
        self.surface = surface
        self.num_unique_nodes = int(node_ids.max()) + 1 if len(node_ids) else 0

    @property
    def ncolumns(self):
        return len(self.lat)

    @property
    def nlevels(self):
        return 0 if self.z is None else len(self.z)

    @property
    def shape(self):
        if self.kind == "subsurface":
            return (self.ncolumns, self.nlevels)
        return (self.ncolumns,)

    @property
    def z_faces(self):
        """Interface heights, from the bottom of the domain up to 0."""
        return np.concatenate(([self.z[0] - self.dz[0] / 2], self.z + self.dz / 2))

    def __repr__(self):
        return f"Space(kind={self.kind!r}, shape={self.shape})"


class Field(np.ndarray):
    """
    A NumPy array that knows which Space it is defined on.
    Results of arithmetic on Fields keep the space of their first operand.
    """

    def __new__(cls, data, space):
        obj = np.asarray(data, dtype=np.float64).view(cls)
        obj.space = space
        return obj

    def __array_finalize__(self, obj):
        # pylint: disable=attribute-defined-outside-init
        self.space = getattr(obj, "space", None)


def full(space, value):
    return Field(np.full(space.shape, value, dtype=np.float64), space)


def zeros(space):
    return full(space, 0.0)


def ones(space):
    return full(space, 1.0)


def as_field(values, space):
    """Broadcast a scalar or array onto ``space``."""
    return Field(np.broadcast_to(np.asarray(values, dtype=np.float64), space.shape).copy(), space)


def gll_points(npolynomial):
    """Gauss-Lobatto-Legendre nodes and weights on [-1, 1]."""
    if npolynomial == 0:
        return np.array([0.0]), np.array([2.0])
    coeffs = np.zeros(npolynomial + 1)
    coeffs[-1] = 1
    interior = legendre.legroots(legendre.legder(coeffs))
    points = np.concatenate(([-1.0], np.sort(interior), [1.0]))
    weights = 2 / (npolynomial * (npolynomial + 1) * legendre.legval(points, coeffs) ** 2)
    return points, weights


def cubed_sphere_nodes(nh, npolynomial):
    """
    Cartesian unit-sphere coordinates and quadrature weights of every node of
    an equiangular cubed sphere with ``nh`` elements along each panel edge.
    """
    points, point_weights = gll_points(npolynomial)
    edges = np.linspace(-np.pi / 4, np.pi / 4, nh + 1)
    half_width = (edges[1] - edges[0]) / 2
    centres = (edges[:-1] + edges[1:]) / 2
    # angles of every node along one panel axis, ordered by element then node
    angles = (centres[:, None] + half_width * points[None, :]).ravel()
    node_weights = np.tile(point_weights, nh)
    alpha, beta = np.meshgrid(angles, angles, indexing="ij")
    weight_2d = np.outer(node_weights, node_weights)
    x = np.tan(alpha)
    y = np.tan(beta)
    xyz = []
    weights = []
    for normal, x_axis, y_axis in PANEL_AXES:
        vec = (
            np.multiply.outer(np.ones_like(x), normal)
            + np.multiply.outer(x, x_axis)
            + np.multiply.outer(y, y_axis)
        )
        vec /= np.linalg.norm(vec, axis=-1, keepdims=True)
        xyz.append(vec.reshape(-1, 3))
        weights.append(weight_2d.ravel())
    return np.concatenate(xyz), np.concatenate(weights)


def stretched_layers(depth, nlevels, dz_tuple=None):
    """
    Layer thicknesses (bottom to top) that sum to ``depth``.
    With ``dz_tuple = (dz_bottom, dz_top)`` the thicknesses grow geometrically
    from the surface downward.
    """
    if dz_tuple is None or nlevels == 1:
        return np.full(nlevels, depth / nlevels)
    dz_bottom, dz_top = dz_tuple
    ratio = (dz_bottom / dz_top) ** (1 / (nlevels - 1))
    dz = dz_top * ratio ** np.arange(nlevels)[::-1]
    return dz * depth / dz.sum()


class SphericalShell:
    """
    A spherical shell of soil with a surface partition and a subsurface
    partition.

    Parameters
    ----------
    radius : float
        Radius of the sphere [m].
    depth : float
        Depth of the shell [m].
    nelements : tuple of int
        (horizontal elements per panel edge, vertical layers).
    npolynomial : int, optional
        Polynomial degree of the horizontal elements. Default 0.
    dz_tuple : tuple of float, optional
        (bottom layer thickness, top layer thickness) [m].
    """

    def __init__(self, radius, depth, nelements, npolynomial=0, dz_tuple=None):
        func_name = f"{MODULE_NAME}.SphericalShell"
        if len(nelements) != 2 or min(nelements) < 1:
            raise ConfigurationError(
                f"{func_name}: nelements must be a pair of positive integers,"
                f" not {nelements}"
            )
        if depth <= 0 or radius <= 0:
            raise ConfigurationError(
                f"{func_name}: radius and depth must be positive"
            )
        self.radius = float(radius)
        self.depth = float(depth)
        self.nelements = tuple(int(n) for n in nelements)
        self.npolynomial = int(npolynomial)
        self.dz_tuple = dz_tuple

        xyz, weights = cubed_sphere_nodes(self.nelements[0], self.npolynomial)
        lat = np.degrees(np.arcsin(np.clip(xyz[:, 2], -1, 1)))
        lon = np.degrees(np.arctan2(xyz[:, 1], xyz[:, 0]))
        # coincident nodes on shared element edges get the same id
        _, node_ids = np.unique(np.round(xyz, 10), axis=0, return_inverse=True)
        node_ids = node_ids.ravel()

        dz = stretched_layers(self.depth, self.nelements[1], dz_tuple)
        z_faces = -self.depth + np.concatenate(([0.0], np.cumsum(dz)))
        z = (z_faces[:-1] + z_faces[1:]) / 2

        surface = Space("surface", lat, lon, node_ids, weights)
        subsurface = Space(
            "subsurface", lat, lon, node_ids, weights, z=z, dz=dz, surface=surface
        )
        self.space = SpaceSet(surface=surface, subsurface=subsurface)

    def coordinates(self):
        """Node coordinates on both partitions."""
        surface = self.space.surface
        subsurface = self.space.subsurface
        return {
            "surface": {
                "lat": Field(surface.lat.copy(), surface),
                "lon": Field(surface.lon.copy(), surface),
            },
            "subsurface": {
                "lat": as_field(subsurface.lat[:, None], subsurface),
                "lon": as_field(subsurface.lon[:, None], subsurface),
                "z": as_field(subsurface.z[None, :], subsurface),
            },
        }


class SphericalSurface:
    """Surface-only view of a SphericalShell, sharing its surface space."""

    def __init__(self, shell):
        self.radius = shell.radius
        self.nelements = shell.nelements[0]
        self.npolynomial = shell.npolynomial
        self.space = SpaceSet(surface=shell.space.surface, subsurface=None)


class SpaceSet:
    def __init__(self, surface, subsurface):
        self.surface = surface
        self.subsurface = subsurface


def global_domain(nelements=(101, 15), depth=50.0, dz_tuple=(10.0, 0.05),
                  npolynomial=0, radius=6378.1e3):
    """The global soil domain used by the snowy land benchmark."""
    return SphericalShell(
        radius=radius,
        depth=depth,
        nelements=nelements,
        npolynomial=npolynomial,
        dz_tuple=dz_tuple,
    )


def obtain_surface_domain(domain):
    if isinstance(domain, SphericalSurface):
        return domain
    return SphericalSurface(domain)


def dss_field(field):
    """
    Direct stiffness summation: replace the value at each duplicated node by
    the quadrature-weighted mean over all of its copies. Operates in place.
    """
    space = field.space
    if space is None or space.num_unique_nodes == space.ncolumns:
        return field
    ids = space.node_ids
    weights = space.weights
    wsum = np.bincount(ids, weights=weights, minlength=space.num_unique_nodes)
    if field.ndim == 1:
        total = np.bincount(ids, weights=weights * field, minlength=space.num_unique_nodes)
        field[...] = (total / wsum)[ids]
    else:
        nlev = field.shape[1]
        flat_ids = (ids[:, None] * nlev + np.arange(nlev)[None, :]).ravel()
        total = np.bincount(
            flat_ids,
            weights=(weights[:, None] * field).ravel(),
            minlength=space.num_unique_nodes * nlev,
        ).reshape(-1, nlev)
        field[...] = (total / wsum[:, None])[ids]
    return field
