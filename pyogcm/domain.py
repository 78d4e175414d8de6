from typing import Dict, Optional, Sequence, Tuple, Union
import enum
import itertools
import logging

import numpy as np
from numpy.typing import ArrayLike
import netCDF4

from . import parallel
from .constants import DEG2RAD, R_EARTH, STENCIL_RADIUS
from .exceptions import ConfigurationError, DataShapeError


class Topology(enum.Enum):
    PERIODIC = "Periodic"  #: the axis wraps around
    BOUNDED = "Bounded"  #: the axis is bounded by walls
    FLAT = "Flat"  #: the axis has a single cell and no variation

    @classmethod
    def parse(cls, value: Union[str, "Topology"]) -> "Topology":
        if isinstance(value, Topology):
            return value
        if isinstance(value, str):
            for topology in cls:
                if value.lower() == topology.value.lower():
                    return topology
        raise ConfigurationError(
            f"Unknown topology {value!r}. Valid values: Periodic, Bounded, Flat"
        )


class Location(enum.Enum):
    CENTER = "Center"
    FACE = "Face"


CENTER = Location.CENTER
FACE = Location.FACE

#: locations of the prognostic fields on the staggered grid
FIELD_LOCATIONS = {
    "u": (FACE, CENTER, CENTER),
    "v": (CENTER, FACE, CENTER),
    "T": (CENTER, CENTER, CENTER),
    "S": (CENTER, CENTER, CENTER),
}


class Axis:
    """Node positions and cell bounds along a single axis of the global domain.

    Args:
        edges: positions of the cell edges, one more than the number of cells
        topology: boundary behavior of the axis
        period: distance over which the axis wraps (periodic axes only)
    """

    __slots__ = ("edges", "centers", "topology", "period")

    def __init__(self, edges: np.ndarray, topology: Topology, period: float = 0.0):
        self.edges = edges
        self.centers = 0.5 * (edges[:-1] + edges[1:])
        self.topology = topology
        self.period = period

    @property
    def n(self) -> int:
        return self.centers.size

    def nodes(self, loc: Location) -> np.ndarray:
        if loc is CENTER:
            return self.centers
        elif self.topology is Topology.PERIODIC:
            return self.edges[:-1]
        elif self.topology is Topology.FLAT:
            return self.edges[:1]
        return self.edges

    def bounds(self, loc: Location) -> Tuple[np.ndarray, np.ndarray]:
        """Lower and upper bounds of the control volume around every node"""
        if loc is CENTER or self.topology is Topology.FLAT:
            return self.edges[:-1], self.edges[1:]
        c = self.centers
        if self.topology is Topology.PERIODIC:
            return np.concatenate(([c[-1] - self.period], c[:-1])), c
        # Bounded: mirror the outermost centers in the walls
        c_ext = np.concatenate(
            ([2 * self.edges[0] - c[0]], c, [2 * self.edges[-1] - c[-1]])
        )
        return c_ext[:-1], c_ext[1:]


class Grid:
    """Structured latitude-longitude grid with staggered node locations for
    the subdomain of a single rank. Grids are normally created with
    :func:`make_grid`, which validates the configuration.

    Arrays are indexed ``[i, j, k]`` with ``i`` the zonal index, ``j`` the
    meridional index and ``k`` the vertical index, counting from the bottom.
    """

    __slots__ = (
        "nx",
        "ny",
        "nz",
        "nx_glob",
        "halo",
        "topology",
        "ioffset",
        "_xaxis",
        "_yaxis",
        "_zaxis",
        "_metrics",
        "dz_top",
        "dz_bottom",
    )

    def __init__(
        self,
        xaxis: Axis,
        yaxis: Axis,
        zaxis: Axis,
        halo: Tuple[int, int, int],
        ioffset: int = 0,
        nx: Optional[int] = None,
        precompute_metrics: bool = False,
    ):
        self._xaxis, self._yaxis, self._zaxis = xaxis, yaxis, zaxis
        self.nx_glob = xaxis.n
        self.nx = self.nx_glob if nx is None else nx
        self.ny = yaxis.n
        self.nz = zaxis.n
        self.ioffset = ioffset
        self.halo = halo
        self.topology = (xaxis.topology, yaxis.topology, zaxis.topology)

        self._metrics: Optional[Dict[Tuple, np.ndarray]] = None
        if precompute_metrics:
            metrics = {}
            for lx, ly in itertools.product(Location, repeat=2):
                metrics["dx", lx, ly] = self._dx(lx, ly)
                metrics["dy", lx, ly] = self._dy(lx, ly)
                metrics["area", lx, ly] = self._area(lx, ly)
            for lz in Location:
                metrics["dz", lz] = self._dz(lz)
            for lx, ly, lz in itertools.product(Location, repeat=3):
                metrics["volume", lx, ly, lz] = self._volume(lx, ly, lz)
            for values in metrics.values():
                values.flags.writeable = False
            self._metrics = metrics

        # Host-side scalars needed by the boundary fluxes
        dz = self._dz(CENTER)
        self.dz_top = float(dz[-1])
        self.dz_bottom = float(dz[0])

    @property
    def size(self) -> Tuple[int, int, int]:
        """Number of cells in the local subdomain"""
        return (self.nx, self.ny, self.nz)

    @property
    def global_size(self) -> Tuple[int, int, int]:
        return (self.nx_glob, self.ny, self.nz)

    @property
    def halo_size(self) -> Tuple[int, int, int]:
        return self.halo

    @property
    def precomputed(self) -> bool:
        """Whether metrics were precomputed at construction"""
        return self._metrics is not None

    def _xslice(self, loc: Location) -> slice:
        n = self.nx
        if loc is FACE and self._xaxis.topology is Topology.BOUNDED:
            n += 1
        return slice(self.ioffset, self.ioffset + n)

    def xnodes(self, loc: Location = CENTER) -> np.ndarray:
        """Longitude of nodes in the zonal direction (degrees East)"""
        return self._xaxis.nodes(loc)[self._xslice(loc)]

    def ynodes(self, loc: Location = CENTER) -> np.ndarray:
        """Latitude of nodes in the meridional direction (degrees North)"""
        return self._yaxis.nodes(loc)

    def znodes(self, loc: Location = CENTER) -> np.ndarray:
        """Height of nodes in the vertical (m, negative below sea level)"""
        return self._zaxis.nodes(loc)

    def nodes(
        self, lx: Location, ly: Location, lz: Location
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.xnodes(lx), self.ynodes(ly), self.znodes(lz)

    def shape(self, lx: Location, ly: Location, lz: Location) -> Tuple[int, int, int]:
        """Shape of a field that lives at the specified location"""
        return tuple(n.size for n in self.nodes(lx, ly, lz))

    lon_c = property(lambda self: self.xnodes(CENTER))
    lon_f = property(lambda self: self.xnodes(FACE))
    lat_c = property(lambda self: self.ynodes(CENTER))
    lat_f = property(lambda self: self.ynodes(FACE))
    z_c = property(lambda self: self.znodes(CENTER))
    z_f = property(lambda self: self.znodes(FACE))

    def _xwidth(self, loc: Location) -> np.ndarray:
        lower, upper = self._xaxis.bounds(loc)
        xslice = self._xslice(loc)
        return upper[xslice] - lower[xslice]

    def _dx(self, lx: Location, ly: Location) -> np.ndarray:
        lat = self.ynodes(ly)
        return np.outer(
            DEG2RAD * R_EARTH * self._xwidth(lx), np.cos(DEG2RAD * lat)
        )

    def _dy(self, lx: Location, ly: Location) -> np.ndarray:
        lower, upper = self._yaxis.bounds(ly)
        dy = DEG2RAD * R_EARTH * (upper - lower)
        return np.broadcast_to(dy, (self.xnodes(lx).size, dy.size)).copy()

    def _area(self, lx: Location, ly: Location) -> np.ndarray:
        lower, upper = self._yaxis.bounds(ly)
        lower = np.clip(lower, -90.0, 90.0)
        upper = np.clip(upper, -90.0, 90.0)
        dsinlat = np.sin(DEG2RAD * upper) - np.sin(DEG2RAD * lower)
        return np.outer(DEG2RAD * R_EARTH ** 2 * self._xwidth(lx), dsinlat)

    def _dz(self, lz: Location) -> np.ndarray:
        lower, upper = self._zaxis.bounds(lz)
        return upper - lower

    def _volume(self, lx: Location, ly: Location, lz: Location) -> np.ndarray:
        return self._area(lx, ly)[:, :, np.newaxis] * self._dz(lz)

    def _metric(self, name: str, *locs: Location) -> np.ndarray:
        if self._metrics is not None:
            return self._metrics[(name,) + locs]
        return getattr(self, "_" + name)(*locs)

    def dx(self, lx: Location = CENTER, ly: Location = CENTER) -> np.ndarray:
        """Zonal cell width (m), scaled by the cosine of latitude"""
        return self._metric("dx", lx, ly)

    def dy(self, lx: Location = CENTER, ly: Location = CENTER) -> np.ndarray:
        """Meridional cell width (m)"""
        return self._metric("dy", lx, ly)

    def area(self, lx: Location = CENTER, ly: Location = CENTER) -> np.ndarray:
        """Horizontal cell area (m2) on the sphere"""
        return self._metric("area", lx, ly)

    def dz(self, lz: Location = CENTER) -> np.ndarray:
        """Cell thickness (m)"""
        return self._metric("dz", lz)

    def volume(
        self, lx: Location = CENTER, ly: Location = CENTER, lz: Location = CENTER
    ) -> np.ndarray:
        """Cell volume (m3)"""
        return self._metric("volume", lx, ly, lz)

    def report(self, logger: logging.Logger):
        logger.info(
            "Grid with %i x %i x %i cells (global %i x %i x %i), halo %s, topology %s"
            % (
                self.size
                + self.global_size
                + (self.halo, "/".join(t.value for t in self.topology))
            )
        )
        logger.info(
            "Longitude %.3f - %.3f, latitude %.3f - %.3f, depth %.3f - %.3f m"
            % (
                self._xaxis.edges[self.ioffset],
                self._xaxis.edges[self.ioffset + self.nx],
                self._yaxis.edges[0],
                self._yaxis.edges[-1],
                self._zaxis.edges[0],
                self._zaxis.edges[-1],
            )
        )
        logger.info(
            "Top cell thickness %.3f m, bottom cell thickness %.3f m, metrics %s"
            % (
                self.dz_top,
                self.dz_bottom,
                "precomputed" if self.precomputed else "computed on demand",
            )
        )

    def save(self, path: str):
        """Save coordinates and metrics of the local subdomain to a NetCDF file.

        Args:
            path: NetCDF file to save to
        """
        with netCDF4.Dataset(path, "w") as nc:

            def create(name, units, long_name, values, dimensions):
                ncvar = nc.createVariable(name, values.dtype, dimensions)
                ncvar.units = units
                ncvar.long_name = long_name
                ncvar[...] = values
                return ncvar

            for postfix, loc in (("c", CENTER), ("f", FACE)):
                x, y, z = self.nodes(loc, loc, loc)
                nc.createDimension("x" + postfix, x.size)
                nc.createDimension("y" + postfix, y.size)
                nc.createDimension("z" + postfix, z.size)
                create("lon_" + postfix, "degrees_east", "longitude", x, ("x" + postfix,))
                create("lat_" + postfix, "degrees_north", "latitude", y, ("y" + postfix,))
                create("z_" + postfix, "m", "height", z, ("z" + postfix,))
            create("dx", "m", "zonal cell width", self.dx(), ("xc", "yc"))
            create("dy", "m", "meridional cell width", self.dy(), ("xc", "yc"))
            create("area", "m2", "cell area", self.area(), ("xc", "yc"))
            create("dz", "m", "cell thickness", self.dz(), ("zc",))
            nc.topology = " ".join(t.value for t in self.topology)
            nc.halo = np.array(self.halo, dtype=np.int32)
            nc.ioffset = self.ioffset


def _edges(bounds: Sequence[float], n: int, name: str) -> np.ndarray:
    if len(bounds) != 2 or not bounds[0] < bounds[1]:
        raise ConfigurationError(
            f"{name} must consist of a lower bound and a higher upper bound,"
            f" but is {bounds!r}"
        )
    return np.linspace(bounds[0], bounds[1], n + 1)


def make_grid(
    size: Tuple[int, int, int],
    longitude: Tuple[float, float] = (-180.0, 180.0),
    latitude: Tuple[float, float] = (-75.0, 75.0),
    z_faces: Optional[ArrayLike] = None,
    halo: Tuple[int, int, int] = (5, 5, 5),
    topology: Sequence[Union[str, Topology]] = (
        Topology.PERIODIC,
        Topology.BOUNDED,
        Topology.BOUNDED,
    ),
    precompute_metrics: bool = False,
    partition: Optional[parallel.Partition] = None,
    stencil_radius: int = STENCIL_RADIUS,
    logger: Optional[logging.Logger] = None,
) -> Grid:
    """Create the latitude-longitude grid of the local subdomain.

    Args:
        size: number of cells in the global domain (nx, ny, nz)
        longitude: western and eastern bounds of the domain (degrees East)
        latitude: southern and northern bounds of the domain (degrees North)
        z_faces: strictly increasing heights of the nz + 1 cell interfaces in the
            vertical (m, negative below sea level). If not provided, nz layers of
            1 m thickness below the surface are used.
        halo: halo width along each axis. Halos of non-flat axes must be at least
            ``stencil_radius`` wide; flat axes have no halo.
        topology: boundary behavior of each axis (:class:`Topology` or its name)
        precompute_metrics: calculate all metrics once and keep them in memory,
            rather than recalculating them whenever they are accessed
        partition: column partition of the global domain. If not provided, the
            grid spans the entire global domain.
        stencil_radius: maximum stencil radius of the operators that will use
            the grid
        logger: target for log messages
    """
    if len(size) != 3 or not all(isinstance(n, (int, np.integer)) for n in size):
        raise ConfigurationError(f"size must consist of three integers, but is {size!r}")
    nx, ny, nz = (int(n) for n in size)
    if min(nx, ny, nz) < 1:
        raise ConfigurationError(f"All axes must have at least one cell, but size is {size!r}")
    if len(topology) != 3:
        raise ConfigurationError(f"topology must have three elements, but is {topology!r}")
    topology = tuple(Topology.parse(t) for t in topology)
    if len(halo) != 3:
        raise ConfigurationError(f"halo must have three elements, but is {halo!r}")

    halo = list(halo)
    for iaxis, (name, n, t) in enumerate(zip("xyz", (nx, ny, nz), topology)):
        if t is Topology.FLAT:
            if n != 1:
                raise ConfigurationError(
                    f"Flat {name} axis must have a single cell, but has {n}"
                )
            halo[iaxis] = 0
        elif halo[iaxis] < stencil_radius:
            raise ConfigurationError(
                f"Halo of {name} axis ({halo[iaxis]}) is smaller than the stencil"
                f" radius ({stencil_radius})"
            )
    halo = tuple(int(h) for h in halo)

    if not -90.0 <= latitude[0] < latitude[1] <= 90.0:
        raise ConfigurationError(
            f"Latitude bounds {latitude!r} must be increasing and within [-90, 90]"
        )

    if z_faces is None:
        z_faces = np.linspace(-float(nz), 0.0, nz + 1)
    z_faces = np.asarray(z_faces, dtype=float)
    if z_faces.ndim != 1 or z_faces.size != nz + 1:
        raise ConfigurationError(
            f"z_faces must be a one-dimensional sequence of {nz + 1} interface"
            f" heights, but has shape {z_faces.shape}"
        )
    if not (np.diff(z_faces) > 0).all():
        raise ConfigurationError("z_faces must be strictly increasing")

    lon_edges = _edges(longitude, nx, "longitude")
    xaxis = Axis(lon_edges, topology[0], period=lon_edges[-1] - lon_edges[0])
    yaxis = Axis(_edges(latitude, ny, "latitude"), topology[1])
    zaxis = Axis(z_faces, topology[2], period=z_faces[-1] - z_faces[0])

    ioffset, nx_loc = 0, nx
    if partition is not None:
        if partition.nx_glob != nx:
            raise ConfigurationError(
                f"Partition describes {partition.nx_glob} columns, but the grid has {nx}"
            )
        if partition and topology[0] is Topology.FLAT:
            raise ConfigurationError("A flat x axis cannot be divided over multiple ranks")
        if partition and partition.nx < halo[0]:
            raise ConfigurationError(
                f"Subdomain width ({partition.nx}) is smaller than the x halo ({halo[0]})"
            )
        ioffset, nx_loc = partition.xoffset, partition.nx

    grid = Grid(
        xaxis,
        yaxis,
        zaxis,
        halo,
        ioffset=ioffset,
        nx=nx_loc,
        precompute_metrics=precompute_metrics,
    )
    if logger is not None:
        grid.report(logger)
    return grid


class ImmersedMask:
    """Static immersed-boundary mask of the local subdomain, derived from
    bathymetry. All arrays are read-only.
    """

    __slots__ = ("depth", "active", "bottom")

    def __init__(self, depth: np.ndarray, active: np.ndarray, bottom: np.ndarray):
        self.depth = depth  #: bottom height per column (m, negative below sea level)
        self.active = active  #: whether cell (i, j, k) lies above the bottom
        self.bottom = bottom  #: bottommost active k per column, -1 for dry columns
        for values in (self.depth, self.active, self.bottom):
            values.flags.writeable = False

    @property
    def wet(self) -> np.ndarray:
        """Columns with at least one active cell"""
        return self.bottom >= 0

    @property
    def immersed(self) -> np.ndarray:
        """Columns whose bottom lies above the bottom of the grid"""
        return self.bottom > 0


def build_mask(
    depth: ArrayLike, grid: Grid, logger: Optional[logging.Logger] = None
) -> ImmersedMask:
    """Determine which cells lie below the bottom of their column.

    Args:
        depth: bottom height of every column of the local subdomain (m, negative
            below sea level). Use :meth:`parallel.Partition.partition_global_array`
            to obtain this from global bathymetry.
        grid: grid of the local subdomain
        logger: target for log messages

    Returns:
        mask with active cells and the bottommost active cell of each column.
        Columns with missing (NaN) depth have no active cells.
    """
    depth = np.array(depth, dtype=float)
    if depth.shape != (grid.nx, grid.ny):
        raise DataShapeError(
            f"Bathymetry has shape {depth.shape}, but the local subdomain has"
            f" {grid.nx} x {grid.ny} columns"
        )
    with np.errstate(invalid="ignore"):
        active = grid.z_c >= depth[:, :, np.newaxis]
    nactive = active.sum(axis=-1)

    # z_c increases with k, so active cells run from the bottom cell to the surface
    bottom = np.where(nactive > 0, grid.nz - nactive, -1)
    mask = ImmersedMask(depth, active, bottom)
    if logger is not None:
        logger.info(
            "Immersed mask: %i of %i cells active, %i dry columns, %i columns with"
            " an immersed bottom"
            % (
                nactive.sum(),
                active.size,
                (~mask.wet).sum(),
                mask.immersed.sum(),
            )
        )
    return mask
