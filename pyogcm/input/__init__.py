from typing import Callable, Mapping, Optional, Sequence, Tuple, Union
import datetime
import functools
import glob
import logging
import math

import numpy as np
from numpy.typing import ArrayLike
import xarray
import cftime

from .. import parallel
from ..constants import MONTH_LENGTH, NMONTHS, RHO0
from ..exceptions import ConfigurationError, DataShapeError, TimeIndexError

LATITUDE_UNITS = (
    "degrees_north",
    "degree_north",
    "degree_N",
    "degrees_N",
    "degreeN",
    "degreesN",
)

LONGITUDE_UNITS = (
    "degrees_east",
    "degree_east",
    "degree_E",
    "degrees_E",
    "degreeE",
    "degreesE",
)


@xarray.register_dataarray_accessor("ogcm")
class OGCMAccessor:
    def __init__(self, xarray_obj: xarray.DataArray):
        self._obj = xarray_obj

    @property
    def longitude(self) -> Optional[xarray.DataArray]:
        return self.coordinates.get("longitude")

    @property
    def latitude(self) -> Optional[xarray.DataArray]:
        return self.coordinates.get("latitude")

    @property
    def time(self) -> Optional[xarray.DataArray]:
        return self.coordinates.get("time")

    @functools.cached_property
    def coordinates(self) -> Mapping[str, xarray.DataArray]:
        _coordinates = {}
        for name, coord in self._obj.coords.items():
            units = coord.attrs.get("units")
            standard_name = coord.attrs.get("standard_name")
            if standard_name in ("latitude", "longitude"):
                _coordinates[standard_name] = coord
            elif units in LATITUDE_UNITS:
                _coordinates["latitude"] = coord
            elif units in LONGITUDE_UNITS:
                _coordinates["longitude"] = coord
            elif coord.size > 0 and isinstance(
                coord.values.flat[0], (cftime.datetime, np.datetime64)
            ):
                _coordinates["time"] = coord
        return _coordinates

    def horizontal_dims(self) -> Optional[Tuple[str, str]]:
        """Names of the zonal and meridional dimension, if these can be
        determined from one-dimensional longitude and latitude coordinates"""
        lon, lat = self.longitude, self.latitude
        if lon is None or lat is None or lon.ndim != 1 or lat.ndim != 1:
            return None
        return lon.dims[0], lat.dims[0]


open_nc_files = []


def _open(path, preprocess=None, **kwargs):
    key = (path, preprocess, kwargs.copy())
    for k, ds in open_nc_files:
        if k == key:
            return ds
    ds = xarray.open_dataset(path, **kwargs)
    if preprocess:
        ds = preprocess(ds)
    open_nc_files.append((key, ds))
    return ds


def close_nc_files():
    """Close all datasets opened by :func:`from_nc`. Arrays obtained from them
    can no longer be read afterwards."""
    while open_nc_files:
        _, ds = open_nc_files.pop()
        ds.close()


def from_nc(
    paths: Union[str, Sequence[str]],
    name: str,
    preprocess: Optional[Callable[[xarray.Dataset], xarray.Dataset]] = None,
    **kwargs,
) -> xarray.DataArray:
    """Obtain a variable from one or more NetCDF files.

    Args:
        paths: single file path, a pathname pattern containing `*` and/or `?`, or a
            sequence of file paths. If multiple paths are provided (or the pattern
            resolves to multiple valid path names), the files will be concatenated
            along their time dimension.
        name: name of the variable
        preprocess: function that transforms the :class:`xarray.Dataset` opened for
            every path provided
        **kwargs: additional keyword arguments to be passed to
            :func:`xarray.open_dataset`
    """
    kwargs.setdefault("decode_times", True)
    kwargs["use_cftime"] = True
    kwargs["cache"] = False
    if isinstance(paths, str):
        pattern = paths
        paths = sorted(glob.glob(pattern))
        if not paths:
            raise Exception(f"No files found matching {pattern!r}")
    arrays = [_open(path, preprocess, **kwargs)[name] for path in paths]
    if len(arrays) == 1:
        return arrays[0]
    assert all(array.ogcm.time is not None for array in arrays)
    return xarray.concat(
        sorted(arrays, key=lambda a: a.ogcm.time.values.flat[0]),
        dim=arrays[0].ogcm.time.dims[0],
        coords="minimal",
        combine_attrs="drop_conflicts",
    )


def check_time(time: float) -> float:
    """Verify that a simulation time (s since the start of the forcing cycle)
    can be mapped to a climatological record and return it as float."""
    try:
        time = float(time)
    except (TypeError, ValueError):
        raise TimeIndexError(f"Simulation time {time!r} is not a number") from None
    if not math.isfinite(time) or time < 0.0:
        raise TimeIndexError(
            f"Simulation time must be finite and non-negative, but is {time}"
        )
    return time


def cyclic_index(time: float, nperiods: int = NMONTHS) -> Tuple[int, int, float]:
    """Map simulation time to the climatological records that bracket it.

    Args:
        time: time since the start of the forcing cycle (s)
        nperiods: number of records in the forcing cycle

    Returns:
        Tuple with the current record (1-based), the next record (1-based) and
        the fraction of the current period that has elapsed, in [0, 1)
    """
    if nperiods < 1:
        raise ConfigurationError(f"Number of periods must be at least 1, not {nperiods}")
    periods = check_time(time) / MONTH_LENGTH
    iperiod = math.floor(periods)
    current = iperiod % nperiods + 1
    return current, current % nperiods + 1, periods - iperiod


def current_time_index(time: float, nperiods: int = NMONTHS) -> int:
    """Climatological record (1-based) at the start of the current period"""
    return cyclic_index(time, nperiods)[0]


def next_time_index(time: float, nperiods: int = NMONTHS) -> int:
    """Climatological record (1-based) at the end of the current period"""
    return cyclic_index(time, nperiods)[1]


def cyclic_fraction(time: float) -> float:
    """Fraction of the current period that has elapsed, in [0, 1)"""
    return cyclic_index(time)[2]


def cyclic_interpolate(value1: ArrayLike, value2: ArrayLike, time: float):
    """Linearly interpolate between the values of the current and next period.
    The result equals ``value1`` at the start of the period."""
    return value1 + cyclic_fraction(time) * (value2 - value1)


def elapsed_seconds(
    time: Union[cftime.datetime, datetime.datetime],
    start: Union[cftime.datetime, datetime.datetime],
) -> float:
    """Convert a date into the simulation time used to index climatologies.

    Args:
        time: current date
        start: date at which the forcing cycle starts (the start of the first month)
    """
    return check_time((time - start).total_seconds())


def _monthly_records(
    values: Union[ArrayLike, xarray.DataArray], name: str
) -> np.ndarray:
    # Reorder data arrays to (lon, lat, time) and sort their records by month
    if not isinstance(values, xarray.DataArray):
        return np.array(values, dtype=float)
    dims = list(values.dims)
    time = values.ogcm.time
    if time is not None:
        if time.ndim != 1:
            raise DataShapeError(f"{name} has a multidimensional time coordinate")
        times = time.values
        if isinstance(times.flat[0], np.datetime64):
            times = xarray.DataArray(times).dt
            years, months = times.year.values, times.month.values
        else:
            years = np.array([t.year for t in times])
            months = np.array([t.month for t in times])
        if (years != years[0]).any():
            raise DataShapeError(
                f"{name} cannot be used as climatology because"
                " it spans more than one calendar year"
            )
        values = values.isel({time.dims[0]: np.argsort(months, kind="stable")})
        dims.remove(time.dims[0])
        dims.append(time.dims[0])
    horizontal_dims = values.ogcm.horizontal_dims()
    if horizontal_dims is not None and len(dims) == 3:
        dims = list(horizontal_dims) + [d for d in dims if d not in horizontal_dims]
    return np.asarray(values.transpose(*dims).values, dtype=float)


class Climatology:
    """Monthly forcing of the local subdomain: kinematic wind stress in both
    horizontal directions and the targets for surface temperature and salinity.
    Each array has shape ``(nx, ny, 12)``; all are read-only.
    """

    names = ("tau_x", "tau_y", "temperature", "salinity")
    __slots__ = names

    def __init__(
        self,
        tau_x: ArrayLike,
        tau_y: ArrayLike,
        temperature: ArrayLike,
        salinity: ArrayLike,
    ):
        shape = None
        for name, values in zip(self.names, (tau_x, tau_y, temperature, salinity)):
            values = np.array(values, dtype=float)
            if values.ndim != 3 or values.shape[-1] != NMONTHS:
                raise DataShapeError(
                    f"{name} must have shape (nx, ny, {NMONTHS}), but has shape"
                    f" {values.shape}"
                )
            if shape is None:
                shape = values.shape
            elif values.shape != shape:
                raise DataShapeError(
                    f"{name} has shape {values.shape}, but {self.names[0]} has"
                    f" shape {shape}"
                )
            values.flags.writeable = False
            setattr(self, name, values)

    @staticmethod
    def from_global(
        partition: parallel.Partition, ny: int, **global_arrays: ArrayLike
    ) -> "Climatology":
        """Create the climatology of the current rank from arrays that cover
        the global domain, each with shape ``(nx_glob, ny, 12)``.
        """
        local_arrays = {}
        for name in Climatology.names:
            values = np.asarray(global_arrays[name])
            expected_shape = (partition.nx_glob, ny, NMONTHS)
            if values.shape != expected_shape:
                raise DataShapeError(
                    f"{name} has shape {values.shape}, but the global domain"
                    f" requires {expected_shape}"
                )
            local_arrays[name] = partition.partition_global_array(values, name)
        return Climatology(**local_arrays)

    @property
    def shape(self) -> Tuple[int, int]:
        """Horizontal shape (nx, ny) of the local subdomain"""
        return self.tau_x.shape[:2]

    def check_grid(self, grid):
        if self.shape != (grid.nx, grid.ny):
            raise DataShapeError(
                f"Climatology has horizontal shape {self.shape}, but the local"
                f" subdomain has {grid.nx} x {grid.ny} columns"
            )

    def report(self, logger: logging.Logger):
        for name in self.names:
            values = getattr(self, name)
            logger.info(
                "%s: %.6g - %.6g (%i monthly records)"
                % (name, np.nanmin(values), np.nanmax(values), values.shape[-1])
            )


def load_climatology(
    partition: parallel.Partition,
    ny: int,
    tau_x: Union[ArrayLike, xarray.DataArray],
    tau_y: Union[ArrayLike, xarray.DataArray],
    temperature: Union[ArrayLike, xarray.DataArray],
    salinity: Union[ArrayLike, xarray.DataArray],
    reference_density: float = RHO0,
    logger: Optional[logging.Logger] = None,
) -> Climatology:
    """Create the climatology of the current rank from global monthly fields.

    Args:
        partition: column partition of the global domain
        ny: number of cells of the global domain in the meridional direction
        tau_x: wind stress in x-direction (Pa)
        tau_y: wind stress in y-direction (Pa)
        temperature: target sea surface temperature
        salinity: target sea surface salinity
        reference_density: density used to convert wind stress into a
            kinematic momentum flux (kg m-3)
        logger: target for log messages

    Data arrays with a decodable time coordinate have their records sorted by
    month; such a coordinate must not span more than a single year. Stresses
    are returned as the upward kinematic flux ``-tau / reference_density``.
    """
    if not (np.isfinite(reference_density) and reference_density > 0.0):
        raise ConfigurationError(
            f"Reference density must be positive, but is {reference_density}"
        )
    global_arrays = {}
    for name, values in zip(
        Climatology.names, (tau_x, tau_y, temperature, salinity)
    ):
        global_arrays[name] = _monthly_records(values, name)
    for name in ("tau_x", "tau_y"):
        global_arrays[name] = -global_arrays[name] / reference_density
    climatology = Climatology.from_global(partition, ny, **global_arrays)
    if logger is not None:
        climatology.report(logger)
    return climatology


def load_bathymetry(
    partition: parallel.Partition,
    ny: int,
    depth: Union[ArrayLike, xarray.DataArray],
) -> np.ndarray:
    """Return the bathymetry (bottom height, m, negative below sea level) of
    the current rank from an array covering the global domain."""
    if isinstance(depth, xarray.DataArray):
        horizontal_dims = depth.ogcm.horizontal_dims()
        if horizontal_dims is not None:
            depth = depth.transpose(*horizontal_dims)
        depth = depth.values
    depth = np.asarray(depth, dtype=float)
    if depth.shape != (partition.nx_glob, ny):
        raise DataShapeError(
            f"Bathymetry has shape {depth.shape}, but the global domain requires"
            f" {(partition.nx_glob, ny)}"
        )
    return partition.partition_global_array(depth, "bathymetry")


def _columns_first(values: xarray.DataArray) -> xarray.DataArray:
    # Order dimensions as (lon, lat, z) with z increasing upwards
    horizontal_dims = values.ogcm.horizontal_dims()
    if horizontal_dims is None:
        return values
    other_dims = [d for d in values.dims if d not in horizontal_dims]
    values = values.transpose(*horizontal_dims, *other_dims)
    if len(other_dims) == 1 and other_dims[0] in values.coords:
        z = values.coords[other_dims[0]]
        z_values = np.asarray(z.values, dtype=float)
        if z.attrs.get("positive") == "down" or (
            (z_values >= 0.0).all() and (z_values > 0.0).any()
        ):
            z_values = -z_values
        if z_values.size > 1 and z_values[0] > z_values[-1]:
            values = values.isel({other_dims[0]: slice(None, None, -1)})
    return values


def load_initial_field(
    partition: parallel.Partition,
    values: Union[ArrayLike, xarray.DataArray],
    shape: Tuple[int, int, int],
    name: str,
) -> np.ndarray:
    """Return the initial value of a field on the current rank.

    Args:
        partition: column partition of the global domain
        values: constant value, or array covering the global domain. Data
            arrays with longitude and latitude coordinates are reordered to
            (lon, lat, z); a vertical coordinate that holds depths or that
            decreases upwards is flipped so that the bottom cell comes first.
        shape: shape of the field on the local subdomain. Fields at the faces
            of a bounded zonal axis have one column more than the partition.
        name: name of the field
    """
    if isinstance(values, xarray.DataArray):
        values = _columns_first(values).values
    values = np.asarray(values, dtype=float)
    if values.ndim == 0:
        return np.full(shape, float(values))
    nextra = shape[0] - partition.nx
    glob_shape = (partition.nx_glob + nextra,) + tuple(shape[1:])
    if values.shape != glob_shape:
        raise DataShapeError(
            f"Initial {name} has shape {values.shape}, but the global domain"
            f" requires {glob_shape}"
        )
    return values[partition.xoffset : partition.xoffset + shape[0], ...].copy()


def load_z_faces(values: Union[ArrayLike, xarray.DataArray]) -> np.ndarray:
    """Return interface heights as one-dimensional array ordered from the
    bottom up. Depths given as positive numbers are converted to heights."""
    z_faces = np.asarray(values, dtype=float)
    if z_faces.ndim != 1:
        raise DataShapeError(
            f"Interface heights must be one-dimensional, but have shape {z_faces.shape}"
        )
    if (z_faces > 0.0).any() and not (z_faces < 0.0).any():
        z_faces = -z_faces
    if z_faces.size > 1 and z_faces[0] > z_faces[-1]:
        z_faces = z_faces[::-1]
    return z_faces
