"""Boundary fluxes driven by monthly climatology.

Every boundary condition is a :class:`FluxBoundaryCondition` whose
:attr:`FluxBoundaryCondition.kind` selects the formula applied by
:func:`evaluate`. Evaluation only reads its inputs: the flux at a given
location and time depends on nothing but the grid, the mask, the forcing
carried by the boundary condition and the field snapshot, so that a restarted
simulation reproduces the fluxes of an uninterrupted one.
"""

from typing import Dict, Mapping, NamedTuple, Optional, Union
import enum
import logging
import math

import numpy as np
from numpy.typing import ArrayLike

from . import domain
from .constants import DRAG_COEFFICIENT, NMONTHS, RESTORING_TIMESCALE
from .exceptions import ConfigurationError, DataShapeError
from .input import Climatology, check_time, cyclic_index

Index = Union[int, np.ndarray]


class FluxKind(enum.Enum):
    WIND_STRESS = 1  #: surface momentum flux from interpolated climatological stress
    RELAXATION = 2  #: surface tracer flux relaxing towards a climatological target
    LINEAR_DRAG = 3  #: momentum flux at the bottom of the grid
    IMMERSED_DRAG = 4  #: momentum flux at the bottom defined by the immersed mask


class FluxBoundaryCondition(NamedTuple):
    kind: FluxKind
    field: Optional[str] = None  #: name of the field read from the snapshot
    forcing: Optional[np.ndarray] = None  #: monthly forcing (nx, ny, 12)
    coefficient: float = 0.0  #: relaxation rate or drag coefficient


class FieldBoundaryConditions(NamedTuple):
    top: Optional[FluxBoundaryCondition] = None
    bottom: Optional[FluxBoundaryCondition] = None
    immersed: Optional[FluxBoundaryCondition] = None


def _monthly_forcing(values: ArrayLike, name: str) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if values.ndim != 3 or values.shape[-1] != NMONTHS:
        raise DataShapeError(
            f"{name} must have shape (nx, ny, {NMONTHS}), but has shape {values.shape}"
        )
    values = values.view()
    values.flags.writeable = False
    return values


def _check_coefficient(value: float, name: str):
    if value is None or not math.isfinite(value) or value < 0.0:
        raise ConfigurationError(f"{name} must be finite and non-negative, but is {value}")


def wind_stress(tau: ArrayLike) -> FluxBoundaryCondition:
    """Surface flux of momentum from monthly kinematic wind stress (m2 s-2)

    Args:
        tau: upward kinematic momentum flux with shape (nx, ny, 12)
    """
    return FluxBoundaryCondition(FluxKind.WIND_STRESS, forcing=_monthly_forcing(tau, "tau"))


def relaxation(
    field: str,
    target: ArrayLike,
    grid: domain.Grid,
    timescale: Optional[float] = RESTORING_TIMESCALE,
) -> FluxBoundaryCondition:
    """Surface flux that relaxes a tracer towards its monthly climatological value.
    The flux equals ``grid.dz_top / timescale * (surface value - target)``.

    Args:
        field: name of the tracer in the field snapshot
        target: monthly target values with shape (nx, ny, 12)
        grid: grid of the local subdomain
        timescale: relaxation timescale (s)
    """
    if timescale is None or not math.isfinite(timescale) or timescale <= 0.0:
        raise ConfigurationError(
            f"Restoring timescale for {field} must be finite and positive, but is"
            f" {timescale}"
        )
    rate = grid.dz_top / timescale
    if not (math.isfinite(rate) and rate > 0.0):
        raise ConfigurationError(f"Relaxation rate for {field} is invalid ({rate})")
    return FluxBoundaryCondition(
        FluxKind.RELAXATION,
        field=field,
        forcing=_monthly_forcing(target, field + " target"),
        coefficient=rate,
    )


def linear_drag(field: str, mu: float = DRAG_COEFFICIENT) -> FluxBoundaryCondition:
    """Linear drag at the bottom of the grid: ``-mu * field[i, j, 0]``.
    If evaluated with an immersed mask, it only acts on columns whose
    bottommost active cell is the bottom cell of the grid."""
    _check_coefficient(mu, "Drag coefficient")
    return FluxBoundaryCondition(FluxKind.LINEAR_DRAG, field=field, coefficient=mu)


def immersed_drag(field: str, mu: float = DRAG_COEFFICIENT) -> FluxBoundaryCondition:
    """Linear drag at the immersed bottom: ``-mu * field[i, j, k]`` with ``k``
    the bottommost active cell of the column. Columns that reach the bottom
    of the grid are left to :func:`linear_drag`; dry columns have no drag."""
    _check_coefficient(mu, "Drag coefficient")
    return FluxBoundaryCondition(FluxKind.IMMERSED_DRAG, field=field, coefficient=mu)


def _interpolate(forcing: np.ndarray, i: Index, j: Index, time: float):
    n1, n2, fraction = cyclic_index(time)
    value1 = forcing[i, j, n1 - 1]
    value2 = forcing[i, j, n2 - 1]
    return value1 + fraction * (value2 - value1)


def evaluate(
    bc: FluxBoundaryCondition,
    i: Index,
    j: Index,
    time: float,
    grid: domain.Grid,
    fields: Mapping[str, np.ndarray],
    k: Optional[Index] = None,
    mask: Optional[domain.ImmersedMask] = None,
):
    """Evaluate a boundary flux.

    Args:
        bc: boundary condition
        i: zonal index (or array of indices) within the local subdomain
        j: meridional index (or array of indices)
        time: simulation time since the start of the forcing cycle (s)
        grid: grid of the local subdomain
        fields: snapshot of the prognostic fields, each indexed ``[i, j, k]``
        k: vertical index for immersed drag. If not provided, the bottommost
            active cell of the column according to ``mask`` is used.
        mask: immersed mask of the local subdomain. With a mask, every wet
            column has drag from either the grid bottom or the immersed bottom,
            never both.

    Indices may be integer arrays that broadcast against each other; the flux
    is then evaluated for every combination at once.
    """
    time = check_time(time)
    kind = bc.kind
    if kind is FluxKind.WIND_STRESS:
        return _interpolate(bc.forcing, i, j, time)
    elif kind is FluxKind.RELAXATION:
        target = _interpolate(bc.forcing, i, j, time)
        return bc.coefficient * (fields[bc.field][i, j, grid.nz - 1] - target)
    elif kind is FluxKind.LINEAR_DRAG:
        flux = -bc.coefficient * fields[bc.field][i, j, 0]
        if mask is None:
            return flux
        return np.where(mask.bottom[i, j] == 0, flux, 0.0)[()]
    elif kind is FluxKind.IMMERSED_DRAG:
        if k is not None:
            return -bc.coefficient * fields[bc.field][i, j, k]
        if mask is None:
            raise ConfigurationError(
                "Immersed drag requires either a vertical index or an immersed mask"
            )
        kbottom = mask.bottom[i, j]
        values = fields[bc.field][i, j, np.maximum(kbottom, 0)]
        return np.where(kbottom > 0, -bc.coefficient * values, 0.0)[()]
    raise ConfigurationError(f"Unknown flux kind {kind!r}")


def check_fields(fields: Mapping[str, np.ndarray], grid: domain.Grid):
    """Verify that every field in the snapshot has the shape of its grid location"""
    for name, values in fields.items():
        locs = domain.FIELD_LOCATIONS.get(name, (domain.CENTER,) * 3)
        expected_shape = grid.shape(*locs)
        if np.shape(values) != expected_shape:
            raise DataShapeError(
                f"Field {name} has shape {np.shape(values)}, but its location"
                f" on the local subdomain requires {expected_shape}"
            )


def boundary_flux(
    bc: FluxBoundaryCondition,
    time: float,
    grid: domain.Grid,
    fields: Mapping[str, np.ndarray],
    mask: Optional[domain.ImmersedMask] = None,
) -> np.ndarray:
    """Evaluate a boundary flux for all columns of the local subdomain.

    Returns:
        array with shape (nx, ny)
    """
    i, j = np.ogrid[: grid.nx, : grid.ny]
    return np.asarray(evaluate(bc, i, j, time, grid, fields, mask=mask))


def near_global_boundary_conditions(
    grid: domain.Grid,
    climatology: Climatology,
    mu: float = DRAG_COEFFICIENT,
    timescale: Optional[float] = RESTORING_TIMESCALE,
) -> Dict[str, FieldBoundaryConditions]:
    """Boundary conditions of the near-global setup: wind stress and linear drag
    at the bottom and immersed bottom for momentum, and surface relaxation
    towards climatology for temperature and salinity.
    """
    climatology.check_grid(grid)
    return {
        "u": FieldBoundaryConditions(
            top=wind_stress(climatology.tau_x),
            bottom=linear_drag("u", mu),
            immersed=immersed_drag("u", mu),
        ),
        "v": FieldBoundaryConditions(
            top=wind_stress(climatology.tau_y),
            bottom=linear_drag("v", mu),
            immersed=immersed_drag("v", mu),
        ),
        "T": FieldBoundaryConditions(
            top=relaxation("T", climatology.temperature, grid, timescale)
        ),
        "S": FieldBoundaryConditions(
            top=relaxation("S", climatology.salinity, grid, timescale)
        ),
    }


def evaluate_all(
    bcs: Mapping[str, FieldBoundaryConditions],
    time: float,
    grid: domain.Grid,
    fields: Mapping[str, np.ndarray],
    mask: Optional[domain.ImmersedMask] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Dict[str, np.ndarray]]:
    """Evaluate every boundary flux over the local subdomain.

    Returns:
        mapping from field name to a mapping from boundary side
        (top, bottom, immersed) to an array with shape (nx, ny)
    """
    check_fields(fields, grid)
    result = {}
    for name, field_bcs in bcs.items():
        result[name] = {}
        for side, bc in field_bcs._asdict().items():
            if bc is None:
                continue
            flux = boundary_flux(bc, time, grid, fields, mask)
            result[name][side] = flux
            if logger is not None:
                logger.info(
                    "%s %s flux: %.6g - %.6g" % (name, side, flux.min(), flux.max())
                )
    return result
