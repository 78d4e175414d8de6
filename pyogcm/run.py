from typing import Dict, NamedTuple, Optional
import argparse
import logging
import sys

from mpi4py import MPI
import numpy as np

from . import config as _config
from . import domain
from . import fluxes
from . import input
from . import parallel
from .constants import DAY, DRAG_COEFFICIENT, RESTORING_TIMESCALE, RHO0
from .exceptions import ConfigurationError, DataShapeError, TimeIndexError


class Setup(NamedTuple):
    partition: parallel.Partition
    grid: domain.Grid
    mask: domain.ImmersedMask
    climatology: input.Climatology
    boundary_conditions: Dict[str, fluxes.FieldBoundaryConditions]
    fields: Dict[str, np.ndarray]


def setup(
    config: _config.Node, comm=MPI.COMM_WORLD, logger: Optional[logging.Logger] = None
) -> Setup:
    """Create the partition, grid, immersed mask, climatology and boundary
    conditions of the current rank from configuration settings.
    All input files are closed on return.
    """
    logger = logger or parallel.get_logger(comm=comm)
    try:
        return _setup(config, comm, logger)
    finally:
        input.close_nc_files()


def _setup(config: _config.Node, comm, logger: logging.Logger) -> Setup:
    size = tuple(int(n) for n in config.require("grid/size"))
    if len(size) != 3:
        raise ConfigurationError("grid/size must have three elements, not %r" % (size,))
    nx, ny, nz = size
    topology = tuple(
        domain.Topology.parse(t)
        for t in config.get("grid/topology", ("Periodic", "Bounded", "Bounded"))
    )

    partition = parallel.Partition(
        nx, comm=comm, periodic=topology[0] is domain.Topology.PERIODIC
    )
    partition.report(logger.getChild("parallel"))

    z_faces = config.get_array("grid/z_faces", logger=logger)
    if z_faces is not None:
        z_faces = input.load_z_faces(z_faces)
    grid = domain.make_grid(
        size,
        longitude=tuple(config.get("grid/longitude", (-180.0, 180.0))),
        latitude=tuple(config.get("grid/latitude", (-75.0, 75.0))),
        z_faces=z_faces,
        halo=tuple(config.get("grid/halo", (5, 5, 5))),
        topology=topology,
        precompute_metrics=bool(config.get("grid/precompute_metrics", True)),
        partition=partition,
        logger=logger.getChild("domain"),
    )

    bathymetry = config.get_array("bathymetry", logger=logger)
    if bathymetry is None:
        raise ConfigurationError("bathymetry is required")
    depth = input.load_bathymetry(partition, ny, bathymetry)
    mask = domain.build_mask(depth, grid, logger=logger.getChild("domain"))

    forcing = {}
    for name in input.Climatology.names:
        forcing[name] = config.get_array("forcing/" + name, logger=logger)
        if forcing[name] is None:
            raise ConfigurationError("forcing/%s is required" % name)
    climatology = input.load_climatology(
        partition,
        ny,
        reference_density=float(config.get("forcing/reference_density", RHO0)),
        logger=logger.getChild("input"),
        **forcing,
    )

    timescale = config.get("forcing/restoring_timescale", RESTORING_TIMESCALE)
    bcs = fluxes.near_global_boundary_conditions(
        grid,
        climatology,
        mu=float(config.get("forcing/drag_coefficient", DRAG_COEFFICIENT)),
        timescale=None if timescale is None else float(timescale),
    )

    fields = {}
    for name, locs in domain.FIELD_LOCATIONS.items():
        shape = grid.shape(*locs)
        values = config.get_array("initial_conditions/" + name, logger=logger)
        if values is None:
            fields[name] = np.zeros(shape)
        else:
            fields[name] = input.load_initial_field(partition, values, shape, name)
    fluxes.check_fields(fields, grid)

    unused = config.check()
    if unused:
        logger.warning("Unused configuration settings: %s" % ", ".join(unused))

    return Setup(partition, grid, mask, climatology, bcs, fields)


def run():
    parser = argparse.ArgumentParser(
        description="Set up the near-global ocean configuration and report boundary fluxes"
    )
    parser.add_argument("configuration", help="Path to configuration file in yaml format")
    parser.add_argument(
        "-t",
        "--time",
        type=float,
        action="append",
        default=[],
        help="Simulation time (days) at which to report boundary fluxes",
    )
    parser.add_argument(
        "-l",
        "--log",
        type=str,
        help="Log level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        default="INFO",
    )
    parser.add_argument("--save_grid", help="Path to save the local grid to")
    args = parser.parse_args()

    comm = MPI.COMM_WORLD
    logger = parallel.get_logger(level=args.log.upper(), comm=comm)

    try:
        config = _config.configure(args.configuration)
        result = setup(config, comm=comm, logger=logger)
        if args.save_grid:
            result.grid.save(args.save_grid)
        for days in args.time:
            logger.info("Boundary fluxes at %s days:" % days)
            fluxes.evaluate_all(
                result.boundary_conditions,
                days * DAY,
                result.grid,
                result.fields,
                result.mask,
                logger=logger.getChild("fluxes"),
            )
    except (ConfigurationError, DataShapeError, TimeIndexError) as e:
        logger.critical("Setup failed on rank %i: %s" % (comm.rank, e))
        if comm.size > 1:
            comm.Abort(1)
        sys.exit(1)


if __name__ == "__main__":
    run()
