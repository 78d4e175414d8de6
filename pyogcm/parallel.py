from typing import Iterator, List, Optional, Tuple
import logging
import numbers

from mpi4py import MPI
import numpy as np
from numpy.typing import ArrayLike

from .exceptions import ConfigurationError, DataShapeError


def get_logger(level=logging.INFO, comm=MPI.COMM_WORLD) -> logging.Logger:
    """Configure the root logger for the current rank and return it.
    Only rank 0 writes to the console; if more than one rank is active, every
    rank additionally writes its own log file ``ogcm-NNNN.log``.
    """
    handlers: List[logging.Handler] = []
    if comm.rank == 0:
        handlers.append(logging.StreamHandler())
    if comm.size > 1:
        file_handler = logging.FileHandler("ogcm-%04i.log" % comm.rank, mode="w")
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level, handlers=handlers)

    logger = logging.getLogger()
    logger.setLevel(level)
    return logger


def partition_columns(nx_glob: int, nranks: int, rank: int) -> Tuple[int, int]:
    """Determine the contiguous block of columns owned by a rank.

    Args:
        nx_glob: number of columns (zonal extent) of the global domain
        nranks: number of ranks the domain is divided over
        rank: rank to compute the column range for (0-based)

    Returns:
        Tuple with the global index of the first column owned by the rank, and
        the number of columns it owns.
    """
    for name, value in (("nx_glob", nx_glob), ("nranks", nranks), ("rank", rank)):
        if not isinstance(value, numbers.Integral):
            raise ConfigurationError(f"{name} must be an integer, but is {value!r}")
    if nx_glob < 1:
        raise ConfigurationError(f"Global domain must have at least 1 column, not {nx_glob}")
    if nranks < 1:
        raise ConfigurationError(f"Number of ranks must be at least 1, not {nranks}")
    if rank < 0 or rank >= nranks:
        raise ConfigurationError(f"Rank {rank} outside valid range [0, {nranks})")
    if nx_glob % nranks != 0:
        raise ConfigurationError(
            f"Global number of columns ({nx_glob}) is not divisible by"
            f" the number of ranks ({nranks})"
        )
    nx = nx_glob // nranks
    return rank * nx, nx


class Partition:
    """Division of the global domain into contiguous blocks of columns along
    the zonal (first) axis. The meridional and vertical axes are not divided.

    Args:
        nx_glob: number of columns of the global domain
        comm: MPI communicator
        nranks: number of ranks (default: size of the communicator)
        rank: rank to describe (default: rank within the communicator)
        periodic: the zonal axis is periodic; the last rank then neighbors the first
    """

    def __init__(
        self,
        nx_glob: int,
        comm=MPI.COMM_WORLD,
        nranks: Optional[int] = None,
        rank: Optional[int] = None,
        periodic: bool = True,
    ):
        self.comm = comm
        self.nranks: int = nranks if nranks is not None else self.comm.size
        self.rank: int = rank if rank is not None else self.comm.rank
        self.nx_glob = nx_glob
        self.periodic = periodic
        self.xoffset, self.nx = partition_columns(nx_glob, self.nranks, self.rank)

        self.left = self._find_neighbor(self.rank - 1)
        self.right = self._find_neighbor(self.rank + 1)

    def _find_neighbor(self, rank: int) -> int:
        if self.periodic:
            rank = rank % self.nranks
        if rank >= 0 and rank < self.nranks:
            return rank
        return -1

    def __bool__(self) -> bool:
        """Return True if the global domain is divided over more than one rank
        """
        return self.nranks > 1

    @property
    def slice(self) -> slice:
        """Global column range owned by the current rank"""
        return slice(self.xoffset, self.xoffset + self.nx)

    def ranges(self) -> Iterator[Tuple[int, int]]:
        """Iterate over the global column ranges ``[start, stop)`` of all ranks"""
        for rank in range(self.nranks):
            start, nx = partition_columns(self.nx_glob, self.nranks, rank)
            yield start, start + nx

    def partition_global_array(self, values: ArrayLike, name: str = "array") -> np.ndarray:
        """Return the part of a global array that belongs to the current rank.
        The first dimension of the array must be the zonal dimension of the
        global domain.
        """
        values = np.asarray(values)
        if values.ndim == 0 or values.shape[0] != self.nx_glob:
            raise DataShapeError(
                f"{name} has shape {values.shape}, but its first dimension should"
                f" match the global number of columns ({self.nx_glob})"
            )
        return values[self.slice, ...]

    def report(self, logger: logging.Logger):
        """Write information about the column partition to the log.
        Log messages are suppressed if the domain is not divided.
        """
        if self:
            logger.info(
                "Using column partition over %i ranks (%s)"
                % (self.nranks, "periodic" if self.periodic else "bounded")
            )
            logger.info(
                "Global domain has %i columns, subdomain has %i columns"
                % (self.nx_glob, self.nx)
            )
            logger.info(
                "I am rank %i with columns [%i, %i), left neighbor %i, right neighbor %i"
                % (
                    self.rank,
                    self.slice.start,
                    self.slice.stop,
                    self.left,
                    self.right,
                )
            )

    def plot(self, ax=None, background: Optional[np.ndarray] = None):
        """Plot the column partition

        Args:
            ax: :class:`matplotlib.axes.Axes` to plot into. If not provided, a
                new :class:`matplotlib.figure.Figure` with single axes will be created.
            background: field to use as background, for instance bathymetry. If
                provided, its first dimension must have the global number of
                columns.
        """
        if ax is None:
            import matplotlib.pyplot

            fig, ax = matplotlib.pyplot.subplots()

        ny = 1
        if background is not None:
            background = np.asarray(background)
            if background.ndim != 2 or background.shape[0] != self.nx_glob:
                raise DataShapeError(
                    "Argument background has incorrect shape %s. Expected (%i, ny)"
                    % (background.shape, self.nx_glob)
                )
            ny = background.shape[1]
            ax.pcolormesh(
                np.arange(self.nx_glob + 1), np.arange(ny + 1), background.T, alpha=0.5
            )

        for rank, (start, stop) in enumerate(self.ranges()):
            ax.axvline(start, color="k")
            ax.text(
                0.5 * (start + stop),
                0.5 * ny,
                "%i" % rank,
                horizontalalignment="center",
                verticalalignment="center",
            )
        ax.axvline(self.nx_glob, color="k")
        ax.set_xlim(0, self.nx_glob)
        ax.set_ylim(0, ny)
        ax.set_xlabel("column")
        return ax
