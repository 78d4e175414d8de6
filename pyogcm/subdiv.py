import argparse
import logging

from mpi4py import MPI

import pyogcm.parallel
from pyogcm.exceptions import ConfigurationError

rank = MPI.COMM_WORLD.rank


def main():
    logging.basicConfig(level=logging.INFO if rank == 0 else logging.ERROR)
    logger = logging.getLogger()

    parser = argparse.ArgumentParser(
        description="describe the division of the global domain into column blocks"
    )
    parser.add_argument("nx", type=int, help="number of columns of the global domain")
    parser.add_argument("nranks", type=int, help="number of ranks")
    parser.add_argument(
        "--bounded",
        action="store_true",
        help="zonal axis is bounded rather than periodic",
    )
    parser.add_argument("--plot", action="store_true", help="plot column partition")
    parser.add_argument("--savefig", help="path to save figure to")
    args = parser.parse_args()

    try:
        partition = pyogcm.parallel.Partition(
            args.nx, nranks=args.nranks, rank=0, periodic=not args.bounded
        )
    except ConfigurationError as e:
        logger.critical(str(e))
        raise SystemExit(1)

    logger.info(
        "%i columns over %i ranks: %i columns per rank"
        % (partition.nx_glob, partition.nranks, partition.nx)
    )
    for irank, (start, stop) in enumerate(partition.ranges()):
        neighbors = pyogcm.parallel.Partition(
            args.nx, nranks=args.nranks, rank=irank, periodic=not args.bounded
        )
        logger.info(
            "rank %i: columns [%i, %i), left %i, right %i"
            % (irank, start, stop, neighbors.left, neighbors.right)
        )

    if args.plot and rank == 0:
        from matplotlib import pyplot

        fig, ax = pyplot.subplots(figsize=(0.75 * partition.nranks + 2, 2))
        partition.plot(ax=ax)
        if args.savefig:
            fig.savefig(args.savefig, dpi=300)
        else:
            pyplot.show()


if __name__ == "__main__":
    main()
