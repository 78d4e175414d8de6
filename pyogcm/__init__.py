from . import parallel
from . import domain
from . import input
from . import fluxes
from .constants import *
from .exceptions import *
from .domain import Topology, Location, CENTER, FACE, Grid, make_grid, build_mask
from .parallel import Partition, partition_columns
from .input import (
    Climatology,
    current_time_index,
    next_time_index,
    cyclic_interpolate,
)
