import numpy as np

RHO0 = 1029.0  #: reference density of seawater (kg m-3)
R_EARTH = 6378815.0  #: radius of the earth (m)
DEG2RAD = np.pi / 180  #: degree to radian conversion

DAY = 86400.0  #: length of a day (s)
MONTH_LENGTH = 30 * DAY  #: length of a climatological month (s)
NMONTHS = 12  #: number of climatological records per forcing cycle

RESTORING_TIMESCALE = 7 * DAY  #: default timescale for surface tracer relaxation (s)
DRAG_COEFFICIENT = 0.001  #: default linear bottom drag coefficient (m s-1)
STENCIL_RADIUS = 3  #: widest stencil radius of the advection/diffusion operators
