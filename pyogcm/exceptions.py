__all__ = ["ConfigurationError", "DataShapeError", "TimeIndexError"]


class ConfigurationError(Exception):
    """Raised when grid, partition or forcing settings are inconsistent.
    """


class DataShapeError(Exception):
    """Raised when an input array does not have the shape implied by the
    global domain or the local subdomain.
    """


class TimeIndexError(IndexError):
    """Raised when a simulation time cannot be mapped to a climatological
    record, for instance because it is negative or not finite.
    """
