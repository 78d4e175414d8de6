from typing import Any, Iterator, Mapping, Optional
import collections.abc
import logging
import os.path

import numpy as np
import xarray
import yaml

from . import input
from .exceptions import ConfigurationError


class Node(collections.abc.Mapping):
    """Configuration section. Values of nested sections can be retrieved with
    slash-separated paths, e.g., ``node["grid/size"]``.
    """

    def __init__(self, dictionary: Mapping[str, Any], prefix: str = "", root: str = "."):
        self.prefix = prefix
        self.root = root
        if not isinstance(dictionary, Mapping):
            raise ConfigurationError(
                "%s should be a mapping, but is %r" % (prefix or "configuration", dictionary)
            )
        self.dictionary = {}
        for name, value in dictionary.items():
            if isinstance(value, Mapping):
                value = Node(value, prefix="%s%s/" % (self.prefix, name), root=root)
            self.dictionary[name] = value
        self.retrieved = set()

    def __getitem__(self, path: str):
        components = path.split("/", 1)
        value = self.dictionary[components[0]]
        self.retrieved.add(components[0])
        if len(components) > 1:
            if not isinstance(value, Node):
                raise KeyError(path)
            value = value[components[1]]
        return value

    def __iter__(self) -> Iterator:
        return self.dictionary.__iter__()

    def __len__(self) -> int:
        return self.dictionary.__len__()

    def require(self, path: str):
        """Return a setting that must be present"""
        try:
            return self[path]
        except KeyError:
            raise ConfigurationError("%s%s is required" % (self.prefix, path)) from None

    def check(self):
        """Return the full paths of all settings that were never retrieved"""
        unused = []
        for name, value in self.dictionary.items():
            if name not in self.retrieved:
                unused.append("%s%s" % (self.prefix, name))
            elif isinstance(value, Node):
                unused += value.check()
        return unused

    def get_array(
        self, name: str, logger: Optional[logging.Logger] = None
    ) -> Optional[xarray.DataArray]:
        """Obtain an array setting. This is either a literal value, or a
        section with the ``path`` of a NetCDF file and the name of the
        ``variable`` to read from it.
        """
        info = self.get(name)
        if info is None:
            return None
        if isinstance(info, Node):
            path, variable = info.require("path"), info.require("variable")
            path = os.path.join(self.root, path)
            if logger is not None:
                logger.info("%s%s = variable %s from %s" % (self.prefix, name, variable, path))
            return input.from_nc(path, variable)
        if logger is not None:
            logger.info("%s%s = %s" % (self.prefix, name, info))
        return xarray.DataArray(np.asarray(info, dtype=float))


def configure(path: str) -> Node:
    """Read configuration from a YAML file. Relative paths of input files
    are interpreted relative to the directory containing the configuration."""
    with open(path) as f:
        settings = yaml.safe_load(f)
    if not isinstance(settings, Mapping):
        raise ConfigurationError(
            "%s should contain a mapping with configuration information, but instead"
            " contains %s" % (path, settings)
        )
    return Node(settings, root=os.path.dirname(os.path.abspath(path)))
