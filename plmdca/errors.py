class PlmDCAError(Exception):
    """Base class for errors raised by plmdca."""


class ConfigurationError(PlmDCAError, ValueError):
    """Invalid run configuration, raised before any optimization work."""


class AllocationError(PlmDCAError, MemoryError):
    """The parameter buffer could not be obtained."""


class DimensionError(PlmDCAError, ValueError):
    """Array shapes do not agree with the problem dimensions."""


class ReleasedHandleError(PlmDCAError, RuntimeError):
    """A result handle was used after release."""
