"""
Exceptions raised while setting up and benchmarking SnowyLand.

Construction errors are never retried; they propagate straight to the caller
(ultimately the command line entry point), which reports them and aborts.
"""


class ConfigurationError(ValueError):
    """
    A parameter or forcing input is missing, malformed, or defined on the
    wrong grid partition.
    """


class DataAccessError(OSError):
    """An external dataset path cannot be resolved or read."""


class InvalidModeError(ValueError):
    """An unrecognised profiler mode was requested."""


class RegressionAssertionFailure(AssertionError):
    """
    The mean benchmark timing fell outside the tolerance band around the
    recorded baseline.
    """
