"""Error taxonomy for a conversion run.

Fatal errors (config, preflight, discovery) abort the run with exit status 1.
ConversionError is local to a single item and never aborts the batch.
"""


class MlcError(Exception):
    """Base class for all MLC errors."""


class ConfigError(MlcError):
    """Bad CLI arguments or an invalid config file."""


class PreflightError(MlcError):
    """A precondition for the run does not hold (directories, tools, disk space)."""


class DiscoveryError(MlcError):
    """Source tree cannot be enumerated or contains no eligible files."""


class ConversionError(MlcError):
    """Encoding a single item failed; partial output has been removed."""


class ConversionInterrupted(ConversionError):
    """Encoding was aborted by a cancellation request."""


class RunCancelled(MlcError):
    """The run was cancelled before it could complete."""
