"""Exceptions raised by the monitor pipeline."""


class BtReconError(Exception):
    """Base class for fatal pipeline errors."""


class MonitorFailedError(BtReconError):
    """The monitor subprocess failed repeatedly and will not be restarted."""


class StoreUnavailableError(BtReconError):
    """The catalog store is unreachable or corrupt."""


class HardwareIdentityError(BtReconError):
    """The local adapter address could not be determined."""
