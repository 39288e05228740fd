"""
Core exception classes for AWS Cost Saver.
"""
from typing import List, Optional


class AWSCostSaverError(Exception):
    """Base exception for all AWS Cost Saver errors."""

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(AWSCostSaverError):
    """Raised when configuration or command line input is invalid."""
    pass


class ServiceError(AWSCostSaverError):
    """Raised when AWS returns data a trick cannot work with."""
    pass


class StateError(AWSCostSaverError):
    """Raised when a state document cannot be parsed or serialized."""
    pass


class StorageError(AWSCostSaverError):
    """Raised when a state document cannot be read or written."""
    pass


class UnsupportedProtocol(StorageError):
    """Raised when no storage backend handles the URI scheme."""

    def __init__(self, protocol: str):
        super().__init__(f"storage protocol {protocol} is not supported")
        self.protocol = protocol


class TrickNotFound(ConfigurationError):
    """Raised when an allow-list or deny-list names an unknown trick."""

    def __init__(self, name: str, available: Optional[List[str]] = None):
        message = f"Trick not found: {name}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message)
        self.name = name


class AbortedByUser(AWSCostSaverError):
    """Raised when the user declines to overwrite an existing state file."""

    def __init__(self, message: str = "Aborted by user, state file was not overwritten"):
        super().__init__(message)


class RunFailure(AWSCostSaverError):
    """Raised after a run in which at least one trick failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, details="\n".join(errors or []))
        self.errors = list(errors or [])


class ConserveFailure(RunFailure):
    """Every requested trick failed during conserve."""
    pass


class ConservePartialFailure(RunFailure):
    """Some, but not all, tricks failed during conserve."""
    pass


class RestoreFailure(RunFailure):
    """Every requested trick failed during restore."""
    pass


class RestorePartialFailure(RunFailure):
    """Some, but not all, tricks failed during restore."""
    pass
