"""
Exception hierarchy for the query monitor.

Scheduled sampling cycles catch these at the scheduler boundary and log them;
on-demand operations (live catalogue, statistics reset) let them propagate to
the caller.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for every error raised by the monitor."""


class ConnectivityError(MonitorError):
    """The monitored database could not be reached or refused the credentials."""


class MissingExtensionError(MonitorError):
    """A required introspection extension is not installed on the target."""

    def __init__(self, extension: str) -> None:
        super().__init__(
            f"{extension} extension is not installed. "
            f'Run "CREATE EXTENSION {extension};" on the monitored database.'
        )
        self.extension = extension


class IntrospectionQueryError(MonitorError):
    """A well-formed introspection query failed on the target."""


class StorageError(MonitorError):
    """The snapshot store could not read or persist data."""


__all__ = [
    "ConnectivityError",
    "IntrospectionQueryError",
    "MissingExtensionError",
    "MonitorError",
    "StorageError",
]
