"""Exception hierarchy for Screen Time Manager.

Only genuine faults are exceptions.  Policy rejections (pause denied,
resume while active, ...) and authorization failures are returned as
:class:`~screentime.core.models.CommandResult` values instead.
"""


class ScreenTimeError(Exception):
    """Base exception for Screen Time Manager."""
    pass


class PersistenceError(ScreenTimeError):
    """The quota store could not be read or written."""
    pass


class ConfigError(ScreenTimeError):
    """A configuration value is malformed and has no usable default."""
    pass


class RemoteChannelError(ScreenTimeError):
    """The chat service rejected a request or sent an unreadable reply."""
    pass
