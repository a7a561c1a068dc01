from __future__ import annotations


class MonitorError(Exception):
    """Base class for errors raised by the host monitor."""


class ConfigError(MonitorError):
    """Configuration is missing, unreadable or fails validation."""


class StateStoreError(MonitorError):
    """The state file could not be written."""


class NotificationError(MonitorError):
    """A channel rejected a message or could not be reached."""
