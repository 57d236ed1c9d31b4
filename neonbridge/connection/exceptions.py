"""Connection subsystem exceptions."""


class ConnectionManagerError(Exception):
    """Base class for connection manager errors."""


class NotConfiguredError(ConnectionManagerError):
    """The bridge has no stored device identity yet."""


class TransportError(ConnectionManagerError):
    """The transport could not connect, send or receive."""
