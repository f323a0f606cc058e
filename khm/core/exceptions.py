"""
Exception hierarchy shared by the services and the HTTP layer.
"""


class KHMError(Exception):
    """Base class for all KHM errors."""
    pass


class ValidationError(KHMError):
    """Client-caused error. Never retried server-side."""
    pass


class InvalidKeyFormatError(ValidationError):
    """A submitted public key does not match any supported SSH key format."""

    def __init__(self, server: str):
        self.server = server
        super().__init__(f"Invalid SSH key format for server: {server}")


class FlowNotAllowedError(ValidationError):
    """The flow is not on the configured allow-list."""

    def __init__(self, flow: str):
        self.flow = flow
        super().__init__(f"Flow ID not allowed: {flow}")


class FlowNotFoundError(KHMError):
    """The flow is allowed but absent from the current snapshot."""

    def __init__(self, flow: str):
        self.flow = flow
        super().__init__(f"Flow ID not found: {flow}")


class PersistenceError(KHMError):
    """Database error that does not invalidate the connection (e.g. a constraint race)."""
    pass


class DatabaseConnectionLost(KHMError):
    """
    The database connection failed or timed out.

    Fatal to the process: the application boundary logs it and shuts down
    instead of serving possibly stale data.
    """
    pass
