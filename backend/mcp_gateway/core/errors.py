"""
Gateway error taxonomy.

Every error carries the HTTP status it maps to when surfaced by the API layer.
"""


class GatewayError(Exception):
    """Base exception for gateway errors."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    """Raised when a request or tool input is missing required fields or is malformed."""
    status_code = 400


class NotFoundError(GatewayError):
    """Raised when a tool or configuration entry does not exist."""
    status_code = 404


class ProviderError(GatewayError):
    """Raised when an upstream model provider call fails."""
    pass


class ToolExecutionError(GatewayError):
    """Raised when a tool implementation fails while executing."""
    pass


class StoreUnavailableError(GatewayError):
    """Raised when the durable record store cannot be reached."""
    status_code = 503


class DecryptionError(GatewayError):
    """Raised when a stored ciphertext is malformed or was encrypted with another key."""
    pass


class BackupError(GatewayError):
    """Raised when a backup cannot be created."""
    pass
