"""
Error taxonomy for the token-gating core.
"""

from typing import Optional


class BaremintError(Exception):
    """Base exception for core errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(BaremintError):
    """A required setting (e.g. the balance RPC endpoint) is missing. Fatal."""
    pass


class ExternalServiceError(BaremintError):
    """An external collaborator timed out or answered with a failure."""

    def __init__(self, message: str, service: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"[{service}] {message}")


class MalformedInputError(BaremintError):
    """Inbound payload could not be interpreted."""
    pass


class NotFoundError(BaremintError):
    """Referenced entity does not exist (or is no longer in the expected state)."""
    pass
