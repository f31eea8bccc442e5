"""
Error taxonomy for hostname reconciliation.

Errors raised out of a reconciliation pass are returned to the controller,
which retries the pass with exponential backoff. Provider errors never leave
the reconciler; they are recorded in the hostname status instead.
"""


class ReconcileError(Exception):
    """Base class for errors that fail a reconciliation pass."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CredentialResolutionError(ReconcileError):
    """Raised when the DDNS auth secret or its authToken key cannot be read."""


class AddressResolutionError(ReconcileError):
    """Raised when the public IP address of this host cannot be detected."""


class StatusPersistenceError(ReconcileError):
    """Raised when the status merge patch cannot be written."""


class ProviderError(Exception):
    """Raised by DNS provider adapters on any initialize/check/update failure."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)
