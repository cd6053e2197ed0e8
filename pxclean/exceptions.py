"""
Exception hierarchy for the cleanup pipeline.

Only ConnectivityError and BackupError abort a run. Every other error is
absorbed at the resource or step level and surfaces in the report.
"""

from pxclean.models import ErrorType


class CleanupError(Exception):
    """Base exception for cleanup-related errors."""

    error_type = ErrorType.UNKNOWN
    recoverable = False


class ConnectivityError(CleanupError):
    """Raised when the Docker daemon or remote host cannot be reached."""

    error_type = ErrorType.CONNECTIVITY


class BackupError(CleanupError):
    """Raised when a backup cannot be written or loaded."""

    error_type = ErrorType.BACKUP_FAILURE


class ResourceInUseError(CleanupError):
    """Raised when the daemon refuses a removal because the resource is in use."""

    error_type = ErrorType.RESOURCE_IN_USE
    recoverable = True


class ResourceNotFoundError(CleanupError):
    """Raised when the resource to remove no longer exists."""

    error_type = ErrorType.RESOURCE_NOT_FOUND
    recoverable = True


class RemovalError(CleanupError):
    """Raised when a removal fails for any other reason."""

    error_type = ErrorType.REMOVAL_FAILURE
    recoverable = True


class SizeEstimationError(CleanupError):
    """Raised internally when a size query fails. Never escapes the accountant."""

    error_type = ErrorType.SIZE_ESTIMATION
    recoverable = True


class ProxmoxAPIError(CleanupError):
    """Raised when a Proxmox API call fails."""

    error_type = ErrorType.CONNECTIVITY
    recoverable = True

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthenticationError(ProxmoxAPIError):
    """Raised when Proxmox authentication fails."""
