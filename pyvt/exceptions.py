"""Exceptions raised by pyvt."""


class VtError(Exception):
    """Base exception for all pyvt errors."""


class VtAPIError(VtError):
    """Base exception for API and transport errors."""


class VtAuthenticationError(VtAPIError):
    """Raised when the token is missing, invalid or expired."""


class VtPermissionError(VtAPIError):
    """Raised when the token is not allowed to access a resource."""


class VtNotFoundError(VtAPIError):
    """Raised when a val, user or blob does not exist."""


class VtRateLimitError(VtAPIError):
    """Raised when the API rejects a request with HTTP 429."""


class VtServerError(VtAPIError):
    """Raised when the API answers with a 5xx status."""


class VtNetworkError(VtAPIError):
    """Raised on connection failures and timeouts."""


class VtInvalidResponseError(VtAPIError):
    """Raised when a response cannot be decoded or lacks a required field."""


class VtConfigError(VtError):
    """Raised when required configuration is missing."""


class VtLockFileNotFoundError(VtConfigError):
    """Raised when a sync is started in a directory without a lock file."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            f"Lock file not found: {path}. Run 'vt clone' to create a workspace."
        )


class VtSyncError(VtError):
    """Raised when a sync cannot be completed."""


class VtLockFileError(VtSyncError):
    """Raised when the lock file cannot be parsed."""
