"""pyvt - command-line client for vals, blobs and tables."""

from .api import VtClient
from .exceptions import (
    VtAPIError,
    VtAuthenticationError,
    VtConfigError,
    VtError,
    VtInvalidResponseError,
    VtLockFileError,
    VtLockFileNotFoundError,
    VtNetworkError,
    VtNotFoundError,
    VtPermissionError,
    VtRateLimitError,
    VtServerError,
    VtSyncError,
)
from .utils import hash_content, parse_val_identifier

__all__ = [
    "VtClient",
    "VtAPIError",
    "VtAuthenticationError",
    "VtConfigError",
    "VtError",
    "VtInvalidResponseError",
    "VtLockFileError",
    "VtLockFileNotFoundError",
    "VtNetworkError",
    "VtNotFoundError",
    "VtPermissionError",
    "VtRateLimitError",
    "VtServerError",
    "VtSyncError",
    "hash_content",
    "parse_val_identifier",
]
