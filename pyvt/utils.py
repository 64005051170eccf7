"""Utility functions for pyvt."""

import hashlib
import json
import re
from datetime import datetime
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Extension of val source files in a sync workspace
VAL_EXTENSION: str = "tsx"

# Page size used when draining paginated listings
DEFAULT_PAGE_LIMIT: int = 100

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

VAL_WEB_URL: str = "https://www.val.town/v"


# =============================================================================
# Hashing
# =============================================================================


def hash_content(content: str) -> str:
    """Return the lowercase hex SHA-256 digest of a val's source.

    Args:
        content: Source text

    Returns:
        64 character hex digest

    Examples:
        >>> hash_content("")
        'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


# =============================================================================
# Val identifiers
# =============================================================================


def parse_val_identifier(
    value: str, default_author: Optional[str] = None
) -> tuple[str, str]:
    """Split a val identifier into (author, name).

    Accepts ``name``, ``@name``, ``author/name``, ``author.name`` and
    ``@author/name``. A bare name belongs to ``default_author``.

    Args:
        value: Identifier given on the command line
        default_author: Username used when the identifier has no author

    Returns:
        Tuple of (author, name)

    Raises:
        ValueError: If the identifier has more than two parts, or has no
            author and no default author was given

    Examples:
        >>> parse_val_identifier("@alice/hello")
        ('alice', 'hello')
        >>> parse_val_identifier("alice.hello")
        ('alice', 'hello')
        >>> parse_val_identifier("hello", default_author="bob")
        ('bob', 'hello')
    """
    if value.startswith("@"):
        value = value[1:]

    parts = re.split(r"[./]", value)
    if any(not part for part in parts):
        raise ValueError(f"invalid val: {value}")

    if len(parts) == 1:
        if not default_author:
            raise ValueError(f"invalid val: {value} (no author)")
        return default_author, parts[0]
    if len(parts) == 2:
        return parts[0], parts[1]

    raise ValueError(f"invalid val: {value}")


def val_web_url(author: str, name: str) -> str:
    """Return the browser URL of a val."""
    return f"{VAL_WEB_URL}/{author}/{name}"


def normalize_api_path(path: str) -> str:
    """Normalize a path for a raw API call.

    Full URLs are returned unchanged. Other paths get a leading slash and
    the ``/v1`` prefix when missing.

    Examples:
        >>> normalize_api_path("me")
        '/v1/me'
        >>> normalize_api_path("/v1/me")
        '/v1/me'
    """
    if path.startswith(("http://", "https://")):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    if not path.startswith("/v1"):
        path = f"/v1{path}"
    return path


# =============================================================================
# Env files
# =============================================================================

_ENV_KEY_PATTERN = r"[A-Za-z_][A-Za-z0-9_.-]*"
_ENV_KEY = re.compile(_ENV_KEY_PATTERN)
_ENV_LINE = re.compile(rf"^\s*(?:export\s+)?({_ENV_KEY_PATTERN})\s*=(.*)$")
_NEEDS_QUOTING = re.compile(r"[\s\"'#\\]")


def is_env_key(key: str) -> bool:
    """Return True if ``key`` can be written to and read back from an env file."""
    return bool(_ENV_KEY.fullmatch(key))


def parse_env_file(text: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines into a dictionary.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    allowed, and double quoted values are unescaped.

    Args:
        text: File content

    Returns:
        Mapping of keys to values, in file order
    """
    values: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        match = _ENV_LINE.match(line)
        if not match:
            continue
        key, raw = match.group(1), match.group(2).strip()
        if len(raw) >= 2 and raw[0] == raw[-1] == '"':
            try:
                value = json.loads(raw)
            except ValueError:
                value = raw[1:-1]
        elif len(raw) >= 2 and raw[0] == raw[-1] == "'":
            value = raw[1:-1]
        else:
            value = raw
        values[key] = value
    return values


def format_env_file(values: dict[str, str]) -> str:
    """Serialize a mapping as ``KEY=VALUE`` lines.

    Values containing whitespace, quotes, ``#`` or backslashes are written
    as JSON strings so that :func:`parse_env_file` reads them back intact.
    Keys that :func:`parse_env_file` cannot read are left out.
    """
    lines = []
    for key, value in values.items():
        if not is_env_key(key):
            continue
        value = str(value)
        if _NEEDS_QUOTING.search(value):
            value = json.dumps(value)
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n" if lines else ""


# =============================================================================
# Display helpers
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp from the API.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        datetime object in local time or None if parsing fails
    """
    if not timestamp_str:
        return None

    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(timestamp_str)
    except ValueError:
        return None

    if dt.tzinfo is not None:
        return datetime.fromtimestamp(dt.timestamp())
    return dt


def format_size(size_bytes: int) -> str:
    """Format a size in bytes in human-readable form.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
