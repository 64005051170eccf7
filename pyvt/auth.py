"""Token resolution and cached user lookup."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Optional, cast

from .api import VtClient
from .config import config
from .exceptions import VtInvalidResponseError
from .models import User
from .output import OutputFormatter

logger = logging.getLogger(__name__)


def require_api_key(ctx: Any, out: OutputFormatter) -> str:
    """Return the token from ``--api-key``/env/config or exit with status 1.

    Args:
        ctx: Click context holding the global ``api_key`` option
        out: Output formatter for error messages

    Returns:
        The API token
    """
    api_key = ctx.obj.get("api_key")
    if not api_key and not config.is_configured():
        out.error("API token not configured.")
        out.info("Set VALTOWN_TOKEN or run 'vt init' to save a token")
        ctx.exit(1)
    return api_key or cast(str, config.api_key)


def _user_cache_path(api_key: str, cache_dir: Optional[Path] = None) -> Path:
    cache_dir = cache_dir or config.get_cache_dir()
    token_hash = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    return cache_dir / "user" / token_hash


def load_user(client: VtClient, cache_dir: Optional[Path] = None) -> User:
    """Return the user owning the client's token, cached per token.

    The first lookup for a token calls ``/v1/me`` and stores the result in
    ``<cache>/user/<sha256(token)>``; later lookups read the file.

    Args:
        client: Authenticated API client
        cache_dir: Override for the cache directory

    Returns:
        The current user
    """
    cache_path = _user_cache_path(client.api_key, cache_dir)
    if cache_path.exists():
        try:
            return User.from_api_response(
                json.loads(cache_path.read_text(encoding="utf-8"))
            )
        except (ValueError, VtInvalidResponseError) as e:
            logger.warning(f"Ignoring corrupt user cache {cache_path}: {e}")

    user = client.get_current_user()
    try:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(json.dumps(user.to_dict()), encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to write user cache {cache_path}: {e}")
    return user


def clear_user_cache(api_key: str, cache_dir: Optional[Path] = None) -> bool:
    """Remove the cached user for a token.

    Returns:
        True if a cache entry was removed
    """
    cache_path = _user_cache_path(api_key, cache_dir)
    if cache_path.exists():
        cache_path.unlink()
        return True
    return False
