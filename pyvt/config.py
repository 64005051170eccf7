"""Configuration management for pyvt."""

import logging
import os
from pathlib import Path
from typing import Optional

from .utils import format_env_file, parse_env_file

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.val.town"
TOKEN_ENV_VAR = "VALTOWN_TOKEN"


class Config:
    """Resolves the API token and URL from the environment and config file.

    The token is read from ``VALTOWN_TOKEN`` first, then from the config
    file written by ``vt init``. The API URL can be overridden with
    ``API_URL`` (or the older ``VALTOWN_API``).
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file. Defaults to
                        $XDG_CONFIG_HOME/pyvt or ~/.config/pyvt
        """
        if config_dir is None:
            xdg_home = os.environ.get("XDG_CONFIG_HOME")
            base = Path(xdg_home) if xdg_home else Path.home() / ".config"
            config_dir = base / "pyvt"
        self.config_dir = config_dir

    def get_config_path(self) -> Path:
        """Return the path of the config file."""
        return self.config_dir / "config"

    def get_cache_dir(self) -> Path:
        """Return the cache directory ($XDG_CACHE_HOME/pyvt)."""
        xdg_cache = os.environ.get("XDG_CACHE_HOME")
        base = Path(xdg_cache) if xdg_cache else Path.home() / ".cache"
        return base / "pyvt"

    def _read_file(self) -> dict[str, str]:
        config_path = self.get_config_path()
        if not config_path.exists():
            return {}
        try:
            return parse_env_file(config_path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.warning(f"Failed to read config file {config_path}: {e}")
            return {}

    @property
    def api_key(self) -> Optional[str]:
        """API token from the environment or the config file."""
        return os.environ.get(TOKEN_ENV_VAR) or self._read_file().get(TOKEN_ENV_VAR)

    @property
    def api_url(self) -> str:
        """Base URL of the API, without trailing slash."""
        url = (
            os.environ.get("API_URL")
            or os.environ.get("VALTOWN_API")
            or DEFAULT_API_URL
        )
        return url.rstrip("/")

    def is_configured(self) -> bool:
        """Check whether a token is available."""
        return bool(self.api_key)

    def save_api_key(self, api_key: str) -> None:
        """Store the token in the config file, keeping other settings.

        Args:
            api_key: Token to save
        """
        values = self._read_file()
        values[TOKEN_ENV_VAR] = api_key

        self.config_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.get_config_path()
        config_path.write_text(format_env_file(values), encoding="utf-8")
        # Token file must not be world readable
        config_path.chmod(0o600)
        logger.debug(f"Saved API key to {config_path}")


config = Config()
