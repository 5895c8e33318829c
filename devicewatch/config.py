"""Configuration and API key management."""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from pathlib import Path

from devicewatch.discovery.polling import POLL_INTERVAL

logger = logging.getLogger("devicewatch.config")

CONFIG_DIR = Path.home() / ".devicewatch"
API_KEY_FILE = CONFIG_DIR / "api-key"
USER_CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_PORT = 9200


@dataclass
class WatchConfig:
    """Configuration for the devicewatch server and CLI."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    poll_interval: float = POLL_INTERVAL
    device_id: str | None = None
    api_key: str = field(default="", repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            self.api_key = self._load_or_create_api_key()

    @classmethod
    def from_user_config(cls, **overrides) -> WatchConfig:
        """Build a config from ~/.devicewatch/config.json, then apply non-None overrides."""
        user = read_user_config()
        values: dict = {}
        if isinstance(user.get("device_id"), str):
            values["device_id"] = user["device_id"]
        if isinstance(user.get("poll_interval"), (int, float)) and user["poll_interval"] > 0:
            values["poll_interval"] = float(user["poll_interval"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @staticmethod
    def _load_or_create_api_key() -> str:
        """Load existing API key or generate a new one."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)

        if API_KEY_FILE.exists():
            key = API_KEY_FILE.read_text().strip()
            if key:
                return key

        return WatchConfig.regenerate_api_key()

    @staticmethod
    def regenerate_api_key() -> str:
        """Generate a new API key, replacing the existing one."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        key = secrets.token_urlsafe(32)
        API_KEY_FILE.write_text(key)
        API_KEY_FILE.chmod(0o600)
        return key


def read_user_config() -> dict:
    """Read user config from ~/.devicewatch/config.json. Returns {} if missing or invalid."""
    if not USER_CONFIG_FILE.exists():
        return {}
    try:
        data = json.loads(USER_CONFIG_FILE.read_text())
    except (OSError, ValueError) as e:
        logger.warning("Failed to read config file %s: %s", USER_CONFIG_FILE, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", USER_CONFIG_FILE)
        return {}
    return data
