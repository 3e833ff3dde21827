# src/token_lifecycle/settings.py
"""
Environment-driven settings for the token lifecycle manager.

Recognised variables:
    GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET - OAuth client used for refresh grants (required)
    GOOGLE_TOKEN_URI - Token endpoint (default: https://oauth2.googleapis.com/token)
    TOKEN_REFRESH_TIMEOUT - Seconds allowed for one refresh grant (default: 10)
    TOKEN_FRESHNESS_BUFFER - Seconds before expiry a token counts as stale (default: 60)
    TOKEN_DB_PATH - SQLite database holding the Account/GoogleTokens/GoogleAccount tables
    ENABLE_LEGACY_GOOGLE_ACCOUNTS - Resolve account ids against GoogleAccount too (default: true)
    NODE_ENV / APP_ENV - "production" marks credential cookies as Secure
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import load_dotenv

from .config_exceptions import ConfigLoadError, ConfigValidationError
from .timeout_config import TimeoutConfig
from .utils.paths import get_data_file

lib_logger = logging.getLogger("token_lifecycle")

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_FRESHNESS_BUFFER_SECONDS = 60
DEFAULT_DB_FILENAME = "dashboard.db"


def load_env_file(path: Optional[Union[Path, str]] = None) -> bool:
    """
    Load a .env file into os.environ without overriding existing values.

    With no path, looks for .env in the data root and silently does nothing if absent.
    An explicit path that does not exist raises ConfigLoadError.
    """
    if path is None:
        default_env = get_data_file(".env")
        if not default_env.exists():
            return False
        return load_dotenv(default_env, override=False)

    env_path = Path(path)
    if not env_path.is_file():
        raise ConfigLoadError(f"Environment file not found: {env_path}")
    return load_dotenv(env_path, override=False)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        lib_logger.warning(f"Invalid value for {key}: {value}. Using default: {default}")
        return default
    if parsed < 0:
        lib_logger.warning(f"Negative value for {key}: {value}. Using default: {default}")
        return default
    return parsed


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key)
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        parsed = 0.0
    if parsed <= 0:
        lib_logger.warning(f"Invalid value for {key}: {value}. Using default: {default}")
        return default
    return parsed


@dataclass
class LifecycleSettings:
    client_id: str
    client_secret: str
    db_path: str
    token_uri: str = GOOGLE_TOKEN_URI
    refresh_timeout: float = 10.0
    freshness_buffer_seconds: int = DEFAULT_FRESHNESS_BUFFER_SECONDS
    secure_cookies: bool = False
    enable_legacy_accounts: bool = True

    def __post_init__(self):
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLIENT_ID", self.client_id),
                ("GOOGLE_CLIENT_SECRET", self.client_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigValidationError(
                f"Missing required Google OAuth settings: {', '.join(missing)}"
            )
        if self.refresh_timeout <= 0:
            raise ConfigValidationError("refresh_timeout must be positive")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LifecycleSettings":
        """Build settings from environment variables (typically os.environ)."""
        env = os.environ if env is None else env

        environment = (env.get("APP_ENV") or env.get("NODE_ENV") or "").lower()
        db_path = env.get("TOKEN_DB_PATH") or str(get_data_file(DEFAULT_DB_FILENAME))

        return cls(
            client_id=env.get("GOOGLE_CLIENT_ID", ""),
            client_secret=env.get("GOOGLE_CLIENT_SECRET", ""),
            db_path=db_path,
            token_uri=env.get("GOOGLE_TOKEN_URI") or GOOGLE_TOKEN_URI,
            refresh_timeout=_parse_float(
                env, "TOKEN_REFRESH_TIMEOUT", TimeoutConfig._REFRESH
            ),
            freshness_buffer_seconds=_parse_int(
                env, "TOKEN_FRESHNESS_BUFFER", DEFAULT_FRESHNESS_BUFFER_SECONDS
            ),
            secure_cookies=environment == "production",
            enable_legacy_accounts=_parse_bool(
                env.get("ENABLE_LEGACY_GOOGLE_ACCOUNTS"), True
            ),
        )
