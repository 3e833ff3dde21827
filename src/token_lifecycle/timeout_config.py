# src/token_lifecycle/timeout_config.py
"""
Centralized timeout configuration for token endpoint requests.

All values can be overridden via environment variables:
    TOKEN_REFRESH_TIMEOUT - Overall bound on one refresh-token grant (default: 10s)
    TIMEOUT_CONNECT - Connection establishment timeout (default: 5s)
"""

import os
import logging
from typing import Optional

import httpx

lib_logger = logging.getLogger("token_lifecycle")


class TimeoutConfig:
    """
    Centralized timeout configuration for the refresh HTTP call.

    All values can be overridden via environment variables.
    """

    # Default values (in seconds)
    _REFRESH = 10.0
    _CONNECT = 5.0

    @classmethod
    def _get_env_float(cls, key: str, default: float) -> float:
        """Get a positive float value from environment variable, or return default."""
        value = os.environ.get(key)
        if value is not None:
            try:
                parsed = float(value)
                if parsed > 0:
                    return parsed
            except ValueError:
                pass
            lib_logger.warning(
                f"Invalid value for {key}: {value}. Using default: {default}"
            )
        return default

    @classmethod
    def refresh(cls) -> float:
        """Overall time allowed for one refresh-token grant."""
        return cls._get_env_float("TOKEN_REFRESH_TIMEOUT", cls._REFRESH)

    @classmethod
    def connect(cls) -> float:
        """Connection establishment timeout."""
        return cls._get_env_float("TIMEOUT_CONNECT", cls._CONNECT)

    @classmethod
    def token_endpoint(cls, total: Optional[float] = None) -> httpx.Timeout:
        """
        httpx timeout for the token endpoint.

        No phase may exceed the overall refresh bound, and the connect phase
        is capped separately so an unreachable host fails fast.
        """
        total = total or cls.refresh()
        return httpx.Timeout(total, connect=min(cls.connect(), total))
