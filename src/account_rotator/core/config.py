# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime settings for the account rotator.

Settings come from environment variables, optionally seeded from a .env
file. Invalid values fall back to defaults with a warning.

Environment variables:
    ROTATOR_QUOTA_FALLBACK: Allow one dialect fallback on quota exhaustion (default: true)
    ROTATOR_CLI_FIRST: Prefer the gemini-cli dialect for gemini models (default: false)
    ROTATOR_REQUEST_TIMEOUT: Upstream request timeout in seconds (default: 120)
    ROTATOR_DEFAULT_RATE_LIMIT_MS: Reset delay when upstream gives none (default: 60000)
    ROTATOR_ANTIGRAVITY_ENDPOINT: Base URL override for antigravity-style calls
    ROTATOR_GEMINI_CLI_ENDPOINT: Base URL override for gemini-cli-style calls
    ROTATOR_ACCOUNTS_FILE: Path of the JSON account store
    ROTATOR_OAUTH_CLIENT_ID / ROTATOR_OAUTH_CLIENT_SECRET: OAuth client for token refresh
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .constants import (
    DEFAULT_ACCOUNTS_FILE,
    DEFAULT_CLI_FIRST,
    DEFAULT_QUOTA_FALLBACK,
    DEFAULT_RATE_LIMIT_MS,
    DEFAULT_REQUEST_TIMEOUT,
    LIB_LOGGER_NAME,
)
from .types import HeaderStyle, QuotaFallbackConfig

lib_logger = logging.getLogger(LIB_LOGGER_NAME)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _env_bool(name: str, default: bool) -> bool:
    """Parse a boolean from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    lib_logger.warning(f"Invalid {name} value {raw!r}, using default {default}")
    return default


def _env_int(name: str, default: int) -> int:
    """Parse an integer from environment variable with fallback to default."""
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        lib_logger.warning(f"Invalid {name} value, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    """Parse a float from environment variable with fallback to default."""
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        lib_logger.warning(f"Invalid {name} value, using default {default}")
        return default


def _env_str(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass
class RotatorSettings:
    """Complete runtime configuration, shared by every component."""

    quota_fallback: bool = DEFAULT_QUOTA_FALLBACK
    cli_first: bool = DEFAULT_CLI_FIRST
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    default_rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    antigravity_endpoint: Optional[str] = None
    gemini_cli_endpoint: Optional[str] = None
    accounts_file: Path = Path(DEFAULT_ACCOUNTS_FILE)
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None

    @classmethod
    def from_env(
        cls, env_file: Optional[Union[str, Path]] = None
    ) -> "RotatorSettings":
        """
        Build settings from the environment.

        Args:
            env_file: Optional .env file loaded first (existing variables win)
        """
        if env_file is not None:
            load_dotenv(env_file, override=False)
        else:
            load_dotenv(override=False)

        return cls(
            quota_fallback=_env_bool("ROTATOR_QUOTA_FALLBACK", DEFAULT_QUOTA_FALLBACK),
            cli_first=_env_bool("ROTATOR_CLI_FIRST", DEFAULT_CLI_FIRST),
            request_timeout=max(
                1.0, _env_float("ROTATOR_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
            ),
            default_rate_limit_ms=max(
                0, _env_int("ROTATOR_DEFAULT_RATE_LIMIT_MS", DEFAULT_RATE_LIMIT_MS)
            ),
            antigravity_endpoint=_env_str("ROTATOR_ANTIGRAVITY_ENDPOINT"),
            gemini_cli_endpoint=_env_str("ROTATOR_GEMINI_CLI_ENDPOINT"),
            accounts_file=Path(
                _env_str("ROTATOR_ACCOUNTS_FILE") or DEFAULT_ACCOUNTS_FILE
            ),
            oauth_client_id=_env_str("ROTATOR_OAUTH_CLIENT_ID"),
            oauth_client_secret=_env_str("ROTATOR_OAUTH_CLIENT_SECRET"),
        )

    def endpoint_for(self, style: HeaderStyle) -> Optional[str]:
        """Base URL override for a dialect, if configured."""
        if style == HeaderStyle.GEMINI_CLI:
            return self.gemini_cli_endpoint
        return self.antigravity_endpoint

    def fallback_config(self, explicit_quota: bool = False) -> QuotaFallbackConfig:
        return QuotaFallbackConfig(
            quota_fallback=self.quota_fallback,
            cli_first=self.cli_first,
            explicit_quota=explicit_quota,
        )
