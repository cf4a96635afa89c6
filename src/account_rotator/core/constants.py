# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Constants and default values for the account rotator.

Header values, quota keys and body-parameter ceilings for the two wire
dialects live here so the resolver, transformer and dispatcher agree.
"""

import json

from .types import HeaderStyle, ModelFamily

# =============================================================================
# LOGGING
# =============================================================================

LIB_LOGGER_NAME = "account_rotator"

# =============================================================================
# DIALECT MARKER
# =============================================================================

# Model identifiers carrying this prefix pin the antigravity dialect.
DIALECT_MARKER_PREFIX = "antigravity-"

# =============================================================================
# QUOTA KEYS
# =============================================================================

QUOTA_KEY_CLAUDE = "claude"
QUOTA_KEY_GEMINI_ANTIGRAVITY = "gemini-antigravity"
QUOTA_KEY_GEMINI_CLI = "gemini-cli"

# =============================================================================
# DIALECT HEADERS
# =============================================================================

ANTIGRAVITY_VERSION = "1.15.8"

ANTIGRAVITY_CLIENT_METADATA = {
    "ideType": "IDE_UNSPECIFIED",
    "platform": "PLATFORM_UNSPECIFIED",
    "pluginType": "GEMINI",
}

# Header carrying the credential for each dialect
AUTH_HEADER_BY_STYLE = {
    HeaderStyle.ANTIGRAVITY: "Authorization",
    HeaderStyle.GEMINI_CLI: "x-goog-api-key",
}

DIALECT_HEADERS = {
    HeaderStyle.ANTIGRAVITY: {
        "User-Agent": f"antigravity/{ANTIGRAVITY_VERSION} windows/amd64",
        "X-Goog-Api-Client": "google-cloud-sdk vscode_cloudshelleditor/0.1",
        "Client-Metadata": json.dumps(ANTIGRAVITY_CLIENT_METADATA),
    },
    HeaderStyle.GEMINI_CLI: {
        "User-Agent": "google-api-nodejs-client/9.15.1",
        "X-Goog-Api-Client": "gl-node/22.17.0",
        "Client-Metadata": "ideType=IDE_UNSPECIFIED,platform=PLATFORM_UNSPECIFIED,pluginType=GEMINI",
    },
}

# Caller headers discarded before dialect headers are applied (lowercase)
STRIPPED_REQUEST_HEADERS = frozenset(
    {
        "authorization",
        "x-api-key",
        "x-goog-api-key",
        "user-agent",
        "x-goog-api-client",
        "client-metadata",
        "content-length",
        "host",
    }
)

# =============================================================================
# BODY PARAMETER CEILINGS
# =============================================================================

MAX_OUTPUT_TOKENS = {
    (ModelFamily.CLAUDE, HeaderStyle.ANTIGRAVITY): 64000,
    (ModelFamily.GEMINI, HeaderStyle.ANTIGRAVITY): 65535,
    (ModelFamily.GEMINI, HeaderStyle.GEMINI_CLI): 65536,
}

MAX_THINKING_BUDGET = {
    ModelFamily.CLAUDE: 32768,
    ModelFamily.GEMINI: 32768,
}

# =============================================================================
# UPSTREAM ENDPOINTS
# =============================================================================

CODE_ASSIST_ENDPOINT = "https://cloudcode-pa.googleapis.com"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_QUOTA_FALLBACK = True
DEFAULT_CLI_FIRST = False
DEFAULT_REQUEST_TIMEOUT = 120.0  # seconds
DEFAULT_RATE_LIMIT_MS = 60_000
DEFAULT_ACCOUNTS_FILE = "antigravity-accounts.json"
ACCOUNTS_SCHEMA_VERSION = 1
