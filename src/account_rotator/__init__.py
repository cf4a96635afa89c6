# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account rotator for the antigravity and gemini-cli dialects.

Spreads calls over a pool of Google accounts, tracks per-quota rate limits
and falls back to the alternate gemini dialect once when a quota pool is
exhausted.
"""

from .core.config import RotatorSettings
from .core.errors import (
    CredentialRejectedError,
    NoUsableAccountError,
    QuotaExhaustedError,
    RotatorError,
    TransientIOError,
    VerificationFailedError,
)
from .core.types import (
    AccountStatus,
    Credential,
    HeaderStyle,
    InboundRequest,
    ModelFamily,
    OutgoingRequest,
    QuotaFallbackConfig,
)
from .usage.ledger import RateLimitLedger
from .usage.registry import Account, AccountRegistry, AccountSnapshot
from .usage.storage import AccountStorage
from .client.styles import (
    get_header_style_from_url,
    get_quota_key,
    resolve_quota_fallback_header_style,
)
from .client.transforms import RequestTransformer
from .client.dispatcher import Dispatcher
from .providers.google_oauth import (
    AccountVerifier,
    GoogleAccountVerifier,
    GoogleTokenRefresher,
    TokenRefresher,
)

__all__ = [
    "Account",
    "AccountRegistry",
    "AccountSnapshot",
    "AccountStatus",
    "AccountStorage",
    "AccountVerifier",
    "Credential",
    "CredentialRejectedError",
    "Dispatcher",
    "GoogleAccountVerifier",
    "GoogleTokenRefresher",
    "HeaderStyle",
    "InboundRequest",
    "ModelFamily",
    "NoUsableAccountError",
    "OutgoingRequest",
    "QuotaExhaustedError",
    "QuotaFallbackConfig",
    "RateLimitLedger",
    "RequestTransformer",
    "RotatorError",
    "RotatorSettings",
    "TokenRefresher",
    "TransientIOError",
    "VerificationFailedError",
    "get_header_style_from_url",
    "get_quota_key",
    "resolve_quota_fallback_header_style",
]
