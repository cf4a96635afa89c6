# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the account rotator.

This module contains the enums and dataclasses passed between the
style resolver, the account registry, the request transformer and
the dispatcher.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


# =============================================================================
# ENUMS
# =============================================================================


class ModelFamily(str, Enum):
    """Upstream model lineage. Each family has its own quota pools."""

    GEMINI = "gemini"
    CLAUDE = "claude"


class HeaderStyle(str, Enum):
    """
    Wire dialect used for one outgoing call.

    ANTIGRAVITY is the default dialect; GEMINI_CLI is only valid for
    the gemini family.
    """

    ANTIGRAVITY = "antigravity"
    GEMINI_CLI = "gemini-cli"


class AccountStatus(str, Enum):
    """Lifecycle status of an account."""

    ACTIVE = "active"
    RATE_LIMITED = "rate-limited"
    EXPIRED = "expired"
    VERIFICATION_REQUIRED = "verification-required"
    UNKNOWN = "unknown"


# Statuses that keep an account out of selection until a collaborator
# reports success.
BLOCKED_STATUSES = frozenset(
    {AccountStatus.EXPIRED, AccountStatus.VERIFICATION_REQUIRED}
)


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


@dataclass
class Credential:
    """
    Credential handle owned by exactly one account.

    The access token is what goes on the wire; the refresh token (when
    present) identifies the credential across refreshes.
    """

    access_token: str
    refresh_token: Optional[str] = None
    project_id: Optional[str] = None
    expires_at: Optional[int] = None  # ms since epoch

    @property
    def identity(self) -> str:
        """Stable identity used to keep handles unique within a pool."""
        return self.refresh_token or self.access_token

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "project_id": self.project_id,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token"),
            project_id=data.get("project_id"),
            expires_at=data.get("expires_at"),
        )


# =============================================================================
# CONFIGURATION TYPES
# =============================================================================


@dataclass(frozen=True)
class QuotaFallbackConfig:
    """
    Per-call fallback configuration.

    explicit_quota is set when the caller pinned a dialect; it disables
    fallback but never changes the initial style.
    """

    quota_fallback: bool = True
    cli_first: bool = False
    explicit_quota: bool = False


# =============================================================================
# REQUEST TYPES
# =============================================================================


@dataclass
class InboundRequest:
    """A caller-supplied request, before account/dialect rewriting."""

    url: str
    body: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "POST"


@dataclass
class OutgoingRequest:
    """
    A request rewritten for one account and one dialect.

    Produced by RequestTransformer; sent by the Dispatcher.
    """

    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    style: HeaderStyle
    account_index: int
    model_id: Optional[str] = None
    method: str = "POST"

    @property
    def streaming(self) -> bool:
        return ":streamGenerateContent" in self.url

    def to_httpx(
        self, client: httpx.AsyncClient, timeout: Optional[float] = None
    ) -> httpx.Request:
        kwargs: Dict[str, Any] = {"headers": self.headers, "json": self.body}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return client.build_request(self.method, self.url, **kwargs)
