# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy and upstream response classification.

Only quota exhaustion is recovered locally (one fallback hop in the
Dispatcher). Every other error is raised with its kind intact so the
caller or the menu layer can react to it.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .constants import LIB_LOGGER_NAME

lib_logger = logging.getLogger(LIB_LOGGER_NAME)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class RotatorError(Exception):
    """Base class for all account rotator errors."""


class NoUsableAccountError(RotatorError):
    """Raised when no account qualifies for a family/style."""


class QuotaExhaustedError(RotatorError):
    """Raised when the quota pool charged by a call is exhausted."""

    def __init__(
        self,
        message: str,
        account_index: Optional[int] = None,
        quota_key: Optional[str] = None,
        reset_in_ms: Optional[int] = None,
        account_wide: bool = False,
    ):
        super().__init__(message)
        self.account_index = account_index
        self.quota_key = quota_key
        self.reset_in_ms = reset_in_ms
        self.account_wide = account_wide


class CredentialRejectedError(RotatorError):
    """
    Raised when upstream rejects a credential outright.

    The account is marked expired; only a successful refresh brings it back.
    """

    def __init__(self, message: str, account_index: Optional[int] = None):
        super().__init__(message)
        self.account_index = account_index


class VerificationFailedError(RotatorError):
    """Raised when an account cannot be confirmed live."""

    def __init__(self, message: str, account_index: Optional[int] = None):
        super().__init__(message)
        self.account_index = account_index


class TransientIOError(RotatorError):
    """Network failure of one attempt. Not a state transition."""


# =============================================================================
# CLASSIFICATION
# =============================================================================

ERROR_QUOTA = "quota_exceeded"
ERROR_CREDENTIAL = "credential_rejected"
ERROR_VERIFICATION = "verification_required"
ERROR_SERVER = "server_error"
ERROR_REQUEST = "invalid_request"

# Reason reported by Google for short-term, account-wide throttling
ACCOUNT_WIDE_REASONS = frozenset({"RATE_LIMIT_EXCEEDED"})

VERIFICATION_PATTERNS = (
    "validation_required",
    "verify your account",
    "account verification",
)


@dataclass
class ClassifiedError:
    """Outcome of classifying a non-success upstream response."""

    error_type: str
    status_code: int
    message: str = ""
    retry_after_ms: Optional[int] = None
    reason: Optional[str] = None

    @property
    def account_wide(self) -> bool:
        return self.reason in ACCOUNT_WIDE_REASONS


def parse_duration_ms(duration: Any) -> Optional[int]:
    """
    Parse a duration into milliseconds.

    Handles '290.5ms', '156h14m36.75s', '45m30s', '3600s', '39' (seconds)
    and {"seconds": "12"} dicts.
    """
    if duration is None:
        return None
    if isinstance(duration, dict):
        return parse_duration_ms(duration.get("seconds"))
    if isinstance(duration, (int, float)):
        return int(float(duration) * 1000)

    remaining = str(duration).strip().lower()
    if not remaining:
        return None

    try:
        return int(float(remaining) * 1000)
    except ValueError:
        pass

    ms_match = re.match(r"^([\d.]+)ms$", remaining)
    if ms_match:
        return int(float(ms_match.group(1)))

    total = 0.0
    matched = False
    hour_match = re.match(r"(\d+)h", remaining)
    if hour_match:
        total += int(hour_match.group(1)) * 3600
        remaining = remaining[hour_match.end() :]
        matched = True

    # (?!s) keeps 'ms' from being read as minutes
    min_match = re.match(r"(\d+)m(?!s)", remaining)
    if min_match:
        total += int(min_match.group(1)) * 60
        remaining = remaining[min_match.end() :]
        matched = True

    sec_match = re.match(r"([\d.]+)s", remaining)
    if sec_match:
        total += float(sec_match.group(1))
        matched = True

    return int(total * 1000) if matched else None


def _parse_error_json(body: str) -> Dict[str, Any]:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return {}
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        return {}
    error = data.get("error")
    return error if isinstance(error, dict) else {}


def _extract_retry_ms(error: Dict[str, Any], body: str) -> Optional[int]:
    for detail in error.get("details", []) or []:
        if not isinstance(detail, dict):
            continue
        detail_type = detail.get("@type", "")
        if "google.rpc.RetryInfo" in detail_type:
            delay = parse_duration_ms(detail.get("retryDelay"))
            if delay is not None:
                return delay
        if "google.rpc.ErrorInfo" in detail_type:
            metadata = detail.get("metadata", {}) or {}
            delay = parse_duration_ms(
                metadata.get("quotaResetDelay") or metadata.get("quotaresetdelay")
            )
            if delay is not None:
                return delay

    for pattern in (
        r"reset after\s*([\dhms.]+)",
        r"retry after\s*([\dhms.]+)",
    ):
        match = re.search(pattern, body, re.IGNORECASE)
        if match:
            delay = parse_duration_ms(match.group(1).rstrip("."))
            if delay is not None:
                return delay
    return None


def _extract_reason(error: Dict[str, Any]) -> Optional[str]:
    for detail in error.get("details", []) or []:
        if isinstance(detail, dict) and detail.get("reason"):
            return detail["reason"]
    return None


def classify_response(
    status_code: int,
    headers: Optional[Mapping[str, str]] = None,
    body: str = "",
) -> ClassifiedError:
    """
    Classify a non-success upstream response.

    Args:
        status_code: HTTP status code
        headers: Response headers (Retry-After is honoured)
        body: Raw response body text

    Returns:
        ClassifiedError describing the failure kind
    """
    error = _parse_error_json(body)
    message = error.get("message") or body[:200]
    status = str(error.get("status", "")).upper()
    body_lower = body.lower()
    reason = _extract_reason(error)

    if status_code == 429 or status == "RESOURCE_EXHAUSTED":
        retry_ms = None
        retry_after = (headers or {}).get("retry-after")
        if retry_after:
            retry_ms = parse_duration_ms(retry_after)
        if retry_ms is None:
            retry_ms = _extract_retry_ms(error, body)
        return ClassifiedError(
            error_type=ERROR_QUOTA,
            status_code=status_code,
            message=message,
            retry_after_ms=retry_ms,
            reason=reason,
        )

    if status_code == 403 and any(p in body_lower for p in VERIFICATION_PATTERNS):
        return ClassifiedError(
            error_type=ERROR_VERIFICATION,
            status_code=status_code,
            message=message,
            reason=reason,
        )

    if status_code == 401 or status == "UNAUTHENTICATED":
        return ClassifiedError(
            error_type=ERROR_CREDENTIAL,
            status_code=status_code,
            message=message,
            reason=reason,
        )

    if status_code >= 500:
        return ClassifiedError(
            error_type=ERROR_SERVER, status_code=status_code, message=message
        )

    return ClassifiedError(
        error_type=ERROR_REQUEST, status_code=status_code, message=message
    )


def mask_credential(credential: str) -> str:
    """
    Mask a credential for safe display in logs and error messages.

    - For tokens: shows last 6 characters (e.g., "...xyz123")
    - For credential file paths: shows just the filename
    """
    if not credential:
        return "***"
    if credential.endswith(".json"):
        return os.path.basename(credential)
    elif len(credential) > 6:
        return f"...{credential[-6:]}"
    else:
        return "***"
