# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Header style resolution.

Pure decision functions: which dialect a request starts with, and which
dialect (if any) a quota-exhausted call falls back to. The dialect
preference is a single ordered pair per configuration; fallback moves
one step down it and never loops back.
"""

import re
from typing import Optional, Tuple

from ..core.constants import (
    DIALECT_MARKER_PREFIX,
    QUOTA_KEY_CLAUDE,
    QUOTA_KEY_GEMINI_ANTIGRAVITY,
    QUOTA_KEY_GEMINI_CLI,
)
from ..core.types import HeaderStyle, ModelFamily

_MODEL_SEGMENT_RE = re.compile(r"/models/([^/:?#]+)")


# =============================================================================
# MODEL IDENTIFIERS
# =============================================================================


def parse_model_id(url: str) -> Optional[str]:
    """
    Extract the model identifier from a target path.

    Example:
        ".../v1beta/models/gemini-3-flash:streamGenerateContent" -> "gemini-3-flash"
    """
    match = _MODEL_SEGMENT_RE.search(url)
    return match.group(1) if match else None


def has_dialect_marker(model_id: Optional[str]) -> bool:
    return bool(model_id) and model_id.startswith(DIALECT_MARKER_PREFIX)


def strip_dialect_marker(model_id: str) -> str:
    if has_dialect_marker(model_id):
        return model_id[len(DIALECT_MARKER_PREFIX) :]
    return model_id


def model_family_for(model_id: Optional[str]) -> ModelFamily:
    """Derive the model family from an identifier (claude or gemini)."""
    if model_id and "claude" in model_id.lower():
        return ModelFamily.CLAUDE
    return ModelFamily.GEMINI


def get_quota_key(family: ModelFamily, header_style: HeaderStyle) -> str:
    """
    Get the ledger key charged by a call.

    Claude has a single pool; gemini has one pool per dialect.
    """
    if family == ModelFamily.CLAUDE:
        return QUOTA_KEY_CLAUDE
    if header_style == HeaderStyle.GEMINI_CLI:
        return QUOTA_KEY_GEMINI_CLI
    return QUOTA_KEY_GEMINI_ANTIGRAVITY


# =============================================================================
# STYLE DECISIONS
# =============================================================================


def header_style_priority(cli_first: bool) -> Tuple[HeaderStyle, HeaderStyle]:
    """Dialect preference order for a configuration."""
    if cli_first:
        return (HeaderStyle.GEMINI_CLI, HeaderStyle.ANTIGRAVITY)
    return (HeaderStyle.ANTIGRAVITY, HeaderStyle.GEMINI_CLI)


def alternate_header_style(
    family: ModelFamily, header_style: HeaderStyle
) -> Optional[HeaderStyle]:
    """The other dialect for a family, or None if the family has only one."""
    if family != ModelFamily.GEMINI:
        return None
    if header_style == HeaderStyle.ANTIGRAVITY:
        return HeaderStyle.GEMINI_CLI
    return HeaderStyle.ANTIGRAVITY


def get_header_style_from_url(
    url: str,
    family: ModelFamily,
    cli_first: bool = False,
) -> HeaderStyle:
    """
    Determine the initial dialect for a request.

    An explicit marker prefix always wins. Otherwise gemini models use the
    cli dialect when cli_first is set; every other case uses antigravity.
    """
    model_id = parse_model_id(url)
    if has_dialect_marker(model_id):
        return HeaderStyle.ANTIGRAVITY
    if family == ModelFamily.GEMINI and cli_first:
        return HeaderStyle.GEMINI_CLI
    return HeaderStyle.ANTIGRAVITY


def resolve_quota_fallback_header_style(
    quota_fallback: bool,
    cli_first: bool,
    explicit_quota: bool,
    family: ModelFamily,
    header_style: HeaderStyle,
    alternate_style: Optional[HeaderStyle],
) -> Optional[HeaderStyle]:
    """
    Decide the dialect to retry with after quota exhaustion.

    Args:
        quota_fallback: Whether fallback is permitted at all
        cli_first: Preference order flag
        explicit_quota: Caller pinned the dialect
        family: Model family of the call
        header_style: Dialect that was exhausted
        alternate_style: The other dialect available for this call

    Returns:
        The next dialect in priority order, or None when there is none
    """
    if not quota_fallback or explicit_quota or alternate_style is None:
        return None
    if family != ModelFamily.GEMINI:
        return None
    if alternate_style == header_style:
        return None

    priority = header_style_priority(cli_first)
    if header_style not in priority:
        return None
    position = priority.index(header_style)
    if position + 1 >= len(priority):
        return None

    candidate = priority[position + 1]
    return candidate if candidate == alternate_style else None
