# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Dialect-specific request transformations.

Rewrites a caller request into the wire form required by one account and
one dialect:
- model path segment carries or drops the antigravity marker
- caller authentication replaced by the dialect's auth and identity headers
- output-token and thinking-budget ceilings enforced
- every other body field passed through untouched

Transforms are applied in a defined order with logging of modifications.
The input request is never mutated and no I/O happens here.
"""

import copy
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from ..core.config import RotatorSettings
from ..core.constants import (
    AUTH_HEADER_BY_STYLE,
    DIALECT_HEADERS,
    DIALECT_MARKER_PREFIX,
    LIB_LOGGER_NAME,
    MAX_OUTPUT_TOKENS,
    MAX_THINKING_BUDGET,
    STRIPPED_REQUEST_HEADERS,
)
from ..core.types import (
    HeaderStyle,
    InboundRequest,
    ModelFamily,
    OutgoingRequest,
)
from ..usage.registry import Account
from .styles import model_family_for, parse_model_id, strip_dialect_marker

lib_logger = logging.getLogger(LIB_LOGGER_NAME)

_MODELS_PATH_RE = re.compile(r"/models/([^/:?#]+)")


class RequestTransformer:
    """
    Turns an InboundRequest into an OutgoingRequest.

    Body transforms are applied in order:
    1. maxOutputTokens ceiling
    2. thinkingBudget ceiling
    """

    def __init__(self, settings: Optional[RotatorSettings] = None):
        self._settings = settings or RotatorSettings()
        self._body_transforms: List[Callable] = [
            self._clamp_output_tokens,
            self._clamp_thinking_budget,
        ]

    def transform(
        self,
        request: InboundRequest,
        account: Account,
        style: HeaderStyle,
        family_hint: Optional[ModelFamily] = None,
    ) -> OutgoingRequest:
        """
        Produce the outgoing request for an account and dialect.

        Args:
            request: Caller request (left untouched)
            account: Account whose credential is used
            style: Dialect to speak
            family_hint: Family override; derived from the model id otherwise

        Returns:
            OutgoingRequest ready to send
        """
        modifications: List[str] = []
        model_id = parse_model_id(request.url)
        family = family_hint or model_family_for(model_id)

        url, upstream_model = self._rewrite_model_path(request.url, style)
        if url != request.url:
            modifications.append(f"path -> {upstream_model}")

        headers = self._build_headers(request.headers, account, style)

        body = copy.deepcopy(request.body)
        for transform in self._body_transforms:
            result = transform(body, family, style)
            if result:
                modifications.append(result)

        if modifications:
            lib_logger.debug(
                f"Applied transforms for {model_id} ({style.value}): {modifications}"
            )

        return OutgoingRequest(
            url=url,
            headers=headers,
            body=body,
            style=style,
            account_index=account.index,
            model_id=upstream_model,
            method=request.method,
        )

    # =========================================================================
    # PATH AND HEADERS
    # =========================================================================

    def _rewrite_model_path(self, url: str, style: HeaderStyle):
        match = _MODELS_PATH_RE.search(url)
        if not match:
            return url, None

        base_model = strip_dialect_marker(match.group(1))
        if style == HeaderStyle.ANTIGRAVITY:
            upstream_model = f"{DIALECT_MARKER_PREFIX}{base_model}"
        else:
            upstream_model = base_model

        prefix = url[: match.start()]
        endpoint = self._settings.endpoint_for(style)
        if endpoint:
            prefix = endpoint.rstrip("/")
        rest = url[match.end() :]
        return f"{prefix}/models/{upstream_model}{rest}", upstream_model

    def _build_headers(
        self,
        caller_headers: Dict[str, str],
        account: Account,
        style: HeaderStyle,
    ) -> Dict[str, str]:
        headers = {
            key: value
            for key, value in caller_headers.items()
            if key.lower() not in STRIPPED_REQUEST_HEADERS
        }
        headers.update(DIALECT_HEADERS[style])

        token = account.credential.access_token
        auth_header = AUTH_HEADER_BY_STYLE[style]
        if style == HeaderStyle.ANTIGRAVITY:
            headers[auth_header] = f"Bearer {token}"
        else:
            headers[auth_header] = token
        headers.setdefault("Content-Type", "application/json")
        return headers

    # =========================================================================
    # BODY TRANSFORMS
    # =========================================================================

    def _clamp_output_tokens(
        self,
        body: Dict[str, Any],
        family: ModelFamily,
        style: HeaderStyle,
    ) -> Optional[str]:
        """Reduce maxOutputTokens above the dialect ceiling to the ceiling."""
        config = body.get("generationConfig")
        if not isinstance(config, dict):
            return None
        value = config.get("maxOutputTokens")
        ceiling = MAX_OUTPUT_TOKENS.get((family, style))
        if not isinstance(value, (int, float)) or ceiling is None:
            return None
        if value > ceiling:
            config["maxOutputTokens"] = ceiling
            return f"maxOutputTokens {value} -> {ceiling}"
        return None

    def _clamp_thinking_budget(
        self,
        body: Dict[str, Any],
        family: ModelFamily,
        style: HeaderStyle,
    ) -> Optional[str]:
        """
        Keep thinkingBudget within the family ceiling.

        Claude also requires the budget to stay below maxOutputTokens.
        """
        config = body.get("generationConfig")
        if not isinstance(config, dict):
            return None
        thinking = config.get("thinkingConfig")
        if not isinstance(thinking, dict):
            return None
        budget = thinking.get("thinkingBudget")
        if not isinstance(budget, (int, float)):
            return None

        ceiling = MAX_THINKING_BUDGET[family]
        max_output = config.get("maxOutputTokens")
        if family == ModelFamily.CLAUDE and isinstance(max_output, (int, float)):
            ceiling = min(ceiling, int(max_output) - 1)

        if ceiling >= 0 and budget > ceiling:
            thinking["thinkingBudget"] = ceiling
            return f"thinkingBudget {budget} -> {ceiling}"
        return None
