# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Request dispatch with one quota fallback hop.

One logical call makes at most two physical attempts:
1. initial dialect from the resolver, lowest usable account
2. on quota exhaustion, the fallback dialect (if any) once more

Ledger and status updates are applied only after an attempt's outcome is
fully known, so a cancelled send leaves no partial state behind.
"""

import logging
from typing import AbstractSet, Optional

import httpx

from ..core.config import RotatorSettings
from ..core.constants import LIB_LOGGER_NAME
from ..core.errors import (
    ERROR_CREDENTIAL,
    ERROR_QUOTA,
    ERROR_SERVER,
    ERROR_VERIFICATION,
    ClassifiedError,
    CredentialRejectedError,
    NoUsableAccountError,
    QuotaExhaustedError,
    TransientIOError,
    VerificationFailedError,
    classify_response,
    mask_credential,
)
from ..core.types import (
    AccountStatus,
    HeaderStyle,
    InboundRequest,
    ModelFamily,
    QuotaFallbackConfig,
)
from ..usage.registry import Account, AccountRegistry
from .styles import (
    alternate_header_style,
    get_header_style_from_url,
    get_quota_key,
    has_dialect_marker,
    model_family_for,
    parse_model_id,
    resolve_quota_fallback_header_style,
)
from .transforms import RequestTransformer

lib_logger = logging.getLogger(LIB_LOGGER_NAME)


class Dispatcher:
    """
    Orchestrates style resolution, account selection, transformation
    and sending for one call.

    Example:
        async with httpx.AsyncClient() as http_client:
            dispatcher = Dispatcher(registry, http_client, settings)
            response = await dispatcher.dispatch(InboundRequest(url=..., body=...))
    """

    def __init__(
        self,
        registry: AccountRegistry,
        http_client: httpx.AsyncClient,
        settings: Optional[RotatorSettings] = None,
        transformer: Optional[RequestTransformer] = None,
    ):
        """
        Initialize Dispatcher.

        Args:
            registry: Shared account registry
            http_client: Shared httpx.AsyncClient for upstream requests
            settings: Runtime settings (defaults when omitted)
            transformer: Optional RequestTransformer override
        """
        self._registry = registry
        self._http_client = http_client
        self._settings = settings or RotatorSettings()
        self._transformer = transformer or RequestTransformer(self._settings)

    async def dispatch(
        self,
        request: InboundRequest,
        config: Optional[QuotaFallbackConfig] = None,
        family: Optional[ModelFamily] = None,
    ) -> httpx.Response:
        """
        Send a request through the pool.

        Args:
            request: Caller request
            config: Fallback configuration; built from settings when omitted
            family: Model family; derived from the model id when omitted

        Returns:
            The upstream response (a successful one, or an upstream 4xx
            that is not a quota or credential failure)

        Raises:
            NoUsableAccountError: No account qualifies for the initial dialect
            QuotaExhaustedError: Exhausted and no fallback succeeded
            CredentialRejectedError: Upstream rejected the credential
            VerificationFailedError: Upstream requires account verification
            TransientIOError: Network failure or upstream 5xx
        """
        model_id = parse_model_id(request.url)
        family = family or model_family_for(model_id)
        explicit = has_dialect_marker(model_id)
        if config is None:
            config = self._settings.fallback_config(explicit_quota=explicit)
        elif explicit and not config.explicit_quota:
            config = QuotaFallbackConfig(
                quota_fallback=config.quota_fallback,
                cli_first=config.cli_first,
                explicit_quota=True,
            )

        style = get_header_style_from_url(request.url, family, config.cli_first)
        account = self._registry.select_account(family, style)
        if account is None:
            raise NoUsableAccountError(
                f"No usable account for {family.value} ({style.value})"
            )

        try:
            return await self._attempt(request, account, family, style)
        except QuotaExhaustedError as exhausted:
            fallback_style = resolve_quota_fallback_header_style(
                quota_fallback=config.quota_fallback,
                cli_first=config.cli_first,
                explicit_quota=config.explicit_quota,
                family=family,
                header_style=style,
                alternate_style=alternate_header_style(family, style),
            )
            if fallback_style is None:
                raise

            excluding: AbstractSet[int] = (
                {account.index} if exhausted.account_wide else frozenset()
            )
            fallback_account = self._registry.select_account(
                family, fallback_style, excluding
            )
            if fallback_account is None:
                lib_logger.warning(
                    f"No account available for fallback to {fallback_style.value}"
                )
                raise

            lib_logger.info(
                f"Quota fallback {style.value} -> {fallback_style.value} "
                f"using {fallback_account.label}"
            )
            return await self._attempt(
                request, fallback_account, family, fallback_style
            )

    async def _attempt(
        self,
        request: InboundRequest,
        account: Account,
        family: ModelFamily,
        style: HeaderStyle,
    ) -> httpx.Response:
        """One physical attempt. Applies the outcome to the registry."""
        outgoing = self._transformer.transform(request, account, style, family)
        lib_logger.info(
            f"Dispatching {outgoing.model_id} via {style.value} with "
            f"{account.label} ({mask_credential(account.credential.access_token)})"
        )

        try:
            response = await self._http_client.send(
                outgoing.to_httpx(self._http_client, self._settings.request_timeout),
                stream=outgoing.streaming,
            )
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Upstream timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransientIOError(f"Upstream connection failed: {e}") from e

        if response.is_success:
            await self._registry.record_use(account)
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            await response.aclose()
            raise TransientIOError(f"Failed to read upstream error body: {e}") from e
        await response.aclose()

        classified = classify_response(response.status_code, response.headers, body)
        await self._apply_failure(account, family, style, classified)
        # Plain upstream request errors go back to the caller unchanged
        return response

    async def _apply_failure(
        self,
        account: Account,
        family: ModelFamily,
        style: HeaderStyle,
        classified: ClassifiedError,
    ) -> None:
        if classified.error_type == ERROR_QUOTA:
            retry_ms = classified.retry_after_ms
            if retry_ms is None:
                retry_ms = self._settings.default_rate_limit_ms
            quota_key = get_quota_key(family, style)
            await self._registry.mark_exhausted(
                account, quota_key, self._registry.now() + retry_ms
            )
            error = QuotaExhaustedError(
                f"{account.label} exhausted {quota_key}: {classified.message}",
                account_index=account.index,
                quota_key=quota_key,
                reset_in_ms=retry_ms,
                account_wide=classified.account_wide,
            )
            raise error

        if classified.error_type == ERROR_CREDENTIAL:
            await self._registry.set_status(account, AccountStatus.EXPIRED)
            raise CredentialRejectedError(
                f"Credential rejected for {account.label}: {classified.message}",
                account.index,
            )

        if classified.error_type == ERROR_VERIFICATION:
            await self._registry.set_status(
                account, AccountStatus.VERIFICATION_REQUIRED
            )
            raise VerificationFailedError(
                f"{account.label} requires verification: {classified.message}",
                account.index,
            )

        if classified.error_type == ERROR_SERVER:
            raise TransientIOError(
                f"Upstream error {classified.status_code}: {classified.message}"
            )

        lib_logger.warning(
            f"Upstream rejected request with {classified.status_code}: "
            f"{classified.message}"
        )
