# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Google verification and token refresh collaborators.

The registry never talks to Google itself; it is handed an AccountVerifier
or a TokenRefresher and applies whatever they report.
"""

import logging
import time
from typing import Optional

import httpx

from ..core.constants import (
    ANTIGRAVITY_CLIENT_METADATA,
    CODE_ASSIST_ENDPOINT,
    GOOGLE_TOKEN_URL,
    LIB_LOGGER_NAME,
)
from ..core.errors import CredentialRejectedError, TransientIOError
from ..core.types import Credential
from ..usage.registry import Account

lib_logger = logging.getLogger(LIB_LOGGER_NAME)


class AccountVerifier:
    """Confirms that an account is live."""

    async def verify(self, account: Account) -> bool:
        raise NotImplementedError


class TokenRefresher:
    """Obtains a fresh credential for an account."""

    async def refresh(self, account: Account) -> Credential:
        """
        Returns:
            The replacement credential

        Raises:
            CredentialRejectedError: The refresh was refused
        """
        raise NotImplementedError


class GoogleAccountVerifier(AccountVerifier):
    """
    Probes the Code Assist loadCodeAssist endpoint with the account's token.

    200 means the account is live; 401/403 mean it needs attention. Anything
    else is treated as a transient failure and leaves the status alone.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        endpoint: str = CODE_ASSIST_ENDPOINT,
    ):
        self._http_client = http_client
        self._endpoint = endpoint.rstrip("/")

    async def verify(self, account: Account) -> bool:
        body = {"metadata": dict(ANTIGRAVITY_CLIENT_METADATA)}
        if account.credential.project_id:
            body["cloudaicompanionProject"] = account.credential.project_id

        try:
            response = await self._http_client.post(
                f"{self._endpoint}/v1internal:loadCodeAssist",
                headers={
                    "Authorization": f"Bearer {account.credential.access_token}",
                    "Content-Type": "application/json",
                },
                json=body,
            )
        except httpx.RequestError as e:
            raise TransientIOError(f"Verification probe failed: {e}") from e

        if response.status_code == 200:
            lib_logger.debug(f"Verified {account.label}")
            return True
        if response.status_code in (401, 403):
            lib_logger.warning(
                f"Verification probe rejected {account.label} "
                f"(HTTP {response.status_code})"
            )
            return False
        raise TransientIOError(
            f"Verification probe returned HTTP {response.status_code}"
        )


class GoogleTokenRefresher(TokenRefresher):
    """Exchanges the account's refresh token at the Google OAuth endpoint."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: Optional[str],
        client_secret: Optional[str] = None,
        token_url: str = GOOGLE_TOKEN_URL,
    ):
        self._http_client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url

    async def refresh(self, account: Account) -> Credential:
        refresh_token = account.credential.refresh_token
        if not refresh_token:
            raise CredentialRejectedError(
                f"{account.label} has no refresh token", account.index
            )
        if not self._client_id:
            raise CredentialRejectedError(
                "No OAuth client id configured (ROTATOR_OAUTH_CLIENT_ID)",
                account.index,
            )

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
        }
        if self._client_secret:
            data["client_secret"] = self._client_secret

        try:
            response = await self._http_client.post(self._token_url, data=data)
        except httpx.RequestError as e:
            raise TransientIOError(f"Token refresh request failed: {e}") from e

        if response.status_code in (400, 401):
            raise CredentialRejectedError(
                f"Refresh rejected for {account.label}: {response.text[:200]}",
                account.index,
            )
        if response.status_code != 200:
            raise TransientIOError(
                f"Token endpoint returned HTTP {response.status_code}"
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise CredentialRejectedError(
                f"Token endpoint returned no access token for {account.label}",
                account.index,
            )

        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)):
            expires_at = int(time.time() * 1000) + int(expires_in * 1000)

        return Credential(
            access_token=access_token,
            # Google only returns a refresh token when it rotates it
            refresh_token=payload.get("refresh_token") or refresh_token,
            project_id=account.credential.project_id,
            expires_at=expires_at,
        )
